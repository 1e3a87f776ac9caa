"""Centrifugo client transport over an aiohttp websocket.

Speaks the Centrifugo JSON protocol: one command or reply per line,
commands carry an ``id`` and replies echo it, server pings are empty
``{}`` objects answered with ``{}``, and publications arrive as
``{"push": {"channel": ..., "pub": {"data": ...}}}``.

Only the connect handshake waits for its reply. Subscribe and
unsubscribe are fire-and-forget; their replies are read by ``frames()``
like any other frame so there is only ever one reader on the socket.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import aiohttp

from chartsmith.engine.errors import PushTokenRejectedError, TransportError

logger = logging.getLogger(__name__)

# Centrifugo error codes meaning "get a new token".
ERROR_UNAUTHORIZED = 101
ERROR_TOKEN_EXPIRED = 109
TOKEN_ERROR_CODES = frozenset({ERROR_UNAUTHORIZED, ERROR_TOKEN_EXPIRED})

Publication = tuple[str, Any]  # (channel, data)


class PushTransport(Protocol):
    """What the push client needs from a broker connection."""

    async def connect(self, endpoint: str, token: str) -> None: ...

    async def subscribe(self, channel: str) -> None: ...

    async def unsubscribe(self, channel: str) -> None: ...

    def frames(self) -> AsyncIterator[Publication]: ...

    async def close(self) -> None: ...


class CentrifugoTransport:
    """One websocket connection to a Centrifugo node."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        client_name: str = "chartsmith-sync",
        connect_timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._client_name = client_name
        self._connect_timeout = connect_timeout
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._endpoint = ""
        self._cmd_id = 0
        self._client_id = ""
        self._answer_pings = True
        # Frames read while waiting for the connect reply.
        self._backlog: list[dict[str, Any]] = []

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self, endpoint: str, token: str) -> None:
        """Open the socket and authenticate with *token*.

        Raises PushTokenRejectedError when the broker refuses the token,
        TransportError for everything else.
        """
        self._endpoint = endpoint
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(endpoint), timeout=self._connect_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            raise TransportError(endpoint, f"{type(exc).__name__}: {exc}") from exc

        try:
            reply = await asyncio.wait_for(
                self._request({"connect": {"token": token, "name": self._client_name}}),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            await self.close()
            raise TransportError(endpoint, "timed out waiting for connect reply") from exc
        except TransportError:
            await self.close()
            raise

        error = reply.get("error")
        if error:
            await self.close()
            code = int(error.get("code", 0) or 0)
            message = str(error.get("message", ""))
            if code in TOKEN_ERROR_CODES:
                raise PushTokenRejectedError(code, message)
            raise TransportError(endpoint, f"connect refused (code {code}): {message}")

        result = reply.get("connect") or {}
        self._client_id = str(result.get("client", ""))
        self._answer_pings = bool(result.get("pong", True))
        logger.info(
            "Connected to Centrifugo %s (client=%s version=%s)",
            endpoint, self._client_id or "?", result.get("version", "?"),
        )

    async def subscribe(self, channel: str) -> None:
        await self._send_command({"subscribe": {"channel": channel}})
        logger.info("Subscription request sent for channel: %s", channel)

    async def unsubscribe(self, channel: str) -> None:
        await self._send_command({"unsubscribe": {"channel": channel}})
        logger.info("Unsubscribe request sent for channel: %s", channel)

    async def frames(self) -> AsyncIterator[Publication]:
        """Yield ``(channel, data)`` for each publication until the socket closes."""
        while True:
            if self._backlog:
                batch, self._backlog = self._backlog, []
            else:
                batch = await self._read_batch()
                if batch is None:
                    return
            for frame in batch:
                publication = await self._handle_frame(frame)
                if publication is not None:
                    yield publication

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            try:
                await ws.close()
            except (aiohttp.ClientError, OSError):
                logger.debug("Error closing Centrifugo socket", exc_info=True)

    # ── Internals ──

    async def _request(self, command: dict[str, Any]) -> dict[str, Any]:
        cmd_id = await self._send_command(command)
        while True:
            batch = await self._read_batch()
            if batch is None:
                raise TransportError(self._endpoint, "connection closed before reply")
            for frame in batch:
                if frame.get("id") == cmd_id:
                    return frame
                self._backlog.append(frame)

    async def _send_command(self, command: dict[str, Any]) -> int:
        self._cmd_id += 1
        await self._send({"id": self._cmd_id, **command})
        return self._cmd_id

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportError(self._endpoint, "not connected")
        try:
            await self._ws.send_str(json.dumps(payload))
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as exc:
            raise TransportError(self._endpoint, f"send failed: {exc}") from exc

    async def _read_batch(self) -> list[dict[str, Any]] | None:
        """Read one websocket message; None once the socket is gone."""
        if self._ws is None:
            return None
        msg = await self._ws.receive()
        if msg.type == aiohttp.WSMsgType.TEXT:
            return _decode_lines(msg.data)
        if msg.type == aiohttp.WSMsgType.BINARY:
            return _decode_lines(msg.data.decode("utf-8", errors="replace"))
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise TransportError(self._endpoint, f"websocket error: {self._ws.exception()}")
        logger.info(
            "Centrifugo socket closed (type=%s code=%s reason=%s)",
            msg.type.name, self._ws.close_code, msg.extra,
        )
        return None

    async def _handle_frame(self, frame: dict[str, Any]) -> Publication | None:
        if not frame:
            if self._answer_pings:
                await self._send({})
            return None

        push = frame.get("push")
        if isinstance(push, dict):
            pub = push.get("pub")
            if isinstance(pub, dict):
                return (str(push.get("channel", "")), pub.get("data"))
            if "disconnect" in push:
                logger.warning("Server disconnect: %s", push["disconnect"])
            else:
                logger.debug("Ignoring push without publication: %s", sorted(push))
            return None

        error = frame.get("error")
        if error:
            logger.warning("Centrifugo command %s failed: %s", frame.get("id"), error)
        return None


def _decode_lines(text: str) -> list[dict[str, Any]]:
    frames: list[dict[str, Any]] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            decoded = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON frame from Centrifugo: %r", line[:200])
            continue
        if not isinstance(decoded, dict):
            logger.warning("Ignoring non-object frame from Centrifugo: %r", decoded)
            continue
        frames.append(decoded)
    return frames
