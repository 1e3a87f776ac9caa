"""Push channel client: one subscription, reconnect with backoff.

Holds a single Centrifugo connection subscribed to the channel of the
active workspace. Status moves disconnected -> connecting -> connected;
after a drop it goes connected -> disconnected -> reconnecting ->
connecting, waiting ``BackoffPolicy.delay_ms(n)`` before attempt n.
Token refresh failures spend the same attempt budget as connection
failures. Once the budget is gone the client stays disconnected until
it is started again.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from chartsmith.engine.errors import PushTokenError, PushTokenRejectedError, TransportError
from chartsmith.realtime.backoff import BackoffPolicy
from chartsmith.realtime.centrifugo import PushTransport
from chartsmith.shared.models.workspace import ConnectionStatus

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]
FrameCallback = Callable[[Any], Awaitable[bool]]
StatusCallback = Callable[[ConnectionStatus], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]


def channel_name(workspace_id: str, user_id: str) -> str:
    """Per-user channel of a workspace."""
    return f"{workspace_id}#{user_id}"


class PushChannelClient:
    """Keeps one subscription to the active workspace's push channel alive."""

    def __init__(
        self,
        *,
        transport_factory: Callable[[], PushTransport],
        token_provider: TokenProvider,
        on_frame: FrameCallback,
        endpoint: str,
        user_id: str,
        backoff: BackoffPolicy | None = None,
        on_status: StatusCallback | None = None,
        sleep: SleepFn = asyncio.sleep,
        token: str | None = None,
    ) -> None:
        self._transport_factory = transport_factory
        self._token_provider = token_provider
        self._on_frame = on_frame
        self._on_status = on_status
        self._endpoint = endpoint
        self._user_id = user_id
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._token = token

        self._status = ConnectionStatus.DISCONNECTED
        self._workspace_id: str | None = None
        self._channel: str | None = None
        self._transport: PushTransport | None = None
        self._task: asyncio.Task | None = None
        # Bumped on every retarget/stop; in-flight connects compare against it.
        self._generation = 0
        self.reconnect_attempt = 0
        self.frames_received = 0

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def workspace_id(self) -> str | None:
        return self._workspace_id

    @property
    def channel(self) -> str | None:
        return self._channel

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def set_status_listener(self, listener: StatusCallback | None) -> None:
        self._on_status = listener

    async def start(self, workspace_id: str) -> None:
        await self.set_workspace(workspace_id)

    async def set_workspace(self, workspace_id: str | None) -> None:
        """Point the subscription at *workspace_id*; None stops the client."""
        if workspace_id is None:
            await self.stop()
            return
        if workspace_id == self._workspace_id and self.running:
            return

        self._workspace_id = workspace_id
        self._generation += 1
        if self._transport is not None and self._status is ConnectionStatus.CONNECTED:
            await self._resubscribe()
        elif not self.running:
            self._task = asyncio.create_task(self.run())
        else:
            # A connect is in flight; it subscribes to the current
            # workspace when it lands.
            logger.debug("Connect in progress, will subscribe to %s", workspace_id)

    async def stop(self) -> None:
        self._workspace_id = None
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_transport()
        await self._set_status(ConnectionStatus.DISCONNECTED)

    async def run(self) -> None:
        """Connect, consume, and reconnect until stopped or out of attempts."""
        self.reconnect_attempt = 0
        try:
            while self._workspace_id is not None:
                if await self._connect_once():
                    await self._consume()
                    await self._set_status(ConnectionStatus.DISCONNECTED)
                if self._workspace_id is None:
                    break

                if self._backoff.exhausted(self.reconnect_attempt):
                    logger.error(
                        "Max reconnect attempts (%d) reached; staying disconnected",
                        self._backoff.max_attempts,
                    )
                    await self._set_status(ConnectionStatus.DISCONNECTED)
                    return

                self.reconnect_attempt += 1
                delay_ms = self._backoff.delay_ms(self.reconnect_attempt)
                await self._set_status(ConnectionStatus.RECONNECTING)
                logger.info(
                    "Scheduling reconnect in %dms (attempt %d/%d)",
                    delay_ms, self.reconnect_attempt, self._backoff.max_attempts,
                )
                await self._sleep(delay_ms / 1000.0)
        finally:
            await self._close_transport()

    # ── Internals ──

    async def _connect_once(self) -> bool:
        generation = self._generation
        await self._set_status(ConnectionStatus.CONNECTING)
        transport: PushTransport | None = None
        try:
            if not self._token:
                logger.info("Fetching push token")
                self._token = await self._token_provider()
            transport = self._transport_factory()
            await transport.connect(self._endpoint, self._token)
        except PushTokenRejectedError as exc:
            logger.warning("Push token rejected, will refresh: %s", exc)
            self._token = None
            return await self._connect_failed(transport)
        except PushTokenError as exc:
            logger.error("Push token refresh failed: %s", exc)
            return await self._connect_failed(transport)
        except TransportError as exc:
            logger.warning("Push connection failed: %s", exc)
            return await self._connect_failed(transport)

        if self._workspace_id is None:
            logger.info("Client stopped while connecting; dropping connection")
            await transport.close()
            return False
        if generation != self._generation:
            logger.info("Workspace changed while connecting; subscribing to %s", self._workspace_id)

        self._transport = transport
        self._channel = None
        self.reconnect_attempt = 0
        await self._set_status(ConnectionStatus.CONNECTED)
        # The status listener may have stopped or retargeted the client.
        if self._transport is not transport or self._workspace_id is None:
            logger.info("Client stopped while reporting connect; not subscribing")
            return False
        if self._channel is not None:
            return True
        channel = channel_name(self._workspace_id, self._user_id)
        self._channel = channel
        try:
            await transport.subscribe(channel)
        except TransportError as exc:
            logger.warning("Subscribe to %s failed: %s", channel, exc)
        return True

    async def _connect_failed(self, transport: PushTransport | None) -> bool:
        if transport is not None:
            await transport.close()
        await self._set_status(ConnectionStatus.DISCONNECTED)
        return False

    async def _consume(self) -> None:
        transport = self._transport
        if transport is None:
            return
        try:
            async for channel, data in transport.frames():
                self.frames_received += 1
                try:
                    handled = await self._on_frame(data)
                except Exception:
                    logger.exception("Frame callback failed for channel %s", channel)
                    continue
                logger.debug("Frame on %s handled=%s", channel, handled)
        except TransportError as exc:
            logger.warning("Push connection dropped: %s", exc)
        else:
            logger.warning("Push connection closed")
        finally:
            if self._transport is transport:
                self._transport = None
                self._channel = None
            await transport.close()

    async def _resubscribe(self) -> None:
        new_channel = channel_name(self._workspace_id, self._user_id)
        old_channel = self._channel
        if new_channel == old_channel:
            return
        transport = self._transport
        self._channel = new_channel
        try:
            if old_channel:
                await transport.unsubscribe(old_channel)
            await transport.subscribe(new_channel)
        except TransportError as exc:
            # The reader sees the same failure and reconnects onto new_channel.
            logger.warning("Switching subscription %s -> %s failed: %s", old_channel, new_channel, exc)
            return
        logger.info("Switched subscription %s -> %s", old_channel, new_channel)

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._channel = None
        if transport is not None:
            await transport.close()

    async def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        logger.debug("Connection status %s -> %s", self._status.value, status.value)
        self._status = status
        if self._on_status is not None:
            try:
                await self._on_status(status)
            except Exception:
                logger.exception("Connection status listener failed")
