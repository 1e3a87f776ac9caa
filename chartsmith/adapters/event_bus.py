"""Async bus carrying UI notifications from the sync pipeline to a front end.

Handlers post plain ``{"command": ...}`` dicts; the front end (webview
bridge, terminal printer, tests) consumes them in order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class UINotifier(Protocol):
    """Anything that can receive UI notifications."""

    async def post_message(self, message: dict[str, Any]) -> None: ...


class NotificationBus:
    """Async queue bridging pipeline notifications to a UI consumer."""

    def __init__(self, maxsize: int = 1000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def post_message(self, message: dict[str, Any]) -> None:
        """Queue a notification. Never raises into the caller."""
        if self._closed:
            return
        try:
            # Backpressure instead of silently dropping.
            await asyncio.wait_for(self._queue.put(message), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "NotificationBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                self._put_timeout,
                message.get("command"),
                self._queue.qsize(),
            )

    def drain(self) -> list[dict[str, Any]]:
        """Return and remove every queued notification without waiting."""
        drained: list[dict[str, Any]] = []
        while not self._queue.empty():
            drained.append(self._queue.get_nowait())
        return drained

    async def consume(self) -> AsyncIterator[dict[str, Any]]:
        """Yield notifications as they arrive. Stops on close()."""
        while not self._closed:
            try:
                message = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            yield message

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
