"""Routes decoded push frames to exactly one handler by event type."""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from chartsmith.adapters.events import PushEvent, UnknownEvent, frame_to_event
from chartsmith.engine.errors import MalformedFrameError
from chartsmith.vscode.store import WorkspaceStateStore

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[Any]]


class EventRouter:
    """Validate a frame, drop it if stale, otherwise dispatch it.

    ``route`` returns True when a handler ran to completion. Malformed
    frames, frames for another workspace, unknown event types and
    handler failures all return False.
    """

    def __init__(
        self,
        store: WorkspaceStateStore,
        handlers: Mapping[type[PushEvent], EventHandler] | None = None,
    ) -> None:
        self._store = store
        self._handlers: dict[type[PushEvent], EventHandler] = dict(handlers or {})

    def register(self, event_cls: type[PushEvent], handler: EventHandler) -> None:
        self._handlers[event_cls] = handler

    async def route(self, frame: object) -> bool:
        try:
            event = frame_to_event(frame)
        except MalformedFrameError as exc:
            logger.warning("Ignoring push frame: %s (%r)", exc.reason, _preview(frame))
            return False

        active = self._store.active_workspace_id
        if event.workspace_id != active:
            logger.debug(
                "Dropping %s for workspace %s (active: %s)",
                event.event_type, event.workspace_id or "<none>", active,
            )
            return False

        handler = self._handlers.get(type(event))
        if handler is None:
            if isinstance(event, UnknownEvent):
                logger.info("Unknown event type %s, ignoring", event.event_type)
            else:
                logger.warning("No handler registered for %s", event.event_type)
            return False

        try:
            await handler(event)
        except Exception:
            logger.exception(
                "Handler failed for %s in workspace %s", event.event_type, event.workspace_id,
            )
            return False
        return True


def _preview(frame: object, limit: int = 200) -> str:
    text = repr(frame)
    return text if len(text) <= limit else text[:limit] + "..."
