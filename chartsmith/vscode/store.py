"""Workspace state: the single source of truth for the active workspace.

Holds the active workspace id with its messages, plans and renders, plus
the process-wide connection status, and notifies subscribers on every
change. All mutators are synchronous: they run start-to-finish on the
event loop without yielding, so two events can never interleave inside
one merge.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from chartsmith.shared.models.message import ChatMessage, entity_id
from chartsmith.shared.models.plan import Plan
from chartsmith.shared.models.workspace import ConnectionStatus, Render

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChange:
    """What changed: "workspace", "messages", "plans", "renders" or "connection"."""
    kind: str
    workspace_id: str | None


StateListener = Callable[[StateChange], None]


class WorkspaceStateStore:
    """Observable in-memory state for the active workspace."""

    def __init__(self) -> None:
        self._workspace_id: str | None = None
        self._messages: list[ChatMessage] = []
        self._plans: list[Plan] = []
        self._renders: list[Render] = []
        self._connection_status = ConnectionStatus.DISCONNECTED
        self._listeners: list[StateListener] = []

    # ── Read access ──

    @property
    def active_workspace_id(self) -> str | None:
        return self._workspace_id

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def plans(self) -> list[Plan]:
        return list(self._plans)

    @property
    def renders(self) -> list[Render]:
        return list(self._renders)

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._connection_status

    def get_message(self, message_id: str) -> ChatMessage | None:
        return next((m for m in self._messages if m.id == message_id), None)

    def find_plan(self, plan_id: str) -> Plan | None:
        return next((p for p in self._plans if p.id == plan_id), None)

    def message_for_plan(self, plan_id: str) -> ChatMessage | None:
        """The chat message whose response produced *plan_id*, if seen yet."""
        return next(
            (m for m in self._messages if m.response_plan_id == plan_id), None,
        )

    # ── Subscription ──

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, kind: str) -> None:
        change = StateChange(kind=kind, workspace_id=self._workspace_id)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("State listener failed for %s change", kind)

    # ── Mutations ──

    def set_active_workspace(self, workspace_id: str | None) -> bool:
        """Switch workspaces, dropping everything that belonged to the old one.

        Returns False when *workspace_id* is already active.
        """
        if workspace_id == self._workspace_id:
            return False
        previous = self._workspace_id
        self._workspace_id = workspace_id
        self._messages = []
        self._plans = []
        self._renders = []
        logger.info("Active workspace changed %s -> %s", previous, workspace_id)
        self._notify("workspace")
        return True

    def set_messages(self, messages: Iterable[Mapping[str, Any]]) -> None:
        self._messages = _build_unique(messages, ChatMessage.from_dict, "message")
        self._notify("messages")

    def merge_message(self, update: object) -> bool:
        """Merge a (possibly partial) message by id, appending unseen ids."""
        message_id = entity_id(update)
        if message_id is None:
            logger.error("Discarding chat message update without id: %r", update)
            return False
        for i, existing in enumerate(self._messages):
            if existing.id == message_id:
                self._messages[i] = existing.merged(update)
                break
        else:
            self._messages.append(ChatMessage.from_dict(update))
        self._notify("messages")
        return True

    def set_plans(self, plans: Iterable[Mapping[str, Any]]) -> None:
        self._plans = _build_unique(plans, Plan.from_dict, "plan")
        self._notify("plans")

    def merge_plan(self, update: object) -> bool:
        """Merge a (possibly partial) plan by id, appending unseen ids."""
        plan_id = entity_id(update)
        if plan_id is None:
            logger.error("Discarding plan update without id: %r", update)
            return False
        for i, existing in enumerate(self._plans):
            if existing.id == plan_id:
                self._plans[i] = existing.merged(update)
                break
        else:
            self._plans.append(Plan.from_dict(update))
        self._notify("plans")
        return True

    def set_renders(self, renders: Iterable[Mapping[str, Any]]) -> None:
        self._renders = _build_unique(renders, Render.from_dict, "render")
        self._notify("renders")

    def append_render_if_absent(self, render: object) -> bool:
        render_id = entity_id(render)
        if render_id is None:
            logger.error("Discarding render without id: %r", render)
            return False
        if any(r.id == render_id for r in self._renders):
            return False
        self._renders.append(Render.from_dict(render))
        self._notify("renders")
        return True

    def apply_snapshot(
        self,
        messages: Iterable[Mapping[str, Any]],
        plans: Iterable[Mapping[str, Any]],
        renders: Iterable[Mapping[str, Any]],
    ) -> None:
        """Install a fetched snapshot without losing pushed updates.

        Events merged while the snapshot was in flight are newer, so
        their fields win over the snapshot's for the same id.
        """
        self._messages = _overlay(
            _build_unique(messages, ChatMessage.from_dict, "message"), self._messages,
        )
        self._plans = _overlay(_build_unique(plans, Plan.from_dict, "plan"), self._plans)
        self._renders = _overlay(
            _build_unique(renders, Render.from_dict, "render"), self._renders,
        )
        self._notify("messages")
        self._notify("plans")
        self._notify("renders")

    def set_connection_status(self, status: ConnectionStatus) -> None:
        if status is self._connection_status:
            return
        self._connection_status = status
        self._notify("connection")


def _build_unique(items: Iterable[Any], factory: Callable[[Any], Any], label: str) -> list:
    """Build entities from wire dicts, skipping id-less entries; last duplicate wins."""
    by_id: dict[str, Any] = {}
    for item in items:
        item_id = entity_id(item)
        if item_id is None:
            logger.error("Skipping %s without id: %r", label, item)
            continue
        by_id[item_id] = factory(item)
    return list(by_id.values())


def _overlay(snapshot: list, live: list) -> list:
    """Snapshot order, populated live fields on top; live-only entries appended."""
    live_by_id = {item.id: item for item in live}
    result = []
    for item in snapshot:
        current = live_by_id.pop(item.id, None)
        if current is None:
            result.append(item)
            continue
        populated = {
            k: v for k, v in current.to_dict().items() if v not in (None, "", [], {})
        }
        result.append(item.merged(populated))
    result.extend(live_by_id.values())
    return result
