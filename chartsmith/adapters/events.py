"""Event types delivered over the push channel.

Each inbound frame is parsed into a typed dataclass keyed by its
``eventType``. Unknown types become ``UnknownEvent`` so newer servers
never crash older clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from chartsmith.engine.errors import MalformedFrameError

CHATMESSAGE_UPDATED = "chatmessage-updated"
PLAN_CREATED = "plan-created"
PLAN_UPDATED = "plan-updated"
ARTIFACT_UPDATED = "artifact-updated"


@dataclass
class PushEvent:
    """Base event from the push channel."""
    event_type: str = ""
    workspace_id: str = ""


@dataclass
class ChatMessageUpdated(PushEvent):
    event_type: str = CHATMESSAGE_UPDATED
    chat_message: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlanCreated(PushEvent):
    event_type: str = PLAN_CREATED
    plan: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlanUpdated(PushEvent):
    event_type: str = PLAN_UPDATED
    plan: dict[str, Any] = field(default_factory=dict)


@dataclass
class ArtifactUpdated(PushEvent):
    """A chart file was generated or modified on the server."""
    event_type: str = ARTIFACT_UPDATED
    file: dict[str, Any] = field(default_factory=dict)
    plan_id: str = ""

    @property
    def file_path(self) -> str:
        return str(self.file.get("filePath") or "")

    @property
    def content_pending(self) -> str | None:
        value = self.file.get("content_pending")
        if value is None:
            value = self.file.get("contentPending")
        return value


@dataclass
class UnknownEvent(PushEvent):
    raw: dict[str, Any] = field(default_factory=dict)


def _payload(frame: dict[str, Any], key: str) -> dict[str, Any]:
    value = frame.get(key)
    return dict(value) if isinstance(value, dict) else {}


def frame_to_event(frame: object) -> PushEvent:
    """Convert a decoded push frame to a typed event.

    Raises MalformedFrameError when the frame is not an object or has
    no ``eventType``.
    """
    if not isinstance(frame, dict):
        raise MalformedFrameError("frame is not a JSON object", frame)
    event_type = frame.get("eventType")
    if not event_type:
        raise MalformedFrameError("missing eventType", frame)
    event_type = str(event_type)
    workspace_id = str(frame.get("workspaceId") or "")

    if event_type == CHATMESSAGE_UPDATED:
        return ChatMessageUpdated(
            workspace_id=workspace_id,
            chat_message=_payload(frame, "chatMessage"),
        )
    if event_type == PLAN_CREATED:
        return PlanCreated(workspace_id=workspace_id, plan=_payload(frame, "plan"))
    if event_type == PLAN_UPDATED:
        return PlanUpdated(workspace_id=workspace_id, plan=_payload(frame, "plan"))
    if event_type == ARTIFACT_UPDATED:
        file = _payload(frame, "file")
        plan_id = frame.get("planId") or file.get("planId") or ""
        return ArtifactUpdated(
            workspace_id=workspace_id, file=file, plan_id=str(plan_id),
        )
    return UnknownEvent(event_type=event_type, workspace_id=workspace_id, raw=dict(frame))


def event_to_dict(event: PushEvent) -> dict[str, Any]:
    """Convert a typed event back to its wire frame."""
    d: dict[str, Any] = {
        "eventType": event.event_type,
        "workspaceId": event.workspace_id,
    }
    if isinstance(event, UnknownEvent):
        return {**event.raw, **d}
    if isinstance(event, ChatMessageUpdated):
        d["chatMessage"] = event.chat_message
    elif isinstance(event, (PlanCreated, PlanUpdated)):
        d["plan"] = event.plan
    elif isinstance(event, ArtifactUpdated):
        d["file"] = event.file
        if event.plan_id:
            d["planId"] = event.plan_id
    return d
