"""Plan models: a reviewable set of chart file changes."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from chartsmith.shared.models.message import canonical_keys

PLAN_STATUS_REVIEW = "review"

_ACTION_FILE_ALIASES = {"contentPending": "content_pending"}
_PLAN_ALIASES = {"action_files": "actionFiles"}


@dataclass
class ActionFile:
    path: str
    action: str = ""
    status: str = ""
    content_pending: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ActionFile:
        wire = canonical_keys(data, _ACTION_FILE_ALIASES)
        known = {"path", "action", "status", "content_pending"}
        return cls(
            path=str(wire.get("path") or ""),
            action=str(wire.get("action") or ""),
            status=str(wire.get("status") or ""),
            content_pending=wire.get("content_pending"),
            extra={k: v for k, v in wire.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = dict(self.extra)
        d.update(path=self.path, action=self.action, status=self.status)
        if self.content_pending is not None:
            d["content_pending"] = self.content_pending
        return d


@dataclass
class Plan:
    id: str
    status: str = ""
    description: str = ""
    action_files: list[ActionFile] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_reviewable(self) -> bool:
        """A plan in review exposes the proceed action."""
        return self.status == PLAN_STATUS_REVIEW

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Plan:
        wire = canonical_keys(data, _PLAN_ALIASES)
        known = {"id", "status", "description", "actionFiles"}
        files = wire.get("actionFiles") or []
        return cls(
            id=str(wire.get("id", "")),
            status=str(wire.get("status") or ""),
            description=str(wire.get("description") or ""),
            action_files=[
                ActionFile.from_dict(f) for f in files if isinstance(f, Mapping)
            ],
            extra={k: v for k, v in wire.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = dict(self.extra)
        d.update(
            id=self.id,
            status=self.status,
            description=self.description,
            actionFiles=[f.to_dict() for f in self.action_files],
        )
        return d

    def merged(self, update: Mapping[str, Any]) -> Plan:
        # actionFiles is replaced wholesale when present in the update.
        return Plan.from_dict(
            {**self.to_dict(), **canonical_keys(update, _PLAN_ALIASES)}
        )
