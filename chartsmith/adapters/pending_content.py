"""Pending file content awaiting user review.

Generated chart-file text is staged here when an artifact event carries
``content_pending``. Nothing touches disk until the user accepts; a
reject drops the entry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

PendingKey = tuple[str, str, str]  # (workspace_id, plan_id, file_path)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PendingFileChange:
    """Content generated for one chart file, not yet applied."""
    workspace_id: str
    plan_id: str
    file_path: str  # as sent by the server
    resolved_path: str  # absolute path inside the local chart
    content: str
    timestamp: str = ""
    status: str = "pending"  # "pending", "accepted", "rejected"

    @property
    def key(self) -> PendingKey:
        return (self.workspace_id, self.plan_id, self.file_path)

    def to_dict(self) -> dict:
        """Serialize to a JSON-safe dict."""
        return {
            "workspaceId": self.workspace_id,
            "planId": self.plan_id,
            "filePath": self.file_path,
            "localPath": self.resolved_path,
            "content": self.content,
            "timestamp": self.timestamp,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PendingFileChange:
        return cls(
            workspace_id=data["workspaceId"],
            plan_id=data.get("planId", ""),
            file_path=data["filePath"],
            resolved_path=data["localPath"],
            content=data["content"],
            timestamp=data.get("timestamp", ""),
            status=data.get("status", "pending"),
        )


class PendingContentStore:
    """In-memory map of staged file content keyed by workspace, plan and path.

    Accessed only from the event loop thread; every method is synchronous.
    """

    def __init__(self) -> None:
        self._entries: dict[PendingKey, PendingFileChange] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def stage(
        self,
        workspace_id: str,
        plan_id: str,
        file_path: str,
        resolved_path: str,
        content: str,
    ) -> PendingFileChange:
        """Store content for review, replacing any earlier staged version."""
        change = PendingFileChange(
            workspace_id=workspace_id,
            plan_id=plan_id,
            file_path=file_path,
            resolved_path=resolved_path,
            content=content,
            timestamp=_utcnow_iso(),
        )
        replaced = change.key in self._entries
        self._entries[change.key] = change
        logger.info(
            "Staged pending content for %s (workspace=%s plan=%s, %d chars%s)",
            file_path, workspace_id, plan_id or "<none>", len(content),
            ", replaced earlier version" if replaced else "",
        )
        return change

    def get(self, workspace_id: str, plan_id: str, file_path: str) -> PendingFileChange | None:
        return self._entries.get((workspace_id, plan_id, file_path))

    def pop(self, workspace_id: str, plan_id: str, file_path: str) -> PendingFileChange | None:
        return self._entries.pop((workspace_id, plan_id, file_path), None)

    def all(self) -> list[PendingFileChange]:
        return list(self._entries.values())

    def for_plan(self, plan_id: str) -> list[PendingFileChange]:
        return [c for c in self._entries.values() if c.plan_id == plan_id]

    def clear_plan(self, plan_id: str) -> int:
        keys = [k for k in self._entries if k[1] == plan_id]
        for k in keys:
            del self._entries[k]
        if keys:
            logger.info("Cleared %d pending change(s) for plan %s", len(keys), plan_id)
        return len(keys)

    def clear_workspace(self, workspace_id: str) -> int:
        keys = [k for k in self._entries if k[0] == workspace_id]
        for k in keys:
            del self._entries[k]
        if keys:
            logger.info(
                "Cleared %d pending change(s) for workspace %s", len(keys), workspace_id,
            )
        return len(keys)
