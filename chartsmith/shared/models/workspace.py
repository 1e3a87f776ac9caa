"""Workspace-level models: local chart mapping, renders, connection status."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class WorkspaceMapping:
    """Links a backend workspace to a chart directory on this machine."""
    workspace_id: str
    local_path: str

    def to_dict(self) -> dict[str, str]:
        return {"workspaceId": self.workspace_id, "localPath": self.local_path}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> WorkspaceMapping:
        return cls(
            workspace_id=str(data.get("workspaceId") or data["workspace_id"]),
            local_path=str(data.get("localPath") or data["local_path"]),
        )


@dataclass
class Render:
    id: str
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Render:
        return cls(id=str(data.get("id", "")), data=dict(data))

    def to_dict(self) -> dict[str, Any]:
        return {**self.data, "id": self.id}

    def merged(self, update: Mapping[str, Any]) -> Render:
        return Render.from_dict({**self.to_dict(), **update})
