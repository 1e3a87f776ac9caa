"""Persistent storage for workspace → local chart directory mappings.

Stores two files under the state directory (default ``~/.chartsmith``):
- ``workspace_mappings.json``: list of ``{workspaceId, localPath}``
- ``state.json``: ``{activeWorkspaceId}``
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from chartsmith.shared.models.workspace import WorkspaceMapping
from chartsmith.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

MAPPINGS_FILENAME = "workspace_mappings.json"
STATE_FILENAME = "state.json"


class WorkspaceMappingStore:
    """Load and save workspace mappings and the active workspace id."""

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir).expanduser()
        self._mappings_path = self._state_dir / MAPPINGS_FILENAME
        self._state_path = self._state_dir / STATE_FILENAME

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def all_mappings(self) -> list[WorkspaceMapping]:
        data = self._load_json(self._mappings_path)
        if not isinstance(data, list):
            return []
        mappings: list[WorkspaceMapping] = []
        for entry in data:
            try:
                mappings.append(WorkspaceMapping.from_dict(entry))
            except (KeyError, TypeError, AttributeError):
                logger.warning("Skipping invalid workspace mapping: %r", entry)
        return mappings

    def save_mapping(self, mapping: WorkspaceMapping) -> None:
        """Add *mapping*, replacing any entry with the same id or local path."""
        mappings = [
            m for m in self.all_mappings()
            if m.workspace_id != mapping.workspace_id
            and m.local_path != mapping.local_path
        ]
        mappings.append(mapping)
        self._write_mappings(mappings)
        logger.info(
            "Saved workspace mapping %s -> %s",
            mapping.workspace_id, mapping.local_path,
        )

    def get_mapping(self, workspace_id: str) -> WorkspaceMapping | None:
        for m in self.all_mappings():
            if m.workspace_id == workspace_id:
                return m
        return None

    def get_mapping_by_path(self, local_path: str) -> WorkspaceMapping | None:
        for m in self.all_mappings():
            if m.local_path == local_path:
                return m
        return None

    def remove_mapping(self, workspace_id: str) -> None:
        self._write_mappings(
            [m for m in self.all_mappings() if m.workspace_id != workspace_id]
        )

    def remove_mapping_by_path(self, local_path: str) -> None:
        self._write_mappings(
            [m for m in self.all_mappings() if m.local_path != local_path]
        )

    def get_active_workspace_id(self) -> str | None:
        data = self._load_json(self._state_path)
        if isinstance(data, dict) and data.get("activeWorkspaceId"):
            return str(data["activeWorkspaceId"])
        return None

    def set_active_workspace_id(self, workspace_id: str | None) -> None:
        data = self._load_json(self._state_path)
        if not isinstance(data, dict):
            data = {}
        if workspace_id is None:
            data.pop("activeWorkspaceId", None)
        else:
            data["activeWorkspaceId"] = workspace_id
        self._write_json(self._state_path, data)

    def _write_mappings(self, mappings: list[WorkspaceMapping]) -> None:
        self._write_json(self._mappings_path, [m.to_dict() for m in mappings])

    @staticmethod
    def _load_json(path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load %s", path)
            return None

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        try:
            atomic_write_text(path, json.dumps(data, indent=2) + "\n")
        except OSError:
            logger.warning("Failed to write %s", path, exc_info=True)
