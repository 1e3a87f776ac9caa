"""Artifact path resolution: map server-side chart paths into the local chart.

The server addresses files relative to the workspace, and both the
server path and the local mapping can include the chart folder name.
Joining them naively produces ``mychart/mychart/templates/...``.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path, PurePosixPath

from chartsmith.engine.errors import ArtifactPathError

logger = logging.getLogger(__name__)


def _strip_chart_dir_prefix(file_path: str, chart_dir: str) -> str:
    """Keep only what follows the last occurrence of *chart_dir* in *file_path*."""
    if not chart_dir or chart_dir == "/":
        return file_path
    idx = file_path.rfind(chart_dir)
    if idx == -1:
        return file_path
    tail = file_path[idx + len(chart_dir):]
    # Only a match on a segment boundary counts ("/charts/app" vs "/charts/app2").
    if tail and not tail.startswith("/"):
        return file_path
    return tail


def strip_duplicate_chart_segments(parts: tuple[str, ...], chart_name: str) -> tuple[str, ...]:
    """Drop leading segments equal to the chart directory name.

    Compatibility shim for the producer emitting chart-prefixed paths.
    Remove once the server sends paths relative to the chart root.
    """
    stripped = parts
    while stripped and chart_name and stripped[0] == chart_name:
        stripped = stripped[1:]
    if stripped != parts:
        logger.debug(
            "Stripped %d duplicated chart segment(s) %r from %s",
            len(parts) - len(stripped), chart_name, "/".join(parts),
        )
    return stripped


def resolve_artifact_path(chart_dir: str | Path, file_path: str) -> Path:
    """Resolve an artifact's server path to an absolute path inside *chart_dir*."""
    if not file_path or not str(file_path).strip():
        raise ArtifactPathError(str(file_path), "empty file path")

    base = Path(chart_dir).expanduser()
    base_posix = posixpath.normpath(base.as_posix())
    normalized = posixpath.normpath(str(file_path).replace("\\", "/"))

    if base.is_absolute():
        normalized = _strip_chart_dir_prefix(normalized, base_posix)
    relative = normalized.lstrip("/")
    parts = tuple(p for p in PurePosixPath(relative).parts if p not in ("", "."))
    parts = strip_duplicate_chart_segments(parts, base.name)

    if any(p == ".." for p in parts):
        raise ArtifactPathError(file_path, "path escapes the chart directory")
    if not parts:
        raise ArtifactPathError(file_path, "path names the chart directory itself")

    resolved = base.joinpath(*parts)
    logger.debug(
        "resolve_artifact_path: chart_dir=%s file_path=%s -> %s",
        base, file_path, resolved,
    )
    return resolved


def read_text_or_none(path: Path) -> str | None:
    """Read a text file, returning None when it does not exist."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
