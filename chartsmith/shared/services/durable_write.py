"""Crash-safe writes for chart files and local state files.

Accepted artifact content replaces the chart file in a single rename,
so the editor and helm never read a half-written template. An existing
file keeps its line endings and permission bits.
"""
from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

CRLF = "\r\n"


def detect_newline(path: Path) -> str | None:
    """Return ``"\\r\\n"`` for a CRLF file, ``"\\n"`` for LF, None when unknown."""
    try:
        with path.open("rb") as f:
            head = f.read(8192)
    except FileNotFoundError:
        return None
    if b"\r\n" in head:
        return CRLF
    if b"\n" in head:
        return "\n"
    return None


def atomic_write_text(
    path: Path,
    content: str,
    *,
    encoding: str = "utf-8",
    newline: str | None = None,
    mode: int | None = None,
) -> None:
    """Replace *path* with *content* through a temp file in the same directory.

    *newline* is passed to the text layer ("\\r\\n" rewrites every "\\n").
    *mode* sets the permission bits of the new file before the rename.
    """
    directory = path.parent
    directory.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(
        "w",
        encoding=encoding,
        newline=newline,
        dir=directory,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp_path = Path(tmp.name)
        try:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
        except OSError:
            tmp.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise

    # Persist the rename itself; not every filesystem allows a directory fsync.
    try:
        fd = os.open(directory, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def write_chart_file(path: Path, content: str) -> None:
    """Write accepted content over a chart file.

    Incoming content uses LF; a file that already uses CRLF stays CRLF.
    Permission bits of the existing file are carried over.
    """
    newline = detect_newline(path)
    mode = None
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        pass
    if newline == CRLF:
        # Avoid doubling CR for content that already carries CRLF.
        content = content.replace(CRLF, "\n")
        logger.debug("Keeping CRLF line endings for %s", path)
    atomic_write_text(path, content, newline=newline if newline == CRLF else "", mode=mode)


def ensure_file(path: Path) -> bool:
    """Create an empty file (and parents) if missing. Returns True if created."""
    if path.exists():
        return False
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()
    return True
