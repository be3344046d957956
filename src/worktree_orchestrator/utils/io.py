"""Small IO helpers for safe persistence and cleanup.

Provides atomic_write_text() which writes to a temp file in the same
filesystem and atomically replaces the destination, so a crash never leaves
a half-written metadata file behind.

Also provides remove_tree() which deletes a directory tree even when it
contains read-only files (git marks pack files read-only on Windows).
"""
from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: str | Path, data: str, perms: int = 0o644) -> None:
    """Atomically write text content to path.

    Steps:
    - Ensure parent directory exists
    - Write to a NamedTemporaryFile in the same directory
    - fsync the temp file
    - os.replace() to move into place atomically
    - chmod the target path to perms

    If os.replace() fails, the temp file is cleaned up before re-raising.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(dest.parent),
            prefix=f".{dest.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_name = tmp.name

        os.replace(tmp_name, dest)
        tmp_name = None

        try:
            os.chmod(dest, perms)
        except PermissionError:
            logger.warning(f"Could not set permissions {oct(perms)} on {dest}.")
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def _clear_readonly_and_retry(func, path, _exc_info) -> None:
    """rmtree error hook: drop the read-only bit and retry once."""
    try:
        os.chmod(path, stat.S_IWRITE | stat.S_IREAD)
        func(path)
    except OSError as e:
        logger.debug(f"Could not remove {path}: {e}")
        raise


def remove_tree(path: str | Path) -> None:
    """Recursively delete a directory, clearing read-only attributes as needed.

    Raises:
        OSError: If the tree still cannot be removed.
    """
    target = Path(path)
    if not target.exists():
        return
    if sys.version_info >= (3, 12):
        shutil.rmtree(target, onexc=_clear_readonly_and_retry)
    else:
        shutil.rmtree(target, onerror=_clear_readonly_and_retry)
