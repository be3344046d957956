"""
Content-based diff between two directory trees.

The local checkout and a worktree are compared purely by filesystem
content, which answers "what differs between these two directories"
including uncommitted and untracked files that no git ref describes.
"""

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional

from worktree_orchestrator.config import DiffSettings
from worktree_orchestrator.exceptions import DiffCancelledError
from worktree_orchestrator.models.diff import DiffChangeType, DiffEntry

logger = logging.getLogger(__name__)


class TreeDiffEngine:
    """
    Compares two directory trees file by file.

    Example:
        >>> engine = TreeDiffEngine()
        >>> entries = engine.compare("/path/to/repo", "/path/to/repo/.worktrees/task-1")
    """

    def __init__(self, settings: Optional[DiffSettings] = None) -> None:
        self.settings = settings or DiffSettings()
        self._ignored_dirs = set(self.settings.ignored_directories)
        self._ignored_exts = {ext.lower() for ext in self.settings.ignored_extensions}

    def compare(
        self,
        base_root: str | Path,
        compare_root: str | Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[DiffEntry]:
        """
        Diff compare_root against base_root.

        Args:
            base_root: The reference tree (e.g. the local repository).
            compare_root: The tree being inspected (e.g. a worktree).
            cancel_event: Checked between files; once set the comparison
                stops with DiffCancelledError.

        Returns:
            Changed files sorted by path. Identical files are omitted.

        Raises:
            DiffCancelledError: If cancel_event is set during the scan.
        """
        base_root = Path(base_root)
        compare_root = Path(compare_root)

        base_files = self.collect_files(base_root, cancel_event)
        compare_files = self.collect_files(compare_root, cancel_event)

        entries: List[DiffEntry] = []
        for rel_path in sorted(set(base_files) | set(compare_files)):
            self._check_cancelled(cancel_event)

            base_file = base_files.get(rel_path)
            compare_file = compare_files.get(rel_path)

            if base_file is None:
                entries.append(
                    DiffEntry(
                        file_path=rel_path,
                        change_type=DiffChangeType.ADDED,
                        lines_added=self._count_lines(compare_file),
                    )
                )
            elif compare_file is None:
                entries.append(
                    DiffEntry(
                        file_path=rel_path,
                        change_type=DiffChangeType.DELETED,
                        lines_deleted=self._count_lines(base_file),
                    )
                )
            elif not self.files_identical(base_file, compare_file, cancel_event):
                added, deleted = self._approximate_line_changes(base_file, compare_file)
                entries.append(
                    DiffEntry(
                        file_path=rel_path,
                        change_type=DiffChangeType.MODIFIED,
                        lines_added=added,
                        lines_deleted=deleted,
                    )
                )

        return entries

    def collect_files(
        self,
        root: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Path]:
        """
        Enumerate files under root with an explicit directory stack.

        Returns:
            Mapping of forward-slash relative path to absolute path.
        """
        files: Dict[str, Path] = {}
        if not root.is_dir():
            return files

        stack = [root]
        while stack:
            self._check_cancelled(cancel_event)
            current = stack.pop()

            try:
                with os.scandir(current) as it:
                    for entry in it:
                        if entry.is_dir(follow_symlinks=False):
                            if not self._is_ignored_dir(entry.name):
                                stack.append(Path(entry.path))
                        elif entry.is_file(follow_symlinks=False):
                            if not self._is_ignored_file(entry.name):
                                path = Path(entry.path)
                                files[path.relative_to(root).as_posix()] = path
            except OSError as e:
                logger.debug(f"Skipping unreadable directory {current}: {e}")

        return files

    def files_identical(
        self,
        first: Path,
        second: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Byte-compare two files, rejecting early on a size mismatch."""
        try:
            size = first.stat().st_size
            if size != second.stat().st_size:
                return False

            if size < self.settings.whole_file_threshold:
                return first.read_bytes() == second.read_bytes()

            with open(first, "rb") as f1, open(second, "rb") as f2:
                while True:
                    self._check_cancelled(cancel_event)
                    chunk1 = f1.read(self.settings.chunk_size)
                    chunk2 = f2.read(self.settings.chunk_size)
                    if chunk1 != chunk2:
                        return False
                    if not chunk1:
                        return True
        except OSError as e:
            logger.debug(f"Could not compare {first} and {second}: {e}")
            return False

    def _is_ignored_dir(self, name: str) -> bool:
        if name in self._ignored_dirs:
            return True
        return self.settings.ignore_dot_directories and name.startswith(".")

    def _is_ignored_file(self, name: str) -> bool:
        return os.path.splitext(name)[1].lower() in self._ignored_exts

    def _approximate_line_changes(self, base_file: Path, compare_file: Path) -> tuple[int, int]:
        """
        Count lines unique to each side by set difference.

        This is a cheap estimate for display, not a real line diff: moved
        and duplicated lines are not counted.
        """
        base_lines = set(self._read_lines(base_file))
        compare_lines = set(self._read_lines(compare_file))
        return len(compare_lines - base_lines), len(base_lines - compare_lines)

    def _count_lines(self, path: Optional[Path]) -> int:
        if path is None:
            return 0
        return len(self._read_lines(path))

    @staticmethod
    def _read_lines(path: Path) -> List[str]:
        try:
            return path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return []

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise DiffCancelledError("Tree comparison cancelled")


def compare_trees(
    base_root: str | Path,
    compare_root: str | Path,
    cancel_event: Optional[threading.Event] = None,
    settings: Optional[DiffSettings] = None,
) -> List[DiffEntry]:
    """Diff two directory trees by content. See TreeDiffEngine.compare."""
    return TreeDiffEngine(settings).compare(base_root, compare_root, cancel_event)


async def compare_trees_async(
    base_root: str | Path,
    compare_root: str | Path,
    settings: Optional[DiffSettings] = None,
) -> List[DiffEntry]:
    """
    Diff two directory trees off the event loop.

    Cancelling the awaiting task stops the background scan at its next
    checkpoint.
    """
    cancel_event = threading.Event()
    try:
        return await asyncio.to_thread(
            compare_trees, base_root, compare_root, cancel_event, settings
        )
    except asyncio.CancelledError:
        cancel_event.set()
        raise
