"""
Classification of git merge output.

git merge has no structured output mode, so the outcome of a merge is read
from its human-readable text. All of that string matching lives here so it
can be replaced as one unit if git's phrasing changes.
"""

import logging
from typing import List

from worktree_orchestrator.models.merge import MergeStatus

logger = logging.getLogger(__name__)


class MergeOutcomeClassifier:
    """Maps git merge output onto MergeStatus values."""

    FAST_FORWARD_MARKERS = ("Fast-forward",)
    UP_TO_DATE_MARKERS = ("Already up to date", "Already up-to-date")
    MERGE_COMMIT_MARKERS = ("Merge made by",)
    CONFLICT_MARKER = "CONFLICT"
    CONFLICT_FILE_MARKER = "Merge conflict in "

    def classify_success(self, stdout: str) -> MergeStatus:
        """
        Classify the output of a merge that exited with code 0.

        Output that matches none of the known phrasings is reported as a
        merge commit: the merge succeeded, the exact outcome is unknown.
        """
        if any(marker in stdout for marker in self.FAST_FORWARD_MARKERS):
            return MergeStatus.FAST_FORWARD
        if any(marker in stdout for marker in self.UP_TO_DATE_MARKERS):
            return MergeStatus.UP_TO_DATE
        if not any(marker in stdout for marker in self.MERGE_COMMIT_MARKERS):
            logger.debug(f"Unrecognized merge output, outcome unknown: {stdout!r}")
        return MergeStatus.MERGE_COMMIT

    def has_conflicts(self, stdout: str, stderr: str) -> bool:
        """Check whether a failed merge stopped on conflicts."""
        return self.CONFLICT_MARKER in stdout or self.CONFLICT_MARKER in stderr

    def parse_conflicting_files(self, output: str) -> List[str]:
        """
        Extract file paths from lines such as
        "CONFLICT (content): Merge conflict in src/app.py".
        """
        files: List[str] = []

        for line in output.splitlines():
            if self.CONFLICT_MARKER not in line:
                continue
            idx = line.find(self.CONFLICT_FILE_MARKER)
            if idx < 0:
                continue
            path = line[idx + len(self.CONFLICT_FILE_MARKER):].strip()
            if path and path not in files:
                files.append(path)

        return files
