"""Branch name generation from free-text task descriptions."""

import re
from datetime import datetime, timezone
from typing import Optional

from worktree_orchestrator.config import WorktreeSettings

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
FALLBACK_SLUG = "task"


class BranchNameGenerator:
    """
    Turns task descriptions into unique, valid git branch names.

    Pattern: {prefix}{slug}-{YYYYMMDD}-{HHMMSS}, with the timestamp in UTC.

    Example:
        >>> when = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
        >>> BranchNameGenerator().generate("Add login page!", now=when)
        'task/add-login-page-20250101-120000'
    """

    _invalid_chars = re.compile(r"[^a-z0-9\-]")
    _hyphen_runs = re.compile(r"-+")

    def __init__(self, settings: Optional[WorktreeSettings] = None):
        settings = settings or WorktreeSettings()
        self.prefix = settings.branch_prefix
        self.max_slug_length = settings.max_slug_length

    def slugify(self, text: str) -> str:
        """
        Reduce text to lowercase letters, digits and single hyphens.

        Args:
            text: Any string, possibly empty.

        Returns:
            A non-empty slug of at most max_slug_length characters.
        """
        slug = (text or "").lower().replace(" ", "-")
        slug = self._invalid_chars.sub("", slug)
        slug = self._hyphen_runs.sub("-", slug)
        slug = slug.strip("-")

        if len(slug) > self.max_slug_length:
            slug = slug[: self.max_slug_length].rstrip("-")

        return slug or FALLBACK_SLUG

    def generate(self, task_description: str, now: Optional[datetime] = None) -> str:
        """
        Generate a branch name for a task.

        Args:
            task_description: The task text to convert.
            now: Timestamp to embed. Defaults to the current UTC time.

        Returns:
            Branch name such as task/fix-the-bug-20250101-120000.
        """
        return f"{self.prefix}{self.slugify(task_description)}-{self._timestamp(now)}"

    def add_timestamp(self, branch_name: str, now: Optional[datetime] = None) -> str:
        """Append the uniqueness timestamp to a caller-chosen branch name."""
        return f"{branch_name.rstrip('-')}-{self._timestamp(now)}"

    def extract_slug(self, branch_name: str) -> Optional[str]:
        """
        Recover the slug from a generated branch name.

        Args:
            branch_name: A branch name, generated or not.

        Returns:
            The slug without prefix and timestamp, or None if the branch
            does not carry the prefix.
        """
        if not branch_name.startswith(self.prefix):
            return None

        without_prefix = branch_name[len(self.prefix):]

        # Drop the -YYYYMMDD-HHMMSS suffix
        last_hyphen = without_prefix.rfind("-")
        if last_hyphen > 0:
            second_last_hyphen = without_prefix.rfind("-", 0, last_hyphen)
            if second_last_hyphen > 0:
                return without_prefix[:second_last_hyphen]

        return without_prefix

    @staticmethod
    def _timestamp(now: Optional[datetime]) -> str:
        moment = now or datetime.now(timezone.utc)
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return moment.strftime(TIMESTAMP_FORMAT)
