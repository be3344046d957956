"""Custom exceptions for worktree-orchestrator."""

from typing import Optional, Sequence


class OrchestratorError(Exception):
    """Base exception for all worktree-orchestrator errors."""


class RepositoryNotFoundError(OrchestratorError):
    """Raised when no git repository encloses a path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"No git repository found at {path}")


class GitProcessError(OrchestratorError):
    """Raised when a git process exits with a non-zero code."""

    def __init__(
        self,
        operation: str,
        returncode: int,
        stderr: str = "",
        args: Optional[Sequence[str]] = None,
    ):
        self.operation = operation
        self.returncode = returncode
        self.stderr = stderr
        self.command_args = list(args or [])

        error_msg = f"Git operation '{operation}' failed with exit code {returncode}"
        if stderr:
            error_msg += f": {stderr.strip()}"

        super().__init__(error_msg)


class RepositoryLockedError(GitProcessError):
    """Raised when git refuses to run because another process holds a repository lock."""


class WorktreeError(OrchestratorError):
    """Base exception for worktree operations."""


class WorktreeNotFoundError(WorktreeError):
    """Raised when a worktree cannot be found."""

    def __init__(self, worktree_id: str):
        self.worktree_id = worktree_id
        super().__init__(f"Worktree {worktree_id} not found")


class DiffCancelledError(OrchestratorError):
    """Raised when a tree comparison is cancelled before completion."""
