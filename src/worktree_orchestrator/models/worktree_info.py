"""Pydantic models for worktree information and persisted metadata."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WorktreeStatus(str, Enum):
    """Status of a managed worktree."""

    ACTIVE = "active"
    HAS_CHANGES = "has_changes"
    READY_TO_MERGE = "ready_to_merge"
    MERGED = "merged"
    LOCKED = "locked"


def derive_status(has_uncommitted_changes: bool, commits_ahead: int) -> WorktreeStatus:
    """
    Derive a worktree status from its working-copy facts.

    MERGED and LOCKED are never produced here; they are imposed by callers.
    """
    if has_uncommitted_changes:
        return WorktreeStatus.HAS_CHANGES
    if commits_ahead > 0:
        return WorktreeStatus.READY_TO_MERGE
    return WorktreeStatus.ACTIVE


class WorktreeInfo(BaseModel):
    """Information about a managed git worktree."""

    id: str = Field(description="Short random identifier of the worktree")
    path: Path = Field(description="Absolute path to the worktree directory")
    branch_name: str = Field(description="Branch currently checked out in the worktree")
    base_branch: str = Field(description="Branch the worktree was created from")
    task_description: str = Field(description="Task the worktree was created for")
    title: Optional[str] = Field(default=None, description="Optional display title")
    created_at: datetime = Field(description="When the worktree was created (UTC)")
    status: WorktreeStatus = Field(default=WorktreeStatus.ACTIVE)
    has_uncommitted_changes: bool = Field(default=False)
    commits_ahead: int = Field(default=0, ge=0, description="Commits ahead of base branch")
    unpushed_commits: int = Field(
        default=0, ge=0, description="Commits ahead of the remote tracking branch"
    )
    claude_session_id: Optional[str] = Field(
        default=None, description="Agent session bound to this worktree"
    )
    session_was_active: bool = Field(
        default=False, description="Whether the agent session was running at last shutdown"
    )
    accumulated_duration_ms: int = Field(default=0, ge=0)
    was_job: bool = Field(default=False, description="Whether the worktree ran as a job")
    last_iteration: int = Field(default=0, ge=0)
    job_max_iterations: Optional[int] = Field(default=None)

    @property
    def display_title(self) -> str:
        """Title if one was set, otherwise the task description."""
        return self.title or self.task_description

    def mark_merged(self) -> "WorktreeInfo":
        """Return a copy of this worktree in the terminal MERGED state."""
        return self.model_copy(update={"status": WorktreeStatus.MERGED})


class RegisteredWorktree(BaseModel):
    """A worktree as git itself records it (git worktree list)."""

    path: Path = Field(description="Absolute path to the worktree directory")
    branch: str = Field(description="Branch checked out, or (detached)")
    head_commit: str = Field(default="", description="Short SHA of the HEAD commit")
    is_detached: bool = Field(default=False)
    is_bare: bool = Field(default=False)


class WorktreeMetadata(BaseModel):
    """
    Durable metadata stored in each worktree directory.

    Every field has a default and unknown keys are ignored, so files written
    by newer or older versions still load. A missing id marks the file as
    belonging to an unknown worktree.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: Optional[str] = None
    task_description: str = ""
    title: Optional[str] = None
    base_branch: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    claude_session_id: Optional[str] = None
    session_was_active: bool = False
    accumulated_duration_ms: int = 0
    was_job: bool = False
    last_iteration: int = 0
    job_max_iterations: Optional[int] = None

    @property
    def is_known(self) -> bool:
        """Whether the metadata identifies a worktree."""
        return bool(self.id)

    def to_json(self) -> str:
        """Serialize with camelCase keys, indented for humans."""
        return self.model_dump_json(by_alias=True, indent=2)
