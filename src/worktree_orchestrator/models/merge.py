"""Pydantic models for merge results."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MergeStatus(str, Enum):
    """Outcome of a merge operation."""

    FAST_FORWARD = "fast_forward"
    UP_TO_DATE = "up_to_date"
    MERGE_COMMIT = "merge_commit"
    CONFLICTS = "conflicts"
    FAILED = "failed"


class MergeResult(BaseModel):
    """Result of merging a worktree branch into a target branch."""

    success: bool
    status: MergeStatus
    merge_commit_sha: Optional[str] = Field(
        default=None, description="HEAD of the target branch after a successful merge"
    )
    conflicting_files: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
