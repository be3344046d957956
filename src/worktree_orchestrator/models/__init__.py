"""
Pydantic models for worktree-orchestrator.

This package contains data models for:
- Repository and worktree information
- Persisted worktree metadata
- Diff entries and rendered diff lines
- Merge results
"""

from worktree_orchestrator.models.diff import (
    DiffChangeType,
    DiffEntry,
    DiffLine,
    DiffLineType,
)
from worktree_orchestrator.models.merge import MergeResult, MergeStatus
from worktree_orchestrator.models.repository import RepositoryInfo
from worktree_orchestrator.models.worktree_info import (
    RegisteredWorktree,
    WorktreeInfo,
    WorktreeMetadata,
    WorktreeStatus,
    derive_status,
)

__all__ = [
    "DiffChangeType",
    "DiffEntry",
    "DiffLine",
    "DiffLineType",
    "MergeResult",
    "MergeStatus",
    "RegisteredWorktree",
    "RepositoryInfo",
    "WorktreeInfo",
    "WorktreeMetadata",
    "WorktreeStatus",
    "derive_status",
]
