"""
Core modules for worktree-orchestrator.

This package contains the core business logic for:
- Git process invocation and repository queries
- Branch name generation
- Worktree lifecycle and merging
- Cross-tree and line-level diffs
"""

from worktree_orchestrator.core.branch_names import BranchNameGenerator
from worktree_orchestrator.core.git import GitService
from worktree_orchestrator.core.line_diff import compute_line_diff, diff_files, diff_lines
from worktree_orchestrator.core.merge_outcome import MergeOutcomeClassifier
from worktree_orchestrator.core.process import GitProcessRunner, ProcessResult
from worktree_orchestrator.core.tree_diff import (
    TreeDiffEngine,
    compare_trees,
    compare_trees_async,
)
from worktree_orchestrator.core.worktree import WorktreeService

__all__ = [
    "BranchNameGenerator",
    "GitProcessRunner",
    "GitService",
    "MergeOutcomeClassifier",
    "ProcessResult",
    "TreeDiffEngine",
    "WorktreeService",
    "compare_trees",
    "compare_trees_async",
    "compute_line_diff",
    "diff_files",
    "diff_lines",
]
