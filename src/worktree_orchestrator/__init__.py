"""
Worktree Orchestrator - isolated git worktrees for parallel coding tasks.

This package creates one git worktree per task under <repo>/.worktrees,
tracks each worktree's progress, merges finished work back and compares
directory trees for review.
"""

__version__ = "0.1.0"

from worktree_orchestrator.config import Config, load_config
from worktree_orchestrator.core import (
    GitService,
    WorktreeService,
    compare_trees,
    compare_trees_async,
    compute_line_diff,
)

__all__ = [
    "__version__",
    "Config",
    "GitService",
    "WorktreeService",
    "compare_trees",
    "compare_trees_async",
    "compute_line_diff",
    "load_config",
]
