"""Pydantic model for repository information."""

from pathlib import Path

from pydantic import BaseModel, Field


class RepositoryInfo(BaseModel):
    """Information about a git repository, recomputed on every lookup."""

    path: Path = Field(description="Repository working directory root")
    name: str = Field(description="Folder name of the repository")
    current_branch: str = Field(description="Branch checked out in the working directory")
    default_branch: str = Field(description="Default branch (main, master, develop or HEAD)")
    worktrees_directory: Path = Field(description="Directory holding managed worktrees")
    is_worktree: bool = Field(
        default=False, description="Whether the path is itself a linked worktree"
    )
