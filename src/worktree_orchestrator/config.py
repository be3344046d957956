"""
Configuration management for worktree-orchestrator.

Loads configuration from .worktreerc files in the following priority:
1. Path passed explicitly to load_config()
2. .worktreerc in current directory
3. .worktreerc.toml in current directory
4. ~/.config/worktree-orchestrator/config.toml
5. ~/.worktreerc
"""

import logging
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class WorktreeSettings(BaseModel):
    """Configuration for worktree layout and naming."""

    directory_name: str = Field(
        default=".worktrees",
        description="Directory inside the repository root that holds managed worktrees",
    )
    metadata_filename: str = Field(
        default=".worktree-metadata.json",
        description="Name of the metadata file written into each worktree",
    )
    branch_prefix: str = Field(
        default="task/",
        description="Prefix for generated branch names",
    )
    max_slug_length: int = Field(
        default=50,
        ge=1,
        description="Maximum length of the slug part of a generated branch name",
    )
    default_branch_candidates: list[str] = Field(
        default_factory=lambda: ["main", "master", "develop"],
        description="Branch names tried in order when resolving the default branch",
    )
    delete_retry_delays: list[float] = Field(
        default_factory=lambda: [0.1, 0.2, 0.5, 1.0, 2.0],
        description="Delays in seconds between directory delete attempts",
    )


class GitSettings(BaseModel):
    """Configuration for git process invocation."""

    binary: str = Field(default="git", description="git executable to invoke")
    timeout_seconds: Optional[float] = Field(
        default=300,
        description="Timeout for a single git process, None to wait indefinitely",
    )
    remote_name: str = Field(default="origin", description="Remote used for URL lookups")


class DiffSettings(BaseModel):
    """Configuration for the cross-tree diff engine."""

    ignored_directories: list[str] = Field(
        default_factory=lambda: [
            ".git",
            ".worktrees",
            "node_modules",
            "bin",
            "obj",
            "dist",
            "build",
            "target",
            "__pycache__",
            "venv",
        ],
        description="Directory names pruned during tree enumeration",
    )
    ignore_dot_directories: bool = Field(
        default=True,
        description="Prune every directory whose name starts with a dot",
    )
    ignored_extensions: list[str] = Field(
        default_factory=lambda: [
            ".dll",
            ".exe",
            ".pdb",
            ".so",
            ".dylib",
            ".o",
            ".obj",
            ".a",
            ".lib",
            ".pyc",
            ".pyo",
            ".class",
            ".jar",
            ".cache",
            ".suo",
            ".user",
        ],
        description="File extensions skipped during tree enumeration",
    )
    whole_file_threshold: int = Field(
        default=1024 * 1024,
        ge=1,
        description="Files smaller than this are compared in a single read",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        ge=1,
        description="Buffer size for chunked comparison of large files",
    )


class Config(BaseModel):
    """Main configuration model for worktree-orchestrator."""

    worktree: WorktreeSettings = Field(default_factory=WorktreeSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    diff: DiffSettings = Field(default_factory=DiffSettings)

    def tree_diff_settings(self) -> DiffSettings:
        """Diff settings that always prune the managed worktrees directory."""
        ignored = self.diff.ignored_directories
        if self.worktree.directory_name in ignored:
            return self.diff
        return self.diff.model_copy(
            update={"ignored_directories": [*ignored, self.worktree.directory_name]}
        )


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Config instance with loaded or default values.
    """
    search_paths = [
        Path(config_path) if config_path else None,
        Path.cwd() / ".worktreerc",
        Path.cwd() / ".worktreerc.toml",
        Path.home() / ".config" / "worktree-orchestrator" / "config.toml",
        Path.home() / ".worktreerc",
    ]

    for path in search_paths:
        if path and path.exists():
            try:
                data = toml.load(path)
                return Config(**data)
            except (OSError, toml.TomlDecodeError, ValueError) as e:
                logger.warning(f"Ignoring invalid config file {path}: {e}")
                continue

    return Config()


def save_config(config: Config, path: Path) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save.
        path: Path to save the config file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        toml.dump(config.model_dump(), f)
