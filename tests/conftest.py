"""
Pytest configuration and shared fixtures for worktree-orchestrator tests.
"""

import subprocess
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from repo_helpers import commit_file, configure_identity, init_repo


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def empty_repo(temp_directory: Path) -> Path:
    """Create a git repository without any commits."""
    repo_path = temp_directory / "empty-repo"
    init_repo(repo_path)
    return repo_path


@pytest.fixture
def git_repo(temp_directory: Path) -> Path:
    """Create a git repository on main with one commit."""
    repo_path = temp_directory / "test-repo"
    init_repo(repo_path)
    commit_file(repo_path, "README.md", "# Test Repository\n", "Initial commit")
    return repo_path


@pytest.fixture
def cloned_repo(git_repo: Path, temp_directory: Path) -> Path:
    """Clone git_repo so the clone has an origin remote with tracking branches."""
    clone_path = temp_directory / "clone"
    subprocess.run(
        ["git", "clone", str(git_repo), str(clone_path)],
        capture_output=True,
        check=True,
    )
    configure_identity(clone_path)
    return clone_path


@pytest.fixture
def tree_pair(temp_directory: Path) -> tuple[Path, Path]:
    """Two plain directory trees for the cross-tree diff engine."""
    base = temp_directory / "base"
    compare = temp_directory / "compare"
    base.mkdir()
    compare.mkdir()
    return base, compare
