"""
Tests for GitService against real temporary repositories.

Tests cover:
- Repository discovery and initialization
- Branch queries and ahead/behind counts
- Commit-to-commit and working-copy diffs
- .gitignore maintenance
- Remote queries, push and pull failures
- Worktree registration parsing
"""

import subprocess
from pathlib import Path

import pytest

from repo_helpers import commit_file, run_git
from worktree_orchestrator.config import Config
from worktree_orchestrator.core.git import GitService, parse_count
from worktree_orchestrator.exceptions import GitProcessError, RepositoryNotFoundError
from worktree_orchestrator.models.diff import DiffChangeType


@pytest.fixture
def service() -> GitService:
    return GitService()


class TestParseCount:
    @pytest.mark.parametrize("output,expected", [("3\n", 3), ("", 0), ("garbage", 0), ("-2", 0)])
    def test_parse(self, output: str, expected: int):
        assert parse_count(output) == expected


class TestRepository:
    """Test suite for repository discovery."""

    @pytest.mark.asyncio
    async def test_open_from_subdirectory(self, service: GitService, git_repo: Path):
        nested = git_repo / "src" / "pkg"
        nested.mkdir(parents=True)

        info = await service.open_repository(nested)

        assert info.path.resolve() == git_repo
        assert info.name == "test-repo"
        assert info.current_branch == "main"
        assert info.default_branch == "main"
        assert info.worktrees_directory.resolve() == git_repo / ".worktrees"
        assert info.is_worktree is False

    @pytest.mark.asyncio
    async def test_default_branch_prefers_configured_order(self, service: GitService, git_repo: Path):
        run_git(git_repo, "checkout", "-b", "develop")
        run_git(git_repo, "branch", "-m", "main", "master")

        info = await service.open_repository(git_repo)

        assert info.current_branch == "develop"
        assert info.default_branch == "master"

    @pytest.mark.asyncio
    async def test_default_branch_falls_back_to_current(self, service: GitService, git_repo: Path):
        run_git(git_repo, "branch", "-m", "main", "trunk")

        info = await service.open_repository(git_repo)

        assert info.default_branch == "trunk"

    @pytest.mark.asyncio
    async def test_not_a_repository(self, service: GitService, temp_directory: Path):
        plain = temp_directory / "plain"
        plain.mkdir()

        with pytest.raises(RepositoryNotFoundError):
            await service.open_repository(plain)

    @pytest.mark.asyncio
    async def test_initialize_repository(self, service: GitService, temp_directory: Path):
        target = temp_directory / "fresh"

        info = await service.initialize_repository(target)

        assert (target / ".git").is_dir()
        assert info.path.resolve() == target


class TestBranches:
    """Test suite for branch queries."""

    @pytest.mark.asyncio
    async def test_get_branches(self, service: GitService, git_repo: Path):
        run_git(git_repo, "branch", "task/one")

        assert sorted(await service.get_branches(git_repo)) == ["main", "task/one"]

    @pytest.mark.asyncio
    async def test_branch_exists(self, service: GitService, git_repo: Path):
        run_git(git_repo, "branch", "feature/x")

        assert await service.branch_exists(git_repo, "feature/x")
        assert not await service.branch_exists(git_repo, "feature/y")

    @pytest.mark.asyncio
    async def test_current_branch_detached(self, service: GitService, git_repo: Path):
        sha = run_git(git_repo, "rev-parse", "HEAD").stdout.strip()
        run_git(git_repo, "checkout", "--detach")

        assert await service.get_current_branch(git_repo) == sha[:7]

    @pytest.mark.asyncio
    async def test_commits_ahead(self, service: GitService, git_repo: Path):
        run_git(git_repo, "checkout", "-b", "task/work")
        commit_file(git_repo, "a.txt", "a", "First")
        commit_file(git_repo, "b.txt", "b", "Second")

        assert await service.get_commits_ahead(git_repo, "task/work", "main") == 2
        assert await service.get_commits_ahead(git_repo, "main", "task/work") == 0

    @pytest.mark.asyncio
    async def test_commits_ahead_missing_branch_is_zero(self, service: GitService, git_repo: Path):
        assert await service.get_commits_ahead(git_repo, "nope", "main") == 0
        assert await service.get_commits_ahead(git_repo, "main", "nope") == 0


class TestDiff:
    """Test suite for commit diffs."""

    @pytest.mark.asyncio
    async def test_from_empty_tree(self, service: GitService, git_repo: Path):
        entries = await service.get_diff(git_repo)

        assert len(entries) == 1
        assert entries[0].file_path == "README.md"
        assert entries[0].change_type == DiffChangeType.ADDED
        assert entries[0].lines_added == 1

    @pytest.mark.asyncio
    async def test_between_commits(self, service: GitService, git_repo: Path):
        first = run_git(git_repo, "rev-parse", "HEAD").stdout.strip()
        commit_file(git_repo, "README.md", "# Changed\nsecond line\n", "Edit readme")
        commit_file(git_repo, "new.txt", "hello\n", "Add file")
        second = run_git(git_repo, "rev-parse", "HEAD").stdout.strip()

        entries = {e.file_path: e for e in await service.get_diff(git_repo, first, second)}

        readme = entries["README.md"]
        assert readme.change_type == DiffChangeType.MODIFIED
        assert readme.lines_added == 2
        assert readme.lines_deleted == 1
        assert "+second line" in readme.patch
        assert entries["new.txt"].change_type == DiffChangeType.ADDED

    @pytest.mark.asyncio
    async def test_deleted_file(self, service: GitService, git_repo: Path):
        first = run_git(git_repo, "rev-parse", "HEAD").stdout.strip()
        run_git(git_repo, "rm", "README.md")
        run_git(git_repo, "commit", "-m", "Remove readme")

        entries = await service.get_diff(git_repo, first)

        assert [(e.file_path, e.change_type) for e in entries] == [
            ("README.md", DiffChangeType.DELETED)
        ]

    @pytest.mark.asyncio
    async def test_unresolvable_ref_is_empty(self, service: GitService, git_repo: Path):
        assert await service.get_diff(git_repo, to_ref="does-not-exist") == []


class TestUncommittedChanges:
    """Test suite for working-copy changes."""

    @pytest.mark.asyncio
    async def test_clean(self, service: GitService, git_repo: Path):
        assert await service.get_uncommitted_changes(git_repo) == []

    @pytest.mark.asyncio
    async def test_modified_and_untracked(self, service: GitService, git_repo: Path):
        (git_repo / "README.md").write_text("# Changed\n")
        (git_repo / "untracked.txt").write_text("new\n")

        entries = {e.file_path: e.change_type for e in await service.get_uncommitted_changes(git_repo)}

        assert entries == {
            "README.md": DiffChangeType.MODIFIED,
            "untracked.txt": DiffChangeType.ADDED,
        }

    @pytest.mark.asyncio
    async def test_ignored_files_not_reported(self, service: GitService, git_repo: Path):
        commit_file(git_repo, ".gitignore", "*.log\n", "Ignore logs")
        (git_repo / "debug.log").write_text("noise")

        assert await service.get_uncommitted_changes(git_repo) == []

    @pytest.mark.asyncio
    async def test_repository_without_commits(self, service: GitService, empty_repo: Path):
        (empty_repo / "staged.txt").write_text("s")
        run_git(empty_repo, "add", "staged.txt")
        (empty_repo / "loose.txt").write_text("l")

        entries = {e.file_path: e.change_type for e in await service.get_uncommitted_changes(empty_repo)}

        assert entries == {
            "staged.txt": DiffChangeType.ADDED,
            "loose.txt": DiffChangeType.ADDED,
        }


class TestGitignore:
    """Test suite for .gitignore maintenance."""

    @pytest.mark.asyncio
    async def test_creates_file(self, service: GitService, git_repo: Path):
        await service.ensure_gitignore_entries(git_repo, [".worktrees", ".worktree-metadata.json"])

        assert (git_repo / ".gitignore").read_text() == ".worktrees/\n.worktree-metadata.json\n"

    @pytest.mark.asyncio
    async def test_idempotent(self, service: GitService, git_repo: Path):
        for _ in range(3):
            await service.ensure_gitignore_entry(git_repo, ".worktrees")

        assert (git_repo / ".gitignore").read_text() == ".worktrees/\n"

    @pytest.mark.asyncio
    async def test_equivalent_entry_not_duplicated(self, service: GitService, git_repo: Path):
        (git_repo / ".gitignore").write_text("node_modules\n.WORKTREES\n")

        await service.ensure_gitignore_entry(git_repo, ".worktrees/")

        assert (git_repo / ".gitignore").read_text() == "node_modules\n.WORKTREES\n"

    @pytest.mark.asyncio
    async def test_appends_after_missing_newline(self, service: GitService, git_repo: Path):
        (git_repo / ".gitignore").write_text("*.log")

        await service.ensure_gitignore_entry(git_repo, ".worktree-metadata.json")

        assert (git_repo / ".gitignore").read_text() == "*.log\n.worktree-metadata.json\n"


class TestRemotes:
    """Test suite for remote queries and sync commands."""

    @pytest.mark.asyncio
    async def test_no_remote(self, service: GitService, git_repo: Path):
        assert await service.has_remote(git_repo) is False
        assert await service.get_remote_url(git_repo) is None

    @pytest.mark.asyncio
    async def test_clone_has_origin(self, service: GitService, git_repo: Path, cloned_repo: Path):
        assert await service.has_remote(cloned_repo) is True
        assert await service.get_remote_url(cloned_repo) == str(git_repo)

    @pytest.mark.asyncio
    async def test_ahead_and_behind_remote(self, service: GitService, git_repo: Path, cloned_repo: Path):
        commit_file(cloned_repo, "local.txt", "l", "Local work")
        commit_file(git_repo, "upstream.txt", "u", "Upstream work")
        run_git(cloned_repo, "fetch")

        assert await service.get_commits_ahead_of_remote(cloned_repo, "main") == 1
        assert await service.get_commits_behind_remote(cloned_repo, "main") == 1

    @pytest.mark.asyncio
    async def test_untracked_branch_counts_zero(self, service: GitService, cloned_repo: Path):
        run_git(cloned_repo, "checkout", "-b", "task/local-only")
        commit_file(cloned_repo, "x.txt", "x", "Work")

        assert await service.get_commits_ahead_of_remote(cloned_repo, "task/local-only") == 0
        assert await service.get_commits_behind_remote(cloned_repo, "task/local-only") == 0

    @pytest.mark.asyncio
    async def test_push_all_branches(self, service: GitService, git_repo: Path, temp_directory: Path):
        bare = temp_directory / "remote.git"
        subprocess.run(["git", "init", "--bare", str(bare)], capture_output=True, check=True)
        run_git(git_repo, "remote", "add", "origin", str(bare))
        run_git(git_repo, "branch", "task/pushed")

        await service.push_all_branches(git_repo)

        heads = run_git(bare, "branch", "--list").stdout
        assert "main" in heads
        assert "task/pushed" in heads

    @pytest.mark.asyncio
    async def test_push_without_remote_raises(self, service: GitService, git_repo: Path):
        with pytest.raises(GitProcessError) as exc_info:
            await service.push_all_branches(git_repo)

        assert exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_pull_without_upstream_raises(self, service: GitService, git_repo: Path):
        with pytest.raises(GitProcessError):
            await service.pull(git_repo)

    @pytest.mark.asyncio
    async def test_pull_from_origin(self, service: GitService, git_repo: Path, cloned_repo: Path):
        commit_file(git_repo, "upstream.txt", "u", "Upstream work")

        await service.pull(cloned_repo)

        assert (cloned_repo / "upstream.txt").read_text() == "u"


class TestWorktreeRegistrations:
    """Test suite for git worktree list parsing."""

    PORCELAIN = (
        "worktree /repo\n"
        "HEAD 1234567890abcdef1234567890abcdef12345678\n"
        "branch refs/heads/main\n"
        "\n"
        "worktree /repo/.worktrees/task-a\n"
        "HEAD abcdef1234567890abcdef1234567890abcdef12\n"
        "branch refs/heads/task/a-20250101-120000\n"
        "\n"
        "worktree /repo/.worktrees/detached\n"
        "HEAD 1111111111111111111111111111111111111111\n"
        "detached\n"
    )

    def test_parse_porcelain(self):
        worktrees = GitService.parse_worktree_list(self.PORCELAIN)

        assert [str(wt.path) for wt in worktrees] == [
            "/repo",
            "/repo/.worktrees/task-a",
            "/repo/.worktrees/detached",
        ]
        assert worktrees[0].branch == "main"
        assert worktrees[0].head_commit == "1234567"
        assert worktrees[1].branch == "task/a-20250101-120000"
        assert worktrees[2].branch == "(detached)"
        assert worktrees[2].is_detached is True

    @pytest.mark.asyncio
    async def test_lists_real_worktrees(self, service: GitService, git_repo: Path, temp_directory: Path):
        linked = temp_directory / "linked"
        run_git(git_repo, "worktree", "add", "-b", "task/linked", str(linked))

        worktrees = await service.list_registered_worktrees(git_repo)

        paths = {wt.path.resolve() for wt in worktrees}
        assert git_repo in paths
        assert linked in paths

    @pytest.mark.asyncio
    async def test_not_a_repository_is_empty(self, service: GitService, temp_directory: Path):
        assert await service.list_registered_worktrees(temp_directory) == []


class TestDiffBetweenPaths:
    @pytest.mark.asyncio
    async def test_delegates_to_tree_diff(self, service: GitService, tree_pair: tuple[Path, Path]):
        base, compare = tree_pair
        (compare / "only-here.txt").write_text("x")

        entries = await service.get_diff_entries_between_paths(base, compare)

        assert [(e.file_path, e.change_type) for e in entries] == [
            ("only-here.txt", DiffChangeType.ADDED)
        ]

    @pytest.mark.asyncio
    async def test_configured_worktrees_directory_is_pruned(self, tree_pair: tuple[Path, Path]):
        base, compare = tree_pair
        config = Config()
        config.worktree.directory_name = "agent-worktrees"
        (compare / "agent-worktrees" / "task-1").mkdir(parents=True)
        (compare / "agent-worktrees" / "task-1" / "work.txt").write_text("x")
        (compare / "kept.txt").write_text("y")

        entries = await GitService(config).get_diff_entries_between_paths(base, compare)

        assert [e.file_path for e in entries] == ["kept.txt"]
