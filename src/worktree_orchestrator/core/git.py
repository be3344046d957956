"""
Git service: repository facts and the few git commands the orchestrator needs.

Every call opens a fresh git.Repo and closes it before returning. Nothing is
cached between calls, so results stay correct while humans or agents run git
in the same repository.
"""

import asyncio
import logging
import os
import stat
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

import git
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from worktree_orchestrator.config import Config
from worktree_orchestrator.core.process import GitProcessRunner
from worktree_orchestrator.core.tree_diff import compare_trees_async
from worktree_orchestrator.exceptions import RepositoryNotFoundError
from worktree_orchestrator.models.diff import DiffChangeType, DiffEntry
from worktree_orchestrator.models.repository import RepositoryInfo
from worktree_orchestrator.models.worktree_info import RegisteredWorktree

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def parse_count(output: str) -> int:
    """Parse rev-list --count output, degrading to 0 on anything unexpected."""
    try:
        return max(int(output.strip().splitlines()[0]), 0)
    except (ValueError, IndexError):
        return 0


class GitService:
    """Thin async wrapper over GitPython and the git CLI."""

    def __init__(
        self,
        config: Optional[Config] = None,
        runner: Optional[GitProcessRunner] = None,
    ):
        self.config = config or Config()
        self.runner = runner or GitProcessRunner(self.config.git)

    # ------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------

    async def open_repository(self, path: str | Path) -> RepositoryInfo:
        """
        Describe the repository enclosing path.

        Args:
            path: Any path inside a working directory.

        Returns:
            RepositoryInfo for the nearest enclosing repository root.

        Raises:
            RepositoryNotFoundError: If no repository encloses path.
        """

        def _open() -> RepositoryInfo:
            with self._open_repo(path, search_parent_directories=True) as repo:
                if repo.working_tree_dir is None:
                    raise RepositoryNotFoundError(str(path))

                work_dir = Path(repo.working_tree_dir)
                return RepositoryInfo(
                    path=work_dir,
                    name=work_dir.name,
                    current_branch=self._current_branch(repo),
                    default_branch=self._default_branch(repo),
                    worktrees_directory=work_dir / self.config.worktree.directory_name,
                    is_worktree=(work_dir / ".git").is_file(),
                )

        return await self._in_thread(_open)

    async def initialize_repository(self, path: str | Path) -> RepositoryInfo:
        """Run git init at path and describe the new repository."""
        target = Path(path)
        target.mkdir(parents=True, exist_ok=True)
        result = await self.runner.run(["init"], target)
        result.check("init")
        logger.info(f"Initialized repository at {target}")
        return await self.open_repository(target)

    # ------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------

    async def get_branches(self, repo_path: str | Path) -> List[str]:
        """Names of all local branches."""

        def _branches() -> List[str]:
            with self._open_repo(repo_path) as repo:
                return [head.name for head in repo.heads]

        return await self._in_thread(_branches)

    async def get_current_branch(self, repo_path: str | Path) -> str:
        """Branch checked out in repo_path, or the short SHA when detached."""

        def _current() -> str:
            with self._open_repo(repo_path) as repo:
                return self._current_branch(repo)

        return await self._in_thread(_current)

    async def branch_exists(self, repo_path: str | Path, branch_name: str) -> bool:
        """Check if a local branch exists."""

        def _exists() -> bool:
            with self._open_repo(repo_path) as repo:
                return branch_name in self._head_names(repo)

        return await self._in_thread(_exists)

    async def get_commits_ahead(
        self, repo_path: str | Path, branch: str, base_branch: str
    ) -> int:
        """
        Count commits on branch that are not on base_branch.

        A missing branch on either side counts as 0.
        """

        def _ahead() -> int:
            try:
                with self._open_repo(repo_path) as repo:
                    heads = self._head_names(repo)
                    if branch not in heads or base_branch not in heads:
                        return 0
                    return self._rev_list_count(
                        repo, f"refs/heads/{base_branch}..refs/heads/{branch}"
                    )
            except RepositoryNotFoundError:
                return 0

        return await self._in_thread(_ahead)

    async def get_commits_ahead_of_remote(self, repo_path: str | Path, branch: str) -> int:
        """Unpushed commits of branch; 0 when it has no remote-tracking branch."""
        return await self._in_thread(self._tracking_count, repo_path, branch, True)

    async def get_commits_behind_remote(self, repo_path: str | Path, branch: str) -> int:
        """Commits to pull into branch; 0 when it has no remote-tracking branch."""
        return await self._in_thread(self._tracking_count, repo_path, branch, False)

    # ------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------

    async def get_remote_url(self, repo_path: str | Path) -> Optional[str]:
        """URL of the configured remote, or None if it does not exist."""

        def _url() -> Optional[str]:
            try:
                with self._open_repo(repo_path) as repo:
                    return repo.remote(self.config.git.remote_name).url
            except (ValueError, RepositoryNotFoundError, GitCommandError) as e:
                logger.debug(f"No remote URL for {repo_path}: {e}")
                return None

        return await self._in_thread(_url)

    async def has_remote(self, repo_path: str | Path) -> bool:
        """Check if any remote is configured."""

        def _has_remote() -> bool:
            try:
                with self._open_repo(repo_path) as repo:
                    return len(repo.remotes) > 0
            except RepositoryNotFoundError:
                return False

        return await self._in_thread(_has_remote)

    async def push_all_branches(self, repo_path: str | Path) -> None:
        """
        Push every local branch to the default remote.

        Raises:
            GitProcessError: If git push exits non-zero.
        """
        result = await self.runner.run(["push", "--all"], Path(repo_path))
        result.check("push")
        logger.info(f"Pushed all branches of {repo_path}")

    async def pull(self, repo_path: str | Path) -> None:
        """
        Pull the current branch from its upstream.

        Raises:
            GitProcessError: If git pull exits non-zero.
        """
        result = await self.runner.run(["pull"], Path(repo_path))
        result.check("pull")
        logger.info(f"Pulled {repo_path}")

    # ------------------------------------------------------------
    # Diffs
    # ------------------------------------------------------------

    async def get_diff(
        self,
        repo_path: str | Path,
        from_ref: Optional[str] = None,
        to_ref: Optional[str] = None,
    ) -> List[DiffEntry]:
        """
        Diff two commits.

        Args:
            repo_path: Repository path.
            from_ref: Old side. None diffs against the empty tree, so every
                file in to_ref is reported as added.
            to_ref: New side, HEAD when omitted.

        Returns:
            One DiffEntry per changed file, with patch text and line counts.
            Unresolvable refs give an empty list.
        """

        def _diff() -> List[DiffEntry]:
            with self._open_repo(repo_path) as repo:
                try:
                    to_commit = repo.commit(to_ref or "HEAD")
                    if from_ref is None:
                        from_side = repo.tree(EMPTY_TREE_SHA)
                    else:
                        from_side = repo.commit(from_ref)
                except (ValueError, GitCommandError, BadName) as e:
                    logger.debug(f"Cannot resolve diff refs {from_ref}..{to_ref}: {e}")
                    return []

                diffs = from_side.diff(to_commit, create_patch=True)
                return [self._convert_diff(d) for d in diffs]

        return await self._in_thread(_diff)

    async def get_uncommitted_changes(self, repo_path: str | Path) -> List[DiffEntry]:
        """
        Changes of the working directory and index relative to HEAD.

        Untracked files that are not ignored are reported as added.
        """

        def _changes() -> List[DiffEntry]:
            with self._open_repo(repo_path) as repo:
                entries: List[DiffEntry] = []

                if repo.head.is_valid():
                    diffs = repo.head.commit.diff(None, create_patch=True)
                    entries.extend(self._convert_diff(d) for d in diffs)
                else:
                    entries.extend(
                        DiffEntry(file_path=path, change_type=DiffChangeType.ADDED)
                        for path, _stage in repo.index.entries
                    )

                known = {entry.file_path for entry in entries}
                for path in repo.untracked_files:
                    if path not in known:
                        entries.append(
                            DiffEntry(file_path=path, change_type=DiffChangeType.ADDED)
                        )

                return entries

        return await self._in_thread(_changes)

    async def get_diff_entries_between_paths(
        self, base_path: str | Path, compare_path: str | Path
    ) -> List[DiffEntry]:
        """Content diff of two independent directory trees."""
        return await compare_trees_async(
            base_path, compare_path, self.config.tree_diff_settings()
        )

    # ------------------------------------------------------------
    # .gitignore
    # ------------------------------------------------------------

    async def ensure_gitignore_entry(self, repo_path: str | Path, entry: str) -> None:
        """
        Append entry to .gitignore unless an equivalent line exists.

        Comparison ignores a trailing slash and letter case. Entries without
        a file extension are treated as directories and get a trailing slash.
        Existing lines are never rewritten or reordered.
        """
        await self.ensure_gitignore_entries(repo_path, [entry])

    async def ensure_gitignore_entries(self, repo_path: str | Path, entries: List[str]) -> None:
        """Append every missing entry to .gitignore in one write."""
        await self._in_thread(self._append_gitignore_entries, Path(repo_path), entries)

    @staticmethod
    def _append_gitignore_entries(repo_path: Path, entries: List[str]) -> None:
        gitignore = repo_path / ".gitignore"
        existing = ""
        if gitignore.exists():
            existing = gitignore.read_text(encoding="utf-8")

        present = {line.strip().rstrip("/").lower() for line in existing.splitlines()}
        to_add: List[str] = []

        for entry in entries:
            normalized = entry.strip().rstrip("/")
            if not normalized or normalized.lower() in present:
                continue
            if not os.path.splitext(normalized)[1]:
                normalized += "/"
            to_add.append(normalized)
            present.add(normalized.rstrip("/").lower())

        if not to_add:
            return

        prefix = "\n" if existing and not existing.endswith("\n") else ""
        with open(gitignore, "a", encoding="utf-8") as f:
            f.write(prefix + "\n".join(to_add) + "\n")
        logger.debug(f"Added {to_add} to {gitignore}")

    # ------------------------------------------------------------
    # Worktree registrations
    # ------------------------------------------------------------

    async def list_registered_worktrees(self, repo_path: str | Path) -> List[RegisteredWorktree]:
        """
        Worktrees git knows about, including the main working directory.

        Degrades to an empty list if git cannot be queried.
        """
        result = await self.runner.run(["worktree", "list", "--porcelain"], Path(repo_path))
        if not result.ok:
            logger.debug(f"git worktree list failed in {repo_path}: {result.stderr}")
            return []
        return self.parse_worktree_list(result.stdout)

    @staticmethod
    def parse_worktree_list(output: str) -> List[RegisteredWorktree]:
        """Parse `git worktree list --porcelain` output."""
        worktrees: List[RegisteredWorktree] = []
        current: dict = {}

        def flush() -> None:
            if current.get("path"):
                branch_ref = current.get("branch", "")
                if branch_ref.startswith("refs/heads/"):
                    branch = branch_ref[len("refs/heads/"):]
                else:
                    branch = branch_ref or "(detached)"
                worktrees.append(
                    RegisteredWorktree(
                        path=Path(current["path"]),
                        branch=branch,
                        head_commit=current.get("head", "")[:7],
                        is_detached=current.get("detached", False),
                        is_bare=current.get("bare", False),
                    )
                )
            current.clear()

        for line in output.split("\n"):
            line = line.strip()

            if not line:
                flush()
                continue

            if line.startswith("worktree "):
                current["path"] = line[len("worktree "):]
            elif line.startswith("HEAD "):
                current["head"] = line[len("HEAD "):]
            elif line.startswith("branch "):
                current["branch"] = line[len("branch "):]
            elif line == "detached":
                current["detached"] = True
            elif line == "bare":
                current["bare"] = True

        flush()
        return worktrees

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    @staticmethod
    async def _in_thread(func: Callable[..., T], *args) -> T:
        return await asyncio.to_thread(func, *args)

    @staticmethod
    def _open_repo(path: str | Path, search_parent_directories: bool = False) -> git.Repo:
        try:
            return git.Repo(path, search_parent_directories=search_parent_directories)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise RepositoryNotFoundError(str(path)) from e

    @staticmethod
    def _head_names(repo: git.Repo) -> set:
        return {head.name for head in repo.heads}

    @staticmethod
    def _current_branch(repo: git.Repo) -> str:
        if repo.head.is_detached:
            return repo.head.commit.hexsha[:7]
        return repo.active_branch.name

    def _default_branch(self, repo: git.Repo) -> str:
        heads = self._head_names(repo)
        for candidate in self.config.worktree.default_branch_candidates:
            if candidate in heads:
                return candidate
        return self._current_branch(repo)

    @staticmethod
    def _rev_list_count(repo: git.Repo, range_spec: str) -> int:
        try:
            return parse_count(repo.git.rev_list("--count", range_spec))
        except GitCommandError as e:
            logger.debug(f"rev-list {range_spec} failed: {e}")
            return 0

    def _tracking_count(self, repo_path: str | Path, branch: str, ahead: bool) -> int:
        try:
            with self._open_repo(repo_path) as repo:
                if branch not in self._head_names(repo):
                    return 0
                tracking = repo.heads[branch].tracking_branch()
                if tracking is None:
                    return 0
                local = f"refs/heads/{branch}"
                remote = tracking.path
                range_spec = f"{remote}..{local}" if ahead else f"{local}..{remote}"
                return self._rev_list_count(repo, range_spec)
        except (RepositoryNotFoundError, ValueError) as e:
            logger.debug(f"No tracking information for {branch}: {e}")
            return 0

    @staticmethod
    def _convert_diff(diff: git.Diff) -> DiffEntry:
        patch = diff.diff
        if isinstance(patch, bytes):
            patch = patch.decode("utf-8", errors="replace")

        lines_added = 0
        lines_deleted = 0
        in_hunk = False
        for line in (patch or "").splitlines():
            if line.startswith("@@"):
                in_hunk = True
            elif in_hunk and line.startswith("+"):
                lines_added += 1
            elif in_hunk and line.startswith("-"):
                lines_deleted += 1

        if diff.new_file:
            change_type = DiffChangeType.ADDED
        elif diff.deleted_file:
            change_type = DiffChangeType.DELETED
        elif diff.renamed_file:
            change_type = DiffChangeType.RENAMED
        elif getattr(diff, "copied_file", False):
            change_type = DiffChangeType.COPIED
        elif (
            diff.a_mode
            and diff.b_mode
            and stat.S_IFMT(diff.a_mode) != stat.S_IFMT(diff.b_mode)
        ):
            change_type = DiffChangeType.TYPE_CHANGED
        elif patch or diff.a_blob != diff.b_blob:
            change_type = DiffChangeType.MODIFIED
        else:
            change_type = DiffChangeType.UNMODIFIED

        file_path = diff.b_path or diff.a_path or ""
        old_path = diff.a_path if diff.a_path and diff.a_path != file_path else None

        return DiffEntry(
            file_path=file_path,
            old_path=old_path,
            change_type=change_type,
            lines_added=lines_added,
            lines_deleted=lines_deleted,
            patch=patch or None,
        )


