"""Managed worktree lifecycle: create, list, refresh, merge and delete."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from worktree_orchestrator.config import Config
from worktree_orchestrator.core.branch_names import BranchNameGenerator
from worktree_orchestrator.core.git import GitService
from worktree_orchestrator.core.merge_outcome import MergeOutcomeClassifier
from worktree_orchestrator.core.process import GitProcessRunner, ProcessResult, is_lock_failure
from worktree_orchestrator.exceptions import (
    OrchestratorError,
    WorktreeError,
    WorktreeNotFoundError,
)
from worktree_orchestrator.models.merge import MergeResult, MergeStatus
from worktree_orchestrator.models.worktree_info import (
    WorktreeInfo,
    WorktreeMetadata,
    WorktreeStatus,
    derive_status,
)
from worktree_orchestrator.utils.io import atomic_write_text, remove_tree

logger = logging.getLogger(__name__)

HEAD_REF_PREFIX = "ref: refs/heads/"
GITDIR_PREFIX = "gitdir:"


class WorktreeService:
    """
    Manages task worktrees under <repo>/.worktrees.

    Each managed worktree is a git worktree on its own branch plus a
    metadata file in the worktree root. The metadata file is the only state
    this service persists; everything else is re-read from git on every call.
    """

    def __init__(
        self,
        git_service: Optional[GitService] = None,
        branch_name_generator: Optional[BranchNameGenerator] = None,
        runner: Optional[GitProcessRunner] = None,
        classifier: Optional[MergeOutcomeClassifier] = None,
        config: Optional[Config] = None,
    ):
        self.config = config or Config()
        self.runner = runner or GitProcessRunner(self.config.git)
        self.git = git_service or GitService(self.config, self.runner)
        self.branch_names = branch_name_generator or BranchNameGenerator(self.config.worktree)
        self.classifier = classifier or MergeOutcomeClassifier()

    @property
    def metadata_filename(self) -> str:
        return self.config.worktree.metadata_filename

    # ------------------------------------------------------------
    # Create
    # ------------------------------------------------------------

    async def create_worktree(
        self,
        repo_path: str | Path,
        task_description: str,
        base_branch: Optional[str] = None,
        title: Optional[str] = None,
        branch_name: Optional[str] = None,
    ) -> WorktreeInfo:
        """
        Create a worktree on a new branch for a task.

        Args:
            repo_path: Path inside the repository.
            task_description: Free text the branch name is derived from.
            base_branch: Branch to start from. Defaults to the repository's
                default branch.
            title: Optional display title stored in metadata.
            branch_name: Caller-chosen branch name; a timestamp is appended.

        Returns:
            WorktreeInfo for the new worktree, with status ACTIVE.

        Raises:
            RepositoryNotFoundError: If repo_path is not inside a repository.
            WorktreeError: If git refuses to create the worktree or the
                metadata cannot be written.
        """
        repo = await self.git.open_repository(repo_path)
        base = base_branch or repo.default_branch

        branch = await self._unique_branch_name(repo.path, task_description, branch_name)

        worktrees_dir = repo.worktrees_directory
        worktrees_dir.mkdir(parents=True, exist_ok=True)
        await self.git.ensure_gitignore_entries(
            repo.path, [self.config.worktree.directory_name, self.metadata_filename]
        )

        worktree_id = uuid.uuid4().hex[:8]
        worktree_path = worktrees_dir / f"{self._directory_stem(branch)}-{worktree_id}"

        result = await self.runner.run(
            ["worktree", "add", "-b", branch, str(worktree_path), base], repo.path
        )
        if not result.ok:
            raise WorktreeError(f"Failed to create worktree: {result.stderr}")

        metadata = WorktreeMetadata(
            id=worktree_id,
            task_description=task_description,
            title=title,
            base_branch=base,
            created_at=datetime.now(timezone.utc),
        )

        try:
            self._write_metadata(worktree_path, metadata)
        except OSError as e:
            await self._rollback_create(repo.path, worktree_path, branch)
            raise WorktreeError(f"Failed to write worktree metadata: {e}") from e

        logger.info(f"Created worktree {worktree_id} on {branch} at {worktree_path}")

        return WorktreeInfo(
            id=worktree_id,
            path=worktree_path,
            branch_name=branch,
            base_branch=base,
            task_description=task_description,
            title=title,
            created_at=metadata.created_at,
            status=WorktreeStatus.ACTIVE,
        )

    async def _unique_branch_name(
        self, repo_root: Path, task_description: str, branch_name: Optional[str]
    ) -> str:
        now = datetime.now(timezone.utc)
        while True:
            if branch_name:
                candidate = self.branch_names.add_timestamp(branch_name, now)
            else:
                candidate = self.branch_names.generate(task_description, now)
            if not await self.git.branch_exists(repo_root, candidate):
                return candidate
            now += timedelta(seconds=1)

    def _directory_stem(self, branch: str) -> str:
        prefix = self.config.worktree.branch_prefix
        if branch.startswith(prefix):
            branch = branch[len(prefix):]
        return branch.replace("/", "-")

    async def _rollback_create(self, repo_root: Path, worktree_path: Path, branch: str) -> None:
        """Undo a half-finished create. Every step is best-effort."""
        result = await self.runner.run(
            ["worktree", "remove", "--force", str(worktree_path)], repo_root
        )
        if not result.ok:
            logger.warning(f"Rollback: could not remove worktree {worktree_path}: {result.stderr}")

        try:
            await asyncio.to_thread(remove_tree, worktree_path)
        except OSError as e:
            logger.warning(f"Rollback: could not delete {worktree_path}: {e}")

        await self._prune(repo_root)

        result = await self.runner.run(["branch", "-D", branch], repo_root)
        if not result.ok:
            logger.warning(f"Rollback: could not delete branch {branch}: {result.stderr}")

    # ------------------------------------------------------------
    # Read
    # ------------------------------------------------------------

    async def get_worktrees(self, repo_path: str | Path) -> List[WorktreeInfo]:
        """
        List managed worktrees, newest first.

        Directories that git does not have registered, and directories whose
        metadata is missing or unreadable, are left out.
        """
        repo = await self.git.open_repository(repo_path)
        registered = await self._registered_paths(repo.path)

        worktrees: List[WorktreeInfo] = []
        for directory in self._worktree_directories(repo.worktrees_directory):
            if self._resolve(directory) not in registered:
                logger.debug(f"Skipping unregistered directory {directory}")
                continue
            info = await self._load_worktree(repo.path, directory)
            if info is not None:
                worktrees.append(info)

        worktrees.sort(key=lambda wt: wt.created_at, reverse=True)
        return worktrees

    async def get_worktree(self, repo_path: str | Path, worktree_id: str) -> Optional[WorktreeInfo]:
        """Look up one managed worktree by id, or None if it does not exist."""
        repo = await self.git.open_repository(repo_path)
        directory = self._find_directory(repo.worktrees_directory, worktree_id)
        if directory is None:
            return None

        registered = await self._registered_paths(repo.path)
        if self._resolve(directory) not in registered:
            return None

        return await self._load_worktree(repo.path, directory)

    async def refresh_worktree_status(self, repo_path: str | Path, worktree_id: str) -> WorktreeInfo:
        """
        Re-derive the status of a worktree from git.

        Raises:
            WorktreeNotFoundError: If no managed worktree has this id.
        """
        info = await self.get_worktree(repo_path, worktree_id)
        if info is None:
            raise WorktreeNotFoundError(worktree_id)
        return info

    async def _load_worktree(self, repo_root: Path, directory: Path) -> Optional[WorktreeInfo]:
        metadata = self._read_metadata(directory)
        if metadata is None or not metadata.is_known:
            return None

        try:
            branch = await self._read_branch(directory)
            changes = await self.git.get_uncommitted_changes(directory)
        except OrchestratorError as e:
            logger.debug(f"Cannot inspect worktree {directory}: {e}")
            return None

        has_changes = any(c.file_path != self.metadata_filename for c in changes)
        commits_ahead = await self.git.get_commits_ahead(repo_root, branch, metadata.base_branch)
        unpushed = await self.git.get_commits_ahead_of_remote(repo_root, branch)

        return WorktreeInfo(
            id=metadata.id,
            path=directory,
            branch_name=branch,
            base_branch=metadata.base_branch,
            task_description=metadata.task_description,
            title=metadata.title,
            created_at=metadata.created_at,
            status=derive_status(has_changes, commits_ahead),
            has_uncommitted_changes=has_changes,
            commits_ahead=commits_ahead,
            unpushed_commits=unpushed,
            claude_session_id=metadata.claude_session_id,
            session_was_active=metadata.session_was_active,
            accumulated_duration_ms=metadata.accumulated_duration_ms,
            was_job=metadata.was_job,
            last_iteration=metadata.last_iteration,
            job_max_iterations=metadata.job_max_iterations,
        )

    async def _read_branch(self, directory: Path) -> str:
        branch = self._read_head_pointer(directory)
        if branch is not None:
            return branch
        return await self.git.get_current_branch(directory)

    @staticmethod
    def _read_head_pointer(directory: Path) -> Optional[str]:
        """
        Read the branch from the worktree's HEAD file without opening a repo.

        A linked worktree has a .git file of the form "gitdir: <path>" that
        points at its private git directory, which holds HEAD.
        """
        dot_git = directory / ".git"
        try:
            if dot_git.is_file():
                content = dot_git.read_text(encoding="utf-8").strip()
                if not content.startswith(GITDIR_PREFIX):
                    return None
                git_dir = Path(content[len(GITDIR_PREFIX):].strip())
                if not git_dir.is_absolute():
                    git_dir = directory / git_dir
            else:
                git_dir = dot_git

            head = (git_dir / "HEAD").read_text(encoding="utf-8").strip()
        except OSError:
            return None

        if head.startswith(HEAD_REF_PREFIX):
            return head[len(HEAD_REF_PREFIX):]
        return None

    # ------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------

    async def delete_worktree(self, repo_path: str | Path, worktree_id: str, force: bool = False) -> None:
        """
        Delete a managed worktree. Its branch is kept.

        Args:
            repo_path: Path inside the repository.
            worktree_id: Id of the worktree to delete.
            force: Pass --force to git worktree remove.

        Raises:
            WorktreeNotFoundError: If no metadata carries this id.
            WorktreeError: If the directory cannot be deleted after retries.
        """
        repo = await self.git.open_repository(repo_path)
        directory = self._find_directory(repo.worktrees_directory, worktree_id)
        if directory is None:
            raise WorktreeNotFoundError(worktree_id)

        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(directory))

        result = await self.runner.run(args, repo.path)
        if not result.ok:
            logger.warning(
                f"git worktree remove failed for {directory}, deleting directly: {result.stderr}"
            )

        await self._remove_directory(directory)
        await self._prune(repo.path)

        logger.info(f"Deleted worktree {worktree_id}")

    async def _remove_directory(self, directory: Path) -> None:
        delays = [0.0, *self.config.worktree.delete_retry_delays]
        last_error: Optional[OSError] = None

        for attempt, delay in enumerate(delays, start=1):
            if delay:
                await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(remove_tree, directory)
                return
            except OSError as e:
                last_error = e
                logger.debug(f"Delete attempt {attempt} of {directory} failed: {e}")

        raise WorktreeError(f"Failed to delete {directory}: {last_error}") from last_error

    async def _prune(self, repo_root: Path) -> None:
        result = await self.runner.run(["worktree", "prune"], repo_root)
        if not result.ok:
            logger.warning(f"git worktree prune failed: {result.stderr}")

    # ------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------

    async def merge_worktree(
        self, repo_path: str | Path, worktree_id: str, target_branch: str
    ) -> MergeResult:
        """
        Merge a worktree's branch into target_branch in the main working copy.

        Conflicts never leave the repository mid-merge: the merge is aborted
        and the conflicting paths are reported in the result.

        Raises:
            WorktreeNotFoundError: If no managed worktree has this id.
            RepositoryLockedError: If git reports a held repository lock.
        """
        repo = await self.git.open_repository(repo_path)
        directory = self._find_directory(repo.worktrees_directory, worktree_id)
        metadata = self._read_metadata(directory) if directory else None
        if directory is None or metadata is None:
            raise WorktreeNotFoundError(worktree_id)

        branch = await self._read_branch(directory)

        if await self._merge_in_progress(repo.path):
            return MergeResult(
                success=False,
                status=MergeStatus.FAILED,
                error_message="A merge is already in progress in the main working copy",
            )

        checkout = await self.runner.run(["checkout", target_branch], repo.path)
        if not checkout.ok:
            self._raise_if_locked(checkout, "checkout")
            return MergeResult(
                success=False,
                status=MergeStatus.FAILED,
                error_message=f"Failed to checkout {target_branch}: {checkout.stderr}",
            )

        merge = await self.runner.run(["merge", branch, "--no-edit"], repo.path)

        if merge.ok:
            status = self.classifier.classify_success(merge.stdout)
            head = await self.runner.run(["rev-parse", "HEAD"], repo.path)
            logger.info(f"Merged {branch} into {target_branch}: {status.value}")
            return MergeResult(
                success=True,
                status=status,
                merge_commit_sha=head.stdout if head.ok else None,
            )

        if self.classifier.has_conflicts(merge.stdout, merge.stderr):
            files = self.classifier.parse_conflicting_files(merge.output)
            # modify/delete conflicts print no "Merge conflict in" line
            unmerged = await self.runner.run(
                ["diff", "--name-only", "--diff-filter=U"], repo.path
            )
            if unmerged.ok:
                files += [
                    path for path in unmerged.stdout.splitlines() if path and path not in files
                ]
            abort = await self.runner.run(["merge", "--abort"], repo.path)
            if not abort.ok:
                logger.warning(f"git merge --abort failed: {abort.stderr}")
            logger.info(f"Merge of {branch} into {target_branch} conflicted in {len(files)} file(s)")
            return MergeResult(
                success=False,
                status=MergeStatus.CONFLICTS,
                conflicting_files=files,
                error_message=f"Merge conflicts in {len(files)} file(s)",
            )

        self._raise_if_locked(merge, "merge")
        return MergeResult(
            success=False,
            status=MergeStatus.FAILED,
            error_message=merge.stderr or merge.stdout,
        )

    async def _merge_in_progress(self, repo_root: Path) -> bool:
        result = await self.runner.run(["rev-parse", "--git-path", "MERGE_HEAD"], repo_root)
        if not result.ok or not result.stdout:
            return False
        merge_head = Path(result.stdout)
        if not merge_head.is_absolute():
            merge_head = repo_root / merge_head
        return merge_head.exists()

    @staticmethod
    def _raise_if_locked(result: ProcessResult, operation: str) -> None:
        if is_lock_failure(result.stderr):
            result.check(operation)

    # ------------------------------------------------------------
    # Metadata mutators
    # ------------------------------------------------------------

    async def update_claude_session_id(
        self, repo_path: str | Path, worktree_id: str, session_id: Optional[str]
    ) -> None:
        await self._update_metadata(repo_path, worktree_id, claude_session_id=session_id)

    async def update_session_was_active(
        self, repo_path: str | Path, worktree_id: str, was_active: bool
    ) -> None:
        await self._update_metadata(repo_path, worktree_id, session_was_active=was_active)

    async def update_title(self, repo_path: str | Path, worktree_id: str, title: Optional[str]) -> None:
        await self._update_metadata(repo_path, worktree_id, title=title)

    async def update_accumulated_duration(
        self, repo_path: str | Path, worktree_id: str, duration_ms: int
    ) -> None:
        """Store the total session time; the value replaces the previous one."""
        await self._update_metadata(repo_path, worktree_id, accumulated_duration_ms=duration_ms)

    async def update_job_state(
        self,
        repo_path: str | Path,
        worktree_id: str,
        was_job: bool,
        last_iteration: int,
        job_max_iterations: Optional[int] = None,
    ) -> None:
        await self._update_metadata(
            repo_path,
            worktree_id,
            was_job=was_job,
            last_iteration=last_iteration,
            job_max_iterations=job_max_iterations,
        )

    async def _update_metadata(self, repo_path: str | Path, worktree_id: str, **changes: Any) -> None:
        """Read-modify-write of metadata fields; a no-op if the worktree is gone."""
        repo = await self.git.open_repository(repo_path)
        directory = self._find_directory(repo.worktrees_directory, worktree_id)
        metadata = self._read_metadata(directory) if directory else None
        if directory is None or metadata is None:
            logger.debug(f"No metadata for worktree {worktree_id}, skipping update")
            return

        self._write_metadata(directory, metadata.model_copy(update=changes))

    # ------------------------------------------------------------
    # Metadata files
    # ------------------------------------------------------------

    def _read_metadata(self, directory: Path) -> Optional[WorktreeMetadata]:
        metadata_path = directory / self.metadata_filename
        try:
            return WorktreeMetadata.model_validate_json(metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.debug(f"Unreadable metadata in {metadata_path}: {e}")
            return None

    def _write_metadata(self, directory: Path, metadata: WorktreeMetadata) -> None:
        atomic_write_text(directory / self.metadata_filename, metadata.to_json())

    def _find_directory(self, worktrees_dir: Path, worktree_id: str) -> Optional[Path]:
        for directory in self._worktree_directories(worktrees_dir):
            metadata = self._read_metadata(directory)
            if metadata is not None and metadata.id == worktree_id:
                return directory
        return None

    @staticmethod
    def _worktree_directories(worktrees_dir: Path) -> List[Path]:
        if not worktrees_dir.is_dir():
            return []
        return sorted(p for p in worktrees_dir.iterdir() if p.is_dir())

    async def _registered_paths(self, repo_root: Path) -> set:
        registered = await self.git.list_registered_worktrees(repo_root)
        return {self._resolve(wt.path) for wt in registered}

    @staticmethod
    def _resolve(path: Path) -> Path:
        try:
            return path.resolve()
        except OSError:
            return path
