"""
Async git process invocation.

Runs the git binary with redirected output and returns the exit code and
captured text. Exit codes are never turned into exceptions here; callers
decide through ProcessResult.check() whether a failure is fatal.
"""

import asyncio
import logging
import re
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from worktree_orchestrator.config import GitSettings
from worktree_orchestrator.exceptions import GitProcessError, RepositoryLockedError

logger = logging.getLogger(__name__)

LOCK_PATTERNS = [
    re.compile(r"Unable to create '.*\.lock'"),
    re.compile(r"index\.lock"),
    re.compile(r"another git process seems to be running", re.IGNORECASE),
]


def is_lock_failure(stderr: str) -> bool:
    """Check whether git stderr reports a held repository lock."""
    return any(pattern.search(stderr) for pattern in LOCK_PATTERNS)


@dataclass
class ProcessResult:
    """Completed git process."""

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    cwd: Optional[Path] = field(default=None)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for callers that scan both streams."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def check(self, operation: str) -> "ProcessResult":
        """
        Raise if the process failed.

        Args:
            operation: Short name of the operation, used in the error message.

        Returns:
            self, so calls can be chained.

        Raises:
            RepositoryLockedError: If git reports a held lock file.
            GitProcessError: For any other non-zero exit.
        """
        if self.ok:
            return self

        if is_lock_failure(self.stderr):
            raise RepositoryLockedError(operation, self.returncode, self.stderr, self.args)
        raise GitProcessError(operation, self.returncode, self.stderr, self.args)


class GitProcessRunner:
    """Spawns git processes asynchronously."""

    def __init__(self, settings: Optional[GitSettings] = None):
        self.settings = settings or GitSettings()

    async def run(self, args: List[str], cwd: Path) -> ProcessResult:
        """
        Run a git command and wait for it to finish.

        Args:
            args: Arguments passed after the git binary.
            cwd: Working directory, normally the repository root.

        Returns:
            ProcessResult with decoded stdout and stderr.

        Raises:
            GitProcessError: If the process times out.
            asyncio.CancelledError: If the awaiting task is cancelled; the
                child process is killed first.
        """
        command = [self.settings.binary, *args]
        logger.debug(f"Running {' '.join(command)} in {cwd}")

        kwargs = {}
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            **kwargs,
        )

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=self.settings.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            self._kill(proc)
            await proc.wait()
            raise GitProcessError(
                args[0] if args else "git",
                -1,
                f"timed out after {self.settings.timeout_seconds}s",
                command,
            ) from e
        except asyncio.CancelledError:
            self._kill(proc)
            await asyncio.shield(proc.wait())
            raise

        return ProcessResult(
            args=command,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
            cwd=Path(cwd),
        )

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
