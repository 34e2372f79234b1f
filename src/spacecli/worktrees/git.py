"""GitWorktreeManager - git worktree operations for one source repository."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path

from spacecli.exceptions import ProvisioningError, WorktreeLockError
from spacecli.logging import sanitize_for_log

logger = logging.getLogger("spacecli.worktrees.git")

DEFAULT_GIT_TIMEOUT = 120.0

_LOCK_ERROR = re.compile(
    r"index\.lock|\.lock'?: File exists|could not lock|Unable to create .*\.lock|is locked",
    re.IGNORECASE,
)


def is_lock_error(stderr: str | None) -> bool:
    """Whether git's error output describes lock contention."""
    return bool(stderr and _LOCK_ERROR.search(stderr))


class GitWorktreeManager:
    """Creates, inspects and removes worktrees of a local clone.

    The pipeline depends on three operations: create_worktree,
    worktree_exists and remove_worktree. Lock contention is raised as
    WorktreeLockError so callers can retry it.
    """

    def __init__(self, repo_path: str | Path, timeout: float = DEFAULT_GIT_TIMEOUT) -> None:
        """Initialize the manager.

        Args:
            repo_path: Path to the local repository clone.
            timeout: Seconds allowed per git command.
        """
        self.repo_path = Path(repo_path)
        self.timeout = timeout

    def _run_git(self, *args: str) -> str:
        """Run a git command in the repo directory.

        Args:
            *args: Git command arguments

        Returns:
            Command stdout

        Raises:
            subprocess.CalledProcessError: If command fails
            subprocess.TimeoutExpired: If command exceeds the timeout
        """
        logger.debug("git %s (cwd=%s)", " ".join(args), self.repo_path)
        result = subprocess.run(
            ["git", *args],
            cwd=self.repo_path,
            capture_output=True,
            text=True,
            check=True,
            timeout=self.timeout,
        )
        return result.stdout.strip()

    def validate_repository(self) -> None:
        """Check the source is an existing git repository.

        Raises:
            ProvisioningError: If the directory is missing or not a repository.
        """
        if not self.repo_path.exists():
            raise ProvisioningError(f"Repository directory does not exist: {self.repo_path}")
        if not (self.repo_path / ".git").exists():
            raise ProvisioningError(f"Directory is not a git repository: {self.repo_path}")

    def list_worktrees(self) -> list[dict[str, str]]:
        """List registered worktrees as ``{"path": ..., "branch": ...}`` entries."""
        try:
            output = self._run_git("worktree", "list", "--porcelain")
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise ProvisioningError(f"Failed to list worktrees of {self.repo_path}: {e}") from e

        worktrees: list[dict[str, str]] = []
        current: dict[str, str] = {}
        for line in output.splitlines():
            if line.startswith("worktree "):
                if current:
                    worktrees.append(current)
                current = {"path": line[len("worktree ") :], "branch": ""}
            elif line.startswith("branch "):
                current["branch"] = line[len("branch ") :].removeprefix("refs/heads/")
        if current:
            worktrees.append(current)
        return worktrees

    def worktree_exists(self, path: str | Path, branch: str | None = None) -> bool:
        """Check whether a path is a registered worktree of this repository.

        Args:
            path: Worktree path.
            branch: When given, the worktree must also have this branch checked out.
        """
        target = Path(path).resolve()
        for worktree in self.list_worktrees():
            if Path(worktree["path"]).resolve() == target:
                return branch is None or worktree["branch"] == branch
        return False

    def branch_exists(self, branch: str) -> bool:
        """Check whether a local branch exists."""
        try:
            self._run_git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}")
        except subprocess.CalledProcessError:
            return False
        except (subprocess.TimeoutExpired, OSError) as e:
            raise ProvisioningError(f"Failed to look up branch '{branch}': {e}") from e
        return True

    def _resolve_base(self, base: str) -> str:
        """Prefer the remote-tracking ref of the base branch when there is one."""
        try:
            self._run_git("show-ref", "--verify", "--quiet", f"refs/remotes/origin/{base}")
        except subprocess.CalledProcessError:
            return base
        except (subprocess.TimeoutExpired, OSError) as e:
            raise ProvisioningError(f"Failed to resolve base branch '{base}': {e}") from e
        return f"origin/{base}"

    def create_worktree(self, path: str | Path, branch: str, base: str = "main") -> None:
        """Add a worktree at ``path`` with ``branch`` checked out.

        Creates the branch from ``base`` when it does not exist yet.

        Raises:
            WorktreeLockError: If git reported lock contention.
            ProvisioningError: For any other git failure.
        """
        path = Path(path)
        logger.info("Creating worktree %s on branch %s", path, branch)
        try:
            self._run_git("worktree", "prune")
            path.parent.mkdir(parents=True, exist_ok=True)
            if self.branch_exists(branch):
                self._run_git("worktree", "add", str(path), branch)
            else:
                self._run_git("worktree", "add", "-b", branch, str(path), self._resolve_base(base))
        except subprocess.CalledProcessError as e:
            stderr = sanitize_for_log(e.stderr or "")
            logger.error("Failed to create worktree %s: %s", path, stderr)
            if is_lock_error(stderr):
                raise WorktreeLockError(f"Repository is locked: {stderr.strip()}") from e
            raise ProvisioningError(
                f"Failed to create worktree '{path}' on branch '{branch}': {stderr.strip()}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(
                f"git timed out after {self.timeout}s creating worktree '{path}'"
            ) from e
        except OSError as e:
            raise ProvisioningError(f"Failed to create worktree '{path}': {e}") from e
        logger.info("Created worktree %s", path)

    def remove_worktree(self, path: str | Path) -> None:
        """Remove a worktree, or a plain directory occupying the path.

        Raises:
            WorktreeLockError: If git reported lock contention.
            ProvisioningError: If removal fails.
        """
        path = Path(path)
        logger.info("Removing worktree %s", path)
        try:
            if self.worktree_exists(path):
                self._run_git("worktree", "remove", "--force", str(path))
            elif path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
            self._run_git("worktree", "prune")
        except subprocess.CalledProcessError as e:
            stderr = sanitize_for_log(e.stderr or "")
            logger.error("Failed to remove worktree %s: %s", path, stderr)
            if is_lock_error(stderr):
                raise WorktreeLockError(f"Repository is locked: {stderr.strip()}") from e
            raise ProvisioningError(f"Failed to remove worktree '{path}': {stderr.strip()}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(
                f"git timed out after {self.timeout}s removing worktree '{path}'"
            ) from e
        except OSError as e:
            raise ProvisioningError(f"Failed to remove '{path}': {e}") from e
        logger.info("Removed worktree %s", path)
