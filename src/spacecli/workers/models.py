"""Data models for the Post-Init Executor."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class PostInitTask:
    """Commands to run inside one worktree.

    Attributes:
        repository: Repository name, used for logging.
        worktree: Working directory for the commands.
        commands: Shell commands, run in order.
        env: Extra environment variables for the commands.
    """

    repository: str
    worktree: Path
    commands: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CommandResult:
    """Result of a single shell command."""

    command: str
    returncode: int | None
    output: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass
class PostInitResult:
    """Result of a post-init task.

    Attributes:
        repository: Repository name.
        success: Whether every command succeeded.
        commands: Per-command results, up to and including the first failure.
        skipped: Commands not run (dry run, or after a failure).
        error: Error message if the task failed.
        timed_out: Whether the failure was a timeout.
    """

    repository: str
    success: bool
    commands: list[CommandResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    error: str | None = None
    timed_out: bool = False
