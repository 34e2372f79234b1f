"""Data models for the Workspace Orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from spacecli.exceptions import CancellationError

if TYPE_CHECKING:
    from pathlib import Path

    from spacecli.config import ProjectConfig, RepositorySpec
    from spacecli.context import ContextResult
    from spacecli.validation import ValidationOutcome
    from spacecli.workers import PostInitResult
    from spacecli.worktrees import WorktreeOutcome, WorktreeTarget


class PipelineState(str, Enum):
    """Pipeline run states. FAILED and COMPLETED are terminal."""

    NOT_STARTED = "not_started"
    VALIDATING = "validating"
    PROVISIONING = "provisioning"
    GENERATING_CONTEXT = "generating_context"
    RUNNING_POST_INIT = "running_post_init"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.COMPLETED, PipelineState.FAILED)


@dataclass(frozen=True)
class RunRequest:
    """What the user asked for.

    Attributes:
        issue_ids: Issue ids to validate and embed in names.
        slug: Short description used in branch and workspace names.
        dry_run: Report every decision without mutating anything.
        interactive: Whether the user can be prompted.
        force: Overwrite conflicting workspaces without prompting.
        allow_unverified: Continue when an issue id could not be checked in time.
    """

    issue_ids: tuple[int, ...]
    slug: str
    dry_run: bool = False
    interactive: bool = True
    force: bool = False
    allow_unverified: bool = False


@dataclass
class RepositoryRecord:
    """Per-repository state within one run.

    Attributes:
        spec: Repository configuration.
        target: Resolved worktree path and branch.
        worktree: Provisioning outcome, once known.
        context: Context generation result, once known.
        post_init: Post-init result, once known.
        incomplete: Mutation was in flight when the run was cancelled.
        failure: Why this repository dropped out of the run.
    """

    spec: RepositorySpec
    target: WorktreeTarget
    worktree: WorktreeOutcome | None = None
    context: ContextResult | None = None
    post_init: PostInitResult | None = None
    incomplete: bool = False
    failure: str | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def path(self) -> Path:
        return self.target.path

    @property
    def branch(self) -> str:
        return self.target.branch

    @property
    def required(self) -> bool:
        return self.spec.required

    @property
    def ok(self) -> bool:
        """Whether the repository is still usable by later stages."""
        return self.failure is None and not self.incomplete

    def fail(self, reason: str) -> None:
        if self.failure is None:
            self.failure = reason


@dataclass
class RunContext:
    """Mutable state of one run. Owned by the orchestrator, never persisted."""

    project: ProjectConfig
    request: RunRequest
    workspace: str
    repositories: list[RepositoryRecord] = field(default_factory=list)
    validation: dict[int, ValidationOutcome] = field(default_factory=dict)

    @property
    def issue_titles(self) -> tuple[str, ...]:
        return tuple(
            f"#{outcome.issue_id}: {outcome.title}"
            for outcome in self.validation.values()
            if outcome.title
        )

    def record(self, name: str) -> RepositoryRecord:
        for record in self.repositories:
            if record.name == name:
                return record
        raise KeyError(name)

    def ok_records(self) -> list[RepositoryRecord]:
        """Repositories that have not failed so far, in configuration order."""
        return [r for r in self.repositories if r.ok]

    def failed_required(self) -> list[RepositoryRecord]:
        return [r for r in self.repositories if r.required and not r.ok]


@dataclass
class RunResult:
    """Final result of a run.

    Attributes:
        state: COMPLETED or FAILED.
        context: Per-repository details.
        error: The error that failed the run, if any.
    """

    state: PipelineState
    context: RunContext
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.COMPLETED

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)

    @property
    def exit_code(self) -> int:
        """Process exit code: 0 on success, 130 on cancellation, 1 otherwise."""
        if self.succeeded:
            return 0
        if self.cancelled:
            return 130
        return 1
