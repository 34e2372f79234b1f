"""WorkspaceOrchestrator - Workspace initialization state machine."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from spacecli.context import ContextTask
from spacecli.exceptions import (
    CancellationError,
    ConfigurationError,
    PostInitError,
    ProvisioningError,
    SpaceError,
    ValidationError,
)
from spacecli.naming import (
    render_branch_name,
    render_target_path,
    validate_branch_name,
    workspace_name,
)
from spacecli.orchestrator.models import (
    PipelineState,
    RepositoryRecord,
    RunContext,
    RunRequest,
    RunResult,
)
from spacecli.progress import ProgressOptions, StepDescriptor
from spacecli.validation import blocking_outcomes
from spacecli.workers import PostInitTask
from spacecli.worktrees import WorktreeTarget

if TYPE_CHECKING:
    from spacecli.config import ProjectConfig
    from spacecli.context import ContextGenerator
    from spacecli.progress import ProgressTracker
    from spacecli.validation import ReferenceValidator
    from spacecli.workers import PostInitExecutor
    from spacecli.worktrees import WorktreeOutcome, WorktreeProvisioner

logger = logging.getLogger("spacecli.orchestrator")

STEPS = (
    StepDescriptor("validate", "Validating GitHub references", weight=1),
    StepDescriptor("worktrees", "Creating worktrees", weight=3),
    StepDescriptor("context", "Generating context", weight=2),
    StepDescriptor("postinit", "Running post-init", weight=1),
)

STATE_STEPS = {
    PipelineState.VALIDATING: "validate",
    PipelineState.PROVISIONING: "worktrees",
    PipelineState.GENERATING_CONTEXT: "context",
    PipelineState.RUNNING_POST_INIT: "postinit",
}


class WorkspaceOrchestrator:
    """Drives a workspace through validation, provisioning, context and post-init.

    The orchestrator is the only component that mutates the run's state.
    Every state change is paired with a progress call: entering a state
    starts its step, leaving it completes the step, and a failure fails it.
    Dry-run and real runs go through the same four steps; only the side
    effects of the components differ.
    """

    def __init__(
        self,
        project: ProjectConfig,
        tracker: ProgressTracker,
        provisioner: WorktreeProvisioner,
        context_generator: ContextGenerator,
        post_init_executor: PostInitExecutor,
        validator: ReferenceValidator | None = None,
        progress_options: ProgressOptions | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            project: Immutable project configuration.
            tracker: Progress tracker every transition is reported to.
            provisioner: Creates the worktrees.
            context_generator: Writes env files and templates.
            post_init_executor: Runs post-init commands.
            validator: Checks issue ids. Required when ids are given.
            progress_options: Title and ETA display options.
        """
        self.project = project
        self.tracker = tracker
        self.provisioner = provisioner
        self.context_generator = context_generator
        self.post_init_executor = post_init_executor
        self.validator = validator
        self.progress_options = progress_options or ProgressOptions(
            title=f"Setting up {project.name}"
        )
        self._state = PipelineState.NOT_STARTED
        self._cancelled = threading.Event()
        self._active: set[str] = set()

    @property
    def state(self) -> PipelineState:
        return self._state

    def prepare(self, request: RunRequest) -> RunContext:
        """Resolve names and paths for a request.

        Raises:
            ConfigurationError: If the slug is unsafe, target paths collide,
                or ids were given without a way to validate them.
        """
        slug = validate_branch_name(request.slug)
        issue_ids = tuple(dict.fromkeys(request.issue_ids))
        if issue_ids and self.validator is None:
            raise ConfigurationError(
                f"Project '{self.project.key}' has no issue_repo configured; "
                "cannot validate GitHub IDs"
            )

        workspace = workspace_name(slug, issue_ids)
        context = RunContext(project=self.project, request=request, workspace=workspace)
        for spec in self.project.repositories:
            branch = render_branch_name(spec.branch_template, self.project.key, slug, issue_ids)
            path = render_target_path(
                spec.path_template,
                workspace_base=self.project.workspace_base,
                project=self.project.key,
                workspace=workspace,
                repo=spec.name,
                branch=branch,
            )
            target = WorktreeTarget(
                name=spec.name,
                source=spec.source,
                path=path,
                branch=branch,
                base_branch=spec.base_branch,
                required=spec.required,
            )
            context.repositories.append(RepositoryRecord(spec=spec, target=target))

        paths = [r.path for r in context.repositories]
        duplicates = sorted({str(p) for p in paths if paths.count(p) > 1})
        if duplicates:
            raise ConfigurationError(f"Worktree paths are not unique: {', '.join(duplicates)}")
        return context

    def run(self, request: RunRequest) -> RunResult:
        """Run the whole pipeline for a request.

        Args:
            request: Issue ids, slug and run flags.

        Returns:
            RunResult in COMPLETED or FAILED state.

        Raises:
            ConfigurationError: Before any step starts, for invalid input.
        """
        context = self.prepare(request)
        self.tracker.initialize(STEPS, self.progress_options)
        self._state = PipelineState.NOT_STARTED
        self._cancelled.clear()
        self._active.clear()

        mode = "dry run" if request.dry_run else "run"
        logger.info(
            "Starting %s for project %s, workspace %s (%d repositories)",
            mode,
            self.project.key,
            context.workspace,
            len(context.repositories),
        )

        stages = (
            (PipelineState.VALIDATING, self._validate),
            (PipelineState.PROVISIONING, self._provision),
            (PipelineState.GENERATING_CONTEXT, self._generate_context),
            (PipelineState.RUNNING_POST_INIT, self._run_post_init),
        )
        try:
            for state, stage in stages:
                self._enter(state)
                stage(context)
                self._check_cancelled()
                self._leave()
        except CancellationError as e:
            self._mark_incomplete(context, e.incomplete)
            return self._fail(context, e)
        except KeyboardInterrupt:
            self.cancel()
            error = CancellationError(incomplete=self.provisioner.in_flight + sorted(self._active))
            self._mark_incomplete(context, error.incomplete)
            return self._fail(context, error)
        except SpaceError as e:
            return self._fail(context, e)
        except Exception as e:
            logger.exception("Unexpected error in state %s: %s", self._state.value, e)
            return self._fail(context, SpaceError(f"Unexpected error: {e}"))

        self._state = PipelineState.COMPLETED
        self.tracker.complete()
        logger.info("Workspace %s completed", context.workspace)
        return RunResult(state=self._state, context=context)

    def cancel(self) -> None:
        """Cancel the run. Outstanding component work is stopped."""
        logger.warning("Cancellation requested")
        self._cancelled.set()
        if self.validator is not None:
            self.validator.cancel()
        self.provisioner.cancel()
        self.post_init_executor.cancel()

    def _enter(self, state: PipelineState) -> None:
        logger.info("Entering state %s", state.value)
        self._state = state
        self.tracker.start_step(STATE_STEPS[state])

    def _leave(self) -> None:
        self.tracker.complete_step(STATE_STEPS[self._state])

    def _fail(self, context: RunContext, error: SpaceError) -> RunResult:
        step_id = STATE_STEPS.get(self._state)
        logger.error("Run failed in state %s: %s", self._state.value, error)
        if step_id is not None and self.tracker.current_step == step_id:
            self.tracker.fail_step(step_id, str(error))
        self._state = PipelineState.FAILED
        return RunResult(state=self._state, context=context, error=error)

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise CancellationError(incomplete=sorted(self._active))

    def _mark_incomplete(self, context: RunContext, names: list[str]) -> None:
        for name in names:
            try:
                record = context.record(name)
            except KeyError:
                continue
            record.incomplete = True
            record.fail("incomplete: cancelled while in progress")
            logger.warning("Repository %s left incomplete at %s", name, record.path)

    def _validate(self, context: RunContext) -> None:
        issue_ids = tuple(dict.fromkeys(context.request.issue_ids))
        if not issue_ids:
            self.tracker.set_current_operation("No GitHub IDs to validate")
            return

        if self.validator is None:
            raise ConfigurationError("GitHub IDs given but no validator is configured")
        self.tracker.set_current_operation(
            f"Checking {', '.join(f'#{i}' for i in issue_ids)}"
        )
        context.validation = self.validator.validate(issue_ids)
        self._check_cancelled()

        blocking = blocking_outcomes(
            context.validation.values(), allow_unverified=context.request.allow_unverified
        )
        if blocking:
            details = "; ".join(o.describe() for o in blocking)
            raise ValidationError(f"GitHub validation failed: {details}", outcomes=blocking)

        for outcome in context.validation.values():
            if not outcome.is_valid:
                logger.warning("Continuing with unverified issue %s", outcome.describe())

    def _provision(self, context: RunContext) -> None:
        def record_outcome(outcome: WorktreeOutcome) -> None:
            record = context.record(outcome.name)
            record.worktree = outcome
            self.tracker.set_current_operation(f"{outcome.name}: {outcome.status.value}")
            if not outcome.ok:
                record.fail(outcome.detail or outcome.status.value)

        self.provisioner.provision(
            [r.target for r in context.repositories],
            interactive=context.request.interactive and not context.request.force,
            force=context.request.force,
            dry_run=context.request.dry_run,
            on_result=record_outcome,
        )
        self._require_survivors(context, ProvisioningError, "provisioning")

    def _generate_context(self, context: RunContext) -> None:
        issue_ids = tuple(dict.fromkeys(context.request.issue_ids))
        for record in context.ok_records():
            self._check_cancelled()
            self.tracker.set_current_operation(f"{record.name}: writing context")
            task = ContextTask(
                repository=record.name,
                worktree=record.path,
                branch=record.branch,
                workspace=context.workspace,
                issue_ids=issue_ids,
                issue_titles=context.issue_titles,
            )
            # left in _active on interrupt so the run can mark it incomplete
            self._active.add(record.name)
            record.context = self.context_generator.generate(task, dry_run=context.request.dry_run)
            self._active.discard(record.name)
            if not record.context.ok:
                record.fail("; ".join(record.context.errors))
        self._require_survivors(context, ProvisioningError, "context generation")

    def _run_post_init(self, context: RunContext) -> None:
        commands = self.project.post_init
        for record in context.ok_records():
            self._check_cancelled()
            if not commands:
                continue
            self.tracker.set_current_operation(f"{record.name}: {commands[0]}")
            task = PostInitTask(repository=record.name, worktree=record.path, commands=commands)
            self._active.add(record.name)
            record.post_init = self.post_init_executor.execute(
                task, dry_run=context.request.dry_run
            )
            self._active.discard(record.name)
            if not record.post_init.success:
                if self._cancelled.is_set():
                    raise CancellationError(incomplete=[record.name])
                record.fail(f"post-init failed: {record.post_init.error}")
        self._require_survivors(context, PostInitError, "post-init")

    @staticmethod
    def _require_survivors(context: RunContext, error: type[SpaceError], stage: str) -> None:
        """Fail the stage if a required repository failed or none are left."""
        failed_required = context.failed_required()
        if failed_required:
            record = failed_required[0]
            raise error(
                f"Required repository '{record.name}' failed during {stage}: {record.failure}"
            )
        if not context.ok_records():
            reasons = "; ".join(f"{r.name}: {r.failure}" for r in context.repositories)
            raise error(f"No repository survived {stage}: {reasons}")
