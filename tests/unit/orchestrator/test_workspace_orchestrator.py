"""Unit tests for WorkspaceOrchestrator with fake components."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from spacecli.config import ProjectConfig, RepositorySpec
from spacecli.context import ContextGenerator, ContextResult
from spacecli.exceptions import (
    CancellationError,
    ConfigurationError,
    ConflictError,
    PostInitError,
    ProvisioningError,
    SpaceError,
    ValidationError,
)
from spacecli.orchestrator import PipelineState, RunRequest, WorkspaceOrchestrator
from spacecli.progress import ProgressEventType, ProgressTracker, StepState
from spacecli.validation import ValidationOutcome, ValidationStatus
from spacecli.workers import PostInitExecutor, PostInitResult
from spacecli.worktrees import WorktreeOutcome, WorktreeStatus

STEP_IDS = ["validate", "worktrees", "context", "postinit"]
NAMES = ("sdk", "samples", "docs")


class FakeValidator:
    """Validator returning fixed statuses."""

    def __init__(self, statuses: dict[int, ValidationStatus]) -> None:
        self.statuses = statuses
        self.calls: list[tuple[int, ...]] = []

    def validate(self, ids):
        self.calls.append(tuple(ids))
        return {
            i: ValidationOutcome(i, self.statuses[i], title=f"Issue {i}")
            for i in ids
        }

    def cancel(self) -> None:
        pass


class FakeProvisioner:
    """Provisioner reporting configured statuses, or raising."""

    def __init__(
        self,
        statuses: dict[str, WorktreeStatus] | None = None,
        error: BaseException | None = None,
        in_flight: list[str] | None = None,
    ) -> None:
        self.statuses = statuses or {}
        self.error = error
        self.in_flight = in_flight or []
        self.calls: list[dict] = []
        self.cancelled = False

    def provision(self, targets, interactive, force=False, dry_run=False, on_result=None):
        self.calls.append({"interactive": interactive, "force": force, "dry_run": dry_run})
        outcomes = []
        for target in targets:
            status = self.statuses.get(target.name, WorktreeStatus.CREATED)
            outcome = WorktreeOutcome(
                name=target.name,
                status=status,
                path=target.path,
                branch=target.branch,
                detail=None if status.ok else "boom",
            )
            outcomes.append(outcome)
            if on_result is not None:
                on_result(outcome)
            if self.error is not None:
                raise self.error
        return outcomes

    def cancel(self) -> None:
        self.cancelled = True


def make_project(tmp_path: Path, required: tuple[str, ...] = (), **kwargs) -> ProjectConfig:
    return ProjectConfig(
        key="java",
        name="Java SDK",
        repositories=tuple(
            RepositorySpec(name, tmp_path / "src" / name, required=name in required)
            for name in NAMES
        ),
        workspace_base=tmp_path / "ws",
        issue_repo="acme/java-sdk",
        **kwargs,
    )


def make_executor(failing: set[str] | None = None) -> MagicMock:
    executor = MagicMock(spec=PostInitExecutor)

    def execute(task, dry_run=False):
        ok = dry_run or task.repository not in (failing or set())
        return PostInitResult(
            repository=task.repository,
            success=ok,
            error=None if ok else "'npm install' exited with code 1",
        )

    executor.execute.side_effect = execute
    return executor


def make_orchestrator(
    project: ProjectConfig,
    provisioner: FakeProvisioner | None = None,
    validator: FakeValidator | None = None,
    executor: MagicMock | None = None,
    context_generator: ContextGenerator | None = None,
) -> tuple[WorkspaceOrchestrator, ProgressTracker, list]:
    tracker = ProgressTracker()
    events: list = []
    tracker.subscribe(events.append)
    orchestrator = WorkspaceOrchestrator(
        project=project,
        tracker=tracker,
        provisioner=provisioner or FakeProvisioner(),
        context_generator=context_generator or ContextGenerator(project),
        post_init_executor=executor or make_executor(),
        validator=validator or FakeValidator({2326: ValidationStatus.VALID}),
    )
    return orchestrator, tracker, events


def step_trace(events: list) -> list[tuple[str, str]]:
    return [
        (e.event_type.value, e.step.id)
        for e in events
        if e.event_type
        in (
            ProgressEventType.STEP_STARTED,
            ProgressEventType.STEP_COMPLETED,
            ProgressEventType.STEP_FAILED,
        )
    ]


@pytest.mark.unit
class TestSuccessfulRun:
    """Tests for a run that completes."""

    def test_three_repositories_complete_at_100_percent(self, tmp_path: Path) -> None:
        """Every step completes and all repositories are OK."""
        project = make_project(tmp_path, post_init=("npm install",))
        orchestrator, tracker, events = make_orchestrator(project)

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix-timeout"))

        assert result.state == PipelineState.COMPLETED
        assert result.succeeded
        assert result.state.terminal
        assert result.exit_code == 0
        assert tracker.percent == 100.0
        assert all(tracker.state_of(s) == StepState.COMPLETED for s in STEP_IDS)
        assert [r.ok for r in result.context.repositories] == [True, True, True]
        assert events[-1].event_type == ProgressEventType.COMPLETED

    def test_every_state_has_matching_progress_calls(self, tmp_path: Path) -> None:
        """Each state is entered with start_step and left with complete_step."""
        orchestrator, _, events = make_orchestrator(make_project(tmp_path))

        orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert step_trace(events) == [
            (kind, step) for step in STEP_IDS for kind in ("step_started", "step_completed")
        ]

    def test_names_and_paths_resolved(self, tmp_path: Path) -> None:
        """Branch and path follow the default naming rules."""
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path))

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix-timeout"))

        sdk = result.context.record("sdk")
        assert result.context.workspace == "2326-fix-timeout"
        assert sdk.branch == "java/2326-fix-timeout"
        assert sdk.path == tmp_path / "ws" / "java" / "2326-fix-timeout" / "sdk"

    def test_no_ids_skips_lookup_but_runs_step(self, tmp_path: Path) -> None:
        """Without ids the validate step still starts and completes."""
        validator = FakeValidator({})
        orchestrator, tracker, _ = make_orchestrator(make_project(tmp_path), validator=validator)

        result = orchestrator.run(RunRequest(issue_ids=(), slug="cleanup"))

        assert result.succeeded
        assert validator.calls == []
        assert tracker.state_of("validate") == StepState.COMPLETED
        assert result.context.record("sdk").branch == "java/cleanup"

    def test_dry_run_has_identical_step_sequence(self, tmp_path: Path) -> None:
        """Dry-run walks the same steps and passes dry_run down."""
        project = make_project(tmp_path, post_init=("npm install",))
        real, _, real_events = make_orchestrator(project)
        provisioner = FakeProvisioner()
        executor = make_executor()
        dry, _, dry_events = make_orchestrator(project, provisioner=provisioner, executor=executor)

        real.run(RunRequest(issue_ids=(2326,), slug="fix"))
        result = dry.run(RunRequest(issue_ids=(2326,), slug="fix", dry_run=True))

        assert result.succeeded
        assert step_trace(dry_events) == step_trace(real_events)
        assert provisioner.calls[0]["dry_run"] is True
        assert all(c.kwargs["dry_run"] for c in executor.execute.call_args_list)


@pytest.mark.unit
class TestValidationFailures:
    """Tests for the validating state."""

    def test_timeout_fails_at_validating_with_zero_worktrees(self, tmp_path: Path) -> None:
        """A timed-out id fails the run before provisioning."""
        provisioner = FakeProvisioner()
        validator = FakeValidator({2326: ValidationStatus.TIMED_OUT})
        orchestrator, tracker, _ = make_orchestrator(
            make_project(tmp_path), provisioner=provisioner, validator=validator
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.state == PipelineState.FAILED
        assert isinstance(result.error, ValidationError)
        assert orchestrator.state == PipelineState.FAILED
        assert result.exit_code == 1
        assert provisioner.calls == []
        assert tracker.state_of("validate") == StepState.FAILED
        assert tracker.state_of("worktrees") == StepState.PENDING
        assert tracker.fraction == 0.0

    def test_invalid_id_fails(self, tmp_path: Path) -> None:
        """A missing issue blocks even with allow_unverified."""
        validator = FakeValidator({99: ValidationStatus.INVALID})
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path), validator=validator)

        result = orchestrator.run(RunRequest(issue_ids=(99,), slug="x", allow_unverified=True))

        assert isinstance(result.error, ValidationError)
        assert "#99: invalid" in str(result.error)

    def test_allow_unverified_continues_past_timeout(self, tmp_path: Path) -> None:
        """allow_unverified lets a timed-out id through."""
        validator = FakeValidator({2326: ValidationStatus.TIMED_OUT})
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path), validator=validator)

        result = orchestrator.run(
            RunRequest(issue_ids=(2326,), slug="fix", allow_unverified=True)
        )

        assert result.succeeded


@pytest.mark.unit
class TestConfigurationErrors:
    """Tests for errors raised before any step starts."""

    def test_ids_without_validator(self, tmp_path: Path) -> None:
        """Ids need a validator."""
        project = make_project(tmp_path)
        tracker = ProgressTracker()
        orchestrator = WorkspaceOrchestrator(
            project, tracker, FakeProvisioner(), ContextGenerator(project), make_executor()
        )

        with pytest.raises(ConfigurationError, match="issue_repo"):
            orchestrator.run(RunRequest(issue_ids=(1,), slug="x"))
        assert tracker.steps == []

    def test_duplicate_target_paths(self, tmp_path: Path) -> None:
        """A path template ignoring the repository collides."""
        project = ProjectConfig(
            key="java",
            name="Java",
            repositories=(
                RepositorySpec("a", tmp_path / "a", path_template="{workspace_base}/same"),
                RepositorySpec("b", tmp_path / "b", path_template="{workspace_base}/same"),
            ),
            workspace_base=tmp_path / "ws",
        )
        orchestrator, tracker, _ = make_orchestrator(project)

        with pytest.raises(ConfigurationError, match="not unique"):
            orchestrator.run(RunRequest(issue_ids=(), slug="x"))
        assert tracker.steps == []

    def test_unsafe_slug(self, tmp_path: Path) -> None:
        """Slugs must be safe branch components."""
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path))
        with pytest.raises(ConfigurationError):
            orchestrator.run(RunRequest(issue_ids=(), slug="fix; rm -rf /"))


@pytest.mark.unit
class TestProvisioningFailures:
    """Tests for the provisioning state."""

    def test_conflict_fails_run(self, tmp_path: Path) -> None:
        """ConflictError from the provisioner fails at worktrees."""
        provisioner = MagicMock()
        provisioner.in_flight = []
        provisioner.provision.side_effect = ConflictError("Workspace already exists")
        orchestrator, tracker, _ = make_orchestrator(
            make_project(tmp_path), provisioner=provisioner
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix", interactive=False))

        assert isinstance(result.error, ConflictError)
        assert tracker.state_of("worktrees") == StepState.FAILED

    def test_required_failure_fails_run(self, tmp_path: Path) -> None:
        """A failed required repository fails the run."""
        provisioner = FakeProvisioner({"sdk": WorktreeStatus.FAILED})
        orchestrator, tracker, _ = make_orchestrator(
            make_project(tmp_path, required=("sdk",)), provisioner=provisioner
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert isinstance(result.error, ProvisioningError)
        assert "Required repository 'sdk'" in str(result.error)
        assert tracker.state_of("worktrees") == StepState.FAILED

    def test_optional_failure_continues_with_subset(self, tmp_path: Path) -> None:
        """Optional failures drop out; the rest completes."""
        provisioner = FakeProvisioner({"docs": WorktreeStatus.OVERWRITE_DECLINED})
        executor = make_executor()
        project = make_project(tmp_path, post_init=("npm install",))
        orchestrator, _, _ = make_orchestrator(project, provisioner=provisioner, executor=executor)

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.succeeded
        assert not result.context.record("docs").ok
        ran = [c.args[0].repository for c in executor.execute.call_args_list]
        assert ran == ["sdk", "samples"]

    def test_all_failed_fails_run(self, tmp_path: Path) -> None:
        """Zero usable worktrees fails the run."""
        provisioner = FakeProvisioner(dict.fromkeys(NAMES, WorktreeStatus.FAILED))
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path), provisioner=provisioner)

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert isinstance(result.error, ProvisioningError)
        assert "No repository survived provisioning" in str(result.error)

    def test_force_disables_prompts(self, tmp_path: Path) -> None:
        """--force is passed down and no prompt is requested."""
        provisioner = FakeProvisioner()
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path), provisioner=provisioner)

        orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix", force=True))

        assert provisioner.calls[0] == {"interactive": False, "force": True, "dry_run": False}


@pytest.mark.unit
class TestPostInitFailures:
    """Tests for the post-init state."""

    def test_one_failure_keeps_siblings(self, tmp_path: Path) -> None:
        """A failing repository is marked failed; others finish."""
        project = make_project(tmp_path, post_init=("npm install",))
        orchestrator, _, _ = make_orchestrator(project, executor=make_executor({"samples"}))

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.succeeded
        samples = result.context.record("samples")
        assert not samples.ok
        assert "post-init failed" in (samples.failure or "")

    def test_all_failing_fails_run(self, tmp_path: Path) -> None:
        """No repository finishing every stage fails at postinit."""
        project = make_project(tmp_path, post_init=("npm install",))
        executor = make_executor({"sdk", "samples", "docs"})
        orchestrator, tracker, _ = make_orchestrator(project, executor=executor)

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert isinstance(result.error, PostInitError)
        assert tracker.state_of("postinit") == StepState.FAILED


@pytest.mark.unit
class TestCancellation:
    """Tests for user interrupts."""

    def test_interrupt_during_provisioning(self, tmp_path: Path) -> None:
        """Ctrl-C fails the active step and marks in-flight repos incomplete."""
        provisioner = FakeProvisioner(error=KeyboardInterrupt(), in_flight=["samples"])
        orchestrator, tracker, _ = make_orchestrator(
            make_project(tmp_path), provisioner=provisioner
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.state == PipelineState.FAILED
        assert isinstance(result.error, CancellationError)
        assert result.exit_code == 130
        assert provisioner.cancelled
        assert tracker.state_of("worktrees") == StepState.FAILED
        assert result.context.record("samples").incomplete
        assert result.context.record("sdk").worktree is not None
        assert not result.context.record("sdk").incomplete

    def test_cancellation_error_from_provisioner(self, tmp_path: Path) -> None:
        """A CancellationError carries its incomplete list into the context."""
        provisioner = FakeProvisioner(error=CancellationError(incomplete=["docs"]))
        orchestrator, _, _ = make_orchestrator(make_project(tmp_path), provisioner=provisioner)

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.cancelled
        assert result.context.record("docs").incomplete

    def test_interrupt_during_context_generation(self, tmp_path: Path) -> None:
        """Ctrl-C while writing context marks that repository incomplete."""
        generator = MagicMock(spec=ContextGenerator)

        def generate(task, dry_run=False):
            if task.repository == "samples":
                raise KeyboardInterrupt
            return ContextResult(repository=task.repository)

        generator.generate.side_effect = generate
        executor = make_executor()
        orchestrator, tracker, _ = make_orchestrator(
            make_project(tmp_path), executor=executor, context_generator=generator
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.exit_code == 130
        assert tracker.state_of("context") == StepState.FAILED
        assert result.context.record("samples").incomplete
        assert not result.context.record("sdk").incomplete
        assert not result.context.record("docs").incomplete
        executor.cancel.assert_called_once()

    def test_interrupt_during_post_init(self, tmp_path: Path) -> None:
        """Ctrl-C while a post-init command runs marks that repository incomplete."""
        executor = make_executor()
        executor.execute.side_effect = KeyboardInterrupt
        project = make_project(tmp_path, post_init=("npm install",))
        orchestrator, tracker, _ = make_orchestrator(project, executor=executor)

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.cancelled
        assert tracker.state_of("postinit") == StepState.FAILED
        assert result.context.record("sdk").incomplete
        assert not result.context.record("samples").incomplete
        executor.cancel.assert_called_once()


def failing_context(failing: str) -> MagicMock:
    """Context generator that reports a write error for one repository."""
    generator = MagicMock(spec=ContextGenerator)

    def generate(task, dry_run=False):
        errors = ["failed to write .env.local: disk full"] if task.repository == failing else []
        return ContextResult(repository=task.repository, errors=errors)

    generator.generate.side_effect = generate
    return generator


@pytest.mark.unit
class TestContextFailures:
    """Tests for the generating_context state."""

    def test_optional_failure_keeps_siblings(self, tmp_path: Path) -> None:
        """Only the failing repository drops out; the others reach post-init."""
        executor = make_executor()
        project = make_project(tmp_path, post_init=("npm install",))
        orchestrator, _, _ = make_orchestrator(
            project, executor=executor, context_generator=failing_context("docs")
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.succeeded
        docs = result.context.record("docs")
        assert not docs.ok
        assert "disk full" in (docs.failure or "")
        ran = [c.args[0].repository for c in executor.execute.call_args_list]
        assert ran == ["sdk", "samples"]

    def test_required_context_failure_fails_run(self, tmp_path: Path) -> None:
        """A required repository failing context generation fails the run."""
        executor = make_executor()
        project = make_project(tmp_path, required=("sdk",), post_init=("npm install",))
        orchestrator, tracker, _ = make_orchestrator(
            project, executor=executor, context_generator=failing_context("sdk")
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert isinstance(result.error, ProvisioningError)
        assert "Required repository 'sdk' failed during context generation" in str(result.error)
        assert tracker.state_of("context") == StepState.FAILED
        executor.execute.assert_not_called()


@pytest.mark.unit
class TestUnexpectedErrors:
    """Tests for errors outside the SpaceError family."""

    def test_unexpected_error_fails_active_step(self, tmp_path: Path) -> None:
        """Any exception fails the running step instead of escaping."""
        provisioner = FakeProvisioner(error=FileNotFoundError(2, "No such file", "git"))
        orchestrator, tracker, _ = make_orchestrator(
            make_project(tmp_path), provisioner=provisioner
        )

        result = orchestrator.run(RunRequest(issue_ids=(2326,), slug="fix"))

        assert result.state == PipelineState.FAILED
        assert isinstance(result.error, SpaceError)
        assert "Unexpected error" in str(result.error)
        assert tracker.state_of("worktrees") == StepState.FAILED
        assert orchestrator.state == PipelineState.FAILED
