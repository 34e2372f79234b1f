"""WorktreeProvisioner - Decides and performs worktree creation per repository."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import TYPE_CHECKING

from spacecli.exceptions import (
    CancellationError,
    ConfigurationError,
    ConflictError,
    ProvisioningError,
    WorktreeLockError,
)
from spacecli.worktrees.git import GitWorktreeManager
from spacecli.worktrees.models import (
    Decision,
    PlannedWorktree,
    WorktreeOutcome,
    WorktreeStatus,
    WorktreeTarget,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger("spacecli.worktrees")

DEFAULT_MAX_WORKERS = 4
LOCK_RETRY_DELAY = 0.5


class WorktreeProvisioner:
    """Provisions one worktree per repository.

    Provisioning happens in two phases. ``plan`` inspects the filesystem
    and resolves every decision, including interactive overwrite prompts,
    without mutating anything. ``apply`` then carries the plan out, or in
    dry-run mode just reports it. Both modes share ``plan``, so a dry run
    reports exactly the decisions a real run would make.
    """

    def __init__(
        self,
        confirm: Callable[[str], bool] | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        backend_factory: Callable[[Path], GitWorktreeManager] | None = None,
        retry_delay: float = LOCK_RETRY_DELAY,
    ) -> None:
        """Initialize the provisioner.

        Args:
            confirm: Asks the user a yes/no question. Required for interactive runs.
            max_workers: Concurrent worktree creations.
            backend_factory: Builds the git layer for a source repository.
            retry_delay: Seconds to wait before retrying a lock error.
        """
        self.confirm = confirm
        self.max_workers = max(1, max_workers)
        self.backend_factory = backend_factory or GitWorktreeManager
        self.retry_delay = retry_delay
        self._backends: dict[Path, GitWorktreeManager] = {}
        self._path_locks: dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._in_flight: set[str] = set()
        self._cancelled = threading.Event()
        self._abort_reason: str | None = None

    @property
    def in_flight(self) -> list[str]:
        """Names of repositories currently being mutated."""
        with self._locks_guard:
            return sorted(self._in_flight)

    def provision(
        self,
        targets: Sequence[WorktreeTarget],
        interactive: bool,
        force: bool = False,
        dry_run: bool = False,
        on_result: Callable[[WorktreeOutcome], None] | None = None,
    ) -> list[WorktreeOutcome]:
        """Plan and apply worktrees for all targets.

        Raises:
            ConflictError: If a conflicting workspace exists, the run is not
                interactive and ``force`` is not set.
            CancellationError: If cancelled while applying.
        """
        plan = self.plan(targets, interactive=interactive, force=force)
        return self.apply(plan, dry_run=dry_run, on_result=on_result)

    def plan(
        self,
        targets: Sequence[WorktreeTarget],
        interactive: bool,
        force: bool = False,
    ) -> list[PlannedWorktree]:
        """Decide what to do with every target. Reads the filesystem only.

        Returns:
            One planned decision per target, in input order.

        Raises:
            ConfigurationError: If two targets share a path, or the run is
                interactive without a confirmation handler.
            ConflictError: If conflicts exist in non-interactive mode without force.
        """
        paths = [t.path for t in targets]
        duplicates = sorted({str(p) for p in paths if paths.count(p) > 1})
        if duplicates:
            raise ConfigurationError(f"Worktree paths are not unique: {', '.join(duplicates)}")
        if interactive and self.confirm is None:
            raise ConfigurationError("Interactive provisioning requires a confirmation handler")

        planned: list[PlannedWorktree] = []
        conflicts: list[Path] = []
        for target in targets:
            decision = self._decide(target, interactive, force)
            if decision is None:
                conflicts.append(target.path)
                continue
            logger.info("Plan for %s: %s %s", target.name, decision.decision.value, target.path)
            planned.append(decision)

        if conflicts:
            listed = ", ".join(str(p) for p in conflicts)
            raise ConflictError(
                f"Workspace already exists: {listed}. "
                "Cannot prompt for confirmation in non-interactive mode; use --force to overwrite.",
                paths=conflicts,
            )
        return planned

    def apply(
        self,
        plan: Sequence[PlannedWorktree],
        dry_run: bool = False,
        on_result: Callable[[WorktreeOutcome], None] | None = None,
    ) -> list[WorktreeOutcome]:
        """Carry out a plan.

        In dry-run mode no git or filesystem call is made; every decision is
        reported as the outcome it would produce. In real mode creations run
        concurrently on a bounded pool. A lock error is retried once.

        Args:
            plan: Decisions from ``plan``.
            dry_run: Report without mutating.
            on_result: Called in the calling thread as each outcome is known.

        Returns:
            One outcome per planned target, in plan order.

        Raises:
            CancellationError: If cancelled while work was outstanding. Its
                ``outcomes`` hold the results known at that point.
        """
        self._cancelled.clear()
        self._abort_reason = None
        results: dict[str, WorktreeOutcome] = {}

        def record(outcome: WorktreeOutcome) -> None:
            results[outcome.name] = outcome
            if on_result is not None:
                on_result(outcome)

        pending: list[PlannedWorktree] = []
        for item in plan:
            if dry_run or not item.mutates:
                if dry_run and item.mutates:
                    logger.info(
                        "[DRY RUN] Would %s worktree %s on branch %s",
                        item.decision.value,
                        item.target.path,
                        item.target.branch,
                    )
                record(self._outcome(item, item.status, detail=item.detail))
                if item.decision == Decision.FAIL and item.target.required and not dry_run:
                    self._abort_reason = f"required repository '{item.target.name}' failed"
            else:
                pending.append(item)

        if pending:
            try:
                self._run_pending(pending, record)
            except CancellationError as e:
                e.outcomes = [results[i.target.name] for i in plan if i.target.name in results]
                raise

        return [results[item.target.name] for item in plan]

    def cancel(self) -> None:
        """Stop queued work. Creations already running finish on their own.

        Queued tasks see the flag and return a cancelled outcome without
        touching git.
        """
        self._cancelled.set()

    def _run_pending(
        self,
        pending: list[PlannedWorktree],
        record: Callable[[WorktreeOutcome], None],
    ) -> None:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(pending)),
            thread_name_prefix="space-worktree",
        )
        futures: dict[Future[WorktreeOutcome], PlannedWorktree] = {
            executor.submit(self._execute, item): item for item in pending
        }
        try:
            for future in as_completed(futures):
                item = futures[future]
                outcome = future.result()
                if not outcome.ok and item.target.required and self._abort_reason:
                    logger.error("Skipping queued worktrees: %s", self._abort_reason)
                record(outcome)
        except KeyboardInterrupt:
            self.cancel()
            raise CancellationError(
                "Cancelled while creating worktrees", incomplete=self.in_flight
            ) from None
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if self._cancelled.is_set():
            raise CancellationError("Cancelled while creating worktrees", incomplete=self.in_flight)

    def _decide(
        self, target: WorktreeTarget, interactive: bool, force: bool
    ) -> PlannedWorktree | None:
        """Decide for one target. Returns None for an unresolved conflict."""
        backend = self._backend(target.source)
        try:
            backend.validate_repository()
        except ProvisioningError as e:
            return PlannedWorktree(target, Decision.FAIL, detail=str(e))

        path = target.path
        if not path.exists() or (path.is_dir() and not any(path.iterdir())):
            return PlannedWorktree(target, Decision.CREATE)

        try:
            if backend.worktree_exists(path, branch=target.branch):
                return PlannedWorktree(target, Decision.REUSE, detail="worktree already on branch")
        except ProvisioningError as e:
            return PlannedWorktree(target, Decision.FAIL, detail=str(e))

        if interactive and self.confirm is not None:
            prompt = f"Workspace directory already exists: {path}\nClean and overwrite?"
            if self.confirm(prompt):
                return PlannedWorktree(target, Decision.OVERWRITE, detail="confirmed by user")
            return PlannedWorktree(target, Decision.DECLINE, detail="overwrite declined by user")
        if force:
            return PlannedWorktree(target, Decision.OVERWRITE, detail="forced")
        logger.error("Workspace directory already exists: %s", path)
        return None

    def _execute(self, item: PlannedWorktree) -> WorktreeOutcome:
        """Perform one planned creation. Runs on a worker thread."""
        target = item.target
        with self._path_lock(target.path):
            if self._cancelled.is_set():
                return self._outcome(item, WorktreeStatus.FAILED, detail="cancelled")
            if self._abort_reason is not None:
                return self._outcome(
                    item, WorktreeStatus.FAILED, detail=f"skipped: {self._abort_reason}"
                )

            with self._locks_guard:
                self._in_flight.add(target.name)
            backend = self._backend(target.source)
            attempts = 0
            try:
                if item.decision == Decision.OVERWRITE:
                    self._with_retry(lambda: backend.remove_worktree(target.path))
                attempts = self._with_retry(
                    lambda: backend.create_worktree(target.path, target.branch, target.base_branch)
                )
            except ProvisioningError as e:
                logger.error("Provisioning %s failed: %s", target.name, e)
                if target.required:
                    with self._locks_guard:
                        if self._abort_reason is None:
                            self._abort_reason = f"required repository '{target.name}' failed"
                return self._outcome(item, WorktreeStatus.FAILED, detail=str(e), attempts=attempts)
            finally:
                with self._locks_guard:
                    self._in_flight.discard(target.name)

        return self._outcome(item, item.status, detail=item.detail, attempts=attempts)

    def _with_retry(self, operation: Callable[[], None]) -> int:
        """Run a git operation, retrying once on lock contention.

        Returns:
            Number of attempts made.
        """
        try:
            operation()
            return 1
        except WorktreeLockError as e:
            logger.warning("Lock contention, retrying once: %s", e)
            time.sleep(self.retry_delay)
        operation()
        return 2

    def _backend(self, source: Path) -> GitWorktreeManager:
        with self._locks_guard:
            if source not in self._backends:
                self._backends[source] = self.backend_factory(source)
            return self._backends[source]

    def _path_lock(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            return self._path_locks.setdefault(path, threading.Lock())

    @staticmethod
    def _outcome(
        item: PlannedWorktree,
        status: WorktreeStatus,
        detail: str | None = None,
        attempts: int = 0,
    ) -> WorktreeOutcome:
        return WorktreeOutcome(
            name=item.target.name,
            status=status,
            path=item.target.path,
            branch=item.target.branch,
            detail=detail,
            attempts=attempts,
        )
