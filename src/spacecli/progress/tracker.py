"""ProgressTracker - Weighted step state and overall completion."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from spacecli.exceptions import ConfigurationError, NotFoundError, StateError
from spacecli.progress.models import (
    ProgressEvent,
    ProgressEventType,
    ProgressOptions,
    ProgressSnapshot,
    StepDescriptor,
    StepState,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = logging.getLogger("spacecli.progress")


class ProgressTracker:
    """Tracks a sequential, weighted pipeline.

    Exactly one step may be running at a time. Overall progress is the sum
    of the weights of completed steps divided by the sum of all weights, so
    a step's share reflects its declared weight rather than its position.
    Once a step fails the run is halted: the fraction stays frozen and no
    further step can start.

    Every transition is published to subscribed listeners (terminal
    renderers, tests) as a ProgressEvent.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        """Initialize an empty tracker.

        Args:
            clock: Monotonic time source, injectable for ETA tests.
        """
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._listeners: list[Callable[[ProgressEvent], None]] = []
        self._steps: list[StepDescriptor] = []
        self._states: dict[str, StepState] = {}
        self._options = ProgressOptions()
        self._total_weight = 0
        self._completed_weight = 0
        self._current: str | None = None
        self._operation: str | None = None
        self._failed: str | None = None
        self._failure_reason: str | None = None
        self._started_at: float | None = None
        self._eta: float | None = None

    def subscribe(self, listener: Callable[[ProgressEvent], None]) -> None:
        """Register a listener for progress events."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[ProgressEvent], None]) -> None:
        """Remove a previously registered listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def initialize(
        self,
        steps: Sequence[StepDescriptor],
        options: ProgressOptions | None = None,
    ) -> None:
        """Start tracking a new run.

        Args:
            steps: Ordered step descriptors.
            options: Display options (title, ETA).

        Raises:
            ConfigurationError: If steps is empty, has a non-positive weight,
                or repeats an id.
        """
        steps = list(steps)
        if not steps:
            raise ConfigurationError("Progress requires at least one step")

        seen: set[str] = set()
        for step in steps:
            if not isinstance(step.weight, int) or step.weight <= 0:
                raise ConfigurationError(
                    f"Step '{step.id}' has non-positive weight: {step.weight!r}"
                )
            if step.id in seen:
                raise ConfigurationError(f"Duplicate step id: {step.id}")
            seen.add(step.id)

        with self._lock:
            self._steps = steps
            self._states = {step.id: StepState.PENDING for step in steps}
            self._options = options or ProgressOptions()
            self._total_weight = sum(step.weight for step in steps)
            self._completed_weight = 0
            self._current = None
            self._operation = None
            self._failed = None
            self._failure_reason = None
            self._started_at = self._clock()
            self._eta = None

        logger.debug(
            "Progress initialized with %d steps (total weight: %d)",
            len(steps),
            self._total_weight,
        )
        self._publish(ProgressEventType.INITIALIZED, title=self._options.title)

    def start_step(self, step_id: str) -> None:
        """Transition a step from pending to running.

        Raises:
            NotFoundError: If the step is unknown.
            StateError: If another step is running, the step is not pending,
                or the run has already failed.
        """
        with self._lock:
            step = self._get_step(step_id)
            if self._failed is not None:
                raise StateError(
                    f"Cannot start '{step_id}': run halted after '{self._failed}' failed"
                )
            if self._current is not None:
                raise StateError(f"Cannot start '{step_id}': step '{self._current}' is running")
            state = self._states[step_id]
            if state != StepState.PENDING:
                raise StateError(f"Cannot start '{step_id}': step is {state.value}")

            self._states[step_id] = StepState.RUNNING
            self._current = step_id
            self._operation = step.description
            self._recompute_eta()

        logger.info("Starting step: %s", step.description)
        self._publish(ProgressEventType.STEP_STARTED, step=step, message=step.description)

    def set_current_operation(self, text: str) -> None:
        """Attach a transient status line to the running step.

        No-op when no step is running.
        """
        with self._lock:
            if self._current is None:
                return
            self._operation = text
            step = self._get_step(self._current)

        logger.debug("Operation: %s", text)
        self._publish(ProgressEventType.OPERATION, step=step, message=text)

    def complete_step(self, step_id: str) -> None:
        """Transition a running step to completed and recompute progress.

        Raises:
            NotFoundError: If the step is unknown.
            StateError: If the step is not running.
        """
        with self._lock:
            step = self._get_step(step_id)
            state = self._states[step_id]
            if state != StepState.RUNNING:
                raise StateError(f"Cannot complete '{step_id}': step is {state.value}")

            self._states[step_id] = StepState.COMPLETED
            self._current = None
            self._operation = None
            self._completed_weight += step.weight
            self._recompute_eta()

        logger.info(
            "Completed step: %s (progress: %d/%d)",
            step.description,
            self._completed_weight,
            self._total_weight,
        )
        self._publish(ProgressEventType.STEP_COMPLETED, step=step, message=step.description)

    def fail_step(self, step_id: str, reason: str) -> None:
        """Transition a running step to failed and halt the run.

        Raises:
            NotFoundError: If the step is unknown.
            StateError: If the step is not running.
        """
        with self._lock:
            step = self._get_step(step_id)
            state = self._states[step_id]
            if state != StepState.RUNNING:
                raise StateError(f"Cannot fail '{step_id}': step is {state.value}")

            self._states[step_id] = StepState.FAILED
            self._current = None
            self._operation = None
            self._failed = step_id
            self._failure_reason = reason
            self._eta = None

        logger.error("Step failed: %s: %s", step.description, reason)
        self._publish(ProgressEventType.STEP_FAILED, step=step, message=reason)

    def complete(self) -> None:
        """Signal that the run is over so renderers can finish drawing."""
        self._publish(ProgressEventType.COMPLETED)

    @property
    def fraction(self) -> float:
        """Completed share of the total weight, 0.0 to 1.0."""
        if self._total_weight == 0:
            return 0.0
        return self._completed_weight / self._total_weight

    @property
    def percent(self) -> float:
        """Completed share as a percentage."""
        return self.fraction * 100

    @property
    def eta(self) -> float | None:
        """Estimated seconds remaining, or None when unknown or disabled."""
        return self._eta

    @property
    def current_step(self) -> str | None:
        """Id of the running step, if any."""
        return self._current

    @property
    def current_operation(self) -> str | None:
        """Status line of the running step, if any."""
        return self._operation

    @property
    def halted(self) -> bool:
        """Whether a step has failed."""
        return self._failed is not None

    @property
    def steps(self) -> list[StepDescriptor]:
        """Step descriptors of the current run."""
        return list(self._steps)

    def state_of(self, step_id: str) -> StepState:
        """Get the state of a step.

        Raises:
            NotFoundError: If the step is unknown.
        """
        self._get_step(step_id)
        return self._states[step_id]

    def snapshot(self) -> ProgressSnapshot:
        """Get a copy of the current progress state."""
        with self._lock:
            return ProgressSnapshot(
                states=dict(self._states),
                completed_weight=self._completed_weight,
                total_weight=self._total_weight,
                current_step=self._current,
                current_operation=self._operation,
                failed_step=self._failed,
                failure_reason=self._failure_reason,
            )

    def _get_step(self, step_id: str) -> StepDescriptor:
        for step in self._steps:
            if step.id == step_id:
                return step
        raise NotFoundError(f"Progress step not found: {step_id}")

    def _recompute_eta(self) -> None:
        if not self._options.show_eta or self._started_at is None:
            self._eta = None
            return
        fraction = self.fraction
        if fraction <= 0:
            self._eta = None
            return
        elapsed = self._clock() - self._started_at
        self._eta = elapsed * (1 - fraction) / fraction

    def _publish(
        self,
        event_type: ProgressEventType,
        step: StepDescriptor | None = None,
        message: str | None = None,
        title: str | None = None,
    ) -> None:
        index = self._steps.index(step) + 1 if step is not None else None
        event = ProgressEvent(
            event_type=event_type,
            completed_weight=self._completed_weight,
            total_weight=self._total_weight,
            fraction=self.fraction,
            total_steps=len(self._steps),
            step=step,
            index=index,
            eta_seconds=self._eta,
            message=message,
            title=title,
        )
        for listener in list(self._listeners):
            listener(event)
