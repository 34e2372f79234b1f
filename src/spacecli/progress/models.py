"""Data models for the Progress Tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class StepState(str, Enum):
    """Lifecycle of a single pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressEventType(str, Enum):
    """Types of events published by the tracker."""

    INITIALIZED = "initialized"
    STEP_STARTED = "step_started"
    OPERATION = "operation"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StepDescriptor:
    """A weighted pipeline step.

    Attributes:
        id: Unique step identifier within a run.
        description: Human readable description shown to the user.
        weight: Relative share of the total work (positive integer).
    """

    id: str
    description: str
    weight: int = 1


@dataclass(frozen=True)
class ProgressOptions:
    """Display options for a tracked run."""

    title: str = "Setting up workspace"
    show_eta: bool = False


@dataclass(frozen=True)
class ProgressEvent:
    """A tracker transition, delivered to listeners.

    Attributes:
        event_type: What happened.
        step: The step involved, if any.
        index: 1-based position of the step in the run.
        total_steps: Number of steps in the run.
        completed_weight: Sum of weights of completed steps.
        total_weight: Sum of all step weights.
        fraction: completed_weight / total_weight.
        eta_seconds: Estimated seconds remaining (None when unknown or disabled).
        message: Operation text or failure reason.
    """

    event_type: ProgressEventType
    completed_weight: int
    total_weight: int
    fraction: float
    total_steps: int
    step: StepDescriptor | None = None
    index: int | None = None
    eta_seconds: float | None = None
    message: str | None = None
    title: str | None = None


@dataclass
class ProgressSnapshot:
    """Point-in-time view of a run's progress."""

    states: dict[str, StepState] = field(default_factory=dict)
    completed_weight: int = 0
    total_weight: int = 0
    current_step: str | None = None
    current_operation: str | None = None
    failed_step: str | None = None
    failure_reason: str | None = None

    @property
    def fraction(self) -> float:
        """Completed share of the total weight."""
        if self.total_weight == 0:
            return 0.0
        return self.completed_weight / self.total_weight

    @property
    def percent(self) -> float:
        """Completed share as a percentage."""
        return self.fraction * 100
