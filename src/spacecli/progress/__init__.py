"""Progress Tracker - Weighted step state, completion percentage and ETA."""

from spacecli.progress.models import (
    ProgressEvent,
    ProgressEventType,
    ProgressOptions,
    ProgressSnapshot,
    StepDescriptor,
    StepState,
)
from spacecli.progress.rendering import TqdmProgressRenderer, progress_disabled
from spacecli.progress.tracker import ProgressTracker

__all__ = [
    "ProgressEvent",
    "ProgressEventType",
    "ProgressOptions",
    "ProgressSnapshot",
    "ProgressTracker",
    "StepDescriptor",
    "StepState",
    "TqdmProgressRenderer",
    "progress_disabled",
]
