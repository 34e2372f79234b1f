"""Orchestrator package - Workspace initialization state machine."""

from spacecli.orchestrator.models import (
    PipelineState,
    RepositoryRecord,
    RunContext,
    RunRequest,
    RunResult,
)
from spacecli.orchestrator.orchestrator import STEPS, WorkspaceOrchestrator

__all__ = [
    "STEPS",
    "PipelineState",
    "RepositoryRecord",
    "RunContext",
    "RunRequest",
    "RunResult",
    "WorkspaceOrchestrator",
]
