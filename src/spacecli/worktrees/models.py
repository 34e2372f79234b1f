"""Data models for the Worktree Provisioner."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class Decision(str, Enum):
    """What the provisioner will do with a target path."""

    CREATE = "create"
    REUSE = "reuse"
    OVERWRITE = "overwrite"
    DECLINE = "decline"
    FAIL = "fail"


class WorktreeStatus(str, Enum):
    """Per-repository provisioning result."""

    CREATED = "created"
    REUSED = "reused"
    OVERWRITE_CONFIRMED = "overwrite_confirmed"
    OVERWRITE_DECLINED = "overwrite_declined"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        """Whether the worktree is usable by later stages."""
        return self in (
            WorktreeStatus.CREATED,
            WorktreeStatus.REUSED,
            WorktreeStatus.OVERWRITE_CONFIRMED,
        )


DECISION_STATUS = {
    Decision.CREATE: WorktreeStatus.CREATED,
    Decision.REUSE: WorktreeStatus.REUSED,
    Decision.OVERWRITE: WorktreeStatus.OVERWRITE_CONFIRMED,
    Decision.DECLINE: WorktreeStatus.OVERWRITE_DECLINED,
    Decision.FAIL: WorktreeStatus.FAILED,
}


@dataclass(frozen=True)
class WorktreeTarget:
    """A resolved repository to provision.

    Attributes:
        name: Repository name from the project configuration.
        source: Local clone the worktree is linked to.
        path: Deterministic worktree path.
        branch: Branch to check out in the worktree.
        base_branch: Branch a new branch starts from.
        required: Whether a failure here fails the whole run.
    """

    name: str
    source: Path
    path: Path
    branch: str
    base_branch: str = "main"
    required: bool = False


@dataclass(frozen=True)
class PlannedWorktree:
    """A provisioning decision, computed identically in dry-run and real mode."""

    target: WorktreeTarget
    decision: Decision
    detail: str | None = None

    @property
    def status(self) -> WorktreeStatus:
        """The outcome this decision produces when it succeeds."""
        return DECISION_STATUS[self.decision]

    @property
    def mutates(self) -> bool:
        return self.decision in (Decision.CREATE, Decision.OVERWRITE)


@dataclass(frozen=True)
class WorktreeOutcome:
    """Result of provisioning one repository."""

    name: str
    status: WorktreeStatus
    path: Path
    branch: str
    detail: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status.ok
