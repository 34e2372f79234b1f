"""Worktree Provisioner - One isolated git worktree per repository."""

from spacecli.worktrees.git import GitWorktreeManager, is_lock_error
from spacecli.worktrees.models import (
    Decision,
    PlannedWorktree,
    WorktreeOutcome,
    WorktreeStatus,
    WorktreeTarget,
)
from spacecli.worktrees.provisioner import WorktreeProvisioner

__all__ = [
    "Decision",
    "GitWorktreeManager",
    "PlannedWorktree",
    "WorktreeOutcome",
    "WorktreeProvisioner",
    "WorktreeStatus",
    "WorktreeTarget",
    "is_lock_error",
]
