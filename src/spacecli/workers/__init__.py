"""Workers package for Space CLI.

Contains the post-init executor that runs setup commands in new worktrees.
"""

from spacecli.workers.models import CommandResult, PostInitResult, PostInitTask
from spacecli.workers.post_init import PostInitExecutor

__all__ = [
    "CommandResult",
    "PostInitExecutor",
    "PostInitResult",
    "PostInitTask",
]
