"""Context Generator - Populates worktrees with env files and templates."""

from spacecli.context.generator import (
    ContextGenerator,
    ContextResult,
    ContextTask,
    render_template,
)

__all__ = [
    "ContextGenerator",
    "ContextResult",
    "ContextTask",
    "render_template",
]
