"""ContextGenerator - Env files and rendered templates for each worktree."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from spacecli.config import ProjectConfig

logger = logging.getLogger("spacecli.context")

_PLACEHOLDER = re.compile(r"\{\{([A-Z0-9_]+)\}\}")
NO_POST_INIT = 'echo "No post-init command configured"'


def render_template(text: str, values: Mapping[str, str]) -> str:
    """Replace ``{{NAME}}`` tokens with their values.

    Unknown tokens are left untouched so a template can carry text meant for
    another tool.
    """
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), text)


@dataclass(frozen=True)
class ContextTask:
    """Everything needed to generate context for one worktree.

    Attributes:
        repository: Repository name.
        worktree: Worktree root the files are written into.
        branch: Branch checked out in the worktree.
        workspace: Workspace directory name.
        issue_ids: Validated issue ids.
        issue_titles: Titles of the issues, where known.
    """

    repository: str
    worktree: Path
    branch: str
    workspace: str
    issue_ids: tuple[int, ...] = ()
    issue_titles: tuple[str, ...] = ()


@dataclass
class ContextResult:
    """Files generated for one worktree."""

    repository: str
    written: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ContextGenerator:
    """Copies env files and renders templates into a worktree.

    Output depends only on the inputs, and files whose content already
    matches are left alone, so running the generator twice is harmless.
    """

    def __init__(self, project: ProjectConfig) -> None:
        self.project = project

    def placeholders(self, task: ContextTask) -> dict[str, str]:
        """Values available to templates for this task."""
        return {
            "PROJECT_KEY": self.project.key,
            "PROJECT_NAME": self.project.name,
            "BRANCH_NAME": task.branch,
            "WORKSPACE_NAME": task.workspace,
            "WORKSPACE_DIR": str(task.worktree.parent),
            "WORKTREE_PATH": str(task.worktree),
            "REPOSITORY": task.repository,
            "GITHUB_IDS": ", ".join(str(i) for i in task.issue_ids) or "None",
            "ISSUE_TITLES": "\n".join(f"- {title}" for title in task.issue_titles) or "None",
            "POST_INIT_COMMAND": " && ".join(self.project.post_init) or NO_POST_INIT,
        }

    def planned_files(self, task: ContextTask) -> list[Path]:
        """Target paths the generator would write for this task."""
        files = [
            task.worktree / env.target
            for env in self.project.env_files
            if env.applies_to(task.repository)
        ]
        files.extend(task.worktree / template.target for template in self.project.templates)
        return files

    def generate(self, task: ContextTask, dry_run: bool = False) -> ContextResult:
        """Write the context files for one worktree.

        A missing source or a write failure is recorded in the result and
        the remaining files are still attempted.

        Args:
            task: The worktree to populate.
            dry_run: Report the files without writing anything.

        Returns:
            ContextResult listing written, unchanged and failed files.
        """
        result = ContextResult(repository=task.repository)

        if dry_run:
            for target in self.planned_files(task):
                logger.info("[DRY RUN] Would write %s", target)
                result.skipped.append(target)
            return result

        for env in self.project.env_files:
            if not env.applies_to(task.repository):
                continue
            self._emit(result, env.source, task.worktree / env.target, values=None)

        values = self.placeholders(task)
        for template in self.project.templates:
            self._emit(result, template.source, task.worktree / template.target, values=values)

        logger.info(
            "Context for %s: %d written, %d unchanged, %d errors",
            task.repository,
            len(result.written),
            len(result.skipped),
            len(result.errors),
        )
        return result

    def generate_all(
        self, tasks: Sequence[ContextTask], dry_run: bool = False
    ) -> dict[str, ContextResult]:
        """Generate context for several worktrees, keyed by repository name."""
        return {task.repository: self.generate(task, dry_run=dry_run) for task in tasks}

    def _emit(
        self,
        result: ContextResult,
        source: Path,
        target: Path,
        values: Mapping[str, str] | None,
    ) -> None:
        try:
            if values is None:
                content = source.read_bytes()
            else:
                content = render_template(source.read_text(encoding="utf-8"), values).encode(
                    "utf-8"
                )
        except FileNotFoundError:
            logger.error("Context source not found: %s", source)
            result.errors.append(f"source not found: {source}")
            return
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read %s: %s", source, e)
            result.errors.append(f"failed to read {source}: {e}")
            return

        try:
            if target.is_file() and target.read_bytes() == content:
                logger.debug("Unchanged: %s", target)
                result.skipped.append(target)
                return
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as e:
            logger.error("Failed to write %s: %s", target, e)
            result.errors.append(f"failed to write {target}: {e}")
            return
        logger.debug("Wrote %s", target)
        result.written.append(target)
