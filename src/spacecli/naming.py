"""Branch, workspace and worktree path naming rules."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING

from spacecli.exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence

DEFAULT_BRANCH_TEMPLATE = "{project}/{ticket}-{slug}"
DEFAULT_BRANCH_TEMPLATE_NO_TICKET = "{project}/{slug}"
DEFAULT_PATH_TEMPLATE = "{workspace_base}/{project}/{workspace}/{repo}"

MAX_BRANCH_LENGTH = 100
MAX_NAME_LENGTH = 50

_UNSAFE_BRANCH_PATTERNS = [
    re.compile(r"^--"),
    re.compile(r"\.\."),
    re.compile(r"[;&|`$(){}\[\]\\<>?*~]"),  # shell metacharacters
    re.compile(r"^[-.]"),
    re.compile(r"/$"),
]
_SAFE_BRANCH = re.compile(r"^[a-zA-Z0-9_/-]+$")
_SAFE_KEY = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_branch_name(branch: str | None) -> str:
    """Check a branch name or slug is safe to pass to git.

    Returns:
        The trimmed name.

    Raises:
        ConfigurationError: If the name is empty, too long, or contains
            characters outside ``[a-zA-Z0-9_/-]``.
    """
    if not branch or not branch.strip():
        raise ConfigurationError("Branch name is required")
    trimmed = branch.strip()

    for pattern in _UNSAFE_BRANCH_PATTERNS:
        if pattern.search(trimmed):
            raise ConfigurationError(
                f"Branch name contains unsafe characters or patterns: {branch}"
            )
    if not _SAFE_BRANCH.match(trimmed):
        raise ConfigurationError(
            "Branch name contains invalid characters. Only alphanumeric, underscore, "
            f"dash, and forward slash are allowed: {branch}"
        )
    if len(trimmed) > MAX_BRANCH_LENGTH:
        raise ConfigurationError(
            f"Branch name too long (max {MAX_BRANCH_LENGTH} characters): {branch}"
        )
    return trimmed


def validate_project_key(key: str | None) -> str:
    """Check a project key is alphanumeric with dashes/underscores."""
    if not key or not key.strip():
        raise ConfigurationError("Project key is required")
    trimmed = key.strip()
    if not _SAFE_KEY.match(trimmed) or len(trimmed) > MAX_NAME_LENGTH:
        raise ConfigurationError(f"Project key contains invalid characters: {key}")
    return trimmed


def workspace_name(slug: str, issue_ids: Sequence[int] = ()) -> str:
    """Build the workspace directory name from the issue ids and slug.

    ``[2326], "fix-timeout"`` becomes ``2326-fix-timeout``.
    """
    raw = "-".join([*(str(i) for i in issue_ids), slug])
    name = re.sub(r"\s+", "-", raw.strip().lower())
    name = re.sub(r"[^a-z0-9_-]", "", name)
    if not name:
        raise ConfigurationError("Workspace name contains no valid characters")
    return name[:MAX_NAME_LENGTH]


def render_branch_name(
    template: str,
    project: str,
    slug: str,
    issue_ids: Sequence[int] = (),
) -> str:
    """Render a repository's branch naming rule.

    Placeholders: ``{project}``, ``{ticket}`` (first issue id), ``{tickets}``
    (all ids joined with dashes) and ``{slug}``.

    Raises:
        ConfigurationError: If the template needs a ticket and none was
            given, uses an unknown placeholder, or renders an unsafe name.
    """
    if not issue_ids and template == DEFAULT_BRANCH_TEMPLATE:
        template = DEFAULT_BRANCH_TEMPLATE_NO_TICKET

    values = {"project": project, "slug": slug}
    if issue_ids:
        values["ticket"] = str(issue_ids[0])
        values["tickets"] = "-".join(str(i) for i in issue_ids)

    try:
        branch = template.format_map(values)
    except KeyError as e:
        raise ConfigurationError(
            f"Branch template '{template}' uses {e} which is not available for this run"
        ) from None
    return validate_branch_name(branch)


def render_target_path(
    template: str,
    workspace_base: Path,
    project: str,
    workspace: str,
    repo: str,
    branch: str,
) -> Path:
    """Render a repository's worktree path template to an absolute path.

    Placeholders: ``{workspace_base}``, ``{project}``, ``{workspace}``,
    ``{repo}`` and ``{branch}``.

    Raises:
        ConfigurationError: On an unknown placeholder.
    """
    try:
        rendered = template.format_map(
            {
                "workspace_base": str(workspace_base),
                "project": project,
                "workspace": workspace,
                "repo": repo,
                "branch": branch,
            }
        )
    except KeyError as e:
        raise ConfigurationError(
            f"Path template '{template}' uses unknown placeholder {e}"
        ) from None
    return Path(rendered).expanduser().absolute()
