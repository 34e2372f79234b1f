"""Unit tests for branch, workspace and path naming."""

from pathlib import Path

import pytest

from spacecli.exceptions import ConfigurationError
from spacecli.naming import (
    DEFAULT_BRANCH_TEMPLATE,
    DEFAULT_PATH_TEMPLATE,
    render_branch_name,
    render_target_path,
    validate_branch_name,
    validate_project_key,
    workspace_name,
)


@pytest.mark.unit
class TestValidateBranchName:
    """Tests for branch name safety checks."""

    def test_accepts_safe_name(self) -> None:
        """Alphanumerics, dashes, underscores and slashes are allowed."""
        assert validate_branch_name("  java/2326-fix_timeout ") == "java/2326-fix_timeout"

    @pytest.mark.parametrize(
        "name",
        ["", "   ", "--force", "a..b", "fix;rm -rf", "feat/", "-x", "has space", "a$b"],
    )
    def test_rejects_unsafe_names(self, name: str) -> None:
        """Empty, shell-meta and git-hostile names are rejected."""
        with pytest.raises(ConfigurationError):
            validate_branch_name(name)

    def test_rejects_too_long(self) -> None:
        """Names over 100 characters are rejected."""
        with pytest.raises(ConfigurationError, match="too long"):
            validate_branch_name("a" * 101)

    def test_project_key(self) -> None:
        """Project keys may not contain slashes."""
        assert validate_project_key("java") == "java"
        with pytest.raises(ConfigurationError):
            validate_project_key("java/sdk")


@pytest.mark.unit
class TestWorkspaceName:
    """Tests for workspace directory naming."""

    def test_ids_then_slug(self) -> None:
        """Ids prefix the lowercased slug."""
        assert workspace_name("Fix-Timeout", [2326]) == "2326-fix-timeout"
        assert workspace_name("fix", [1, 2]) == "1-2-fix"

    def test_no_ids(self) -> None:
        """Without ids the slug alone is used."""
        assert workspace_name("cleanup") == "cleanup"

    def test_truncated(self) -> None:
        """Names are capped at 50 characters."""
        assert len(workspace_name("x" * 80)) == 50


@pytest.mark.unit
class TestRenderBranchName:
    """Tests for branch template rendering."""

    def test_default_with_ticket(self) -> None:
        """The default rule is project/ticket-slug."""
        assert render_branch_name(DEFAULT_BRANCH_TEMPLATE, "java", "fix", [2326]) == (
            "java/2326-fix"
        )

    def test_default_without_ticket(self) -> None:
        """Without a ticket the default falls back to project/slug."""
        assert render_branch_name(DEFAULT_BRANCH_TEMPLATE, "java", "fix") == "java/fix"

    def test_all_tickets(self) -> None:
        """{tickets} joins every id."""
        assert render_branch_name("feature/{tickets}-{slug}", "java", "x", [1, 2]) == (
            "feature/1-2-x"
        )

    def test_custom_template_needing_ticket(self) -> None:
        """A custom rule that needs a ticket fails without one."""
        with pytest.raises(ConfigurationError, match="ticket"):
            render_branch_name("bug/{ticket}", "java", "fix")


@pytest.mark.unit
class TestRenderTargetPath:
    """Tests for worktree path rendering."""

    def test_default_layout(self, tmp_path: Path) -> None:
        """Paths are base/project/workspace/repo."""
        path = render_target_path(
            DEFAULT_PATH_TEMPLATE, tmp_path, "java", "2326-fix", "sdk", "java/2326-fix"
        )
        assert path == tmp_path / "java" / "2326-fix" / "sdk"

    def test_unknown_placeholder(self, tmp_path: Path) -> None:
        """Unknown placeholders are configuration errors."""
        with pytest.raises(ConfigurationError):
            render_target_path("{nope}/x", tmp_path, "java", "w", "sdk", "b")
