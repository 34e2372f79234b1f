"""Error taxonomy shared by the workspace pipeline components."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

    from spacecli.validation.models import ValidationOutcome


class SpaceError(Exception):
    """Base exception for Space CLI errors."""


class ConfigurationError(SpaceError):
    """Invalid step descriptors or project configuration. Raised before a run starts."""


class NotFoundError(SpaceError):
    """A named entity (step, project, repository) does not exist."""


class StateError(SpaceError):
    """An operation was attempted from a state that does not allow it."""


class ValidationError(SpaceError):
    """One or more external references could not be confirmed."""

    def __init__(self, message: str, outcomes: list[ValidationOutcome] | None = None) -> None:
        super().__init__(message)
        self.outcomes = outcomes or []


class ConflictError(SpaceError):
    """An existing workspace would be overwritten without permission."""

    def __init__(self, message: str, paths: list[Path] | None = None) -> None:
        super().__init__(message)
        self.paths = paths or []


class ProvisioningError(SpaceError):
    """Git or filesystem failure while provisioning a worktree."""


class WorktreeLockError(ProvisioningError):
    """Git reported lock contention. Safe to retry."""


class PostInitError(SpaceError):
    """A post-init command failed or timed out."""


class CancellationError(SpaceError):
    """The run was interrupted by the user.

    Attributes:
        incomplete: Names of repositories whose mutation was in flight.
        outcomes: Per-repository results that finished before the interrupt.
    """

    def __init__(
        self,
        message: str = "Cancelled by user",
        incomplete: list[str] | None = None,
        outcomes: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.incomplete = incomplete or []
        self.outcomes = outcomes or []


class GitHubApiError(SpaceError):
    """Error response from the GitHub REST API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubAuthError(GitHubApiError):
    """Missing token or rejected credentials."""
