"""Data models for the Reference Validator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class ValidationStatus(str, Enum):
    """Result of checking one external identifier."""

    VALID = "valid"
    INVALID = "invalid"
    TIMED_OUT = "timed_out"
    ERROR = "error"


@dataclass(frozen=True)
class ValidationOutcome:
    """Outcome of validating one issue id.

    Attributes:
        issue_id: The identifier that was checked.
        status: VALID, INVALID (does not exist), TIMED_OUT (could not be
            checked in time) or ERROR (could not be checked).
        detail: Human readable explanation for non-valid outcomes.
        title: Issue title when the service returned one.
    """

    issue_id: int
    status: ValidationStatus
    detail: str | None = None
    title: str | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == ValidationStatus.VALID

    def describe(self) -> str:
        """One-line description for error messages."""
        if self.detail:
            return f"#{self.issue_id}: {self.status.value} ({self.detail})"
        return f"#{self.issue_id}: {self.status.value}"


@dataclass(frozen=True)
class GitHubIssue:
    """The fields of a GitHub issue the pipeline uses."""

    number: int
    title: str
    state: str
    url: str
    labels: list[str] = field(default_factory=list)


def blocking_outcomes(
    outcomes: Iterable[ValidationOutcome],
    allow_unverified: bool = False,
) -> list[ValidationOutcome]:
    """Select the outcomes that must stop a run.

    Invalid and errored ids always block. Timed-out ids block unless the
    caller explicitly allows unverified references.
    """
    blocking = []
    for outcome in outcomes:
        if outcome.status in (ValidationStatus.INVALID, ValidationStatus.ERROR):
            blocking.append(outcome)
        elif outcome.status == ValidationStatus.TIMED_OUT and not allow_unverified:
            blocking.append(outcome)
    return blocking
