"""Reference Validator - Confirms issue ids exist before workspace mutation."""

from spacecli.validation.github import GitHubIssueClient
from spacecli.validation.models import (
    GitHubIssue,
    ValidationOutcome,
    ValidationStatus,
    blocking_outcomes,
)
from spacecli.validation.validator import ReferenceValidator, parse_issue_ids

__all__ = [
    "GitHubIssue",
    "GitHubIssueClient",
    "ReferenceValidator",
    "ValidationOutcome",
    "ValidationStatus",
    "blocking_outcomes",
    "parse_issue_ids",
]
