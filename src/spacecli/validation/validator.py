"""ReferenceValidator - Bounded-time existence checks for issue ids."""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

import httpx

from spacecli.exceptions import GitHubApiError, ValidationError
from spacecli.validation.models import ValidationOutcome, ValidationStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from spacecli.validation.github import GitHubIssueClient

logger = logging.getLogger("spacecli.validation")

DEFAULT_TIMEOUT = 10.0
MAX_WORKERS = 5
MAX_ISSUE_ID = 1_000_000
# Slack on top of the per-call timeout before the validator stops waiting itself
DEADLINE_GRACE = 0.5


def parse_issue_ids(values: Iterable[str | int]) -> list[int]:
    """Convert raw command-line values to issue ids.

    Args:
        values: Strings or ints as given by the user.

    Returns:
        The ids as ints, in input order.

    Raises:
        ValidationError: If any value is not an integer in 1..999999.
    """
    ids = []
    for value in values:
        try:
            parsed = int(str(value).strip())
        except ValueError:
            raise ValidationError(f"Invalid GitHub ID: {value}") from None
        if parsed <= 0 or parsed >= MAX_ISSUE_ID:
            raise ValidationError(f"Invalid GitHub ID: {value}")
        ids.append(parsed)
    return ids


class ReferenceValidator:
    """Checks that issue ids exist before any destructive work starts.

    Ids are checked concurrently on a small worker pool so one slow id does
    not hold up the others. Each lookup carries an explicit timeout, and
    the validator stops waiting on its own once the overall deadline has
    passed, so a service that never answers produces TIMED_OUT outcomes
    instead of a hang.
    """

    def __init__(
        self,
        client: GitHubIssueClient,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = MAX_WORKERS,
        timeout_retries: int = 0,
    ) -> None:
        """Initialize the validator.

        Args:
            client: Issue lookup client.
            timeout: Seconds allowed per lookup.
            max_workers: Concurrent lookups, clamped to 1..5.
            timeout_retries: Extra attempts for a lookup that timed out.
        """
        self.client = client
        self.timeout = timeout
        self.max_workers = max(1, min(max_workers, MAX_WORKERS))
        self.timeout_retries = max(0, timeout_retries)
        self._cancelled = threading.Event()
        self._executor: ThreadPoolExecutor | None = None

    def validate(self, ids: Iterable[int]) -> dict[int, ValidationOutcome]:
        """Validate every id.

        Args:
            ids: Issue ids. Duplicates are checked once.

        Returns:
            Mapping from id to outcome, in input order.
        """
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return {}

        self._cancelled.clear()
        workers = min(self.max_workers, len(unique_ids))
        waves = math.ceil(len(unique_ids) / workers)
        deadline = self.timeout * (self.timeout_retries + 1) * waves + DEADLINE_GRACE

        logger.info(
            "Validating %d issue id(s) (timeout=%ss, workers=%d)",
            len(unique_ids),
            self.timeout,
            workers,
        )

        outcomes: dict[int, ValidationOutcome] = {}
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="space-validate")
        self._executor = executor
        try:
            futures = {executor.submit(self._check, issue_id): issue_id for issue_id in unique_ids}
            done, pending = wait(futures, timeout=deadline)
            for future in done:
                issue_id = futures[future]
                if future.cancelled():
                    outcomes[issue_id] = ValidationOutcome(
                        issue_id, ValidationStatus.ERROR, detail="cancelled"
                    )
                    continue
                error = future.exception()
                if error is not None:
                    logger.error("Issue #%d: unexpected error: %s", issue_id, error)
                    outcomes[issue_id] = ValidationOutcome(
                        issue_id, ValidationStatus.ERROR, detail=str(error)
                    )
                else:
                    outcomes[issue_id] = future.result()
            for future in pending:
                issue_id = futures[future]
                logger.warning("Issue #%d: no response within %ss", issue_id, self.timeout)
                outcomes[issue_id] = ValidationOutcome(
                    issue_id=issue_id,
                    status=ValidationStatus.TIMED_OUT,
                    detail=f"no response within {self.timeout}s",
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

        return {issue_id: outcomes[issue_id] for issue_id in unique_ids}

    def cancel(self) -> None:
        """Abandon outstanding lookups."""
        self._cancelled.set()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _check(self, issue_id: int) -> ValidationOutcome:
        attempts = self.timeout_retries + 1
        for attempt in range(1, attempts + 1):
            if self._cancelled.is_set():
                return ValidationOutcome(issue_id, ValidationStatus.ERROR, detail="cancelled")
            try:
                issue = self.client.fetch_issue(issue_id, timeout=self.timeout)
            except httpx.TimeoutException:
                logger.warning(
                    "Issue #%d: lookup timed out after %ss (attempt %d/%d)",
                    issue_id,
                    self.timeout,
                    attempt,
                    attempts,
                )
                continue
            except GitHubApiError as e:
                logger.error("Issue #%d: %s", issue_id, e)
                return ValidationOutcome(issue_id, ValidationStatus.ERROR, detail=str(e))
            except httpx.HTTPError as e:
                logger.error("Issue #%d: request failed: %s", issue_id, e)
                return ValidationOutcome(
                    issue_id, ValidationStatus.ERROR, detail=f"request failed: {e}"
                )

            if issue is None:
                logger.info("Issue #%d does not exist", issue_id)
                return ValidationOutcome(
                    issue_id, ValidationStatus.INVALID, detail="not found"
                )
            logger.info("Issue #%d exists: %s", issue_id, issue.title)
            return ValidationOutcome(issue_id, ValidationStatus.VALID, title=issue.title)

        return ValidationOutcome(
            issue_id,
            ValidationStatus.TIMED_OUT,
            detail=f"no response within {self.timeout}s",
        )
