"""GitHubIssueClient - Minimal GitHub REST client for issue lookups."""

from __future__ import annotations

import logging
import os

import httpx

from spacecli.exceptions import GitHubApiError, GitHubAuthError
from spacecli.logging import sanitize_for_log
from spacecli.validation.models import GitHubIssue

logger = logging.getLogger("spacecli.validation.github")

DEFAULT_TIMEOUT = 10.0


class GitHubIssueClient:
    """Looks up issues in one GitHub repository.

    Every request carries an explicit timeout. A timeout surfaces as
    ``httpx.TimeoutException`` so callers can tell "does not exist" apart
    from "could not be checked".
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            repo: GitHub repo in "owner/repo" format.
            token: Personal access token. Defaults to GITHUB_TOKEN.
            base_url: GitHub API base URL (for testing/enterprise).
            timeout: Default per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.repo = repo
        self.token = token if token is not None else os.environ.get("GITHUB_TOKEN", "")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client for the GitHub API."""
        if self._client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            else:
                logger.warning("GITHUB_TOKEN not set; private repositories will not resolve")
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def fetch_issue(self, number: int, timeout: float | None = None) -> GitHubIssue | None:
        """Fetch an issue or pull request by number.

        Args:
            number: Issue number.
            timeout: Timeout for this request. Defaults to the client timeout.

        Returns:
            The issue, or None if it does not exist.

        Raises:
            httpx.TimeoutException: If GitHub did not answer in time.
            GitHubAuthError: If the token is missing or rejected.
            GitHubApiError: For any other error response.
        """
        response = self.client.get(
            f"/repos/{self.repo}/issues/{number}",
            timeout=timeout if timeout is not None else self.timeout,
        )

        if response.status_code == 404:
            logger.debug("Issue #%d not found in %s", number, self.repo)
            return None
        if response.status_code in (401, 403):
            raise GitHubAuthError(
                f"GitHub authentication failed for {self.repo}. "
                "Check that GITHUB_TOKEN is valid and has access to the repository.",
                status_code=response.status_code,
            )
        if response.status_code != 200:
            detail = sanitize_for_log(response.text[:200])
            raise GitHubApiError(
                f"GitHub API error: {response.status_code} - {detail}",
                status_code=response.status_code,
            )

        data = response.json()
        return GitHubIssue(
            number=data["number"],
            title=data.get("title") or "",
            state=data.get("state", "open"),
            url=data.get("html_url", ""),
            labels=[label["name"] for label in data.get("labels", [])],
        )
