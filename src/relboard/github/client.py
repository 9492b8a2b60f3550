"""GitHub REST API client using httpx.

This module provides the async HTTP client the dashboard uses to talk to
GitHub: authentication headers, retry with exponential backoff, mapping of
HTTP failures to exceptions, page-by-page pagination and opportunistic
tracking of the rate-limit headers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import quote

import httpx

from relboard.github.models import (
    Label,
    Milestone,
    PullRequest,
    RateLimit,
    Release,
    Repository,
    Review,
    User,
    Workflow,
    WorkflowRun,
)

logger = logging.getLogger(__name__)

# GitHub API constants
GITHUB_API_BASE = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
PAGE_SIZE = 100

# Rate limit thresholds
RATE_LIMIT_WARNING = 50
RATE_LIMIT_BACKOFF = 10


class GitHubClientError(Exception):
    """Base exception for GitHub client errors."""


class GitHubAuthError(GitHubClientError):
    """Authentication with GitHub failed."""


class GitHubRateLimitError(GitHubClientError):
    """GitHub API rate limit exceeded."""

    def __init__(self, message: str, reset_at: int | None = None, remaining: int | None = None) -> None:
        super().__init__(message)
        self.reset_at = reset_at  # Unix timestamp when rate limit resets
        self.remaining = remaining


class GitHubNotFoundError(GitHubClientError):
    """Requested resource not found."""


class GitHubClient:
    """Async GitHub API client bound to a single token.

    Implements rate limit detection and retry logic with exponential backoff.
    The most recent ``X-RateLimit-*`` headers are remembered so callers can
    refuse work before GitHub does.
    """

    def __init__(
        self,
        token: str,
        base_url: str = GITHUB_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            token: GitHub token (personal access token or OAuth token).
            base_url: API root, overridable for GitHub Enterprise.
            timeout: Request timeout in seconds.
            max_retries: Attempts per request before giving up.
            transport: Optional httpx transport (used by tests).
            clock: Returns the current epoch time in seconds.

        Raises:
            GitHubAuthError: If the token is empty.
        """
        if not token:
            raise GitHubAuthError("No GitHub token provided.")

        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._token = token
        self._transport = transport
        self._clock = clock

        # Build headers - never log the token!
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        self._client: httpx.AsyncClient | None = None
        self.rate_limit_remaining: int | None = None
        self.rate_limit_reset: int | None = None

    async def __aenter__(self) -> GitHubClient:
        """Enter async context manager."""
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.aclose()

    async def open(self) -> None:
        """Create the underlying HTTP client if it does not exist yet."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError("GitHubClient must be opened before use (async with, or await open())")
        return self._client

    # =========================================================================
    # Rate Limit Tracking
    # =========================================================================

    def _track_rate_limit(self, response: httpx.Response) -> None:
        """Record remaining/reset from response headers when present."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        reset = response.headers.get("X-RateLimit-Reset")

        if remaining is not None and remaining.isdigit():
            self.rate_limit_remaining = int(remaining)
        if reset is not None and reset.isdigit():
            self.rate_limit_reset = int(reset)

        if self.rate_limit_remaining is not None and self.rate_limit_remaining < RATE_LIMIT_WARNING:
            logger.warning(f"Rate limit is getting low: {self.rate_limit_remaining} requests remaining")

    def seconds_until_reset(self) -> int:
        """Seconds until the tracked rate limit window resets (0 if unknown)."""
        if self.rate_limit_reset is None:
            return 0
        return max(0, self.rate_limit_reset - int(self._clock()))

    def should_back_off(self) -> bool:
        """Check whether new calls should be refused until the limit resets."""
        if self.rate_limit_remaining is None or self.rate_limit_remaining >= RATE_LIMIT_BACKOFF:
            return False
        time_to_reset = self.seconds_until_reset()
        if time_to_reset > 0:
            logger.warning(f"Rate limiting active, backing off. {time_to_reset}s until reset.")
            return True
        return False

    # =========================================================================
    # Requests
    # =========================================================================

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, PATCH, etc.).
            endpoint: API endpoint (e.g., "/repos/owner/repo/issues/1").
            **kwargs: Additional arguments passed to httpx request.

        Returns:
            httpx.Response object.

        Raises:
            GitHubAuthError: If authentication fails.
            GitHubRateLimitError: If rate limit is exceeded after retries.
            GitHubNotFoundError: If resource is not found.
            GitHubClientError: For other API errors.
        """
        backoff = INITIAL_BACKOFF

        for attempt in range(self.max_retries):
            try:
                response = await self.client.request(method, endpoint, **kwargs)
            except httpx.TimeoutException as e:
                if attempt < self.max_retries - 1:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"Request timeout, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubClientError(f"Request timeout after {self.max_retries} attempts") from e
            except httpx.HTTPError as e:
                if attempt < self.max_retries - 1:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"HTTP error: {e}, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitHubClientError(f"HTTP error after {self.max_retries} attempts: {e}") from e

            self._track_rate_limit(response)

            # Handle rate limiting (primary limit is 403 with zero remaining, secondary is 429)
            if response.status_code in (403, 429):
                remaining = response.headers.get("X-RateLimit-Remaining", "0")
                if remaining == "0" or response.status_code == 429:
                    reset_at = int(response.headers.get("X-RateLimit-Reset", "0"))
                    if attempt < self.max_retries - 1:
                        wait_time = min(backoff * (2**attempt), 60)
                        logger.warning(f"Rate limit hit, waiting {wait_time:.1f}s (attempt {attempt + 1}/{self.max_retries})")
                        await asyncio.sleep(wait_time)
                        continue
                    raise GitHubRateLimitError(
                        f"GitHub API rate limit exceeded. Resets at {reset_at}",
                        reset_at=reset_at,
                        remaining=0,
                    )

            # Handle auth errors
            if response.status_code == 401:
                raise GitHubAuthError("GitHub authentication failed. Check your token.")

            # Handle not found
            if response.status_code == 404:
                raise GitHubNotFoundError(f"Resource not found: {endpoint}")

            # Handle other errors
            if response.status_code >= 400:
                error_body = response.text
                logger.error(f"GitHub API error {response.status_code}: {error_body[:500]}")
                raise GitHubClientError(f"GitHub API error {response.status_code}: {error_body[:200]}")

            return response

        # Should not reach here, but just in case
        raise GitHubClientError("Max retries exceeded")

    async def _get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request("GET", endpoint, params=params)
        return response.json()

    async def paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_items: int | None = None,
        items_key: str | None = None,
        max_pages: int | None = None,
        keep_partial: bool = False,
    ) -> list[dict[str, Any]]:
        """Fetch a paginated collection page by page.

        Pages are requested with ``per_page=100`` and an increasing ``page``
        number. Fetching continues while the previous page was full and the
        accumulated count has not reached ``max_items``. A short page always
        ends pagination.

        Args:
            endpoint: Collection endpoint.
            params: Extra query parameters (state, sort, labels, ...).
            max_items: Cap on the number of items returned.
            items_key: Key holding the list when the endpoint wraps it in an
                object (e.g. "workflow_runs").
            max_pages: Stop after this many pages regardless of size.
            keep_partial: If a page after the first fails, stop and return
                the items collected so far instead of raising.

        Returns:
            Raw item dicts in the order GitHub returned them.
        """
        items: list[dict[str, Any]] = []
        page = 1

        while max_items is None or len(items) < max_items:
            query = {**(params or {}), "per_page": PAGE_SIZE, "page": page}
            logger.debug(f"Fetching {endpoint} page {page}")
            try:
                data = await self._get_json(endpoint, params=query)
            except GitHubClientError as e:
                if keep_partial and page > 1:
                    logger.warning(f"Stopping pagination of {endpoint} at page {page}: {e}")
                    break
                raise

            batch = (data.get(items_key) or []) if items_key else data
            if not isinstance(batch, list):
                raise GitHubClientError(f"Unexpected payload for {endpoint}: expected a list")

            items.extend(batch)
            logger.debug(f"Retrieved {len(batch)} items from {endpoint} page {page}")

            if len(batch) < PAGE_SIZE:
                break
            if max_pages is not None and page >= max_pages:
                break
            page += 1

        if max_items is not None and len(items) > max_items:
            logger.debug(f"Limiting {endpoint} to {max_items} items (out of {len(items)} retrieved)")
            items = items[:max_items]

        return items

    # =========================================================================
    # Users & Repositories
    # =========================================================================

    async def get_authenticated_user(self) -> User:
        """Get the account the token belongs to."""
        return User.model_validate(await self._get_json("/user"))

    async def get_repository(self, owner: str, repo: str) -> Repository:
        """Get repository metadata."""
        return Repository.model_validate(await self._get_json(f"/repos/{owner}/{repo}"))

    async def get_rate_limit(self) -> RateLimit:
        """Get the core rate limit status (does not count against the limit)."""
        data = await self._get_json("/rate_limit")
        rate = RateLimit.model_validate(data["rate"])
        self.rate_limit_remaining = rate.remaining
        self.rate_limit_reset = rate.reset
        return rate

    # =========================================================================
    # Release Operations
    # =========================================================================

    async def list_releases(self, owner: str, repo: str) -> list[Release]:
        """List every release of a repository."""
        items = await self.paginate(f"/repos/{owner}/{repo}/releases")
        return [Release.model_validate(item) for item in items]

    async def create_release(
        self,
        owner: str,
        repo: str,
        tag_name: str,
        name: str | None = None,
        body: str | None = None,
        draft: bool = False,
        prerelease: bool = False,
    ) -> Release:
        """Create a release.

        Args:
            owner: Repository owner.
            repo: Repository name.
            tag_name: Tag to create the release from.
            name: Release title.
            body: Release notes.
            draft: Create as an unpublished draft.
            prerelease: Mark as a pre-release.

        Returns:
            The created Release.
        """
        payload: dict[str, Any] = {"tag_name": tag_name, "draft": draft, "prerelease": prerelease}
        if name is not None:
            payload["name"] = name
        if body is not None:
            payload["body"] = body

        response = await self._request("POST", f"/repos/{owner}/{repo}/releases", json=payload)
        return Release.model_validate(response.json())

    async def update_release(self, owner: str, repo: str, release_id: int, **updates: Any) -> Release:
        """Update fields of an existing release (draft, prerelease, name, ...)."""
        response = await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/releases/{release_id}",
            json=updates,
        )
        return Release.model_validate(response.json())

    # =========================================================================
    # Pull Request Operations
    # =========================================================================

    async def list_pull_requests(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        labels: str = "",
        max_items: int | None = None,
        max_pages: int | None = None,
    ) -> list[PullRequest]:
        """List pull requests, most recently updated first."""
        params: dict[str, Any] = {"state": state, "sort": "updated", "direction": "desc"}
        if labels:
            params["labels"] = labels
        items = await self.paginate(
            f"/repos/{owner}/{repo}/pulls",
            params=params,
            max_items=max_items,
            max_pages=max_pages,
        )
        return [PullRequest.model_validate(item) for item in items]

    async def list_reviews(self, owner: str, repo: str, number: int) -> list[Review]:
        """List every review submitted on a pull request."""
        items = await self.paginate(f"/repos/{owner}/{repo}/pulls/{number}/reviews")
        return [Review.model_validate(item) for item in items]

    async def list_requested_reviewers(self, owner: str, repo: str, number: int) -> list[str]:
        """Get logins of users whose review is still requested."""
        data = await self._get_json(f"/repos/{owner}/{repo}/pulls/{number}/requested_reviewers")
        return [user.get("login", "") for user in data.get("users", [])]

    # =========================================================================
    # Issue Operations
    # =========================================================================

    async def list_issues(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        labels: str = "",
        max_items: int | None = None,
    ) -> list[dict[str, Any]]:
        """List raw issue payloads, most recently updated first.

        GitHub returns pull requests from this endpoint too; they carry a
        ``pull_request`` key. Filtering is left to the caller.
        """
        params: dict[str, Any] = {"state": state, "sort": "updated", "direction": "desc"}
        if labels:
            params["labels"] = labels
        return await self.paginate(f"/repos/{owner}/{repo}/issues", params=params, max_items=max_items)

    async def add_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[Label]:
        """Add labels to an issue or pull request (preserves existing labels)."""
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/labels",
            json={"labels": labels},
        )
        return [Label.model_validate(item) for item in response.json()]

    async def remove_label(self, owner: str, repo: str, number: int, label: str) -> None:
        """Remove a label from an issue or pull request."""
        await self._request("DELETE", f"/repos/{owner}/{repo}/issues/{number}/labels/{quote(label, safe='')}")

    # =========================================================================
    # Label & Milestone Operations
    # =========================================================================

    async def list_labels(self, owner: str, repo: str) -> list[Label]:
        """List every label defined in a repository."""
        items = await self.paginate(f"/repos/{owner}/{repo}/labels")
        return [Label.model_validate(item) for item in items]

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        color: str,
        description: str = "",
    ) -> Label:
        """Create a new label.

        Args:
            owner: Repository owner.
            repo: Repository name.
            name: Label name.
            color: Hex color (without #).
            description: Label description.

        Returns:
            Created Label.
        """
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/labels",
            json={"name": name, "color": color, "description": description},
        )
        return Label.model_validate(response.json())

    async def list_milestones(self, owner: str, repo: str, state: str = "all") -> list[Milestone]:
        """List milestones ordered by due date."""
        items = await self.paginate(
            f"/repos/{owner}/{repo}/milestones",
            params={"state": state, "sort": "due_on"},
        )
        return [Milestone.model_validate(item) for item in items]

    # =========================================================================
    # Actions Operations
    # =========================================================================

    async def list_workflows(self, owner: str, repo: str) -> list[Workflow]:
        """List GitHub Actions workflows."""
        items = await self.paginate(f"/repos/{owner}/{repo}/actions/workflows", items_key="workflows")
        return [Workflow.model_validate(item) for item in items]

    async def list_workflow_runs(
        self,
        owner: str,
        repo: str,
        workflow_id: int | str | None = None,
        max_items: int | None = None,
    ) -> list[WorkflowRun]:
        """List workflow runs, for one workflow or for the whole repository.

        A failure after the first page ends pagination with the runs
        collected so far.
        """
        if workflow_id is not None:
            endpoint = f"/repos/{owner}/{repo}/actions/workflows/{workflow_id}/runs"
        else:
            endpoint = f"/repos/{owner}/{repo}/actions/runs"
        items = await self.paginate(
            endpoint,
            items_key="workflow_runs",
            max_items=max_items,
            keep_partial=True,
        )
        return [WorkflowRun.model_validate(item) for item in items]
