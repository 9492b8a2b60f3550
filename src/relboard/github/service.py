"""High level GitHub operations for the dashboard.

GitHubService wraps GitHubClient with the TTL cache, review status
resolution and issue classification. Every public coroutine returns an
ApiResult; failures are reported in the envelope and never raised.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from relboard.core.cache import TTLCache, make_key, repo_prefix
from relboard.github.classifier import classify_issue, find_type_labels
from relboard.github.client import (
    DEFAULT_TIMEOUT,
    GITHUB_API_BASE,
    MAX_RETRIES,
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
)
from relboard.github.models import (
    ApiResult,
    ErrorKind,
    Issue,
    Label,
    Milestone,
    PullRequest,
    RateLimit,
    RateLimitNotice,
    Release,
    Repository,
    ReviewStatus,
    User,
    Workflow,
    WorkflowRun,
)
from relboard.github.reviews import (
    needs_review_data,
    order_statuses,
    resolve_review_status,
    synthetic_status,
)

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000

# Cache lifetimes
REVIEW_STATUS_TTL_MS = 60 * MINUTE_MS
INCOMPLETE_PRS_TTL_MS = 5 * MINUTE_MS
LABELS_TTL_MS = 60 * MINUTE_MS
ISSUES_TTL_MS = 30 * MINUTE_MS
WORKFLOW_RUNS_TTL_MS = 15 * MINUTE_MS

# Item caps
DEFAULT_MAX_PRS = 200
DEFAULT_MAX_ISSUES = 300
MAX_WORKFLOW_RUNS = 500

# PRs whose reviews are fetched concurrently
REVIEW_BATCH_SIZE = 10

RATE_LIMITED_MESSAGE = "Rate limit exceeded. Please try again later."
NOT_AUTHENTICATED_MESSAGE = "Not authenticated. Call authenticate() first."


def error_kind(error: BaseException) -> ErrorKind:
    """Map an exception to the envelope's error category."""
    if isinstance(error, GitHubAuthError):
        return ErrorKind.AUTH
    if isinstance(error, GitHubNotFoundError):
        return ErrorKind.NOT_FOUND
    if isinstance(error, GitHubRateLimitError):
        return ErrorKind.RATE_LIMITED
    return ErrorKind.TRANSIENT


def format_reset_time(reset_epoch: int | None) -> str:
    """Human-readable local time for a rate limit reset timestamp."""
    if not reset_epoch:
        return "unknown"
    return datetime.fromtimestamp(reset_epoch).strftime("%Y-%m-%d %H:%M:%S")


def random_label_color() -> str:
    """Random 6-digit hex color for newly created labels."""
    return f"{random.randrange(0x1000000):06x}"


class GitHubService:
    """Cached, envelope-returning GitHub operations for one session.

    A service holds at most one authenticated client. Construct it at
    session start, call authenticate(), and close() it at logout.
    """

    def __init__(
        self,
        cache: TTLCache | None = None,
        base_url: str = GITHUB_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Args:
            cache: TTL cache to use; a fresh one is created if omitted.
            base_url: GitHub API root.
            timeout: HTTP request timeout in seconds.
            max_retries: Attempts per request.
            transport: Optional httpx transport (used by tests).
            clock: Epoch-seconds clock used for rate limit bookkeeping.
        """
        self.cache = cache if cache is not None else TTLCache()
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self._transport = transport
        self._clock = clock
        self._client: GitHubClient | None = None
        self.user: User | None = None

    @property
    def client(self) -> GitHubClient:
        """The authenticated client."""
        if self._client is None:
            raise GitHubAuthError(NOT_AUTHENTICATED_MESSAGE)
        return self._client

    @property
    def is_authenticated(self) -> bool:
        return self._client is not None

    async def __aenter__(self) -> GitHubService:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.close()

    def _failure(self, action: str, error: Exception) -> ApiResult[Any]:
        """Log a failed operation and build its envelope."""
        kind = error_kind(error)
        logger.error(f"Error {action}: {error}")
        notice = None
        if isinstance(error, GitHubRateLimitError):
            notice = RateLimitNotice(remaining=error.remaining, reset_at=format_reset_time(error.reset_at))
        return ApiResult.fail(str(error), kind, notice)

    # =========================================================================
    # Session
    # =========================================================================

    async def authenticate(self, token: str) -> ApiResult[User]:
        """Bind a token to this service and fetch the identity it belongs to.

        Any previously bound client is closed first. On failure the service
        is left unauthenticated.
        """
        await self.close()
        logger.info("Authenticating with GitHub")
        try:
            client = GitHubClient(
                token,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=self.max_retries,
                transport=self._transport,
                clock=self._clock,
            )
            await client.open()
        except GitHubClientError as e:
            return self._failure("authenticating", e)

        try:
            user = await client.get_authenticated_user()
        except Exception as e:
            await client.aclose()
            result = self._failure("authenticating", e)
            if result.error_kind is ErrorKind.AUTH:
                result.error = "Authentication failed. Please check your token."
            return result

        self._client = client
        self.user = user
        logger.info(f"Authenticated as {user.login}")
        return ApiResult.ok(user)

    async def close(self) -> None:
        """Drop the bound client and its connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.user = None

    # =========================================================================
    # Cache Administration
    # =========================================================================

    def clear_repo_cache(self, owner: str, repo: str) -> int:
        """Evict every cached entry of one repository."""
        return self.cache.delete_by_prefix(repo_prefix(owner, repo))

    def clear_cache(self) -> None:
        """Evict every cached entry."""
        self.cache.clear()

    @property
    def cache_ttl_minutes(self) -> float:
        return self.cache.default_ttl_ms / MINUTE_MS

    def set_cache_ttl_minutes(self, minutes: float) -> bool:
        """Change the default cache lifetime for entries stored from now on.

        Returns:
            False (and leaves the TTL unchanged) if minutes is not positive.
        """
        if isinstance(minutes, bool) or not isinstance(minutes, int | float) or minutes <= 0:
            logger.error("Invalid cache expiry time. Must be a positive number.")
            return False
        self.cache.default_ttl_ms = int(minutes * MINUTE_MS)
        logger.info(f"Cache expiry time set to {minutes} minutes")
        return True

    # =========================================================================
    # Repository & Releases
    # =========================================================================

    async def get_repository(self, owner: str, repo: str) -> ApiResult[Repository]:
        """Fetch repository metadata (never cached)."""
        try:
            logger.info(f"Fetching repository details for {owner}/{repo}")
            data = await self.client.get_repository(owner, repo)
        except Exception as e:
            return self._failure(f"fetching repository {owner}/{repo}", e)
        logger.info(f"Repository details fetched successfully: {data.full_name}")
        return ApiResult.ok(data)

    async def get_releases(self, owner: str, repo: str) -> ApiResult[list[Release]]:
        """Fetch every release (never cached)."""
        try:
            logger.info(f"Fetching releases for {owner}/{repo}")
            releases = await self.client.list_releases(owner, repo)
        except Exception as e:
            return self._failure("fetching releases", e)
        logger.info(f"Total releases fetched: {len(releases)}")
        return ApiResult.ok(releases)

    async def create_release(
        self,
        owner: str,
        repo: str,
        tag_name: str,
        name: str | None = None,
        body: str | None = None,
        draft: bool = False,
        prerelease: bool = False,
    ) -> ApiResult[Release]:
        """Create a release."""
        try:
            release = await self.client.create_release(owner, repo, tag_name, name, body, draft, prerelease)
        except Exception as e:
            return self._failure("creating release", e)
        logger.info(f"Created release {release.tag_name} in {owner}/{repo}")
        return ApiResult.ok(release)

    async def update_release(self, owner: str, repo: str, release_id: int, **updates: Any) -> ApiResult[Release]:
        """Update an existing release."""
        try:
            release = await self.client.update_release(owner, repo, release_id, **updates)
        except Exception as e:
            return self._failure(f"updating release {release_id}", e)
        return ApiResult.ok(release)

    # =========================================================================
    # Pull Requests
    # =========================================================================

    async def get_pull_requests(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        labels: str = "",
        max_items: int = DEFAULT_MAX_PRS,
        skip_review_data: bool = False,
        use_cache: bool = True,
    ) -> ApiResult[list[PullRequest]]:
        """Fetch pull requests with their review status.

        With ``skip_review_data`` only the first page is fetched and each
        status comes from the PR's own fields; the result is cached briefly
        and flagged incomplete. Otherwise reviews are fetched for every PR
        whose status is not evident from its fields, ten PRs at a time.

        Args:
            owner: Repository owner.
            repo: Repository name.
            state: "open", "closed" or "all".
            labels: Comma-separated label filter.
            max_items: Cap on the number of PRs.
            skip_review_data: Use the cheap status derivation.
            use_cache: Consult the cached list before fetching.
        """
        cache_key = make_key(owner, repo, "prs", state, labels)
        # Incomplete results live under their own key so a full fetch never returns them
        quick_key = f"{cache_key}:quick"
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached PR data for {owner}/{repo} ({len(cached)} PRs)")
                return ApiResult.ok(list(cached))
            cached = self.cache.get(quick_key) if skip_review_data else None
            if cached is not None:
                logger.info(f"Using cached basic PR data for {owner}/{repo} ({len(cached)} PRs)")
                return ApiResult.ok(list(cached), incomplete=True)

        try:
            logger.info(f"Fetching pull requests for {owner}/{repo}")
            prs = await self.client.list_pull_requests(
                owner,
                repo,
                state=state,
                labels=labels,
                max_items=max_items,
                max_pages=1 if skip_review_data else None,
            )

            if skip_review_data:
                logger.info("Skipping review data processing for faster loading")
                quick = [pr.model_copy(update={"review_status": synthetic_status(pr)}) for pr in prs]
                self.cache.set(quick_key, quick, INCOMPLETE_PRS_TTL_MS)
                return ApiResult.ok(list(quick), incomplete=True)

            logger.info(f"Processing review data for {len(prs)} PRs")
            processed: list[PullRequest] = []
            total_batches = (len(prs) + REVIEW_BATCH_SIZE - 1) // REVIEW_BATCH_SIZE
            for start in range(0, len(prs), REVIEW_BATCH_SIZE):
                batch = prs[start : start + REVIEW_BATCH_SIZE]
                logger.debug(f"Processing PR batch {start // REVIEW_BATCH_SIZE + 1}/{total_batches}")
                processed.extend(await asyncio.gather(*(self._with_review_status(owner, repo, pr) for pr in batch)))
        except Exception as e:
            return self._failure("fetching pull requests", e)

        logger.info(f"Completed processing {len(processed)} PRs with review data")
        self.cache.set(cache_key, processed)
        return ApiResult.ok(list(processed))

    async def _with_review_status(self, owner: str, repo: str, pr: PullRequest) -> PullRequest:
        """Attach the review status to one PR, degrading to the synthetic rule on failure."""
        review_key = make_key(owner, repo, "pr", pr.number, "review")
        cached = self.cache.get(review_key)
        if cached is not None:
            return pr.model_copy(update={"review_status": ReviewStatus(cached)})

        try:
            reviews = []
            requested: list[str] = []
            if needs_review_data(pr):
                reviews = await self.client.list_reviews(owner, repo, pr.number)
                if pr.is_open and not reviews:
                    requested = await self.client.list_requested_reviewers(owner, repo, pr.number)
            status = resolve_review_status(pr, reviews, requested)
        except (GitHubClientError, ValueError) as e:
            logger.warning(f"Error fetching reviews for PR #{pr.number}: {e}")
            return pr.model_copy(update={"review_status": synthetic_status(pr)})

        self.cache.set(review_key, status.value, REVIEW_STATUS_TTL_MS)
        return pr.model_copy(update={"review_status": status})

    async def get_pr_review_statuses(self, owner: str, repo: str) -> ApiResult[list[str]]:
        """Distinct review statuses present among the repository's PRs, in display order."""
        result = await self.get_pull_requests(owner, repo)
        if not result.success:
            return ApiResult.fail(result.error or "failed to fetch pull requests", result.error_kind or ErrorKind.TRANSIENT)
        return ApiResult.ok(order_statuses(pr.review_status for pr in result.data or []))

    # =========================================================================
    # Labels, Milestones & Issues
    # =========================================================================

    async def get_labels(self, owner: str, repo: str, use_cache: bool = True) -> ApiResult[list[Label]]:
        """Fetch every label of the repository (cached for an hour)."""
        cache_key = make_key(owner, repo, "labels")
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached labels for {owner}/{repo} ({len(cached)} labels)")
                return ApiResult.ok(list(cached))

        try:
            logger.info(f"Fetching labels for {owner}/{repo}")
            labels = await self.client.list_labels(owner, repo)
        except Exception as e:
            return self._failure("fetching labels", e)

        logger.info(f"Total labels fetched: {len(labels)}")
        self.cache.set(cache_key, labels, LABELS_TTL_MS)
        return ApiResult.ok(list(labels))

    async def get_milestones(self, owner: str, repo: str, state: str = "all") -> ApiResult[list[Milestone]]:
        """Fetch milestones (never cached)."""
        try:
            milestones = await self.client.list_milestones(owner, repo, state=state)
        except Exception as e:
            return self._failure("fetching milestones", e)
        return ApiResult.ok(milestones)

    async def get_issue_types(self, owner: str, repo: str) -> ApiResult[list[Label]]:
        """Repository labels that look like issue type labels."""
        result = await self.get_labels(owner, repo)
        if not result.success:
            return ApiResult.fail(result.error or "failed to fetch labels", result.error_kind or ErrorKind.TRANSIENT)
        return ApiResult.ok(find_type_labels(result.data or []))

    async def get_issues(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        labels: str = "",
        max_items: int = DEFAULT_MAX_ISSUES,
        use_cache: bool = True,
    ) -> ApiResult[list[Issue]]:
        """Fetch issues (pull requests excluded), each classified by type."""
        cache_key = make_key(owner, repo, "issues", state, labels)
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached issues for {owner}/{repo} ({len(cached)} issues)")
                return ApiResult.ok(list(cached))

        try:
            logger.info(f"Fetching issues for {owner}/{repo}")
            items = await self.client.list_issues(owner, repo, state=state, labels=labels, max_items=max_items)

            # The issues endpoint also returns pull requests
            raw_issues = [item for item in items if not item.get("pull_request")]
            logger.info(f"After filtering PRs, processing {len(raw_issues)} true issues")

            types_result = await self.get_issue_types(owner, repo)
            type_labels_known = types_result.success and bool(types_result.data)

            issues: list[Issue] = []
            for item in raw_issues:
                issue = Issue.model_validate(item)
                issue.issue_type = classify_issue(issue.label_names, type_labels_known)
                issues.append(issue)
        except Exception as e:
            return self._failure("fetching issues", e)

        self.cache.set(cache_key, issues, ISSUES_TTL_MS)
        return ApiResult.ok(list(issues))

    def _invalidate_item_lists(self, owner: str, repo: str) -> None:
        prefix = repo_prefix(owner, repo)
        self.cache.delete_by_prefix(f"{prefix}issues:")
        self.cache.delete_by_prefix(f"{prefix}prs:")

    async def add_label_to_issue(self, owner: str, repo: str, number: int, label_name: str) -> ApiResult[list[Label]]:
        """Attach a label to an issue or PR, creating the label if the repository lacks it.

        Returns:
            The item's labels after the update.
        """
        labels_result = await self.get_labels(owner, repo)
        if not labels_result.success:
            return ApiResult.fail(labels_result.error or "failed to fetch labels", labels_result.error_kind or ErrorKind.TRANSIENT)

        exists = any(label.name.lower() == label_name.lower() for label in labels_result.data or [])
        if not exists:
            logger.info(f"Creating new label: {label_name}")
            try:
                await self.client.create_label(
                    owner,
                    repo,
                    label_name,
                    random_label_color(),
                    description="Label created via relboard",
                )
            except Exception as e:
                result = self._failure(f"creating label '{label_name}'", e)
                result.error = f"Failed to create label: {e}"
                return result
            self.cache.delete(make_key(owner, repo, "labels"))

        try:
            labels = await self.client.add_labels(owner, repo, number, [label_name])
        except Exception as e:
            return self._failure(f"adding label to #{number}", e)

        self._invalidate_item_lists(owner, repo)
        return ApiResult.ok(labels)

    async def remove_label_from_issue(self, owner: str, repo: str, number: int, label_name: str) -> ApiResult[None]:
        """Detach a label from an issue or PR."""
        try:
            await self.client.remove_label(owner, repo, number, label_name)
        except Exception as e:
            return self._failure(f"removing label from #{number}", e)

        self._invalidate_item_lists(owner, repo)
        return ApiResult(success=True)

    # =========================================================================
    # Actions
    # =========================================================================

    def _rate_limited(self) -> ApiResult[Any]:
        client = self.client
        notice = RateLimitNotice(
            remaining=client.rate_limit_remaining,
            reset_at=format_reset_time(client.rate_limit_reset),
        )
        return ApiResult.fail(RATE_LIMITED_MESSAGE, ErrorKind.RATE_LIMITED, notice)

    async def get_workflows(self, owner: str, repo: str, use_cache: bool = True) -> ApiResult[list[Workflow]]:
        """Fetch GitHub Actions workflows (cached with the default TTL)."""
        cache_key = make_key(owner, repo, "workflows")
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached workflows for {owner}/{repo} ({len(cached)} workflows)")
                return ApiResult.ok(list(cached))

        try:
            if self.client.should_back_off():
                return self._rate_limited()
            logger.info(f"Fetching workflows for {owner}/{repo}")
            workflows = await self.client.list_workflows(owner, repo)
        except Exception as e:
            return self._failure("fetching workflows", e)

        logger.info(f"Total workflows fetched: {len(workflows)}")
        self.cache.set(cache_key, workflows)
        return ApiResult.ok(list(workflows))

    async def get_workflow_runs(
        self,
        owner: str,
        repo: str,
        workflow_id: int | str | None = None,
        use_cache: bool = True,
    ) -> ApiResult[list[WorkflowRun]]:
        """Fetch up to 500 workflow runs, for one workflow or all of them (cached 15 minutes)."""
        cache_key = make_key(owner, repo, "workflow-runs", workflow_id if workflow_id is not None else "all")
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Using cached workflow runs for {owner}/{repo} ({len(cached)} runs)")
                return ApiResult.ok(list(cached))

        try:
            if self.client.should_back_off():
                return self._rate_limited()
            suffix = f" (workflow ID: {workflow_id})" if workflow_id is not None else ""
            logger.info(f"Fetching workflow runs for {owner}/{repo}{suffix}")
            runs = await self.client.list_workflow_runs(owner, repo, workflow_id, max_items=MAX_WORKFLOW_RUNS)
        except Exception as e:
            return self._failure("fetching workflow runs", e)

        logger.info(f"Total workflow runs fetched: {len(runs)}")
        self.cache.set(cache_key, runs, WORKFLOW_RUNS_TTL_MS)
        return ApiResult.ok(list(runs))

    async def get_rate_limit(self) -> ApiResult[RateLimit]:
        """Fetch the current rate limit (never cached)."""
        try:
            rate = await self.client.get_rate_limit()
        except Exception as e:
            return self._failure("fetching rate limit", e)
        logger.info(f"Rate limit: {rate.remaining}/{rate.limit} remaining")
        return ApiResult.ok(rate)
