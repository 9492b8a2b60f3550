"""Tests for the GitHub REST client.

Tests cover:
- GitHubClient: construction, lifecycle, auth headers
- Error mapping and retries
- Pagination: page size, short-page stop, item caps, partial results
- Rate limit header tracking and back-off
"""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from conftest import FakeGitHub, issue_payload, pr_payload

from relboard.github.client import (
    PAGE_SIZE,
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
)


def numbered(total: int) -> list[dict[str, Any]]:
    return [{"number": n} for n in range(1, total + 1)]


def make_client(handler: Any, **kwargs: Any) -> GitHubClient:
    return GitHubClient("test-token", transport=httpx.MockTransport(handler), **kwargs)


# =============================================================================
# Construction & Lifecycle
# =============================================================================


class TestGitHubClientAuth:
    """Test GitHub client authentication."""

    def test_init_with_token(self) -> None:
        client = GitHubClient("test-token")
        assert client._token == "test-token"
        assert client._headers["Authorization"] == "Bearer test-token"

    def test_init_missing_token_raises(self) -> None:
        with pytest.raises(GitHubAuthError, match="No GitHub token provided"):
            GitHubClient("")

    @pytest.mark.asyncio
    async def test_sends_auth_headers(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"login": "octocat"})

        async with make_client(handler) as client:
            user = await client.get_authenticated_user()

        assert user.login == "octocat"
        assert seen[0].headers["Authorization"] == "Bearer test-token"
        assert seen[0].headers["Accept"] == "application/vnd.github+json"


class TestGitHubClientContext:
    """Test GitHub client context manager."""

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self) -> None:
        client = GitHubClient("test")
        assert client._client is None

        async with client:
            assert isinstance(client._client, httpx.AsyncClient)

        assert client._client is None

    def test_client_property_before_open_raises(self) -> None:
        client = GitHubClient("test")
        with pytest.raises(RuntimeError, match="must be opened before use"):
            _ = client.client


# =============================================================================
# Error Handling
# =============================================================================


class TestGitHubClientErrorHandling:
    """Test mapping of HTTP failures to exceptions."""

    @pytest.mark.asyncio
    async def test_auth_error_401(self) -> None:
        async with make_client(lambda request: httpx.Response(401)) as client:
            with pytest.raises(GitHubAuthError, match="authentication failed"):
                await client._request("GET", "/test")

    @pytest.mark.asyncio
    async def test_not_found_404(self) -> None:
        async with make_client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(GitHubNotFoundError, match="not found"):
                await client._request("GET", "/test")

    @pytest.mark.asyncio
    async def test_other_4xx_raises_client_error(self) -> None:
        async with make_client(lambda request: httpx.Response(422, text="Validation Failed")) as client:
            with pytest.raises(GitHubClientError, match="422"):
                await client._request("POST", "/test")

    @pytest.mark.asyncio
    async def test_403_with_remaining_quota_is_not_rate_limit(self) -> None:
        response = httpx.Response(403, headers={"X-RateLimit-Remaining": "42"}, text="Forbidden")
        async with make_client(lambda request: response) as client:
            with pytest.raises(GitHubClientError, match="403") as exc_info:
                await client._request("GET", "/test")
        assert not isinstance(exc_info.value, GitHubRateLimitError)

    @pytest.mark.asyncio
    async def test_rate_limit_403_after_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1234567890"})

        with patch("relboard.github.client.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            async with make_client(handler) as client:
                with pytest.raises(GitHubRateLimitError, match="rate limit") as exc_info:
                    await client._request("GET", "/test")

        assert calls == 3
        assert mock_sleep.await_count == 2
        assert exc_info.value.reset_at == 1234567890
        assert exc_info.value.remaining == 0

    @pytest.mark.asyncio
    async def test_retries_transient_transport_errors(self) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"login": "octocat"})

        with patch("relboard.github.client.asyncio.sleep", new_callable=AsyncMock):
            async with make_client(handler) as client:
                user = await client.get_authenticated_user()

        assert user.login == "octocat"
        assert attempts == 3

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with patch("relboard.github.client.asyncio.sleep", new_callable=AsyncMock):
            async with make_client(handler, max_retries=2) as client:
                with pytest.raises(GitHubClientError, match="timeout after 2 attempts"):
                    await client._request("GET", "/test")


# =============================================================================
# Pagination
# =============================================================================


class TestPagination:
    """Test page-by-page collection fetching."""

    @pytest.mark.asyncio
    async def test_fetches_until_short_page(self) -> None:
        """250 items take exactly three page fetches of 100/100/50."""
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/pulls", numbered(250))

        async with GitHubClient("t", transport=github.transport) as client:
            items = await client.paginate("/repos/o/r/pulls")

        assert len(items) == 250
        assert github.count("/repos/o/r/pulls") == 3
        assert [int(call.url.params["page"]) for call in github.calls] == [1, 2, 3]
        assert all(call.url.params["per_page"] == str(PAGE_SIZE) for call in github.calls)

    @pytest.mark.asyncio
    async def test_cap_stops_fetching_and_truncates(self) -> None:
        """A cap of 120 over 250 items takes two page fetches and keeps the first 120."""
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/pulls", numbered(250))

        async with GitHubClient("t", transport=github.transport) as client:
            items = await client.paginate("/repos/o/r/pulls", max_items=120)

        assert len(items) == 120
        assert items[-1]["number"] == 120
        assert github.count("/repos/o/r/pulls") == 2

    @pytest.mark.asyncio
    async def test_exact_multiple_of_page_size_needs_empty_page(self) -> None:
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/labels", numbered(200))

        async with GitHubClient("t", transport=github.transport) as client:
            items = await client.paginate("/repos/o/r/labels")

        assert len(items) == 200
        assert github.count("/repos/o/r/labels") == 3

    @pytest.mark.asyncio
    async def test_max_pages(self) -> None:
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/pulls", numbered(250))

        async with GitHubClient("t", transport=github.transport) as client:
            items = await client.paginate("/repos/o/r/pulls", max_pages=1)

        assert len(items) == 100
        assert github.count("/repos/o/r/pulls") == 1

    @pytest.mark.asyncio
    async def test_extra_params_are_sent(self) -> None:
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/issues", [])

        async with GitHubClient("t", transport=github.transport) as client:
            await client.paginate("/repos/o/r/issues", params={"state": "all", "labels": "bug"})

        params = github.calls[0].url.params
        assert params["state"] == "all"
        assert params["labels"] == "bug"

    @pytest.mark.asyncio
    async def test_wrapped_items_key(self) -> None:
        runs = [{"id": n} for n in range(1, 151)]

        def handler(request: httpx.Request) -> httpx.Response:
            page = int(request.url.params["page"])
            batch = runs[(page - 1) * PAGE_SIZE : page * PAGE_SIZE]
            return httpx.Response(200, json={"total_count": len(runs), "workflow_runs": batch})

        async with make_client(handler) as client:
            result = await client.list_workflow_runs("o", "r")

        assert [run.id for run in result] == list(range(1, 151))

    @pytest.mark.asyncio
    async def test_workflow_runs_keep_partial_after_first_page(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                return httpx.Response(200, json={"workflow_runs": [{"id": n} for n in range(PAGE_SIZE)]})
            return httpx.Response(500, text="boom")

        with patch("relboard.github.client.asyncio.sleep", new_callable=AsyncMock):
            async with make_client(handler) as client:
                runs = await client.list_workflow_runs("o", "r", workflow_id=7)

        assert len(runs) == PAGE_SIZE

    @pytest.mark.asyncio
    async def test_first_page_failure_raises_even_with_keep_partial(self) -> None:
        with patch("relboard.github.client.asyncio.sleep", new_callable=AsyncMock):
            async with make_client(lambda request: httpx.Response(500, text="boom")) as client:
                with pytest.raises(GitHubClientError):
                    await client.list_workflow_runs("o", "r")

    @pytest.mark.asyncio
    async def test_later_page_failure_raises_without_keep_partial(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["page"] == "1":
                return httpx.Response(200, json=numbered(PAGE_SIZE))
            return httpx.Response(500, text="boom")

        with patch("relboard.github.client.asyncio.sleep", new_callable=AsyncMock):
            async with make_client(handler) as client:
                with pytest.raises(GitHubClientError):
                    await client.paginate("/repos/o/r/pulls")

    @pytest.mark.asyncio
    async def test_non_list_payload_raises(self) -> None:
        async with make_client(lambda request: httpx.Response(200, json={"message": "odd"})) as client:
            with pytest.raises(GitHubClientError, match="expected a list"):
                await client.paginate("/repos/o/r/pulls")


# =============================================================================
# Endpoints
# =============================================================================


class TestGitHubClientRequests:
    """Test endpoint wrappers."""

    @pytest.mark.asyncio
    async def test_list_pull_requests_sorted_by_update(self) -> None:
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/pulls", [pr_payload(1), pr_payload(2, labels=["bug"])])

        async with GitHubClient("t", transport=github.transport) as client:
            prs = await client.list_pull_requests("o", "r", labels="bug")

        assert [pr.number for pr in prs] == [1, 2]
        assert prs[1].label_names == ["bug"]
        params = github.calls[0].url.params
        assert params["sort"] == "updated"
        assert params["direction"] == "desc"
        assert params["state"] == "all"
        assert params["labels"] == "bug"

    @pytest.mark.asyncio
    async def test_list_issues_returns_raw_items(self) -> None:
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/issues", [issue_payload(1), issue_payload(2, is_pr=True)])

        async with GitHubClient("t", transport=github.transport) as client:
            items = await client.list_issues("o", "r")

        assert "pull_request" in items[1]

    @pytest.mark.asyncio
    async def test_update_release(self) -> None:
        github = FakeGitHub()
        github.add("PATCH", "/repos/o/r/releases/5", {"id": 5, "tag_name": "v1", "draft": False, "prerelease": True})

        async with GitHubClient("t", transport=github.transport) as client:
            release = await client.update_release("o", "r", 5, draft=False, prerelease=True)

        assert release.prerelease is True
        assert github.calls[0].method == "PATCH"

    @pytest.mark.asyncio
    async def test_remove_label_quotes_name(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            await client.remove_label("o", "r", 3, "needs review/ui")

        assert seen[0].method == "DELETE"
        assert seen[0].url.raw_path.decode().endswith("/issues/3/labels/needs%20review%2Fui")

    @pytest.mark.asyncio
    async def test_requested_reviewers(self) -> None:
        github = FakeGitHub()
        github.add("GET", "/repos/o/r/pulls/4/requested_reviewers", {"users": [{"login": "alice"}], "teams": []})

        async with GitHubClient("t", transport=github.transport) as client:
            assert await client.list_requested_reviewers("o", "r", 4) == ["alice"]


# =============================================================================
# Rate Limit Tracking
# =============================================================================


class TestRateLimitTracking:
    """Test bookkeeping of X-RateLimit headers."""

    @pytest.mark.asyncio
    async def test_headers_are_tracked(self) -> None:
        response = httpx.Response(200, json={"login": "a"}, headers={"X-RateLimit-Remaining": "4999", "X-RateLimit-Reset": "1700000000"})
        async with make_client(lambda request: response) as client:
            await client.get_authenticated_user()

        assert client.rate_limit_remaining == 4999
        assert client.rate_limit_reset == 1700000000

    def test_should_back_off_when_low_and_reset_pending(self) -> None:
        client = GitHubClient("t", clock=lambda: 1000.0)
        client.rate_limit_remaining = 5
        client.rate_limit_reset = 1060

        assert client.seconds_until_reset() == 60
        assert client.should_back_off() is True

    def test_no_back_off_once_reset_passed(self) -> None:
        client = GitHubClient("t", clock=lambda: 2000.0)
        client.rate_limit_remaining = 5
        client.rate_limit_reset = 1060

        assert client.should_back_off() is False

    def test_no_back_off_with_enough_quota(self) -> None:
        client = GitHubClient("t", clock=lambda: 1000.0)
        client.rate_limit_remaining = 10
        client.rate_limit_reset = 1060

        assert client.should_back_off() is False

    def test_no_back_off_when_unknown(self) -> None:
        assert GitHubClient("t").should_back_off() is False

    @pytest.mark.asyncio
    async def test_get_rate_limit_updates_tracking(self) -> None:
        payload = {"rate": {"limit": 5000, "used": 4990, "remaining": 10, "reset": 1700000000}}
        async with make_client(lambda request: httpx.Response(200, json=payload)) as client:
            rate = await client.get_rate_limit()

        assert rate.remaining == 10
        assert client.rate_limit_remaining == 10
        assert client.rate_limit_reset == 1700000000
