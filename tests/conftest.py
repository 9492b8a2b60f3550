"""Shared fixtures and GitHub payload builders."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from relboard.core.cache import TTLCache
from relboard.core.store import LocalStore


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    """Path to a fresh SQLite database."""
    return tmp_path / "state.db"


@pytest.fixture
def store(temp_db: Path) -> LocalStore:
    return LocalStore(temp_db)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(clock=clock)


# =============================================================================
# Payload builders
# =============================================================================


def user_payload(login: str = "octocat") -> dict[str, Any]:
    return {"login": login, "id": 1, "html_url": f"https://github.com/{login}"}


def repo_payload(owner: str = "octo", name: str = "hello") -> dict[str, Any]:
    return {
        "id": 99,
        "name": name,
        "full_name": f"{owner}/{name}",
        "owner": user_payload(owner),
        "description": "Hello world",
        "default_branch": "main",
    }


def release_payload(release_id: int, tag: str, name: str | None = None, draft: bool = False, prerelease: bool = False) -> dict[str, Any]:
    return {
        "id": release_id,
        "tag_name": tag,
        "name": name if name is not None else tag,
        "draft": draft,
        "prerelease": prerelease,
        "created_at": "2024-01-01T00:00:00Z",
    }


def pr_payload(
    number: int,
    state: str = "open",
    draft: bool = False,
    merged_at: str | None = None,
    labels: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "number": number,
        "title": f"PR {number}",
        "state": state,
        "draft": draft,
        "merged_at": merged_at,
        "user": user_payload("dev"),
        "labels": [{"name": name} for name in labels or []],
    }


def issue_payload(
    number: int,
    labels: list[str] | None = None,
    milestone: str | None = None,
    is_pr: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "number": number,
        "title": f"Issue {number}",
        "state": "open",
        "labels": [{"name": name} for name in labels or []],
        "milestone": {"number": 1, "title": milestone} if milestone else None,
    }
    if is_pr:
        payload["pull_request"] = {"url": f"https://api.github.com/repos/octo/hello/pulls/{number}"}
    return payload


def review_payload(login: str, state: str, submitted_at: str) -> dict[str, Any]:
    return {"id": hash((login, submitted_at)) & 0xFFFF, "user": user_payload(login), "state": state, "submitted_at": submitted_at}


def label_payload(name: str) -> dict[str, Any]:
    return {"name": name, "color": "ededed"}


# =============================================================================
# Fake GitHub
# =============================================================================


class FakeGitHub:
    """Routes requests to canned JSON payloads and records every call.

    Routes are keyed by (method, path). A route value may be a payload, an
    httpx.Response, or a callable taking the request and returning either.
    GET list routes are paginated with ``per_page``/``page``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, payload: Any) -> None:
        self.routes[(method, path)] = payload

    def count(self, path: str, method: str = "GET") -> int:
        return sum(1 for request in self.calls if request.method == method and request.url.path == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(route):
            route = route(request)
        if isinstance(route, httpx.Response):
            return route
        if isinstance(route, list) and request.method == "GET":
            per_page = int(request.url.params.get("per_page", "30"))
            page = int(request.url.params.get("page", "1"))
            route = route[(page - 1) * per_page : page * per_page]
        return httpx.Response(200, json=route)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def github() -> FakeGitHub:
    fake = FakeGitHub()
    fake.add("GET", "/user", user_payload())
    return fake


def standard_repo(github: FakeGitHub, owner: str = "octo", repo: str = "hello") -> Callable[[str], str]:
    """Register a small but complete repository on the fake server.

    Returns:
        A helper mapping a suffix to the repository's API path.
    """

    def path(suffix: str = "") -> str:
        return f"/repos/{owner}/{repo}{suffix}"

    github.add("GET", path(), repo_payload(owner, repo))
    github.add(
        "GET",
        path("/releases"),
        [
            release_payload(1, "v1.2.0", name="Release v1.2"),
            release_payload(2, "v2.0.0-rc1", prerelease=True),
            release_payload(3, "v2.1.0", draft=True),
        ],
    )
    github.add("GET", path("/milestones"), [{"number": 1, "title": "v1.2"}])
    github.add("GET", path("/labels"), [label_payload("bug"), label_payload("enhancement"), label_payload("release-v1.2")])
    github.add(
        "GET",
        path("/pulls"),
        [
            pr_payload(10),
            pr_payload(11, draft=True),
            pr_payload(12, state="closed", merged_at="2024-02-01T00:00:00Z"),
        ],
    )
    github.add("GET", path("/pulls/10/reviews"), [review_payload("alice", "APPROVED", "2024-02-02T00:00:00Z")])
    github.add(
        "GET",
        path("/issues"),
        [
            issue_payload(20, labels=["bug", "release-v1.2"]),
            issue_payload(21, labels=["enhancement"], milestone="v1.2"),
            issue_payload(22, labels=["question"]),
            issue_payload(10, is_pr=True),
        ],
    )
    return path
