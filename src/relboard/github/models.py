"""Data models for GitHub REST resources.

Remote entities keep every field GitHub sends (``extra="allow"``); only the
fields the dashboard reads are declared. Derived fields (release phase,
review status, issue type) live alongside the remote ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ReleasePhase(str, Enum):
    """Lifecycle stage derived from a release's draft/prerelease flags."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ReviewStatus(str, Enum):
    """Summary of a pull request's review state."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    NO_REVIEW = "NO_REVIEW"
    COMMENTED = "COMMENTED"
    DRAFT = "DRAFT"


class IssueType(str, Enum):
    """Issue category inferred from labels."""

    BUG = "bug"
    ENHANCEMENT = "enhancement"
    DOCUMENTATION = "documentation"
    QUESTION = "question"
    OTHER = "other"


class ErrorKind(str, Enum):
    """Failure categories reported in an ApiResult."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    VALIDATION = "validation"
    TRANSIENT = "transient"


# =============================================================================
# Remote Entities
# =============================================================================


class RemoteModel(BaseModel):
    """Base for GitHub payloads; unknown fields are preserved."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class User(RemoteModel):
    """A GitHub account reference."""

    login: str
    id: int | None = None
    html_url: str = ""


class Label(RemoteModel):
    """A repository label."""

    name: str
    color: str = ""
    description: str | None = None


class Milestone(RemoteModel):
    """A repository milestone."""

    number: int
    title: str
    state: str = "open"
    description: str | None = None
    due_on: datetime | None = None
    open_issues: int = 0
    closed_issues: int = 0


class Repository(RemoteModel):
    """Repository metadata as returned by ``GET /repos/{owner}/{repo}``."""

    name: str
    full_name: str
    owner: User
    id: int | None = None
    private: bool = False
    description: str | None = None
    default_branch: str = "main"
    html_url: str = ""


class Release(RemoteModel):
    """A release plus its derived phase and associated issue count."""

    id: int
    tag_name: str
    name: str | None = None
    body: str | None = None
    draft: bool = False
    prerelease: bool = False
    created_at: datetime | None = None
    published_at: datetime | None = None
    html_url: str = ""
    issue_count: int = 0

    @property
    def phase(self) -> ReleasePhase:
        """Phase derived from the draft/prerelease flags."""
        if self.draft:
            return ReleasePhase.DEVELOPMENT
        if self.prerelease:
            return ReleasePhase.STAGING
        return ReleasePhase.PRODUCTION


class Review(RemoteModel):
    """A single pull request review."""

    id: int | None = None
    user: User | None = None
    state: str = ""
    submitted_at: datetime | None = None

    @property
    def reviewer(self) -> str | None:
        return self.user.login if self.user else None


class PullRequest(RemoteModel):
    """A pull request with its derived review status."""

    number: int
    title: str = ""
    state: str = "open"
    draft: bool = False
    merged: bool | None = None
    merged_at: datetime | None = None
    user: User | None = None
    labels: list[Label] = Field(default_factory=list)
    html_url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    review_status: ReviewStatus = ReviewStatus.NO_REVIEW

    @property
    def is_merged(self) -> bool:
        """The list endpoint omits ``merged`` and only reports ``merged_at``."""
        return bool(self.merged) or self.merged_at is not None

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


class Issue(RemoteModel):
    """An issue (never a pull request) with its inferred type."""

    number: int
    title: str = ""
    state: str = "open"
    labels: list[Label] = Field(default_factory=list)
    milestone: Milestone | None = None
    user: User | None = None
    html_url: str = ""
    created_at: datetime | None = None
    closed_at: datetime | None = None
    issue_type: IssueType = IssueType.OTHER

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]


class Workflow(RemoteModel):
    """A GitHub Actions workflow definition."""

    id: int
    name: str = ""
    path: str = ""
    state: str = ""


class WorkflowRun(RemoteModel):
    """A single GitHub Actions workflow run."""

    id: int
    name: str | None = None
    workflow_id: int | None = None
    run_number: int | None = None
    status: str | None = None
    conclusion: str | None = None
    head_branch: str | None = None
    event: str | None = None
    html_url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    run_started_at: datetime | None = None


class RateLimit(RemoteModel):
    """Core rate limit as reported by ``GET /rate_limit``."""

    limit: int
    used: int
    remaining: int
    reset: int

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset, tz=timezone.utc)


# =============================================================================
# Result Envelope
# =============================================================================


@dataclass
class RateLimitNotice:
    """Attached to a refused call: how many requests remain and when they reset."""

    remaining: int | None
    reset_at: str


@dataclass
class ApiResult(Generic[T]):
    """Uniform result of every GitHubService operation."""

    success: bool
    data: T | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    rate_limit: RateLimitNotice | None = None
    incomplete: bool = False

    @classmethod
    def ok(cls, data: T, incomplete: bool = False) -> ApiResult[T]:
        return cls(success=True, data=data, incomplete=incomplete)

    @classmethod
    def fail(
        cls,
        error: str,
        kind: ErrorKind = ErrorKind.TRANSIENT,
        rate_limit: RateLimitNotice | None = None,
    ) -> ApiResult[Any]:
        return cls(success=False, error=error, error_kind=kind, rate_limit=rate_limit)

