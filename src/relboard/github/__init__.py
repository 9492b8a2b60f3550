"""GitHub REST API access: client, models and cached service."""

from relboard.github.client import (
    GitHubAuthError,
    GitHubClient,
    GitHubClientError,
    GitHubNotFoundError,
    GitHubRateLimitError,
)
from relboard.github.models import ApiResult, ErrorKind, IssueType, ReleasePhase, ReviewStatus
from relboard.github.service import GitHubService

__all__ = [
    "ApiResult",
    "ErrorKind",
    "GitHubAuthError",
    "GitHubClient",
    "GitHubClientError",
    "GitHubNotFoundError",
    "GitHubRateLimitError",
    "GitHubService",
    "IssueType",
    "ReleasePhase",
    "ReviewStatus",
]
