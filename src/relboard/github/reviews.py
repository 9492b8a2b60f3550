"""Pull request review status resolution.

Collapses a pull request's reviews and pending review requests into a
single ReviewStatus, and orders sets of statuses for display.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from relboard.github.models import ReviewStatus

if TYPE_CHECKING:
    from relboard.github.models import PullRequest, Review

# Display order for review status filters
STATUS_ORDER: list[ReviewStatus] = [
    ReviewStatus.APPROVED,
    ReviewStatus.CHANGES_REQUESTED,
    ReviewStatus.REVIEW_REQUIRED,
    ReviewStatus.NO_REVIEW,
    ReviewStatus.COMMENTED,
    ReviewStatus.DRAFT,
]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def needs_review_data(pr: PullRequest) -> bool:
    """Whether resolving this PR's status requires fetching its reviews.

    Drafts, merged PRs and PRs closed without merging have an unambiguous
    status from their own fields.
    """
    return not pr.draft and not pr.is_merged and pr.is_open


def synthetic_status(pr: PullRequest) -> ReviewStatus:
    """Status derived from the PR's own fields, without any review data."""
    if pr.draft:
        return ReviewStatus.DRAFT
    if pr.is_merged:
        return ReviewStatus.APPROVED
    if pr.state == "closed":
        return ReviewStatus.CHANGES_REQUESTED
    return ReviewStatus.NO_REVIEW


def latest_review_per_reviewer(reviews: Iterable[Review]) -> list[Review]:
    """Keep only the most recently submitted review of each reviewer."""
    latest: dict[str | None, Review] = {}
    for review in reviews:
        existing = latest.get(review.reviewer)
        if existing is None or _submitted(review) > _submitted(existing):
            latest[review.reviewer] = review
    return list(latest.values())


def _submitted(review: Review) -> datetime:
    submitted = review.submitted_at
    if submitted is None:
        return _EPOCH
    if submitted.tzinfo is None:
        return submitted.replace(tzinfo=timezone.utc)
    return submitted


def resolve_review_status(
    pr: PullRequest,
    reviews: list[Review],
    requested_reviewers: list[str] | None = None,
) -> ReviewStatus:
    """Derive a PR's review status from its reviews.

    Args:
        pr: The pull request.
        reviews: Every review submitted on it.
        requested_reviewers: Reviewers whose review is still pending.

    Returns:
        DRAFT, APPROVED (merged), CHANGES_REQUESTED (closed unmerged), or,
        for open PRs, the verdict of each reviewer's latest review:
        any changes requested wins over any approval, which wins over
        comments. An open PR with no reviews is REVIEW_REQUIRED if someone
        has been asked to review, NO_REVIEW otherwise.
    """
    if not needs_review_data(pr):
        return synthetic_status(pr)

    if reviews:
        latest = latest_review_per_reviewer(reviews)
        states = {review.state.upper() for review in latest}
        if "CHANGES_REQUESTED" in states:
            return ReviewStatus.CHANGES_REQUESTED
        if "APPROVED" in states:
            return ReviewStatus.APPROVED
        return ReviewStatus.COMMENTED

    if requested_reviewers and pr.is_open:
        return ReviewStatus.REVIEW_REQUIRED
    return ReviewStatus.NO_REVIEW


def order_statuses(statuses: Iterable[str | ReviewStatus]) -> list[str]:
    """Sort distinct statuses in display order.

    Known statuses follow STATUS_ORDER; anything unrecognised is appended
    afterwards in alphabetical order.
    """
    known = [status.value for status in STATUS_ORDER]
    distinct = {status.value if isinstance(status, ReviewStatus) else str(status) for status in statuses}
    ordered = [status for status in known if status in distinct]
    ordered.extend(sorted(distinct.difference(known)))
    return ordered
