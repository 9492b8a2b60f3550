"""Release phase mapping and issue-to-release association."""

from __future__ import annotations

from collections.abc import Iterable

from relboard.github.models import Issue, Release, ReleasePhase


def parse_phase(value: str | ReleasePhase) -> ReleasePhase:
    """Parse a phase name ("development", "staging", "production").

    Raises:
        ValueError: If the name is not a known phase.
    """
    if isinstance(value, ReleasePhase):
        return value
    try:
        return ReleasePhase(value.strip().lower())
    except ValueError:
        choices = ", ".join(phase.value for phase in ReleasePhase)
        raise ValueError(f"Unknown release phase {value!r} (expected one of: {choices})") from None


def phase_flags(phase: ReleasePhase) -> dict[str, bool]:
    """The draft/prerelease flags that put a release in ``phase``."""
    return {
        "draft": phase is ReleasePhase.DEVELOPMENT,
        "prerelease": phase is ReleasePhase.STAGING,
    }


def is_issue_associated(issue: Issue, release: Release) -> bool:
    """Best-effort guess whether an issue belongs to a release.

    GitHub has no issue/release link, so two conventions are recognised:
    a label such as ``release-v1.2`` whose part after the first hyphen
    appears in the tag name, or a milestone whose title appears in the
    release name.
    """
    for name in issue.label_names:
        if "release" not in name.lower():
            continue
        parts = name.split("-")
        if len(parts) > 1 and parts[1] and parts[1] in release.tag_name:
            return True

    milestone = issue.milestone
    return bool(milestone and milestone.title and release.name and milestone.title in release.name)


def count_release_issues(releases: Iterable[Release], issues: Iterable[Issue]) -> tuple[list[Release], int]:
    """Recompute ``issue_count`` on each release.

    Returns:
        Updated copies of the releases, and the total number of
        issue/release associations found.
    """
    issues = list(issues)
    updated: list[Release] = []
    total = 0
    for release in releases:
        count = sum(1 for issue in issues if is_issue_associated(issue, release))
        total += count
        updated.append(release.model_copy(update={"issue_count": count}))
    return updated, total
