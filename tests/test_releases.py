"""Tests for release phases and issue association."""

from __future__ import annotations

import pytest
from conftest import issue_payload, release_payload

from relboard.core.releases import count_release_issues, is_issue_associated, parse_phase, phase_flags
from relboard.github.models import Issue, Release, ReleasePhase


def make_release(tag: str, name: str | None = None, **kwargs) -> Release:
    return Release.model_validate(release_payload(1, tag, name=name, **kwargs))


def make_issue(labels: list[str] | None = None, milestone: str | None = None) -> Issue:
    return Issue.model_validate(issue_payload(1, labels=labels, milestone=milestone))


class TestPhases:
    """Test mapping between phases and draft/prerelease flags."""

    @pytest.mark.parametrize(
        ("draft", "prerelease", "expected"),
        [
            (True, False, ReleasePhase.DEVELOPMENT),
            (True, True, ReleasePhase.DEVELOPMENT),
            (False, True, ReleasePhase.STAGING),
            (False, False, ReleasePhase.PRODUCTION),
        ],
    )
    def test_phase_from_flags(self, draft: bool, prerelease: bool, expected: ReleasePhase) -> None:
        assert make_release("v1", draft=draft, prerelease=prerelease).phase == expected

    @pytest.mark.parametrize("phase", list(ReleasePhase))
    def test_flags_round_trip(self, phase: ReleasePhase) -> None:
        release = make_release("v1").model_copy(update=phase_flags(phase))
        assert release.phase == phase

    def test_parse_phase(self) -> None:
        assert parse_phase(" Staging ") == ReleasePhase.STAGING
        assert parse_phase(ReleasePhase.PRODUCTION) == ReleasePhase.PRODUCTION

    def test_parse_unknown_phase(self) -> None:
        with pytest.raises(ValueError, match="expected one of: development, staging, production"):
            parse_phase("beta")


class TestIssueAssociation:
    """Test the issue-to-release heuristic."""

    def test_release_label_matches_tag(self) -> None:
        assert is_issue_associated(make_issue(labels=["release-v1.2"]), make_release("v1.2.0"))

    def test_release_label_for_other_version(self) -> None:
        assert not is_issue_associated(make_issue(labels=["release-v1.3"]), make_release("v1.2.0"))

    def test_label_without_release_keyword(self) -> None:
        assert not is_issue_associated(make_issue(labels=["target-v1.2"]), make_release("v1.2.0"))

    def test_release_label_without_suffix(self) -> None:
        assert not is_issue_associated(make_issue(labels=["release"]), make_release("v1.2.0"))

    def test_milestone_in_release_name(self) -> None:
        assert is_issue_associated(make_issue(milestone="v2.0"), make_release("2.0.0", name="Release v2.0"))

    def test_release_without_name(self) -> None:
        release = make_release("v2.0").model_copy(update={"name": None})
        assert not is_issue_associated(make_issue(milestone="v2.0"), release)

    def test_count_release_issues(self) -> None:
        releases = [make_release("v1.2.0", name="Release v1.2"), make_release("v2.0.0")]
        issues = [
            make_issue(labels=["release-v1.2"]),
            make_issue(milestone="v1.2"),
            make_issue(labels=["bug"]),
        ]

        updated, total = count_release_issues(releases, issues)

        assert [release.issue_count for release in updated] == [2, 0]
        assert total == 2
        assert releases[0].issue_count == 0
