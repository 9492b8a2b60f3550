"""Issue type inference from label names."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from relboard.github.models import IssueType

if TYPE_CHECKING:
    from relboard.github.models import Label

# First match wins, so order matters
TYPE_KEYWORDS: list[tuple[IssueType, tuple[str, ...]]] = [
    (IssueType.BUG, ("bug", "fix", "error")),
    (IssueType.ENHANCEMENT, ("feature", "enhancement", "improvement")),
    (IssueType.DOCUMENTATION, ("doc",)),
    (IssueType.QUESTION, ("question", "help")),
]

# Broader vocabulary used only to report which labels look like type labels
TYPE_LABEL_KEYWORDS: tuple[str, ...] = (
    "bug",
    "fix",
    "error",
    "feature",
    "enhancement",
    "improvement",
    "documentation",
    "docs",
    "question",
    "help",
    "security",
    "vulnerability",
    "refactor",
    "technical debt",
    "test",
    "testing",
)


def classify_issue(label_names: Iterable[str], type_labels_known: bool = True) -> IssueType:
    """Classify an issue by its label names.

    Matching is a case-insensitive substring test, so ``kind/bug`` counts as
    a bug label.

    Args:
        label_names: Names of the labels on the issue.
        type_labels_known: False when the repository has no type-looking
            labels at all; every issue is then OTHER.

    Returns:
        The first matching IssueType, or OTHER.
    """
    if not type_labels_known:
        return IssueType.OTHER

    lowered = [name.lower() for name in label_names]
    for issue_type, keywords in TYPE_KEYWORDS:
        if any(keyword in name for name in lowered for keyword in keywords):
            return issue_type
    return IssueType.OTHER


def is_type_label(name: str) -> bool:
    """Check whether a label name looks like an issue type label."""
    lowered = name.lower()
    return any(keyword in lowered for keyword in TYPE_LABEL_KEYWORDS)


def find_type_labels(labels: Iterable[Label]) -> list[Label]:
    """Select the repository labels that look like issue type labels."""
    return [label for label in labels if is_type_label(label.name)]
