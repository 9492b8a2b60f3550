"""Parse repository references from user input."""

from __future__ import annotations

import re
from typing import NamedTuple

# https://github.com/owner/repo, github.com/owner/repo, www.github.com/owner/repo/
URL_PATTERN = re.compile(r"^(?:https?://)?(?:www\.)?github\.com/([^/]+)/([^/]+?)/?$")
# owner/repo
SIMPLE_PATTERN = re.compile(r"^([^/]+)/([^/]+)$")
# Characters GitHub allows in account and repository names
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")

FORMAT_HINT = "Use: owner/repo or https://github.com/owner/repo"


class RepoReferenceError(ValueError):
    """The input does not name a repository."""


class RepoRef(NamedTuple):
    """An (owner, repo) pair."""

    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


def validate_repo_parts(owner: str, repo: str) -> RepoRef:
    """Check that owner and repo are plausible GitHub names.

    Raises:
        RepoReferenceError: If either part is empty or has invalid characters.
    """
    owner = owner.strip()
    repo = repo.strip()
    if not owner or not repo:
        raise RepoReferenceError(f"Owner and repository name are required. {FORMAT_HINT}")
    for part in (owner, repo):
        if not NAME_PATTERN.match(part) or part in (".", ".."):
            raise RepoReferenceError(f"Invalid repository name component: {part!r}")
    return RepoRef(owner, repo)


def parse_repo_reference(reference: str) -> RepoRef:
    """Parse an owner/repo pair from a short reference or a GitHub URL.

    Examples:
        >>> parse_repo_reference("octocat/hello-world")
        RepoRef(owner='octocat', repo='hello-world')
        >>> parse_repo_reference("https://github.com/octocat/hello-world.git")
        RepoRef(owner='octocat', repo='hello-world')

    Raises:
        RepoReferenceError: If the input matches neither format.
    """
    text = reference.strip()
    if not text:
        raise RepoReferenceError("Please enter a GitHub repository URL")

    match = URL_PATTERN.match(text) or SIMPLE_PATTERN.match(text)
    if match is None:
        raise RepoReferenceError(f"Invalid GitHub repository URL format. {FORMAT_HINT}")

    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return validate_repo_parts(owner, repo)
