"""Utility modules for relboard."""

from relboard.utils.repo_ref import RepoRef, RepoReferenceError, parse_repo_reference, validate_repo_parts

__all__ = [
    "RepoRef",
    "RepoReferenceError",
    "parse_repo_reference",
    "validate_repo_parts",
]
