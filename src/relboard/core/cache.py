"""In-memory TTL cache for GitHub API results.

Keys are opaque strings scoped to one repository, shaped like
``owner/repo:resource[:discriminator...]`` so that a whole repository can be
invalidated with a single prefix scan.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 30 * 60 * 1000  # 30 minutes


def _now_ms() -> float:
    return time.time() * 1000


def repo_prefix(owner: str, repo: str) -> str:
    """Key prefix shared by every entry of one repository."""
    return f"{owner}/{repo}:"


def make_key(owner: str, repo: str, kind: str, *discriminators: object) -> str:
    """Build a cache key for a repository resource.

    Example: ``make_key("octo", "hello", "prs", "all", "")`` gives
    ``"octo/hello:prs:all:"``.
    """
    parts = [kind, *(str(d) for d in discriminators)]
    return repo_prefix(owner, repo) + ":".join(parts)


@dataclass
class CacheEntry:
    """A cached value and the epoch millisecond at which it goes stale."""

    value: Any
    expires_at: float


class TTLCache:
    """Key/value store with per-entry expiry.

    There is no size bound; the data set is one repository's metadata.
    """

    def __init__(
        self,
        default_ttl_ms: int = DEFAULT_TTL_MS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock or _now_ms
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired.

        Expired entries are evicted on read.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            logger.debug(f"Cache entry expired: {key}")
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Store a value, replacing any existing entry for the key."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it was present."""
        return self._entries.pop(key, None) is not None

    def delete_by_prefix(self, prefix: str) -> int:
        """Remove every entry whose key starts with ``prefix``.

        Returns:
            Number of entries removed.
        """
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug(f"Evicted {len(doomed)} cache entries under '{prefix}'")
        return len(doomed)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()
