"""Tests for the in-memory TTL cache."""

from __future__ import annotations

from conftest import FakeClock

from relboard.core.cache import DEFAULT_TTL_MS, TTLCache, make_key, repo_prefix


class TestKeys:
    """Test cache key construction."""

    def test_repo_prefix(self) -> None:
        assert repo_prefix("octo", "hello") == "octo/hello:"

    def test_make_key_joins_discriminators(self) -> None:
        assert make_key("octo", "hello", "prs", "all", "") == "octo/hello:prs:all:"
        assert make_key("octo", "hello", "pr", 7, "review") == "octo/hello:pr:7:review"

    def test_keys_start_with_repo_prefix(self) -> None:
        key = make_key("octo", "hello", "labels")
        assert key.startswith(repo_prefix("octo", "hello"))


class TestTTLCache:
    """Test expiry and invalidation."""

    def test_get_missing_returns_none(self, cache: TTLCache) -> None:
        assert cache.get("nope") is None

    def test_value_available_until_expiry(self, cache: TTLCache, clock: FakeClock) -> None:
        """An entry is returned up to and including its expiry instant."""
        cache.set("k", [1, 2], ttl_ms=1000)

        clock.advance(1000)
        assert cache.get("k") == [1, 2]

        clock.advance(1)
        assert cache.get("k") is None

    def test_expired_entry_is_evicted(self, cache: TTLCache, clock: FakeClock) -> None:
        cache.set("k", "v", ttl_ms=10)
        clock.advance(11)

        assert cache.get("k") is None
        assert len(cache) == 0

    def test_default_ttl_used(self, clock: FakeClock) -> None:
        cache = TTLCache(clock=clock)
        cache.set("k", "v")

        clock.advance(DEFAULT_TTL_MS)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_default_ttl_change_applies_to_new_entries(self, cache: TTLCache, clock: FakeClock) -> None:
        cache.set("old", "v")
        cache.default_ttl_ms = 1000
        cache.set("new", "v")

        clock.advance(1001)
        assert cache.get("new") is None
        assert cache.get("old") == "v"

    def test_set_replaces_entry(self, cache: TTLCache) -> None:
        cache.set("k", "first")
        cache.set("k", "second")
        assert cache.get("k") == "second"

    def test_falsy_values_are_cached(self, cache: TTLCache) -> None:
        cache.set("empty", [])
        assert cache.get("empty") == []
        assert "empty" in cache

    def test_delete(self, cache: TTLCache) -> None:
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.delete("k") is False
        assert cache.get("k") is None

    def test_delete_by_prefix_removes_only_matching(self, cache: TTLCache) -> None:
        cache.set(make_key("octo", "hello", "prs", "all", ""), [])
        cache.set(make_key("octo", "hello", "labels"), [])
        cache.set(make_key("octo", "hello-world", "labels"), [])
        cache.set(make_key("other", "repo", "labels"), [])

        removed = cache.delete_by_prefix(repo_prefix("octo", "hello"))

        assert removed == 2
        assert make_key("octo", "hello-world", "labels") in cache
        assert make_key("other", "repo", "labels") in cache

    def test_clear(self, cache: TTLCache) -> None:
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0
