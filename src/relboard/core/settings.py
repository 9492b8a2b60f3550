"""User-adjustable settings with change notification.

Settings are persisted in the LocalStore and observed by the components
that depend on them (the cache TTL by the session, the item limit by the
repository state).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from relboard.core.store import LocalStore

logger = logging.getLogger(__name__)

CACHE_EXPIRY_KEY = "cache_expiry_time"
ITEM_LIMIT_KEY = "item_limit"

SettingsListener = Callable[[str, Any, Any], None]


class SettingsError(ValueError):
    """A setting value was rejected."""


class SettingsValues(BaseModel):
    """Validated setting values."""

    cache_expiry_minutes: int = Field(default=30, gt=0, description="Default cache lifetime in minutes")
    item_limit: int | None = Field(default=None, gt=0, description="Max PRs/issues to retrieve (None = unbounded)")


def parse_item_limit(value: int | str | None) -> int | None:
    """Parse an item limit; empty, None and "none" mean unbounded.

    Raises:
        SettingsError: If the value is not a positive integer.
    """
    if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none", "unbounded")):
        return None
    return _validated("item_limit", value)


def parse_cache_expiry(value: int | str) -> int:
    """Parse a cache lifetime in minutes.

    Raises:
        SettingsError: If the value is not a positive integer.
    """
    return _validated("cache_expiry_minutes", value)


def _validated(name: str, value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
    try:
        values = SettingsValues.model_validate({name: value})
    except ValidationError as e:
        raise SettingsError(f"Invalid {name.replace('_', ' ')}: {value!r} (must be a positive integer)") from e
    return getattr(values, name)


class Settings:
    """Observable settings, optionally backed by a LocalStore."""

    def __init__(
        self,
        values: SettingsValues | None = None,
        store: LocalStore | None = None,
    ) -> None:
        self._values = values or SettingsValues()
        self._store = store
        self._listeners: list[SettingsListener] = []

    @classmethod
    def load(cls, store: LocalStore) -> Settings:
        """Load persisted settings; missing or invalid values fall back to defaults."""
        values = SettingsValues()

        raw_expiry = store.get(CACHE_EXPIRY_KEY)
        if raw_expiry is not None:
            try:
                values.cache_expiry_minutes = parse_cache_expiry(raw_expiry)
            except SettingsError as e:
                logger.warning(f"Ignoring stored setting: {e}")

        raw_limit = store.get(ITEM_LIMIT_KEY)
        if raw_limit is not None:
            try:
                values.item_limit = parse_item_limit(raw_limit)
            except SettingsError as e:
                logger.warning(f"Ignoring stored setting: {e}")

        return cls(values, store)

    @property
    def cache_expiry_minutes(self) -> int:
        return self._values.cache_expiry_minutes

    @property
    def item_limit(self) -> int | None:
        return self._values.item_limit

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a listener called as ``listener(name, old, new)`` on change.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, name: str, old: Any, new: Any) -> None:
        for listener in list(self._listeners):
            listener(name, old, new)

    def set_cache_expiry_minutes(self, value: int | str) -> int:
        """Validate, persist and publish a new cache lifetime."""
        minutes = parse_cache_expiry(value)
        old = self._values.cache_expiry_minutes
        self._values.cache_expiry_minutes = minutes
        if self._store is not None:
            self._store.set(CACHE_EXPIRY_KEY, str(minutes))
        if minutes != old:
            logger.info(f"Cache expiry time changed from {old} to {minutes} minutes")
            self._notify("cache_expiry_minutes", old, minutes)
        return minutes

    def set_item_limit(self, value: int | str | None) -> int | None:
        """Validate, persist and publish a new item limit (None removes it)."""
        limit = parse_item_limit(value)
        old = self._values.item_limit
        self._values.item_limit = limit
        if self._store is not None:
            if limit is None:
                self._store.delete(ITEM_LIMIT_KEY)
            else:
                self._store.set(ITEM_LIMIT_KEY, str(limit))
        if limit != old:
            logger.info(f"Item limit changed from {old} to {limit}")
            self._notify("item_limit", old, limit)
        return limit
