"""Core dashboard state: cache, settings and local persistence."""

from relboard.core.cache import TTLCache, make_key, repo_prefix
from relboard.core.settings import Settings, SettingsError, SettingsValues
from relboard.core.store import LocalStore

__all__ = [
    "LocalStore",
    "Settings",
    "SettingsError",
    "SettingsValues",
    "TTLCache",
    "make_key",
    "repo_prefix",
]
