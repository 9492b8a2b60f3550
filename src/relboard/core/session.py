"""Authenticated session wiring.

A Session owns everything whose lifetime is bounded by one login: the TTL
cache, the GitHub service holding the token, and the repository state. It
is created at startup, filled by login() or resume(), and emptied by
logout().
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from relboard.core.aggregate import RepositoryState
from relboard.core.cache import TTLCache
from relboard.core.settings import Settings
from relboard.github.models import ApiResult, ErrorKind, User
from relboard.github.service import MINUTE_MS, GitHubService

if TYPE_CHECKING:
    import httpx

    from relboard.config import Config
    from relboard.core.store import LocalStore

logger = logging.getLogger(__name__)


class Session:
    """One user's authenticated connection to GitHub."""

    def __init__(
        self,
        config: Config,
        store: LocalStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            config: Loaded configuration (API root, timeout, retries).
            store: Persistence for the token, selection and settings.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self.store = store
        self.settings = Settings.load(store)
        self.cache = TTLCache(default_ttl_ms=self.settings.cache_expiry_minutes * MINUTE_MS)
        self.service = GitHubService(
            cache=self.cache,
            base_url=config.api_base_url,
            timeout=config.timeout,
            max_retries=config.max_retries,
            transport=transport,
        )
        self.state: RepositoryState | None = None
        self._unsubscribe = self.settings.subscribe(self._on_setting_changed)

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def is_authenticated(self) -> bool:
        return self.service.is_authenticated and self.state is not None

    @property
    def user(self) -> User | None:
        return self.service.user

    def _on_setting_changed(self, name: str, old: Any, new: Any) -> None:
        if name == "cache_expiry_minutes":
            self.service.set_cache_ttl_minutes(new)

    async def login(self, token: str) -> ApiResult[User]:
        """Validate a token and, if accepted, remember it.

        A rejected token is removed from the store.
        """
        token = token.strip()
        result = await self.service.authenticate(token)
        if not result.success:
            self.store.clear_token()
            self._drop_state()
            return result

        self.store.set_token(token)
        self._drop_state()
        self.state = RepositoryState(self.service, self.settings, self.store)
        return result

    async def resume(self) -> ApiResult[User]:
        """Log in with the stored token, if there is one."""
        token = self.store.get_token()
        if not token:
            return ApiResult.fail("Not logged in. Run 'relboard login TOKEN' first.", ErrorKind.AUTH)
        return await self.login(token)

    async def logout(self) -> None:
        """Forget the token, the selection and every cached value."""
        if self.state is not None:
            self.state.clear()
        self._drop_state()
        self.cache.clear()
        await self.service.close()
        self.store.clear_token()
        logger.info("Logged out")

    def _drop_state(self) -> None:
        if self.state is not None:
            self.state.dispose()
            self.state = None

    async def close(self) -> None:
        """Release network resources without forgetting anything."""
        self._drop_state()
        await self.service.close()
