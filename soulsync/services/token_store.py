"""
Persisted bearer tokens for a client session.

The backend issues a short-lived access token and a refresh token. Both are
kept in Redis under the client's session id so every workflow for that
session (and every poll tick) picks up the latest token after a refresh.
"""

from soulsync.config import settings
from soulsync.infrastructure.observability.logging import get_logger
from soulsync.services.redis_client import redis_client

logger = get_logger(__name__)

ACCESS_TOKEN_KEY = "auth_token:{session_id}"
REFRESH_TOKEN_KEY = "refresh_token:{session_id}"


class TokenStore:
    """Redis-backed token storage for one client session."""

    def __init__(self, session_id: str, store=None):
        self.session_id = session_id
        self._store = store or redis_client

    @property
    def _access_key(self) -> str:
        return ACCESS_TOKEN_KEY.format(session_id=self.session_id)

    @property
    def _refresh_key(self) -> str:
        return REFRESH_TOKEN_KEY.format(session_id=self.session_id)

    async def get_access_token(self) -> str | None:
        return await self._store.get(self._access_key)

    async def get_refresh_token(self) -> str | None:
        return await self._store.get(self._refresh_key)

    async def save_access_token(self, token: str) -> bool:
        return await self._store.set_with_ttl(self._access_key, token, settings.TOKEN_TTL_SECONDS)

    async def save_refresh_token(self, token: str) -> bool:
        return await self._store.set_with_ttl(self._refresh_key, token, settings.TOKEN_TTL_SECONDS)

    async def clear(self) -> None:
        """Drop both tokens, e.g. after a failed refresh."""
        await self._store.delete(self._access_key)
        await self._store.delete(self._refresh_key)
        logger.info("Session tokens cleared", session_id=self.session_id)


class StaticTokenStore:
    """In-memory tokens for the worker CLI, seeded from settings."""

    def __init__(self, access_token: str | None = None, refresh_token: str | None = None):
        self._access_token = access_token
        self._refresh_token = refresh_token

    @classmethod
    def from_settings(cls) -> "StaticTokenStore":
        return cls(settings.SOULSYNC_ACCESS_TOKEN, settings.SOULSYNC_REFRESH_TOKEN)

    async def get_access_token(self) -> str | None:
        return self._access_token

    async def get_refresh_token(self) -> str | None:
        return self._refresh_token

    async def save_access_token(self, token: str) -> bool:
        self._access_token = token
        return True

    async def save_refresh_token(self, token: str) -> bool:
        self._refresh_token = token
        return True

    async def clear(self) -> None:
        self._access_token = None
        self._refresh_token = None
