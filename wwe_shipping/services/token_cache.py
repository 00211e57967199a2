"""
UPS OAuth token cache

The token is shared by every carrier call in the process (or across
processes with Redis). Refreshes are not serialized: concurrent refreshes
each call the token endpoint and the last successful one wins.

Cache lifetime = provider expires_in minus a 120s margin, never below 60s.
"""
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional, Protocol

import redis.asyncio as redis

from wwe_shipping.core.redis_client import get_redis

logger = logging.getLogger(__name__)

TOKEN_SAFETY_MARGIN_SECONDS = 120
TOKEN_MIN_LIFETIME_SECONDS = 60
TOKEN_DEFAULT_EXPIRES_IN = 3600

REDIS_TOKEN_KEY = "wwe:ups:oauth_token"


def cache_lifetime(expires_in: Optional[int]) -> int:
    """Seconds to keep a token the provider says lives expires_in seconds."""
    try:
        expires_in = int(expires_in) if expires_in is not None else TOKEN_DEFAULT_EXPIRES_IN
    except (TypeError, ValueError):
        expires_in = TOKEN_DEFAULT_EXPIRES_IN
    return max(expires_in - TOKEN_SAFETY_MARGIN_SECONDS, TOKEN_MIN_LIFETIME_SECONDS)


class TokenCache(Protocol):
    """Protocol for token caches."""

    async def get(self) -> Optional[str]:
        """Return the cached token, or None when missing or expired."""
        ...

    async def set(self, token: str, expires_in: Optional[int]) -> None:
        ...

    async def expires_at(self) -> Optional[datetime]:
        ...

    async def clear(self) -> None:
        ...


class InMemoryTokenCache:
    """Process-local token cache."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None

    async def get(self) -> Optional[str]:
        if self._token and self._expires_at and self._clock() < self._expires_at:
            return self._token
        return None

    async def set(self, token: str, expires_in: Optional[int]) -> None:
        self._token = token
        self._expires_at = self._clock() + timedelta(seconds=cache_lifetime(expires_in))

    async def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    async def clear(self) -> None:
        self._token = None
        self._expires_at = None


class RedisTokenCache:
    """
    Token cache shared across worker processes.

    Redis failures degrade to a cache miss (one extra auth call), never to
    an error on the carrier call itself.
    """

    def __init__(self, client: Optional[redis.Redis] = None, key: str = REDIS_TOKEN_KEY):
        self._client = client
        self.key = key

    async def _get_client(self) -> Optional[redis.Redis]:
        if self._client is None:
            self._client = await get_redis()
        return self._client

    async def get(self) -> Optional[str]:
        client = await self._get_client()
        if not client:
            return None
        try:
            return await client.get(self.key)
        except Exception as e:
            logger.warning(f"Redis token cache read failed: {e}")
            return None

    async def set(self, token: str, expires_in: Optional[int]) -> None:
        client = await self._get_client()
        if not client:
            return
        try:
            await client.setex(self.key, cache_lifetime(expires_in), token)
        except Exception as e:
            logger.warning(f"Redis token cache write failed: {e}")

    async def expires_at(self) -> Optional[datetime]:
        client = await self._get_client()
        if not client:
            return None
        try:
            ttl = await client.ttl(self.key)
        except Exception as e:
            logger.warning(f"Redis token cache TTL read failed: {e}")
            return None
        if ttl is None or ttl < 0:
            return None
        return datetime.now(timezone.utc) + timedelta(seconds=ttl)

    async def clear(self) -> None:
        client = await self._get_client()
        if client:
            try:
                await client.delete(self.key)
            except Exception as e:
                logger.warning(f"Redis token cache clear failed: {e}")


# Process-wide default used when no cache is injected
default_token_cache = InMemoryTokenCache()
