"""Cached gateway access token with lazy single-flight refresh."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from autopay.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_at: float  # epoch seconds


class TokenProvider:
    """Hands out a valid access token, refreshing it when close to expiry.

    Concurrent callers that find the token stale share one refresh: the
    first one fetches while the rest wait on the lock and then reuse the
    fresh grant.
    """

    def __init__(
        self,
        fetch_token: Callable[[], Awaitable[TokenGrant]],
        clock: Callable[[], float] = time.time,
        refresh_skew_seconds: float | None = None,
    ):
        self._fetch_token = fetch_token
        self._clock = clock
        self._skew = (
            refresh_skew_seconds
            if refresh_skew_seconds is not None
            else settings.gateway_token_refresh_skew_seconds
        )
        self._grant: TokenGrant | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, grant: TokenGrant | None) -> bool:
        return grant is not None and self._clock() < grant.expires_at - self._skew

    async def get_valid_token(self) -> str:
        grant = self._grant
        if self._is_fresh(grant):
            return grant.access_token  # type: ignore[union-attr]

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self._is_fresh(self._grant):
                return self._grant.access_token  # type: ignore[union-attr]
            logger.info("Refreshing gateway access token")
            self._grant = await self._fetch_token()
            return self._grant.access_token

    def invalidate(self) -> None:
        """Drop the cached token so the next call fetches a new one."""
        self._grant = None
