"""
Session Cache for the integration gateway.

Provides in-memory caching of authenticated sessions keyed by provider id
and credential fingerprint, with per-session expiry, explicit invalidation
and single-flight authentication: for one key, at most one authentication
is in flight and every concurrent caller shares its result.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from cachetools import TLRUCache

from switchboard.core.models import Credential, Session
from switchboard.logging_config import get_logger, log_session_cache_event

logger = get_logger(__name__)

CacheKey = Tuple[str, str]


@dataclass
class SessionCacheConfig:
    """
    Configuration for SessionCache.

    Attributes:
        max_size: Maximum number of cached sessions (LRU eviction beyond)
    """
    max_size: int = 1024


@dataclass
class CacheStats:
    """
    Cache statistics for monitoring.

    Attributes:
        hit_count: Total cache hits
        miss_count: Total cache misses (including expired entries)
        hit_rate: Percentage of hits (hits / (hits + misses))
        size: Current number of cached sessions
        max_size: Maximum cache capacity
        authentication_count: Authentications started by the single-flight path
        shared_wait_count: Callers that waited on another caller's authentication
        invalidation_count: Total explicit invalidations
    """
    hit_count: int
    miss_count: int
    hit_rate: float
    size: int
    max_size: int
    authentication_count: int
    shared_wait_count: int
    invalidation_count: int


def _time_to_use(key: CacheKey, session: Session, now: float) -> float:
    """Translate the session's wall-clock expiry into the cache timer."""
    remaining = session.remaining_seconds()
    if remaining is None:
        return float("inf")
    return now + remaining


class SessionCache:
    """
    In-memory session cache with single-flight authentication.

    All mutation happens under one asyncio lock; the lock is never held
    across network I/O. Authentication runs outside the lock and waiting
    callers await a shared future.
    """

    def __init__(self, config: Optional[SessionCacheConfig] = None):
        """
        Initialize SessionCache with configuration.

        Args:
            config: SessionCacheConfig with max size
        """
        self.config = config or SessionCacheConfig()

        # TLRUCache gives every entry its own expiry and LRU eviction at max_size
        self._cache: TLRUCache = TLRUCache(
            maxsize=self.config.max_size,
            ttu=_time_to_use,
            timer=time.monotonic,
        )
        self._inflight: Dict[CacheKey, asyncio.Future] = {}
        self._lock = asyncio.Lock()

        self._hits = 0
        self._misses = 0
        self._authentications = 0
        self._shared_waits = 0
        self._invalidations = 0

        logger.info(f"Initialized SessionCache: max_size={self.config.max_size}")

    @staticmethod
    def make_key(provider_id: str, credential: Credential) -> CacheKey:
        return (provider_id, credential.fingerprint())

    def _lookup(self, key: CacheKey) -> Optional[Session]:
        """Return a live session for ``key``; caller holds the lock."""
        session = self._cache.get(key)
        if session is None:
            self._misses += 1
            log_session_cache_event(logger, key[0], "miss")
            return None

        # The cache timer and the wall clock can disagree; the wall clock wins
        if session.is_expired():
            del self._cache[key]
            self._misses += 1
            log_session_cache_event(logger, key[0], "expired")
            return None

        self._hits += 1
        log_session_cache_event(logger, key[0], "hit", remaining_seconds=session.remaining_seconds())
        return session

    def _store(self, key: CacheKey, session: Session) -> None:
        """Store ``session``; caller holds the lock."""
        if session.is_expired():
            logger.warning(f"Refusing to cache already expired session for {key[0]}")
            return
        self._cache[key] = session
        log_session_cache_event(logger, key[0], "put", **session.describe())

    async def get(self, provider_id: str, credential: Credential) -> Optional[Session]:
        """
        Get the cached session for a credential.

        Returns:
            Session if cached and not expired, None otherwise
        """
        async with self._lock:
            return self._lookup(self.make_key(provider_id, credential))

    async def put(self, provider_id: str, credential: Credential, session: Session) -> None:
        """Cache ``session`` for a credential, replacing any previous one."""
        async with self._lock:
            self._store(self.make_key(provider_id, credential), session)

    async def invalidate(
        self,
        provider_id: str,
        credential: Credential,
        session: Optional[Session] = None,
    ) -> bool:
        """
        Remove the cached session for a credential.

        Args:
            provider_id: Provider identifier
            credential: Credential the session belongs to
            session: If given, only remove the entry while it is still this
                session, so a late rejection cannot evict a renewed session

        Returns:
            True if an entry was removed
        """
        key = self.make_key(provider_id, credential)
        async with self._lock:
            current = self._cache.get(key)
            if current is None:
                logger.debug(f"Invalidation called for non-cached session of {provider_id}")
                return False
            if session is not None and current is not session:
                logger.debug(f"Session for {provider_id} already renewed, keeping it")
                return False
            del self._cache[key]
            self._invalidations += 1
            log_session_cache_event(logger, provider_id, "invalidate")
            return True

    async def get_or_authenticate(
        self,
        provider_id: str,
        credential: Credential,
        authenticate: Callable[[], Awaitable[Session]],
    ) -> Session:
        """
        Return a live session, authenticating at most once per key at a time.

        The first caller that misses becomes the leader and runs
        ``authenticate``. Callers arriving while it runs wait for the same
        result. If the leader fails, every waiter receives the same error.
        If the leader is cancelled, its slot is released and waiters start
        a fresh attempt.

        Args:
            provider_id: Provider identifier
            credential: Credential snapshot for this call
            authenticate: Coroutine factory producing a new session

        Returns:
            A session whose expiry is in the future
        """
        key = self.make_key(provider_id, credential)
        loop = asyncio.get_running_loop()

        while True:
            async with self._lock:
                session = self._lookup(key)
                if session is not None:
                    return session

                future = self._inflight.get(key)
                leader = future is None
                if leader:
                    future = loop.create_future()
                    self._inflight[key] = future
                    self._authentications += 1
                else:
                    self._shared_waits += 1

            if leader:
                return await self._lead(key, future, authenticate)

            log_session_cache_event(logger, provider_id, "wait")
            try:
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                if future.cancelled():
                    # The leader was cancelled, not us: retry from the top
                    logger.debug(f"In-flight authentication for {provider_id} was cancelled, retrying")
                    continue
                raise

    async def _lead(
        self,
        key: CacheKey,
        future: asyncio.Future,
        authenticate: Callable[[], Awaitable[Session]],
    ) -> Session:
        try:
            session = await authenticate()
        except asyncio.CancelledError:
            async with self._lock:
                self._inflight.pop(key, None)
            future.cancel()
            raise
        except Exception as e:
            async with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(e)
            # Mark the exception retrieved when nobody is waiting
            future.exception()
            raise

        async with self._lock:
            self._inflight.pop(key, None)
            self._store(key, session)
        future.set_result(session)
        return session

    def inflight_count(self) -> int:
        """Number of authentications currently in flight."""
        return len(self._inflight)

    async def clear(self) -> None:
        """Drop every cached session."""
        async with self._lock:
            size_before = len(self._cache)
            self._cache.clear()
            logger.info(f"Cleared session cache ({size_before} entries)")

    def get_stats(self) -> CacheStats:
        """
        Get cache statistics for monitoring.

        Returns:
            CacheStats with hit/miss counts, hit rate, size, etc.
        """
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0.0

        return CacheStats(
            hit_count=self._hits,
            miss_count=self._misses,
            hit_rate=hit_rate,
            size=len(self._cache),
            max_size=self.config.max_size,
            authentication_count=self._authentications,
            shared_wait_count=self._shared_waits,
            invalidation_count=self._invalidations,
        )

    def describe(self) -> Dict[str, Any]:
        """Provider ids and expiry of cached sessions, without artifacts."""
        return {
            f"{provider_id}:{fingerprint[:12]}": session.describe()
            for (provider_id, fingerprint), session in list(self._cache.items())
        }
