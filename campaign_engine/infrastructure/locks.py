"""
Campaign Run Locks
At most one in-flight run per campaign.

InMemoryRunLock covers a single process. RedisRunLock uses SET NX PX so
several API workers or schedulers can share the guard; the lock expires on
its own if a holder dies mid-run.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import redis.asyncio as redis

from campaign_engine.core.config import ConfigManager, Settings, get_settings
from campaign_engine.domain.errors import RunInProgressError

logger = logging.getLogger(__name__)


class RunLock(ABC):
    """Non-blocking per-campaign mutual exclusion."""

    @abstractmethod
    async def acquire(self, campaign_id: str) -> Optional[str]:
        """Try to take the lock. Returns a release token, or None if held."""
        pass

    @abstractmethod
    async def release(self, campaign_id: str, token: str) -> None:
        pass

    @asynccontextmanager
    async def hold(self, campaign_id: str) -> AsyncIterator[str]:
        """
        Hold the lock for the duration of a run.

        Raises:
            RunInProgressError: Another run already holds it
        """
        token = await self.acquire(campaign_id)
        if token is None:
            raise RunInProgressError(campaign_id)
        try:
            yield token
        finally:
            await self.release(campaign_id, token)


class InMemoryRunLock(RunLock):
    """asyncio.Lock registry keyed by campaign id."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tokens: Dict[str, str] = {}

    async def acquire(self, campaign_id: str) -> Optional[str]:
        lock = self._locks.setdefault(campaign_id, asyncio.Lock())
        if lock.locked():
            return None
        await lock.acquire()
        token = uuid.uuid4().hex
        self._tokens[campaign_id] = token
        return token

    async def release(self, campaign_id: str, token: str) -> None:
        lock = self._locks.get(campaign_id)
        if lock is None or self._tokens.get(campaign_id) != token:
            logger.warning(f"Ignoring release of run lock {campaign_id} with stale token")
            return
        del self._tokens[campaign_id]
        lock.release()


class RedisRunLock(RunLock):
    """
    Redis lock: SET key token NX PX ttl.

    Release deletes the key only when it still holds our token, so a run that
    outlived its TTL cannot free a lock someone else has since taken.
    """

    KEY_PREFIX = "campaigns:run_lock:"

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_client=None, redis_url: Optional[str] = None, ttl_seconds: int = 900):
        self._redis = redis_client
        self._redis_url = redis_url
        self.ttl_ms = ttl_seconds * 1000

    async def _client(self):
        if self._redis is None:
            self._redis = redis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)
            logger.info(f"RedisRunLock connected to Redis: {self._redis_url}")
        return self._redis

    async def acquire(self, campaign_id: str) -> Optional[str]:
        client = await self._client()
        token = uuid.uuid4().hex
        acquired = await client.set(f"{self.KEY_PREFIX}{campaign_id}", token, nx=True, px=self.ttl_ms)
        return token if acquired else None

    async def release(self, campaign_id: str, token: str) -> None:
        client = await self._client()
        released = await client.eval(self.RELEASE_SCRIPT, 1, f"{self.KEY_PREFIX}{campaign_id}", token)
        if not released:
            logger.warning(f"Run lock for campaign {campaign_id} expired before release")


def create_run_lock(settings: Optional[Settings] = None,
                    config: Optional[ConfigManager] = None) -> RunLock:
    """Build the run lock selected by settings.run_lock_backend."""
    settings = settings or get_settings()
    if settings.run_lock_backend == "redis":
        config = config or ConfigManager()
        ttl = config.get_int("campaigns.run_lock_ttl_seconds", 900)
        return RedisRunLock(redis_url=settings.redis_url, ttl_seconds=ttl)
    if settings.run_lock_backend != "memory":
        raise ValueError(f"Unknown run lock backend: {settings.run_lock_backend}")
    return InMemoryRunLock()
