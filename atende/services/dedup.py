"""Redelivery guard keyed by provider message id."""

import time
from typing import Callable, Optional

import redis.asyncio as redis_async
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from atende.config import settings
from atende.logging_config import get_logger
from atende.services.message_log import exists_provider_message

logger = get_logger("dedup")


class MessageDeduplicator:
    """In-process TTL map, optional shared Redis and the message log as the restart-proof fallback."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        redis_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds or settings.dedup_ttl_seconds
        self._redis_url = redis_url if redis_url is not None else settings.redis_url
        self._redis_client = None
        self._clock = clock
        self._seen: dict[str, float] = {}

    def _purge(self, now: float) -> None:
        expired = [key for key, expires_at in self._seen.items() if expires_at <= now]
        for key in expired:
            self._seen.pop(key, None)

    def _mark_local(self, key: str) -> bool:
        """Check-and-mark without awaiting; returns True when already seen."""
        now = self._clock()
        self._purge(now)
        if key in self._seen:
            return True
        self._seen[key] = now + self.ttl_seconds
        return False

    def _get_redis(self):
        if not self._redis_url:
            return None
        if self._redis_client is None:
            self._redis_client = redis_async.from_url(
                self._redis_url,
                decode_responses=True,
                socket_connect_timeout=settings.redis_socket_timeout_seconds,
                socket_timeout=settings.redis_socket_timeout_seconds,
            )
        return self._redis_client

    async def is_duplicate(self, db: Session, tenant_id: int, message_id: Optional[str]) -> bool:
        if not message_id:
            return False

        key = f"atende:dedup:{tenant_id}:{message_id}"
        if self._mark_local(key):
            logger.info(
                "Duplicate message_id (memory)",
                extra={"context": {"tenant_id": tenant_id, "message_id": message_id}},
            )
            return True

        redis_client = self._get_redis()
        if redis_client is not None:
            try:
                was_set = await redis_client.set(key, "1", ex=self.ttl_seconds, nx=True)
                if not was_set:
                    logger.info(
                        "Duplicate message_id (redis)",
                        extra={"context": {"tenant_id": tenant_id, "message_id": message_id}},
                    )
                    return True
            except RedisError as e:
                logger.warning(f"Dedup redis unavailable, falling back to DB: {e}")

        if exists_provider_message(db, tenant_id, message_id):
            logger.info(
                "Duplicate message_id (DB)",
                extra={"context": {"tenant_id": tenant_id, "message_id": message_id}},
            )
            return True
        return False

    async def forget(self, tenant_id: int, message_id: Optional[str]) -> None:
        """Allow a redelivery to be processed again after a failed attempt."""
        if not message_id:
            return
        key = f"atende:dedup:{tenant_id}:{message_id}"
        self._seen.pop(key, None)

        redis_client = self._get_redis()
        if redis_client is None:
            return
        try:
            await redis_client.delete(key)
        except RedisError as e:
            logger.warning(
                f"Dedup redis delete failed: {e}",
                extra={"context": {"tenant_id": tenant_id, "message_id": message_id}},
            )
