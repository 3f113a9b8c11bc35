import logging
import re
from typing import Optional

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .domain import DraftBooking

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 86400  # 24h
_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def draft_key(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id:
        raise ValueError("A booking session id is required")
    sanitized = _UNSAFE_KEY_CHARS.sub("", session_id)
    if not sanitized:
        raise ValueError(f"Unusable booking session id: {session_id!r}")
    return f"booking:draft:{sanitized}"


class RedisDraftStore:
    """Single-slot draft store in Redis, one key per browsing session, expiring after the TTL."""

    def __init__(self, session_id: str, redis_client: Optional[Redis] = None, ttl: int = DEFAULT_TTL_SECONDS):
        if redis_client is None:
            from limoapp.db.redis_db import get_redis_client  # Lazy import keeps the pool out of unit tests
            redis_client = get_redis_client()
        self.redis = redis_client
        self.key = draft_key(session_id)
        self.ttl = ttl

    async def save(self, draft: DraftBooking) -> bool:
        try:
            return bool(await self.redis.setex(self.key, self.ttl, draft.model_dump_json()))
        except RedisError as e:
            logger.error(f"Could not save draft {self.key}: {e}")
            return False

    async def load(self) -> Optional[DraftBooking]:
        try:
            raw = await self.redis.get(self.key)
        except RedisError as e:
            logger.error(f"Could not load draft {self.key}: {e}")
            return None

        if raw is None:
            return None
        try:
            return DraftBooking.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable draft {self.key}: {e}")
            return None

    async def clear(self) -> bool:
        try:
            return bool(await self.redis.delete(self.key))
        except RedisError as e:
            logger.exception(f"Could not delete draft {self.key}: {e}")
            return False
