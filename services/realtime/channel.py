"""
services/realtime/channel.py
Per-user realtime stream over Redis pub/sub.
Row-level INSERT/UPDATE events for `messages` and `notifications` are
published to `realtime:user:<id>` and relayed to WebSocket subscribers.
"""

import json
import logging
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import Depends
from redis.exceptions import RedisError

from config.redis_client import RedisCache, get_redis
from config.settings import settings

logger = logging.getLogger(__name__)


def channel_for(user_id) -> str:
    return f"{settings.REALTIME_CHANNEL_PREFIX}:{user_id}"


class RealtimeChannel:
    def __init__(self, redis):
        self.redis = redis

    async def publish(self, user_id: UUID, table: str, event: str, record: dict) -> bool:
        """
        Push one change event to a user's stream. Delivery is best-effort:
        a Redis failure is logged and reported as False, never raised.
        """
        payload = {"table": table, "event": event, "record": record}
        try:
            await RedisCache(self.redis).publish(channel_for(user_id), payload)
            return True
        except RedisError as e:
            logger.warning(f"Realtime publish to {user_id} failed: {e}")
            return False

    async def listen(self, user_id: UUID, poll_timeout: float = 1.0) -> AsyncIterator[dict]:
        """Yield decoded events for `user_id` until the consumer stops iterating."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel_for(user_id))
        try:
            while True:
                message: Optional[dict] = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=poll_timeout
                )
                if message and message.get("type") == "message":
                    yield json.loads(message["data"])
        finally:
            await pubsub.unsubscribe(channel_for(user_id))
            await pubsub.aclose()


def get_realtime(redis=Depends(get_redis)) -> RealtimeChannel:
    return RealtimeChannel(redis)
