"""
Domain event publication over Redis pub/sub.

Downstream consumers (confirmation emails, analytics, social posting)
subscribe to "{prefix}.{topic}" channels. Delivery is fire-and-forget:
pub/sub keeps no backlog, and consumers that need every event reconcile
from the tickets table.
"""

import json
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from boxoffice.services.interfaces.notifier import EventPublisher
from boxoffice.core.config import Settings
from boxoffice.core.exceptions import InfrastructureError
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)

TICKETS_PURCHASED = "tickets.purchased"
TICKETS_PURCHASE_FAILED = "tickets.purchase_failed"
TICKET_CANCELLED = "tickets.cancelled"
TICKET_REFUNDED = "tickets.refunded"
RESERVATIONS_EXPIRED = "tickets.reservations_expired"


class RedisEventPublisher(EventPublisher):
    def __init__(self, client: redis.Redis, channel_prefix: str):
        self.client = client
        self.channel_prefix = channel_prefix

    async def publish(self, topic: str, payload: dict) -> None:
        channel = f"{self.channel_prefix}.{topic}"
        message = json.dumps(
            {
                "topic": topic,
                "occurred_at": datetime.now(timezone.utc).isoformat(),
                "payload": payload,
            },
            default=str,
        )
        try:
            receivers = await self.client.publish(channel, message)
        except RedisError as e:
            raise InfrastructureError(f"Failed to publish {topic}: {e}") from e
        logger.debug("event_published", channel=channel, receivers=receivers)


class NullEventPublisher(EventPublisher):
    """Used when Redis is off; events are only logged."""

    async def publish(self, topic: str, payload: dict) -> None:
        logger.debug("event_dropped", topic=topic)


def get_event_publisher(settings: Settings, redis_client: Optional[redis.Redis]) -> EventPublisher:
    if settings.EVENT_PUBLISHER == "redis" and redis_client is not None:
        return RedisEventPublisher(redis_client, settings.EVENTS_CHANNEL_PREFIX)
    if settings.EVENT_PUBLISHER == "redis":
        logger.warning("event_publisher_degraded", reason="redis_unavailable")
    return NullEventPublisher()
