"""
Post-commit side effects: cache invalidation and event publication.

Everything here runs after the business transaction committed. Failures
are logged and counted, never raised.
"""

import asyncio
from typing import Iterable

from boxoffice.services.interfaces.notifier import CacheInvalidator, EventPublisher
from boxoffice.core.metrics import side_effect_failures
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


class SideEffects:
    def __init__(self, cache: CacheInvalidator, publisher: EventPublisher, timeout: float = 2.0):
        self.cache = cache
        self.publisher = publisher
        self.timeout = timeout

    async def emit(self, topic: str, payload: dict, invalidate: Iterable[str] = ()) -> None:
        keys = list(invalidate)
        if keys:
            try:
                await asyncio.wait_for(self.cache.invalidate(*keys), timeout=self.timeout)
            except Exception as e:
                side_effect_failures.labels(channel="cache").inc()
                logger.error("cache_invalidation_failed", topic=topic, keys=keys, error=repr(e))

        try:
            await asyncio.wait_for(self.publisher.publish(topic, payload), timeout=self.timeout)
        except Exception as e:
            side_effect_failures.labels(channel="events").inc()
            logger.error("event_publication_failed", topic=topic, error=repr(e))
