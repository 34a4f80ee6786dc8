"""
Side-channel interfaces the saga calls after a durable state change.

Both are best-effort from the caller's point of view: by the time they
run the business transaction has committed, so their failure must never
undo it.
"""

from abc import ABC, abstractmethod


class CacheInvalidator(ABC):
    @abstractmethod
    async def invalidate(self, *keys_or_patterns: str) -> None:
        """Drop cache entries. Entries containing '*' are treated as patterns."""
        pass


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, topic: str, payload: dict) -> None:
        """Hand `payload` to downstream consumers (notifications, analytics)."""
        pass
