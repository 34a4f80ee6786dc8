"""
Inventory lock interface.
Allows swapping the mutual-exclusion mechanism without changing the
availability-check-then-reserve logic that runs under it.
"""

from abc import ABC, abstractmethod
from typing import AsyncContextManager

from sqlalchemy.ext.asyncio import AsyncSession


class InventoryLock(ABC):
    """
    Exclusive, per-ticket-type, timeout-bounded lock.

    Implementations:
    - RowInventoryLock: SELECT ... FOR UPDATE on the ticket type row
    - RedisInventoryLock: Redis lock shared by every orchestrator instance
    - LocalInventoryLock: asyncio.Lock, single process only

    The contract is what matters, not the mechanism: while hold() is
    entered, no other holder for the same ticket type runs, and a waiter
    that cannot get in within the configured timeout gets LockTimeout
    instead of waiting forever.
    """

    backend: str = "abstract"

    @abstractmethod
    def hold(self, session: AsyncSession, ticket_type_id: int) -> AsyncContextManager[None]:
        """
        Hold the lock for `ticket_type_id` for the duration of the block.

        Args:
            session: Session whose transaction the critical section runs in.
                Row locks live in this transaction and end at its commit.
            ticket_type_id: Ticket type to serialize on.

        Raises:
            LockTimeout: The lock was not acquired within the timeout.
        """
        pass
