"""
Commands and the command bus.

The set of commands is closed. Each command type has exactly one handler,
registered explicitly when the application is wired; a bus built with a
missing handler refuses to start instead of failing on first dispatch.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, ClassVar, Mapping, Union

from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


class CommandType(str, Enum):
    PURCHASE_TICKETS = "PurchaseTickets"
    CANCEL_TICKET = "CancelTicket"
    REFUND_TICKET = "RefundTicket"


@dataclass(frozen=True)
class PurchaseTickets:
    command_type: ClassVar[CommandType] = CommandType.PURCHASE_TICKETS

    event_id: int
    ticket_type_id: int
    quantity: int
    payment_method_id: str
    idempotency_key: str
    user_id: int


@dataclass(frozen=True)
class CancelTicket:
    command_type: ClassVar[CommandType] = CommandType.CANCEL_TICKET

    ticket_id: int
    user_id: int
    reason: str = "cancelled_by_user"


@dataclass(frozen=True)
class RefundTicket:
    command_type: ClassVar[CommandType] = CommandType.REFUND_TICKET

    ticket_id: int
    user_id: int
    idempotency_key: str


Command = Union[PurchaseTickets, CancelTicket, RefundTicket]
Handler = Callable[[Command], Awaitable[dict]]


class CommandBus:
    def __init__(self, handlers: Mapping[CommandType, Handler]):
        missing = [t.value for t in CommandType if t not in handlers]
        if missing:
            raise ValueError(f"No handler registered for: {', '.join(missing)}")
        self._handlers = dict(handlers)

    async def dispatch(self, command: Command) -> dict:
        handler = self._handlers[command.command_type]
        logger.debug("command_dispatched", command=command.command_type.value)
        return await handler(command)
