"""
Domain error taxonomy.

Services raise these; the API layer maps them to HTTP responses
(see boxoffice.api.errors). Each error carries a stable code that is
returned to clients as the error "kind".
"""

from enum import Enum


class ErrorCode(Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    COMMAND_ALREADY_PROCESSING = "COMMAND_ALREADY_PROCESSING"
    INSUFFICIENT_AVAILABILITY = "INSUFFICIENT_AVAILABILITY"
    INVALID_TICKET_TRANSITION = "INVALID_TICKET_TRANSITION"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    INFRASTRUCTURE_ERROR = "INFRASTRUCTURE_ERROR"


class DomainError(Exception):
    """Base domain error with code, user-safe message and HTTP status."""

    code = ErrorCode.CONFLICT
    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> dict:
        return {"kind": self.code.value, "message": self.message}


class ValidationError(DomainError):
    """Malformed quantity, ids or payment details."""

    code = ErrorCode.VALIDATION_FAILED
    status_code = 422


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, resource_id) -> None:
        super().__init__(f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(DomainError):
    code = ErrorCode.CONFLICT
    status_code = 409


class CommandAlreadyProcessing(ConflictError):
    """Another execution holds the ledger record; the caller must not resubmit concurrently."""

    code = ErrorCode.COMMAND_ALREADY_PROCESSING

    def __init__(self, idempotency_key: str, command_type: str) -> None:
        super().__init__(
            f"Command {command_type} with idempotency key '{idempotency_key}' is already being processed"
        )
        self.idempotency_key = idempotency_key
        self.command_type = command_type


class InsufficientAvailability(ConflictError):
    """Legitimate sold-out condition, distinct from a payment failure."""

    code = ErrorCode.INSUFFICIENT_AVAILABILITY

    def __init__(self, ticket_type_id: int, requested: int, remaining: int) -> None:
        super().__init__(
            f"Not enough tickets available. Requested: {requested}, Available: {remaining}"
        )
        self.ticket_type_id = ticket_type_id
        self.requested = requested
        self.remaining = remaining


class InvalidTicketTransition(ConflictError):
    code = ErrorCode.INVALID_TICKET_TRANSITION

    def __init__(self, ticket_id: int, from_status: str, to_status: str) -> None:
        super().__init__(f"Ticket {ticket_id} cannot move from {from_status} to {to_status}")
        self.ticket_id = ticket_id
        self.from_status = from_status
        self.to_status = to_status


class PaymentError(DomainError):
    """Gateway declined, errored or timed out. Raised only after compensation ran."""

    code = ErrorCode.PAYMENT_FAILED
    status_code = 402


class LockTimeout(DomainError):
    code = ErrorCode.LOCK_TIMEOUT
    status_code = 503
    retryable = True

    def __init__(self, ticket_type_id: int, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for inventory lock on ticket type {ticket_type_id}"
        )
        self.ticket_type_id = ticket_type_id
        self.timeout = timeout


class InfrastructureError(DomainError):
    """Cache or event-bus failure. Never allowed to overturn a committed purchase."""

    code = ErrorCode.INFRASTRUCTURE_ERROR
    status_code = 503
