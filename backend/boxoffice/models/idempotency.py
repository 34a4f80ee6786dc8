"""
Idempotency ledger row.

Uniqueness is on (idempotency_key, command_class), not the key alone: a
client may legitimately reuse one key across unrelated command types.
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index, UniqueConstraint, func

from boxoffice.db.base import Base


class IdempotencyStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_keys"

    id = Column(Integer, primary_key=True)
    idempotency_key = Column(String(255), nullable=False)
    command_class = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=IdempotencyStatus.PROCESSING.value)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("idempotency_key", "command_class", name="uniq_idem_key_context"),
        Index("ix_idempotency_keys_created_at", "created_at"),
    )

    @property
    def is_processing(self) -> bool:
        return self.status == IdempotencyStatus.PROCESSING.value

    @property
    def is_completed(self) -> bool:
        return self.status == IdempotencyStatus.COMPLETED.value

    @property
    def is_failed(self) -> bool:
        return self.status == IdempotencyStatus.FAILED.value

    def __repr__(self) -> str:
        return (
            f"<IdempotencyRecord(key={self.idempotency_key}, "
            f"command={self.command_class}, status={self.status})>"
        )
