"""
Idempotency ledger.

One row per (idempotency key, command type) is the system's source of
truth for "did this command already run". There is no cache in front of
it: every mutation is committed before the call returns.

begin() decisions
=================

  no row                -> insert PROCESSING, caller proceeds
  row PROCESSING        -> CommandAlreadyProcessing (caller must not re-run)
  row COMPLETED         -> stored result handed back verbatim, no side effects
  row FAILED            -> row replaced by a fresh PROCESSING row, caller proceeds

Concurrent begin() calls for the same composite key race on the unique
index. The loser gets an IntegrityError, re-reads the winner's row and
either replays its result (already completed) or raises
CommandAlreadyProcessing. A row never moves back to PROCESSING; a retry
after failure gets a new row.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.models.idempotency import IdempotencyRecord, IdempotencyStatus
from boxoffice.core.exceptions import CommandAlreadyProcessing
from boxoffice.core.metrics import record_ledger_decision
from boxoffice.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Proceed:
    """The caller owns `record` until it calls complete() or fail()."""

    record: IdempotencyRecord


@dataclass(frozen=True)
class CachedResult:
    result: dict


BeginOutcome = Union[Proceed, CachedResult]


class IdempotencyService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def begin(self, idempotency_key: str, command_type: str) -> BeginOutcome:
        async with self._session_factory() as session:
            existing = await self._find(session, idempotency_key, command_type)
            decision = "proceed"

            if existing is not None:
                if existing.is_processing:
                    record_ledger_decision(command_type, "in_flight")
                    logger.warning(
                        "idempotency_key_still_processing",
                        idempotency_key=idempotency_key,
                        command=command_type,
                    )
                    raise CommandAlreadyProcessing(idempotency_key, command_type)

                if existing.is_completed:
                    record_ledger_decision(command_type, "replay")
                    logger.info(
                        "idempotency_cached_result_returned",
                        idempotency_key=idempotency_key,
                        command=command_type,
                    )
                    return CachedResult(existing.result)

                # Failed: retry is allowed, the failed row makes way for a new one
                await session.execute(
                    delete(IdempotencyRecord).where(
                        IdempotencyRecord.id == existing.id,
                        IdempotencyRecord.status == IdempotencyStatus.FAILED.value,
                    )
                )
                decision = "retry_after_failure"

            record = IdempotencyRecord(
                idempotency_key=idempotency_key,
                command_class=command_type,
                status=IdempotencyStatus.PROCESSING.value,
                result=None,
                created_at=datetime.now(timezone.utc),
            )
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return await self._resolve_lost_race(session, idempotency_key, command_type)

        record_ledger_decision(command_type, decision)
        logger.info(
            "idempotent_execution_started",
            idempotency_key=idempotency_key,
            command=command_type,
            record_id=record.id,
            retry=decision == "retry_after_failure",
        )
        return Proceed(record)

    async def complete(
        self,
        record: IdempotencyRecord,
        result: dict,
        session: Optional[AsyncSession] = None,
    ) -> None:
        """
        Mark the command completed and store its result.

        Pass the session that made the business effect durable to record
        completion in the same transaction; the caller then commits.
        """
        await self._finish(record, IdempotencyStatus.COMPLETED, result, session)
        logger.info(
            "idempotent_execution_completed",
            idempotency_key=record.idempotency_key,
            command=record.command_class,
        )

    async def fail(
        self,
        record: IdempotencyRecord,
        error_message: str,
        session: Optional[AsyncSession] = None,
    ) -> None:
        await self._finish(record, IdempotencyStatus.FAILED, {"error": error_message}, session)
        logger.warning(
            "idempotent_execution_failed",
            idempotency_key=record.idempotency_key,
            command=record.command_class,
            error=error_message,
        )

    async def get(self, idempotency_key: str, command_type: str) -> Optional[IdempotencyRecord]:
        async with self._session_factory() as session:
            return await self._find(session, idempotency_key, command_type)

    async def purge(self, older_than: datetime) -> int:
        """Delete finished rows created before the retention cutoff."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(IdempotencyRecord).where(
                    IdempotencyRecord.created_at < older_than,
                    IdempotencyRecord.status != IdempotencyStatus.PROCESSING.value,
                )
            )
            await session.commit()

        if result.rowcount:
            logger.info("idempotency_keys_purged", deleted=result.rowcount)
        return result.rowcount

    async def fail_stale(self, older_than: datetime) -> int:
        """Fail PROCESSING rows whose owner evidently died, so the key can be retried."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(IdempotencyRecord)
                .where(
                    IdempotencyRecord.created_at < older_than,
                    IdempotencyRecord.status == IdempotencyStatus.PROCESSING.value,
                )
                .values(
                    status=IdempotencyStatus.FAILED.value,
                    result={"error": "abandoned"},
                    completed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

        if result.rowcount:
            logger.warning("idempotency_stale_records_failed", count=result.rowcount)
        return result.rowcount

    async def _finish(
        self,
        record: IdempotencyRecord,
        status: IdempotencyStatus,
        result: dict,
        session: Optional[AsyncSession],
    ) -> None:
        stmt = (
            update(IdempotencyRecord)
            .where(
                IdempotencyRecord.id == record.id,
                IdempotencyRecord.status == IdempotencyStatus.PROCESSING.value,
            )
            .values(status=status.value, result=result, completed_at=datetime.now(timezone.utc))
        )

        if session is not None:
            outcome = await session.execute(stmt)
        else:
            async with self._session_factory() as own_session:
                outcome = await own_session.execute(stmt)
                await own_session.commit()

        if outcome.rowcount == 0:
            # Only fail_stale() moves a row out of PROCESSING behind its owner's back
            logger.error(
                "idempotency_record_not_processing",
                idempotency_key=record.idempotency_key,
                command=record.command_class,
                wanted=status.value,
            )

        record.status = status.value
        record.result = result

    async def _resolve_lost_race(
        self,
        session: AsyncSession,
        idempotency_key: str,
        command_type: str,
    ) -> BeginOutcome:
        winner = await self._find(session, idempotency_key, command_type)
        if winner is not None and winner.is_completed:
            record_ledger_decision(command_type, "replay")
            return CachedResult(winner.result)

        record_ledger_decision(command_type, "in_flight")
        logger.warning(
            "idempotency_insert_race_lost",
            idempotency_key=idempotency_key,
            command=command_type,
        )
        raise CommandAlreadyProcessing(idempotency_key, command_type)

    @staticmethod
    async def _find(
        session: AsyncSession, idempotency_key: str, command_type: str
    ) -> Optional[IdempotencyRecord]:
        result = await session.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.idempotency_key == idempotency_key,
                IdempotencyRecord.command_class == command_type,
            )
        )
        return result.scalar_one_or_none()
