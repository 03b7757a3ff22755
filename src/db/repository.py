"""Repository utilities for persisting call records."""

from __future__ import annotations

from sqlalchemy import desc, select

from db.base import AsyncSessionFactory
from db.models import CallRecord
from relay.schemas import CallSummary


class CallRecordRepository:
    """Async repository encapsulating storage operations."""

    async def save(self, summary: CallSummary) -> CallRecord:
        async with AsyncSessionFactory() as session:
            record = CallRecord(
                call_id=summary.call_id,
                stream_id=summary.stream_id,
                started_at=summary.started_at,
                ended_at=summary.ended_at,
                duration_seconds=summary.duration_seconds,
                outcome=summary.outcome.value if summary.outcome else None,
                note=summary.note,
                customer=summary.customer,
                tokens=summary.tokens,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def get_latest(self, call_id: str) -> CallRecord | None:
        """Return the most recent record for `call_id` (a call can stream more than once)."""

        async with AsyncSessionFactory() as session:
            query = (
                select(CallRecord)
                .where(CallRecord.call_id == call_id)
                .order_by(desc(CallRecord.created_at), desc(CallRecord.id))
                .limit(1)
            )
            result = await session.execute(query)
            return result.scalar_one_or_none()

    async def list_recent(self, *, limit: int = 20) -> list[CallRecord]:
        async with AsyncSessionFactory() as session:
            query = select(CallRecord).order_by(desc(CallRecord.id)).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())
