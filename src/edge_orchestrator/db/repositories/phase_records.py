from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import PhaseOutcome, PhaseRecord, utcnow


class PhaseRecordRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        session_id: uuid.UUID,
        phase: str,
        attempt: int,
        outcome: PhaseOutcome,
        started_at: datetime | None = None,
        output: dict[str, Any] | None = None,
        error_kind: str | None = None,
        error_detail: str | None = None,
    ) -> PhaseRecord:
        # One row per attempt; retries append, never update.
        rec = PhaseRecord(
            session_id=session_id,
            phase=phase,
            attempt=attempt,
            outcome=outcome,
            started_at=started_at or utcnow(),
            finished_at=utcnow(),
            output=output or {},
            error_kind=error_kind,
            error_detail=error_detail,
        )
        self._session.add(rec)
        await self._session.flush()
        return rec

    async def list_for_session(self, session_id: uuid.UUID) -> list[PhaseRecord]:
        stmt = (
            select(PhaseRecord)
            .where(PhaseRecord.session_id == session_id)
            .order_by(PhaseRecord.started_at, PhaseRecord.attempt)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def latest_for_phase(self, session_id: uuid.UUID, phase: str) -> PhaseRecord | None:
        stmt = (
            select(PhaseRecord)
            .where(PhaseRecord.session_id == session_id, PhaseRecord.phase == phase)
            .order_by(PhaseRecord.attempt.desc(), PhaseRecord.finished_at.desc())
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def attempts_for_phase(self, session_id: uuid.UUID, phase: str) -> int:
        stmt = select(func.count(PhaseRecord.id)).where(
            PhaseRecord.session_id == session_id, PhaseRecord.phase == phase
        )
        return int((await self._session.execute(stmt)).scalar_one())

    async def succeeded_phases(self, session_id: uuid.UUID) -> set[str]:
        stmt = select(PhaseRecord.phase).where(
            PhaseRecord.session_id == session_id,
            PhaseRecord.outcome == PhaseOutcome.success,
        )
        return set((await self._session.execute(stmt)).scalars().all())
