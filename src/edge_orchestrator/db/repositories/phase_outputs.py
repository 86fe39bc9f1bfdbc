from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import PhaseOutput


class PhaseOutputRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_version(self, session_id: uuid.UUID, phase: str) -> int:
        stmt = select(func.max(PhaseOutput.version)).where(
            PhaseOutput.session_id == session_id, PhaseOutput.phase == phase
        )
        current = (await self._session.execute(stmt)).scalar_one_or_none()
        return int(current or 0) + 1

    async def add(
        self, *, session_id: uuid.UUID, phase: str, version: int, payload: dict[str, Any]
    ) -> PhaseOutput:
        row = PhaseOutput(session_id=session_id, phase=phase, version=version, payload=payload)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(
        self, session_id: uuid.UUID, phase: str, *, version: int | None = None
    ) -> PhaseOutput | None:
        stmt = select(PhaseOutput).where(
            PhaseOutput.session_id == session_id, PhaseOutput.phase == phase
        )
        if version is not None:
            stmt = stmt.where(PhaseOutput.version == version)
        else:
            stmt = stmt.order_by(PhaseOutput.version.desc()).limit(1)
        return (await self._session.execute(stmt)).scalars().first()

    async def latest_per_phase(self, session_id: uuid.UUID) -> dict[str, PhaseOutput]:
        stmt = (
            select(PhaseOutput)
            .where(PhaseOutput.session_id == session_id)
            .order_by(PhaseOutput.phase, PhaseOutput.version)
        )
        out: dict[str, PhaseOutput] = {}
        for row in (await self._session.execute(stmt)).scalars().all():
            out[row.phase] = row  # ascending versions: last one wins
        return out
