"""
edge_orchestrator.db.repositories.sessions

Repository for `OrchestrationSession` entities.

Responsibilities:
- Create and fetch orchestration sessions.
- Apply state-machine updates decided by the State Manager.
- Query sessions by status for recovery scans.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import OrchestrationSession, SessionStatus, utcnow


class SessionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        orchestration_id: str,
        domain: str,
        customer: str,
        environment: str,
        config: dict[str, Any],
        dry_run: bool,
    ) -> OrchestrationSession:
        row = OrchestrationSession(
            orchestration_id=orchestration_id,
            domain=domain,
            customer=customer,
            environment=environment,
            config=config,
            current_phase=None,
            status=SessionStatus.pending,
            dry_run=dry_run,
            cancel_requested=False,
        )
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, session_id: uuid.UUID) -> OrchestrationSession | None:
        return await self._session.get(OrchestrationSession, session_id)

    async def get_for_update(self, session_id: uuid.UUID) -> OrchestrationSession | None:
        # populate_existing: another connection may have changed the row (e.g. cancel flag).
        return await self._session.get(
            OrchestrationSession, session_id, with_for_update=True, populate_existing=True
        )

    async def refresh(self, session_id: uuid.UUID) -> OrchestrationSession | None:
        return await self._session.get(
            OrchestrationSession, session_id, populate_existing=True
        )

    async def list_by_status(self, *statuses: SessionStatus) -> list[OrchestrationSession]:
        stmt = (
            select(OrchestrationSession)
            .where(OrchestrationSession.status.in_(statuses))
            .order_by(OrchestrationSession.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def set_state(
        self,
        row: OrchestrationSession,
        *,
        status: SessionStatus | None = None,
        current_phase: str | None = None,
        rollback_reason: str | None = None,
        finished: bool = False,
    ) -> None:
        if status is not None:
            row.status = status
        if current_phase is not None:
            row.current_phase = current_phase
        if rollback_reason is not None:
            row.rollback_reason = rollback_reason
        now = utcnow()
        row.updated_at = now
        if finished:
            row.finished_at = now
        await self._session.flush()

    async def request_cancel(self, session_id: uuid.UUID) -> OrchestrationSession | None:
        row = await self.get_for_update(session_id)
        if row is None:
            return None
        row.cancel_requested = True
        row.updated_at = utcnow()
        await self._session.flush()
        return row


# --- Module Notes -----------------------------------------------------------
# Status/phase changes must go through services.state_manager so each one is audited.
