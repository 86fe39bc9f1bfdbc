"""
edge_orchestrator.db.repositories.rollback

Repository for `RollbackAction` entities.

Responsibilities:
- Append compensating actions with a monotonic per-session sequence.
- List pending actions newest-first for LIFO draining.
- Record execution outcome without deleting rows.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import RollbackAction, utcnow


class RollbackRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def next_sequence(self, session_id: uuid.UUID) -> int:
        stmt = select(func.max(RollbackAction.sequence)).where(
            RollbackAction.session_id == session_id
        )
        current = (await self._session.execute(stmt)).scalar_one_or_none()
        return int(current or 0) + 1

    async def add(
        self, *, session_id: uuid.UUID, sequence: int, kind: str, payload: dict[str, Any]
    ) -> RollbackAction:
        action = RollbackAction(
            session_id=session_id,
            sequence=sequence,
            kind=kind,
            payload=payload,
            executed=False,
        )
        self._session.add(action)
        await self._session.flush()
        return action

    async def find_pending(
        self, session_id: uuid.UUID, *, kind: str, payload: dict[str, Any]
    ) -> RollbackAction | None:
        # A retried idempotent apply() returns the same resource; reuse the guard already recorded.
        for action in await self.list_pending_lifo(session_id):
            if action.kind == kind and action.payload == payload:
                return action
        return None

    async def list_pending_lifo(self, session_id: uuid.UUID) -> list[RollbackAction]:
        stmt = (
            select(RollbackAction)
            .where(RollbackAction.session_id == session_id, RollbackAction.executed.is_(False))
            .order_by(RollbackAction.sequence.desc())
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def list_for_session(self, session_id: uuid.UUID) -> list[RollbackAction]:
        stmt = (
            select(RollbackAction)
            .where(RollbackAction.session_id == session_id)
            .order_by(RollbackAction.sequence)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def mark_executed(self, action: RollbackAction) -> None:
        action.executed = True
        action.executed_at = utcnow()
        action.last_error = None
        await self._session.flush()

    async def mark_failed(self, action: RollbackAction, error: str) -> None:
        # Stays pending so a later drain retries it.
        action.last_error = error
        await self._session.flush()


# --- Module Notes -----------------------------------------------------------
# Rows are never deleted; the `executed` flag is the only mutable field besides last_error.
