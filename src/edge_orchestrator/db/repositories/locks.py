from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import SessionLock


class LockRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, session_id: uuid.UUID) -> SessionLock | None:
        return await self._session.get(SessionLock, session_id, populate_existing=True)

    async def insert(
        self, *, session_id: uuid.UUID, owner: str, acquired_at: datetime, expires_at: datetime
    ) -> SessionLock:
        # Primary key on session_id: a concurrent insert fails with IntegrityError.
        lock = SessionLock(
            session_id=session_id, owner=owner, acquired_at=acquired_at, expires_at=expires_at
        )
        self._session.add(lock)
        await self._session.flush()
        return lock

    async def delete_owned(self, session_id: uuid.UUID, owner: str) -> int:
        stmt = delete(SessionLock).where(
            SessionLock.session_id == session_id, SessionLock.owner == owner
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)

    async def delete_expired(self, session_id: uuid.UUID, now: datetime) -> int:
        stmt = delete(SessionLock).where(
            SessionLock.session_id == session_id, SessionLock.expires_at <= now
        )
        result = await self._session.execute(stmt)
        return int(result.rowcount or 0)
