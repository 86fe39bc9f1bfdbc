"""
edge_orchestrator.services.session_locks

Per-session advisory lock.

Responsibilities:
- Give one owner at a time the right to drive a session (run, resume, drain).
- Fail fast with RecoveryConflict when a live lock is held by someone else.
- Let an expired lock (owner crashed) be taken over.
- Keep a live owner's lease from expiring while a long phase is in flight.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edge_orchestrator.db.models import utcnow
from edge_orchestrator.db.repositories.locks import LockRepo
from edge_orchestrator.db.session import session_scope
from edge_orchestrator.observability.logging import get_logger
from edge_orchestrator.orchestrator.errors import RecoveryConflict

log = get_logger(__name__)


class SessionLockManager:
    def __init__(self, session: AsyncSession, *, owner: str, ttl_seconds: float = 300.0) -> None:
        self._session = session
        self._owner = owner
        self._ttl = timedelta(seconds=ttl_seconds)
        self._locks = LockRepo(session)

    @property
    def owner(self) -> str:
        return self._owner

    async def acquire(self, session_id: uuid.UUID) -> None:
        now = utcnow()
        current = await self._locks.get(session_id)
        if current is not None and current.owner != self._owner and current.expires_at > now:
            holder = current.owner
            await self._session.rollback()
            raise RecoveryConflict(session_id, holder)

        try:
            if current is not None:
                # Drop the stale identity so the insert below is a fresh row.
                self._session.expunge(current)
                if current.owner == self._owner:
                    await self._locks.delete_owned(session_id, self._owner)
                elif await self._locks.delete_expired(session_id, now):
                    log.warning(
                        "session_lock_taken_over",
                        session_id=str(session_id),
                        previous_owner=current.owner,
                    )
            await self._locks.insert(
                session_id=session_id,
                owner=self._owner,
                acquired_at=now,
                expires_at=now + self._ttl,
            )
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            raise RecoveryConflict(session_id, None) from e

    async def refresh(self, session_id: uuid.UUID) -> None:
        """Extend the lease; raises RecoveryConflict if the lock was lost to another owner."""

        lock = await self._locks.get(session_id)
        if lock is None or lock.owner != self._owner:
            holder = lock.owner if lock is not None else None
            await self._session.rollback()
            raise RecoveryConflict(session_id, holder)
        lock.expires_at = utcnow() + self._ttl
        await self._session.commit()

    async def heartbeat(
        self,
        session_id: uuid.UUID,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float,
    ) -> None:
        """
        Refresh the lease every `interval` seconds until cancelled. Runs on its own
        AsyncSession, since the owner's session is busy in another task. Stops when the
        lock turns out to belong to someone else.
        """

        while True:
            await asyncio.sleep(interval)
            async with session_scope(session_factory) as db:
                keeper = SessionLockManager(
                    db, owner=self._owner, ttl_seconds=self._ttl.total_seconds()
                )
                try:
                    await keeper.refresh(session_id)
                except RecoveryConflict as e:
                    log.error("session_lock_lost", session_id=str(session_id), holder=e.owner)
                    return

    async def release(self, session_id: uuid.UUID) -> None:
        await self._session.rollback()
        await self._locks.delete_owned(session_id, self._owner)
        await self._session.commit()


# --- Module Notes -----------------------------------------------------------
# The lock row's primary key is the session id, so two concurrent inserts cannot both
# commit; the loser sees IntegrityError and reports RecoveryConflict.
