"""
edge_orchestrator.services.data_bridge

Durable, versioned store of phase outputs.

Responsibilities:
- Persist each phase's output as a new version (`put`) and read it back (`get`).
- Answer recovery questions: last completed phase per session, sessions needing recovery.
- Rebuild the outputs map a resumed session starts from.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import OrchestrationSession, SessionStatus, utcnow
from edge_orchestrator.db.repositories.locks import LockRepo
from edge_orchestrator.db.repositories.phase_outputs import PhaseOutputRepo
from edge_orchestrator.db.repositories.phase_records import PhaseRecordRepo
from edge_orchestrator.db.repositories.sessions import SessionRepo
from edge_orchestrator.orchestrator.errors import DataBridgeWriteError
from edge_orchestrator.orchestrator.phases import LIFECYCLE, Phase


class DataBridge:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._outputs = PhaseOutputRepo(session)
        self._records = PhaseRecordRepo(session)
        self._sessions = SessionRepo(session)
        self._locks = LockRepo(session)

    async def put(self, session_id: uuid.UUID, phase: str, payload: dict[str, Any]) -> int:
        """
        Stage a new version of `phase`'s output and return its version number.
        Flushes only: the caller commits it together with the matching PhaseRecord.
        """

        try:
            version = await self._outputs.next_version(session_id, phase)
            await self._outputs.add(
                session_id=session_id, phase=phase, version=version, payload=payload
            )
        except SQLAlchemyError as e:
            raise DataBridgeWriteError(phase, str(e)) from e
        return version

    async def get(
        self, session_id: uuid.UUID, phase: str, *, version: int | None = None
    ) -> dict[str, Any] | None:
        row = await self._outputs.get(session_id, phase, version=version)
        return dict(row.payload) if row is not None else None

    async def load_outputs(self, session_id: uuid.UUID) -> dict[str, dict[str, Any]]:
        """Latest output of every successfully completed phase, keyed by phase value."""

        succeeded = await self._records.succeeded_phases(session_id)
        latest = await self._outputs.latest_per_phase(session_id)
        return {p: dict(row.payload) for p, row in latest.items() if p in succeeded}

    async def get_latest_completed_phase(self, session_id: uuid.UUID) -> Phase | None:
        # Contiguous prefix only: a later success after a gap does not count.
        succeeded = await self._records.succeeded_phases(session_id)
        latest: Phase | None = None
        for phase in LIFECYCLE:
            if phase.value not in succeeded:
                break
            latest = phase
        return latest

    async def list_sessions_awaiting_recovery(self) -> list[OrchestrationSession]:
        """
        Sessions explicitly marked AwaitingRecovery, plus Running sessions whose owner
        lock is gone or expired (the owning process died mid-phase).
        """

        now = utcnow()
        out: list[OrchestrationSession] = []
        rows = await self._sessions.list_by_status(
            SessionStatus.running, SessionStatus.awaiting_recovery
        )
        for row in rows:
            if row.status is SessionStatus.awaiting_recovery:
                out.append(row)
                continue
            lock = await self._locks.get(row.id)
            if lock is None or lock.expires_at <= now:
                out.append(row)
        return out


# --- Module Notes -----------------------------------------------------------
# Versions are never overwritten: a retried phase that succeeds again writes version N+1,
# and readers take the latest version unless they ask for a specific one.
