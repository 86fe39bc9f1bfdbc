"""
edge_orchestrator.db.repositories.audit

Repository for `AuditEntry` entities.

Responsibilities:
- Append audit entries (orchestrator/system/user actions) with a per-session sequence.
- Query the audit trail by session for transparency and compliance.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import AuditEntry


class AuditRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(
        self,
        *,
        session_id: uuid.UUID,
        actor: str,
        action: str,
        detail: dict[str, Any],
    ) -> AuditEntry:
        # Audit entries are append-only (no update/delete).
        seq_stmt = select(func.max(AuditEntry.sequence)).where(AuditEntry.session_id == session_id)
        current = (await self._session.execute(seq_stmt)).scalar_one_or_none()
        entry = AuditEntry(
            session_id=session_id,
            sequence=int(current or 0) + 1,
            actor=actor,
            action=action,
            detail=detail,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_for_session(
        self, session_id: uuid.UUID, *, limit: int | None = None
    ) -> list[AuditEntry]:
        # Oldest-first: the trail is read as a chronological record.
        stmt = (
            select(AuditEntry)
            .where(AuditEntry.session_id == session_id)
            .order_by(AuditEntry.sequence)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list((await self._session.execute(stmt)).scalars().all())


# --- Module Notes -----------------------------------------------------------
# Every State Manager transition writes exactly one entry through this repo.
