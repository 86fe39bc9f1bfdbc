"""
edge_orchestrator.services.rollback_ledger

Persistent LIFO ledger of compensating actions.

Responsibilities:
- Record a compensating action durably right after its side effect succeeds.
- Compensate immediately when the action itself cannot be recorded.
- Drain pending actions newest-first, best-effort and idempotently, auditing each one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import RollbackAction
from edge_orchestrator.db.repositories.audit import AuditRepo
from edge_orchestrator.db.repositories.rollback import RollbackRepo
from edge_orchestrator.observability.logging import get_logger
from edge_orchestrator.orchestrator.errors import CompensationError, LedgerWriteError
from edge_orchestrator.orchestrator.retry import call_with_timeout
from edge_orchestrator.provisioning_clients.base import Collaborators, ProvisioningCollaborator

log = get_logger(__name__)


@dataclass(slots=True)
class DrainReport:
    executed: list[int] = field(default_factory=list)
    failures: list[CompensationError] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.executed) + len(self.failures)


class RollbackLedger:
    def __init__(
        self,
        session: AsyncSession,
        *,
        actor: str = "orchestrator",
        compensation_timeout: float = 60.0,
    ) -> None:
        self._session = session
        self._actor = actor
        self._timeout = compensation_timeout
        self._repo = RollbackRepo(session)
        self._audit = AuditRepo(session)

    async def push(
        self,
        session_id: uuid.UUID,
        *,
        kind: str,
        payload: dict[str, Any],
        compensator: ProvisioningCollaborator,
    ) -> RollbackAction:
        """
        Durably record `kind` for a side effect that already happened. An identical
        pending action (retried idempotent apply) is reused rather than duplicated.
        If the write fails the side effect is compensated here and LedgerWriteError raised.
        """

        try:
            existing = await self._repo.find_pending(session_id, kind=kind, payload=payload)
            if existing is not None:
                return existing
            action = await self._repo.add(
                session_id=session_id,
                sequence=await self._repo.next_sequence(session_id),
                kind=kind,
                payload=payload,
            )
            await self._audit.add(
                session_id=session_id,
                actor=self._actor,
                action="ROLLBACK_ACTION_RECORDED",
                detail={"sequence": action.sequence, "kind": kind},
            )
            await self._session.commit()
            return action
        except SQLAlchemyError as e:
            await self._session.rollback()
            compensated = await self._compensate_unrecorded(session_id, kind, payload, compensator)
            raise LedgerWriteError(kind, str(e), compensated=compensated, details=payload) from e

    async def _compensate_unrecorded(
        self,
        session_id: uuid.UUID,
        kind: str,
        payload: dict[str, Any],
        compensator: ProvisioningCollaborator,
    ) -> bool:
        try:
            await call_with_timeout(compensator.compensate(payload), timeout=self._timeout)
        except Exception:
            log.exception(
                "unrecorded_side_effect_leaked",
                session_id=str(session_id),
                kind=kind,
                payload=payload,
            )
            return False
        log.warning("unrecorded_side_effect_compensated", session_id=str(session_id), kind=kind)
        return True

    async def pending(self, session_id: uuid.UUID) -> list[RollbackAction]:
        return await self._repo.list_pending_lifo(session_id)

    async def actions(self, session_id: uuid.UUID) -> list[RollbackAction]:
        return await self._repo.list_for_session(session_id)

    async def drain(self, session_id: uuid.UUID, *, collaborators: Collaborators) -> DrainReport:
        """
        Execute every pending action, newest first. Each action's outcome is committed
        on its own, so an interrupted drain resumes where it stopped and a second drain
        is a no-op. A failed compensation stays pending and does not stop the drain.
        """

        report = DrainReport()
        pending = await self._repo.list_pending_lifo(session_id)
        await self._session.commit()
        for action in pending:
            try:
                compensator = collaborators.for_rollback(action.kind)
                await call_with_timeout(
                    compensator.compensate(dict(action.payload)), timeout=self._timeout
                )
            except Exception as e:
                await self._repo.mark_failed(action, str(e) or type(e).__name__)
                await self._audit.add(
                    session_id=session_id,
                    actor=self._actor,
                    action="COMPENSATION_FAILED",
                    detail={"sequence": action.sequence, "kind": action.kind, "message": str(e)},
                )
                await self._session.commit()
                report.failures.append(CompensationError(action.kind, str(e), action.sequence))
                log.error(
                    "compensation_failed",
                    session_id=str(session_id),
                    sequence=action.sequence,
                    kind=action.kind,
                    error=str(e),
                )
                continue

            await self._repo.mark_executed(action)
            await self._audit.add(
                session_id=session_id,
                actor=self._actor,
                action="COMPENSATION_EXECUTED",
                detail={"sequence": action.sequence, "kind": action.kind},
            )
            await self._session.commit()
            report.executed.append(action.sequence)
            log.info(
                "compensation_executed",
                session_id=str(session_id),
                sequence=action.sequence,
                kind=action.kind,
            )
        return report


# --- Module Notes -----------------------------------------------------------
# Collaborators implement compensate() as delete-if-exists, which is what makes replaying
# an action whose completion was never committed safe.
