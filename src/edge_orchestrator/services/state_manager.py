"""
edge_orchestrator.services.state_manager

Per-session state machine with an append-only audit trail.

Responsibilities:
- Create sessions and move them through phases under the transition rule.
- Record phase attempts (success with its Data Bridge output, failure, skip).
- Write exactly one audit entry per transition, committed atomically with it.
- Rebuild a caller-facing `SessionResult` from durable state.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import (
    AuditEntry,
    OrchestrationSession,
    PhaseOutcome,
    SessionStatus,
)
from edge_orchestrator.db.repositories.audit import AuditRepo
from edge_orchestrator.db.repositories.phase_records import PhaseRecordRepo
from edge_orchestrator.db.repositories.sessions import SessionRepo
from edge_orchestrator.observability.logging import get_logger
from edge_orchestrator.orchestrator.errors import (
    DataBridgeWriteError,
    ErrorKind,
    InvalidTransition,
    SessionNotFound,
)
from edge_orchestrator.orchestrator.phases import Phase
from edge_orchestrator.orchestrator.state import DomainConfig, SessionError, SessionResult
from edge_orchestrator.services.data_bridge import DataBridge

log = get_logger(__name__)


class StateManager:
    def __init__(self, session: AsyncSession, *, actor: str = "orchestrator") -> None:
        self._session = session
        self._actor = actor
        self._sessions = SessionRepo(session)
        self._records = PhaseRecordRepo(session)
        self._audit = AuditRepo(session)
        self._bridge = DataBridge(session)

    @property
    def bridge(self) -> DataBridge:
        return self._bridge

    async def create_session(
        self,
        *,
        orchestration_id: str,
        config: DomainConfig,
        dry_run: bool,
        actor: str | None = None,
    ) -> uuid.UUID:
        row = await self._sessions.create(
            orchestration_id=orchestration_id,
            domain=config.domain,
            customer=config.customer,
            environment=config.environment,
            config=config.model_dump(mode="json"),
            dry_run=dry_run,
        )
        await self._audit.add(
            session_id=row.id,
            actor=actor or self._actor,
            action="SESSION_CREATED",
            detail={"orchestration_id": orchestration_id, "domain": config.domain, "dry_run": dry_run},
        )
        await self._session.commit()
        return row.id

    async def get(self, session_id: uuid.UUID) -> OrchestrationSession:
        row = await self._sessions.refresh(session_id)
        if row is None:
            raise SessionNotFound(session_id)
        return row

    async def transition(self, session_id: uuid.UUID, phase: Phase) -> OrchestrationSession:
        """
        Enter `phase`. Allowed only when the session is not terminal, `phase` has not
        already succeeded, and the previous phase's latest record is a Success.
        """

        row = await self.get(session_id)
        if row.status.is_terminal:
            await self._reject(session_id, row.status.value, phase.value)

        prev = phase.previous
        if prev is not None:
            latest = await self._records.latest_for_phase(session_id, prev.value)
            if latest is None or latest.outcome is not PhaseOutcome.success:
                await self._reject(session_id, row.current_phase, phase.value)
        if phase.value in await self._records.succeeded_phases(session_id):
            await self._reject(session_id, row.current_phase, phase.value)

        previous_phase = row.current_phase
        try:
            await self._sessions.set_state(
                row, status=SessionStatus.running, current_phase=phase.value
            )
            await self._audit.add(
                session_id=session_id,
                actor=self._actor,
                action="PHASE_STARTED",
                detail={"from": previous_phase, "to": phase.value, "state": phase.state_label},
            )
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            raise
        return row

    async def _reject(self, session_id: uuid.UUID, current: str | None, target: str) -> None:
        await self._session.rollback()
        raise InvalidTransition(session_id, current, target)

    async def complete_phase(
        self,
        session_id: uuid.UUID,
        phase: Phase,
        *,
        attempt: int,
        started_at: datetime,
        output: dict[str, Any],
        warnings: list[str] | None = None,
    ) -> int:
        """
        Success record, Data Bridge output and audit entry commit as one unit; a failed
        commit surfaces as DataBridgeWriteError so the attempt is retried.
        """

        try:
            version = await self._bridge.put(session_id, phase.value, output)
            await self._records.add(
                session_id=session_id,
                phase=phase.value,
                attempt=attempt,
                outcome=PhaseOutcome.success,
                started_at=started_at,
                output=output,
            )
            await self._audit.add(
                session_id=session_id,
                actor=self._actor,
                action="PHASE_COMPLETED",
                detail={"phase": phase.value, "attempt": attempt, "version": version},
            )
            if warnings:
                await self._audit.add(
                    session_id=session_id,
                    actor=self._actor,
                    action="VERIFICATION_WARNING",
                    detail={"phase": phase.value, "warnings": list(warnings)},
                )
            await self._session.commit()
        except (SQLAlchemyError, DataBridgeWriteError) as e:
            await self._session.rollback()
            if isinstance(e, DataBridgeWriteError):
                raise
            raise DataBridgeWriteError(phase.value, str(e)) from e
        return version

    async def record_failure(
        self,
        session_id: uuid.UUID,
        phase: Phase,
        *,
        attempt: int,
        started_at: datetime,
        kind: ErrorKind,
        message: str,
    ) -> None:
        # Whatever the failed attempt left uncommitted is discarded first.
        await self._session.rollback()
        await self._records.add(
            session_id=session_id,
            phase=phase.value,
            attempt=attempt,
            outcome=PhaseOutcome.failure,
            started_at=started_at,
            error_kind=kind.value,
            error_detail=message,
        )
        await self._audit.add(
            session_id=session_id,
            actor=self._actor,
            action="PHASE_ATTEMPT_FAILED",
            detail={"phase": phase.value, "attempt": attempt, "kind": kind.value, "message": message},
        )
        await self._session.commit()

    async def attempts_for(self, session_id: uuid.UUID, phase: Phase) -> int:
        return await self._records.attempts_for_phase(session_id, phase.value)

    async def record_skipped(self, session_id: uuid.UUID, phase: Phase, *, reason: str) -> None:
        await self._records.add(
            session_id=session_id,
            phase=phase.value,
            attempt=await self._records.attempts_for_phase(session_id, phase.value) + 1,
            outcome=PhaseOutcome.skipped,
            error_kind=ErrorKind.cancelled.value,
            error_detail=reason,
        )
        await self._session.commit()

    async def begin_rollback(
        self,
        session_id: uuid.UUID,
        *,
        phase: str | None,
        error: str,
        kind: str,
        message: str,
        attempts: int = 0,
    ) -> None:
        """Record the phase failure that triggers rollback; survives a crash mid-drain."""

        row = await self.get(session_id)
        await self._sessions.set_state(row, rollback_reason=f"{error}: {message}"[:2000])
        await self._audit.add(
            session_id=session_id,
            actor=self._actor,
            action="PHASE_FAILED",
            detail={
                "phase": phase,
                "error": error,
                "kind": kind,
                "message": message,
                "attempts": attempts,
            },
        )
        await self._session.commit()

    async def finish(
        self,
        session_id: uuid.UUID,
        status: SessionStatus,
        *,
        detail: dict[str, Any] | None = None,
    ) -> OrchestrationSession:
        row = await self.get(session_id)
        if row.status.is_terminal:
            await self._reject(session_id, row.status.value, status.value)
        await self._sessions.set_state(row, status=status, finished=True)
        await self._audit.add(
            session_id=session_id,
            actor=self._actor,
            action=f"SESSION_{status.value}",
            detail=detail or {},
        )
        await self._session.commit()
        log.info("session_finished", session_id=str(session_id), status=status.value)
        return row

    async def mark_awaiting_recovery(self, session_id: uuid.UUID, *, reason: str) -> bool:
        row = await self.get(session_id)
        if row.status.is_terminal or row.status is SessionStatus.awaiting_recovery:
            await self._session.rollback()
            return False
        await self._sessions.set_state(row, status=SessionStatus.awaiting_recovery)
        await self._audit.add(
            session_id=session_id,
            actor=self._actor,
            action="SESSION_AWAITING_RECOVERY",
            detail={"reason": reason, "phase": row.current_phase},
        )
        await self._session.commit()
        return True

    async def request_cancel(self, session_id: uuid.UUID, *, actor: str) -> OrchestrationSession:
        row = await self._sessions.request_cancel(session_id)
        if row is None:
            raise SessionNotFound(session_id)
        if row.status.is_terminal:
            status = row.status.value
            await self._session.rollback()
            raise InvalidTransition(session_id, status, "CANCELLED")
        await self._audit.add(
            session_id=session_id,
            actor=actor,
            action="CANCEL_REQUESTED",
            detail={"phase": row.current_phase},
        )
        await self._session.commit()
        return row

    async def audit(self, session_id: uuid.UUID, action: str, detail: dict[str, Any]) -> None:
        await self._audit.add(session_id=session_id, actor=self._actor, action=action, detail=detail)
        await self._session.commit()

    async def audit_trail(self, session_id: uuid.UUID) -> list[AuditEntry]:
        await self.get(session_id)
        return await self._audit.list_for_session(session_id)

    async def result_for(self, session_id: uuid.UUID) -> SessionResult:
        row = await self.get(session_id)
        errors: list[SessionError] = []
        warnings: list[SessionError] = []
        for entry in await self._audit.list_for_session(session_id):
            d = entry.detail or {}
            if entry.action == "PHASE_FAILED":
                errors.append(
                    SessionError(
                        error=str(d.get("error", "ProvisioningFailed")),
                        kind=str(d.get("kind", ErrorKind.internal.value)),
                        phase=d.get("phase"),
                        message=str(d.get("message", "")),
                        details={"attempts": d.get("attempts", 0)},
                    )
                )
            elif entry.action == "COMPENSATION_FAILED":
                errors.append(
                    SessionError(
                        error="CompensationError",
                        kind=str(d.get("kind", "")),
                        message=str(d.get("message", "")),
                        details={"sequence": d.get("sequence"), "manual_cleanup_required": True},
                    )
                )
            elif entry.action == "VERIFICATION_WARNING":
                for w in d.get("warnings", []):
                    warnings.append(
                        SessionError(
                            error="VerificationWarning",
                            kind=ErrorKind.verification.value,
                            phase=d.get("phase"),
                            message=str(w),
                        )
                    )

        worker_url = None
        if row.status in (SessionStatus.completed, SessionStatus.completed_with_warnings):
            execute = await self._bridge.get(session_id, Phase.execute.value)
            worker_url = (execute or {}).get("worker_url")

        return SessionResult(
            session_id=row.id,
            domain=row.domain,
            status=row.status.value,
            worker_url=worker_url,
            dry_run=row.dry_run,
            errors=errors,
            warnings=warnings,
        )


# --- Module Notes -----------------------------------------------------------
# Terminal states are immutable: `finish` refuses a second terminal transition, so a
# session's final status is written exactly once.
