"""
edge_orchestrator.services.orchestration_service

Multi-domain orchestration service (the caller-facing operations).

Responsibilities:
- Deploy a portfolio of domains concurrently, bounded by a concurrency limit, with
  each domain isolated in its own session and DB transaction scope.
- Resume interrupted sessions (failing fast on a concurrent resume).
- Cancel sessions, expose audit trails and session snapshots.
- Find sessions left behind by a crashed process.
"""

from __future__ import annotations

import asyncio
import os
import socket
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edge_orchestrator.db.models import AuditEntry, SessionStatus
from edge_orchestrator.db.repositories.phase_outputs import PhaseOutputRepo
from edge_orchestrator.db.repositories.phase_records import PhaseRecordRepo
from edge_orchestrator.db.repositories.rollback import RollbackRepo
from edge_orchestrator.db.session import session_scope
from edge_orchestrator.observability.logging import get_logger
from edge_orchestrator.orchestrator.errors import ErrorKind, RecoveryConflict, ValidationFailed
from edge_orchestrator.orchestrator.state import (
    DeployOptions,
    DomainConfig,
    SessionError,
    SessionResult,
)
from edge_orchestrator.orchestrator.verification import VerificationEngine
from edge_orchestrator.provisioning_clients.base import Collaborators
from edge_orchestrator.services.session_runner import SessionRunner
from edge_orchestrator.services.state_manager import StateManager
from edge_orchestrator.settings import Settings

log = get_logger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class OrchestrationService:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        collaborators: Collaborators,
        verifier: VerificationEngine,
        owner: str | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._collaborators = collaborators
        self._verifier = verifier
        self._owner = owner or default_owner()
        self._sleep = sleep

    def _runner(self, db: AsyncSession) -> SessionRunner:
        return SessionRunner(
            db=db,
            settings=self._settings,
            collaborators=self._collaborators,
            verifier=self._verifier,
            owner=self._owner,
            sleep=self._sleep,
            session_factory=self._session_factory,
        )

    def effective_concurrency(self, requested: int | None) -> int:
        wanted = requested or self._settings.default_concurrency
        return max(1, min(wanted, self._settings.max_concurrency))

    async def deploy(
        self,
        configs: Sequence[DomainConfig],
        options: DeployOptions | None = None,
        *,
        actor: str = "system",
    ) -> list[SessionResult]:
        """
        Create one session per domain and run them concurrently (at most
        `options.concurrency` at once). One domain's failure never affects another's.
        Results come back in input order.
        """

        options = options or DeployOptions()
        if not configs:
            return []

        seen: set[tuple[str, str]] = set()
        duplicates: list[str] = []
        for cfg in configs:
            key = (cfg.domain, cfg.environment)
            if key in seen:
                duplicates.append(f"{cfg.domain} ({cfg.environment}) listed more than once")
            seen.add(key)
        if duplicates:
            raise ValidationFailed(duplicates)

        orchestration_id = f"orch-{uuid.uuid4().hex[:12]}"
        async with session_scope(self._session_factory) as db:
            states = StateManager(db, actor=self._settings.actor)
            session_ids = [
                await states.create_session(
                    orchestration_id=orchestration_id,
                    config=cfg,
                    dry_run=options.dry_run,
                    actor=actor,
                )
                for cfg in configs
            ]

        concurrency = self.effective_concurrency(options.concurrency)
        log.info(
            "portfolio_started",
            orchestration_id=orchestration_id,
            domains=len(configs),
            concurrency=concurrency,
            dry_run=options.dry_run,
        )

        semaphore = asyncio.Semaphore(concurrency)
        results = await asyncio.gather(
            *(
                self._run_bounded(semaphore, sid, cfg.domain)
                for sid, cfg in zip(session_ids, configs, strict=True)
            )
        )

        summary = Counter(r.status for r in results)
        log.info(
            "portfolio_finished",
            orchestration_id=orchestration_id,
            summary=dict(summary),
            manual_cleanup=sum(1 for r in results if r.manual_cleanup_required),
        )
        return list(results)

    async def _run_bounded(
        self, semaphore: asyncio.Semaphore, session_id: uuid.UUID, domain: str
    ) -> SessionResult:
        async with semaphore:
            try:
                async with session_scope(self._session_factory) as db:
                    return await self._runner(db).run(session_id)
            except RecoveryConflict as e:
                return await self._unfinished(session_id, domain, ErrorKind.recovery_conflict, e)
            except Exception as e:
                # Isolation: this domain's crash is reported in its own result only.
                log.exception("session_run_crashed", session_id=str(session_id), domain=domain)
                return await self._unfinished(session_id, domain, ErrorKind.internal, e)

    async def _unfinished(
        self, session_id: uuid.UUID, domain: str, kind: ErrorKind, exc: Exception
    ) -> SessionResult:
        async with session_scope(self._session_factory) as db:
            row = await StateManager(db).get(session_id)
            status, dry_run = row.status.value, row.dry_run
        return SessionResult(
            session_id=session_id,
            domain=domain,
            status=status,
            dry_run=dry_run,
            errors=[
                SessionError(
                    error=kind.value,
                    kind=kind.value,
                    message=str(exc) or type(exc).__name__,
                    details={"awaiting_recovery": not SessionStatus(status).is_terminal},
                )
            ],
        )

    async def resume(self, session_id: uuid.UUID, *, actor: str = "system") -> SessionResult:
        """
        Continue a session from the phase after its last completed one. Raises
        SessionNotFound, or RecoveryConflict when another process owns the session.
        """

        try:
            async with session_scope(self._session_factory) as db:
                await StateManager(db).get(session_id)
                await db.commit()
                return await self._runner(db).run(
                    session_id, resuming=True, requested_by=actor
                )
        except RecoveryConflict as e:
            log.warning("resume_conflict", session_id=str(session_id), owner=e.owner)
            async with session_scope(self._session_factory) as db:
                await StateManager(db, actor=actor).audit(
                    session_id, "RESUME_CONFLICT", {"holder": e.owner}
                )
            raise

    async def cancel(self, session_id: uuid.UUID, *, actor: str = "system") -> None:
        """
        Request cancellation. A running session stops at its next phase boundary and
        rolls back; in-flight collaborator calls are not interrupted.
        """

        async with session_scope(self._session_factory) as db:
            await StateManager(db, actor=self._settings.actor).request_cancel(
                session_id, actor=actor
            )
        log.info("cancel_requested", session_id=str(session_id), actor=actor)

    async def get_audit_trail(self, session_id: uuid.UUID) -> list[AuditEntry]:
        async with session_scope(self._session_factory) as db:
            return await StateManager(db).audit_trail(session_id)

    async def get_result(self, session_id: uuid.UUID) -> SessionResult:
        async with session_scope(self._session_factory) as db:
            return await StateManager(db).result_for(session_id)

    async def get_session_snapshot(self, session_id: uuid.UUID) -> dict[str, Any]:
        async with session_scope(self._session_factory) as db:
            states = StateManager(db)
            row = await states.get(session_id)
            records = await PhaseRecordRepo(db).list_for_session(session_id)
            outputs = await PhaseOutputRepo(db).latest_per_phase(session_id)
            actions = await RollbackRepo(db).list_for_session(session_id)
            audit = await states.audit_trail(session_id)
            result = await states.result_for(session_id)
            return {
                "session": {
                    "id": str(row.id),
                    "orchestration_id": row.orchestration_id,
                    "domain": row.domain,
                    "customer": row.customer,
                    "environment": row.environment,
                    "status": row.status.value,
                    "current_phase": row.current_phase,
                    "dry_run": row.dry_run,
                    "cancel_requested": row.cancel_requested,
                    "created_at": row.created_at.isoformat(),
                    "finished_at": row.finished_at.isoformat() if row.finished_at else None,
                },
                "phase_records": [
                    {
                        "phase": r.phase,
                        "attempt": r.attempt,
                        "outcome": r.outcome.value,
                        "error_kind": r.error_kind,
                        "error_detail": r.error_detail,
                        "started_at": r.started_at.isoformat(),
                        "finished_at": r.finished_at.isoformat() if r.finished_at else None,
                    }
                    for r in records
                ],
                "outputs": {
                    phase: {"version": o.version, "payload": o.payload}
                    for phase, o in outputs.items()
                },
                "rollback_actions": [
                    {
                        "sequence": a.sequence,
                        "kind": a.kind,
                        "payload": a.payload,
                        "executed": a.executed,
                        "last_error": a.last_error,
                    }
                    for a in actions
                ],
                "audit": [
                    {
                        "sequence": e.sequence,
                        "timestamp": e.timestamp.isoformat(),
                        "actor": e.actor,
                        "action": e.action,
                        "detail": e.detail,
                    }
                    for e in audit
                ],
                "result": result.model_dump(mode="json"),
            }

    async def list_sessions_awaiting_recovery(self) -> list[uuid.UUID]:
        async with session_scope(self._session_factory) as db:
            rows = await StateManager(db).bridge.list_sessions_awaiting_recovery()
            return [r.id for r in rows]

    async def recover_interrupted(self) -> list[uuid.UUID]:
        """
        Mark Running sessions with no live owner as AwaitingRecovery (run at startup).
        Returns every session that needs a resume.
        """

        async with session_scope(self._session_factory) as db:
            states = StateManager(db, actor=self._settings.actor)
            rows = await states.bridge.list_sessions_awaiting_recovery()
            candidates = [(r.id, r.status) for r in rows]
            await db.commit()
            for session_id, status in candidates:
                if status is SessionStatus.running:
                    await states.mark_awaiting_recovery(session_id, reason="owner lost")
        if candidates:
            log.warning("sessions_awaiting_recovery", count=len(candidates))
        return [sid for sid, _ in candidates]

    async def resume_interrupted(self) -> list[SessionResult]:
        """
        Startup recovery: mark orphaned sessions, then resume each one in turn. A session
        another process grabbed first is skipped, not failed.
        """

        results: list[SessionResult] = []
        for session_id in await self.recover_interrupted():
            try:
                results.append(await self.resume(session_id, actor="startup-recovery"))
            except RecoveryConflict:
                log.info("recovery_skipped", session_id=str(session_id))
        return results


# --- Module Notes -----------------------------------------------------------
# This service is the transaction boundary for caller-facing operations; each domain's
# runner gets its own AsyncSession because sessions must not be shared across tasks.
