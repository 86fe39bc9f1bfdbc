"""
edge_orchestrator.services.session_runner

Drives one domain's session through the lifecycle graph.

Responsibilities:
- Own the session's advisory lock for the duration of a run or resume.
- Execute each phase under its retry budget, writing one PhaseRecord per attempt.
- Checkpoint successful outputs to the Data Bridge before moving on.
- On failure, drain the rollback ledger and settle the terminal status exactly once.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edge_orchestrator.db.models import SessionStatus, utcnow
from edge_orchestrator.observability.logging import get_logger, session_log_context
from edge_orchestrator.orchestrator.errors import (
    ErrorKind,
    InvalidTransition,
    SessionCancelled,
    VerificationFailed,
    failure_label,
)
from edge_orchestrator.orchestrator.graph import FINISH, ROLLBACK, build_graph
from edge_orchestrator.orchestrator.nodes import PHASE_FUNCTIONS, PhaseContext, PhaseResult
from edge_orchestrator.orchestrator.phases import LIFECYCLE, VERIFICATION_PHASES, Phase
from edge_orchestrator.orchestrator.retry import AttemptFailed, RetryPolicy, run_with_retry
from edge_orchestrator.orchestrator.state import DomainConfig, SessionGraphState, SessionResult
from edge_orchestrator.orchestrator.verification import VerificationEngine
from edge_orchestrator.provisioning_clients.base import (
    Collaborators,
    ProvisioningCollaborator,
    RollbackKind,
)
from edge_orchestrator.services.rollback_ledger import RollbackLedger
from edge_orchestrator.services.session_locks import SessionLockManager
from edge_orchestrator.services.state_manager import StateManager
from edge_orchestrator.settings import Settings

log = get_logger(__name__)


class SessionRunner:
    def __init__(
        self,
        *,
        db: AsyncSession,
        settings: Settings,
        collaborators: Collaborators,
        verifier: VerificationEngine,
        owner: str,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._db = db
        self._session_factory = session_factory
        self._settings = settings
        self._collaborators = collaborators
        self._verifier = verifier
        self._sleep = sleep

        self._state = StateManager(db, actor=settings.actor)
        self._ledger = RollbackLedger(
            db, actor=settings.actor, compensation_timeout=settings.phase_timeout_seconds
        )
        # One lease per run: two runs in the same process must still exclude each other.
        self._locks = SessionLockManager(
            db,
            owner=f"{owner}:{uuid.uuid4().hex[:8]}",
            ttl_seconds=settings.session_lock_ttl_seconds,
        )

    async def run(
        self,
        session_id: uuid.UUID,
        *,
        resuming: bool = False,
        requested_by: str | None = None,
    ) -> SessionResult:
        """
        Run (or resume) `session_id` to a terminal status. Raises RecoveryConflict when
        another owner holds the session. Already-terminal sessions are returned unchanged.
        """

        await self._locks.acquire(session_id)
        heartbeat = self._start_heartbeat(session_id)
        try:
            with session_log_context(session_id=str(session_id)):
                return await self._run_locked(
                    session_id, resuming=resuming, requested_by=requested_by
                )
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat
            await self._locks.release(session_id)

    def _start_heartbeat(self, session_id: uuid.UUID) -> asyncio.Task[None] | None:
        # Keeps the lease alive while a collaborator call or health poll is in flight.
        if self._session_factory is None:
            return None
        return asyncio.create_task(
            self._locks.heartbeat(
                session_id,
                session_factory=self._session_factory,
                interval=self._settings.session_lock_ttl_seconds / 3,
            )
        )

    async def _run_locked(
        self, session_id: uuid.UUID, *, resuming: bool, requested_by: str | None
    ) -> SessionResult:
        row = await self._state.get(session_id)
        if row.status.is_terminal:
            return await self._state.result_for(session_id)

        domain = row.domain
        config = dict(row.config)
        dry_run = row.dry_run
        rollback_reason = row.rollback_reason
        cancel_requested = row.cancel_requested

        outputs = await self._state.bridge.load_outputs(session_id)
        completed = await self._state.bridge.get_latest_completed_phase(session_id)
        if rollback_reason:
            entry = ROLLBACK
        elif completed is None:
            entry = LIFECYCLE[0].value
        else:
            entry = completed.next.value if completed.next is not None else FINISH

        cancelled_after_last: dict[str, Any] = {}
        if entry == FINISH and cancel_requested:
            # Every phase succeeded but the session was cancelled before it was settled.
            entry = ROLLBACK
            cancelled_after_last = _cancelled_update(LIFECYCLE[-1], session_id, attempts=0)

        if resuming:
            await self._state.audit(
                session_id,
                "SESSION_RESUMED",
                {
                    "from": entry,
                    "completed": completed.value if completed else None,
                    "requested_by": requested_by,
                },
            )
        else:
            await self._db.commit()

        with session_log_context(domain=domain):
            log.info("session_run_started", entry=entry, resuming=resuming, dry_run=dry_run)
            state: SessionGraphState = {
                "session_id": str(session_id),
                "domain": domain,
                "config": config,
                "dry_run": dry_run,
                "outputs": outputs,
                "resume_from": entry,
                "failure_message": rollback_reason,
                "errors": [],
                "warnings": [],
            }
            state.update(cancelled_after_last)  # type: ignore[typeddict-item]
            graph = build_graph(driver=self)
            async for update in graph.astream(state, stream_mode="updates"):
                if isinstance(update, dict):
                    for node_name in update:
                        log.debug("graph_node_finished", node=node_name)

            result = await self._state.result_for(session_id)
            await self._db.commit()
            log.info("session_run_finished", status=result.status, errors=len(result.errors))
            return result

    # --- Graph driver -----------------------------------------------------------------

    async def run_phase(self, phase: Phase, state: SessionGraphState) -> dict[str, Any]:
        session_id = uuid.UUID(state["session_id"])
        await self._locks.refresh(session_id)

        row = await self._state.get(session_id)
        cancel_requested = row.cancel_requested
        if cancel_requested:
            await self._state.record_skipped(session_id, phase, reason="cancel requested")
            log.info("session_cancelled", phase=phase.value)
            return _cancelled_update(phase, session_id, attempts=0)

        try:
            await self._state.transition(session_id, phase)
        except InvalidTransition as e:
            log.error("invalid_transition", phase=phase.value, error=str(e))
            return _failure_update(phase, ErrorKind.internal, str(e), attempts=0)

        config = DomainConfig.model_validate(state["config"])
        dry_run = bool(state.get("dry_run", False))
        outputs = dict(state.get("outputs") or {})
        policy = RetryPolicy.for_phase(self._settings, phase.value)
        prior_attempts = await self._state.attempts_for(session_id, phase)
        started: dict[int, datetime] = {}

        async def guard(
            kind: RollbackKind, payload: dict[str, Any], compensator: ProvisioningCollaborator
        ) -> None:
            await self._ledger.push(
                session_id, kind=kind.value, payload=payload, compensator=compensator
            )

        async def attempt_fn(attempt: int) -> PhaseResult:
            started[attempt] = utcnow()
            # Extends the lease and commits: no transaction stays open across a collaborator call.
            await self._locks.refresh(session_id)
            ctx = PhaseContext(
                session_id=session_id,
                config=config,
                outputs=outputs,
                dry_run=dry_run,
                collaborators=self._collaborators,
                verifier=self._verifier,
                timeout=policy.timeout,
                guard=guard,
                default_health_path=self._settings.health_check_path,
            )
            result = await PHASE_FUNCTIONS[phase](ctx)
            if (
                result.warnings
                and phase in VERIFICATION_PHASES
                and self._settings.verification_failure_policy == "rollback"
            ):
                raise VerificationFailed(phase.value, list(result.warnings))
            await self._state.complete_phase(
                session_id,
                phase,
                attempt=prior_attempts + attempt,
                started_at=started[attempt],
                output=result.output,
                warnings=result.warnings if phase in VERIFICATION_PHASES else None,
            )
            return result

        async def on_failure(attempt: int, exc: BaseException, kind: ErrorKind) -> None:
            await self._state.record_failure(
                session_id,
                phase,
                attempt=prior_attempts + attempt,
                started_at=started.get(attempt, utcnow()),
                kind=kind,
                message=_describe(exc),
            )

        try:
            result, attempts = await run_with_retry(
                attempt_fn, policy=policy, on_failure=on_failure, sleep=self._sleep
            )
        except AttemptFailed as f:
            log.warning(
                "phase_failed",
                phase=phase.value,
                kind=f.kind.value,
                attempts=f.attempts,
                error=_describe(f.cause),
            )
            return _failure_update(phase, f.kind, _describe(f.cause), attempts=f.attempts)

        log.info("phase_completed", phase=phase.value, attempts=attempts)
        if phase.next is None and (await self._state.get(session_id)).cancel_requested:
            # Cancelled while the last phase was in flight: it finished, now undo it all.
            log.info("session_cancelled", phase=phase.value, after_completion=True)
            return _cancelled_update(phase, session_id, attempts=attempts)

        update: dict[str, Any] = {"outputs": {phase.value: result.output}}
        if result.warnings:
            update["warnings"] = [
                {"phase": phase.value, "message": w} for w in result.warnings
            ]
        return update

    async def rollback(self, state: SessionGraphState) -> dict[str, Any]:
        session_id = uuid.UUID(state["session_id"])
        failed_phase = state.get("failed_phase")
        kind = state.get("failure_kind") or ErrorKind.internal.value
        reason = state.get("failure_message") or "rollback requested"

        if failed_phase:
            await self._state.begin_rollback(
                session_id,
                phase=failed_phase,
                error=failure_label(ErrorKind(kind)),
                kind=kind,
                message=reason,
                attempts=int(state.get("failure_attempts", 0) or 0),
            )

        log.info("rollback_started", failed_phase=failed_phase, reason=reason)
        report = await self._ledger.drain(session_id, collaborators=self._collaborators)
        recorded = await self._ledger.actions(session_id)

        # Nothing was ever provisioned: there was nothing to roll back.
        status = SessionStatus.rolled_back if recorded else SessionStatus.failed
        await self._state.finish(
            session_id,
            status,
            detail={
                "reason": reason,
                "compensated": len(report.executed),
                "compensation_failures": len(report.failures),
            },
        )
        return {
            "final_status": status.value,
            "errors": [
                {
                    "error": "CompensationError",
                    "kind": f.kind,
                    "message": f.message,
                    "details": {"sequence": f.sequence},
                }
                for f in report.failures
            ],
        }

    async def finish(self, state: SessionGraphState) -> dict[str, Any]:
        session_id = uuid.UUID(state["session_id"])
        # Warnings recorded before a restart are in the audit trail, not in `state`.
        snapshot = await self._state.result_for(session_id)
        status = (
            SessionStatus.completed_with_warnings
            if snapshot.warnings or state.get("warnings")
            else SessionStatus.completed
        )
        await self._state.finish(
            session_id, status, detail={"warnings": len(snapshot.warnings)}
        )
        return {"final_status": status.value}


def _failure_update(phase: Phase, kind: ErrorKind, message: str, *, attempts: int) -> dict[str, Any]:
    return {
        "failed_phase": phase.value,
        "failure_kind": kind.value,
        "failure_message": message,
        "failure_attempts": attempts,
        "errors": [
            {
                "error": failure_label(kind),
                "kind": kind.value,
                "phase": phase.value,
                "message": message,
                "details": {"attempts": attempts},
            }
        ],
    }


def _cancelled_update(phase: Phase, session_id: uuid.UUID, *, attempts: int) -> dict[str, Any]:
    return _failure_update(
        phase, ErrorKind.cancelled, str(SessionCancelled(session_id)), attempts=attempts
    )


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return text if text else type(exc).__name__


# --- Module Notes -----------------------------------------------------------
# The runner commits before every collaborator call so that, on SQLite, no writer lock
# is held while a (possibly slow) external system is working.
