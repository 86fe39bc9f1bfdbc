"""
tests.test_recovery

Resume after a crash, concurrent-resume conflicts and lock takeover.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from fakes import FakeSystems, actions_of

from edge_orchestrator.db.models import SessionLock, SessionStatus, utcnow
from edge_orchestrator.db.session import session_scope
from edge_orchestrator.orchestrator.errors import RecoveryConflict
from edge_orchestrator.orchestrator.phases import Phase
from edge_orchestrator.orchestrator.state import DomainConfig
from edge_orchestrator.services.orchestration_service import OrchestrationService
from edge_orchestrator.services.rollback_ledger import RollbackLedger
from edge_orchestrator.services.state_manager import StateManager


async def _interrupt_during_execute(make_service) -> OrchestrationService:
    """Run a deploy until the deployer is mid-call, then kill the task like a crashed process."""

    crashed = FakeSystems()
    crashed.deployer.release = asyncio.Event()
    svc = make_service(crashed)

    task = asyncio.create_task(svc.deploy([DomainConfig(domain="example.com")]))
    await asyncio.wait_for(crashed.deployer.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    return svc


@pytest.mark.asyncio
async def test_resume_continues_after_last_completed_phase(make_service) -> None:
    first = await _interrupt_during_execute(make_service)

    [session_id] = await first.recover_interrupted()
    snapshot = await first.get_session_snapshot(session_id)
    assert snapshot["session"]["status"] == "AWAITING_RECOVERY"
    assert snapshot["session"]["current_phase"] == "execute"
    assert await first.list_sessions_awaiting_recovery() == [session_id]

    # A fresh service stands in for the restarted process.
    restarted = FakeSystems()
    result = await make_service(restarted).resume(session_id, actor="operator")

    assert result.status == "COMPLETED"
    assert result.worker_url == "https://data-service-example-com.workers.test"
    assert restarted.database.apply_calls == []
    assert restarted.secrets.apply_calls == []
    assert len(restarted.deployer.apply_calls) == 1
    # The resumed deploy reuses the identifiers checkpointed before the crash.
    assert restarted.deployer.apply_calls[0]["database_id"] == "db-example-com-production-db"

    snapshot = await first.get_session_snapshot(session_id)
    phases = [r["phase"] for r in snapshot["phase_records"] if r["outcome"] == "SUCCESS"]
    assert phases == ["assess", "identify", "construct", "orchestrate", "execute", "verify", "validate"]

    trail = actions_of(await first.get_audit_trail(session_id))
    assert "SESSION_AWAITING_RECOVERY" in trail
    assert "SESSION_RESUMED" in trail
    assert await first.list_sessions_awaiting_recovery() == []


@pytest.mark.asyncio
async def test_startup_recovery_resumes_orphaned_sessions(make_service) -> None:
    first = await _interrupt_during_execute(make_service)
    [orphan] = await first.list_sessions_awaiting_recovery()

    restarted = FakeSystems()
    [result] = await make_service(restarted).resume_interrupted()

    assert result.session_id == orphan
    assert result.status == "COMPLETED"
    assert len(restarted.deployer.apply_calls) == 1
    assert restarted.database.apply_calls == []
    trail = actions_of(await first.get_audit_trail(orphan))
    assert "SESSION_AWAITING_RECOVERY" in trail
    assert await first.list_sessions_awaiting_recovery() == []


@pytest.mark.asyncio
async def test_concurrent_resume_fails_fast(make_service, create_session) -> None:
    session_id = await create_session()
    slow = FakeSystems()
    slow.deployer.release = asyncio.Event()
    owner = make_service(slow)

    running = asyncio.create_task(owner.resume(session_id))
    await asyncio.wait_for(slow.deployer.started.wait(), timeout=5)

    other = FakeSystems()
    with pytest.raises(RecoveryConflict):
        await make_service(other).resume(session_id)
    assert other.apply_count == 0

    slow.deployer.release.set()
    result = await running
    assert result.status == "COMPLETED"
    assert "RESUME_CONFLICT" in actions_of(await owner.get_audit_trail(session_id))


@pytest.mark.asyncio
async def test_live_owner_keeps_its_lease_through_a_long_call(
    make_service, create_session, settings
) -> None:
    session_id = await create_session()
    short = settings.model_copy(update={"session_lock_ttl_seconds": 0.3})
    slow = FakeSystems()
    slow.deployer.release = asyncio.Event()
    owner = make_service(slow, settings_override=short)

    running = asyncio.create_task(owner.resume(session_id))
    await asyncio.wait_for(slow.deployer.started.wait(), timeout=5)
    # Several lease lengths pass inside one collaborator call.
    await asyncio.sleep(1.0)

    other_systems = FakeSystems()
    other = make_service(other_systems, settings_override=short)
    assert await other.list_sessions_awaiting_recovery() == []
    with pytest.raises(RecoveryConflict):
        await other.resume(session_id)
    assert other_systems.apply_count == 0

    slow.deployer.release.set()
    result = await running
    assert result.status == "COMPLETED"
    assert len(slow.deployer.apply_calls) == 1


@pytest.mark.asyncio
async def test_live_foreign_lock_blocks_resume(make_service, create_session, session_factory) -> None:
    session_id = await create_session()
    async with session_scope(session_factory) as db:
        db.add(
            SessionLock(
                session_id=session_id,
                owner="other-host:1",
                acquired_at=utcnow(),
                expires_at=utcnow() + timedelta(minutes=5),
            )
        )
        await db.commit()

    systems = FakeSystems()
    with pytest.raises(RecoveryConflict) as excinfo:
        await make_service(systems).resume(session_id)
    assert excinfo.value.owner == "other-host:1"
    assert systems.apply_count == 0


@pytest.mark.asyncio
async def test_expired_lock_is_taken_over(make_service, create_session, session_factory) -> None:
    session_id = await create_session()
    async with session_scope(session_factory) as db:
        db.add(
            SessionLock(
                session_id=session_id,
                owner="dead-host:1",
                acquired_at=utcnow() - timedelta(hours=1),
                expires_at=utcnow() - timedelta(minutes=1),
            )
        )
        await db.commit()

    result = await make_service(FakeSystems()).resume(session_id)
    assert result.status == "COMPLETED"

    async with session_scope(session_factory) as db:
        assert await db.get(SessionLock, session_id) is None


@pytest.mark.asyncio
async def test_resume_of_finished_session_is_a_no_op(make_service) -> None:
    systems = FakeSystems()
    svc = make_service(systems)
    [done] = await svc.deploy([DomainConfig(domain="example.com")])
    calls = systems.apply_count

    again = await svc.resume(done.session_id)

    assert again.status == done.status == "COMPLETED"
    assert systems.apply_count == calls


@pytest.mark.asyncio
async def test_interrupted_rollback_resumes_the_drain(
    make_service, create_session, session_factory
) -> None:
    session_id = await create_session()
    systems = FakeSystems()

    # State left behind by a process that died after recording the failure.
    async with session_scope(session_factory) as db:
        ledger = RollbackLedger(db)
        await ledger.push(
            session_id,
            kind="delete-database",
            payload={"database_id": "db-1", "database_name": "example-com-production-db"},
            compensator=systems.database,
        )
        await ledger.push(
            session_id,
            kind="revoke-secret",
            payload={"secret_refs": ["ref-1"]},
            compensator=systems.secrets,
        )
        await StateManager(db).begin_rollback(
            session_id,
            phase="execute",
            error="ProvisioningFailed",
            kind="TransientProvisioningError",
            message="retry budget exhausted",
            attempts=3,
        )

    result = await make_service(systems).resume(session_id)

    assert result.status == "ROLLED_BACK"
    assert systems.compensation_order == ["secrets", "database"]
    assert systems.apply_count == 0
    [error] = result.errors
    assert error.kind == "TransientProvisioningError"


@pytest.mark.asyncio
async def test_recovery_scan_ignores_sessions_with_a_live_owner(
    make_service, create_session, session_factory
) -> None:
    session_id = await create_session()
    async with session_scope(session_factory) as db:
        states = StateManager(db)
        await states.transition(session_id, Phase.assess)
        db.add(
            SessionLock(
                session_id=session_id,
                owner="busy-host:1",
                acquired_at=utcnow(),
                expires_at=utcnow() + timedelta(minutes=5),
            )
        )
        await db.commit()

    svc = make_service(FakeSystems())
    assert await svc.recover_interrupted() == []

    async with session_scope(session_factory) as db:
        assert (await StateManager(db).get(session_id)).status is SessionStatus.running
