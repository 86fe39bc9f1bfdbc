from __future__ import annotations

import asyncio
import uuid

import pytest
from fakes import FakeSystems

from edge_orchestrator.orchestrator.errors import InvalidTransition, SessionNotFound
from edge_orchestrator.orchestrator.state import DomainConfig


@pytest.mark.asyncio
async def test_cancel_before_start_fails_without_side_effects(make_service, create_session) -> None:
    session_id = await create_session()
    systems = FakeSystems()
    svc = make_service(systems)

    await svc.cancel(session_id, actor="alice")
    result = await svc.resume(session_id)

    assert result.status == "FAILED"
    assert systems.apply_count == 0
    [error] = result.errors
    assert error.error == "SessionCancelled"
    assert error.phase == "assess"

    snapshot = await svc.get_session_snapshot(result.session_id)
    assert [(r["phase"], r["outcome"]) for r in snapshot["phase_records"]] == [("assess", "SKIPPED")]


@pytest.mark.asyncio
async def test_cancel_mid_run_stops_at_next_phase_and_rolls_back(
    make_service, create_session
) -> None:
    session_id = await create_session()
    systems = FakeSystems()
    systems.deployer.release = asyncio.Event()
    svc = make_service(systems)

    running = asyncio.create_task(svc.resume(session_id))
    await asyncio.wait_for(systems.deployer.started.wait(), timeout=5)

    await svc.cancel(session_id, actor="alice")
    # The in-flight deploy is not interrupted.
    systems.deployer.release.set()
    result = await running

    assert result.status == "ROLLED_BACK"
    assert systems.compensation_order == ["deployer", "secrets", "database"]
    [error] = result.errors
    assert error.error == "SessionCancelled"
    assert error.phase == "verify"

    snapshot = await svc.get_session_snapshot(session_id)
    outcomes = {(r["phase"], r["outcome"]) for r in snapshot["phase_records"]}
    assert ("execute", "SUCCESS") in outcomes
    assert ("verify", "SKIPPED") in outcomes
    assert snapshot["session"]["cancel_requested"] is True


@pytest.mark.asyncio
async def test_cancel_of_finished_session_is_rejected(make_service) -> None:
    svc = make_service(FakeSystems())
    [done] = await svc.deploy([DomainConfig(domain="example.com")])

    with pytest.raises(InvalidTransition):
        await svc.cancel(done.session_id)


@pytest.mark.asyncio
async def test_cancel_of_unknown_session_raises(make_service) -> None:
    with pytest.raises(SessionNotFound):
        await make_service(FakeSystems()).cancel(uuid.uuid4())


@pytest.mark.asyncio
async def test_cancel_during_last_phase_rolls_back_after_it_finishes(
    make_service, create_session, verifier, monkeypatch
) -> None:
    session_id = await create_session()
    systems = FakeSystems()
    svc = make_service(systems)

    entered = asyncio.Event()
    release = asyncio.Event()
    check_compliance = verifier.check_compliance

    async def gated_compliance(**kwargs):
        entered.set()
        await release.wait()
        return await check_compliance(**kwargs)

    monkeypatch.setattr(verifier, "check_compliance", gated_compliance)

    running = asyncio.create_task(svc.resume(session_id))
    await asyncio.wait_for(entered.wait(), timeout=5)
    await svc.cancel(session_id, actor="alice")
    release.set()
    result = await running

    assert result.status == "ROLLED_BACK"
    assert systems.compensation_order == ["deployer", "secrets", "database"]
    [error] = result.errors
    assert error.error == "SessionCancelled"
    assert error.phase == "validate"

    snapshot = await svc.get_session_snapshot(session_id)
    assert ("validate", "SUCCESS") in {(r["phase"], r["outcome"]) for r in snapshot["phase_records"]}
    trail = [e["action"] for e in snapshot["audit"]]
    assert "SESSION_COMPLETED" not in trail
    assert trail[-1] == "SESSION_ROLLED_BACK"
