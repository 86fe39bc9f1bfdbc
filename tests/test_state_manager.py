from __future__ import annotations

import uuid

import pytest
from fakes import actions_of

from edge_orchestrator.db.models import SessionStatus, utcnow
from edge_orchestrator.db.session import session_scope
from edge_orchestrator.orchestrator.errors import ErrorKind, InvalidTransition, SessionNotFound
from edge_orchestrator.orchestrator.phases import Phase
from edge_orchestrator.services.state_manager import StateManager


async def _complete(states: StateManager, session_id, phase: Phase, output: dict | None = None) -> int:
    await states.transition(session_id, phase)
    return await states.complete_phase(
        session_id, phase, attempt=1, started_at=utcnow(), output=output or {"phase": phase.value}
    )


@pytest.mark.asyncio
async def test_transition_requires_previous_phase_success(session_factory, create_session) -> None:
    session_id = await create_session()

    async with session_scope(session_factory) as db:
        states = StateManager(db)

        with pytest.raises(InvalidTransition):
            await states.transition(session_id, Phase.identify)

        await _complete(states, session_id, Phase.assess)
        row = await states.transition(session_id, Phase.identify)
        assert row.status is SessionStatus.running
        assert row.current_phase == "identify"

        trail = actions_of(await states.audit_trail(session_id))
        assert trail == ["SESSION_CREATED", "PHASE_STARTED", "PHASE_COMPLETED", "PHASE_STARTED"]


@pytest.mark.asyncio
async def test_failed_phase_blocks_the_next_transition(session_factory, create_session) -> None:
    session_id = await create_session()

    async with session_scope(session_factory) as db:
        states = StateManager(db)
        await _complete(states, session_id, Phase.assess)
        await states.transition(session_id, Phase.identify)
        await states.record_failure(
            session_id,
            Phase.identify,
            attempt=1,
            started_at=utcnow(),
            kind=ErrorKind.internal,
            message="boom",
        )

        with pytest.raises(InvalidTransition):
            await states.transition(session_id, Phase.construct)
        # A succeeded phase cannot be entered again either.
        with pytest.raises(InvalidTransition):
            await states.transition(session_id, Phase.assess)

        assert await states.attempts_for(session_id, Phase.identify) == 1


@pytest.mark.asyncio
async def test_terminal_status_is_written_once(session_factory, create_session) -> None:
    session_id = await create_session()

    async with session_scope(session_factory) as db:
        states = StateManager(db)
        await states.finish(session_id, SessionStatus.failed)

        with pytest.raises(InvalidTransition):
            await states.finish(session_id, SessionStatus.completed)
        with pytest.raises(InvalidTransition):
            await states.transition(session_id, Phase.assess)
        with pytest.raises(InvalidTransition):
            await states.request_cancel(session_id, actor="alice")

        assert (await states.get(session_id)).status is SessionStatus.failed
        assert actions_of(await states.audit_trail(session_id)).count("SESSION_FAILED") == 1


@pytest.mark.asyncio
async def test_data_bridge_versions_outputs(session_factory, create_session) -> None:
    session_id = await create_session()

    async with session_scope(session_factory) as db:
        states = StateManager(db)
        bridge = states.bridge

        assert await bridge.get(session_id, "assess") is None
        assert await bridge.get_latest_completed_phase(session_id) is None

        assert await _complete(states, session_id, Phase.assess, {"n": 1}) == 1
        version = await bridge.put(session_id, "assess", {"n": 2})
        await db.commit()
        assert version == 2

        assert await bridge.get(session_id, "assess") == {"n": 2}
        assert await bridge.get(session_id, "assess", version=1) == {"n": 1}
        assert await bridge.get_latest_completed_phase(session_id) is Phase.assess
        assert await bridge.load_outputs(session_id) == {"assess": {"n": 2}}


@pytest.mark.asyncio
async def test_result_reflects_failures_and_compensation_errors(
    session_factory, create_session
) -> None:
    session_id = await create_session()

    async with session_scope(session_factory) as db:
        states = StateManager(db)
        await states.begin_rollback(
            session_id,
            phase="execute",
            error="ProvisioningFailed",
            kind="ConfigurationError",
            message="bad script",
            attempts=1,
        )
        await states.audit(
            session_id,
            "COMPENSATION_FAILED",
            {"sequence": 2, "kind": "revoke-secret", "message": "503"},
        )
        await states.finish(session_id, SessionStatus.rolled_back)

        result = await states.result_for(session_id)

    assert result.status == "ROLLED_BACK"
    assert result.worker_url is None
    assert [(e.error, e.kind) for e in result.errors] == [
        ("ProvisioningFailed", "ConfigurationError"),
        ("CompensationError", "revoke-secret"),
    ]
    assert result.manual_cleanup_required is True


@pytest.mark.asyncio
async def test_unknown_session_raises(session_factory) -> None:
    async with session_scope(session_factory) as db:
        with pytest.raises(SessionNotFound):
            await StateManager(db).get(uuid.uuid4())
