"""
tests.test_verification

Health polling, compliance checks and how verification problems affect a session.
"""

from __future__ import annotations

import httpx
import pytest
from fakes import FakeSystems, actions_of

from edge_orchestrator.orchestrator.state import DomainConfig, Requirements
from edge_orchestrator.orchestrator.verification import VerificationEngine


def _sequenced(responses: list[tuple[int, dict]]) -> httpx.MockTransport:
    # The last response repeats once the others are used up.
    queue = list(responses)

    def handler(_request: httpx.Request) -> httpx.Response:
        status, kwargs = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status, **kwargs)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_poll_requires_consecutive_healthy_probes() -> None:
    transport = _sequenced(
        [
            (200, {"json": {"status": "ok"}}),
            (503, {}),
            (200, {"json": {"status": "healthy"}}),
            (200, {"text": "OK"}),
        ]
    )
    async with httpx.AsyncClient(transport=transport) as http:
        engine = VerificationEngine(http=http, poll_interval=0, poll_timeout=5)
        report = await engine.poll_health("https://w.test/health", required_checks=2)

    assert report.healthy is True
    assert report.consecutive_healthy == 2
    assert [p.healthy for p in report.probes] == [True, False, True, True]


@pytest.mark.asyncio
async def test_poll_reports_unhealthy_after_timeout() -> None:
    transport = _sequenced([(200, {"json": {"status": "degraded"}})])
    async with httpx.AsyncClient(transport=transport) as http:
        engine = VerificationEngine(http=http, poll_interval=0.01, poll_timeout=0.03)
        report = await engine.poll_health("https://w.test/health", required_checks=1)

    assert report.healthy is False
    assert report.timed_out is True
    assert report.probes[0].message == "reported degraded"


@pytest.mark.asyncio
async def test_compliance_flags_slow_responses_and_missing_endpoints() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404 if request.url.path == "/api/items" else 200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
        engine = VerificationEngine(http=http)
        report = await engine.check_compliance(
            base_url="https://w.test/",
            requirements=Requirements(
                min_health_checks=1,
                max_response_time_ms=100,
                required_endpoints=["/api/items", "/api/status"],
            ),
            health={"consecutive_healthy": 1, "max_latency_ms": 250.0},
        )

    assert report.compliant is False
    assert report.endpoint_results == {"/api/items": 404, "/api/status": 200}
    assert len(report.violations) == 2


@pytest.mark.asyncio
async def test_unhealthy_worker_completes_with_warnings(make_service, worker) -> None:
    worker.health_status = 503
    systems = FakeSystems()
    svc = make_service(systems)

    [result] = await svc.deploy([DomainConfig(domain="example.com")])

    assert result.status == "COMPLETED_WITH_WARNINGS"
    assert result.errors == []
    assert result.worker_url is not None
    assert {w.phase for w in result.warnings} == {"verify", "validate"}
    assert systems.journal == []

    trail = actions_of(await svc.get_audit_trail(result.session_id))
    assert trail.count("VERIFICATION_WARNING") == 2
    assert trail[-1] == "SESSION_COMPLETED_WITH_WARNINGS"


@pytest.mark.asyncio
async def test_missing_required_endpoint_is_a_warning(make_service, worker) -> None:
    worker.missing_paths = {"/api/items"}
    svc = make_service(FakeSystems())

    [result] = await svc.deploy(
        [
            DomainConfig(
                domain="example.com",
                requirements=Requirements(required_endpoints=["/api/items"]),
            )
        ]
    )

    assert result.status == "COMPLETED_WITH_WARNINGS"
    [warning] = result.warnings
    assert warning.phase == "validate"
    assert "/api/items" in warning.message


@pytest.mark.asyncio
async def test_rollback_policy_turns_verification_failure_into_rollback(
    make_service, worker, settings
) -> None:
    worker.health_status = 503
    systems = FakeSystems()
    strict = settings.model_copy(update={"verification_failure_policy": "rollback"})
    svc = make_service(systems, settings_override=strict)

    [result] = await svc.deploy([DomainConfig(domain="example.com")])

    assert result.status == "ROLLED_BACK"
    assert systems.compensation_order == ["deployer", "secrets", "database"]
    [error] = result.errors
    assert error.error == "VerificationFailed"
    assert error.phase == "verify"
