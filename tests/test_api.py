"""
tests.test_api

API-level tests: the app boots, serves probes, and runs a deployment end-to-end against
the in-process dummy provisioning systems.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio

from edge_orchestrator.api.app import create_app
from edge_orchestrator.settings import get_settings


@pytest_asyncio.fixture
async def client(tmp_path, monkeypatch) -> AsyncIterator[httpx.AsyncClient]:
    monkeypatch.setenv("EDGE_ENV", "test")
    monkeypatch.setenv("EDGE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("EDGE_HEALTH_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("EDGE_RETRY_BASE_DELAY_SECONDS", "0")
    get_settings.cache_clear()
    app = create_app(settings=get_settings())

    # httpx ASGITransport does not run lifespan events; enter the app's lifespan directly.
    try:
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
                yield c
    finally:
        get_settings.cache_clear()


async def _token(client: httpx.AsyncClient, *roles: str) -> dict[str, str]:
    r = await client.post("/v1/dev/token", json={"subject": "alice", "roles": list(roles)})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.mark.asyncio
async def test_health_endpoints(client: httpx.AsyncClient) -> None:
    r = await client.get("/healthz")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"

    r = await client.get("/readyz")
    assert r.status_code == 200
    assert r.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_deploy_runs_against_dummy_systems(client: httpx.AsyncClient) -> None:
    headers = await _token(client, "deployer", "auditor")

    r = await client.post(
        "/v1/deployments",
        json={"domains": [{"domain": "example.com", "customer": "acme"}], "concurrency": 2},
        headers=headers,
    )
    assert r.status_code == 200
    [result] = r.json()["results"]
    assert result["status"] == "COMPLETED"
    assert result["errors"] == []
    assert result["worker_url"].startswith("http://edge-internal/internal/v1/workers/wrk-")
    session_id = result["session_id"]

    r = await client.get(f"/v1/sessions/{session_id}", headers=headers)
    assert r.status_code == 200
    snapshot = r.json()
    assert snapshot["session"]["status"] == "COMPLETED"
    assert len(snapshot["rollback_actions"]) == 3
    assert snapshot["outputs"]["construct"]["payload"]["endpoint"].startswith("d1://db-")

    r = await client.get(f"/v1/sessions/{session_id}/audit", headers=headers)
    assert r.status_code == 200
    actions = [e["action"] for e in r.json()]
    assert actions[0] == "SESSION_CREATED"
    assert actions[-1] == "SESSION_COMPLETED"
    assert [e["sequence"] for e in r.json()] == sorted(e["sequence"] for e in r.json())

    r = await client.post(f"/v1/sessions/{session_id}/cancel", headers=headers)
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_dry_run_via_api_uses_camel_case_flag(client: httpx.AsyncClient) -> None:
    headers = await _token(client, "deployer")

    r = await client.post(
        "/v1/deployments",
        json={"domains": [{"domain": "example.com"}], "dryRun": True},
        headers=headers,
    )
    assert r.status_code == 200
    [result] = r.json()["results"]
    assert result["dry_run"] is True
    assert result["worker_url"] == "https://data-service.example.com"


@pytest.mark.asyncio
async def test_roles_are_enforced(client: httpx.AsyncClient) -> None:
    r = await client.post("/v1/deployments", json={"domains": [{"domain": "example.com"}]})
    assert r.status_code == 401

    auditor = await _token(client, "auditor")
    r = await client.post(
        "/v1/deployments", json={"domains": [{"domain": "example.com"}]}, headers=auditor
    )
    assert r.status_code == 403

    deployer = await _token(client, "deployer")
    r = await client.get(f"/v1/sessions/{uuid.uuid4()}/audit", headers=deployer)
    assert r.status_code == 403

    # Provisioning endpoints are for the orchestrator's own identity only.
    r = await client.post(
        "/internal/v1/databases",
        json={"database_name": "x-db", "domain": "example.com"},
        headers=deployer,
    )
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_unknown_and_duplicate_requests(client: httpx.AsyncClient) -> None:
    headers = await _token(client, "deployer", "auditor")

    r = await client.post(f"/v1/sessions/{uuid.uuid4()}/resume", headers=headers)
    assert r.status_code == 404

    r = await client.get(f"/v1/sessions/{uuid.uuid4()}", headers=headers)
    assert r.status_code == 404

    r = await client.post(
        "/v1/deployments",
        json={"domains": [{"domain": "example.com"}, {"domain": "example.com"}]},
        headers=headers,
    )
    assert r.status_code == 422

    r = await client.get("/v1/sessions/awaiting-recovery", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"session_ids": []}
