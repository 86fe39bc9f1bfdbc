"""
tests.conftest

Shared fixtures: a file-backed SQLite database per test, fake collaborators, an
httpx MockTransport standing in for deployed workers, and a service factory.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fakes import FakeSystems
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from edge_orchestrator.db.init_db import init_db
from edge_orchestrator.db.session import create_engine, create_sessionmaker, session_scope
from edge_orchestrator.orchestrator.state import DomainConfig
from edge_orchestrator.orchestrator.verification import VerificationEngine
from edge_orchestrator.services.orchestration_service import OrchestrationService
from edge_orchestrator.services.state_manager import StateManager
from edge_orchestrator.settings import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'edge.db'}",
        health_poll_interval_seconds=0.01,
        health_poll_timeout_seconds=0.05,
        recover_on_startup=False,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    eng = create_engine(settings)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


class WorkerStub:
    """Answers for deployed workers: healthy by default; tests flip fields to degrade it."""

    def __init__(self) -> None:
        self.health_status = 200
        self.health_body: dict[str, Any] = {"status": "ok"}
        self.missing_paths: set[str] = set()
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        path = request.url.path
        if path.endswith("/health"):
            return httpx.Response(self.health_status, json=self.health_body)
        if path in self.missing_paths:
            return httpx.Response(404, json={"detail": "not found"})
        return httpx.Response(200, json={"path": path})


@pytest.fixture
def worker() -> WorkerStub:
    return WorkerStub()


@pytest_asyncio.fixture
async def verifier(settings: Settings, worker: WorkerStub) -> AsyncIterator[VerificationEngine]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(worker.handler)) as http:
        yield VerificationEngine(
            http=http,
            poll_interval=settings.health_poll_interval_seconds,
            poll_timeout=settings.health_poll_timeout_seconds,
            request_timeout=settings.health_request_timeout_seconds,
        )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    verifier: VerificationEngine,
    sleeps: list[float],
) -> Callable[..., OrchestrationService]:
    async def _record_sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(systems: FakeSystems, *, settings_override: Settings | None = None) -> OrchestrationService:
        return OrchestrationService(
            session_factory=session_factory,
            settings=settings_override or settings,
            collaborators=systems.collaborators,
            verifier=verifier,
            owner="test-host",
            sleep=_record_sleep,
        )

    return _make


@pytest.fixture
def create_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Create a Pending session directly, without running it."""

    async def _create(domain: str = "example.com", *, dry_run: bool = False, **kw: Any) -> uuid.UUID:
        async with session_scope(session_factory) as db:
            return await StateManager(db).create_session(
                orchestration_id="orch-test",
                config=DomainConfig(domain=domain, **kw),
                dry_run=dry_run,
            )

    return _create
