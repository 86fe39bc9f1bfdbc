"""
edge_orchestrator.api.app

FastAPI app factory for the edge deployment orchestrator.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Initialize and dispose shared infrastructure (DB engine, HTTP clients, orchestrator).
- Resume sessions orphaned by a previous process, in the background, at startup.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator

import httpx
from fastapi import FastAPI

from edge_orchestrator import __version__
from edge_orchestrator.api.routers.deployments import router as deployments_router
from edge_orchestrator.api.routers.dev_auth import router as dev_auth_router
from edge_orchestrator.api.routers.health import router as health_router
from edge_orchestrator.api.routers.internal.router import router as internal_router
from edge_orchestrator.api.routers.sessions import router as sessions_router
from edge_orchestrator.db.init_db import init_db
from edge_orchestrator.db.session import create_engine, create_sessionmaker
from edge_orchestrator.observability.logging import configure_logging, get_logger
from edge_orchestrator.observability.middleware import RequestContextMiddleware
from edge_orchestrator.orchestrator.verification import VerificationEngine
from edge_orchestrator.provisioning_clients.internal_http import build_http_collaborators
from edge_orchestrator.services.orchestration_service import OrchestrationService
from edge_orchestrator.settings import Settings

log = get_logger(__name__)

INTERNAL_BASE_URL = "http://edge-internal"


def create_app(*, settings: Settings) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await _startup(app, settings)
        try:
            yield
        finally:
            await _shutdown(app)

    app = FastAPI(
        title="Edge Deployment Orchestrator",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(internal_router)
    app.include_router(deployments_router)
    app.include_router(sessions_router)

    return app


async def _startup(app: FastAPI, settings: Settings) -> None:
    log.info("startup", env=settings.env)
    engine = create_engine(settings)
    app.state.engine = engine
    app.state.sessionmaker = create_sessionmaker(engine)
    if settings.env in ("dev", "test"):
        # Prod uses Alembic migrations.
        await init_db(engine)

    if settings.provisioning_api_base_url:
        provisioning_http = httpx.AsyncClient(
            base_url=settings.provisioning_api_base_url,
            timeout=settings.phase_timeout_seconds,
        )
        verify_http = httpx.AsyncClient(follow_redirects=True)
    else:
        # Self-contained mode: collaborators are the dummy systems mounted on this app,
        # and deployed worker URLs point back into it.
        provisioning_http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url=INTERNAL_BASE_URL
        )
        verify_http = provisioning_http
    app.state.http_clients = {provisioning_http, verify_http}

    app.state.orchestrator = OrchestrationService(
        session_factory=app.state.sessionmaker,
        settings=settings,
        collaborators=build_http_collaborators(settings=settings, http=provisioning_http),
        verifier=VerificationEngine(
            http=verify_http,
            poll_interval=settings.health_poll_interval_seconds,
            poll_timeout=settings.health_poll_timeout_seconds,
            request_timeout=settings.health_request_timeout_seconds,
        ),
    )

    if settings.recover_on_startup:
        # Runs in the background so the API starts serving before long resumes finish.
        app.state.recovery_task = asyncio.create_task(app.state.orchestrator.resume_interrupted())


async def _shutdown(app: FastAPI) -> None:
    recovery = getattr(app.state, "recovery_task", None)
    if recovery is not None and not recovery.done():
        recovery.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await recovery
    for client in getattr(app.state, "http_clients", set()):
        await client.aclose()
    engine = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.dispose()
    log.info("shutdown")


# --- Module Notes -----------------------------------------------------------
# Composition root only; business logic stays in routers/services/orchestrator layers.
