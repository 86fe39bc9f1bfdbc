"""
edge_orchestrator.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings, DB sessions and the orchestration service.
- Encapsulate app.state access patterns (engine/sessionmaker/orchestrator).
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from edge_orchestrator.services.orchestration_service import OrchestrationService
from edge_orchestrator.settings import Settings, get_settings


def settings_dep() -> Settings:
    return get_settings()


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    # Created on app startup in `edge_orchestrator.api.app.create_app`.
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> AsyncIterator[AsyncSession]:
    # Request-scoped DB session; handlers commit explicitly.
    async with session_factory() as session:
        yield session


def orchestrator_dep(request: Request) -> OrchestrationService:
    return request.app.state.orchestrator  # type: ignore[attr-defined]
