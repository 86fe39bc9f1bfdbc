"""
edge_orchestrator.db.init_db

DB initialization helpers (dev/test convenience).

Responsibilities:
- Create tables for local development and tests.
- Keep production migration workflow separate (Alembic).
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine

from edge_orchestrator.db import models  # noqa: F401  # registers tables on Base.metadata
from edge_orchestrator.db.base import Base


async def init_db(engine: AsyncEngine) -> None:
    """
    Dev/test bootstrap: create tables if they don't exist.
    Production relies on Alembic migrations (`alembic upgrade head`).
    """

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# --- Module Notes -----------------------------------------------------------
# Called from the API startup hook when env is dev/test, and from test fixtures.
