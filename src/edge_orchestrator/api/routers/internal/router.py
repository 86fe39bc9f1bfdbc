"""
edge_orchestrator.api.routers.internal.router

Internal provisioning router aggregator.

Responsibilities:
- Mount the dummy provisioning systems under `/internal/v1`.
- Present the same API surface an external provisioning service would.
"""

from __future__ import annotations

from fastapi import APIRouter

from edge_orchestrator.api.routers.internal.systems import databases, secrets, workers

router = APIRouter(prefix="/internal/v1", tags=["internal"])

# Mutating endpoints require role `internal_system`; worker probes are public.
router.include_router(databases.router, prefix="/databases")
router.include_router(secrets.router, prefix="/secrets")
router.include_router(workers.router, prefix="/workers")


# --- Module Notes -----------------------------------------------------------
# These endpoints simulate the provisioning systems while keeping the repo self-contained.
