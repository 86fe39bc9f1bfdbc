from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.api.deps import db_session
from edge_orchestrator.auth.deps import require_roles
from edge_orchestrator.auth.models import Role
from edge_orchestrator.db.repositories.resources import ResourceRepo

router = APIRouter(dependencies=[Depends(require_roles(Role.internal_system))])

KIND = "secret"


class DistributeSecretsRequest(BaseModel):
    worker_name: str = Field(min_length=1)
    environment: str = "production"
    secret_names: list[str] = Field(min_length=1)
    database_id: str | None = None


class DistributeSecretsResponse(BaseModel):
    secret_refs: list[str]


class RevokeRequest(BaseModel):
    secret_refs: list[str]


@router.post("", response_model=DistributeSecretsResponse)
async def distribute_secrets(
    body: DistributeSecretsRequest,
    session: AsyncSession = Depends(db_session),
) -> DistributeSecretsResponse:
    """Binds each named secret to the worker. Values are generated here and never returned."""

    repo = ResourceRepo(session)
    refs: list[str] = []
    for secret_name in body.secret_names:
        name = f"{body.worker_name}/{secret_name}"
        res = await repo.find_live(kind=KIND, name=name)
        if res is None:
            res = await repo.create(
                kind=KIND,
                name=name,
                external_id=f"sec-{uuid.uuid4().hex[:12]}",
                attributes={"environment": body.environment, "database_id": body.database_id},
            )
        refs.append(res.external_id)
    await session.commit()
    return DistributeSecretsResponse(secret_refs=refs)


@router.post("/revoke")
async def revoke_secrets(
    body: RevokeRequest,
    session: AsyncSession = Depends(db_session),
) -> dict[str, int]:
    repo = ResourceRepo(session)
    revoked = 0
    for ref in body.secret_refs:
        if await repo.soft_delete(ref):
            revoked += 1
    await session.commit()
    # Already-revoked refs are not an error.
    return {"revoked": revoked}
