from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND

from edge_orchestrator.api.deps import db_session
from edge_orchestrator.auth.deps import require_roles
from edge_orchestrator.auth.models import Role
from edge_orchestrator.db.repositories.resources import ResourceRepo

router = APIRouter()

KIND = "worker"

_internal_only = [Depends(require_roles(Role.internal_system))]


class DeployWorkerRequest(BaseModel):
    worker_name: str = Field(min_length=1, max_length=63)
    service_name: str = "data-service"
    domain: str
    environment: str = "production"
    custom_url: str | None = None
    database_id: str | None = None
    secret_refs: list[str] = Field(default_factory=list)


class DeployWorkerResponse(BaseModel):
    deployment_id: str
    worker_name: str
    worker_url: str
    custom_url: str | None = None


def _worker_url(request: Request, deployment_id: str) -> str:
    return f"{str(request.base_url).rstrip('/')}/internal/v1/workers/{deployment_id}"


@router.post("", response_model=DeployWorkerResponse, dependencies=_internal_only)
async def deploy_worker(
    request: Request,
    body: DeployWorkerRequest,
    session: AsyncSession = Depends(db_session),
) -> DeployWorkerResponse:
    repo = ResourceRepo(session)
    res = await repo.find_live(kind=KIND, name=body.worker_name)
    if res is None:
        res = await repo.create(
            kind=KIND,
            name=body.worker_name,
            external_id=f"wrk-{uuid.uuid4().hex[:12]}",
            attributes=body.model_dump(),
        )
    await session.commit()
    return DeployWorkerResponse(
        deployment_id=res.external_id,
        worker_name=res.name,
        worker_url=_worker_url(request, res.external_id),
        custom_url=body.custom_url,
    )


@router.delete("/{deployment_id}", dependencies=_internal_only)
async def remove_worker(
    deployment_id: str,
    session: AsyncSession = Depends(db_session),
) -> dict[str, str]:
    deleted = await ResourceRepo(session).soft_delete(deployment_id)
    await session.commit()
    if not deleted:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Worker not found")
    return {"status": "removed", "deployment_id": deployment_id}


@router.get("/{deployment_id}/health")
async def worker_health(
    deployment_id: str,
    session: AsyncSession = Depends(db_session),
) -> dict[str, str]:
    res = await ResourceRepo(session).get_by_external_id(deployment_id)
    if res is None or res.deleted:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Worker not found")
    return {"status": "ok", "worker": res.name}


@router.get("/{deployment_id}/{path:path}")
async def worker_endpoint(
    deployment_id: str,
    path: str,
    session: AsyncSession = Depends(db_session),
) -> dict[str, str]:
    # Any path on a live worker answers 200; used by required-endpoint checks.
    res = await ResourceRepo(session).get_by_external_id(deployment_id)
    if res is None or res.deleted:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Worker not found")
    return {"worker": res.name, "path": f"/{path}"}
