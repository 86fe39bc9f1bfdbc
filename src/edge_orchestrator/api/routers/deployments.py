from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from starlette.status import HTTP_422_UNPROCESSABLE_ENTITY

from edge_orchestrator.api.deps import orchestrator_dep
from edge_orchestrator.auth.deps import require_roles
from edge_orchestrator.auth.models import Principal, Role
from edge_orchestrator.orchestrator.errors import ValidationFailed
from edge_orchestrator.orchestrator.state import DeployOptions, DomainConfig, SessionResult
from edge_orchestrator.services.orchestration_service import OrchestrationService

router = APIRouter(prefix="/v1/deployments", tags=["deployments"])


class DeployRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    domains: list[DomainConfig] = Field(min_length=1, max_length=500)
    concurrency: int | None = Field(default=None, ge=1)
    dry_run: bool = Field(default=False, alias="dryRun")


class DeployResponse(BaseModel):
    results: list[SessionResult]


@router.post("", response_model=DeployResponse)
async def deploy(
    body: DeployRequest,
    principal: Principal = Depends(require_roles(Role.deployer)),
    svc: OrchestrationService = Depends(orchestrator_dep),
) -> DeployResponse:
    """Runs the whole portfolio before responding; one result per domain, input order."""

    try:
        results = await svc.deploy(
            body.domains,
            DeployOptions(concurrency=body.concurrency, dry_run=body.dry_run),
            actor=principal.subject,
        )
    except ValidationFailed as e:
        raise HTTPException(status_code=HTTP_422_UNPROCESSABLE_ENTITY, detail=e.issues) from e
    return DeployResponse(results=results)
