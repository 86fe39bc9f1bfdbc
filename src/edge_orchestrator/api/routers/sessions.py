from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from starlette.status import HTTP_404_NOT_FOUND, HTTP_409_CONFLICT

from edge_orchestrator.api.deps import orchestrator_dep
from edge_orchestrator.auth.deps import require_any_role, require_roles
from edge_orchestrator.auth.models import Principal, Role
from edge_orchestrator.orchestrator.errors import (
    InvalidTransition,
    RecoveryConflict,
    SessionNotFound,
)
from edge_orchestrator.orchestrator.state import SessionResult
from edge_orchestrator.services.orchestration_service import OrchestrationService

router = APIRouter(prefix="/v1/sessions", tags=["sessions"])


class AuditEntryOut(BaseModel):
    sequence: int
    timestamp: datetime
    actor: str
    action: str
    detail: dict[str, Any]


class AwaitingRecoveryResponse(BaseModel):
    session_ids: list[uuid.UUID]


@router.get(
    "/awaiting-recovery",
    response_model=AwaitingRecoveryResponse,
    dependencies=[Depends(require_any_role(Role.deployer, Role.auditor))],
)
async def awaiting_recovery(
    svc: OrchestrationService = Depends(orchestrator_dep),
) -> AwaitingRecoveryResponse:
    return AwaitingRecoveryResponse(session_ids=await svc.list_sessions_awaiting_recovery())


@router.get(
    "/{session_id}",
    dependencies=[Depends(require_any_role(Role.deployer, Role.auditor))],
)
async def get_session(
    session_id: uuid.UUID,
    svc: OrchestrationService = Depends(orchestrator_dep),
) -> dict[str, Any]:
    try:
        return await svc.get_session_snapshot(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Session not found") from e


@router.get(
    "/{session_id}/audit",
    response_model=list[AuditEntryOut],
    dependencies=[Depends(require_roles(Role.auditor))],
)
async def get_audit_trail(
    session_id: uuid.UUID,
    svc: OrchestrationService = Depends(orchestrator_dep),
) -> list[AuditEntryOut]:
    try:
        entries = await svc.get_audit_trail(session_id)
    except SessionNotFound as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Session not found") from e
    return [
        AuditEntryOut(
            sequence=e.sequence,
            timestamp=e.timestamp,
            actor=e.actor,
            action=e.action,
            detail=e.detail,
        )
        for e in entries
    ]


@router.post("/{session_id}/resume", response_model=SessionResult)
async def resume_session(
    session_id: uuid.UUID,
    principal: Principal = Depends(require_roles(Role.deployer)),
    svc: OrchestrationService = Depends(orchestrator_dep),
) -> SessionResult:
    try:
        return await svc.resume(session_id, actor=principal.subject)
    except SessionNotFound as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Session not found") from e
    except RecoveryConflict as e:
        raise HTTPException(
            status_code=HTTP_409_CONFLICT, detail="Session is owned by another process"
        ) from e


@router.post("/{session_id}/cancel", status_code=202)
async def cancel_session(
    session_id: uuid.UUID,
    principal: Principal = Depends(require_roles(Role.deployer)),
    svc: OrchestrationService = Depends(orchestrator_dep),
) -> dict[str, str]:
    try:
        await svc.cancel(session_id, actor=principal.subject)
    except SessionNotFound as e:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Session not found") from e
    except InvalidTransition as e:
        raise HTTPException(status_code=HTTP_409_CONFLICT, detail=str(e)) from e
    return {"status": "cancel_requested"}
