from __future__ import annotations

import re
import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.status import HTTP_404_NOT_FOUND, HTTP_422_UNPROCESSABLE_ENTITY

from edge_orchestrator.api.deps import db_session
from edge_orchestrator.auth.deps import require_roles
from edge_orchestrator.auth.models import Role
from edge_orchestrator.db.repositories.resources import ResourceRepo

router = APIRouter(dependencies=[Depends(require_roles(Role.internal_system))])

KIND = "database"
_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,62}$")


class CreateDatabaseRequest(BaseModel):
    database_name: str
    domain: str
    customer: str = "default"
    environment: str = "production"
    migrations: list[str] = Field(default_factory=list)


class DatabaseResponse(BaseModel):
    database_id: str
    database_name: str
    endpoint: str
    created: bool
    migrations_applied: int


@router.post("", response_model=DatabaseResponse)
async def create_database(
    body: CreateDatabaseRequest,
    session: AsyncSession = Depends(db_session),
) -> DatabaseResponse:
    if not _NAME_RE.match(body.database_name):
        raise HTTPException(
            status_code=HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"invalid database name {body.database_name!r}",
        )

    repo = ResourceRepo(session)
    # Idempotent: the same name returns the existing live database.
    existing = await repo.find_live(kind=KIND, name=body.database_name)
    if existing is not None:
        await session.commit()
        return DatabaseResponse(
            database_id=existing.external_id,
            database_name=existing.name,
            endpoint=existing.attributes.get("endpoint", _endpoint(existing.external_id)),
            created=False,
            migrations_applied=len(existing.attributes.get("migrations", [])),
        )

    database_id = f"db-{uuid.uuid4().hex[:12]}"
    res = await repo.create(
        kind=KIND,
        name=body.database_name,
        external_id=database_id,
        attributes={
            "endpoint": _endpoint(database_id),
            "domain": body.domain,
            "customer": body.customer,
            "environment": body.environment,
            "migrations": body.migrations,
        },
    )
    await session.commit()
    return DatabaseResponse(
        database_id=res.external_id,
        database_name=res.name,
        endpoint=res.attributes["endpoint"],
        created=True,
        migrations_applied=len(body.migrations),
    )


def _endpoint(database_id: str) -> str:
    return f"d1://{database_id}"


@router.delete("/{database_id}")
async def delete_database(
    database_id: str,
    session: AsyncSession = Depends(db_session),
) -> dict[str, str]:
    deleted = await ResourceRepo(session).soft_delete(database_id)
    await session.commit()
    if not deleted:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Database not found")
    return {"status": "deleted", "database_id": database_id}
