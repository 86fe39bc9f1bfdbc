from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from edge_orchestrator.db.models import ProvisionedResource


class ResourceRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_live(self, *, kind: str, name: str) -> ProvisionedResource | None:
        stmt = select(ProvisionedResource).where(
            ProvisionedResource.kind == kind,
            ProvisionedResource.name == name,
            ProvisionedResource.deleted.is_(False),
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def get_by_external_id(self, external_id: str) -> ProvisionedResource | None:
        stmt = select(ProvisionedResource).where(ProvisionedResource.external_id == external_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def create(
        self, *, kind: str, name: str, external_id: str, attributes: dict[str, Any]
    ) -> ProvisionedResource:
        res = ProvisionedResource(
            kind=kind, name=name, external_id=external_id, attributes=attributes, deleted=False
        )
        self._session.add(res)
        await self._session.flush()
        return res

    async def soft_delete(self, external_id: str) -> bool:
        res = await self.get_by_external_id(external_id)
        if res is None or res.deleted:
            return False
        res.deleted = True
        await self._session.flush()
        return True
