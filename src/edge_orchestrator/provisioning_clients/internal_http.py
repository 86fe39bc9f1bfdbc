"""
edge_orchestrator.provisioning_clients.internal_http

HTTP clients for the provisioning collaborators.

Responsibilities:
- Attach short-lived JWT credentials (role=internal_system).
- Call provisioning endpoints under `/internal/v1/{databases,secrets,workers}`.
- Translate HTTP/transport failures into transient vs configuration errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import httpx

from edge_orchestrator.auth.jwt import JwtConfig, bearer_headers
from edge_orchestrator.orchestrator.errors import ConfigurationError, TransientProvisioningError
from edge_orchestrator.provisioning_clients.base import Collaborators
from edge_orchestrator.settings import Settings

_TRANSIENT_STATUS = frozenset({408, 425, 429})


@dataclass(frozen=True, slots=True)
class ProvisioningApiAuth:
    # Identity used for tool calls; subject is an internal service identity.
    subject: str = "edge-orchestrator"
    roles: tuple[str, ...] = ("internal_system",)


class _ProvisioningApiClient:
    """
    Shared plumbing: auth headers, error translation. Subclasses name the resource path
    and the shape of apply/compensate payloads.
    """

    name = "provisioning"
    resource = ""

    def __init__(
        self,
        *,
        settings: Settings,
        http: httpx.AsyncClient,
        auth: ProvisioningApiAuth | None = None,
    ) -> None:
        self._settings = settings
        self._http = http
        self._auth = auth or ProvisioningApiAuth()

    def _authz(self) -> dict[str, str]:
        return bearer_headers(
            cfg=JwtConfig.from_settings(self._settings),
            subject=self._auth.subject,
            roles=list(self._auth.roles),
            ttl=timedelta(minutes=5),
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            r = await self._http.request(
                method, f"/internal/v1/{self.resource}{path}", headers=self._authz(), **kwargs
            )
        except httpx.TransportError as e:
            raise TransientProvisioningError(f"{self.name}: {e!r}", collaborator=self.name) from e

        if r.status_code in _TRANSIENT_STATUS or r.status_code >= 500:
            raise TransientProvisioningError(
                f"{self.name}: HTTP {r.status_code} {r.text[:200]}", collaborator=self.name
            )
        if r.status_code == 404 and method == "DELETE":
            # Delete-if-exists: already gone is success.
            return {}
        if r.status_code >= 400:
            raise ConfigurationError(
                f"{self.name}: HTTP {r.status_code} {r.text[:200]}", collaborator=self.name
            )
        return r.json() if r.content else {}


class HttpDatabaseProvisioner(_ProvisioningApiClient):
    name = "database"
    resource = "databases"

    async def apply(self, config: dict[str, Any]) -> dict[str, Any]:
        # -> {"database_id", "endpoint", "created"}
        return await self._request("POST", "", json=config)

    async def compensate(self, action: dict[str, Any]) -> None:
        await self._request("DELETE", f"/{action['database_id']}")


class HttpSecretDistributor(_ProvisioningApiClient):
    name = "secrets"
    resource = "secrets"

    async def apply(self, config: dict[str, Any]) -> dict[str, Any]:
        # -> {"secret_refs": [...]}
        return await self._request("POST", "", json=config)

    async def compensate(self, action: dict[str, Any]) -> None:
        await self._request("POST", "/revoke", json={"secret_refs": list(action["secret_refs"])})


class HttpWorkerDeployer(_ProvisioningApiClient):
    name = "deployer"
    resource = "workers"

    async def apply(self, config: dict[str, Any]) -> dict[str, Any]:
        # -> {"worker_url", "deployment_id"}
        return await self._request("POST", "", json=config)

    async def compensate(self, action: dict[str, Any]) -> None:
        await self._request("DELETE", f"/{action['deployment_id']}")


def build_http_collaborators(*, settings: Settings, http: httpx.AsyncClient) -> Collaborators:
    return Collaborators(
        database=HttpDatabaseProvisioner(settings=settings, http=http),
        secrets=HttpSecretDistributor(settings=settings, http=http),
        deployer=HttpWorkerDeployer(settings=settings, http=http),
    )


# --- Module Notes -----------------------------------------------------------
# base_url decides where calls land: an external provisioning API when
# EDGE_PROVISIONING_API_BASE_URL is set, else the in-process dummy systems via ASGITransport.
