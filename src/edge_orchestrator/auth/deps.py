"""
edge_orchestrator.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Convert a bearer token into a typed `Principal`.
- Enforce RBAC via reusable dependency factories.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from edge_orchestrator.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from edge_orchestrator.auth.models import Principal
from edge_orchestrator.settings import Settings, get_settings

_bearer = HTTPBearer(auto_error=False)


def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(get_settings),
) -> Principal:
    if creds is None or not creds.credentials:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    try:
        payload = decode_and_validate(cfg=JwtConfig.from_settings(settings), token=creds.credentials)
    except JwtValidationError as e:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e

    subject = str(payload.get("sub", ""))
    roles_raw = payload.get("roles", [])
    if not subject:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    if not isinstance(roles_raw, list):
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Invalid token roles")

    return Principal(subject=subject, roles=frozenset(str(r) for r in roles_raw))


def require_roles(*required: str):
    """All listed roles are required (admin bypasses)."""

    required_set = frozenset(required)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.is_admin:
            return principal
        if not required_set.issubset(principal.roles):
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return _dep


def require_any_role(*allowed: str):
    """At least one of the listed roles is required (admin bypasses)."""

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.has_any(*allowed):
            raise HTTPException(status_code=HTTP_403_FORBIDDEN, detail="Insufficient role")
        return principal

    return _dep


# --- Module Notes -----------------------------------------------------------
# These dependencies guard both the public deployment API (deployer/auditor)
# and the dummy provisioning endpoints (internal_system).
