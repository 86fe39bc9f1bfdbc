"""
edge_orchestrator.auth.jwt

Bearer tokens for deployers, auditors and the orchestrator's own provisioning identity.

Responsibilities:
- Mint tokens for dev callers and for calls to the provisioning API.
- Validate incoming tokens; iss, aud, exp, iat and sub are all mandatory.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt
from jwt import InvalidTokenError

if TYPE_CHECKING:
    from edge_orchestrator.settings import Settings


@dataclass(frozen=True, slots=True)
class JwtConfig:
    # Algorithm/issuer/audience are enforced during decoding.
    alg: str
    issuer: str
    audience: str
    secret: str

    @classmethod
    def from_settings(cls, settings: Settings) -> JwtConfig:
        return cls(
            alg=settings.jwt_alg,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            secret=settings.jwt_secret,
        )


class JwtValidationError(Exception):
    pass


def issue_token(
    *,
    cfg: JwtConfig,
    subject: str,
    roles: list[str],
    ttl: timedelta = timedelta(hours=1),
) -> str:
    now = datetime.now(tz=UTC)
    payload: dict[str, Any] = {
        "iss": cfg.issuer,
        "aud": cfg.audience,
        "sub": subject,
        "roles": roles,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.alg)


def bearer_headers(*, cfg: JwtConfig, subject: str, roles: list[str], ttl: timedelta) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(cfg=cfg, subject=subject, roles=roles, ttl=ttl)}"}


def decode_and_validate(*, cfg: JwtConfig, token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            cfg.secret,
            algorithms=[cfg.alg],
            issuer=cfg.issuer,
            audience=cfg.audience,
            options={
                "require": ["exp", "iat", "iss", "aud", "sub"],
            },
        )
    except InvalidTokenError as e:
        raise JwtValidationError(str(e)) from e


# --- Module Notes -----------------------------------------------------------
# Token issuing is used by:
# - `api/routers/dev_auth.py` (dev convenience)
# - `provisioning_clients/internal_http.py` (tool auth for provisioning endpoints)
