"""
edge_orchestrator.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (e.g., JWT secret).
- Carry the tunable orchestration policy (retry budgets, backoff, timeouts, verification).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Every field maps to an `EDGE_*` variable. Defaults target a local SQLite run against
    the in-process provisioning systems.
    """

    model_config = SettingsConfigDict(env_prefix="EDGE_", case_sensitive=False)

    # Environment controls toggle behavior like auto-init DB tables.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "edge-orchestrator"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Auth
    jwt_alg: str = "HS256"
    jwt_issuer: str = "edge-orchestrator"
    jwt_audience: str = "edge-api"
    jwt_secret: str = Field(default="dev-secret-change-me", repr=False)

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./edge_orchestrator.db"

    # Provisioning collaborators. When unset, the API routes calls to the in-process
    # dummy systems under /internal/v1.
    provisioning_api_base_url: str | None = None

    # Orchestrator
    actor: str = "orchestrator"
    default_concurrency: int = Field(default=3, ge=1)
    max_concurrency: int = Field(default=10, ge=1)

    # Retry policy (transient provisioning errors only)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_max_delay_seconds: float = Field(default=30.0, ge=0)
    phase_retry_budgets: dict[str, int] = Field(default_factory=dict)

    # Per-phase collaborator timeouts
    phase_timeout_seconds: float = Field(default=60.0, gt=0)
    phase_timeouts: dict[str, float] = Field(default_factory=lambda: {"execute": 120.0})

    # Verification / validation
    health_check_path: str = "/health"
    health_poll_interval_seconds: float = Field(default=2.0, ge=0)
    health_poll_timeout_seconds: float = Field(default=30.0, gt=0)
    health_request_timeout_seconds: float = Field(default=10.0, gt=0)
    verification_failure_policy: Literal["warn", "rollback"] = "warn"

    # Advisory session locks; a lock older than the TTL is treated as abandoned.
    session_lock_ttl_seconds: float = Field(default=300.0, gt=0)
    recover_on_startup: bool = True

    def retry_budget_for(self, phase: str) -> int:
        return int(self.phase_retry_budgets.get(phase, self.retry_max_attempts))

    def timeout_for(self, phase: str) -> float:
        return float(self.phase_timeouts.get(phase, self.phase_timeout_seconds))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Retry budgets, timeouts and the verification failure policy are tuned per environment
# through EDGE_* variables.
