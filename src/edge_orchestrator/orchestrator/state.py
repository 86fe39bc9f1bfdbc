"""
edge_orchestrator.orchestrator.state

Typed models shared by the orchestrator, services and API.

Responsibilities:
- Define the structured input a caller supplies per domain (`DomainConfig`).
- Define the structured result returned per session (`SessionResult`).
- Define the LangGraph state schema passed between phase nodes.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field, computed_field

from edge_orchestrator.orchestrator.reducers import append_errors, merge_outputs


class Requirements(BaseModel):
    """Business requirements checked by the Validate phase."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    min_health_checks: int = Field(default=1, ge=0, alias="minHealthChecks")
    max_response_time_ms: float | None = Field(default=None, gt=0, alias="maxResponseTimeMs")
    required_endpoints: list[str] = Field(default_factory=list, alias="requiredEndpoints")


class ServiceDescriptor(BaseModel):
    """What to deploy. Produced upstream by service scaffolding; opaque beyond these fields."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    service_name: str = Field(default="data-service", alias="serviceName")
    worker_name: str | None = Field(default=None, alias="workerName")
    database_name: str | None = Field(default=None, alias="databaseName")
    migrations: list[str] = Field(default_factory=list)
    secret_names: list[str] = Field(default_factory=lambda: ["JWT_SECRET"], alias="secretNames")
    health_path: str | None = Field(default=None, alias="healthPath")


class DomainConfig(BaseModel):
    """One domain deployment request, as supplied by the input collector."""

    model_config = ConfigDict(populate_by_name=True)

    domain: str = Field(min_length=1, max_length=253)
    customer: str = Field(default="default", min_length=1, max_length=128)
    environment: str = Field(default="production", min_length=1, max_length=32)
    service_descriptor: ServiceDescriptor = Field(
        default_factory=ServiceDescriptor, alias="serviceDescriptor"
    )
    requirements: Requirements = Field(default_factory=Requirements)


class SessionError(BaseModel):
    """
    One entry per phase failure and per compensation failure, tagged so callers can tell
    "never started" from "rolled back" from "rollback incomplete".
    """

    error: str  # ValidationFailed | ProvisioningFailed | CompensationError | RecoveryConflict | ...
    kind: str
    phase: str | None = None
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class SessionResult(BaseModel):
    session_id: uuid.UUID
    domain: str
    status: str
    worker_url: str | None = None
    dry_run: bool = False
    errors: list[SessionError] = Field(default_factory=list)
    warnings: list[SessionError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def manual_cleanup_required(self) -> bool:
        return any(e.error == "CompensationError" for e in self.errors)


class DeployOptions(BaseModel):
    concurrency: int | None = Field(default=None, ge=1)
    dry_run: bool = False


class SessionGraphState(TypedDict, total=False):
    # Identifiers
    session_id: str
    domain: str

    # Inputs
    config: dict[str, Any]
    dry_run: bool

    # Phase outputs loaded from / written to the Data Bridge, keyed by phase value.
    outputs: Annotated[dict[str, dict[str, Any]], merge_outputs]

    # Routing
    resume_from: str
    failed_phase: str | None
    failure_kind: str | None
    failure_message: str | None
    failure_attempts: int

    # Accumulated results
    errors: Annotated[list[dict[str, Any]], append_errors]
    warnings: Annotated[list[dict[str, Any]], append_errors]
    final_status: str


# --- Module Notes -----------------------------------------------------------
# DomainConfig is persisted on the session row so a resumed session needs nothing
# from the process that created it. It never carries secret values, only secret names.
