"""
edge_orchestrator.orchestrator.nodes

Phase implementations for the deployment lifecycle.

Responsibilities:
- Implement the work of each of the seven phases as a coroutine over a `PhaseContext`.
- Call provisioning collaborators (bounded by the phase timeout) and guard every
  successful side effect with a rollback action before anything else happens.
- Produce simulated outputs without touching collaborators in dry-run mode.

Phases never persist anything themselves; the session runner records attempts and
writes outputs to the Data Bridge.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from edge_orchestrator.orchestrator.errors import ConfigurationError, ValidationFailed
from edge_orchestrator.orchestrator.phases import Phase
from edge_orchestrator.orchestrator.retry import call_with_timeout
from edge_orchestrator.orchestrator.state import DomainConfig, Requirements
from edge_orchestrator.orchestrator.verification import VerificationEngine
from edge_orchestrator.provisioning_clients.base import (
    Collaborators,
    ProvisioningCollaborator,
    RollbackKind,
)

ENVIRONMENTS = ("development", "staging", "production")

_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z][a-z0-9-]{0,61}[a-z0-9]$"
)
_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,127}$")
_SERVICE_RE = re.compile(r"^[a-z][a-z0-9-]{0,62}$")
_SECRET_RE = re.compile(r"^[A-Z][A-Z0-9_]{0,127}$")

# Guards a side effect: (kind, payload, compensator). Raises LedgerWriteError if it could
# not be recorded, after compensating the side effect itself.
RollbackGuard = Callable[[RollbackKind, dict[str, Any], ProvisioningCollaborator], Awaitable[None]]


@dataclass(slots=True)
class PhaseContext:
    session_id: uuid.UUID
    config: DomainConfig
    outputs: dict[str, dict[str, Any]]
    dry_run: bool
    collaborators: Collaborators
    verifier: VerificationEngine
    timeout: float
    guard: RollbackGuard
    default_health_path: str = "/health"

    def output_of(self, phase: Phase) -> dict[str, Any]:
        out = self.outputs.get(phase.value)
        if out is None:
            # The transition rule makes this unreachable unless the bridge lost data.
            raise LookupError(f"no {phase.value} output recorded for {self.config.domain}")
        return out


@dataclass(slots=True)
class PhaseResult:
    output: dict[str, Any]
    warnings: list[str] = field(default_factory=list)


PhaseFn = Callable[[PhaseContext], Awaitable[PhaseResult]]


# --- Derivations ------------------------------------------------------------


def clean_domain_name(domain: str) -> str:
    """example.com -> example-com; anything outside [a-z0-9-] is dropped."""

    return re.sub(r"[^a-z0-9-]", "", domain.lower().replace(".", "-"))


def environment_suffix(environment: str) -> str:
    if environment == "production":
        return ""
    if environment == "development":
        return "-dev"
    return f"-{environment}"


def derive_worker_name(config: DomainConfig) -> str:
    descriptor = config.service_descriptor
    if descriptor.worker_name:
        return descriptor.worker_name
    return (
        f"{descriptor.service_name}-{clean_domain_name(config.domain)}"
        f"{environment_suffix(config.environment)}"
    )


def derive_database_name(config: DomainConfig) -> str:
    if config.service_descriptor.database_name:
        return config.service_descriptor.database_name
    return f"{clean_domain_name(config.domain)}-{config.environment}-db"


def derive_custom_url(config: DomainConfig) -> str:
    service = config.service_descriptor.service_name
    if config.environment == "production":
        return f"https://{service}.{config.domain}"
    if config.environment == "development":
        return f"https://dev-{service}.{config.domain}"
    return f"https://{config.environment}-{service}.{config.domain}"


# --- Phases -----------------------------------------------------------------


async def assess_phase(ctx: PhaseContext) -> PhaseResult:
    """Validate inputs and prerequisites. Fatal on any issue; nothing is provisioned yet."""

    cfg = ctx.config
    descriptor = cfg.service_descriptor
    issues: list[str] = []

    if not _DOMAIN_RE.match(cfg.domain):
        issues.append(f"domain {cfg.domain!r} is not a valid lowercase hostname")
    if cfg.environment not in ENVIRONMENTS:
        issues.append(f"environment {cfg.environment!r} must be one of {', '.join(ENVIRONMENTS)}")
    if not _SLUG_RE.match(cfg.customer):
        issues.append(f"customer {cfg.customer!r} must be a lowercase slug")
    if not _SERVICE_RE.match(descriptor.service_name):
        issues.append(f"service name {descriptor.service_name!r} must be a lowercase slug")
    for name in descriptor.secret_names:
        if not _SECRET_RE.match(name):
            issues.append(f"secret name {name!r} must be UPPER_SNAKE_CASE")
    if descriptor.health_path is not None and not descriptor.health_path.startswith("/"):
        issues.append("health path must start with '/'")
    for path in cfg.requirements.required_endpoints:
        if not path.startswith("/"):
            issues.append(f"required endpoint {path!r} must start with '/'")

    if issues:
        raise ValidationFailed(issues)

    warnings: list[str] = []
    if cfg.environment == "production" and cfg.requirements.min_health_checks == 0:
        warnings.append("production deployment without health check requirement")

    return PhaseResult(
        output={
            "domain": cfg.domain,
            "customer": cfg.customer,
            "environment": cfg.environment,
            "secret_count": len(descriptor.secret_names),
            "notes": warnings,
        }
    )


async def identify_phase(ctx: PhaseContext) -> PhaseResult:
    cfg = ctx.config
    return PhaseResult(
        output={
            "clean_name": clean_domain_name(cfg.domain),
            "worker_name": derive_worker_name(cfg),
            "database_name": derive_database_name(cfg),
            "custom_url": derive_custom_url(cfg),
            "service_name": cfg.service_descriptor.service_name,
            "health_path": cfg.service_descriptor.health_path or ctx.default_health_path,
            "secret_names": list(cfg.service_descriptor.secret_names),
            "requirements": cfg.requirements.model_dump(),
        }
    )


async def construct_phase(ctx: PhaseContext) -> PhaseResult:
    ident = ctx.output_of(Phase.identify)
    name = ident["database_name"]
    if ctx.dry_run:
        return PhaseResult(
            output={
                "database_name": name,
                "database_id": f"dry-run-{name}",
                "endpoint": f"d1://dry-run-{name}",
                "simulated": True,
            }
        )

    collaborator = ctx.collaborators.database
    result = await call_with_timeout(
        collaborator.apply(
            {
                "database_name": name,
                "domain": ctx.config.domain,
                "customer": ctx.config.customer,
                "environment": ctx.config.environment,
                "migrations": list(ctx.config.service_descriptor.migrations),
            }
        ),
        timeout=ctx.timeout,
    )
    database_id = _required(result, "database_id", collaborator)
    await ctx.guard(
        RollbackKind.delete_database,
        {"database_id": database_id, "database_name": name},
        collaborator,
    )
    return PhaseResult(
        output={
            "database_name": name,
            "database_id": database_id,
            "endpoint": _required(result, "endpoint", collaborator),
            "migrations_applied": result.get("migrations_applied", 0),
        }
    )


async def orchestrate_phase(ctx: PhaseContext) -> PhaseResult:
    ident = ctx.output_of(Phase.identify)
    db = ctx.output_of(Phase.construct)
    names = list(ident["secret_names"])
    if ctx.dry_run:
        refs = [f"dry-run:{ident['worker_name']}:{n}" for n in names]
        return PhaseResult(output={"secret_refs": refs, "secret_names": names, "simulated": True})

    collaborator = ctx.collaborators.secrets
    result = await call_with_timeout(
        collaborator.apply(
            {
                "worker_name": ident["worker_name"],
                "environment": ctx.config.environment,
                "secret_names": names,
                "database_id": db["database_id"],
            }
        ),
        timeout=ctx.timeout,
    )
    refs = _required(result, "secret_refs", collaborator)
    if not isinstance(refs, list):
        raise ConfigurationError("secret_refs must be a list", collaborator.name)
    await ctx.guard(RollbackKind.revoke_secret, {"secret_refs": refs}, collaborator)
    return PhaseResult(output={"secret_refs": refs, "secret_names": names})


async def execute_phase(ctx: PhaseContext) -> PhaseResult:
    ident = ctx.output_of(Phase.identify)
    db = ctx.output_of(Phase.construct)
    secrets = ctx.output_of(Phase.orchestrate)
    if ctx.dry_run:
        return PhaseResult(
            output={
                "worker_name": ident["worker_name"],
                "worker_url": ident["custom_url"],
                "deployment_id": f"dry-run-{ident['worker_name']}",
                "simulated": True,
            }
        )

    collaborator = ctx.collaborators.deployer
    result = await call_with_timeout(
        collaborator.apply(
            {
                "worker_name": ident["worker_name"],
                "service_name": ident["service_name"],
                "domain": ctx.config.domain,
                "environment": ctx.config.environment,
                "custom_url": ident["custom_url"],
                "database_id": db["database_id"],
                "secret_refs": secrets["secret_refs"],
            }
        ),
        timeout=ctx.timeout,
    )
    deployment_id = _required(result, "deployment_id", collaborator)
    await ctx.guard(
        RollbackKind.remove_worker,
        {"deployment_id": deployment_id, "worker_name": ident["worker_name"]},
        collaborator,
    )
    return PhaseResult(
        output={
            "worker_name": ident["worker_name"],
            "worker_url": _required(result, "worker_url", collaborator),
            "deployment_id": deployment_id,
        }
    )


async def verify_phase(ctx: PhaseContext) -> PhaseResult:
    ident = ctx.output_of(Phase.identify)
    worker = ctx.output_of(Phase.execute)
    if ctx.dry_run:
        return PhaseResult(output={"healthy": True, "consecutive_healthy": 0, "simulated": True})

    requirements = Requirements.model_validate(ident.get("requirements") or {})
    url = worker["worker_url"].rstrip("/") + ident["health_path"]
    report = await ctx.verifier.poll_health(url, required_checks=requirements.min_health_checks)
    warnings = [] if report.healthy else [f"worker at {url} did not become healthy"]
    return PhaseResult(output=report.to_payload(), warnings=warnings)


async def validate_phase(ctx: PhaseContext) -> PhaseResult:
    ident = ctx.output_of(Phase.identify)
    worker = ctx.output_of(Phase.execute)
    health = ctx.output_of(Phase.verify)
    if ctx.dry_run:
        return PhaseResult(output={"compliant": True, "violations": [], "simulated": True})

    report = await ctx.verifier.check_compliance(
        base_url=worker["worker_url"],
        requirements=Requirements.model_validate(ident.get("requirements") or {}),
        health=health,
    )
    return PhaseResult(output=report.to_payload(), warnings=list(report.violations))


PHASE_FUNCTIONS: dict[Phase, PhaseFn] = {
    Phase.assess: assess_phase,
    Phase.identify: identify_phase,
    Phase.construct: construct_phase,
    Phase.orchestrate: orchestrate_phase,
    Phase.execute: execute_phase,
    Phase.verify: verify_phase,
    Phase.validate: validate_phase,
}


def _required(result: dict[str, Any], key: str, collaborator: ProvisioningCollaborator) -> Any:
    value = result.get(key) if isinstance(result, dict) else None
    if value in (None, ""):
        raise ConfigurationError(f"{collaborator.name} response missing {key!r}", collaborator.name)
    return value


# --- Module Notes -----------------------------------------------------------
# A collaborator call and its rollback guard happen inside one attempt: if the guard
# cannot be recorded the side effect is compensated before the attempt fails, so a
# retried attempt never leaves an unguarded resource behind.
