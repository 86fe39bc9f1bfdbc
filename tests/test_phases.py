"""
tests.test_phases

Name/URL derivations, input assessment and the lifecycle ordering.
"""

from __future__ import annotations

import uuid

import pytest

from edge_orchestrator.orchestrator.errors import ValidationFailed
from edge_orchestrator.orchestrator.graph import FINISH, ROLLBACK, route_entry
from edge_orchestrator.orchestrator.nodes import (
    PhaseContext,
    assess_phase,
    clean_domain_name,
    derive_custom_url,
    derive_database_name,
    derive_worker_name,
    identify_phase,
)
from edge_orchestrator.orchestrator.phases import LIFECYCLE, Phase
from edge_orchestrator.orchestrator.state import DomainConfig, Requirements, ServiceDescriptor


def _ctx(config: DomainConfig) -> PhaseContext:
    async def _guard(*_args) -> None:
        raise AssertionError("no side effects expected")

    return PhaseContext(
        session_id=uuid.uuid4(),
        config=config,
        outputs={},
        dry_run=False,
        collaborators=None,  # type: ignore[arg-type]
        verifier=None,  # type: ignore[arg-type]
        timeout=1.0,
        guard=_guard,
    )


def test_clean_domain_name() -> None:
    assert clean_domain_name("Shop.Example.co.uk") == "shop-example-co-uk"
    assert clean_domain_name("a_b.example.com") == "ab-example-com"


@pytest.mark.parametrize(
    ("environment", "worker", "url"),
    [
        ("production", "data-service-example-com", "https://data-service.example.com"),
        ("development", "data-service-example-com-dev", "https://dev-data-service.example.com"),
        ("staging", "data-service-example-com-staging", "https://staging-data-service.example.com"),
    ],
)
def test_environment_specific_names(environment: str, worker: str, url: str) -> None:
    cfg = DomainConfig(domain="example.com", environment=environment)
    assert derive_worker_name(cfg) == worker
    assert derive_custom_url(cfg) == url
    assert derive_database_name(cfg) == f"example-com-{environment}-db"


def test_descriptor_names_override_derivation() -> None:
    cfg = DomainConfig(
        domain="example.com",
        service_descriptor=ServiceDescriptor(worker_name="legacy-worker", database_name="legacy-db"),
    )
    assert derive_worker_name(cfg) == "legacy-worker"
    assert derive_database_name(cfg) == "legacy-db"


@pytest.mark.asyncio
async def test_assess_collects_every_issue() -> None:
    cfg = DomainConfig(
        domain="-bad-.com",
        customer="Acme Corp",
        environment="qa",
        service_descriptor=ServiceDescriptor(secret_names=["jwt_secret"], health_path="health"),
        requirements=Requirements(required_endpoints=["api"]),
    )

    with pytest.raises(ValidationFailed) as excinfo:
        await assess_phase(_ctx(cfg))

    assert len(excinfo.value.issues) == 6


@pytest.mark.asyncio
async def test_identify_output_carries_derived_names() -> None:
    cfg = DomainConfig(
        domain="example.com",
        environment="development",
        service_descriptor=ServiceDescriptor(secret_names=["JWT_SECRET", "API_KEY"]),
    )
    result = await identify_phase(_ctx(cfg))

    assert result.output["worker_name"] == "data-service-example-com-dev"
    assert result.output["database_name"] == "example-com-development-db"
    assert result.output["health_path"] == "/health"
    assert result.output["secret_names"] == ["JWT_SECRET", "API_KEY"]


def test_lifecycle_order_and_state_labels() -> None:
    assert [p.value for p in LIFECYCLE] == [
        "assess",
        "identify",
        "construct",
        "orchestrate",
        "execute",
        "verify",
        "validate",
    ]
    assert Phase.construct.state_label == "DatabaseSetup"
    assert Phase.execute.previous is Phase.orchestrate
    assert Phase.validate.next is None


def test_entry_routing() -> None:
    assert route_entry({"resume_from": "execute"}) == "execute"
    assert route_entry({"resume_from": ROLLBACK}) == ROLLBACK
    assert route_entry({"resume_from": FINISH}) == FINISH
    assert route_entry({}) == "assess"
