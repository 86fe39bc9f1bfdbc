"""
tests.fakes

In-memory provisioning collaborators for orchestration tests.

Responsibilities:
- Return deterministic, idempotent results from `apply` (same name -> same id).
- Fail on demand, per call or per domain, and optionally block until released.
- Record every apply/compensate call, with a shared journal for cross-collaborator ordering.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from edge_orchestrator.provisioning_clients.base import Collaborators

Journal = list[tuple[str, dict[str, Any]]]


class FakeCollaborator:
    def __init__(
        self,
        name: str,
        *,
        result: Callable[[dict[str, Any]], dict[str, Any]],
        journal: Journal,
        failures: list[Exception] | None = None,
        failures_by_domain: dict[str, list[Exception]] | None = None,
        compensate_error: Exception | None = None,
    ) -> None:
        self.name = name
        self._result = result
        self._journal = journal
        self._failures = list(failures or [])
        self._failures_by_domain = {k: list(v) for k, v in (failures_by_domain or {}).items()}
        self._compensate_error = compensate_error

        self.apply_calls: list[dict[str, Any]] = []
        self.compensations: list[dict[str, Any]] = []

        # Optional gate: apply() signals `started` and waits for `release`.
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None

        self.in_flight = 0
        self.max_in_flight = 0
        self.apply_delay = 0.0

    async def apply(self, config: dict[str, Any]) -> dict[str, Any]:
        self.apply_calls.append(dict(config))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.started.set()
            if self.release is not None:
                await self.release.wait()
            if self.apply_delay:
                await asyncio.sleep(self.apply_delay)
            queued = self._failures_by_domain.get(str(config.get("domain")))
            if queued:
                raise queued.pop(0)
            if self._failures:
                raise self._failures.pop(0)
            return self._result(config)
        finally:
            self.in_flight -= 1

    async def compensate(self, action: dict[str, Any]) -> None:
        self.compensations.append(dict(action))
        self._journal.append((self.name, dict(action)))
        if self._compensate_error is not None:
            raise self._compensate_error


def _database_result(config: dict[str, Any]) -> dict[str, Any]:
    return {
        "database_id": f"db-{config['database_name']}",
        "endpoint": f"d1://db-{config['database_name']}",
        "migrations_applied": len(config.get("migrations", [])),
    }


def _secrets_result(config: dict[str, Any]) -> dict[str, Any]:
    return {"secret_refs": [f"ref-{config['worker_name']}-{n}" for n in config["secret_names"]]}


def _deployer_result(config: dict[str, Any]) -> dict[str, Any]:
    worker = config["worker_name"]
    return {"deployment_id": f"dep-{worker}", "worker_url": f"https://{worker}.workers.test"}


class FakeSystems:
    """The three collaborators plus the journal they share."""

    def __init__(
        self,
        *,
        database: dict[str, Any] | None = None,
        secrets: dict[str, Any] | None = None,
        deployer: dict[str, Any] | None = None,
    ) -> None:
        self.journal: Journal = []
        self.database = FakeCollaborator(
            "database", result=_database_result, journal=self.journal, **(database or {})
        )
        self.secrets = FakeCollaborator(
            "secrets", result=_secrets_result, journal=self.journal, **(secrets or {})
        )
        self.deployer = FakeCollaborator(
            "deployer", result=_deployer_result, journal=self.journal, **(deployer or {})
        )

    @property
    def collaborators(self) -> Collaborators:
        return Collaborators(database=self.database, secrets=self.secrets, deployer=self.deployer)

    @property
    def compensation_order(self) -> list[str]:
        return [name for name, _ in self.journal]

    @property
    def apply_count(self) -> int:
        return sum(len(c.apply_calls) for c in (self.database, self.secrets, self.deployer))


def actions_of(entries: list[Any]) -> list[str]:
    return [e.action for e in entries]
