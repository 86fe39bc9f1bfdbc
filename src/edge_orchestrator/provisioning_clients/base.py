"""
edge_orchestrator.provisioning_clients.base

Collaborator contracts consumed by the provisioning phases.

Responsibilities:
- Declare the idempotent `apply(config) -> result` / `compensate(action)` protocol.
- Name the compensating action kinds and route each to its collaborator.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


class RollbackKind(enum.StrEnum):
    delete_database = "delete-database"
    revoke_secret = "revoke-secret"
    remove_worker = "remove-worker"


@runtime_checkable
class ProvisioningCollaborator(Protocol):
    """
    apply() must be idempotent (same config -> same resource), and compensate() must have
    delete-if-exists semantics: recovery may replay a drain that was interrupted.

    Errors: raise TransientProvisioningError for network/timeout/quota problems and
    ConfigurationError when the request itself is invalid.
    """

    name: str

    async def apply(self, config: dict[str, Any]) -> dict[str, Any]: ...

    async def compensate(self, action: dict[str, Any]) -> None: ...


@dataclass(frozen=True, slots=True)
class Collaborators:
    database: ProvisioningCollaborator
    secrets: ProvisioningCollaborator
    deployer: ProvisioningCollaborator

    def for_rollback(self, kind: str) -> ProvisioningCollaborator:
        mapping = {
            RollbackKind.delete_database: self.database,
            RollbackKind.revoke_secret: self.secrets,
            RollbackKind.remove_worker: self.deployer,
        }
        try:
            return mapping[RollbackKind(kind)]
        except (KeyError, ValueError) as e:
            raise LookupError(f"no collaborator compensates {kind!r}") from e


# --- Module Notes -----------------------------------------------------------
# Results carry identifiers and references only; secret values never cross this boundary.
