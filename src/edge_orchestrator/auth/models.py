"""
edge_orchestrator.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) injected into endpoints.
- Name the roles the API enforces.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class Role(enum.StrEnum):
    deployer = "deployer"
    auditor = "auditor"
    internal_system = "internal_system"
    admin = "admin"


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.
    """

    subject: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return Role.admin in self.roles

    def has_any(self, *roles: str) -> bool:
        return self.is_admin or any(r in self.roles for r in roles)


# --- Module Notes -----------------------------------------------------------
# The subject becomes the `actor` on audit entries written for API-initiated actions.
