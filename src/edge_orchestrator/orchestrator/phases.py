"""
edge_orchestrator.orchestrator.phases

The fixed deployment lifecycle.

Responsibilities:
- Enumerate the seven phases in lifecycle order.
- Map each phase to its State Manager label and rollback semantics.
"""

from __future__ import annotations

import enum


class Phase(enum.StrEnum):
    assess = "assess"
    identify = "identify"
    construct = "construct"
    orchestrate = "orchestrate"
    execute = "execute"
    verify = "verify"
    validate = "validate"

    @property
    def position(self) -> int:
        return LIFECYCLE.index(self)

    @property
    def state_label(self) -> str:
        return STATE_LABELS[self]

    @property
    def previous(self) -> Phase | None:
        i = self.position
        return LIFECYCLE[i - 1] if i > 0 else None

    @property
    def next(self) -> Phase | None:
        i = self.position
        return LIFECYCLE[i + 1] if i + 1 < len(LIFECYCLE) else None


LIFECYCLE: tuple[Phase, ...] = (
    Phase.assess,
    Phase.identify,
    Phase.construct,
    Phase.orchestrate,
    Phase.execute,
    Phase.verify,
    Phase.validate,
)

STATE_LABELS: dict[Phase, str] = {
    Phase.assess: "Validating",
    Phase.identify: "Initializing",
    Phase.construct: "DatabaseSetup",
    Phase.orchestrate: "SecretsConfig",
    Phase.execute: "Deploying",
    Phase.verify: "PostValidation",
    Phase.validate: "PostValidation",
}

# Failures here are reported as warnings by default (see Settings.verification_failure_policy).
VERIFICATION_PHASES: frozenset[Phase] = frozenset({Phase.verify, Phase.validate})


# --- Module Notes -----------------------------------------------------------
# Phase values are persisted (phase_records.phase, sessions.current_phase); treat them
# as a stable contract.
