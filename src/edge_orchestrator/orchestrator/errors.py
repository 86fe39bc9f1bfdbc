"""
edge_orchestrator.orchestrator.errors

Error taxonomy for the orchestration core.

Responsibilities:
- Define the exceptions phases, collaborators and services raise.
- Classify arbitrary exceptions into retry/fail/rollback decisions at the phase boundary.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy.exc import OperationalError


class ErrorKind(enum.StrEnum):
    # Stable names surfaced in SessionResult.errors; treat as API contract.
    validation = "ValidationError"
    transient = "TransientProvisioningError"
    configuration = "ConfigurationError"
    internal = "InternalError"
    recovery_conflict = "RecoveryConflict"
    compensation = "CompensationError"
    cancelled = "Cancelled"
    verification = "VerificationWarning"


class OrchestrationError(Exception):
    """Base exception for the orchestrator."""


@dataclass(eq=False)
class ValidationFailed(OrchestrationError):
    """Bad or missing input. Fatal, never retried, nothing to roll back."""

    issues: list[str]

    def __post_init__(self) -> None:
        super().__init__("; ".join(self.issues) or "validation failed")


@dataclass(eq=False)
class TransientProvisioningError(OrchestrationError):
    """Network, timeout, rate-limit or quota failure. Safe to retry."""

    message: str
    collaborator: str = "unknown"

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass(eq=False)
class ConfigurationError(OrchestrationError):
    """The collaborator rejected the request as structurally invalid. Do not retry."""

    message: str
    collaborator: str = "unknown"

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass(eq=False)
class ProvisioningFailed(OrchestrationError):
    """A phase failed for good: retry budget exhausted, or a non-retryable error."""

    kind: ErrorKind
    phase: str
    message: str
    attempts: int = 1

    def __post_init__(self) -> None:
        super().__init__(f"{self.phase} failed ({self.kind}): {self.message}")


@dataclass(eq=False)
class RecoveryConflict(OrchestrationError):
    """Another owner holds the session; the second resumer fails fast."""

    session_id: uuid.UUID
    owner: str | None = None

    def __post_init__(self) -> None:
        super().__init__(f"session {self.session_id} is owned by another process")


@dataclass(eq=False)
class CompensationError(OrchestrationError):
    kind: str
    message: str
    sequence: int | None = None

    def __post_init__(self) -> None:
        super().__init__(f"compensation {self.kind} failed: {self.message}")


@dataclass(eq=False)
class InvalidTransition(OrchestrationError):
    session_id: uuid.UUID
    current: str | None
    target: str

    def __post_init__(self) -> None:
        super().__init__(f"invalid transition {self.current} -> {self.target} for {self.session_id}")


@dataclass(eq=False)
class SessionNotFound(OrchestrationError):
    session_id: uuid.UUID

    def __post_init__(self) -> None:
        super().__init__(f"session {self.session_id} not found")


@dataclass(eq=False)
class SessionCancelled(OrchestrationError):
    session_id: uuid.UUID

    def __post_init__(self) -> None:
        super().__init__(f"session {self.session_id} was cancelled")


@dataclass(eq=False)
class LedgerWriteError(OrchestrationError):
    """The rollback ledger could not persist an action; the side effect was compensated."""

    kind: str
    message: str
    compensated: bool = True
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(f"could not record {self.kind}: {self.message}")


@dataclass(eq=False)
class DataBridgeWriteError(OrchestrationError):
    phase: str
    message: str

    def __post_init__(self) -> None:
        super().__init__(f"could not persist {self.phase} output: {self.message}")


@dataclass(eq=False)
class VerificationFailed(OrchestrationError):
    """Raised only when the verification failure policy is "rollback"."""

    phase: str
    issues: list[str]

    def __post_init__(self) -> None:
        super().__init__(f"{self.phase} verification failed: {'; '.join(self.issues)}")


_TRANSIENT_STATUS = frozenset({408, 425, 429})


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map any exception raised inside a phase to the kind that drives retry/rollback policy.
    Unknown exceptions are internal errors and are not retried.
    """

    if isinstance(exc, ValidationFailed):
        return ErrorKind.validation
    if isinstance(exc, ConfigurationError):
        return ErrorKind.configuration
    if isinstance(exc, TransientProvisioningError | LedgerWriteError | DataBridgeWriteError):
        return ErrorKind.transient
    if isinstance(exc, ProvisioningFailed):
        return exc.kind
    if isinstance(exc, SessionCancelled):
        return ErrorKind.cancelled
    if isinstance(exc, VerificationFailed):
        return ErrorKind.verification
    if isinstance(exc, asyncio.TimeoutError | TimeoutError):
        return ErrorKind.transient
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in _TRANSIENT_STATUS or status >= 500:
            return ErrorKind.transient
        return ErrorKind.configuration
    if isinstance(exc, httpx.TimeoutException | httpx.TransportError):
        return ErrorKind.transient
    if isinstance(exc, OperationalError):
        return ErrorKind.transient
    return ErrorKind.internal


def is_retryable(kind: ErrorKind) -> bool:
    return kind is ErrorKind.transient


def failure_label(kind: ErrorKind) -> str:
    """Top-level error name reported for a phase that failed with `kind`."""

    if kind is ErrorKind.validation:
        return ValidationFailed.__name__
    if kind is ErrorKind.cancelled:
        return SessionCancelled.__name__
    if kind is ErrorKind.verification:
        return VerificationFailed.__name__
    return ProvisioningFailed.__name__


# --- Module Notes -----------------------------------------------------------
# Raw collaborator exceptions never escape a phase: the session runner classifies them
# here and records them as PhaseRecord failures / SessionResult errors.
