"""
edge_orchestrator.db.models

Core persistence schema for the orchestrator.

Responsibilities:
- Define ORM models for one durable record per deployment session:
  - OrchestrationSession: per-domain state machine row
  - PhaseRecord: append-only phase attempts
  - PhaseOutput: versioned Data Bridge payloads
  - RollbackAction: compensating action ledger
  - AuditEntry: append-only compliance trail
  - SessionLock: advisory lock serializing session ownership
- Back the in-process dummy provisioning systems (ProvisionedResource).
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy import Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edge_orchestrator.db.base import Base


def utcnow() -> datetime:
    # Persist naive UTC timestamps; SQLite drops tzinfo anyway.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class SessionStatus(enum.StrEnum):
    pending = "PENDING"
    running = "RUNNING"
    awaiting_recovery = "AWAITING_RECOVERY"
    completed = "COMPLETED"
    completed_with_warnings = "COMPLETED_WITH_WARNINGS"
    failed = "FAILED"
    rolled_back = "ROLLED_BACK"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {
        SessionStatus.completed,
        SessionStatus.completed_with_warnings,
        SessionStatus.failed,
        SessionStatus.rolled_back,
    }
)


class PhaseOutcome(enum.StrEnum):
    success = "SUCCESS"
    failure = "FAILURE"
    skipped = "SKIPPED"


class OrchestrationSession(Base):
    __tablename__ = "orchestration_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Groups the sessions created by a single deploy() call (portfolio).
    orchestration_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    domain: Mapped[str] = mapped_column(String(253), nullable=False, index=True)
    customer: Mapped[str] = mapped_column(String(128), nullable=False)
    environment: Mapped[str] = mapped_column(String(32), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Phase values are lifecycle names (see orchestrator.phases.Phase); NULL before the first phase.
    current_phase: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[SessionStatus] = mapped_column(Enum(SessionStatus), nullable=False, index=True)
    dry_run: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Set when rollback starts; a resumed session with this set goes straight to the drain.
    rollback_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)

    phase_records: Mapped[list[PhaseRecord]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )


class PhaseRecord(Base):
    __tablename__ = "phase_records"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), ForeignKey("orchestration_sessions.id"), nullable=False, index=True
    )
    phase: Mapped[str] = mapped_column(String(32), nullable=False)
    attempt: Mapped[int] = mapped_column(nullable=False, default=1)

    started_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(nullable=True)
    outcome: Mapped[PhaseOutcome] = mapped_column(Enum(PhaseOutcome), nullable=False)
    output: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    error_kind: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    session: Mapped[OrchestrationSession] = relationship(back_populates="phase_records")

    __table_args__ = (Index("ix_phase_records_session_phase", "session_id", "phase"),)


class PhaseOutput(Base):
    __tablename__ = "phase_outputs"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)
    phase: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "phase", "version", name="uq_phase_outputs_version"),
    )


class RollbackAction(Base):
    __tablename__ = "rollback_actions"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    executed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_rollback_actions_sequence"),
    )


class AuditEntry(Base):
    __tablename__ = "audit_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    session_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), nullable=False, index=True)
    # Monotonic per session; timestamps alone can collide within one transaction.
    sequence: Mapped[int] = mapped_column(nullable=False)

    timestamp: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)
    actor: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    detail: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (Index("ix_audit_session_sequence", "session_id", "sequence"),)


class SessionLock(Base):
    __tablename__ = "session_locks"

    session_id: Mapped[uuid.UUID] = mapped_column(SAUuid(as_uuid=True), primary_key=True)
    owner: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)


class ProvisionedResource(Base):
    """Backing rows for the dummy provisioning systems (databases, secrets, workers)."""

    __tablename__ = "provisioned_resources"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    attributes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (Index("ix_provisioned_resources_kind_name", "kind", "name"),)


# --- Module Notes -----------------------------------------------------------
# PhaseRecord, RollbackAction and AuditEntry are never deleted: rollback adds rows
# (executed flags, audit entries) rather than erasing history.
