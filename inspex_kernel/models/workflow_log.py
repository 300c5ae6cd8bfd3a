"""
Module: inspex_kernel.models.workflow_log
Responsibility: ORM persistence for the append-only workflow audit log.
Architecture position: Kernel > Models.

Invariants enforced:
    - Append-only: ORM listeners reject UPDATE and DELETE.
    - seq is unique and monotonically increasing.
    - hash covers every column except itself (seq, asset, session, action,
      actor, role, occurred_at, payload_hash, prev_hash), chaining every
      entry to its predecessor.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE through the ORM.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from inspex_kernel.db.base import Base, UTCDateTime, UUIDString
from inspex_kernel.domain.dtos import WorkflowLogRecord
from inspex_kernel.exceptions import ImmutabilityViolationError


class WorkflowLogEntry(Base):
    """One committed workflow transition, hash-chained to the previous entry."""

    __tablename__ = "workflow_log_entries"

    __table_args__ = (
        Index("idx_workflow_log_asset", "asset_id", "seq"),
        Index("idx_workflow_log_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("assets.id"), nullable=False,
    )
    session_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowLogEntry #{self.seq} {self.action} asset={self.asset_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> WorkflowLogRecord:
        return WorkflowLogRecord(
            entry_id=self.id,
            seq=self.seq,
            asset_id=self.asset_id,
            session_id=self.session_id,
            action=self.action,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            occurred_at=self.occurred_at,
            payload=dict(self.payload or {}),
            hash=self.hash,
            prev_hash=self.prev_hash,
        )


@event.listens_for(WorkflowLogEntry, "before_update")
def prevent_log_update(mapper, connection, target):
    """Prevent updates to workflow log entries."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowLogEntry",
        entity_id=str(target.id),
        reason="Workflow log entries are append-only -- cannot modify",
    )


@event.listens_for(WorkflowLogEntry, "before_delete")
def prevent_log_delete(mapper, connection, target):
    """Prevent deletion of workflow log entries."""
    raise ImmutabilityViolationError(
        entity_type="WorkflowLogEntry",
        entity_id=str(target.id),
        reason="Workflow log entries are append-only -- cannot delete",
    )
