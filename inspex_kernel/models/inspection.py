"""
Module: inspex_kernel.models.inspection
Responsibility: ORM persistence for checklist points, inspection sessions and
    per-point checks.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one session per asset has status 'in_progress': partial unique
      index uq_inspection_sessions_one_active (SQLite and PostgreSQL).
    - One check row per (session, point).
    - is_checked is tri-state: NULL means not yet evaluated.

Failure modes:
    - IntegrityError when a second in_progress session is inserted for an asset.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inspex_kernel.db.base import Base, UTCDateTime, UUIDString
from inspex_kernel.domain.dtos import CheckRecord, InspectionPointRecord, SessionRecord
from inspex_kernel.domain.workflow import SessionStatus


class InspectionPoint(Base):
    """One named item of the inspection checklist template."""

    __tablename__ = "inspection_points"

    __table_args__ = (
        Index("idx_inspection_points_order", "is_active", "order_index"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False,
    )

    def to_dto(self) -> InspectionPointRecord:
        return InspectionPointRecord(
            point_id=self.id,
            name=self.name,
            description=self.description,
            order_index=self.order_index,
            is_active=self.is_active,
        )


class InspectionSession(Base):
    """One attempt at inspecting a door."""

    __tablename__ = "inspection_sessions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'superseded')",
            name="ck_inspection_sessions_status",
        ),
        Index(
            "uq_inspection_sessions_one_active",
            "asset_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
        UniqueConstraint("asset_id", "attempt", name="uq_inspection_sessions_attempt"),
        Index("idx_inspection_sessions_asset", "asset_id", "status", "started_at"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("assets.id"), nullable=False,
    )
    inspector_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    # 1-based attempt number per asset; orders sessions independent of clock ties.
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SessionStatus.IN_PROGRESS.value,
    )
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    superseded_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    checks: Mapped[list["InspectionCheck"]] = relationship(
        "InspectionCheck",
        back_populates="session",
        order_by="InspectionCheck.order_index",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<InspectionSession {self.id} asset={self.asset_id} {self.status}>"

    def to_dto(self) -> SessionRecord:
        return SessionRecord(
            session_id=self.id,
            asset_id=self.asset_id,
            inspector_id=self.inspector_id,
            attempt=self.attempt,
            status=SessionStatus(self.status),
            started_at=self.started_at,
            completed_at=self.completed_at,
            notes=self.notes,
            checks=tuple(c.to_dto() for c in self.checks),
        )


class InspectionCheck(Base):
    """Result of one checklist point within a session."""

    __tablename__ = "inspection_checks"

    __table_args__ = (
        UniqueConstraint("session_id", "point_id", name="uq_inspection_checks_point"),
    )

    session_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inspection_sessions.id"), nullable=False,
    )
    point_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inspection_points.id"), nullable=False,
    )
    # Copied from the point at session start so later template edits
    # do not reorder an existing session.
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    is_checked: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    photo_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    checked_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    session: Mapped[InspectionSession] = relationship(back_populates="checks")
    point: Mapped[InspectionPoint] = relationship(lazy="joined")

    def to_dto(self) -> CheckRecord:
        return CheckRecord(
            check_id=self.id,
            session_id=self.session_id,
            point_id=self.point_id,
            point_name=self.point.name,
            point_description=self.point.description,
            order_index=self.order_index,
            is_checked=self.is_checked,
            notes=self.notes,
            photo_ref=self.photo_ref,
            checked_at=self.checked_at,
        )
