"""
Module: inspex_kernel.models.certification
Responsibility: ORM persistence for certificate artifacts.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one 'active' artifact per asset: partial unique index
      uq_certification_artifacts_one_active.  Together with the engine
      writing the artifact and the certified status in one transaction,
      this gives: certified <=> exactly one active artifact.
    - dedupe_key (certify:<asset>:<session>) is unique among active and
      superseded rows, so a retried certify can never insert a second
      artifact for the same session.

Failure modes:
    - IntegrityError on a second active artifact or a duplicate dedupe_key.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from inspex_kernel.db.base import Base, UTCDateTime, UUIDString
from inspex_kernel.domain.dtos import ArtifactRef
from inspex_kernel.domain.workflow import ArtifactStatus


class CertificationArtifact(Base):
    """Record of one issued certificate and where its document lives."""

    __tablename__ = "certification_artifacts"

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'superseded', 'purging')",
            name="ck_certification_artifacts_status",
        ),
        Index(
            "uq_certification_artifacts_one_active",
            "asset_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index(
            "uq_certification_artifacts_dedupe",
            "dedupe_key",
            unique=True,
            sqlite_where=text("status IN ('active', 'superseded')"),
            postgresql_where=text("status IN ('active', 'superseded')"),
        ),
        Index("idx_certification_artifacts_asset", "asset_id", "issued_at"),
    )

    asset_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("assets.id"), nullable=False,
    )
    session_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inspection_sessions.id"), nullable=False,
    )
    engineer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    storage_key: Mapped[str] = mapped_column(String(255), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ArtifactStatus.ACTIVE.value,
    )
    dedupe_key: Mapped[str] = mapped_column(String(120), nullable=False)
    has_signature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    superseded_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    superseded_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CertificationArtifact {self.storage_key} {self.status}>"

    def to_dto(self) -> ArtifactRef:
        return ArtifactRef(
            artifact_id=self.id,
            asset_id=self.asset_id,
            session_id=self.session_id,
            engineer_id=self.engineer_id,
            storage_key=self.storage_key,
            issued_at=self.issued_at,
            status=ArtifactStatus(self.status),
            dedupe_key=self.dedupe_key,
            has_signature=self.has_signature,
        )
