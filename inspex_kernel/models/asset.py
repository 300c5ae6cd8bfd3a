"""
Module: inspex_kernel.models.asset
Responsibility: ORM persistence for doors (assets) and their status triple.
Architecture position: Kernel > Models.  May import from db/base.py and domain/.

Invariants enforced:
    - Status columns hold only values of their domain enums (check constraints).
    - rejection_reason is NULL unless certification_status = 'rejected'.
    - Every UPDATE is conditional on the version the writer read
      (SQLAlchemy version_id_col).  A concurrent writer that committed first
      makes the UPDATE match zero rows and raises StaleDataError.

Failure modes:
    - IntegrityError on duplicate serial_number.
    - StaleDataError on a lost compare-and-swap.
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inspex_kernel.db.base import TrackedBase
from inspex_kernel.domain.dtos import AssetRecord
from inspex_kernel.domain.workflow import (
    AssetState,
    CertificationStatus,
    InspectionStatus,
    ReleaseStatus,
)


class Asset(TrackedBase):
    """A pressure-rated refuge bay door.

    Status fields move only through the inspection service
    (inspection_status) and the certification engine (the rest).
    """

    __tablename__ = "assets"

    __table_args__ = (
        CheckConstraint(
            "inspection_status IN ('pending', 'in_progress', 'completed')",
            name="ck_assets_inspection_status",
        ),
        CheckConstraint(
            "certification_status IN ('pending', 'under_review', 'certified', 'rejected')",
            name="ck_assets_certification_status",
        ),
        CheckConstraint(
            "release_status IN ('not_released', 'released_to_client', "
            "'client_downloaded', 'client_accepted')",
            name="ck_assets_release_status",
        ),
        CheckConstraint(
            "certification_status = 'rejected' OR rejection_reason IS NULL",
            name="ck_assets_rejection_reason_only_when_rejected",
        ),
        Index("idx_assets_status", "inspection_status", "certification_status"),
    )

    serial_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    door_number: Mapped[str] = mapped_column(String(20), nullable=False)
    size: Mapped[str] = mapped_column(String(20), nullable=False)
    pressure_kpa: Mapped[int] = mapped_column(Integer, nullable=False)
    drawing_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    po_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    door_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    inspection_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InspectionStatus.PENDING.value,
    )
    certification_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CertificationStatus.PENDING.value,
    )
    release_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ReleaseStatus.NOT_RELEASED.value,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Asset {self.serial_number} {self.state}>"

    @property
    def state(self) -> AssetState:
        return AssetState(
            InspectionStatus(self.inspection_status),
            CertificationStatus(self.certification_status),
            ReleaseStatus(self.release_status),
        )

    def apply_state(self, state: AssetState) -> None:
        self.inspection_status = state.inspection.value
        self.certification_status = state.certification.value
        self.release_status = state.release.value

    def to_dto(self) -> AssetRecord:
        return AssetRecord(
            asset_id=self.id,
            serial_number=self.serial_number,
            door_number=self.door_number,
            size=self.size,
            pressure_kpa=self.pressure_kpa,
            drawing_number=self.drawing_number,
            description=self.description,
            job_number=self.job_number,
            po_number=self.po_number,
            door_type=self.door_type,
            inspection_status=InspectionStatus(self.inspection_status),
            certification_status=CertificationStatus(self.certification_status),
            release_status=ReleaseStatus(self.release_status),
            rejection_reason=self.rejection_reason,
            version=self.version,
        )
