"""
AssetRegistry -- door identity and status storage.

Responsibility:
    Registers doors and loads them.  Pure data access: no status transition
    logic lives here.  Status fields are moved only by InspectionService and
    CertificationEngine.

Architecture position:
    Kernel > Services -- flush-only.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from inspex_kernel.domain.actor import Actor
from inspex_kernel.domain.dtos import AssetRecord, AssetSpec
from inspex_kernel.domain.workflow import (
    CertificationStatus,
    InspectionStatus,
    Operation,
    ReleaseStatus,
    require_role,
)
from inspex_kernel.exceptions import AssetNotFoundError, DuplicateAssetError
from inspex_kernel.logging_config import get_logger
from inspex_kernel.models.asset import Asset
from inspex_kernel.services.base import BaseService

logger = get_logger("services.asset_registry")

SERIAL_PREFIX = "MF42"

# Door sizes in metres or millimetres -> serial size code.
_SIZE_CODES = {
    "1.5": "15",
    "1.8": "18",
    "2.0": "20",
    "1500": "15",
    "1800": "18",
    "2000": "20",
}


def generate_serial_number(door_number: str | int, size: str | float | None) -> str:
    """
    Serial number in the form MF42-<size code>-<door number padded to 4>.

    Example:
        >>> generate_serial_number(7, "1.8")
        'MF42-18-0007'
    """
    size_code = _SIZE_CODES.get(str(size).strip() if size is not None else "", "15")
    return f"{SERIAL_PREFIX}-{size_code}-{str(door_number).strip().zfill(4)}"


class AssetRegistry(BaseService):
    """Registers and loads doors."""

    def register(self, actor: Actor, spec: AssetSpec) -> AssetRecord:
        """
        Register a new door in the initial pending/pending state.

        Raises:
            RoleNotPermittedError: Caller is not an administrator.
            DuplicateAssetError: The serial number is already registered.
        """
        require_role(actor, Operation.REGISTER_ASSET)

        serial = spec.serial_number or generate_serial_number(spec.door_number, spec.size)
        existing = self.session.execute(
            select(Asset.id).where(Asset.serial_number == serial)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateAssetError(serial)

        asset = Asset(
            serial_number=serial,
            door_number=str(spec.door_number),
            size=str(spec.size),
            pressure_kpa=spec.pressure_kpa,
            drawing_number=spec.drawing_number,
            description=spec.description,
            job_number=spec.job_number,
            po_number=spec.po_number,
            door_type=spec.door_type,
            inspection_status=InspectionStatus.PENDING.value,
            certification_status=CertificationStatus.PENDING.value,
            release_status=ReleaseStatus.NOT_RELEASED.value,
            created_by_id=actor.actor_id,
        )
        self.session.add(asset)
        self.session.flush()

        logger.info(
            "asset_registered",
            extra={"asset_id": str(asset.id), "serial_number": serial},
        )
        return asset.to_dto()

    def get(self, asset_id: UUID) -> AssetRecord:
        return self.load(asset_id).to_dto()

    def load(self, asset_id: UUID) -> Asset:
        asset = self.session.get(Asset, asset_id)
        if asset is None:
            raise AssetNotFoundError(str(asset_id))
        return asset

    def get_by_serial(self, serial_number: str) -> AssetRecord:
        asset = self.session.execute(
            select(Asset).where(Asset.serial_number == serial_number)
        ).scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(serial_number)
        return asset.to_dto()

    def list_assets(
        self,
        certification_status: CertificationStatus | None = None,
    ) -> list[AssetRecord]:
        stmt = select(Asset).order_by(Asset.serial_number)
        if certification_status is not None:
            stmt = stmt.where(Asset.certification_status == certification_status.value)
        return [a.to_dto() for a in self.session.execute(stmt).scalars()]
