"""
ConsistencySelector -- finds doors whose records disagree.

Checks the certificate binding (certified <=> exactly one active artifact),
the single-active-session rule, and that inspection_status agrees with the
presence of an in_progress session.  Used by
scripts/check_certification_consistency.py and by the invariant tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select

from inspex_kernel.domain.workflow import (
    ArtifactStatus,
    CertificationStatus,
    InspectionStatus,
    SessionStatus,
)
from inspex_kernel.models.asset import Asset
from inspex_kernel.models.certification import CertificationArtifact
from inspex_kernel.models.inspection import InspectionSession
from inspex_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class ConsistencyViolation:
    asset_id: UUID
    serial_number: str
    rule: str
    detail: str


class ConsistencySelector(BaseSelector):
    """Read-only integrity checks across assets, sessions and artifacts."""

    def find_binding_violations(self) -> list[ConsistencyViolation]:
        active_counts = (
            select(
                CertificationArtifact.asset_id.label("asset_id"),
                func.count().label("active_count"),
            )
            .where(CertificationArtifact.status == ArtifactStatus.ACTIVE.value)
            .group_by(CertificationArtifact.asset_id)
            .subquery()
        )
        rows = self.session.execute(
            select(Asset, func.coalesce(active_counts.c.active_count, 0))
            .outerjoin(active_counts, active_counts.c.asset_id == Asset.id)
            .order_by(Asset.serial_number)
        ).all()

        violations = []
        for asset, active_count in rows:
            certified = asset.certification_status == CertificationStatus.CERTIFIED.value
            if certified and active_count != 1:
                violations.append(
                    ConsistencyViolation(
                        asset.id,
                        asset.serial_number,
                        "certificate_binding",
                        f"certified with {active_count} active artifact(s)",
                    )
                )
            elif not certified and active_count:
                violations.append(
                    ConsistencyViolation(
                        asset.id,
                        asset.serial_number,
                        "certificate_binding",
                        f"{asset.certification_status} with {active_count} active artifact(s)",
                    )
                )
        return violations

    def find_duplicate_active_sessions(self) -> list[ConsistencyViolation]:
        rows = self.session.execute(
            select(Asset, func.count(InspectionSession.id))
            .join(InspectionSession, InspectionSession.asset_id == Asset.id)
            .where(InspectionSession.status == SessionStatus.IN_PROGRESS.value)
            .group_by(Asset.id)
            .having(func.count(InspectionSession.id) > 1)
        ).all()
        return [
            ConsistencyViolation(
                asset.id,
                asset.serial_number,
                "single_active_session",
                f"{count} in_progress sessions",
            )
            for asset, count in rows
        ]

    def find_inspection_status_mismatches(self) -> list[ConsistencyViolation]:
        active = (
            select(InspectionSession.asset_id)
            .where(InspectionSession.status == SessionStatus.IN_PROGRESS.value)
        )
        in_progress = InspectionStatus.IN_PROGRESS.value
        rows = self.session.execute(
            select(Asset).where(
                ((Asset.inspection_status == in_progress) & Asset.id.not_in(active))
                | ((Asset.inspection_status != in_progress) & Asset.id.in_(active))
            )
        ).scalars()
        return [
            ConsistencyViolation(
                asset.id,
                asset.serial_number,
                "inspection_status",
                f"inspection_status={asset.inspection_status} disagrees with sessions",
            )
            for asset in rows
        ]

    def find_all(self) -> list[ConsistencyViolation]:
        return (
            self.find_binding_violations()
            + self.find_duplicate_active_sessions()
            + self.find_inspection_status_mismatches()
        )
