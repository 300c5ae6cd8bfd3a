"""
WorkflowSelector -- side-effect-free queries over the workflow state.

Latest session, latest artifact and audit trail for a door, plus the
per-role work queues ("pending tasks").
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import case, select

from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.domain.dtos import (
    ArtifactRef,
    AssetRecord,
    SessionRecord,
    WorkflowLogRecord,
)
from inspex_kernel.domain.workflow import (
    ArtifactStatus,
    CertificationStatus,
    InspectionStatus,
    ReleaseStatus,
    SessionStatus,
)
from inspex_kernel.exceptions import InspectionSessionNotFoundError
from inspex_kernel.models.asset import Asset
from inspex_kernel.models.certification import CertificationArtifact
from inspex_kernel.models.inspection import InspectionSession
from inspex_kernel.models.workflow_log import WorkflowLogEntry
from inspex_kernel.selectors.base import BaseSelector


class WorkflowSelector(BaseSelector):
    """Read-only workflow queries."""

    def get_session(self, session_id: UUID) -> SessionRecord:
        inspection = self.session.get(InspectionSession, session_id)
        if inspection is None:
            raise InspectionSessionNotFoundError(str(session_id))
        return inspection.to_dto()

    def latest_session(self, asset_id: UUID) -> SessionRecord | None:
        """Most recent session of any status."""
        inspection = self.session.execute(
            select(InspectionSession)
            .where(InspectionSession.asset_id == asset_id)
            .order_by(InspectionSession.attempt.desc())
            .limit(1)
        ).scalar_one_or_none()
        return inspection.to_dto() if inspection else None

    def latest_completed_session(self, asset_id: UUID) -> SessionRecord | None:
        """Most recent completed, non-superseded session."""
        inspection = self.session.execute(
            select(InspectionSession)
            .where(
                InspectionSession.asset_id == asset_id,
                InspectionSession.status == SessionStatus.COMPLETED.value,
            )
            .order_by(InspectionSession.attempt.desc())
            .limit(1)
        ).scalar_one_or_none()
        return inspection.to_dto() if inspection else None

    def sessions_for_asset(self, asset_id: UUID) -> list[SessionRecord]:
        rows = self.session.execute(
            select(InspectionSession)
            .where(InspectionSession.asset_id == asset_id)
            .order_by(InspectionSession.attempt)
        ).scalars()
        return [s.to_dto() for s in rows]

    def active_artifact(self, asset_id: UUID) -> ArtifactRef | None:
        artifact = self.session.execute(
            select(CertificationArtifact).where(
                CertificationArtifact.asset_id == asset_id,
                CertificationArtifact.status == ArtifactStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()
        return artifact.to_dto() if artifact else None

    def latest_artifact(self, asset_id: UUID) -> ArtifactRef | None:
        """The active artifact if any, else the most recently superseded one."""
        artifact = self.session.execute(
            select(CertificationArtifact)
            .where(
                CertificationArtifact.asset_id == asset_id,
                CertificationArtifact.status != ArtifactStatus.PURGING.value,
            )
            .order_by(
                case(
                    (CertificationArtifact.status == ArtifactStatus.ACTIVE.value, 0),
                    else_=1,
                ),
                CertificationArtifact.issued_at.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()
        return artifact.to_dto() if artifact else None

    def artifacts_for_asset(self, asset_id: UUID) -> list[ArtifactRef]:
        rows = self.session.execute(
            select(CertificationArtifact)
            .where(CertificationArtifact.asset_id == asset_id)
            .order_by(CertificationArtifact.issued_at)
        ).scalars()
        return [a.to_dto() for a in rows]

    def audit_trail(self, asset_id: UUID) -> list[WorkflowLogRecord]:
        rows = self.session.execute(
            select(WorkflowLogEntry)
            .where(WorkflowLogEntry.asset_id == asset_id)
            .order_by(WorkflowLogEntry.seq)
        ).scalars()
        return [e.to_dto() for e in rows]

    def pending_tasks(self, role: ActorRole) -> list[AssetRecord]:
        """
        Doors waiting on the given role.

        inspector: not yet inspected, or rejected and awaiting re-inspection
        engineer:  completed inspections awaiting review or certification
        admin:     certified doors not yet released
        client:    released certificates not yet accepted or rejected
        """
        stmt = select(Asset).order_by(Asset.updated_at, Asset.serial_number)
        if role is ActorRole.INSPECTOR:
            stmt = stmt.where(
                Asset.inspection_status == InspectionStatus.PENDING.value,
                Asset.certification_status.in_(
                    [CertificationStatus.PENDING.value, CertificationStatus.REJECTED.value]
                ),
            )
        elif role is ActorRole.ENGINEER:
            stmt = stmt.where(
                Asset.inspection_status == InspectionStatus.COMPLETED.value,
                Asset.certification_status.in_(
                    [CertificationStatus.PENDING.value, CertificationStatus.UNDER_REVIEW.value]
                ),
            )
        elif role is ActorRole.ADMIN:
            stmt = stmt.where(
                Asset.certification_status == CertificationStatus.CERTIFIED.value,
                Asset.release_status == ReleaseStatus.NOT_RELEASED.value,
            )
        else:
            stmt = stmt.where(
                Asset.certification_status == CertificationStatus.CERTIFIED.value,
                Asset.release_status.in_(
                    [ReleaseStatus.RELEASED.value, ReleaseStatus.DOWNLOADED.value]
                ),
            )
        return [a.to_dto() for a in self.session.execute(stmt).scalars()]
