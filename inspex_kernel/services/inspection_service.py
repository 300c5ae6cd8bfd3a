"""
InspectionService -- lifecycle of one inspection attempt against a door.

Responsibility:
    start_inspection, update_check and complete_inspection.  Each runs as
    its own unit of work; completion is logged and announced to engineers
    after the commit point.

Architecture position:
    Kernel > Services -- owns transaction boundaries (WorkflowComponent).

Invariants enforced:
    - At most one in_progress session per door.  start_inspection re-checks
      inside the transaction and the asset UPDATE is version-conditional;
      the partial unique index uq_inspection_sessions_one_active backs it.
    - A session completes only when every check is explicitly evaluated.
    - Re-inspecting a rejected door supersedes its completed sessions at
      start; the rejection reason is cleared only when the new session
      completes.

Failure modes:
    - ActiveInspectionExistsError (Conflict) for a second start.
    - InspectionSessionNotFoundError when the session is not in_progress.
    - ChecksIncompleteError (PreconditionFailed) on early completion.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select

from inspex_kernel.domain.actor import Actor, ActorRole
from inspex_kernel.domain.dtos import CheckRecord, Notification, NotificationKind, SessionRecord
from inspex_kernel.domain.workflow import (
    DOOR_CERTIFICATION_WORKFLOW,
    CertificationStatus,
    InspectionStatus,
    Operation,
    SessionStatus,
    WorkflowAction,
    require_role,
)
from inspex_kernel.exceptions import (
    ActiveInspectionExistsError,
    ChecksIncompleteError,
    EmptyChecklistError,
    InspectionPointNotFoundError,
    InspectionSessionNotFoundError,
)
from inspex_kernel.logging_config import LogContext, get_logger
from inspex_kernel.models.inspection import InspectionCheck, InspectionSession
from inspex_kernel.services.base import WorkflowComponent
from inspex_kernel.services.template_store import TemplateStore

logger = get_logger("services.inspection")


class InspectionService(WorkflowComponent):
    """
    Inspection Session Manager.

    Contract:
        Moves ``inspection_status`` (and, on completion of a rejected door's
        re-inspection, resets ``certification_status`` to pending).  Never
        touches certificate artifacts.
    """

    workflow = DOOR_CERTIFICATION_WORKFLOW

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def start_inspection(self, actor: Actor, asset_id: UUID) -> SessionRecord:
        """
        Open a new in_progress session with one unset check per active point.

        Postconditions:
            - asset.inspection_status = in_progress
            - For a rejected door, every previously completed session is
              superseded.

        Raises:
            ActiveInspectionExistsError: A session is already in progress.
            InvalidTransitionError: The door is under review or certified.
            EmptyChecklistError: The checklist has no active points.
        """
        require_role(actor, WorkflowAction.START_INSPECTION)

        with LogContext.bind(
            actor_id=actor.actor_id, asset_id=asset_id, transition="start_inspection",
        ):
            with self._transaction(
                "start_inspection",
                asset_id,
                on_integrity_error=lambda: ActiveInspectionExistsError(str(asset_id)),
            ) as session:
                asset = self._load_asset(session, asset_id)

                active = session.execute(
                    select(InspectionSession.id).where(
                        InspectionSession.asset_id == asset_id,
                        InspectionSession.status == SessionStatus.IN_PROGRESS.value,
                    )
                ).scalar_one_or_none()
                if active is not None or asset.inspection_status == InspectionStatus.IN_PROGRESS.value:
                    raise ActiveInspectionExistsError(str(asset_id), active)

                transition = self.workflow.resolve(
                    WorkflowAction.START_INSPECTION, asset.state, asset_id,
                )

                points = TemplateStore(session).active_points()
                if not points:
                    raise EmptyChecklistError(str(asset_id))

                now = self._clock.now()
                superseded: list[str] = []
                if asset.certification_status == CertificationStatus.REJECTED.value:
                    superseded = self._supersede_completed_sessions(session, asset_id)

                attempt = (
                    session.execute(
                        select(func.max(InspectionSession.attempt)).where(
                            InspectionSession.asset_id == asset_id
                        )
                    ).scalar_one_or_none()
                    or 0
                ) + 1

                inspection = InspectionSession(
                    asset_id=asset_id,
                    inspector_id=actor.actor_id,
                    attempt=attempt,
                    status=SessionStatus.IN_PROGRESS.value,
                    started_at=now,
                    checks=[
                        InspectionCheck(point=point, order_index=point.order_index)
                        for point in points
                    ],
                )
                session.add(inspection)

                asset.apply_state(transition.apply(asset.state))
                asset.updated_by_id = actor.actor_id
                session.flush()

                record = inspection.to_dto()

            logger.info(
                "inspection_started",
                extra={
                    "session_id": str(record.session_id),
                    "check_count": len(record.checks),
                    "superseded_sessions": superseded,
                },
            )
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.START_INSPECTION.value,
                actor=actor,
                session_id=record.session_id,
                payload={
                    "check_count": len(record.checks),
                    "superseded_sessions": superseded,
                },
            )
            return record

    def _supersede_completed_sessions(self, session, asset_id: UUID) -> list[str]:
        completed = session.execute(
            select(InspectionSession).where(
                InspectionSession.asset_id == asset_id,
                InspectionSession.status == SessionStatus.COMPLETED.value,
            )
        ).scalars().all()
        now = self._clock.now()
        for old in completed:
            old.status = SessionStatus.SUPERSEDED.value
            old.superseded_at = now
        return [str(old.id) for old in completed]

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------

    def update_check(
        self,
        actor: Actor,
        session_id: UUID,
        point_id: UUID,
        is_checked: bool | None,
        notes: str | None = None,
        photo_ref: str | None = None,
    ) -> CheckRecord:
        """
        Record the result of one checklist point.  Points may be updated in
        any order and more than once while the session is in progress.

        Raises:
            InspectionSessionNotFoundError: No in_progress session with this id.
            InspectionPointNotFoundError: The point does not exist.
        """
        require_role(actor, Operation.UPDATE_CHECK)

        with LogContext.bind(actor_id=actor.actor_id, session_id=session_id):
            inspection_asset = None
            with self._transaction("update_check", session_id) as session:
                inspection = self._load_in_progress(session, session_id)
                inspection_asset = inspection.asset_id

                check = session.execute(
                    select(InspectionCheck).where(
                        InspectionCheck.session_id == session_id,
                        InspectionCheck.point_id == point_id,
                    )
                ).scalar_one_or_none()
                if check is None:
                    point = TemplateStore(session).get_point(point_id)
                    if not point.is_active:
                        raise InspectionPointNotFoundError(str(point_id))
                    check = InspectionCheck(
                        session_id=session_id,
                        point=point,
                        order_index=point.order_index,
                    )
                    session.add(check)

                check.is_checked = is_checked
                if notes is not None:
                    check.notes = notes
                if photo_ref is not None:
                    check.photo_ref = photo_ref
                check.checked_at = self._clock.now()
                session.flush()
                record = check.to_dto()

            logger.debug(
                "inspection_check_updated",
                extra={
                    "asset_id": str(inspection_asset),
                    "point_id": str(point_id),
                    "is_checked": is_checked,
                },
            )
            return record

    # ------------------------------------------------------------------
    # complete
    # ------------------------------------------------------------------

    def complete_inspection(
        self,
        actor: Actor,
        session_id: UUID,
        notes: str | None = None,
    ) -> SessionRecord:
        """
        Close the session once every check is explicitly true or false.

        Postconditions:
            - session.status = completed, asset.inspection_status = completed
            - A rejected door returns to certification_status = pending with
              its rejection_reason cleared.

        Raises:
            InspectionSessionNotFoundError: No in_progress session with this id.
            ChecksIncompleteError: At least one check is unset.
        """
        require_role(actor, WorkflowAction.COMPLETE_INSPECTION)

        with LogContext.bind(
            actor_id=actor.actor_id, session_id=session_id, transition="complete_inspection",
        ):
            with self._transaction("complete_inspection", session_id) as session:
                inspection = self._load_in_progress(session, session_id)
                unset = [c.point.name for c in inspection.checks if c.is_checked is None]
                if unset:
                    raise ChecksIncompleteError(str(session_id), unset)

                asset = self._load_asset(session, inspection.asset_id)
                transition = self.workflow.resolve(
                    WorkflowAction.COMPLETE_INSPECTION, asset.state, asset.id,
                )
                cleared_rejection = asset.rejection_reason

                inspection.status = SessionStatus.COMPLETED.value
                inspection.completed_at = self._clock.now()
                inspection.notes = notes

                asset.apply_state(transition.apply(asset.state))
                asset.rejection_reason = None
                asset.updated_by_id = actor.actor_id
                session.flush()

                record = inspection.to_dto()
                asset_record = asset.to_dto()

            passed = sum(1 for c in record.checks if c.is_checked)
            failed = len(record.checks) - passed
            expected_by = self._expected_by(transition)
            logger.info(
                "inspection_completed",
                extra={
                    "asset_id": str(asset_record.asset_id),
                    "passed": passed,
                    "failed": failed,
                    "cleared_rejection": cleared_rejection is not None,
                },
            )
            self._after_commit(
                asset_id=asset_record.asset_id,
                action=WorkflowAction.COMPLETE_INSPECTION.value,
                actor=actor,
                session_id=session_id,
                payload={
                    "passed": passed,
                    "failed": failed,
                    "notes": notes,
                    "cleared_rejection_reason": cleared_rejection,
                    "expected_by": expected_by,
                },
                notification=Notification(
                    kind=NotificationKind.INSPECTION_COMPLETED,
                    asset=asset_record,
                    actor=actor,
                    recipient_roles=frozenset({ActorRole.ENGINEER}),
                    details={
                        "session_id": str(session_id),
                        "passed": passed,
                        "failed": failed,
                        "notes": notes,
                        "expected_by": expected_by,
                    },
                ),
            )
            return record

    @staticmethod
    def _load_in_progress(session, session_id: UUID) -> InspectionSession:
        inspection = session.execute(
            select(InspectionSession)
            .where(InspectionSession.id == session_id)
            .with_for_update()
        ).scalar_one_or_none()
        if inspection is None or inspection.status != SessionStatus.IN_PROGRESS.value:
            raise InspectionSessionNotFoundError(
                str(session_id), SessionStatus.IN_PROGRESS.value,
            )
        return inspection
