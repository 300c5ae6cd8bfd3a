"""
Door certification state machine (``inspex_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing every status transition a door can make,
which roles may trigger it, which guard protects it, and which handoff
deadline it starts.  Services resolve a transition here before touching
the store; nothing outside this table may move a status field.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

State
-----
A door's state is the triple ``(inspection_status, certification_status,
release_status)``.  ``release_status`` only moves while the door is
certified and carries the administrator/client handoff:

    completed/pending --open_for_review--> completed/under_review
    completed/{pending,under_review} --certify--> completed/certified
    completed/{pending,under_review} --reject--> pending/rejected
    completed/certified --delete_certificate--> completed/pending
    certified/not_released --release_to_client--> released_to_client
    released_to_client --client_download--> client_downloaded
    client_downloaded --client_accept--> client_accepted
    {released_to_client,client_downloaded} --client_reject--> pending/rejected
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

from inspex_kernel.domain.actor import Actor, ActorRole
from inspex_kernel.exceptions import InvalidTransitionError, RoleNotPermittedError


class InspectionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class CertificationStatus(str, Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    CERTIFIED = "certified"
    REJECTED = "rejected"


class ReleaseStatus(str, Enum):
    NOT_RELEASED = "not_released"
    RELEASED = "released_to_client"
    DOWNLOADED = "client_downloaded"
    ACCEPTED = "client_accepted"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SUPERSEDED = "superseded"


class ArtifactStatus(str, Enum):
    """Lifecycle of a certificate artifact row.

    Only ACTIVE rows count towards the certified binding.  PURGING rows are
    waiting for their stored document to be deleted.
    """

    ACTIVE = "active"
    SUPERSEDED = "superseded"
    PURGING = "purging"


class WorkflowAction(str, Enum):
    START_INSPECTION = "start_inspection"
    COMPLETE_INSPECTION = "complete_inspection"
    OPEN_FOR_REVIEW = "open_for_review"
    CERTIFY = "certify"
    REJECT = "reject"
    DELETE_CERTIFICATE = "delete_certificate"
    RELEASE_TO_CLIENT = "release_to_client"
    CLIENT_DOWNLOAD = "client_download"
    CLIENT_ACCEPT = "client_accept"
    CLIENT_REJECT = "client_reject"


class Operation(str, Enum):
    """Gated operations that do not move a status field."""

    UPDATE_CHECK = "update_check"
    REGISTER_ASSET = "register_asset"
    MANAGE_CHECKLIST = "manage_checklist"
    FETCH_CERTIFICATE = "fetch_certificate"


@dataclass(frozen=True)
class AssetState:
    inspection: InspectionStatus
    certification: CertificationStatus
    release: ReleaseStatus = ReleaseStatus.NOT_RELEASED

    @classmethod
    def initial(cls) -> AssetState:
        return cls(InspectionStatus.PENDING, CertificationStatus.PENDING)

    def __str__(self) -> str:
        text = f"{self.inspection.value}/{self.certification.value}"
        if self.release is not ReleaseStatus.NOT_RELEASED:
            text += f"/{self.release.value}"
        return text


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only: the service that executes the transition evaluates it.
    """
    name: str
    description: str


ALL_CHECKS_EVALUATED = Guard(
    "all_checks_evaluated",
    "Every check in the session is explicitly true or false",
)
ALL_CHECKS_PASSED = Guard(
    "all_checks_passed",
    "Every check in the latest completed session is true",
)
REASON_PRESENT = Guard(
    "reason_present",
    "A non-blank reason or comment accompanies the rejection",
)
ARTIFACT_EXISTS = Guard(
    "artifact_exists",
    "An active certificate artifact exists for the door",
)

_INSPECTORS = frozenset({ActorRole.INSPECTOR, ActorRole.ADMIN})
_REVIEWERS = frozenset({ActorRole.ENGINEER, ActorRole.ADMIN})
_ADMINS = frozenset({ActorRole.ADMIN})
_CLIENTS = frozenset({ActorRole.CLIENT})


@dataclass(frozen=True)
class Transition:
    """A valid move of the door's state triple.

    ``to_*`` fields left as None keep the current value.  ``expected_by``
    names the workflow deadline (in ``WorkflowSettings``) that starts when
    the transition commits.
    """
    action: WorkflowAction
    from_inspection: frozenset[InspectionStatus]
    from_certification: frozenset[CertificationStatus]
    from_release: frozenset[ReleaseStatus]
    allowed_roles: frozenset[ActorRole]
    to_inspection: InspectionStatus | None = None
    to_certification: CertificationStatus | None = None
    to_release: ReleaseStatus | None = None
    guard: Guard | None = None
    expected_by: str | None = None

    def matches(self, state: AssetState) -> bool:
        return (
            state.inspection in self.from_inspection
            and state.certification in self.from_certification
            and state.release in self.from_release
        )

    def apply(self, state: AssetState) -> AssetState:
        return replace(
            state,
            inspection=self.to_inspection or state.inspection,
            certification=self.to_certification or state.certification,
            release=self.to_release or state.release,
        )


_NOT_RELEASED = frozenset({ReleaseStatus.NOT_RELEASED})
_ANY_RELEASE = frozenset(ReleaseStatus)
_WITH_CLIENT = frozenset({ReleaseStatus.RELEASED, ReleaseStatus.DOWNLOADED})
_COMPLETED = frozenset({InspectionStatus.COMPLETED})
_REVIEWABLE = frozenset({CertificationStatus.PENDING, CertificationStatus.UNDER_REVIEW})
_CERTIFIED = frozenset({CertificationStatus.CERTIFIED})


TRANSITIONS: tuple[Transition, ...] = (
    Transition(
        action=WorkflowAction.START_INSPECTION,
        from_inspection=frozenset({InspectionStatus.PENDING, InspectionStatus.COMPLETED}),
        from_certification=frozenset({CertificationStatus.PENDING, CertificationStatus.REJECTED}),
        from_release=_NOT_RELEASED,
        allowed_roles=_INSPECTORS,
        to_inspection=InspectionStatus.IN_PROGRESS,
    ),
    Transition(
        action=WorkflowAction.COMPLETE_INSPECTION,
        from_inspection=frozenset({InspectionStatus.IN_PROGRESS}),
        from_certification=frozenset({CertificationStatus.PENDING, CertificationStatus.REJECTED}),
        from_release=_NOT_RELEASED,
        allowed_roles=_INSPECTORS,
        to_inspection=InspectionStatus.COMPLETED,
        to_certification=CertificationStatus.PENDING,
        guard=ALL_CHECKS_EVALUATED,
        expected_by="engineer_review",
    ),
    Transition(
        action=WorkflowAction.OPEN_FOR_REVIEW,
        from_inspection=_COMPLETED,
        from_certification=frozenset({CertificationStatus.PENDING}),
        from_release=_NOT_RELEASED,
        allowed_roles=_REVIEWERS,
        to_certification=CertificationStatus.UNDER_REVIEW,
        expected_by="engineer_review",
    ),
    Transition(
        action=WorkflowAction.CERTIFY,
        from_inspection=_COMPLETED,
        from_certification=_REVIEWABLE,
        from_release=_NOT_RELEASED,
        allowed_roles=_REVIEWERS,
        to_certification=CertificationStatus.CERTIFIED,
        guard=ALL_CHECKS_PASSED,
        expected_by="admin_release",
    ),
    Transition(
        action=WorkflowAction.REJECT,
        from_inspection=_COMPLETED,
        from_certification=_REVIEWABLE,
        from_release=_NOT_RELEASED,
        allowed_roles=_REVIEWERS,
        to_inspection=InspectionStatus.PENDING,
        to_certification=CertificationStatus.REJECTED,
        guard=REASON_PRESENT,
    ),
    Transition(
        action=WorkflowAction.DELETE_CERTIFICATE,
        from_inspection=_COMPLETED,
        from_certification=_CERTIFIED,
        from_release=_ANY_RELEASE,
        allowed_roles=_ADMINS,
        to_certification=CertificationStatus.PENDING,
        to_release=ReleaseStatus.NOT_RELEASED,
        guard=ARTIFACT_EXISTS,
    ),
    Transition(
        action=WorkflowAction.RELEASE_TO_CLIENT,
        from_inspection=_COMPLETED,
        from_certification=_CERTIFIED,
        from_release=_NOT_RELEASED,
        allowed_roles=_ADMINS,
        to_release=ReleaseStatus.RELEASED,
        guard=ARTIFACT_EXISTS,
        expected_by="client_response",
    ),
    Transition(
        action=WorkflowAction.CLIENT_DOWNLOAD,
        from_inspection=_COMPLETED,
        from_certification=_CERTIFIED,
        from_release=_WITH_CLIENT,
        allowed_roles=_CLIENTS,
        to_release=ReleaseStatus.DOWNLOADED,
        guard=ARTIFACT_EXISTS,
    ),
    Transition(
        action=WorkflowAction.CLIENT_ACCEPT,
        from_inspection=_COMPLETED,
        from_certification=_CERTIFIED,
        from_release=frozenset({ReleaseStatus.DOWNLOADED}),
        allowed_roles=_CLIENTS,
        to_release=ReleaseStatus.ACCEPTED,
    ),
    Transition(
        action=WorkflowAction.CLIENT_REJECT,
        from_inspection=_COMPLETED,
        from_certification=_CERTIFIED,
        from_release=_WITH_CLIENT,
        allowed_roles=_CLIENTS,
        to_inspection=InspectionStatus.PENDING,
        to_certification=CertificationStatus.REJECTED,
        to_release=ReleaseStatus.NOT_RELEASED,
        guard=REASON_PRESENT,
        expected_by="engineer_rereview",
    ),
)

OPERATION_ROLES: dict[Operation, frozenset[ActorRole]] = {
    Operation.UPDATE_CHECK: _INSPECTORS,
    Operation.REGISTER_ASSET: _ADMINS,
    Operation.MANAGE_CHECKLIST: _ADMINS,
    Operation.FETCH_CERTIFICATE: _REVIEWERS,
}


@dataclass(frozen=True)
class Workflow:
    """A fixed state machine definition for the door lifecycle."""
    name: str
    description: str
    initial_state: AssetState
    transitions: tuple[Transition, ...]

    def transition_for(self, action: WorkflowAction) -> tuple[Transition, ...]:
        return tuple(t for t in self.transitions if t.action is action)

    def resolve(
        self, action: WorkflowAction, state: AssetState, asset_id: object = "?"
    ) -> Transition:
        """Return the transition for ``action`` from ``state``.

        Raises:
            InvalidTransitionError: No transition for the action leaves ``state``.
        """
        for t in self.transition_for(action):
            if t.matches(state):
                return t
        raise InvalidTransitionError(str(asset_id), action.value, str(state))

    def available_actions(self, state: AssetState) -> list[WorkflowAction]:
        return [t.action for t in self.transitions if t.matches(state)]


DOOR_CERTIFICATION_WORKFLOW = Workflow(
    name="door_certification",
    description="Inspection, engineer certification and client release of a door",
    initial_state=AssetState.initial(),
    transitions=TRANSITIONS,
)


def require_role(
    actor: Actor, action: WorkflowAction | Operation
) -> None:
    """Raise RoleNotPermittedError unless ``actor.role`` may perform ``action``."""
    if isinstance(action, Operation):
        allowed = OPERATION_ROLES[action]
    else:
        allowed = frozenset().union(
            *(t.allowed_roles for t in DOOR_CERTIFICATION_WORKFLOW.transition_for(action))
        )
    if actor.role not in allowed:
        raise RoleNotPermittedError(
            action.value,
            actor.role.value,
            sorted(r.value for r in allowed),
        )
