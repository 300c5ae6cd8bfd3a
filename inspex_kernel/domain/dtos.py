"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable records returned by every kernel operation and query.  ORM
    models convert themselves with ``to_dto()``; services never hand ORM
    instances to callers, so a returned record cannot lazily reach back into
    a closed session.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Data flow:
    AssetSpec -> AssetRecord
    start_inspection -> SessionRecord(checks=CheckRecord...)
    certify -> ArtifactRef
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from inspex_kernel.domain.actor import Actor, ActorRole
from inspex_kernel.domain.workflow import (
    ArtifactStatus,
    AssetState,
    CertificationStatus,
    InspectionStatus,
    ReleaseStatus,
    SessionStatus,
)


@dataclass(frozen=True)
class AssetSpec:
    """Registration input for a door.  serial_number is derived when omitted."""

    door_number: str
    size: str
    pressure_kpa: int
    drawing_number: str | None = None
    serial_number: str | None = None
    description: str | None = None
    job_number: str | None = None
    po_number: str | None = None
    door_type: str | None = None


@dataclass(frozen=True)
class AssetRecord:
    asset_id: UUID
    serial_number: str
    door_number: str
    size: str
    pressure_kpa: int
    drawing_number: str | None
    description: str | None
    job_number: str | None
    po_number: str | None
    door_type: str | None
    inspection_status: InspectionStatus
    certification_status: CertificationStatus
    release_status: ReleaseStatus
    rejection_reason: str | None
    version: int

    @property
    def state(self) -> AssetState:
        return AssetState(
            self.inspection_status, self.certification_status, self.release_status
        )


@dataclass(frozen=True)
class InspectionPointRecord:
    point_id: UUID
    name: str
    description: str
    order_index: int
    is_active: bool = True


@dataclass(frozen=True)
class CheckRecord:
    check_id: UUID
    session_id: UUID
    point_id: UUID
    point_name: str
    point_description: str
    order_index: int
    is_checked: bool | None
    notes: str | None
    photo_ref: str | None
    checked_at: datetime | None

    @property
    def evaluated(self) -> bool:
        return self.is_checked is not None


@dataclass(frozen=True)
class SessionRecord:
    session_id: UUID
    asset_id: UUID
    inspector_id: UUID
    attempt: int
    status: SessionStatus
    started_at: datetime
    completed_at: datetime | None
    notes: str | None
    checks: tuple[CheckRecord, ...] = ()

    @property
    def unset_points(self) -> list[str]:
        return [c.point_name for c in self.checks if not c.evaluated]

    @property
    def failed_points(self) -> list[str]:
        return [c.point_name for c in self.checks if c.is_checked is False]


@dataclass(frozen=True)
class ArtifactRef:
    """Stable reference to a certificate document and its record."""

    artifact_id: UUID
    asset_id: UUID
    session_id: UUID
    engineer_id: UUID
    storage_key: str
    issued_at: datetime
    status: ArtifactStatus
    dedupe_key: str
    has_signature: bool = False


@dataclass(frozen=True)
class DocumentRef:
    """Where the artifact generator stored a rendered certificate."""

    storage_key: str
    filename: str
    size_bytes: int


@dataclass(frozen=True)
class DownloadedCertificate:
    artifact: ArtifactRef
    filename: str
    content: bytes


@dataclass(frozen=True)
class WorkflowLogRecord:
    entry_id: UUID
    seq: int
    asset_id: UUID
    session_id: UUID | None
    action: str
    actor_id: UUID
    actor_role: str
    occurred_at: datetime
    payload: dict[str, Any]
    hash: str
    prev_hash: str | None


@dataclass(frozen=True)
class ActorProfile:
    """What the identity directory knows about an actor."""

    actor_id: UUID
    name: str
    role: ActorRole
    email: str | None = None
    signature: bytes | None = None
    is_active: bool = True


@dataclass(frozen=True)
class CertificateContent:
    """Everything the artifact generator renders.  No store access needed."""

    asset: AssetRecord
    session: SessionRecord
    engineer: ActorProfile
    inspector_name: str
    issued_at: datetime
    signature: bytes | None = None


class NotificationKind(str, Enum):
    INSPECTION_COMPLETED = "inspection_completed"
    CERTIFIED = "certified"
    REJECTED = "rejected"
    RELEASED = "released_to_client"
    CLIENT_REJECTED = "client_rejected"


@dataclass(frozen=True)
class Notification:
    """Advisory message about a committed transition."""

    kind: NotificationKind
    asset: AssetRecord
    actor: Actor
    recipient_roles: frozenset[ActorRole]
    details: dict[str, Any] = field(default_factory=dict)
    attachment_key: str | None = None
