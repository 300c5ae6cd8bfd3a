"""
InspexWorkflow -- composition root for the door-certification workflow.

Responsibility:
    Builds every kernel component from an ``InspexConfig`` (or from
    explicitly supplied collaborators) and exposes the full operation set
    behind one object: registry, checklist, inspection, certification and
    read-side queries.

Architecture position:
    Services -- the only place where kernel services, storage, identity
    and notification sinks are constructed.  The kernel itself never
    constructs its own dependencies.

Failure modes:
    - Kernel errors propagate unchanged to the caller.
    - A serial number registered concurrently by another writer surfaces
      as DuplicateAssetError.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any
from uuid import UUID

from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from inspex_config.bridges import (
    build_checklist_seed,
    build_expected_offsets,
    build_generator_options,
)
from inspex_config.schema import InspexConfig
from inspex_kernel.db.engine import (
    create_session_factory,
    create_tables,
    make_engine,
    session_scope,
)
from inspex_kernel.domain.actor import Actor, ActorRole
from inspex_kernel.domain.clock import Clock, SystemClock
from inspex_kernel.domain.dtos import (
    ArtifactRef,
    AssetRecord,
    AssetSpec,
    CheckRecord,
    DownloadedCertificate,
    InspectionPointRecord,
    SessionRecord,
    WorkflowLogRecord,
)
from inspex_kernel.domain.ports import IdentityDirectory, NotificationSink, ObjectStorage
from inspex_kernel.domain.workflow import CertificationStatus
from inspex_kernel.exceptions import DuplicateAssetError
from inspex_kernel.logging_config import get_logger
from inspex_kernel.selectors.consistency_selector import ConsistencySelector, ConsistencyViolation
from inspex_kernel.selectors.workflow_selector import WorkflowSelector
from inspex_kernel.services.artifact_generator import ArtifactGenerator
from inspex_kernel.services.asset_registry import AssetRegistry, generate_serial_number
from inspex_kernel.services.certification_engine import CertificationEngine
from inspex_kernel.services.inspection_service import InspectionService
from inspex_kernel.services.notification_dispatcher import NotificationDispatcher
from inspex_kernel.services.template_store import TemplateStore
from inspex_kernel.services.workflow_log_service import WorkflowLogService, WorkflowLogWriter
from inspex_services.email_notifier import LoggingNotificationSink, SmtpNotificationSink
from inspex_services.identity import StaticIdentityDirectory
from inspex_services.storage import InMemoryObjectStorage, LocalObjectStorage

logger = get_logger("services.workflow")


def build_storage(config: InspexConfig) -> ObjectStorage:
    if config.storage.backend == "memory":
        return InMemoryObjectStorage()
    return LocalObjectStorage(Path(config.storage.root))


def build_sinks(
    config: InspexConfig,
    identity: IdentityDirectory | None,
    storage: ObjectStorage,
) -> list[NotificationSink]:
    settings = config.notifications
    if not settings.enabled:
        return []
    sinks: list[NotificationSink] = [LoggingNotificationSink()]
    if settings.smtp.has_credentials:
        sinks.append(
            SmtpNotificationSink(
                settings.smtp,
                recipients=settings.recipients,
                identity=identity,
                storage=storage,
            )
        )
    return sinks


class InspexWorkflow:
    """
    All workflow operations over one store.

    Contract:
        Callers pass an authenticated ``Actor``; every write operation
        returns the new state as a frozen record.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        storage: ObjectStorage,
        identity: IdentityDirectory | None = None,
        sinks: Sequence[NotificationSink] = (),
        clock: Clock | None = None,
        expected_offsets: Mapping[str, int] | None = None,
        generator_options: Mapping[str, Any] | None = None,
        synchronous_notifications: bool = False,
        max_notification_workers: int = 2,
        engine: Engine | None = None,
    ):
        self.session_factory = session_factory
        self.storage = storage
        self.identity = identity
        self.clock = clock or SystemClock()
        self.engine = engine

        self.dispatcher = NotificationDispatcher(
            sinks,
            max_workers=max_notification_workers,
            synchronous=synchronous_notifications,
        )
        self.log_writer = WorkflowLogWriter(session_factory, self.clock)
        self.generator = ArtifactGenerator(storage, clock=self.clock, **dict(generator_options or {}))

        self.inspections = InspectionService(
            session_factory,
            self.log_writer,
            self.dispatcher,
            clock=self.clock,
            expected_offsets=expected_offsets,
        )
        self.certification = CertificationEngine(
            session_factory,
            storage,
            self.generator,
            self.log_writer,
            self.dispatcher,
            identity=identity,
            clock=self.clock,
            expected_offsets=expected_offsets,
        )

    @classmethod
    def from_config(
        cls,
        config: InspexConfig,
        storage: ObjectStorage | None = None,
        identity: IdentityDirectory | None = None,
        sinks: Sequence[NotificationSink] | None = None,
        clock: Clock | None = None,
        create_schema: bool = True,
        seed_checklist: bool = True,
    ) -> InspexWorkflow:
        """Build the workflow from configuration, creating tables and seeding the checklist."""
        engine = make_engine(
            config.database.url,
            echo=config.database.echo,
            busy_timeout=config.database.busy_timeout,
        )
        if create_schema:
            create_tables(engine)

        storage = storage or build_storage(config)
        identity = identity or StaticIdentityDirectory()
        if sinks is None:
            sinks = build_sinks(config, identity, storage)

        workflow = cls(
            create_session_factory(engine),
            storage,
            identity=identity,
            sinks=sinks,
            clock=clock,
            expected_offsets=build_expected_offsets(config),
            generator_options=build_generator_options(config),
            synchronous_notifications=config.notifications.synchronous,
            max_notification_workers=config.notifications.max_workers,
            engine=engine,
        )
        if seed_checklist:
            workflow.seed_checklist(build_checklist_seed(config))
        logger.info(
            "workflow_initialized",
            extra={"storage_backend": config.storage.backend, "sink_count": len(sinks)},
        )
        return workflow

    def close(self) -> None:
        self.dispatcher.shutdown()
        if self.engine is not None:
            self.engine.dispose()

    # ------------------------------------------------------------------
    # registry
    # ------------------------------------------------------------------

    def register_asset(self, actor: Actor, spec: AssetSpec) -> AssetRecord:
        try:
            with session_scope(self.session_factory) as session:
                return AssetRegistry(session).register(actor, spec)
        except IntegrityError as exc:
            serial = spec.serial_number or generate_serial_number(spec.door_number, spec.size)
            raise DuplicateAssetError(serial) from exc

    def get_asset(self, asset_id: UUID) -> AssetRecord:
        with session_scope(self.session_factory) as session:
            return AssetRegistry(session).get(asset_id)

    def get_asset_by_serial(self, serial_number: str) -> AssetRecord:
        with session_scope(self.session_factory) as session:
            return AssetRegistry(session).get_by_serial(serial_number)

    def list_assets(
        self, certification_status: CertificationStatus | None = None
    ) -> list[AssetRecord]:
        with session_scope(self.session_factory) as session:
            return AssetRegistry(session).list_assets(certification_status)

    # ------------------------------------------------------------------
    # checklist template
    # ------------------------------------------------------------------

    def list_inspection_points(self) -> list[InspectionPointRecord]:
        with session_scope(self.session_factory) as session:
            return TemplateStore(session).list_inspection_points()

    def add_inspection_point(
        self, actor: Actor, name: str, description: str, order_index: int
    ) -> InspectionPointRecord:
        with session_scope(self.session_factory) as session:
            return TemplateStore(session).add_point(actor, name, description, order_index)

    def deactivate_point(self, actor: Actor, point_id: UUID) -> InspectionPointRecord:
        with session_scope(self.session_factory) as session:
            return TemplateStore(session).deactivate_point(actor, point_id)

    def seed_checklist(self, points: Iterable[Mapping[str, object]]) -> int:
        with session_scope(self.session_factory) as session:
            return TemplateStore(session).seed_default_points(points)

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------

    def start_inspection(self, actor: Actor, asset_id: UUID) -> SessionRecord:
        return self.inspections.start_inspection(actor, asset_id)

    def update_check(
        self,
        actor: Actor,
        session_id: UUID,
        point_id: UUID,
        is_checked: bool | None,
        notes: str | None = None,
        photo_ref: str | None = None,
    ) -> CheckRecord:
        return self.inspections.update_check(
            actor, session_id, point_id, is_checked, notes=notes, photo_ref=photo_ref,
        )

    def complete_inspection(
        self, actor: Actor, session_id: UUID, notes: str | None = None
    ) -> SessionRecord:
        return self.inspections.complete_inspection(actor, session_id, notes=notes)

    # ------------------------------------------------------------------
    # certification
    # ------------------------------------------------------------------

    def open_for_review(self, actor: Actor, asset_id: UUID) -> AssetRecord:
        return self.certification.open_for_review(actor, asset_id)

    def certify(self, actor: Actor, asset_id: UUID, signature: bytes | None = None) -> ArtifactRef:
        return self.certification.certify(actor, asset_id, signature=signature)

    def reject(self, actor: Actor, asset_id: UUID, reason: str) -> AssetRecord:
        return self.certification.reject(actor, asset_id, reason)

    def delete_certificate(self, actor: Actor, artifact_id: UUID) -> AssetRecord:
        return self.certification.delete_certificate(actor, artifact_id)

    def release_to_client(self, actor: Actor, asset_id: UUID) -> AssetRecord:
        return self.certification.release_to_client(actor, asset_id)

    def client_download(self, actor: Actor, asset_id: UUID) -> DownloadedCertificate:
        return self.certification.client_download(actor, asset_id)

    def client_accept(self, actor: Actor, asset_id: UUID) -> AssetRecord:
        return self.certification.client_accept(actor, asset_id)

    def client_reject(self, actor: Actor, asset_id: UUID, comments: str) -> AssetRecord:
        return self.certification.client_reject(actor, asset_id, comments)

    def fetch_certificate(self, actor: Actor, asset_id: UUID) -> DownloadedCertificate:
        return self.certification.fetch_certificate(actor, asset_id)

    def purge_pending_documents(self) -> int:
        return self.certification.purge_pending_documents()

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def latest_session(self, asset_id: UUID) -> SessionRecord | None:
        with session_scope(self.session_factory) as session:
            return WorkflowSelector(session).latest_session(asset_id)

    def latest_completed_session(self, asset_id: UUID) -> SessionRecord | None:
        with session_scope(self.session_factory) as session:
            return WorkflowSelector(session).latest_completed_session(asset_id)

    def session_checks(self, session_id: UUID) -> tuple[CheckRecord, ...]:
        with session_scope(self.session_factory) as session:
            return WorkflowSelector(session).get_session(session_id).checks

    def latest_artifact(self, asset_id: UUID) -> ArtifactRef | None:
        with session_scope(self.session_factory) as session:
            return WorkflowSelector(session).latest_artifact(asset_id)

    def audit_trail(self, asset_id: UUID) -> list[WorkflowLogRecord]:
        with session_scope(self.session_factory) as session:
            return WorkflowSelector(session).audit_trail(asset_id)

    def pending_tasks(self, role: ActorRole) -> list[AssetRecord]:
        with session_scope(self.session_factory) as session:
            return WorkflowSelector(session).pending_tasks(role)

    def consistency_report(self) -> list[ConsistencyViolation]:
        with session_scope(self.session_factory) as session:
            return ConsistencySelector(session).find_all()

    def validate_audit_chain(self) -> bool:
        with session_scope(self.session_factory) as session:
            return WorkflowLogService(session, self.clock).validate_chain()

    def flush_notifications(self, timeout: float | None = 10.0) -> None:
        self.dispatcher.flush(timeout)
