"""
CertificationEngine -- the certification transition engine.

Responsibility:
    Executes every certification-side transition of a door: open for review,
    certify, reject, delete certificate, release to client, client download,
    client accept and client reject.  Each is validated against the
    transition table in ``domain.workflow`` and committed as one unit of
    work; the workflow log entry and notification follow the commit.

Architecture position:
    Kernel > Services -- owns transaction boundaries (WorkflowComponent).

Invariants enforced:
    - Certificate binding: the artifact row and the certified status are
      written in the same transaction; the document itself is written
      before that transaction and deleted again if it does not commit
      (saga with a compensating delete).
    - Idempotent certify: a repeated certify for the same door and the same
      latest session returns the existing artifact (dedupe key).
    - Conditional writes: the status update is version-checked, so a
      concurrent writer that committed first turns this one into a Conflict.
    - Delete is mark-then-purge: the artifact is marked purging and the
      status reset in one transaction, the document is deleted next, and
      the row last.  An interrupted purge is finished by
      ``purge_pending_documents``.

Failure modes:
    - FailedChecksError / ChecksIncompleteError / InvalidTransitionError /
      RejectionReasonRequiredError (PreconditionFailed).
    - DocumentWriteError (StorageError): nothing committed.
    - CommitFailedError (Transient): document written but the record commit
      failed; the document was deleted (best effort) and the caller may retry.
    - ConcurrentModificationError (Conflict): another writer won the race.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from inspex_kernel.db.engine import session_scope
from inspex_kernel.domain.actor import Actor, ActorRole
from inspex_kernel.domain.clock import Clock
from inspex_kernel.domain.dtos import (
    ActorProfile,
    ArtifactRef,
    AssetRecord,
    CertificateContent,
    DownloadedCertificate,
    Notification,
    NotificationKind,
)
from inspex_kernel.domain.ports import IdentityDirectory, ObjectStorage
from inspex_kernel.domain.workflow import (
    DOOR_CERTIFICATION_WORKFLOW,
    ArtifactStatus,
    Operation,
    Transition,
    WorkflowAction,
    require_role,
)
from inspex_kernel.exceptions import (
    ArtifactNotFoundError,
    ChecksIncompleteError,
    ConcurrentModificationError,
    ConflictError,
    DocumentReadError,
    FailedChecksError,
    NoCompletedInspectionError,
    RejectionReasonRequiredError,
    StorageError,
)
from inspex_kernel.logging_config import LogContext, get_logger
from inspex_kernel.models.asset import Asset
from inspex_kernel.models.certification import CertificationArtifact
from inspex_kernel.selectors.workflow_selector import WorkflowSelector
from inspex_kernel.services.artifact_generator import ArtifactGenerator
from inspex_kernel.services.base import WorkflowComponent
from inspex_kernel.utils.idempotency import certify_dedupe_key

logger = get_logger("services.certification_engine")

_REVIEW_ROLES = frozenset({ActorRole.INSPECTOR, ActorRole.ENGINEER, ActorRole.ADMIN})


class CertificationEngine(WorkflowComponent):
    """
    Certification Transition Engine.

    Contract:
        Every public method takes an already authenticated ``Actor`` whose
        role is trusted, and returns the new state (AssetRecord, ArtifactRef
        or DownloadedCertificate) or raises a typed InspexKernelError.
    """

    workflow = DOOR_CERTIFICATION_WORKFLOW

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        storage: ObjectStorage,
        generator: ArtifactGenerator,
        log_writer,
        dispatcher,
        identity: IdentityDirectory | None = None,
        clock: Clock | None = None,
        expected_offsets: Mapping[str, int] | None = None,
    ):
        super().__init__(
            session_factory,
            log_writer,
            dispatcher,
            clock=clock,
            expected_offsets=expected_offsets,
        )
        self._storage = storage
        self._generator = generator
        self._identity = identity

    # ------------------------------------------------------------------
    # review
    # ------------------------------------------------------------------

    def open_for_review(self, actor: Actor, asset_id: UUID) -> AssetRecord:
        """completed/pending -> completed/under_review."""
        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="open_for_review"):
            record, transition, _ = self._run_transition(
                actor, asset_id, WorkflowAction.OPEN_FOR_REVIEW,
            )
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.OPEN_FOR_REVIEW.value,
                actor=actor,
                payload={"expected_by": self._expected_by(transition)},
            )
            return record

    def reject(self, actor: Actor, asset_id: UUID, reason: str) -> AssetRecord:
        """
        completed/{pending,under_review} -> pending/rejected.

        Records the reason on the door.  Sessions and artifacts are not
        touched; the next start_inspection supersedes the completed session.

        Raises:
            RejectionReasonRequiredError: reason is blank.
        """
        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="reject"):
            reason = (reason or "").strip()

            def _record_reason(session: Session, asset: Asset) -> dict[str, Any]:
                if not reason:
                    raise RejectionReasonRequiredError(str(asset_id))
                asset.rejection_reason = reason
                return {}

            record, _, _ = self._run_transition(
                actor, asset_id, WorkflowAction.REJECT, prepare=_record_reason,
            )
            logger.info("asset_rejected", extra={"reason": reason})
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.REJECT.value,
                actor=actor,
                payload={"reason": reason},
                notification=Notification(
                    kind=NotificationKind.REJECTED,
                    asset=record,
                    actor=actor,
                    recipient_roles=_REVIEW_ROLES,
                    details={"reason": reason},
                ),
            )
            return record

    # ------------------------------------------------------------------
    # certify
    # ------------------------------------------------------------------

    def certify(
        self,
        actor: Actor,
        asset_id: UUID,
        signature: bytes | None = None,
    ) -> ArtifactRef:
        """
        Issue the certificate for the door's latest completed session.

        Steps:
            1. Validate (role, state, latest session, all checks true) and
               snapshot the door's version.  A certify already committed for
               the same session is returned as-is.
            2. Render and store the document.  Failure: nothing committed.
            3. In one transaction, re-check the version, insert the artifact
               and set certified.  Failure: delete the document, then raise.

        Raises:
            FailedChecksError: Any check of the latest completed session is false.
            NoCompletedInspectionError: No completed session exists.
            DocumentWriteError: The document could not be stored.
            CommitFailedError: The record commit failed (retry is safe).
            ConcurrentModificationError: Another writer changed the door.
        """
        require_role(actor, WorkflowAction.CERTIFY)

        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="certify"):
            # 1. validate and snapshot
            with self._transaction("certify", asset_id) as session:
                asset = self._load_asset(session, asset_id)
                selector = WorkflowSelector(session)
                latest = selector.latest_completed_session(asset_id)

                if latest is not None:
                    existing = self._find_by_dedupe_key(
                        session, certify_dedupe_key(asset_id, latest.session_id),
                    )
                    if existing is not None:
                        logger.info(
                            "certify_deduplicated",
                            extra={"artifact_id": str(existing.artifact_id)},
                        )
                        return existing

                transition = self.workflow.resolve(WorkflowAction.CERTIFY, asset.state, asset_id)
                if latest is None:
                    raise NoCompletedInspectionError(str(asset_id))
                if latest.unset_points:
                    raise ChecksIncompleteError(str(latest.session_id), latest.unset_points)
                if latest.failed_points:
                    raise FailedChecksError(
                        str(asset_id), str(latest.session_id), latest.failed_points,
                    )

                snapshot = asset.to_dto()

            engineer = self._profile(actor.actor_id, actor.label, ActorRole.ENGINEER)
            inspector = self._profile(latest.inspector_id, str(latest.inspector_id), ActorRole.INSPECTOR)
            signature = signature if signature is not None else engineer.signature
            issued_at = self._clock.now()
            dedupe_key = certify_dedupe_key(asset_id, latest.session_id)

            # 2. document first; an unreferenced document is harmless
            document = self._generator.generate(
                CertificateContent(
                    asset=snapshot,
                    session=latest,
                    engineer=engineer,
                    inspector_name=inspector.name,
                    issued_at=issued_at,
                    signature=signature,
                )
            )

            # 3. artifact record + status, atomically
            try:
                with self._transaction("certify", asset_id) as session:
                    asset = self._load_asset(session, asset_id)
                    if asset.version != snapshot.version:
                        raise ConcurrentModificationError("Asset", str(asset_id), "certify")
                    artifact = CertificationArtifact(
                        asset_id=asset_id,
                        session_id=latest.session_id,
                        engineer_id=actor.actor_id,
                        storage_key=document.storage_key,
                        issued_at=issued_at,
                        status=ArtifactStatus.ACTIVE.value,
                        dedupe_key=dedupe_key,
                        has_signature=bool(signature),
                    )
                    session.add(artifact)
                    asset.apply_state(transition.apply(asset.state))
                    asset.updated_by_id = actor.actor_id
                    session.flush()
                    ref = artifact.to_dto()
                    record = asset.to_dto()
            except ConflictError:
                self._discard_document(document.storage_key)
                winner = self._committed_by_other_writer(dedupe_key)
                if winner is not None:
                    return winner
                raise
            except Exception:
                self._discard_document(document.storage_key)
                raise

            expected_by = self._expected_by(transition)
            logger.info(
                "certify_committed",
                extra={
                    "artifact_id": str(ref.artifact_id),
                    "storage_key": ref.storage_key,
                    "session_id": str(latest.session_id),
                },
            )
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.CERTIFY.value,
                actor=actor,
                session_id=latest.session_id,
                payload={
                    "artifact_id": ref.artifact_id,
                    "storage_key": ref.storage_key,
                    "dedupe_key": dedupe_key,
                    "has_signature": ref.has_signature,
                    "expected_by": expected_by,
                },
                notification=Notification(
                    kind=NotificationKind.CERTIFIED,
                    asset=record,
                    actor=actor,
                    recipient_roles=frozenset({ActorRole.ADMIN}),
                    details={
                        "artifact_id": str(ref.artifact_id),
                        "engineer": engineer.name,
                        "expected_by": expected_by,
                    },
                    attachment_key=ref.storage_key,
                ),
            )
            return ref

    def _committed_by_other_writer(self, dedupe_key: str) -> ArtifactRef | None:
        """After losing a race, return the artifact the winner committed for the same session."""
        with session_scope(self._session_factory) as session:
            winner = self._find_by_dedupe_key(session, dedupe_key)
        if winner is not None:
            logger.info(
                "certify_deduplicated_after_race",
                extra={"artifact_id": str(winner.artifact_id)},
            )
        return winner

    def _discard_document(self, storage_key: str) -> None:
        """Compensating action for a certify whose record did not commit."""
        try:
            self._storage.delete(storage_key)
        except StorageError:
            logger.error(
                "orphan_document_cleanup_failed",
                extra={"storage_key": storage_key},
                exc_info=True,
            )
            return
        logger.warning("orphan_document_deleted", extra={"storage_key": storage_key})

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------

    def delete_certificate(self, actor: Actor, artifact_id: UUID) -> AssetRecord:
        """
        Administrative delete: completed/certified -> completed/pending.

        Mark-then-purge: the artifact is marked purging and the status reset
        in one transaction; then the document is deleted; then the row.  If
        the document delete fails the row stays purging (it no longer counts
        as the door's certificate) and ``purge_pending_documents`` finishes
        the job later.
        """
        require_role(actor, WorkflowAction.DELETE_CERTIFICATE)

        with LogContext.bind(actor_id=actor.actor_id, transition="delete_certificate"):
            with self._transaction("delete_certificate", artifact_id) as session:
                artifact = session.execute(
                    select(CertificationArtifact).where(
                        CertificationArtifact.id == artifact_id,
                        CertificationArtifact.status == ArtifactStatus.ACTIVE.value,
                    )
                ).scalar_one_or_none()
                if artifact is None:
                    raise ArtifactNotFoundError(str(artifact_id))

                asset = self._load_asset(session, artifact.asset_id)
                transition = self.workflow.resolve(
                    WorkflowAction.DELETE_CERTIFICATE, asset.state, asset.id,
                )
                artifact.status = ArtifactStatus.PURGING.value
                artifact.superseded_at = self._clock.now()
                artifact.superseded_reason = "deleted"
                asset.apply_state(transition.apply(asset.state))
                asset.updated_by_id = actor.actor_id
                session.flush()

                storage_key = artifact.storage_key
                record = asset.to_dto()

            purged = self._purge(artifact_id, storage_key)
            logger.info(
                "certificate_deleted",
                extra={"artifact_id": str(artifact_id), "purged": purged},
            )
            self._after_commit(
                asset_id=record.asset_id,
                action=WorkflowAction.DELETE_CERTIFICATE.value,
                actor=actor,
                payload={
                    "artifact_id": artifact_id,
                    "storage_key": storage_key,
                    "document_purged": purged,
                },
            )
            return record

    def purge_pending_documents(self) -> int:
        """Finish interrupted deletes.  Returns the number of artifacts purged."""
        with session_scope(self._session_factory) as session:
            pending = session.execute(
                select(CertificationArtifact.id, CertificationArtifact.storage_key).where(
                    CertificationArtifact.status == ArtifactStatus.PURGING.value
                )
            ).all()
        return sum(1 for artifact_id, key in pending if self._purge(artifact_id, key))

    def _purge(self, artifact_id: UUID, storage_key: str) -> bool:
        try:
            self._storage.delete(storage_key)
        except StorageError:
            logger.warning(
                "certificate_purge_deferred",
                extra={"artifact_id": str(artifact_id), "storage_key": storage_key},
                exc_info=True,
            )
            return False
        try:
            with session_scope(self._session_factory) as session:
                artifact = session.get(CertificationArtifact, artifact_id)
                if artifact is not None and artifact.status == ArtifactStatus.PURGING.value:
                    session.delete(artifact)
        except SQLAlchemyError:
            # Row stays purging; purge_pending_documents retries the delete
            # against an already-missing document.
            logger.error(
                "certificate_row_purge_failed",
                extra={"artifact_id": str(artifact_id), "storage_key": storage_key},
                exc_info=True,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # release / client handoff
    # ------------------------------------------------------------------

    def release_to_client(self, actor: Actor, asset_id: UUID) -> AssetRecord:
        """certified/not_released -> certified/released_to_client."""
        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="release_to_client"):

            def _require_artifact(session: Session, asset: Asset) -> dict[str, Any]:
                artifact = self._load_active_artifact(session, asset_id)
                return {"storage_key": artifact.storage_key, "artifact_id": artifact.id}

            record, transition, found = self._run_transition(
                actor, asset_id, WorkflowAction.RELEASE_TO_CLIENT, prepare=_require_artifact,
            )
            expected_by = self._expected_by(transition)
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.RELEASE_TO_CLIENT.value,
                actor=actor,
                payload={"artifact_id": found["artifact_id"], "expected_by": expected_by},
                notification=Notification(
                    kind=NotificationKind.RELEASED,
                    asset=record,
                    actor=actor,
                    recipient_roles=frozenset({ActorRole.CLIENT}),
                    details={"expected_by": expected_by},
                    attachment_key=found["storage_key"],
                ),
            )
            return record

    def client_download(self, actor: Actor, asset_id: UUID) -> DownloadedCertificate:
        """
        Return the released certificate and mark it downloaded.

        The document is read between two transactions, with no lock held:
        a storage failure leaves the door released but not downloaded, and
        an artifact replaced during the read turns into a Conflict.
        """
        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="client_download"):
            require_role(actor, WorkflowAction.CLIENT_DOWNLOAD)
            with session_scope(self._session_factory) as session:
                asset = self._load_asset(session, asset_id)
                self.workflow.resolve(WorkflowAction.CLIENT_DOWNLOAD, asset.state, asset_id)
                artifact: ArtifactRef = self._load_active_artifact(session, asset_id).to_dto()

            content = self._read_document(artifact.storage_key)

            def _same_artifact(session: Session, asset: Asset) -> dict[str, Any]:
                current = self._load_active_artifact(session, asset_id)
                if current.id != artifact.artifact_id:
                    raise ConcurrentModificationError(
                        "CertificationArtifact", str(artifact.artifact_id), "client_download",
                    )
                return {}

            self._run_transition(
                actor, asset_id, WorkflowAction.CLIENT_DOWNLOAD, prepare=_same_artifact,
            )
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.CLIENT_DOWNLOAD.value,
                actor=actor,
                payload={"artifact_id": artifact.artifact_id},
            )
            return DownloadedCertificate(
                artifact=artifact,
                filename=artifact.storage_key.rsplit("/", 1)[-1],
                content=content,
            )

    def client_accept(self, actor: Actor, asset_id: UUID) -> AssetRecord:
        """certified/client_downloaded -> certified/client_accepted."""
        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="client_accept"):
            record, _, _ = self._run_transition(actor, asset_id, WorkflowAction.CLIENT_ACCEPT)
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.CLIENT_ACCEPT.value,
                actor=actor,
            )
            return record

    def client_reject(self, actor: Actor, asset_id: UUID, comments: str) -> AssetRecord:
        """
        Client refuses a released certificate: -> pending/rejected.

        The active artifact is superseded in the same transaction, so the
        door stops being certified and stops having a current certificate
        together.  The document is kept for dispute resolution.
        """
        with LogContext.bind(actor_id=actor.actor_id, asset_id=asset_id, transition="client_reject"):
            comments = (comments or "").strip()

            def _supersede(session: Session, asset: Asset) -> dict[str, Any]:
                if not comments:
                    raise RejectionReasonRequiredError(str(asset_id))
                artifact = self._load_active_artifact(session, asset_id)
                artifact.status = ArtifactStatus.SUPERSEDED.value
                artifact.superseded_at = self._clock.now()
                artifact.superseded_reason = comments
                asset.rejection_reason = comments
                return {"artifact_id": artifact.id}

            record, transition, found = self._run_transition(
                actor, asset_id, WorkflowAction.CLIENT_REJECT, prepare=_supersede,
            )
            expected_by = self._expected_by(transition)
            logger.info("client_rejected_certificate", extra={"reason": comments})
            self._after_commit(
                asset_id=asset_id,
                action=WorkflowAction.CLIENT_REJECT.value,
                actor=actor,
                payload={
                    "artifact_id": found["artifact_id"],
                    "comments": comments,
                    "expected_by": expected_by,
                },
                notification=Notification(
                    kind=NotificationKind.CLIENT_REJECTED,
                    asset=record,
                    actor=actor,
                    recipient_roles=frozenset({ActorRole.ENGINEER, ActorRole.ADMIN}),
                    details={"comments": comments, "expected_by": expected_by},
                ),
            )
            return record

    def fetch_certificate(self, actor: Actor, asset_id: UUID) -> DownloadedCertificate:
        """Staff read of the current certificate.  No transition, no log entry."""
        require_role(actor, Operation.FETCH_CERTIFICATE)
        with session_scope(self._session_factory) as session:
            artifact = self._load_active_artifact(session, asset_id).to_dto()
        return DownloadedCertificate(
            artifact=artifact,
            filename=artifact.storage_key.rsplit("/", 1)[-1],
            content=self._read_document(artifact.storage_key),
        )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _run_transition(
        self,
        actor: Actor,
        asset_id: UUID,
        action: WorkflowAction,
        prepare: Callable[[Session, Asset], dict[str, Any]] | None = None,
    ) -> tuple[AssetRecord, Transition, dict[str, Any]]:
        """Resolve, run ``prepare`` inside the transaction, apply, commit."""
        require_role(actor, action)
        with self._transaction(action.value, asset_id) as session:
            asset = self._load_asset(session, asset_id)
            transition = self.workflow.resolve(action, asset.state, asset_id)
            found = prepare(session, asset) if prepare else {}
            asset.apply_state(transition.apply(asset.state))
            asset.updated_by_id = actor.actor_id
            session.flush()
            record = asset.to_dto()
        logger.info(
            "workflow_transition",
            extra={"action": action.value, "to_state": str(record.state)},
        )
        return record, transition, found

    @staticmethod
    def _load_active_artifact(session: Session, asset_id: UUID) -> CertificationArtifact:
        artifact = session.execute(
            select(CertificationArtifact).where(
                CertificationArtifact.asset_id == asset_id,
                CertificationArtifact.status == ArtifactStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()
        if artifact is None:
            raise ArtifactNotFoundError(f"active certificate for asset {asset_id}")
        return artifact

    @staticmethod
    def _find_by_dedupe_key(session: Session, dedupe_key: str) -> ArtifactRef | None:
        artifact = session.execute(
            select(CertificationArtifact).where(
                CertificationArtifact.dedupe_key == dedupe_key,
                CertificationArtifact.status == ArtifactStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()
        return artifact.to_dto() if artifact else None

    def _profile(self, actor_id: UUID, fallback_name: str, role: ActorRole) -> ActorProfile:
        profile = self._identity.get_profile(actor_id) if self._identity else None
        return profile or ActorProfile(actor_id=actor_id, name=fallback_name, role=role)

    def _read_document(self, storage_key: str) -> bytes:
        try:
            return self._storage.get(storage_key)
        except StorageError:
            raise
        except Exception as exc:
            raise DocumentReadError(storage_key, str(exc)) from exc
