"""
Certification Transition Engine.

Every certification-side transition through the workflow: review,
certify, reject, delete, release and the client handoff.
"""

from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy import text

from inspex_kernel.db.engine import session_scope
from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.domain.dtos import NotificationKind
from inspex_kernel.domain.workflow import (
    ArtifactStatus,
    CertificationStatus,
    InspectionStatus,
    ReleaseStatus,
)
from inspex_kernel.exceptions import (
    ArtifactNotFoundError,
    AssetNotFoundError,
    ConcurrentModificationError,
    DocumentReadError,
    FailedChecksError,
    InvalidTransitionError,
    RejectionReasonRequiredError,
    RoleNotPermittedError,
)
from tests.conftest import SIGNATURE_PNG


@pytest.fixture
def inspected(asset_factory, run_inspection):
    """A door with a completed, all-pass inspection."""
    asset = asset_factory()
    run_inspection(asset.asset_id)
    return asset


@pytest.fixture
def released(workflow, certified_asset, admin):
    asset, artifact = certified_asset
    workflow.release_to_client(admin, asset.asset_id)
    return asset, artifact


class TestOpenForReview:

    def test_pending_to_under_review(self, workflow, inspected, engineer):
        record = workflow.open_for_review(engineer, inspected.asset_id)
        assert record.certification_status is CertificationStatus.UNDER_REVIEW
        assert workflow.audit_trail(inspected.asset_id)[-1].action == "open_for_review"

    def test_twice_is_invalid(self, workflow, inspected, engineer):
        workflow.open_for_review(engineer, inspected.asset_id)
        with pytest.raises(InvalidTransitionError):
            workflow.open_for_review(engineer, inspected.asset_id)

    def test_requires_completed_inspection(self, workflow, asset_factory, engineer):
        asset = asset_factory()
        with pytest.raises(InvalidTransitionError):
            workflow.open_for_review(engineer, asset.asset_id)


class TestCertify:

    def test_creates_artifact_and_certifies(self, workflow, inspected, engineer, storage):
        artifact = workflow.certify(engineer, inspected.asset_id)

        assert artifact.status is ArtifactStatus.ACTIVE
        assert artifact.engineer_id == engineer.actor_id
        assert artifact.storage_key.startswith("certificates/certificate-")
        assert artifact.dedupe_key == f"certify:{inspected.asset_id}:{artifact.session_id}"
        assert storage.get(artifact.storage_key).startswith(b"%PDF")

        record = workflow.get_asset(inspected.asset_id)
        assert record.certification_status is CertificationStatus.CERTIFIED
        assert record.inspection_status is InspectionStatus.COMPLETED
        assert workflow.latest_artifact(inspected.asset_id) == artifact

    def test_from_under_review(self, workflow, inspected, engineer):
        workflow.open_for_review(engineer, inspected.asset_id)
        workflow.certify(engineer, inspected.asset_id)
        assert workflow.get_asset(inspected.asset_id).certification_status is CertificationStatus.CERTIFIED

    def test_admins_notified_with_attachment(self, workflow, inspected, engineer, recording_sink):
        artifact = workflow.certify(engineer, inspected.asset_id)

        notification = recording_sink.sent[-1]
        assert notification.kind is NotificationKind.CERTIFIED
        assert notification.recipient_roles == frozenset({ActorRole.ADMIN})
        assert notification.attachment_key == artifact.storage_key
        assert notification.details["engineer"] == "Eli Engineer"
        assert notification.details["expected_by"] == "2024-01-02"

    def test_log_entry(self, workflow, inspected, engineer):
        artifact = workflow.certify(engineer, inspected.asset_id)
        entry = workflow.audit_trail(inspected.asset_id)[-1]

        assert entry.action == "certify"
        assert entry.actor_id == engineer.actor_id
        assert entry.actor_role == "engineer"
        assert entry.session_id == artifact.session_id
        assert entry.payload["artifact_id"] == str(artifact.artifact_id)
        assert entry.payload["has_signature"] is False

    def test_failed_check_blocks(self, workflow, asset_factory, run_inspection, engineer, storage):
        asset = asset_factory()
        run_inspection(asset.asset_id, failing=("Confirm Welding on Hinges",))

        with pytest.raises(FailedChecksError) as exc_info:
            workflow.certify(engineer, asset.asset_id)

        assert exc_info.value.failed_points == ["Confirm Welding on Hinges"]
        assert workflow.get_asset(asset.asset_id).certification_status is CertificationStatus.PENDING
        assert storage.keys() == []
        assert workflow.latest_artifact(asset.asset_id) is None

    def test_uninspected_door(self, workflow, asset_factory, engineer):
        asset = asset_factory()
        with pytest.raises(InvalidTransitionError):
            workflow.certify(engineer, asset.asset_id)

    def test_unknown_door(self, workflow, engineer):
        with pytest.raises(AssetNotFoundError):
            workflow.certify(engineer, uuid4())

    def test_inspector_cannot_certify(self, workflow, inspected, inspector):
        with pytest.raises(RoleNotPermittedError):
            workflow.certify(inspector, inspected.asset_id)

    def test_retry_returns_existing_artifact(self, workflow, inspected, engineer, storage, captured_logs):
        first = workflow.certify(engineer, inspected.asset_id)
        second = workflow.certify(engineer, inspected.asset_id)

        assert second.artifact_id == first.artifact_id
        assert len(storage.keys()) == 1
        assert [e.action for e in workflow.audit_trail(inspected.asset_id)].count("certify") == 1
        assert any(r["message"] == "certify_deduplicated" for r in captured_logs())

    def test_signature_from_profile(self, workflow, inspected, engineer, identity):
        identity.add(replace(identity.get_profile(engineer.actor_id), signature=SIGNATURE_PNG))
        artifact = workflow.certify(engineer, inspected.asset_id)
        assert artifact.has_signature is True

    def test_explicit_signature(self, workflow, inspected, engineer):
        artifact = workflow.certify(engineer, inspected.asset_id, signature=SIGNATURE_PNG)
        assert artifact.has_signature is True


class TestReject:

    @pytest.mark.parametrize("open_review", [False, True])
    def test_reject_records_reason(self, workflow, inspected, engineer, open_review):
        if open_review:
            workflow.open_for_review(engineer, inspected.asset_id)

        record = workflow.reject(engineer, inspected.asset_id, "  weld defect ")

        assert record.certification_status is CertificationStatus.REJECTED
        assert record.inspection_status is InspectionStatus.PENDING
        assert record.rejection_reason == "weld defect"

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_blank_reason(self, workflow, inspected, engineer, reason):
        with pytest.raises(RejectionReasonRequiredError):
            workflow.reject(engineer, inspected.asset_id, reason)
        assert workflow.get_asset(inspected.asset_id).certification_status is CertificationStatus.PENDING

    def test_unknown_door_before_reason(self, workflow, engineer):
        with pytest.raises(AssetNotFoundError):
            workflow.reject(engineer, uuid4(), "")

    def test_certified_door_cannot_be_rejected(self, workflow, certified_asset, engineer):
        asset, _ = certified_asset
        with pytest.raises(InvalidTransitionError):
            workflow.reject(engineer, asset.asset_id, "changed my mind")

    def test_notifies_inspectors_engineers_admins(self, workflow, inspected, engineer, recording_sink):
        workflow.reject(engineer, inspected.asset_id, "weld defect")
        notification = recording_sink.sent[-1]
        assert notification.kind is NotificationKind.REJECTED
        assert notification.recipient_roles == frozenset(
            {ActorRole.INSPECTOR, ActorRole.ENGINEER, ActorRole.ADMIN}
        )
        assert notification.details["reason"] == "weld defect"

    def test_sessions_untouched(self, workflow, inspected, engineer):
        before = workflow.latest_completed_session(inspected.asset_id)
        workflow.reject(engineer, inspected.asset_id, "weld defect")
        assert workflow.latest_completed_session(inspected.asset_id) == before


class TestDeleteCertificate:

    def test_removes_artifact_and_document(self, workflow, certified_asset, admin, storage):
        asset, artifact = certified_asset

        record = workflow.delete_certificate(admin, artifact.artifact_id)

        assert record.certification_status is CertificationStatus.PENDING
        assert record.release_status is ReleaseStatus.NOT_RELEASED
        assert workflow.latest_artifact(asset.asset_id) is None
        assert not storage.exists(artifact.storage_key)
        entry = workflow.audit_trail(asset.asset_id)[-1]
        assert entry.action == "delete_certificate"
        assert entry.payload["document_purged"] is True

    def test_after_release(self, workflow, released, admin):
        asset, artifact = released
        record = workflow.delete_certificate(admin, artifact.artifact_id)
        assert record.release_status is ReleaseStatus.NOT_RELEASED

    def test_admin_only(self, workflow, certified_asset, engineer):
        _, artifact = certified_asset
        with pytest.raises(RoleNotPermittedError):
            workflow.delete_certificate(engineer, artifact.artifact_id)

    def test_unknown_artifact(self, workflow, admin):
        with pytest.raises(ArtifactNotFoundError):
            workflow.delete_certificate(admin, uuid4())

    def test_deleted_twice(self, workflow, certified_asset, admin):
        _, artifact = certified_asset
        workflow.delete_certificate(admin, artifact.artifact_id)
        with pytest.raises(ArtifactNotFoundError):
            workflow.delete_certificate(admin, artifact.artifact_id)

    def test_storage_failure_defers_purge(self, workflow, certified_asset, admin, storage):
        asset, artifact = certified_asset
        storage.fail_on.add("delete")

        record = workflow.delete_certificate(admin, artifact.artifact_id)

        assert record.certification_status is CertificationStatus.PENDING
        assert workflow.latest_artifact(asset.asset_id) is None
        assert workflow.consistency_report() == []
        assert storage.exists(artifact.storage_key)
        assert workflow.audit_trail(asset.asset_id)[-1].payload["document_purged"] is False

        assert workflow.purge_pending_documents() == 0
        storage.fail_on.clear()
        assert workflow.purge_pending_documents() == 1
        assert not storage.exists(artifact.storage_key)
        assert workflow.purge_pending_documents() == 0

    def test_door_can_be_recertified(self, workflow, certified_asset, admin, engineer):
        asset, artifact = certified_asset
        workflow.delete_certificate(admin, artifact.artifact_id)

        again = workflow.certify(engineer, asset.asset_id)

        assert again.artifact_id != artifact.artifact_id
        assert again.session_id == artifact.session_id


class TestClientHandoff:

    def test_release_notifies_client(self, workflow, certified_asset, admin, recording_sink):
        asset, artifact = certified_asset
        record = workflow.release_to_client(admin, asset.asset_id)

        assert record.release_status is ReleaseStatus.RELEASED
        notification = recording_sink.sent[-1]
        assert notification.kind is NotificationKind.RELEASED
        assert notification.recipient_roles == frozenset({ActorRole.CLIENT})
        assert notification.attachment_key == artifact.storage_key
        assert notification.details["expected_by"] == "2024-01-08"

    def test_release_requires_certificate(self, workflow, inspected, admin):
        with pytest.raises(InvalidTransitionError):
            workflow.release_to_client(admin, inspected.asset_id)

    def test_download_then_accept(self, workflow, released, client_actor, storage):
        asset, artifact = released

        download = workflow.client_download(client_actor, asset.asset_id)
        assert download.content == storage.get(artifact.storage_key)
        assert download.filename == artifact.storage_key.rsplit("/", 1)[-1]
        assert download.artifact.artifact_id == artifact.artifact_id
        assert workflow.get_asset(asset.asset_id).release_status is ReleaseStatus.DOWNLOADED

        # downloading again is allowed
        workflow.client_download(client_actor, asset.asset_id)

        record = workflow.client_accept(client_actor, asset.asset_id)
        assert record.release_status is ReleaseStatus.ACCEPTED
        assert record.certification_status is CertificationStatus.CERTIFIED

    def test_download_before_release(self, workflow, certified_asset, client_actor):
        asset, _ = certified_asset
        with pytest.raises(InvalidTransitionError):
            workflow.client_download(client_actor, asset.asset_id)

    def test_download_read_failure_leaves_status(self, workflow, released, client_actor, storage):
        asset, _ = released
        storage.fail_on.add("get")

        with pytest.raises(DocumentReadError):
            workflow.client_download(client_actor, asset.asset_id)
        assert workflow.get_asset(asset.asset_id).release_status is ReleaseStatus.RELEASED

    def test_document_read_holds_no_connection(
        self, workflow, released, client_actor, storage, engine, monkeypatch
    ):
        asset, _ = released
        checked_out = []
        read = storage.get

        def _get(ref):
            checked_out.append(engine.pool.checkedout())
            return read(ref)

        monkeypatch.setattr(storage, "get", _get)
        workflow.client_download(client_actor, asset.asset_id)
        assert checked_out == [0]

    def test_certificate_replaced_during_read(self, workflow, released, client_actor, storage, monkeypatch):
        asset, artifact = released
        read = storage.get

        def _get(ref):
            content = read(ref)
            with session_scope(workflow.session_factory) as session:
                session.execute(
                    text("UPDATE certification_artifacts SET id = :new WHERE id = :old"),
                    {"new": str(uuid4()), "old": str(artifact.artifact_id)},
                )
            return content

        monkeypatch.setattr(storage, "get", _get)
        with pytest.raises(ConcurrentModificationError):
            workflow.client_download(client_actor, asset.asset_id)
        assert workflow.get_asset(asset.asset_id).release_status is ReleaseStatus.RELEASED

    def test_staff_cannot_use_client_actions(self, workflow, released, admin):
        asset, _ = released
        with pytest.raises(RoleNotPermittedError):
            workflow.client_download(admin, asset.asset_id)

    def test_client_reject_supersedes_certificate(
        self, workflow, released, client_actor, storage, recording_sink
    ):
        asset, artifact = released

        record = workflow.client_reject(client_actor, asset.asset_id, "wrong PO number")

        assert record.certification_status is CertificationStatus.REJECTED
        assert record.inspection_status is InspectionStatus.PENDING
        assert record.release_status is ReleaseStatus.NOT_RELEASED
        assert record.rejection_reason == "wrong PO number"
        latest = workflow.latest_artifact(asset.asset_id)
        assert latest.artifact_id == artifact.artifact_id
        assert latest.status is ArtifactStatus.SUPERSEDED
        assert storage.exists(artifact.storage_key)
        assert workflow.consistency_report() == []

        notification = recording_sink.sent[-1]
        assert notification.kind is NotificationKind.CLIENT_REJECTED
        assert notification.recipient_roles == frozenset({ActorRole.ENGINEER, ActorRole.ADMIN})
        assert notification.details["expected_by"] == "2024-01-03"

    def test_client_reject_requires_comments(self, workflow, released, client_actor):
        asset, _ = released
        with pytest.raises(RejectionReasonRequiredError):
            workflow.client_reject(client_actor, asset.asset_id, " ")
        assert workflow.get_asset(asset.asset_id).release_status is ReleaseStatus.RELEASED

    def test_recertify_after_client_rejection(
        self, workflow, released, client_actor, run_inspection, engineer
    ):
        asset, artifact = released
        workflow.client_reject(client_actor, asset.asset_id, "wrong PO number")

        run_inspection(asset.asset_id)
        new = workflow.certify(engineer, asset.asset_id)

        assert new.artifact_id != artifact.artifact_id
        assert new.session_id != artifact.session_id
        assert workflow.latest_artifact(asset.asset_id) == new


class TestFetchCertificate:

    def test_engineer_reads_without_transition(self, workflow, certified_asset, engineer):
        asset, artifact = certified_asset
        trail_before = workflow.audit_trail(asset.asset_id)

        doc = workflow.fetch_certificate(engineer, asset.asset_id)

        assert doc.content.startswith(b"%PDF")
        assert doc.artifact == artifact
        assert workflow.audit_trail(asset.asset_id) == trail_before

    def test_client_must_use_download(self, workflow, certified_asset, client_actor):
        asset, _ = certified_asset
        with pytest.raises(RoleNotPermittedError):
            workflow.fetch_certificate(client_actor, asset.asset_id)

    def test_no_certificate(self, workflow, inspected, admin):
        with pytest.raises(ArtifactNotFoundError):
            workflow.fetch_certificate(admin, inspected.asset_id)
