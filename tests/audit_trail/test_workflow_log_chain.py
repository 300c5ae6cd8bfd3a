"""
Workflow Audit Log.

Verifies:
- Entries are appended after commit, in transition order, with a
  continuous hash chain
- Tampering with a stored entry is detected by validate_chain
- Entries cannot be updated or deleted through the ORM
- A failing log append never undoes a committed transition
"""

from uuid import uuid4

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError

from inspex_kernel.db.engine import session_scope
from inspex_kernel.domain.workflow import CertificationStatus
from inspex_kernel.exceptions import (
    AuditChainBrokenError,
    ImmutabilityViolationError,
    InvalidTransitionError,
)
from inspex_kernel.models.workflow_log import WorkflowLogEntry
from inspex_kernel.services.workflow_log_service import WorkflowLogService, WorkflowLogWriter


class TestAppend:

    def test_full_workflow_trail(self, workflow, certified_asset, admin, client_actor):
        asset, _ = certified_asset
        workflow.release_to_client(admin, asset.asset_id)
        workflow.client_download(client_actor, asset.asset_id)
        workflow.client_accept(client_actor, asset.asset_id)

        trail = workflow.audit_trail(asset.asset_id)

        assert [e.action for e in trail] == [
            "start_inspection",
            "complete_inspection",
            "certify",
            "release_to_client",
            "client_download",
            "client_accept",
        ]
        assert [e.seq for e in trail] == sorted(e.seq for e in trail)
        assert trail[0].actor_role == "inspector"
        assert trail[-1].actor_id == client_actor.actor_id

    def test_chain_links(self, workflow, certified_asset):
        asset, _ = certified_asset
        trail = workflow.audit_trail(asset.asset_id)

        assert trail[0].prev_hash is None
        for prev, entry in zip(trail, trail[1:]):
            assert entry.prev_hash == prev.hash
        assert workflow.validate_audit_chain() is True

    def test_chain_spans_doors(self, workflow, asset_factory, run_inspection):
        first, second = asset_factory(), asset_factory()
        run_inspection(first.asset_id)
        run_inspection(second.asset_id)

        last_of_first = workflow.audit_trail(first.asset_id)[-1]
        first_of_second = workflow.audit_trail(second.asset_id)[0]
        assert first_of_second.prev_hash == last_of_first.hash
        assert workflow.validate_audit_chain() is True

    def test_failed_operation_leaves_no_entry(self, workflow, asset_factory, engineer):
        asset = asset_factory()
        with pytest.raises(InvalidTransitionError):
            workflow.certify(engineer, asset.asset_id)
        assert workflow.audit_trail(asset.asset_id) == []

    def test_empty_log_is_valid(self, workflow):
        assert workflow.validate_audit_chain() is True


class TestTamperDetection:

    def _tamper(self, workflow, statement, **params):
        with session_scope(workflow.session_factory) as session:
            session.execute(text(statement), params)

    def test_altered_action(self, workflow, certified_asset):
        asset, _ = certified_asset
        target = workflow.audit_trail(asset.asset_id)[1]
        self._tamper(
            workflow,
            "UPDATE workflow_log_entries SET action = 'start_inspection' WHERE seq = :seq",
            seq=target.seq,
        )

        with pytest.raises(AuditChainBrokenError) as exc_info:
            workflow.validate_audit_chain()
        assert exc_info.value.entry_id == str(target.entry_id)

    def test_altered_actor(self, workflow, certified_asset):
        asset, _ = certified_asset
        target = next(e for e in workflow.audit_trail(asset.asset_id) if e.action == "certify")
        self._tamper(
            workflow,
            "UPDATE workflow_log_entries SET actor_id = :other WHERE seq = :seq",
            other=str(uuid4()),
            seq=target.seq,
        )

        with pytest.raises(AuditChainBrokenError) as exc_info:
            workflow.validate_audit_chain()
        assert exc_info.value.entry_id == str(target.entry_id)

    def test_altered_timestamp(self, workflow, certified_asset):
        asset, _ = certified_asset
        target = next(e for e in workflow.audit_trail(asset.asset_id) if e.action == "certify")
        self._tamper(
            workflow,
            "UPDATE workflow_log_entries SET occurred_at = '2001-01-01 00:00:00.000000' WHERE seq = :seq",
            seq=target.seq,
        )

        with pytest.raises(AuditChainBrokenError):
            workflow.validate_audit_chain()

    def test_broken_link(self, workflow, certified_asset):
        asset, _ = certified_asset
        target = workflow.audit_trail(asset.asset_id)[-1]
        self._tamper(
            workflow,
            "UPDATE workflow_log_entries SET prev_hash = :fake WHERE seq = :seq",
            fake="0" * 64,
            seq=target.seq,
        )

        with pytest.raises(AuditChainBrokenError):
            workflow.validate_audit_chain()

    def test_removed_entry(self, workflow, certified_asset):
        asset, _ = certified_asset
        target = workflow.audit_trail(asset.asset_id)[1]
        self._tamper(workflow, "DELETE FROM workflow_log_entries WHERE seq = :seq", seq=target.seq)

        with pytest.raises(AuditChainBrokenError):
            workflow.validate_audit_chain()


class TestImmutability:

    def test_orm_update_rejected(self, workflow, certified_asset):
        asset, _ = certified_asset
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(workflow.session_factory) as session:
                entry = session.execute(
                    select(WorkflowLogEntry).where(WorkflowLogEntry.asset_id == asset.asset_id)
                ).scalars().first()
                entry.action = "rewritten"

    def test_orm_delete_rejected(self, workflow, certified_asset):
        asset, _ = certified_asset
        with pytest.raises(ImmutabilityViolationError):
            with session_scope(workflow.session_factory) as session:
                entry = session.execute(
                    select(WorkflowLogEntry).where(WorkflowLogEntry.asset_id == asset.asset_id)
                ).scalars().first()
                session.delete(entry)

        assert workflow.validate_audit_chain() is True


class TestWriter:

    def test_append_failure_is_swallowed(self, inspector, captured_logs):
        def broken_factory():
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        writer = WorkflowLogWriter(broken_factory)

        assert writer.record(asset_id=uuid4(), action="certify", actor=inspector) is None
        failures = [r for r in captured_logs() if r["message"] == "workflow_log_append_failed"]
        assert failures and failures[0]["level"] == "CRITICAL"

    def test_transition_survives_log_failure(self, workflow, asset_factory, run_inspection, engineer, monkeypatch):
        asset = asset_factory()
        run_inspection(asset.asset_id)
        before = len(workflow.audit_trail(asset.asset_id))

        def fail_append(self, *args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(WorkflowLogService, "append", fail_append)
        artifact = workflow.certify(engineer, asset.asset_id)
        monkeypatch.undo()

        assert workflow.get_asset(asset.asset_id).certification_status is CertificationStatus.CERTIFIED
        assert workflow.latest_artifact(asset.asset_id) == artifact
        assert len(workflow.audit_trail(asset.asset_id)) == before
