"""
Workflow audit log -- append-only, hash-chained record of every transition.

Responsibility:
    ``WorkflowLogService`` appends entries within the caller's transaction
    (flush-only) and validates the hash chain.  ``WorkflowLogWriter`` is
    what the workflow components call after their commit point: it appends
    in a fresh transaction of its own and never lets a failure escape.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - An entry is only ever written after the transition it describes has
      committed, so the log never references a transition that did not happen.
    - seq comes from SequenceService's locked counter.
    - hash = H(seq | asset_id | session_id | action | actor_id | actor_role |
      occurred_at | payload_hash | prev_hash).

Failure modes:
    - AuditChainBrokenError from validate_chain() on tampering.
    - WorkflowLogWriter.record() swallows store failures after logging
      ``workflow_log_append_failed`` at CRITICAL: the transition is already
      committed and the log is forensic, not authoritative.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from inspex_kernel.db.engine import session_scope
from inspex_kernel.domain.actor import Actor
from inspex_kernel.domain.clock import Clock, SystemClock
from inspex_kernel.domain.dtos import WorkflowLogRecord
from inspex_kernel.exceptions import AuditChainBrokenError
from inspex_kernel.logging_config import get_logger
from inspex_kernel.models.workflow_log import WorkflowLogEntry
from inspex_kernel.services.base import BaseService
from inspex_kernel.services.sequence_service import SequenceService
from inspex_kernel.utils.hashing import hash_log_entry, hash_payload, to_json_safe

logger = get_logger("services.workflow_log")


class WorkflowLogService(BaseService):
    """
    Appends and verifies workflow log entries.

    Contract:
        Flush-only.  Entries are never updated or deleted (ORM listeners
        on WorkflowLogEntry raise ImmutabilityViolationError).
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def append(
        self,
        asset_id: UUID,
        action: str,
        actor: Actor,
        session_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> WorkflowLogEntry:
        """
        Append one entry, chained to the current tail.

        Postconditions:
            - A new row is flushed with the next seq and a valid chain link.
        """
        seq = self._sequence.next_value(SequenceService.WORKFLOW_LOG)
        prev_hash = self._last_hash()

        occurred_at = self._clock.now_utc()
        stored_payload = to_json_safe(payload or {})
        payload_hash = hash_payload(stored_payload)
        entry_hash = hash_log_entry(
            seq=seq,
            asset_id=str(asset_id),
            session_id=str(session_id) if session_id is not None else None,
            action=action,
            actor_id=str(actor.actor_id),
            actor_role=actor.role.value,
            occurred_at=occurred_at,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = WorkflowLogEntry(
            seq=seq,
            asset_id=asset_id,
            session_id=session_id,
            action=action,
            actor_id=actor.actor_id,
            actor_role=actor.role.value,
            occurred_at=occurred_at,
            payload=stored_payload,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "workflow_log_appended",
            extra={
                "seq": seq,
                "action": action,
                "asset_id": str(asset_id),
                "entry_hash": entry_hash[:16],
            },
        )
        return entry

    def trail(self, asset_id: UUID) -> list[WorkflowLogRecord]:
        """Every entry for the door, oldest first."""
        entries = self.session.execute(
            select(WorkflowLogEntry)
            .where(WorkflowLogEntry.asset_id == asset_id)
            .order_by(WorkflowLogEntry.seq)
        ).scalars().all()
        return [e.to_dto() for e in entries]

    def validate_chain(self) -> bool:
        """
        Recompute every link of the chain.

        Raises:
            AuditChainBrokenError: On the first entry whose payload hash,
                own hash or predecessor link does not match.
        """
        entries = self.session.execute(
            select(WorkflowLogEntry).order_by(WorkflowLogEntry.seq)
        ).scalars().all()

        prev: WorkflowLogEntry | None = None
        for entry in entries:
            expected_prev = prev.hash if prev else None
            if entry.prev_hash != expected_prev:
                self._broken(entry, expected_prev or "None", entry.prev_hash or "None")

            recomputed_payload = hash_payload(entry.payload or {})
            if recomputed_payload != entry.payload_hash:
                self._broken(entry, recomputed_payload, entry.payload_hash)

            expected_hash = hash_log_entry(
                seq=entry.seq,
                asset_id=str(entry.asset_id),
                session_id=str(entry.session_id) if entry.session_id is not None else None,
                action=entry.action,
                actor_id=str(entry.actor_id),
                actor_role=entry.actor_role,
                occurred_at=entry.occurred_at,
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if entry.hash != expected_hash:
                self._broken(entry, expected_hash, entry.hash)
            prev = entry

        return True

    def _broken(self, entry: WorkflowLogEntry, expected: str, actual: str) -> None:
        logger.critical(
            "workflow_log_chain_broken",
            extra={"seq": entry.seq, "entry_id": str(entry.id)},
        )
        raise AuditChainBrokenError(str(entry.id), expected, actual)

    def _last_hash(self) -> str | None:
        last = self.session.execute(
            select(WorkflowLogEntry).order_by(WorkflowLogEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last.hash if last else None


class WorkflowLogWriter:
    """
    Post-commit appender used by the workflow components.

    Guarantees:
        - Each ``record`` runs in its own transaction.
        - Never raises: a failed append is logged at CRITICAL as a
          committed-but-unlogged transition.
    """

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def record(
        self,
        *,
        asset_id: UUID,
        action: str,
        actor: Actor,
        session_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
    ) -> WorkflowLogRecord | None:
        try:
            with session_scope(self._session_factory) as session:
                entry = WorkflowLogService(session, self._clock).append(
                    asset_id=asset_id,
                    action=action,
                    actor=actor,
                    session_id=session_id,
                    payload=payload,
                )
                return entry.to_dto()
        except Exception:
            logger.critical(
                "workflow_log_append_failed",
                extra={
                    "asset_id": str(asset_id),
                    "action": action,
                    "actor_id": str(actor.actor_id),
                },
                exc_info=True,
            )
            return None
