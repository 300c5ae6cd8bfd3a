"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers for workflow log entries.
    Uses a dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``; on SQLite the BEGIN IMMEDIATE write lock
    plays the same role) so concurrent appenders never share a value.

Architecture position:
    Kernel > Services -- flush-only.  Called by WorkflowLogService.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inspex_kernel.logging_config import get_logger
from inspex_kernel.models.sequence_counter import SequenceCounter
from inspex_kernel.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService):
    """
    Transactional sequence numbers.

    Guarantees:
        - Strictly monotonic per sequence name via the locked counter row.
          Never computed as MAX(seq) + 1.
        - The increment is only visible after the caller commits; a
          rollback returns the value.
    """

    WORKFLOW_LOG = "workflow_log"

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the named counter, increment it, return the new value."""
        # Expire cached counter objects so the read goes to the database.
        self.session.expire_all()

        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use.  Another writer may create the row concurrently, so
            # insert inside a savepoint and fall back to the locked read.
            savepoint = self.session.begin_nested()
            try:
                self.session.add(SequenceCounter(name=sequence_name, current_value=1))
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                self.session.expire_all()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int:
        counter = self.session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else 0

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
