"""
Service bases.

Responsibility:
    ``BaseService`` is the flush-only contract shared by registry, template,
    sequence and log services: they receive a Session, flush, and never
    commit.  ``WorkflowComponent`` is the base of the two components that
    own transaction boundaries (InspectionService, CertificationEngine):
    each public operation runs in its own unit of work obtained from the
    injected session factory, then records the workflow log entry and
    dispatches notifications only after the commit point.

Failure modes (WorkflowComponent._transaction):
    - StaleDataError (lost version CAS)   -> ConcurrentModificationError
    - IntegrityError (unique index race)  -> the operation's conflict error
    - any other SQLAlchemyError           -> CommitFailedError (transient)
    Kernel errors raised inside the block roll back and propagate unchanged.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from inspex_kernel.domain.actor import Actor
from inspex_kernel.domain.clock import Clock, SystemClock
from inspex_kernel.domain.dtos import Notification
from inspex_kernel.domain.workflow import Transition
from inspex_kernel.exceptions import (
    AssetNotFoundError,
    CommitFailedError,
    ConcurrentModificationError,
    InspexKernelError,
)
from inspex_kernel.logging_config import get_logger
from inspex_kernel.models.asset import Asset

if TYPE_CHECKING:
    from inspex_kernel.services.notification_dispatcher import NotificationDispatcher
    from inspex_kernel.services.workflow_log_service import WorkflowLogWriter

logger = get_logger("services.base")


class BaseService(ABC):
    """
    Abstract base class for flush-only kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; the caller controls transaction boundaries.
    """

    def __init__(self, session: Session):
        self.session = session


class WorkflowComponent(ABC):
    """
    Base for components that run each operation as its own unit of work.

    Contract:
        Subclasses mutate state only inside ``_transaction``.  Workflow log
        entries and notifications are emitted through ``_after_commit``,
        never from inside the transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        log_writer: WorkflowLogWriter,
        dispatcher: NotificationDispatcher,
        clock: Clock | None = None,
        expected_offsets: Mapping[str, int] | None = None,
    ):
        self._session_factory = session_factory
        self._log_writer = log_writer
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._expected_offsets = dict(expected_offsets or {})

    @contextmanager
    def _transaction(
        self,
        operation: str,
        entity_id: UUID,
        on_integrity_error: Callable[[], InspexKernelError] | None = None,
    ) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except InspexKernelError:
            session.rollback()
            raise
        except StaleDataError as exc:
            session.rollback()
            logger.info(
                "transition_lost_race",
                extra={"operation": operation, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError("Asset", str(entity_id), operation) from exc
        except IntegrityError as exc:
            session.rollback()
            logger.info(
                "transition_constraint_conflict",
                extra={"operation": operation, "entity_id": str(entity_id)},
            )
            if on_integrity_error is not None:
                raise on_integrity_error() from exc
            raise ConcurrentModificationError("Asset", str(entity_id), operation) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.warning(
                "transition_commit_failed",
                extra={"operation": operation, "entity_id": str(entity_id)},
                exc_info=True,
            )
            reason = str(getattr(exc, "orig", None) or exc)
            raise CommitFailedError(operation, str(entity_id), reason) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def _load_asset(session: Session, asset_id: UUID) -> Asset:
        asset = session.execute(
            select(Asset).where(Asset.id == asset_id)
        ).scalar_one_or_none()
        if asset is None:
            raise AssetNotFoundError(str(asset_id))
        return asset

    def _expected_by(self, transition: Transition) -> str | None:
        """ISO date by which the next actor is expected to respond."""
        if transition.expected_by is None:
            return None
        days = self._expected_offsets.get(transition.expected_by)
        if days is None:
            return None
        return (self._clock.now() + timedelta(days=days)).date().isoformat()

    def _after_commit(
        self,
        *,
        asset_id: UUID,
        action: str,
        actor: Actor,
        session_id: UUID | None = None,
        payload: dict[str, Any] | None = None,
        notification: Notification | None = None,
    ) -> None:
        """Record the committed transition, then notify.  Never raises."""
        self._log_writer.record(
            asset_id=asset_id,
            action=action,
            actor=actor,
            session_id=session_id,
            payload=payload or {},
        )
        if notification is not None:
            self._dispatcher.dispatch(notification)
