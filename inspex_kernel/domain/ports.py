"""
External collaborator protocols.

The kernel consumes three collaborators it does not implement itself:
durable document storage, the identity directory, and notification
delivery.  Implementations live in ``inspex_services``; tests substitute
in-memory doubles.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.domain.dtos import ActorProfile, Notification


@runtime_checkable
class ObjectStorage(Protocol):
    """Durable object storage for certificate documents.

    Implementations raise StorageError subclasses, never raw I/O errors.
    """

    def put(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Store ``data`` and return the reference to pass to get/delete."""
        ...

    def get(self, ref: str) -> bytes:
        ...

    def delete(self, ref: str) -> None:
        """Delete the object.  Deleting a missing object is not an error."""
        ...

    def exists(self, ref: str) -> bool:
        ...


@runtime_checkable
class IdentityDirectory(Protocol):
    """Resolves actor ids to profiles.  Authentication happens elsewhere."""

    def get_profile(self, actor_id: UUID) -> ActorProfile | None:
        ...

    def list_by_role(self, role: ActorRole) -> list[ActorProfile]:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Delivers one notification.  May raise; the dispatcher swallows it."""

    def send(self, notification: Notification) -> None:
        ...
