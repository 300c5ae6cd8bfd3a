"""
Actors and roles.

The kernel does not authenticate anyone.  Callers pass an already
authenticated ``Actor``; the role it carries is trusted for gating each
operation (see ``domain.workflow``).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ActorRole(str, Enum):
    INSPECTOR = "inspector"
    ENGINEER = "engineer"
    ADMIN = "admin"
    CLIENT = "client"


@dataclass(frozen=True)
class Actor:
    """An authenticated caller: identity plus the role it acts under."""

    actor_id: UUID
    role: ActorRole
    display_name: str | None = None

    @property
    def label(self) -> str:
        return self.display_name or str(self.actor_id)
