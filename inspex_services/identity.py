"""Identity directory backed by a fixed set of profiles."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from uuid import UUID

from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.domain.dtos import ActorProfile


class StaticIdentityDirectory:
    """
    Implements the kernel's ``IdentityDirectory`` port over an in-process
    registry.  Authentication is out of scope; profiles are only looked up.
    """

    def __init__(self, profiles: Iterable[ActorProfile] = ()):
        self._profiles: dict[UUID, ActorProfile] = {}
        self._lock = threading.Lock()
        for profile in profiles:
            self.add(profile)

    def add(self, profile: ActorProfile) -> None:
        with self._lock:
            self._profiles[profile.actor_id] = profile

    def get_profile(self, actor_id: UUID) -> ActorProfile | None:
        with self._lock:
            return self._profiles.get(actor_id)

    def list_by_role(self, role: ActorRole) -> list[ActorProfile]:
        with self._lock:
            return sorted(
                (p for p in self._profiles.values() if p.role == role and p.is_active),
                key=lambda p: p.name,
            )
