"""
InspexConfig schema.

Frozen dataclasses the loader produces from YAML.  Nothing here reads
files or the environment; see ``inspex_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    busy_timeout: float = 30.0


@dataclass(frozen=True)
class StorageSettings:
    backend: str  # "local" or "memory"
    root: str
    key_prefix: str = "certificates/"


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    ssl: bool = True
    user: str | None = None
    password: str | None = None
    from_name: str = "INSPEX System"

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and self.password)


@dataclass(frozen=True)
class NotificationSettings:
    smtp: SmtpSettings
    enabled: bool = True
    synchronous: bool = False
    max_workers: int = 2
    # role value -> addresses
    recipients: dict[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowSettings:
    """Days until the next actor is expected to respond, keyed by handoff."""

    expected_offsets_days: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CertificateSettings:
    title: str
    statement: str


@dataclass(frozen=True)
class ChecklistPoint:
    name: str
    description: str
    order_index: int


@dataclass(frozen=True)
class InspexConfig:
    """The complete runtime configuration."""

    database: DatabaseSettings
    storage: StorageSettings
    notifications: NotificationSettings
    workflow: WorkflowSettings
    certificate: CertificateSettings
    checklist: tuple[ChecklistPoint, ...] = ()
    source: str | None = None  # path of the deployment file, if any
