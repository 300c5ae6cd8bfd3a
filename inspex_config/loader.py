"""
Configuration Loader (``inspex_config.loader``).

Responsibility
--------------
Reads ``defaults.yaml`` and an optional deployment file, merges the
deployment file over the defaults, applies environment overrides and
parses the result into the frozen dataclasses of ``inspex_config.schema``.
Runtime callers use ``inspex_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Required keys and value types are checked here; a bad value raises
  ``ConfigurationError`` naming the offending setting.

Failure modes
-------------
* Missing deployment file  -> ``ConfigurationError``.
* Malformed YAML  -> ``ConfigurationError`` wrapping ``yaml.YAMLError``.
* Wrong type or unknown storage backend  -> ``ConfigurationError``.
"""

from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from inspex_config.schema import (
    CertificateSettings,
    ChecklistPoint,
    DatabaseSettings,
    InspexConfig,
    NotificationSettings,
    SmtpSettings,
    StorageSettings,
    WorkflowSettings,
)
from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.exceptions import ConfigurationError

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

STORAGE_BACKENDS = frozenset({"local", "memory"})

# environment variable -> (section path, key, converter)
ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], str, type]] = {
    "INSPEX_DATABASE_URL": (("database",), "url", str),
    "INSPEX_SMTP_HOST": (("notifications", "smtp"), "host", str),
    "INSPEX_SMTP_PORT": (("notifications", "smtp"), "port", int),
    "INSPEX_SMTP_USER": (("notifications", "smtp"), "user", str),
    "INSPEX_SMTP_PASSWORD": (("notifications", "smtp"), "password", str),
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        ConfigurationError: the file is missing, unreadable, not YAML, or
            its top level is not a mapping.
    """
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(str(path), "file not found") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(str(path), f"invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``.  Mappings merge, everything else replaces."""
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Apply the ``INSPEX_*`` environment overrides in place and return ``data``."""
    environ = os.environ if environ is None else environ
    for variable, (path, key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(variable)
        if raw is None or raw == "":
            continue
        section = data
        for part in path:
            section = section.setdefault(part, {})
        try:
            section[key] = convert(raw)
        except ValueError as exc:
            raise ConfigurationError(variable, f"cannot convert {raw!r}") from exc
    return data


def load_config(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> InspexConfig:
    """
    Build an ``InspexConfig`` from defaults, an optional file and the environment.

    Args:
        path: Deployment YAML merged over the defaults.  ``None`` uses
            the defaults alone.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = deep_merge(data, load_yaml_file(Path(path)))
    apply_env_overrides(data, environ)
    return parse_config(data, source=str(path) if path is not None else None)


def parse_config(data: Mapping[str, Any], source: str | None = None) -> InspexConfig:
    """Parse a merged configuration mapping."""
    return InspexConfig(
        database=parse_database(_section(data, "database")),
        storage=parse_storage(_section(data, "storage")),
        notifications=parse_notifications(_section(data, "notifications")),
        workflow=parse_workflow(_section(data, "workflow")),
        certificate=parse_certificate(_section(data, "certificate")),
        checklist=parse_checklist(data.get("checklist") or []),
        source=source,
    )


def parse_database(data: Mapping[str, Any]) -> DatabaseSettings:
    return DatabaseSettings(
        url=_require(data, "database.url", str),
        echo=bool(data.get("echo", False)),
        busy_timeout=_number(data.get("busy_timeout", 30.0), "database.busy_timeout"),
    )


def parse_storage(data: Mapping[str, Any]) -> StorageSettings:
    backend = _require(data, "storage.backend", str)
    if backend not in STORAGE_BACKENDS:
        raise ConfigurationError(
            "storage.backend",
            f"must be one of {sorted(STORAGE_BACKENDS)}, got {backend!r}",
        )
    return StorageSettings(
        backend=backend,
        root=str(data.get("root") or "./var/documents"),
        key_prefix=str(data.get("key_prefix") or "certificates/"),
    )


def parse_notifications(data: Mapping[str, Any]) -> NotificationSettings:
    smtp = _section(data, "smtp", parent="notifications")
    try:
        port = int(smtp.get("port", 465))
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("notifications.smtp.port", "must be an integer") from exc

    recipients: dict[str, tuple[str, ...]] = {}
    roles = {role.value for role in ActorRole}
    for role, addresses in (data.get("recipients") or {}).items():
        if role not in roles:
            raise ConfigurationError(
                f"notifications.recipients.{role}", f"unknown role (expected one of {sorted(roles)})"
            )
        recipients[role] = tuple(addresses or ())

    max_workers = int(data.get("max_workers", 2))
    if max_workers < 1:
        raise ConfigurationError("notifications.max_workers", "must be at least 1")

    return NotificationSettings(
        smtp=SmtpSettings(
            host=_require(smtp, "notifications.smtp.host", str),
            port=port,
            ssl=bool(smtp.get("ssl", True)),
            user=smtp.get("user") or None,
            password=smtp.get("password") or None,
            from_name=str(smtp.get("from_name") or "INSPEX System"),
        ),
        enabled=bool(data.get("enabled", True)),
        synchronous=bool(data.get("synchronous", False)),
        max_workers=max_workers,
        recipients=recipients,
    )


def parse_workflow(data: Mapping[str, Any]) -> WorkflowSettings:
    offsets: dict[str, int] = {}
    for key, days in (data.get("expected_offsets_days") or {}).items():
        if not isinstance(days, int) or isinstance(days, bool) or days < 0:
            raise ConfigurationError(
                f"workflow.expected_offsets_days.{key}", "must be a non-negative integer"
            )
        offsets[key] = days
    return WorkflowSettings(expected_offsets_days=offsets)


def parse_certificate(data: Mapping[str, Any]) -> CertificateSettings:
    return CertificateSettings(
        title=_require(data, "certificate.title", str),
        statement=_require(data, "certificate.statement", str),
    )


def parse_checklist(items: list[Any]) -> tuple[ChecklistPoint, ...]:
    points = []
    names = set()
    for position, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            raise ConfigurationError(f"checklist[{position}]", "must be a mapping")
        name = _require(item, f"checklist[{position}].name", str)
        if name in names:
            raise ConfigurationError(f"checklist[{position}].name", f"duplicate point {name!r}")
        names.add(name)
        points.append(
            ChecklistPoint(
                name=name,
                description=str(item.get("description") or ""),
                order_index=int(item.get("order_index", position)),
            )
        )
    return tuple(points)


def _section(data: Mapping[str, Any], key: str, parent: str | None = None) -> Mapping[str, Any]:
    value = data.get(key)
    setting = f"{parent}.{key}" if parent else key
    if not isinstance(value, Mapping):
        raise ConfigurationError(setting, "missing or not a mapping")
    return value


def _require(data: Mapping[str, Any], setting: str, kind: type) -> Any:
    value = data.get(setting.rsplit(".", 1)[-1])
    if value is None or (kind is str and not str(value).strip()):
        raise ConfigurationError(setting, "is required")
    if not isinstance(value, kind):
        raise ConfigurationError(setting, f"must be {kind.__name__}")
    return value


def _number(value: Any, setting: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(setting, "must be a number") from exc
