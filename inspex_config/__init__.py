"""
inspex_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive plain values derived from
    it (see ``inspex_config.bridges``); they never read files or the
    environment themselves.

Architecture position:
    Configuration.  Sits above ``inspex_kernel`` and below
    ``inspex_services``.  The kernel never imports from ``inspex_config``.

Failure modes:
    - ``ConfigurationError`` -- missing file, malformed YAML, or an invalid
      setting.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from inspex_config.loader import load_config
from inspex_config.schema import InspexConfig

_logger = logging.getLogger("inspex_kernel.config")

CONFIG_FILE_ENV = "INSPEX_CONFIG_FILE"


def get_active_config(config_file: str | Path | None = None) -> InspexConfig:
    """The public configuration entrypoint.

    Args:
        config_file: Deployment YAML merged over the built-in defaults.
            Falls back to ``$INSPEX_CONFIG_FILE``, then to the defaults alone.

    Guarantees:
        - An ``INSPEX_CONFIG_TRACE`` log entry is emitted on every
          successful call.
    """
    path = config_file or os.environ.get(CONFIG_FILE_ENV) or None
    config = load_config(path)

    _logger.info(
        "INSPEX_CONFIG_TRACE",
        extra={
            "trace_type": "INSPEX_CONFIG_TRACE",
            "config_source": config.source or "defaults",
            "database_dialect": config.database.url.split(":", 1)[0],
            "storage_backend": config.storage.backend,
            "notifications_enabled": config.notifications.enabled,
            "checklist_points": len(config.checklist),
        },
    )
    return config


__all__ = ["InspexConfig", "get_active_config", "load_config"]
