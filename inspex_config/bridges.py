"""
Config -> Kernel Bridges.

Functions that convert an ``InspexConfig`` into kernel-compatible inputs.
They live here (the producer) because the kernel must never import
``inspex_config``.

Usage:
    from inspex_config.bridges import build_expected_offsets, build_checklist_seed

    config = get_active_config()
    engine = CertificationEngine(..., expected_offsets=build_expected_offsets(config))
"""

from __future__ import annotations

from typing import Any

from inspex_config.schema import InspexConfig


def build_expected_offsets(config: InspexConfig) -> dict[str, int]:
    """Handoff key -> days, as ``WorkflowComponent`` expects."""
    return dict(config.workflow.expected_offsets_days)


def build_checklist_seed(config: InspexConfig) -> list[dict[str, Any]]:
    """Checklist points in the shape ``TemplateStore.seed_default_points`` accepts."""
    return [
        {
            "name": point.name,
            "description": point.description,
            "order_index": point.order_index,
        }
        for point in config.checklist
    ]


def build_generator_options(config: InspexConfig) -> dict[str, str]:
    """Keyword arguments for ``ArtifactGenerator``."""
    return {
        "key_prefix": config.storage.key_prefix,
        "title": config.certificate.title,
        "statement": config.certificate.statement,
    }
