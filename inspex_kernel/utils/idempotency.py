"""
Idempotency key generation utilities.

A certify retried after a timeout must find the artifact its first attempt
created instead of issuing a second certificate.
"""

from uuid import UUID


def certify_dedupe_key(asset_id: UUID | str, session_id: UUID | str) -> str:
    """
    Dedupe key for certifying one door on the strength of one inspection.

    Format: certify:asset_id:session_id

    Stored on CertificationArtifact under a unique index.

    Example:
        >>> certify_dedupe_key(asset_uuid, session_uuid)
        "certify:550e8400-...:9b2f0c1e-..."
    """
    return f"certify:{asset_id}:{session_id}"


def parse_dedupe_key(key: str) -> tuple[str, str, str]:
    """
    Parse a dedupe key into (operation, asset_id, session_id).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Invalid dedupe key format: {key}")
    return parts[0], parts[1], parts[2]
