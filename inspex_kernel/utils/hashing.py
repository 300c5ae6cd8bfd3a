"""
Deterministic hashing utilities.

All hashing in the workflow log must be deterministic and reproducible so
that ``validate_chain`` can recompute every link.
"""

import hashlib
import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys sorted, no whitespace, consistent handling of datetime/UUID/Enum.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: dict) -> dict:
    """Round-trip through canonical JSON so a payload stores exactly what was hashed."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_log_entry(
    seq: int,
    asset_id: str,
    session_id: str | None,
    action: str,
    actor_id: str,
    actor_role: str,
    occurred_at: datetime,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash for a workflow log entry.

    Args:
        seq: Global position of the entry.
        asset_id: Door the transition applied to.
        session_id: Inspection session the entry refers to, if any.
        action: Transition name.
        actor_id: Who performed the transition.
        actor_role: Role they acted under.
        occurred_at: When it happened; hashed as UTC so the value
            survives a round trip through the database.
        payload_hash: Hash of the entry payload.
        prev_hash: Hash of the previous entry (None for genesis).

    Returns:
        Hex-encoded SHA-256 hash.
    """
    components = [
        str(seq),
        str(asset_id),
        str(session_id) if session_id is not None else "",
        action,
        str(actor_id),
        actor_role,
        occurred_at.astimezone(timezone.utc).isoformat(),
        payload_hash,
        prev_hash or "GENESIS",
    ]
    data = "|".join(components)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
