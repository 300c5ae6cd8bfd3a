"""Utility modules for the inspex kernel."""

from inspex_kernel.utils.hashing import (
    canonicalize_json,
    hash_log_entry,
    hash_payload,
)
from inspex_kernel.utils.idempotency import certify_dedupe_key

__all__ = [
    "canonicalize_json",
    "hash_log_entry",
    "hash_payload",
    "certify_dedupe_key",
]
