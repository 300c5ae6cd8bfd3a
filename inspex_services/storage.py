"""
Object storage for certificate documents.

Responsibility:
    Implements the kernel's ``ObjectStorage`` port.  ``LocalObjectStorage``
    keeps documents under a root directory; ``InMemoryObjectStorage`` keeps
    them in a dict and can be told to fail, for tests and demos.

Invariants enforced:
    - A key never resolves outside the storage root.
    - A put is visible only once complete (write to a temp file, then rename).
    - Only StorageError subclasses escape; raw OSErrors are wrapped.
"""

from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path

from inspex_kernel.exceptions import (
    DocumentDeleteError,
    DocumentReadError,
    DocumentWriteError,
    StorageError,
)
from inspex_kernel.logging_config import get_logger

logger = get_logger("services.storage")


class LocalObjectStorage:
    """Documents as files below ``root``.  The storage reference is the key."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str, error: type[StorageError]) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise error(key, "invalid storage key")
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise error(key, "storage key escapes the storage root")
        return path

    def put(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        path = self._path(key, DocumentWriteError)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise DocumentWriteError(key, str(exc)) from exc
        logger.debug("document_written", extra={"storage_key": key, "size_bytes": len(data)})
        return key

    def get(self, ref: str) -> bytes:
        path = self._path(ref, DocumentReadError)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise DocumentReadError(ref, "document not found") from exc
        except OSError as exc:
            raise DocumentReadError(ref, str(exc)) from exc

    def delete(self, ref: str) -> None:
        path = self._path(ref, DocumentDeleteError)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise DocumentDeleteError(ref, str(exc)) from exc
        logger.debug("document_deleted", extra={"storage_key": ref})

    def exists(self, ref: str) -> bool:
        return self._path(ref, DocumentReadError).is_file()


class InMemoryObjectStorage:
    """
    Dict-backed storage.

    ``fail_on`` names the operations ("put", "get", "delete") that raise
    the matching StorageError until cleared.
    """

    _ERRORS: dict[str, type[StorageError]] = {
        "put": DocumentWriteError,
        "get": DocumentReadError,
        "delete": DocumentDeleteError,
    }

    def __init__(self, fail_on: set[str] | None = None):
        self.objects: dict[str, bytes] = {}
        self.fail_on: set[str] = set(fail_on or ())
        self._lock = threading.Lock()

    def _maybe_fail(self, operation: str, key: str) -> None:
        if operation in self.fail_on:
            raise self._ERRORS[operation](key, f"simulated {operation} failure")

    def put(self, key: str, data: bytes, content_type: str = "application/pdf") -> str:
        self._maybe_fail("put", key)
        with self._lock:
            self.objects[key] = bytes(data)
        return key

    def get(self, ref: str) -> bytes:
        self._maybe_fail("get", ref)
        with self._lock:
            try:
                return self.objects[ref]
            except KeyError:
                raise DocumentReadError(ref, "document not found") from None

    def delete(self, ref: str) -> None:
        self._maybe_fail("delete", ref)
        with self._lock:
            self.objects.pop(ref, None)

    def exists(self, ref: str) -> bool:
        with self._lock:
            return ref in self.objects

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self.objects)
