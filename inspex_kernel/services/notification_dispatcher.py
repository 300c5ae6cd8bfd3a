"""
NotificationDispatcher -- best-effort, fire-and-forget side channel.

Responsibility:
    Hands each committed transition's notification to every configured sink
    on a background thread pool (or inline, for tests and scripts).

Invariants enforced:
    - ``dispatch`` never raises into the caller.  Sink failures and even
      pool submission failures are logged and swallowed.
    - Delivery is at most once; there is no retry queue.  Authoritative
      state lives in the asset, artifact and workflow log records.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait

from inspex_kernel.domain.dtos import Notification
from inspex_kernel.domain.ports import NotificationSink
from inspex_kernel.logging_config import get_logger

logger = get_logger("services.notification_dispatcher")


class NotificationDispatcher:
    """Fans a notification out to its sinks without blocking the caller."""

    def __init__(
        self,
        sinks: Sequence[NotificationSink] = (),
        max_workers: int = 2,
        synchronous: bool = False,
    ):
        self._sinks = list(sinks)
        self._synchronous = synchronous
        self._executor: ThreadPoolExecutor | None = None
        if not synchronous:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="inspex-notify",
            )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def dispatch(self, notification: Notification) -> None:
        for sink in self._sinks:
            if self._executor is None:
                self._deliver(sink, notification)
                continue
            try:
                future = self._executor.submit(self._deliver, sink, notification)
            except RuntimeError:
                # Executor already shut down.
                logger.warning(
                    "notification_dropped",
                    extra={
                        "kind": notification.kind.value,
                        "sink": type(sink).__name__,
                    },
                    exc_info=True,
                )
                continue
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def flush(self, timeout: float | None = 10.0) -> None:
        """Wait for in-flight deliveries.  For tests and orderly shutdown."""
        with self._lock:
            pending = set(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_pending)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _deliver(sink: NotificationSink, notification: Notification) -> None:
        try:
            sink.send(notification)
        except Exception:
            logger.warning(
                "notification_failed",
                extra={
                    "kind": notification.kind.value,
                    "sink": type(sink).__name__,
                    "asset_id": str(notification.asset.asset_id),
                },
                exc_info=True,
            )
            return
        logger.debug(
            "notification_sent",
            extra={"kind": notification.kind.value, "sink": type(sink).__name__},
        )
