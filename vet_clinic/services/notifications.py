"""Hand-off of state-change events to the external notification sink.

Events are queued on a small thread pool after the database commit. A sink
that raises is logged and otherwise ignored: delivery problems never undo a
committed appointment or payment.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
import logging
import threading
from typing import Any, Protocol

from flask import Flask, current_app

logger = logging.getLogger(__name__)

APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"
INVOICE_PAID = "invoice.paid"


class NotificationSink(Protocol):
    def notify(self, event_kind: str, payload: dict[str, Any]) -> None: ...


class LoggingSink:
    """Default sink: records events in the application log only."""

    def notify(self, event_kind: str, payload: dict[str, Any]) -> None:
        logger.info("notification %s %s", event_kind, payload)


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink | None = None) -> None:
        self.sink: NotificationSink = sink or LoggingSink()
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def init_app(self, app: Flask) -> None:
        self.sink = app.config.get("NOTIFICATION_SINK") or LoggingSink()
        if self._executor is None:
            workers = int(app.config.get("NOTIFY_WORKERS", 2))
            self._executor = ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix="notify")
        app.extensions["notifier"] = self

    def dispatch(self, event_kind: str, payload: dict[str, Any]) -> None:
        """Queue an event; returns immediately."""

        if self._executor is None:
            raise RuntimeError("Notification dispatcher is not initialised")
        future = self._executor.submit(self._deliver, self.sink, event_kind, dict(payload))
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    @staticmethod
    def _deliver(sink: NotificationSink, event_kind: str, payload: dict[str, Any]) -> None:
        try:
            sink.notify(event_kind, payload)
        except Exception:
            logger.exception("Notification sink failed for %s", event_kind)

    def flush(self, timeout: float | None = 5.0) -> None:
        """Block until queued events are delivered (tests, CLI shutdown)."""

        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def notify(event_kind: str, payload: dict[str, Any]) -> None:
    current_app.extensions["notifier"].dispatch(event_kind, payload)
