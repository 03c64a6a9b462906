"""Per-resource locks with a bounded wait.

Mutations on one practitioner calendar or one invoice run one at a time;
different keys never contend. A caller that cannot get the lock within
``LOCK_TIMEOUT_SECONDS`` receives a retryable :class:`BusyError`.
"""

from __future__ import annotations

from contextlib import contextmanager
import threading
from typing import Iterator

from flask import current_app

from vet_clinic.services.errors import BusyError

DEFAULT_TIMEOUT_SECONDS = 5.0


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLocks:
    """Registry of locks keyed by resource id; idle entries are dropped."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[None]:
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=timeout):
                raise BusyError("resource_busy", resource=key)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


registry = KeyedLocks()


def _timeout() -> float:
    return float(current_app.config.get("LOCK_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS))


@contextmanager
def resource_lock(key: str) -> Iterator[None]:
    with registry.hold(key, _timeout()):
        yield


def practitioner_key(practitioner_ref: str) -> str:
    return f"appointment:practitioner:{practitioner_ref}"


def invoice_key(invoice_id: str) -> str:
    return f"invoice:{invoice_id}"
