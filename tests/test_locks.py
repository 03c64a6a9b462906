import threading

import pytest

from vet_clinic.services.errors import BusyError
from vet_clinic.services.locks import KeyedLocks, invoice_key, practitioner_key, resource_lock


def _hold_in_thread(locks, key, started, release):
    def run():
        with locks.hold(key, timeout=1):
            started.set()
            release.wait(5)

    thread = threading.Thread(target=run)
    thread.start()
    assert started.wait(5)
    return thread


def test_contended_key_times_out_with_busy_error():
    locks = KeyedLocks()
    started, release = threading.Event(), threading.Event()
    thread = _hold_in_thread(locks, "invoice:1", started, release)
    try:
        with pytest.raises(BusyError) as excinfo:
            with locks.hold("invoice:1", timeout=0.05):
                pass
        assert excinfo.value.retryable is True
        assert excinfo.value.details == {"resource": "invoice:1"}
    finally:
        release.set()
        thread.join()


def test_different_keys_do_not_contend():
    locks = KeyedLocks()
    started, release = threading.Event(), threading.Event()
    thread = _hold_in_thread(locks, "invoice:1", started, release)
    try:
        with locks.hold("invoice:2", timeout=0.05):
            assert len(locks) == 2
    finally:
        release.set()
        thread.join()


def test_idle_entries_are_dropped():
    locks = KeyedLocks()
    with locks.hold("a", timeout=1):
        assert len(locks) == 1
    assert len(locks) == 0


def test_resource_lock_reads_timeout_from_config(make_app):
    app = make_app(LOCK_TIMEOUT_SECONDS=0.05)
    key = practitioner_key("vet-1")
    started, release = threading.Event(), threading.Event()

    def run():
        with app.app_context(), resource_lock(key):
            started.set()
            release.wait(5)

    thread = threading.Thread(target=run)
    thread.start()
    assert started.wait(5)
    try:
        with app.app_context():
            with pytest.raises(BusyError):
                with resource_lock(key):
                    pass
    finally:
        release.set()
        thread.join()


def test_key_format():
    assert practitioner_key("vet-1") == "appointment:practitioner:vet-1"
    assert invoice_key("abc") == "invoice:abc"
