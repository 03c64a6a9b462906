import os
import pathlib
import shutil
import sys
from datetime import datetime, timezone

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from vet_clinic import create_app
from vet_clinic.extensions import db as sa_db, notifier
from vet_clinic.services import appointments as appointments_service

FROZEN_NOW = datetime(2025, 5, 1, 8, 0, tzinfo=timezone.utc)

TEST_CONFIG = {
    "TESTING": True,
    "RATELIMIT_ENABLED": False,
    "CLINIC_TIMEZONE": "UTC",
    "PRACTITIONER_TIMEZONES": {"vet-bogota": "America/Bogota"},
    "INVOICE_TAX_PERCENT": "10",
    "LOCK_TIMEOUT_SECONDS": 5,
}


class RecordingSink:
    def __init__(self):
        self.events = []

    def notify(self, event_kind, payload):
        self.events.append((event_kind, payload))

    def kinds(self):
        return [kind for kind, _ in self.events]


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Run the Alembic migrations once and copy the result into every test."""
    db_path = tmp_path_factory.mktemp("template") / "app.db"
    old_db = os.environ.get("CLINIC_DB_PATH")
    old_migrate = os.environ.get("CLINIC_AUTO_MIGRATE")
    os.environ["CLINIC_DB_PATH"] = str(db_path)
    os.environ["CLINIC_AUTO_MIGRATE"] = "1"
    try:
        create_app(dict(TEST_CONFIG))
        sa_db.dispose()
    finally:
        if old_db is None:
            os.environ.pop("CLINIC_DB_PATH", None)
        else:
            os.environ["CLINIC_DB_PATH"] = old_db
        if old_migrate is None:
            os.environ.pop("CLINIC_AUTO_MIGRATE", None)
        else:
            os.environ["CLINIC_AUTO_MIGRATE"] = old_migrate
    return db_path


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_app(tmp_path, monkeypatch, _template_db, sink):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("CLINIC_DB_PATH", str(db_path))
    monkeypatch.setenv("CLINIC_AUTO_MIGRATE", "0")

    def _make(**overrides):
        config = dict(TEST_CONFIG, NOTIFICATION_SINK=sink)
        config.update(overrides)
        return create_app(config)

    return _make


@pytest.fixture
def app(make_app):
    app = make_app()
    yield app
    notifier.flush()
    sa_db.dispose()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def frozen_clock(monkeypatch):
    """Pin "now" before the 2025-06-01 slots used throughout the suite."""
    monkeypatch.setattr(appointments_service, "_utcnow", lambda: FROZEN_NOW)
    return FROZEN_NOW
