"""Automatically run Alembic migrations when the app starts."""

from __future__ import annotations

import os

from alembic import command
from flask import Flask

from vet_clinic.services.migrations import alembic_config, migrations_available


def auto_upgrade(app: Flask) -> None:
    """Run `alembic upgrade head` automatically if enabled."""

    if os.getenv("CLINIC_AUTO_MIGRATE", "1") != "1":
        return
    if not migrations_available():
        return

    try:
        command.upgrade(alembic_config(app), "head")
    except Exception as exc:  # pragma: no cover - bootstrap tables still get created
        app.logger.warning("Auto migration skipped: %s", exc)
