"""Process-wide extensions: SQLite engine, write rate limiter and notification dispatcher."""

from __future__ import annotations

import os
import sqlite3

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from vet_clinic.services.notifications import NotificationDispatcher


def _pragma_hook(busy_timeout_ms: int):
    def apply(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return apply


class SQLiteEngine:
    """Pooled SQLAlchemy engine handing out raw ``sqlite3`` connections.

    The services speak plain SQL with ``sqlite3.Row`` results; SQLAlchemy
    only provides pooling and the connect-time PRAGMAs.
    """

    def __init__(self) -> None:
        self._engine: Engine | None = None

    def init_app(self, app: Flask) -> None:
        self.dispose()
        self._engine = create_engine(
            app.config["SQLALCHEMY_DATABASE_URI"],
            **app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {}),
        )
        busy_timeout_ms = int(app.config.get("SQLITE_BUSY_TIMEOUT_MS", 5000))
        event.listen(self._engine, "connect", _pragma_hook(busy_timeout_ms))
        app.extensions["db"] = self

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("SQLite engine is not initialised")
        return self._engine

    def raw_connection(self) -> sqlite3.Connection:
        pooled = self.engine.raw_connection()
        pooled.driver_connection.row_factory = sqlite3.Row
        return pooled  # type: ignore[return-value]

    def dispose(self) -> None:
        """Close pooled connections, e.g. before copying the database file."""

        if self._engine is not None:
            self._engine.dispose()


db = SQLiteEngine()
limiter = Limiter(get_remote_address, storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"))
notifier = NotificationDispatcher()


def init_extensions(app: Flask) -> None:
    db.init_app(app)
    limiter.init_app(app)
    notifier.init_app(app)
