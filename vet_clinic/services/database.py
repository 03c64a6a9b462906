"""Database helpers backed by SQLAlchemy."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Iterator

from vet_clinic.extensions import db as sa_db
from vet_clinic.services.errors import BusyError


def db() -> sqlite3.Connection:
    """Return a raw sqlite3 connection with PRAGMAs applied."""

    return sa_db.raw_connection()


@contextmanager
def write_transaction() -> Iterator[sqlite3.Connection]:
    """Run a read-modify-write under ``BEGIN IMMEDIATE``.

    Everything commits together or nothing does. A writer that stays locked
    out past the SQLite busy timeout surfaces as :class:`BusyError`.
    """

    conn = db()
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc) or "busy" in str(exc):
                raise BusyError("database_locked") from exc
            raise
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def read_connection() -> Iterator[sqlite3.Connection]:
    conn = db()
    try:
        yield conn
    finally:
        conn.close()

