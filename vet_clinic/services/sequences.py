"""Sequential invoice and receipt numbers.

Numbers come from a counter row updated on the caller's connection, so the
allocation commits or rolls back together with the row that uses it.
"""

from __future__ import annotations

import sqlite3


def next_serial(conn: sqlite3.Connection, prefix: str, issued_at: str) -> tuple[str, int]:
    """Return ``("FAC-2025-000001", 1)`` style serials, restarting every year."""

    year = issued_at[:4]
    key = f"{prefix}-{year}"
    row = conn.execute(
        "SELECT last_number FROM number_sequences WHERE sequence_key=?",
        (key,),
    ).fetchone()
    if row:
        next_num = int(row["last_number"]) + 1
        conn.execute(
            "UPDATE number_sequences SET last_number=? WHERE sequence_key=?",
            (next_num, key),
        )
    else:
        next_num = 1
        conn.execute(
            "INSERT INTO number_sequences(sequence_key, last_number) VALUES (?, ?)",
            (key, next_num),
        )
    return f"{key}-{next_num:06d}", next_num
