"""Append-only audit logging."""

from __future__ import annotations

import json
from datetime import datetime, timezone
import sqlite3
from typing import Any, Mapping

SENSITIVE_KEYS = {"notes", "note", "reason", "cancellation_reason"}


def _sanitize_meta(meta: Mapping[str, Any] | None) -> dict[str, Any]:
    cleaned: dict[str, Any] = {}
    if not meta:
        return cleaned
    for key, value in meta.items():
        if key.lower() in SENSITIVE_KEYS:
            cleaned[key] = "[redacted]"
        else:
            cleaned[key] = value
    return cleaned


def write_event(
    conn: sqlite3.Connection,
    actor_user_id: str | None,
    action: str,
    *,
    entity: str | None = None,
    entity_id: str | None = None,
    result: str = "ok",
    meta: Mapping[str, Any] | None = None,
) -> None:
    """Insert an audit row on ``conn`` so it commits with the change it describes."""

    payload = json.dumps(_sanitize_meta(meta), ensure_ascii=False, default=str)
    conn.execute(
        """
        INSERT INTO audit_log(actor_user_id, action, entity, entity_id, ts, result, meta_json_redacted)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            actor_user_id,
            action,
            entity,
            entity_id,
            datetime.now(timezone.utc).isoformat(),
            result,
            payload,
        ),
    )


def events_for(conn: sqlite3.Connection, entity: str, entity_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT actor_user_id, action, ts, result, meta_json_redacted
        FROM audit_log
        WHERE entity=? AND entity_id=?
        ORDER BY id ASC
        """,
        (entity, entity_id),
    ).fetchall()
    return [
        {
            "actor_user_id": row["actor_user_id"],
            "action": row["action"],
            "ts": row["ts"],
            "result": row["result"],
            "meta": json.loads(row["meta_json_redacted"] or "{}"),
        }
        for row in rows
    ]
