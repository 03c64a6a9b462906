"""Appointment scheduling: booking, lifecycle transitions and calendar views.

All instants are stored as naive UTC strings in ``ISO_FMT`` so SQLite can
compare them lexically. Intervals are half-open: an appointment ending at
10:30 does not collide with one starting at 10:30.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
import sqlite3
import uuid
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from vet_clinic.services.audit import events_for, write_event
from vet_clinic.services.database import read_connection, write_transaction
from vet_clinic.services.errors import (
    ConflictError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from vet_clinic.services.locks import practitioner_key, resource_lock
from vet_clinic.services.notifications import APPOINTMENT_STATUS_CHANGED, notify
from vet_clinic.services.validation import coerce_choice, coerce_positive_int, optional_text, require_ref


ISO_FMT = "%Y-%m-%dT%H:%M:%S"

SERVICE_KINDS = ("CONSULTATION", "SURGERY", "VACCINATION", "CHECKUP", "EMERGENCY")

PROPOSED = "PROPOSED"
CONFIRMED = "CONFIRMED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"
NO_SHOW = "NO_SHOW"

TRANSITIONS: dict[str, frozenset[str]] = {
    PROPOSED: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({IN_PROGRESS, CANCELLED, NO_SHOW}),
    IN_PROGRESS: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
    NO_SHOW: frozenset(),
}
STATUSES = tuple(TRANSITIONS)
# Appointments in these states no longer hold their slot.
INACTIVE_STATUSES = frozenset({CANCELLED, NO_SHOW})
# Longest bookable slot; longer procedures are split into several appointments.
MAX_DURATION_MINUTES = 24 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _default_minutes() -> int:
    return int(current_app.config.get("APPOINTMENT_DEFAULT_MINUTES", 30))


def _zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError("unknown_timezone", timezone=name) from exc


def practitioner_zone(practitioner_ref: str) -> tzinfo:
    """Time zone the practitioner's calendar day is expressed in."""

    zones = current_app.config.get("PRACTITIONER_TIMEZONES") or {}
    name = zones.get(practitioner_ref) or current_app.config.get("CLINIC_TIMEZONE", "UTC")
    return _zone(name)


def clinic_zone() -> tzinfo:
    return _zone(current_app.config.get("CLINIC_TIMEZONE", "UTC"))


def _serialize(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).replace(microsecond=0).strftime(ISO_FMT)


def _parse(stamp: str) -> datetime:
    return datetime.strptime(stamp, ISO_FMT).replace(tzinfo=timezone.utc)


def _coerce_instant(value: Any, zone: tzinfo, label: str) -> datetime:
    """Accept a datetime or ISO string; naive values are read in ``zone``."""

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"{label}_invalid") from exc
    if not isinstance(value, datetime):
        raise ValidationError(f"{label}_invalid")
    if value.tzinfo is None:
        value = value.replace(tzinfo=zone)
    try:
        return value.astimezone(timezone.utc).replace(microsecond=0)
    except OverflowError as exc:
        raise ValidationError(f"{label}_invalid") from exc


def _coerce_day(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError("day_invalid") from exc


def _coerce_duration(value: Any) -> int:
    if value is None or value == "":
        return _default_minutes()
    minutes = coerce_positive_int(value, "duration")
    if minutes > MAX_DURATION_MINUTES:
        raise ValidationError("duration_too_long", max=MAX_DURATION_MINUTES)
    return minutes


def _end_of(start: datetime, minutes: int) -> datetime:
    try:
        return start + timedelta(minutes=minutes)
    except OverflowError as exc:
        raise ValidationError("starts_at_invalid") from exc


def _row_to_dict(row: sqlite3.Row, zone: tzinfo | None = None) -> dict[str, Any]:
    appt: dict[str, Any] = {
        "id": row["id"],
        "patient_ref": row["patient_ref"],
        "practitioner_ref": row["practitioner_ref"],
        "service_kind": row["service_kind"],
        "starts_at": row["starts_at"],
        "ends_at": row["ends_at"],
        "duration_minutes": row["duration_minutes"],
        "reason": row["reason"],
        "notes": row["notes"],
        "status": row["status"],
        "cancellation_reason": row["cancellation_reason"],
        "is_deleted": bool(row["is_deleted"]),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }
    if zone is not None:
        appt["local_starts_at"] = _parse(row["starts_at"]).astimezone(zone).isoformat()
        appt["local_ends_at"] = _parse(row["ends_at"]).astimezone(zone).isoformat()
    return appt


def _fetch(conn: sqlite3.Connection, appt_id: str, *, include_deleted: bool = False) -> sqlite3.Row:
    row = conn.execute("SELECT * FROM appointments WHERE id=?", (appt_id,)).fetchone()
    if not row or (row["is_deleted"] and not include_deleted):
        raise NotFoundError("appointment_not_found", appointment_id=appt_id)
    return row


def _practitioner_of(appt_id: str) -> str:
    with read_connection() as conn:
        return _fetch(conn, appt_id)["practitioner_ref"]


def _find_conflict(
    conn: sqlite3.Connection,
    practitioner_ref: str,
    start_iso: str,
    end_iso: str,
    *,
    exclude_id: str | None = None,
) -> sqlite3.Row | None:
    params: list[str] = [practitioner_ref, *sorted(INACTIVE_STATUSES), end_iso, start_iso]
    sql = """
        SELECT id, starts_at, ends_at
        FROM appointments
        WHERE practitioner_ref = ?
          AND is_deleted = 0
          AND status NOT IN (?, ?)
          AND starts_at < ?
          AND ends_at > ?
    """
    if exclude_id:
        sql += " AND id != ?"
        params.append(exclude_id)
    sql += " ORDER BY starts_at ASC LIMIT 1"
    return conn.execute(sql, params).fetchone()


def _raise_if_conflict(conflict: sqlite3.Row | None) -> None:
    if conflict:
        raise ConflictError(
            "slot_conflict",
            conflicting_id=conflict["id"],
            conflicting_starts_at=conflict["starts_at"],
            conflicting_ends_at=conflict["ends_at"],
        )


def propose(
    patient_ref: Any,
    practitioner_ref: Any,
    starts_at: Any,
    service_kind: Any,
    duration_minutes: Any = None,
    reason: Any = None,
    notes: Any = None,
    *,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Book a slot in PROPOSED state if the practitioner is free."""

    patient_ref = require_ref(patient_ref, "patient_ref")
    practitioner_ref = require_ref(practitioner_ref, "practitioner_ref")
    kind = coerce_choice(service_kind, SERVICE_KINDS, "service_kind")
    minutes = _coerce_duration(duration_minutes)
    start = _coerce_instant(starts_at, practitioner_zone(practitioner_ref), "starts_at")
    now = _utcnow()
    if start <= now:
        raise ValidationError("start_not_in_future")
    start_iso = _serialize(start)
    end_iso = _serialize(_end_of(start, minutes))

    with resource_lock(practitioner_key(practitioner_ref)):
        with write_transaction() as conn:
            _raise_if_conflict(_find_conflict(conn, practitioner_ref, start_iso, end_iso))
            appt_id = str(uuid.uuid4())
            stamp = _serialize(now)
            conn.execute(
                """
                INSERT INTO appointments(
                    id, patient_ref, practitioner_ref, service_kind,
                    starts_at, ends_at, duration_minutes, reason, notes,
                    status, cancellation_reason, is_deleted, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, 0, ?, ?)
                """,
                (
                    appt_id,
                    patient_ref,
                    practitioner_ref,
                    kind,
                    start_iso,
                    end_iso,
                    minutes,
                    optional_text(reason),
                    optional_text(notes),
                    PROPOSED,
                    stamp,
                    stamp,
                ),
            )
            write_event(
                conn,
                actor_id,
                "appointments:propose",
                entity="appointment",
                entity_id=appt_id,
                meta={"practitioner_ref": practitioner_ref, "starts_at": start_iso, "minutes": minutes},
            )
            row = _fetch(conn, appt_id)

    current_app.logger.info("Appointment %s proposed for %s at %s", appt_id, practitioner_ref, start_iso)
    return _row_to_dict(row)


def transition(
    appointment_id: str,
    target_state: Any,
    cancellation_reason: Any = None,
    *,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Move an appointment along its lifecycle.

    Only CANCELLED takes (and requires) a cancellation reason. Leaving the
    active states frees the slot for new bookings.
    """

    target = coerce_choice(target_state, STATUSES, "target_state")
    reason = optional_text(cancellation_reason)
    practitioner_ref = _practitioner_of(appointment_id)

    with resource_lock(practitioner_key(practitioner_ref)):
        with write_transaction() as conn:
            row = _fetch(conn, appointment_id)
            old_state = row["status"]
            if target not in TRANSITIONS[old_state]:
                raise InvalidTransitionError(
                    "transition_not_allowed",
                    from_state=old_state,
                    to_state=target,
                )
            if target == CANCELLED and not reason:
                raise ValidationError("cancellation_reason_required")
            if target != CANCELLED and reason:
                raise ValidationError("cancellation_reason_not_allowed")
            conn.execute(
                """
                UPDATE appointments
                SET status=?, cancellation_reason=?, updated_at=?
                WHERE id=?
                """,
                (target, reason, _serialize(_utcnow()), appointment_id),
            )
            write_event(
                conn,
                actor_id,
                "appointments:transition",
                entity="appointment",
                entity_id=appointment_id,
                meta={"from": old_state, "to": target, "reason": reason},
            )
            row = _fetch(conn, appointment_id)

    current_app.logger.info("Appointment %s moved %s -> %s", appointment_id, old_state, target)
    notify(
        APPOINTMENT_STATUS_CHANGED,
        {
            "appointment_id": appointment_id,
            "old_state": old_state,
            "new_state": target,
            "practitioner_ref": row["practitioner_ref"],
            "patient_ref": row["patient_ref"],
        },
    )
    return _row_to_dict(row)


def reschedule(
    appointment_id: str,
    starts_at: Any,
    duration_minutes: Any = None,
    *,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Move a PROPOSED or CONFIRMED appointment to a new start time."""

    practitioner_ref = _practitioner_of(appointment_id)
    start = _coerce_instant(starts_at, practitioner_zone(practitioner_ref), "starts_at")
    now = _utcnow()
    if start <= now:
        raise ValidationError("start_not_in_future")

    with resource_lock(practitioner_key(practitioner_ref)):
        with write_transaction() as conn:
            row = _fetch(conn, appointment_id)
            if row["status"] not in (PROPOSED, CONFIRMED):
                raise InvalidStateError("appointment_not_reschedulable", status=row["status"])
            if duration_minutes is None or duration_minutes == "":
                minutes = int(row["duration_minutes"])
            else:
                minutes = _coerce_duration(duration_minutes)
            start_iso = _serialize(start)
            end_iso = _serialize(_end_of(start, minutes))
            _raise_if_conflict(
                _find_conflict(conn, practitioner_ref, start_iso, end_iso, exclude_id=appointment_id)
            )
            conn.execute(
                """
                UPDATE appointments
                SET starts_at=?, ends_at=?, duration_minutes=?, updated_at=?
                WHERE id=?
                """,
                (start_iso, end_iso, minutes, _serialize(now), appointment_id),
            )
            write_event(
                conn,
                actor_id,
                "appointments:reschedule",
                entity="appointment",
                entity_id=appointment_id,
                meta={"from": row["starts_at"], "to": start_iso, "minutes": minutes},
            )
            row = _fetch(conn, appointment_id)
    return _row_to_dict(row)


def soft_delete(appointment_id: str, *, actor_id: str | None = None) -> None:
    """Hide an appointment from calendars and conflict checks, keeping the row."""

    practitioner_ref = _practitioner_of(appointment_id)
    with resource_lock(practitioner_key(practitioner_ref)):
        with write_transaction() as conn:
            _fetch(conn, appointment_id)
            conn.execute(
                "UPDATE appointments SET is_deleted=1, updated_at=? WHERE id=?",
                (_serialize(_utcnow()), appointment_id),
            )
            write_event(conn, actor_id, "appointments:delete", entity="appointment", entity_id=appointment_id)
    current_app.logger.info("Appointment %s soft-deleted", appointment_id)


def get_appointment(appointment_id: str) -> dict[str, Any]:
    """Look up an appointment by id, soft-deleted ones included."""

    with read_connection() as conn:
        row = _fetch(conn, appointment_id, include_deleted=True)
    return _row_to_dict(row, practitioner_zone(row["practitioner_ref"]))


def appointment_history(appointment_id: str) -> list[dict[str, Any]]:
    with read_connection() as conn:
        _fetch(conn, appointment_id, include_deleted=True)
        return events_for(conn, "appointment", appointment_id)


def _day_bounds(day: date, zone: tzinfo) -> tuple[str, str]:
    try:
        local_start = datetime.combine(day, time.min, tzinfo=zone)
        local_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
        return _serialize(local_start), _serialize(local_end)
    except OverflowError as exc:
        raise ValidationError("day_invalid") from exc


def find_day_agenda(practitioner_ref: Any, day: Any) -> list[dict[str, Any]]:
    """Appointments starting on ``day`` in the practitioner's time zone, earliest first."""

    practitioner_ref = require_ref(practitioner_ref, "practitioner_ref")
    zone = practitioner_zone(practitioner_ref)
    start_iso, end_iso = _day_bounds(_coerce_day(day), zone)
    with read_connection() as conn:
        rows = conn.execute(
            """
            SELECT *
            FROM appointments
            WHERE practitioner_ref = ?
              AND is_deleted = 0
              AND starts_at >= ?
              AND starts_at < ?
            ORDER BY starts_at ASC, created_at ASC
            """,
            (practitioner_ref, start_iso, end_iso),
        ).fetchall()
    return [_row_to_dict(row, zone) for row in rows]


def list_for_day(day: Any) -> list[dict[str, Any]]:
    """All practitioners' appointments for a clinic-local day."""

    zone = clinic_zone()
    start_iso, end_iso = _day_bounds(_coerce_day(day), zone)
    with read_connection() as conn:
        rows = conn.execute(
            """
            SELECT *
            FROM appointments
            WHERE is_deleted = 0
              AND starts_at >= ?
              AND starts_at < ?
            ORDER BY starts_at ASC, practitioner_ref ASC
            """,
            (start_iso, end_iso),
        ).fetchall()
    return [_row_to_dict(row, zone) for row in rows]


def availability(practitioner_ref: Any, window_start: Any, window_end: Any) -> list[dict[str, Any]]:
    """Free intervals inside ``[window_start, window_end)``.

    Computed from the live calendar on every call; nothing is cached.
    """

    practitioner_ref = require_ref(practitioner_ref, "practitioner_ref")
    zone = practitioner_zone(practitioner_ref)
    start = _coerce_instant(window_start, zone, "window_start")
    end = _coerce_instant(window_end, zone, "window_end")
    if end <= start:
        raise ValidationError("window_invalid")
    with read_connection() as conn:
        rows = conn.execute(
            """
            SELECT starts_at, ends_at
            FROM appointments
            WHERE practitioner_ref = ?
              AND is_deleted = 0
              AND status NOT IN (?, ?)
              AND starts_at < ?
              AND ends_at > ?
            ORDER BY starts_at ASC
            """,
            (practitioner_ref, *sorted(INACTIVE_STATUSES), _serialize(end), _serialize(start)),
        ).fetchall()

    free: list[tuple[datetime, datetime]] = []
    cursor = start
    for row in rows:
        busy_start = max(_parse(row["starts_at"]), start)
        busy_end = min(_parse(row["ends_at"]), end)
        if busy_start > cursor:
            free.append((cursor, busy_start))
        cursor = max(cursor, busy_end)
    if cursor < end:
        free.append((cursor, end))

    return [
        {
            "starts_at": _serialize(gap_start),
            "ends_at": _serialize(gap_end),
            "minutes": int((gap_end - gap_start).total_seconds() // 60),
        }
        for gap_start, gap_end in free
    ]


def is_available(practitioner_ref: Any, starts_at: Any, duration_minutes: Any = None) -> bool:
    practitioner_ref = require_ref(practitioner_ref, "practitioner_ref")
    minutes = _coerce_duration(duration_minutes)
    start = _coerce_instant(starts_at, practitioner_zone(practitioner_ref), "starts_at")
    end = _end_of(start, minutes)
    with read_connection() as conn:
        return _find_conflict(conn, practitioner_ref, _serialize(start), _serialize(end)) is None
