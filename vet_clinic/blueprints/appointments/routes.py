"""JSON endpoints for the appointment scheduler."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import BadRequest

from vet_clinic.extensions import limiter
from vet_clinic.services.appointments import (
    appointment_history,
    availability,
    find_day_agenda,
    get_appointment,
    is_available,
    list_for_day,
    propose,
    reschedule,
    soft_delete,
    transition,
)

bp = Blueprint("appointments", __name__, url_prefix="/api")


def _write_limit() -> str:
    return current_app.config.get("API_WRITE_RATE_LIMIT", "120 per minute")


def _payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BadRequest("Expected a JSON object body")
    return payload


def _actor() -> str | None:
    return request.headers.get("X-Actor-Id") or None


@bp.route("/appointments", methods=["POST"])
@limiter.limit(_write_limit)
def create():
    payload = _payload()
    appt = propose(
        payload.get("patient_ref"),
        payload.get("practitioner_ref"),
        payload.get("starts_at"),
        payload.get("service_kind"),
        payload.get("duration_minutes"),
        payload.get("reason"),
        payload.get("notes"),
        actor_id=_actor(),
    )
    return jsonify({"success": True, "appointment": appt}), 201


@bp.route("/appointments/<appt_id>", methods=["GET"])
def detail(appt_id: str):
    return jsonify({"success": True, "appointment": get_appointment(appt_id)})


@bp.route("/appointments/<appt_id>/history", methods=["GET"])
def history(appt_id: str):
    return jsonify({"success": True, "events": appointment_history(appt_id)})


@bp.route("/appointments/<appt_id>/transition", methods=["POST"])
@limiter.limit(_write_limit)
def change_status(appt_id: str):
    payload = _payload()
    appt = transition(
        appt_id,
        payload.get("target_state"),
        payload.get("cancellation_reason"),
        actor_id=_actor(),
    )
    return jsonify({"success": True, "appointment": appt})


@bp.route("/appointments/<appt_id>/reschedule", methods=["POST"])
@limiter.limit(_write_limit)
def move(appt_id: str):
    payload = _payload()
    appt = reschedule(
        appt_id,
        payload.get("starts_at"),
        payload.get("duration_minutes"),
        actor_id=_actor(),
    )
    return jsonify({"success": True, "appointment": appt})


@bp.route("/appointments/<appt_id>", methods=["DELETE"])
@limiter.limit(_write_limit)
def delete(appt_id: str):
    soft_delete(appt_id, actor_id=_actor())
    return jsonify({"success": True})


@bp.route("/appointments", methods=["GET"])
def day_listing():
    day = request.args.get("day")
    if not day:
        raise BadRequest("Missing required query parameter: day")
    return jsonify({"success": True, "appointments": list_for_day(day)})


@bp.route("/practitioners/<practitioner_ref>/agenda", methods=["GET"])
def agenda(practitioner_ref: str):
    day = request.args.get("day")
    if not day:
        raise BadRequest("Missing required query parameter: day")
    return jsonify({"success": True, "appointments": find_day_agenda(practitioner_ref, day)})


@bp.route("/practitioners/<practitioner_ref>/availability", methods=["GET"])
def free_slots(practitioner_ref: str):
    start = request.args.get("start")
    end = request.args.get("end")
    if not start or not end:
        raise BadRequest("Missing required query parameters: start, end")
    return jsonify({"success": True, "free": availability(practitioner_ref, start, end)})


@bp.route("/practitioners/<practitioner_ref>/available", methods=["GET"])
def check_slot(practitioner_ref: str):
    start = request.args.get("starts_at")
    if not start:
        raise BadRequest("Missing required query parameter: starts_at")
    free = is_available(practitioner_ref, start, request.args.get("duration_minutes"))
    return jsonify({"success": True, "available": free})
