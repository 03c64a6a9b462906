"""JSON endpoints for the invoice ledger."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import BadRequest

from vet_clinic.extensions import limiter
from vet_clinic.services.invoices import (
    add_item,
    balance,
    get_invoice,
    get_invoice_by_encounter,
    get_invoice_by_number,
    get_payment_by_receipt,
    list_for_owner,
    list_for_patient,
    list_invoices_between,
    list_outstanding,
    list_payments,
    list_payments_between,
    list_payments_by_method,
    list_payments_by_receiver,
    open_invoice,
    record_payment,
    total_billed,
    total_by_method,
    total_collected,
)

bp = Blueprint("invoices", __name__, url_prefix="/api")


def _write_limit() -> str:
    return current_app.config.get("API_WRITE_RATE_LIMIT", "120 per minute")


def _payload() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BadRequest("Expected a JSON object body")
    return payload


def _actor() -> str | None:
    return request.headers.get("X-Actor-Id") or None


@bp.route("/invoices", methods=["POST"])
@limiter.limit(_write_limit)
def create():
    payload = _payload()
    invoice = open_invoice(
        payload.get("patient_ref"),
        payload.get("owner_ref"),
        payload.get("issued_by_ref"),
        payload.get("encounter_ref"),
        payload.get("notes"),
        actor_id=_actor(),
    )
    return jsonify({"success": True, "invoice": invoice}), 201


@bp.route("/invoices", methods=["GET"])
def index():
    patient = request.args.get("patient")
    owner = request.args.get("owner")
    if patient:
        invoices = list_for_patient(patient)
    elif owner:
        invoices = list_for_owner(owner)
    elif request.args.get("outstanding") in ("1", "true"):
        invoices = list_outstanding()
    elif request.args.get("from") and request.args.get("to"):
        invoices = list_invoices_between(request.args["from"], request.args["to"])
    else:
        raise BadRequest("Filter by patient, owner, outstanding=1 or from/to")
    return jsonify({"success": True, "invoices": invoices})


@bp.route("/invoices/<invoice_id>", methods=["GET"])
def detail(invoice_id: str):
    return jsonify({"success": True, "invoice": get_invoice(invoice_id)})


@bp.route("/invoices/by-number/<number>", methods=["GET"])
def by_number(number: str):
    return jsonify({"success": True, "invoice": get_invoice_by_number(number)})


@bp.route("/invoices/by-encounter/<encounter_ref>", methods=["GET"])
def by_encounter(encounter_ref: str):
    return jsonify({"success": True, "invoice": get_invoice_by_encounter(encounter_ref)})


@bp.route("/invoices/<invoice_id>/items", methods=["POST"])
@limiter.limit(_write_limit)
def create_item(invoice_id: str):
    payload = _payload()
    invoice = add_item(
        invoice_id,
        payload.get("product_ref"),
        payload.get("quantity"),
        payload.get("unit_price"),
        payload.get("description"),
        actor_id=_actor(),
    )
    return jsonify({"success": True, "invoice": invoice}), 201


@bp.route("/invoices/<invoice_id>/payments", methods=["POST"])
@limiter.limit(_write_limit)
def create_payment(invoice_id: str):
    payload = _payload()
    payment = record_payment(
        invoice_id,
        payload.get("amount"),
        payload.get("method"),
        payload.get("received_by_ref"),
        payload.get("note"),
        actor_id=_actor(),
    )
    return jsonify({"success": True, "payment": payment}), 201


@bp.route("/invoices/<invoice_id>/payments", methods=["GET"])
def payments(invoice_id: str):
    return jsonify({"success": True, "payments": list_payments(invoice_id)})


@bp.route("/invoices/<invoice_id>/balance", methods=["GET"])
def outstanding(invoice_id: str):
    return jsonify({"success": True, "balance": balance(invoice_id)})


@bp.route("/receipts/<receipt_number>", methods=["GET"])
def receipt(receipt_number: str):
    return jsonify({"success": True, "payment": get_payment_by_receipt(receipt_number)})


@bp.route("/payments", methods=["GET"])
def payment_index():
    method = request.args.get("method")
    received_by = request.args.get("received_by")
    if method:
        found = list_payments_by_method(method)
    elif received_by:
        found = list_payments_by_receiver(received_by)
    elif request.args.get("from") and request.args.get("to"):
        found = list_payments_between(request.args["from"], request.args["to"])
    else:
        raise BadRequest("Filter by method, received_by or from/to")
    return jsonify({"success": True, "payments": found})


@bp.route("/reports/ledger", methods=["GET"])
def ledger_report():
    start_day = request.args.get("from")
    end_day = request.args.get("to")
    if not start_day or not end_day:
        raise BadRequest("from and to are required")
    report = {
        "from": start_day,
        "to": end_day,
        "billed": total_billed(start_day, end_day),
        "collected": total_collected(start_day, end_day),
    }
    method = request.args.get("method")
    if method:
        report["method"] = method
        report["method_total"] = total_by_method(method, start_day, end_day)
    return jsonify({"success": True, "report": report})
