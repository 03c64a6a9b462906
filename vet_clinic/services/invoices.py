"""Invoice ledger: line items, payments and derived balances.

Invoice totals are stored in integer cents. Line items keep their exact
``Decimal`` unit price and line total as text; rounding happens only when the
subtotal, tax and total are recomputed. Status is never stored: it is derived
from the amount paid and the total every time an invoice is read.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
import sqlite3
import uuid
from typing import Any, Iterable

from flask import current_app

from vet_clinic.services.audit import write_event
from vet_clinic.services.database import read_connection, write_transaction
from vet_clinic.services.errors import (
    InvalidStateError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from vet_clinic.services.locks import invoice_key, resource_lock
from vet_clinic.services.money import (
    exact_product,
    from_cents,
    has_cent_precision,
    money_guard,
    parse_decimal,
    round_money,
    to_cents,
)
from vet_clinic.services.notifications import INVOICE_PAID, notify
from vet_clinic.services.sequences import next_serial
from vet_clinic.services.validation import coerce_choice, coerce_positive_int, optional_text, require_ref

PENDING = "PENDING"
PARTIAL = "PARTIAL"
PAID = "PAID"

PAYMENT_METHODS = ("CASH", "DEBIT_CARD", "CREDIT_CARD", "TRANSFER", "CHECK", "OTHER")


def invoice_status(amount_paid_cents: int, total_cents: int) -> str:
    if amount_paid_cents <= 0:
        return PENDING
    if amount_paid_cents < total_cents:
        return PARTIAL
    return PAID


def compute_totals(line_totals: Iterable[Decimal], tax_percent: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(subtotal, tax, total)`` rounded half-up to cents."""

    subtotal = round_money(sum(line_totals, Decimal("0")), "subtotal")
    tax = round_money(subtotal * tax_percent / Decimal("100"), "tax")
    total = round_money(subtotal + tax, "total")
    return subtotal, tax, total


def _stamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _tax_percent() -> Decimal:
    rate = parse_decimal(current_app.config.get("INVOICE_TAX_PERCENT", "19.00"), "tax_rate")
    if rate < 0:
        raise ValidationError("tax_rate_negative")
    return rate


def _item_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "position": row["position"],
        "product_ref": row["product_ref"],
        "description": row["description"],
        "quantity": row["quantity"],
        "unit_price": Decimal(row["unit_price"]),
        "line_total": Decimal(row["line_total"]),
    }


def _payment_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "invoice_id": row["invoice_id"],
        "receipt_number": row["receipt_number"],
        "amount": from_cents(row["amount_cents"]),
        "method": row["method"],
        "received_by_ref": row["received_by_ref"],
        "note": row["note"],
        "paid_at": row["paid_at"],
    }


def _load_invoice(conn: sqlite3.Connection, invoice_id: str) -> dict[str, Any]:
    row = conn.execute("SELECT * FROM invoices WHERE id=?", (invoice_id,)).fetchone()
    if not row:
        raise NotFoundError("invoice_not_found", invoice_id=invoice_id)
    items = conn.execute(
        "SELECT * FROM invoice_items WHERE invoice_id=? ORDER BY position ASC",
        (invoice_id,),
    ).fetchall()
    payments = conn.execute(
        "SELECT * FROM invoice_payments WHERE invoice_id=? ORDER BY paid_at ASC, receipt_number ASC",
        (invoice_id,),
    ).fetchall()
    total_cents = int(row["total_cents"])
    paid_cents = sum(int(p["amount_cents"]) for p in payments)
    return {
        "id": row["id"],
        "number": row["number"],
        "patient_ref": row["patient_ref"],
        "owner_ref": row["owner_ref"],
        "encounter_ref": row["encounter_ref"],
        "issued_by_ref": row["issued_by_ref"],
        "tax_rate": Decimal(row["tax_rate"]),
        "subtotal": from_cents(row["subtotal_cents"]),
        "tax": from_cents(row["tax_cents"]),
        "total": from_cents(total_cents),
        "amount_paid": from_cents(paid_cents),
        "balance": from_cents(max(total_cents - paid_cents, 0)),
        "status": invoice_status(paid_cents, total_cents),
        "notes": row["notes"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
        "items": [_item_dict(item) for item in items],
        "payments": [_payment_dict(payment) for payment in payments],
    }


def open_invoice(
    patient_ref: Any,
    owner_ref: Any,
    issued_by_ref: Any,
    encounter_ref: Any = None,
    notes: Any = None,
    *,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Create an empty PENDING invoice with the next sequential number."""

    patient_ref = require_ref(patient_ref, "patient_ref")
    owner_ref = require_ref(owner_ref, "owner_ref")
    issued_by_ref = require_ref(issued_by_ref, "issued_by_ref")
    rate = _tax_percent()
    prefix = current_app.config.get("INVOICE_NUMBER_PREFIX", "FAC")
    issued_at = _stamp()

    with write_transaction() as conn:
        number, _ = next_serial(conn, prefix, issued_at)
        invoice_id = str(uuid.uuid4())
        conn.execute(
            """
            INSERT INTO invoices(
                id, number, patient_ref, owner_ref, encounter_ref, issued_by_ref,
                tax_rate, subtotal_cents, tax_cents, total_cents, notes, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 0, 0, ?, ?, ?)
            """,
            (
                invoice_id,
                number,
                patient_ref,
                owner_ref,
                optional_text(encounter_ref),
                issued_by_ref,
                str(rate),
                optional_text(notes),
                issued_at,
                issued_at,
            ),
        )
        write_event(
            conn,
            actor_id or issued_by_ref,
            "invoices:open",
            entity="invoice",
            entity_id=invoice_id,
            meta={"number": number},
        )
        invoice = _load_invoice(conn, invoice_id)

    current_app.logger.info("Invoice %s opened for patient %s", number, patient_ref)
    return invoice


def add_item(
    invoice_id: str,
    product_ref: Any,
    quantity: Any,
    unit_price: Any,
    description: Any = None,
    *,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Append a line item and recompute subtotal, tax and total."""

    product_ref = require_ref(product_ref, "product_ref")
    qty = coerce_positive_int(quantity, "quantity")
    price = parse_decimal(unit_price, "unit_price")
    if price <= 0:
        raise ValidationError("unit_price_not_positive")
    money_guard(price, "unit_price")
    line_total = money_guard(exact_product(price, qty, "line_total"), "line_total")

    with resource_lock(invoice_key(invoice_id)):
        with write_transaction() as conn:
            invoice = _load_invoice(conn, invoice_id)
            if invoice["status"] == PAID:
                raise InvalidStateError("invoice_paid", invoice_id=invoice_id)
            subtotal, tax, total = compute_totals(
                [item["line_total"] for item in invoice["items"]] + [line_total],
                invoice["tax_rate"],
            )
            money_guard(total, "total")
            now = _stamp()
            conn.execute(
                """
                INSERT INTO invoice_items(
                    id, invoice_id, position, product_ref, description,
                    quantity, unit_price, line_total, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(uuid.uuid4()),
                    invoice_id,
                    len(invoice["items"]) + 1,
                    product_ref,
                    optional_text(description),
                    qty,
                    str(price),
                    str(line_total),
                    now,
                ),
            )
            conn.execute(
                """
                UPDATE invoices
                SET subtotal_cents=?, tax_cents=?, total_cents=?, updated_at=?
                WHERE id=?
                """,
                (to_cents(subtotal), to_cents(tax), to_cents(total), now, invoice_id),
            )
            write_event(
                conn,
                actor_id,
                "invoices:add_item",
                entity="invoice",
                entity_id=invoice_id,
                meta={"product_ref": product_ref, "quantity": qty, "unit_price": str(price), "total": str(total)},
            )
            invoice = _load_invoice(conn, invoice_id)
    return invoice


def record_payment(
    invoice_id: str,
    amount: Any,
    method: Any,
    received_by_ref: Any,
    note: Any = None,
    *,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Append a payment with a fresh receipt number.

    A payment that would take the amount paid past the total is rejected
    whole; the caller has to reduce or split it.
    """

    received_by_ref = require_ref(received_by_ref, "received_by_ref")
    method = coerce_choice(method, PAYMENT_METHODS, "method")
    value = parse_decimal(amount, "amount")
    if value <= 0:
        raise ValidationError("amount_not_positive")
    money_guard(value, "amount")
    if not has_cent_precision(value, "amount"):
        raise ValidationError("amount_precision")
    amount_cents = to_cents(value)
    prefix = current_app.config.get("RECEIPT_NUMBER_PREFIX", "REC")

    with resource_lock(invoice_key(invoice_id)):
        with write_transaction() as conn:
            invoice = _load_invoice(conn, invoice_id)
            if invoice["status"] == PAID:
                raise InvalidStateError("invoice_paid", invoice_id=invoice_id)
            paid_cents = to_cents(invoice["amount_paid"])
            total_cents = to_cents(invoice["total"])
            if paid_cents + amount_cents > total_cents:
                raise OverpaymentError(
                    "payment_exceeds_balance",
                    amount=str(value),
                    balance=str(invoice["balance"]),
                )
            paid_at = _stamp()
            receipt_number, _ = next_serial(conn, prefix, paid_at)
            payment_id = str(uuid.uuid4())
            conn.execute(
                """
                INSERT INTO invoice_payments(
                    id, invoice_id, receipt_number, amount_cents, method, received_by_ref, note, paid_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    payment_id,
                    invoice_id,
                    receipt_number,
                    amount_cents,
                    method,
                    received_by_ref,
                    optional_text(note),
                    paid_at,
                ),
            )
            write_event(
                conn,
                actor_id or received_by_ref,
                "invoices:record_payment",
                entity="invoice",
                entity_id=invoice_id,
                meta={"receipt_number": receipt_number, "amount": str(value), "method": method},
            )
            row = conn.execute("SELECT * FROM invoice_payments WHERE id=?", (payment_id,)).fetchone()
            new_paid_cents = paid_cents + amount_cents

    current_app.logger.info("Payment %s of %s recorded on invoice %s", receipt_number, value, invoice["number"])
    if invoice_status(new_paid_cents, total_cents) == PAID:
        notify(
            INVOICE_PAID,
            {
                "invoice_id": invoice_id,
                "number": invoice["number"],
                "total_paid": str(from_cents(new_paid_cents)),
            },
        )
    return _payment_dict(row)


def balance(invoice_id: str) -> Decimal:
    """Outstanding amount; never negative."""

    with read_connection() as conn:
        return _load_invoice(conn, invoice_id)["balance"]


def get_invoice(invoice_id: str) -> dict[str, Any]:
    with read_connection() as conn:
        return _load_invoice(conn, invoice_id)


def get_invoice_by_encounter(encounter_ref: Any) -> dict[str, Any]:
    """Most recent invoice opened for a clinical encounter."""

    encounter_ref = require_ref(encounter_ref, "encounter_ref")
    with read_connection() as conn:
        row = conn.execute(
            "SELECT id FROM invoices WHERE encounter_ref=? ORDER BY created_at DESC, number DESC LIMIT 1",
            (encounter_ref,),
        ).fetchone()
        if not row:
            raise NotFoundError("invoice_not_found", encounter_ref=encounter_ref)
        return _load_invoice(conn, row["id"])


def get_invoice_by_number(number: str) -> dict[str, Any]:
    with read_connection() as conn:
        row = conn.execute("SELECT id FROM invoices WHERE number=?", (number,)).fetchone()
        if not row:
            raise NotFoundError("invoice_not_found", number=number)
        return _load_invoice(conn, row["id"])


def _load_many(conn: sqlite3.Connection, rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [_load_invoice(conn, row["id"]) for row in rows]


def list_for_patient(patient_ref: Any) -> list[dict[str, Any]]:
    patient_ref = require_ref(patient_ref, "patient_ref")
    with read_connection() as conn:
        rows = conn.execute(
            "SELECT id FROM invoices WHERE patient_ref=? ORDER BY created_at DESC, number DESC",
            (patient_ref,),
        ).fetchall()
        return _load_many(conn, rows)


def list_for_owner(owner_ref: Any) -> list[dict[str, Any]]:
    owner_ref = require_ref(owner_ref, "owner_ref")
    with read_connection() as conn:
        rows = conn.execute(
            "SELECT id FROM invoices WHERE owner_ref=? ORDER BY created_at DESC, number DESC",
            (owner_ref,),
        ).fetchall()
        return _load_many(conn, rows)


def list_outstanding() -> list[dict[str, Any]]:
    """Invoices with a positive balance, oldest first."""

    with read_connection() as conn:
        rows = conn.execute(
            """
            SELECT i.id
            FROM invoices i
            LEFT JOIN (
                SELECT invoice_id, SUM(amount_cents) AS paid_cents
                FROM invoice_payments
                GROUP BY invoice_id
            ) p ON p.invoice_id = i.id
            WHERE COALESCE(p.paid_cents, 0) < i.total_cents
            ORDER BY i.created_at ASC, i.number ASC
            """
        ).fetchall()
        return _load_many(conn, rows)


def list_payments(invoice_id: str) -> list[dict[str, Any]]:
    with read_connection() as conn:
        return _load_invoice(conn, invoice_id)["payments"]


def get_payment_by_receipt(receipt_number: str) -> dict[str, Any]:
    with read_connection() as conn:
        row = conn.execute(
            "SELECT * FROM invoice_payments WHERE receipt_number=?",
            (receipt_number,),
        ).fetchone()
    if not row:
        raise NotFoundError("payment_not_found", receipt_number=receipt_number)
    return _payment_dict(row)


def _coerce_day(value: Any, label: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{label}_invalid") from exc


def _range_bounds(start_day: Any, end_day: Any) -> tuple[str, str]:
    """UTC stamp bounds covering ``start_day`` through ``end_day`` inclusive.

    Stored stamps look like ``2025-06-01T10:00:00+00:00``; the bounds are the
    bare ``YYYY-MM-DDT00:00:00`` prefixes, which compare correctly as text.
    """

    first = _coerce_day(start_day, "start_day")
    last = _coerce_day(end_day, "end_day")
    if first > last:
        raise ValidationError("range_invalid", start_day=first.isoformat(), end_day=last.isoformat())
    try:
        after_last = last + timedelta(days=1)
    except OverflowError as exc:
        raise ValidationError("end_day_invalid") from exc
    return f"{first.isoformat()}T00:00:00", f"{after_last.isoformat()}T00:00:00"


def list_invoices_between(start_day: Any, end_day: Any) -> list[dict[str, Any]]:
    """Invoices opened between two UTC days inclusive, newest first."""

    lower, upper = _range_bounds(start_day, end_day)
    with read_connection() as conn:
        rows = conn.execute(
            """
            SELECT id FROM invoices
            WHERE created_at >= ? AND created_at < ?
            ORDER BY created_at DESC, number DESC
            """,
            (lower, upper),
        ).fetchall()
        return _load_many(conn, rows)


def total_billed(start_day: Any, end_day: Any) -> Decimal:
    """Sum of the totals of invoices opened in the range."""

    lower, upper = _range_bounds(start_day, end_day)
    with read_connection() as conn:
        row = conn.execute(
            "SELECT COALESCE(SUM(total_cents), 0) AS cents FROM invoices WHERE created_at >= ? AND created_at < ?",
            (lower, upper),
        ).fetchone()
    return from_cents(row["cents"])


def _select_payments(where: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
    with read_connection() as conn:
        rows = conn.execute(
            f"SELECT * FROM invoice_payments WHERE {where} ORDER BY paid_at DESC, receipt_number DESC",
            params,
        ).fetchall()
    return [_payment_dict(row) for row in rows]


def _sum_payments(where: str, params: tuple[Any, ...]) -> Decimal:
    with read_connection() as conn:
        row = conn.execute(
            f"SELECT COALESCE(SUM(amount_cents), 0) AS cents FROM invoice_payments WHERE {where}",
            params,
        ).fetchone()
    return from_cents(row["cents"])


def list_payments_between(start_day: Any, end_day: Any) -> list[dict[str, Any]]:
    """Payments received between two UTC days inclusive, newest first."""

    lower, upper = _range_bounds(start_day, end_day)
    return _select_payments("paid_at >= ? AND paid_at < ?", (lower, upper))


def total_collected(start_day: Any, end_day: Any) -> Decimal:
    lower, upper = _range_bounds(start_day, end_day)
    return _sum_payments("paid_at >= ? AND paid_at < ?", (lower, upper))


def list_payments_by_method(method: Any) -> list[dict[str, Any]]:
    method = coerce_choice(method, PAYMENT_METHODS, "method")
    return _select_payments("method = ?", (method,))


def total_by_method(method: Any, start_day: Any, end_day: Any) -> Decimal:
    """Amount received with one payment method over the range."""

    method = coerce_choice(method, PAYMENT_METHODS, "method")
    lower, upper = _range_bounds(start_day, end_day)
    return _sum_payments("method = ? AND paid_at >= ? AND paid_at < ?", (method, lower, upper))


def list_payments_by_receiver(received_by_ref: Any) -> list[dict[str, Any]]:
    received_by_ref = require_ref(received_by_ref, "received_by_ref")
    return _select_payments("received_by_ref = ?", (received_by_ref,))
