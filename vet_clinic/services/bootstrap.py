"""Bootstrap helper to ensure scheduling and billing tables exist for first-time runs."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable


def _execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


def ensure_base_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        _execute_statements(
            conn,
            [
                """
                CREATE TABLE IF NOT EXISTS appointments (
                    id TEXT PRIMARY KEY,
                    patient_ref TEXT NOT NULL,
                    practitioner_ref TEXT NOT NULL,
                    service_kind TEXT NOT NULL,
                    starts_at TEXT NOT NULL,
                    ends_at TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    reason TEXT,
                    notes TEXT,
                    status TEXT NOT NULL DEFAULT 'PROPOSED',
                    cancellation_reason TEXT,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK(duration_minutes > 0),
                    CHECK(status IN ('PROPOSED','CONFIRMED','IN_PROGRESS','COMPLETED','CANCELLED','NO_SHOW')),
                    CHECK(service_kind IN ('CONSULTATION','SURGERY','VACCINATION','CHECKUP','EMERGENCY'))
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_appointments_practitioner_start
                ON appointments(practitioner_ref, starts_at)
                """,
                """
                CREATE TABLE IF NOT EXISTS number_sequences (
                    sequence_key TEXT PRIMARY KEY,
                    last_number INTEGER NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS invoices (
                    id TEXT PRIMARY KEY,
                    number TEXT NOT NULL UNIQUE,
                    patient_ref TEXT NOT NULL,
                    owner_ref TEXT NOT NULL,
                    encounter_ref TEXT,
                    issued_by_ref TEXT NOT NULL,
                    tax_rate TEXT NOT NULL,
                    subtotal_cents INTEGER NOT NULL DEFAULT 0,
                    tax_cents INTEGER NOT NULL DEFAULT 0,
                    total_cents INTEGER NOT NULL DEFAULT 0,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoices_patient ON invoices(patient_ref)
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoices_owner ON invoices(owner_ref)
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoices_encounter ON invoices(encounter_ref)
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoices_created ON invoices(created_at)
                """,
                """
                CREATE TABLE IF NOT EXISTS invoice_items (
                    id TEXT PRIMARY KEY,
                    invoice_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    product_ref TEXT NOT NULL,
                    description TEXT,
                    quantity INTEGER NOT NULL,
                    unit_price TEXT NOT NULL,
                    line_total TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(invoice_id) REFERENCES invoices(id) ON DELETE CASCADE,
                    CHECK(quantity > 0)
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoice_items_invoice ON invoice_items(invoice_id, position)
                """,
                """
                CREATE TABLE IF NOT EXISTS invoice_payments (
                    id TEXT PRIMARY KEY,
                    invoice_id TEXT NOT NULL,
                    receipt_number TEXT NOT NULL UNIQUE,
                    amount_cents INTEGER NOT NULL,
                    method TEXT NOT NULL,
                    received_by_ref TEXT NOT NULL,
                    note TEXT,
                    paid_at TEXT NOT NULL,
                    FOREIGN KEY(invoice_id) REFERENCES invoices(id) ON DELETE CASCADE,
                    CHECK(amount_cents > 0)
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoice_payments_invoice ON invoice_payments(invoice_id, paid_at)
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoice_payments_paid_at ON invoice_payments(paid_at)
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_invoice_payments_method ON invoice_payments(method, paid_at)
                """,
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    actor_user_id TEXT,
                    action TEXT NOT NULL,
                    entity TEXT,
                    entity_id TEXT,
                    ts TEXT NOT NULL,
                    result TEXT NOT NULL DEFAULT 'ok',
                    meta_json_redacted TEXT NOT NULL DEFAULT '{}'
                )
                """,
            ],
        )
        conn.commit()
    finally:
        conn.close()
