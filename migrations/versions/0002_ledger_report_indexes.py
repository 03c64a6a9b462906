"""Indices for encounter lookups and payment reports by date and method."""

from __future__ import annotations

from alembic import op


revision = "0002_ledger_report_indexes"
down_revision = "0001_scheduling_billing"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index("idx_invoices_encounter", "invoices", ["encounter_ref"], if_not_exists=True)
    op.create_index("idx_invoices_created", "invoices", ["created_at"], if_not_exists=True)
    op.create_index("idx_invoice_payments_paid_at", "invoice_payments", ["paid_at"], if_not_exists=True)
    op.create_index(
        "idx_invoice_payments_method",
        "invoice_payments",
        ["method", "paid_at"],
        if_not_exists=True,
    )


def downgrade() -> None:
    op.drop_index("idx_invoice_payments_method", table_name="invoice_payments")
    op.drop_index("idx_invoice_payments_paid_at", table_name="invoice_payments")
    op.drop_index("idx_invoices_created", table_name="invoices")
    op.drop_index("idx_invoices_encounter", table_name="invoices")
