"""Appointment scheduling, invoice ledger and audit trail."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_scheduling_billing"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "appointments",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("patient_ref", sa.Text(), nullable=False),
        sa.Column("practitioner_ref", sa.Text(), nullable=False),
        sa.Column("service_kind", sa.Text(), nullable=False),
        sa.Column("starts_at", sa.Text(), nullable=False),
        sa.Column("ends_at", sa.Text(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="PROPOSED", nullable=False),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.Text(), nullable=False),
        sa.CheckConstraint("duration_minutes > 0", name="ck_appointments_duration"),
        sa.CheckConstraint(
            "status IN ('PROPOSED','CONFIRMED','IN_PROGRESS','COMPLETED','CANCELLED','NO_SHOW')",
            name="ck_appointments_status",
        ),
        sa.CheckConstraint(
            "service_kind IN ('CONSULTATION','SURGERY','VACCINATION','CHECKUP','EMERGENCY')",
            name="ck_appointments_service_kind",
        ),
    )
    op.create_index(
        "idx_appointments_practitioner_start",
        "appointments",
        ["practitioner_ref", "starts_at"],
    )

    op.create_table(
        "number_sequences",
        sa.Column("sequence_key", sa.Text(), primary_key=True),
        sa.Column("last_number", sa.Integer(), nullable=False),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("number", sa.Text(), nullable=False, unique=True),
        sa.Column("patient_ref", sa.Text(), nullable=False),
        sa.Column("owner_ref", sa.Text(), nullable=False),
        sa.Column("encounter_ref", sa.Text(), nullable=True),
        sa.Column("issued_by_ref", sa.Text(), nullable=False),
        sa.Column("tax_rate", sa.Text(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("tax_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_cents", sa.Integer(), server_default="0", nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.Text(), nullable=False),
    )
    op.create_index("idx_invoices_patient", "invoices", ["patient_ref"])
    op.create_index("idx_invoices_owner", "invoices", ["owner_ref"])

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("invoice_id", sa.Text(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_ref", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Text(), nullable=False),
        sa.Column("line_total", sa.Text(), nullable=False),
        sa.Column("created_at", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity"),
    )
    op.create_index("idx_invoice_items_invoice", "invoice_items", ["invoice_id", "position"])

    op.create_table(
        "invoice_payments",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("invoice_id", sa.Text(), nullable=False),
        sa.Column("receipt_number", sa.Text(), nullable=False, unique=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.Text(), nullable=False),
        sa.Column("received_by_ref", sa.Text(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoices.id"], ondelete="CASCADE"),
        sa.CheckConstraint("amount_cents > 0", name="ck_invoice_payments_amount"),
    )
    op.create_index("idx_invoice_payments_invoice", "invoice_payments", ["invoice_id", "paid_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_user_id", sa.Text(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("entity", sa.Text(), nullable=True),
        sa.Column("entity_id", sa.Text(), nullable=True),
        sa.Column("ts", sa.Text(), nullable=False),
        sa.Column("result", sa.Text(), server_default="ok", nullable=False),
        sa.Column("meta_json_redacted", sa.Text(), server_default="{}", nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_index("idx_invoice_payments_invoice", table_name="invoice_payments")
    op.drop_table("invoice_payments")
    op.drop_index("idx_invoice_items_invoice", table_name="invoice_items")
    op.drop_table("invoice_items")
    op.drop_index("idx_invoices_owner", table_name="invoices")
    op.drop_index("idx_invoices_patient", table_name="invoices")
    op.drop_table("invoices")
    op.drop_table("number_sequences")
    op.drop_index("idx_appointments_practitioner_start", table_name="appointments")
    op.drop_table("appointments")
