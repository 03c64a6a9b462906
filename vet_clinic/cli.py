"""Flask CLI commands for migrations and front-desk lookups."""

from __future__ import annotations

import click
from flask import Flask
from flask.cli import AppGroup, with_appcontext

from vet_clinic.services.appointments import find_day_agenda
from vet_clinic.services.errors import ClinicError
from vet_clinic.services.invoices import get_invoice
from vet_clinic.services.migrations import run_migrations


def register_cli(app: Flask) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        run_migrations(app)
        click.echo("Database upgraded to head.")

    app.cli.add_command(db_group)

    @app.cli.command("agenda")
    @click.argument("practitioner")
    @click.argument("day")
    @with_appcontext
    def agenda(practitioner: str, day: str) -> None:
        """Print a practitioner's appointments for DAY (YYYY-MM-DD)."""
        try:
            rows = find_day_agenda(practitioner, day)
        except ClinicError as exc:
            raise click.ClickException(exc.code) from exc
        if not rows:
            click.echo(f"No appointments for {practitioner} on {day}.")
            return
        for appt in rows:
            click.echo(
                f"{appt['local_starts_at']}  {appt['duration_minutes']:>3}m  "
                f"{appt['status']:<11}  {appt['service_kind']:<12}  {appt['patient_ref']}"
            )

    @app.cli.command("invoice-balance")
    @click.argument("invoice_id")
    @with_appcontext
    def invoice_balance(invoice_id: str) -> None:
        try:
            invoice = get_invoice(invoice_id)
        except ClinicError as exc:
            raise click.ClickException(exc.code) from exc
        click.echo(
            f"{invoice['number']}  total={invoice['total']}  paid={invoice['amount_paid']}  "
            f"balance={invoice['balance']}  status={invoice['status']}"
        )
