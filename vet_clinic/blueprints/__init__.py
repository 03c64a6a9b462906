"""Blueprint registration."""

from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask) -> None:
    from .appointments.routes import bp as appointments_bp
    from .invoices.routes import bp as invoices_bp

    app.register_blueprint(appointments_bp)
    app.register_blueprint(invoices_bp)
