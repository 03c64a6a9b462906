"""Veterinary clinic scheduling and billing engine exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .blueprints import register_blueprints
from .cli import register_cli
from .extensions import init_extensions
from .services.auto_migrate import auto_upgrade
from .services.bootstrap import ensure_base_tables
from .services.errors import ClinicError, record_exception

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    return root


def _parse_zone_map(raw: str) -> dict[str, str]:
    """``"vet-1=America/Bogota,vet-2=UTC"`` -> ``{"vet-1": "America/Bogota", ...}``."""

    zones: dict[str, str] = {}
    for chunk in raw.split(","):
        ref, sep, zone = chunk.partition("=")
        if sep and ref.strip() and zone.strip():
            zones[ref.strip()] = zone.strip()
    return zones


def create_app(config_overrides: dict | None = None) -> Flask:
    repo_root = Path(__file__).resolve().parent.parent
    db_override = os.getenv("CLINIC_DB_PATH")
    data_root = _data_root(repo_root, Path(db_override).parent if db_override else None)
    db_path = Path(db_override) if db_override else data_root / "app.db"

    app = Flask(__name__)
    app.config.update(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False, "timeout": 5}},
        SQLITE_BUSY_TIMEOUT_MS=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        API_WRITE_RATE_LIMIT=os.getenv("API_WRITE_RATE_LIMIT", "120 per minute"),
        DATA_ROOT=str(data_root),
        CLINIC_DB=str(db_path),
        CLINIC_TIMEZONE=os.getenv("CLINIC_TIMEZONE", "UTC"),
        PRACTITIONER_TIMEZONES=_parse_zone_map(os.getenv("PRACTITIONER_TIMEZONES", "")),
        APPOINTMENT_DEFAULT_MINUTES=int(os.getenv("APPOINTMENT_DEFAULT_MINUTES", "30")),
        INVOICE_TAX_PERCENT=os.getenv("INVOICE_TAX_PERCENT", "19.00"),
        INVOICE_NUMBER_PREFIX=os.getenv("INVOICE_NUMBER_PREFIX", "FAC"),
        RECEIPT_NUMBER_PREFIX=os.getenv("RECEIPT_NUMBER_PREFIX", "REC"),
        LOCK_TIMEOUT_SECONDS=float(os.getenv("LOCK_TIMEOUT_SECONDS", "5")),
        NOTIFY_WORKERS=int(os.getenv("NOTIFY_WORKERS", "2")),
    )
    if config_overrides:
        app.config.update(config_overrides)

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_base_tables(Path(app.config["CLINIC_DB"]))
    register_cli(app)

    @app.errorhandler(ClinicError)
    def handle_clinic_error(exc: ClinicError):
        if exc.status_code >= 500:
            app.logger.warning("Retryable failure: %s %s", exc.code, exc.details)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        if exc.code and exc.code >= 500:
            return exc
        return jsonify({"success": False, "error": exc.name.lower().replace(" ", "_"), "message": exc.description}), exc.code

    @app.errorhandler(500)
    def handle_internal_error(e):
        original = getattr(e, "original_exception", None) or e
        record_exception("api", original)
        return jsonify({"success": False, "error": "internal_error"}), 500

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
