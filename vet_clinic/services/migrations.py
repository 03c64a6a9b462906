"""Alembic migration helpers."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from flask import Flask

REPO_ROOT = Path(__file__).resolve().parents[2]


def migrations_available() -> bool:
    return (REPO_ROOT / "alembic.ini").exists() and (REPO_ROOT / "migrations").exists()


def alembic_config(app: Flask) -> Config:
    """Expose a configured Alembic Config for CLI commands."""

    cfg = Config(str(REPO_ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(REPO_ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])
    cfg.attributes["configure_logger"] = False
    return cfg


def run_migrations(app: Flask) -> None:
    """Upgrade the database to the latest revision."""

    command.upgrade(alembic_config(app), "head")
