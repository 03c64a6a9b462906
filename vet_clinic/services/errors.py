"""Error taxonomy for scheduling and billing plus lightweight error logging."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
import traceback
from typing import Any

from flask import current_app


class ClinicError(Exception):
    """Base exception for scheduling and billing operations.

    ``code`` is a stable machine-readable string (``"duration_not_positive"``)
    that the HTTP layer returns as-is; ``details`` carries extra context such
    as the id of a colliding appointment.
    """

    status_code = 400
    retryable = False

    def __init__(self, code: str, **details: Any) -> None:
        super().__init__(code)
        self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.code, "retryable": self.retryable}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ClinicError):
    """Raised for malformed input (past start, non-positive amount, unknown enum)."""


class NotFoundError(ClinicError):
    """Raised when an appointment, invoice or payment cannot be located."""

    status_code = 404


class ConflictError(ClinicError):
    """Raised when a requested slot overlaps an active booking."""

    status_code = 409

    @property
    def conflicting_id(self) -> str | None:
        return self.details.get("conflicting_id")


class InvalidTransitionError(ClinicError):
    """Raised when an appointment state change is not allowed."""

    status_code = 409


class InvalidStateError(ClinicError):
    """Raised when a frozen record (a paid invoice) is mutated."""

    status_code = 409


class OverpaymentError(ClinicError):
    """Raised when a payment would push the amount paid above the invoice total."""

    status_code = 422


class BusyError(ClinicError):
    """Raised when a resource lock could not be acquired in time. Retry with backoff."""

    status_code = 503
    retryable = True


def record_exception(context: str, exc: BaseException) -> None:
    """Append exception details to data/logs/app_errors.log for offline inspection."""

    try:
        root = Path(current_app.config["DATA_ROOT"]) / "logs"
        root.mkdir(parents=True, exist_ok=True)
        log_path = root / "app_errors.log"
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(f"[{datetime.now(timezone.utc).isoformat()}] {context}\n")
            handle.write("".join(traceback.format_exception(exc)))
            handle.write("\n")
    except OSError as log_exc:
        current_app.logger.warning("Could not write error log for %s: %s", context, log_exc)
