"""Input coercion shared by the scheduler and the ledger."""

from __future__ import annotations

from typing import Any, Sequence

from vet_clinic.services.errors import ValidationError


def require_ref(value: Any, label: str) -> str:
    """Opaque identity reference; only blankness is checked here."""

    ref = str(value).strip() if value is not None else ""
    if not ref:
        raise ValidationError(f"{label}_required")
    return ref


def optional_text(value: Any) -> str | None:
    text = str(value).strip() if value is not None else ""
    return text or None


def coerce_choice(value: Any, choices: Sequence[str], label: str) -> str:
    normalized = str(value or "").strip().upper()
    if normalized not in choices:
        raise ValidationError(f"{label}_unknown", allowed=list(choices))
    return normalized


def coerce_positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label}_invalid")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label}_invalid") from exc
    if isinstance(value, float) and value != number:
        raise ValidationError(f"{label}_invalid")
    if number <= 0:
        raise ValidationError(f"{label}_not_positive")
    return number
