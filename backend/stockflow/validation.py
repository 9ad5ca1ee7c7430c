# Overview: Strict coercion of JSON/CLI input into the values services accept.

from __future__ import annotations

from datetime import date
from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_date

# Maximum money amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_CENTS = 999_999_999

MAX_QUANTITY = 1_000_000


def coerce_int(value: Any, field: str) -> int:
    """
    Integers - strict validation to reject floats and scientific notation.
    """
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_quantity(value: Any, field: str = "quantity", *, allow_zero: bool = False) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    qty = coerce_int(value, field)
    if qty < 0 or (qty == 0 and not allow_zero):
        reason = "cannot be negative" if allow_zero else "must be positive"
        raise ValidationError(f"{field} {reason}", details={"field": field, "value": qty})
    if qty > MAX_QUANTITY:
        raise ValidationError(f"{field} exceeds maximum of {MAX_QUANTITY}")
    return qty


def optional_cents(value: Any, field: str) -> int | None:
    if value is None:
        return None
    cents = coerce_int(value, field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative")
    if cents > MAX_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_CENTS}")
    return cents


def require_cents(value: Any, field: str, *, positive: bool = False) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    cents = optional_cents(value, field)
    if positive and cents == 0:
        raise ValidationError(f"{field} must be greater than zero")
    return cents


def require_text(value: Any, field: str, *, max_length: int = 120) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_text(value: Any, field: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def optional_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")


def require_list(value: Any, field: str) -> list:
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list")
    return value


def clamp_page(page: Any, limit: Any, *, default_limit: int, max_limit: int) -> tuple[int, int]:
    """Normalize page/limit query values; page is 1-based."""
    page_num = coerce_int(page, "page") if page is not None else 1
    page_size = coerce_int(limit, "limit") if limit is not None else default_limit
    return max(1, page_num), max(1, min(page_size, max_limit))
