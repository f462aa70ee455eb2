from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from flask import current_app

from .errors import ValidationError
from .time_utils import parse_iso_date


# Maximum unit price: 9,999,999.99 (999,999,999 cents)
# Prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for quantities, ids and cent amounts.

    Rejects floats, booleans, decimals in strings and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def positive_int(value: Any, field: str) -> int:
    n = coerce_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be > 0")
    return n


def non_negative_int(value: Any, field: str) -> int:
    n = coerce_int(value, field)
    if n < 0:
        raise ValidationError(f"{field} must be >= 0")
    return n


def price_cents(value: Any, field: str = "unit_price_cents") -> int:
    n = non_negative_int(value, field)
    if n > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})")
    return n


def percentage(value: Any, field: str) -> Decimal:
    """Parse a 0-100 percentage into a Decimal (accepts numbers or numeric strings)."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        pct = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if pct < 0 or pct > 100:
        raise ValidationError(f"{field} must be between 0 and 100")
    return pct


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


def one_of(value: Any, field: str, allowed: set[str] | frozenset[str]) -> str:
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")
    return value


def is_present(value: Any) -> bool:
    """
    True when a payload value counts as supplied.

    None, blank strings and empty collections are treated as missing.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) > 0
    return True


def page_args(args, *, default_limit: int | None = None, max_limit: int | None = None) -> tuple[int, int]:
    """
    Read and clamp limit/offset query parameters.

    Defaults come from DEFAULT_PAGE_LIMIT / MAX_PAGE_LIMIT in the app config.
    """
    if default_limit is None:
        default_limit = current_app.config.get("DEFAULT_PAGE_LIMIT", 50)
    if max_limit is None:
        max_limit = current_app.config.get("MAX_PAGE_LIMIT", 500)
    limit = args.get("limit", default_limit, type=int)
    offset = args.get("offset", 0, type=int)
    limit = max(1, min(limit if limit is not None else default_limit, max_limit))
    offset = max(0, offset or 0)
    return limit, offset
