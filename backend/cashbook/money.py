# Overview: Parsing and formatting of money amounts stored as integer cents.

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import InvalidAmount

# 9,999,999,999.99 keeps every aggregate inside a signed 64-bit integer
MAX_AMOUNT_CENTS = 999_999_999_999


def to_cents(value: Any, *, field: str = "amount", allow_zero: bool = False) -> int:
    """
    Convert an API amount ("12.50", 12.5, 12) to integer cents.

    Rejects booleans, scientific notation, more than two decimal places,
    negatives, and zero unless ``allow_zero``.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmount(f"{field} is required", field=field)

    if isinstance(value, str):
        raw = value.strip()
        if not raw or "e" in raw.lower():
            raise InvalidAmount(f"{field} must be a plain decimal number", field=field)
    elif isinstance(value, (int, float, Decimal)):
        raw = str(value)
    else:
        raise InvalidAmount(f"{field} must be a number", field=field)

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise InvalidAmount(f"{field} must be a number", field=field)

    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be a number", field=field)
    if amount.as_tuple().exponent < -2:
        raise InvalidAmount(f"{field} cannot have more than two decimal places", field=field)

    cents = int(amount * 100)
    return validate_cents(cents, field=field, allow_zero=allow_zero)


def validate_cents(cents: Any, *, field: str = "amount", allow_zero: bool = False) -> int:
    if not isinstance(cents, int) or isinstance(cents, bool):
        raise InvalidAmount(f"{field} must be an integer number of cents", field=field)
    if cents < 0 or (cents == 0 and not allow_zero):
        qualifier = "zero or more" if allow_zero else "greater than zero"
        raise InvalidAmount(f"{field} must be {qualifier}", field=field)
    if cents > MAX_AMOUNT_CENTS:
        raise InvalidAmount(f"{field} is too large", field=field)
    return cents


def format_cents(cents: int | None) -> str | None:
    if cents is None:
        return None
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    return f"{sign}{whole}.{frac:02d}"
