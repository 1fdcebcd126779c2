"""
Exchange Adapters - Decimal and Timestamp Parsing.

============================================================
PURPOSE
============================================================
Exchanges encode numbers and times inconsistently:
- Decimals as JSON strings, numbers or scientific notation
- Empty strings where a value is absent
- Epoch integers in seconds, milliseconds, microseconds or
  nanoseconds, and RFC3339 strings

These helpers normalize them to Decimal / datetime while keeping
the original decimal text (Decimal keeps trailing zeros).

============================================================
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union


DEFAULT_PRECISION = 8

Number = Union[str, int, float, Decimal]


# ============================================================
# DECIMALS
# ============================================================

def to_decimal(value: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """
    Parse an exchange numeric field.

    Args:
        value: str, int, float, Decimal or None
        default: Returned for None / empty / unparsable input

    Returns:
        Decimal (or default)
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # repr keeps the shortest round-tripping form
        return Decimal(repr(value))

    text = str(value).strip()
    if not text:
        return default
    try:
        result = Decimal(text)
    except InvalidOperation:
        return default
    if not result.is_finite():
        return default
    return result


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Strict variant of to_decimal: None when absent or invalid."""
    return to_decimal(value, default=None)


def precision_from_step(step: Any) -> int:
    """
    Count significant fractional digits of a step/tick size.

    "0.0100" -> 2, "1" -> 0, "1e-5" -> 5.
    """
    value = to_decimal(step, default=None)
    if value is None or value <= 0:
        return 0
    normalized = value.normalize()
    exponent = normalized.as_tuple().exponent
    return max(0, -exponent)


def quantize(value: Any, places: Optional[int] = None) -> str:
    """
    Format a decimal with exactly ``places`` fractional digits.

    Fixed-point formatting, never scientific notation. When
    ``places`` is None the DEFAULT_PRECISION is used.
    """
    number = to_decimal(value, default=None)
    if number is None:
        raise ValueError(f"not a decimal: {value!r}")
    if places is None:
        places = DEFAULT_PRECISION
    if places < 0:
        raise ValueError(f"negative precision: {places}")
    exp = Decimal(1).scaleb(-places)
    return format(number.quantize(exp, rounding=ROUND_HALF_UP), "f")


def format_decimal(value: Decimal) -> str:
    """Plain string for a Decimal without exponent or trailing zeros."""
    text = format(value.normalize(), "f")
    return text if text != "-0" else "0"


# ============================================================
# TIMESTAMPS
# ============================================================

def _from_epoch_digits(raw: int) -> datetime:
    digits = len(str(abs(raw)))
    if digits >= 19:
        seconds = raw / 1_000_000_000
    elif digits >= 16:
        seconds = raw / 1_000_000
    elif digits >= 13:
        seconds = raw / 1_000
    else:
        seconds = raw
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an exchange timestamp into an aware UTC datetime.

    Accepts:
        - datetime (returned as UTC)
        - int / numeric str: 10 digits = s, 13 = ms, 16 = us, 19 = ns
        - float / decimal str: seconds with fraction (Gate)
        - RFC3339 / ISO8601 strings, with or without "Z"

    Returns None for None, empty and zero values.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, int):
        return _from_epoch_digits(value) if value else None
    if isinstance(value, (float, Decimal)):
        if not value:
            return None
        return datetime.fromtimestamp(float(value), tz=timezone.utc)

    text = str(value).strip()
    if not text:
        return None
    if text.lstrip("-").isdigit():
        number = int(text)
        return _from_epoch_digits(number) if number else None
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return datetime.fromtimestamp(seconds, tz=timezone.utc) if seconds else None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_milliseconds(value: Union[datetime, int, None]) -> Optional[int]:
    """Epoch milliseconds for a datetime (or pass an int through)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    return int(value)
