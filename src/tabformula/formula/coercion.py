"""Type coercion for tabformula.

Every conversion here is total: it accepts any formula value and returns
a value of the target type (or the mode's sentinel), never raising.

``strict=False`` is the legacy behaviour: absent or unparseable input
becomes a zero/empty value. ``strict=True`` is the Codd behaviour: it
becomes None so NULL keeps propagating.
"""

import math
import re
from collections.abc import Callable
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from tabformula.formula.values import UNKNOWN, CoddMark, ValueType, is_absent

_NUMBER_PATTERN = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d")

_FALSE_WORDS = frozenset({"false", "0"})

# Which source types may feed an operator expecting another type.
# Text does not coerce to number; parsing it is lossy.
COERCION_MATRIX: dict[ValueType, frozenset[ValueType]] = {
    ValueType.NUMBER: frozenset({ValueType.TEXT, ValueType.BOOLEAN}),
    ValueType.TEXT: frozenset({ValueType.BOOLEAN}),
    ValueType.BOOLEAN: frozenset({ValueType.NUMBER, ValueType.TEXT}),
    ValueType.DATE: frozenset({ValueType.NUMBER, ValueType.TEXT}),
    ValueType.ARRAY: frozenset({ValueType.TEXT}),
    ValueType.NULL: frozenset(
        {ValueType.NUMBER, ValueType.TEXT, ValueType.BOOLEAN, ValueType.ARRAY, ValueType.DATE}
    ),
}


def can_coerce(from_type: ValueType, to_type: ValueType) -> bool:
    """Check whether values of ``from_type`` may be fed where ``to_type`` is expected."""
    if from_type == to_type or to_type == ValueType.ANY or from_type == ValueType.ANY:
        return True
    return to_type in COERCION_MATRIX.get(from_type, frozenset())


# =============================================================================
# Conversions
# =============================================================================


def to_number(value: Any, strict: bool = False) -> int | float | None:
    """
    Convert a value to a number.

    Args:
        value: Any formula value
        strict: Return None instead of 0 for absent/unparseable input

    Returns:
        int or float, or the mode's sentinel
    """
    sentinel = None if strict else 0

    if value is None or value is UNKNOWN or isinstance(value, CoddMark):
        return sentinel
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return sentinel if math.isnan(value) else value
    if isinstance(value, Decimal):
        if value.is_nan():
            return sentinel
        if value.is_infinite() or value != value.to_integral_value():
            return float(value)
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp()
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not _NUMBER_PATTERN.match(text):
            return sentinel
        if any(c in text for c in ".eE"):
            return float(text)
        try:
            return int(text)
        except ValueError:
            # beyond the interpreter's int string conversion limit
            return float(text)
    if isinstance(value, (list, tuple)) and len(value) == 1:
        return to_number(value[0], strict)
    return sentinel


def to_integer(value: Any, default: int = 0) -> int:
    """Convert a value to an int, truncating toward zero."""
    number = to_number(value, strict=True)
    if number is None or (isinstance(number, float) and math.isinf(number)):
        return default
    return int(number)


def to_text(value: Any, strict: bool = False) -> str | None:
    """Convert a value to text."""
    if value is UNKNOWN:
        return "UNKNOWN"
    if value is None or isinstance(value, CoddMark):
        return None if strict else ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ", ".join(to_text(v) for v in value if not is_absent(v))
    return str(value)


def to_boolean(value: Any, strict: bool = False) -> bool | None:
    """Convert a value to a boolean."""
    if value is UNKNOWN or is_absent(value):
        return None if strict else False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        number = to_number(value, strict=True)
        return number is not None and number != 0
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_WORDS
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def to_date(value: Any, strict: bool = False) -> date | datetime | None:
    """
    Convert a value to a date or datetime.

    Unparseable input yields None in both modes; there is no sensible
    "zero" date to fall back on.
    """
    if isinstance(value, (datetime, date)):
        return value
    if value is None or isinstance(value, bool) or value is UNKNOWN:
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def to_datetime(value: Any) -> datetime | None:
    """Convert a value to a datetime (dates become midnight)."""
    converted = to_date(value)
    if converted is None or isinstance(converted, datetime):
        return converted
    return datetime.combine(converted, time.min)


def to_collection(value: Any, strict: bool = False) -> list[Any]:
    """Convert a value to a list."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None or isinstance(value, CoddMark):
        return []
    return [value]


COERCERS: dict[ValueType, Callable[..., Any]] = {
    ValueType.NUMBER: to_number,
    ValueType.TEXT: to_text,
    ValueType.BOOLEAN: to_boolean,
    ValueType.DATE: to_date,
    ValueType.ARRAY: to_collection,
}


def coerce(value: Any, target: ValueType, strict: bool = False) -> Any:
    """Convert a value to ``target``; ANY and NULL leave it unchanged."""
    converter = COERCERS.get(target)
    if converter is None:
        return value
    return converter(value, strict)
