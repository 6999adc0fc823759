"""Value universe for tabformula.

Formula values are plain Python objects classified by ``ValueType``:

- NUMBER: int, float, Decimal (but not bool)
- TEXT: str
- BOOLEAN: bool, plus the three-valued ``UNKNOWN``
- DATE: date, datetime
- ARRAY: list, tuple
- NULL: None and the Codd absence marks (``AMark``, ``IMark``)

Records may also carry multi-observation cells, which are resolved to
their dominant (most recent) value before a formula sees them.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar


class ValueType(str, Enum):
    """Types of the formula value universe."""

    NUMBER = "number"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"
    NULL = "null"
    ANY = "any"


# =============================================================================
# Three-valued logic
# =============================================================================


class _Unknown:
    """The UNKNOWN truth value of three-valued logic.

    Distinct from True, False and None. Falsy in a Python boolean
    context, so code that forgets about 3VL never treats it as true.
    """

    _instance: "_Unknown | None" = None

    def __new__(cls) -> "_Unknown":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNKNOWN"

    __str__ = __repr__

    def __reduce__(self) -> tuple[type, tuple]:
        return (_Unknown, ())


UNKNOWN = _Unknown()


# =============================================================================
# Codd absence marks
# =============================================================================


@dataclass(frozen=True)
class CoddMark:
    """Base for Codd's distinguished absence markers."""

    reason: str = ""
    kind: ClassVar[str] = "mark"

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class AMark(CoddMark):
    """Applicable but unknown: the value exists, we just don't know it."""

    reason: str = "Value exists but is unknown"
    kind: ClassVar[str] = "a_mark"


@dataclass(frozen=True)
class IMark(CoddMark):
    """Inapplicable: the attribute does not apply to this entity."""

    reason: str = "Attribute does not apply to this entity"
    kind: ClassVar[str] = "i_mark"


def is_unknown(value: Any) -> bool:
    """Check for the three-valued UNKNOWN."""
    return value is UNKNOWN


def is_mark(value: Any) -> bool:
    """Check for an A-mark or I-mark."""
    return isinstance(value, CoddMark)


def is_absent(value: Any, empty_text: bool = True) -> bool:
    """
    Check whether a value represents missing data.

    Args:
        value: Value to check
        empty_text: Whether the empty string counts as absent

    Returns:
        True for None, Codd marks and (optionally) empty text
    """
    if value is None or isinstance(value, CoddMark):
        return True
    if empty_text and isinstance(value, str) and value == "":
        return True
    return False


def type_of(value: Any) -> ValueType:
    """Classify a value into the formula type universe."""
    if value is None or isinstance(value, CoddMark):
        return ValueType.NULL
    if value is UNKNOWN or isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float, Decimal)):
        return ValueType.NUMBER
    if isinstance(value, (date, datetime)):
        return ValueType.DATE
    if isinstance(value, (list, tuple)):
        return ValueType.ARRAY
    return ValueType.TEXT


def same_value(left: Any, right: Any) -> bool:
    """Type-strict equality: ``0`` never matches ``False``, ``1`` never ``True``."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if left is UNKNOWN or right is UNKNOWN:
        return left is right
    if type_of(left) != type_of(right):
        return False
    return left == right


# =============================================================================
# Multi-observation cells
# =============================================================================


@dataclass(frozen=True)
class Observation:
    """A single observed value with the time it was recorded."""

    value: Any
    timestamp: Any = None


@dataclass
class MultiObservationCell:
    """A record cell holding several observations of the same field."""

    observations: list[Observation] = field(default_factory=list)

    def add(self, value: Any, timestamp: Any = None) -> "MultiObservationCell":
        """Append an observation and return the cell for chaining."""
        self.observations.append(Observation(value, timestamp))
        return self

    def dominant_value(self) -> Any:
        """
        Pick the value formulas see for this cell.

        The most recent observation wins; among equal timestamps the
        earliest-inserted one is kept. Observations whose timestamp cannot
        be read rank below every readable one.
        """
        best: Observation | None = None
        best_key: float | None = None
        for observation in self.observations:
            key = timestamp_key(observation.timestamp)
            if best is None or (key is not None and (best_key is None or key > best_key)):
                best, best_key = observation, key
        return best.value if best is not None else None

    def __len__(self) -> int:
        return len(self.observations)


def timestamp_key(timestamp: Any) -> float | None:
    """Convert an observation timestamp into a sortable POSIX time."""
    if timestamp is None or isinstance(timestamp, bool):
        return None
    if isinstance(timestamp, (int, float)):
        return float(timestamp)
    if isinstance(timestamp, str):
        try:
            timestamp = datetime.fromisoformat(timestamp.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return timestamp.timestamp()
    if isinstance(timestamp, date):
        return datetime.combine(timestamp, time.min, tzinfo=timezone.utc).timestamp()
    return None


def resolve_cell(raw: Any) -> Any:
    """
    Resolve a record cell to the single value a formula operates on.

    Accepts ``MultiObservationCell`` instances and the mapping form
    ``{"values": [{"value": ..., "timestamp": ...}, ...]}``; anything
    else is returned unchanged.
    """
    if isinstance(raw, MultiObservationCell):
        return raw.dominant_value()
    if isinstance(raw, Mapping) and isinstance(raw.get("values"), (list, tuple)):
        cell = MultiObservationCell()
        for item in raw["values"]:
            if isinstance(item, Observation):
                cell.observations.append(item)
            elif isinstance(item, Mapping):
                cell.add(item.get("value"), item.get("timestamp"))
            else:
                cell.add(item)
        return cell.dominant_value()
    return raw
