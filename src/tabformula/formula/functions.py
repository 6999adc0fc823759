"""Built-in operators for tabformula.

Registers every function and operator available in formulas into the
default ``OPERATORS`` registry, which is frozen once this module has
been imported.

Evaluation rules take already-evaluated arguments and apply the legacy
coercions themselves, so each one is total over formula values. The
only declared failure is division (and modulo) by zero.
"""

import calendar
import math
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from tabformula.core.exceptions import DivisionByZeroError
from tabformula.core.logging import get_logger
from tabformula.formula.coercion import (
    to_boolean,
    to_date,
    to_datetime,
    to_integer,
    to_number,
    to_text,
)
from tabformula.formula.registry import (
    OPERATORS,
    VARIADIC,
    AlgebraicProperty,
    OperatorCategory,
    operator,
)
from tabformula.formula.values import (
    UNKNOWN,
    AMark,
    IMark,
    ValueType,
    is_absent,
    same_value,
)

logger = get_logger(__name__)

ASSOCIATIVE = AlgebraicProperty.ASSOCIATIVE
COMMUTATIVE = AlgebraicProperty.COMMUTATIVE
IDEMPOTENT = AlgebraicProperty.IDEMPOTENT
INVOLUTORY = AlgebraicProperty.INVOLUTORY
IDENTITY = AlgebraicProperty.IDENTITY
ABSORBING = AlgebraicProperty.ABSORBING
DISTRIBUTIVE = AlgebraicProperty.DISTRIBUTIVE

NUMBER = ValueType.NUMBER
TEXT = ValueType.TEXT
BOOLEAN = ValueType.BOOLEAN
DATE = ValueType.DATE
ARRAY = ValueType.ARRAY
NULL = ValueType.NULL
ANY = ValueType.ANY


# =============================================================================
# Helpers
# =============================================================================


def _flatten(args: Iterable[Any]) -> Iterator[Any]:
    """Yield scalar values, descending into nested arrays."""
    for arg in args:
        if isinstance(arg, (list, tuple)):
            yield from _flatten(arg)
        else:
            yield arg


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_date(value: Any) -> bool:
    return isinstance(value, (date, datetime))


def _numbers(args: Iterable[Any]) -> list[int | float]:
    """Numeric values among the flattened arguments; others are skipped."""
    numbers = []
    for value in _flatten(args):
        if is_absent(value) or value is UNKNOWN or isinstance(value, bool):
            continue
        number = to_number(value, strict=True)
        if number is not None:
            numbers.append(number)
    return numbers


def _datetime_pair(left: Any, right: Any) -> tuple[datetime, datetime] | None:
    """Convert two values to mutually comparable datetimes."""
    first, second = to_datetime(left), to_datetime(right)
    if first is None or second is None:
        return None
    if (first.tzinfo is None) != (second.tzinfo is None):
        # Naive datetimes are taken as UTC
        if first.tzinfo is None:
            first = first.replace(tzinfo=timezone.utc)
        if second.tzinfo is None:
            second = second.replace(tzinfo=timezone.utc)
    return first, second


def _shift_days(value: date | datetime, days: Any) -> date | datetime | None:
    try:
        return value + timedelta(days=to_number(days))
    except (OverflowError, ValueError):
        return None


def _sign(left: Any, right: Any) -> int:
    return (left > right) - (left < right)


def values_equal(left: Any, right: Any) -> bool:
    """
    Two-valued equality used by ``=`` and ``!=``.

    Absent values equal each other and nothing else. Numbers compare
    numerically (so ``"5" = 5``), dates compare as instants.
    """
    left_absent, right_absent = is_absent(left), is_absent(right)
    if left_absent or right_absent:
        return left_absent and right_absent
    if left is UNKNOWN or right is UNKNOWN:
        return left is right
    if _is_number(left) or _is_number(right):
        x, y = to_number(left, strict=True), to_number(right, strict=True)
        return x is not None and y is not None and x == y
    if _is_date(left) or _is_date(right):
        pair = _datetime_pair(left, right)
        return pair is not None and pair[0] == pair[1]
    return left == right


def compare_values(left: Any, right: Any) -> int:
    """
    Order two values: -1, 0 or 1.

    Text compares as text, dates as instants, everything else by its
    numeric value (absent values count as 0).
    """
    if isinstance(left, str) and isinstance(right, str):
        return _sign(left, right)
    if _is_date(left) or _is_date(right):
        pair = _datetime_pair(left, right)
        if pair is not None:
            return _sign(*pair)
    return _sign(to_number(left), to_number(right))


def truth_value(value: Any, empty_text: bool = True) -> Any:
    """Map a value onto True, False or UNKNOWN."""
    if value is UNKNOWN or is_absent(value, empty_text):
        return UNKNOWN
    return to_boolean(value)


def _round_half_away(number: int | float, digits: int) -> int | float:
    if isinstance(number, int) and digits >= 0:
        return number
    if not math.isfinite(number):
        return number
    try:
        rounded = Decimal(str(number)).quantize(
            Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP
        )
    except InvalidOperation:
        return number
    return int(rounded) if digits <= 0 else float(rounded)


# =============================================================================
# Arithmetic Operators
# =============================================================================


@operator(
    "ADD",
    display_name="Add",
    symbol="+",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    properties={ASSOCIATIVE, COMMUTATIVE, IDENTITY},
    identity=0,
    inverse="SUBTRACT",
    examples=[((5, 3), 8), ((-2, 7), 5)],
)
def func_add(left: Any, right: Any) -> Any:
    """Add two numbers; a date plus a number moves the date by that many days."""
    if _is_date(left) and not _is_date(right):
        return _shift_days(left, right)
    if _is_date(right) and not _is_date(left):
        return _shift_days(right, left)
    return to_number(left) + to_number(right)


@operator(
    "SUBTRACT",
    display_name="Subtract",
    symbol="-",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    properties={IDENTITY},
    identity=0,
    identity_side="right",
    inverse="ADD",
    examples=[((10, 4), 6), ((500, 200), 300)],
)
def func_subtract(left: Any, right: Any) -> Any:
    """Subtract two numbers; date minus date gives the difference in days."""
    if _is_date(left) and _is_date(right):
        pair = _datetime_pair(left, right)
        return (pair[0] - pair[1]).days
    if _is_date(left):
        return _shift_days(left, -to_number(right))
    return to_number(left) - to_number(right)


@operator(
    "MULTIPLY",
    display_name="Multiply",
    symbol="*",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    properties={ASSOCIATIVE, COMMUTATIVE, IDENTITY, ABSORBING, DISTRIBUTIVE},
    identity=1,
    absorbing=0,
    inverse="DIVIDE",
    examples=[((4, 5), 20), ((7, 0), 0)],
)
def func_multiply(left: Any, right: Any) -> Any:
    """Multiply two numbers."""
    return to_number(left) * to_number(right)


@operator(
    "DIVIDE",
    display_name="Divide",
    symbol="/",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    properties={IDENTITY},
    identity=1,
    identity_side="right",
    inverse="MULTIPLY",
    examples=[((20, 4), 5), ((7, 2), 3.5)],
)
def func_divide(left: Any, right: Any) -> Any:
    """Divide two numbers."""
    dividend, divisor = to_number(left), to_number(right)
    if divisor == 0:
        raise DivisionByZeroError("DIVIDE")
    if isinstance(dividend, int) and isinstance(divisor, int) and dividend % divisor == 0:
        return dividend // divisor
    return dividend / divisor


@operator(
    "MODULO",
    display_name="Modulo",
    symbol="%",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    aliases=("MOD",),
    examples=[((10, 3), 1)],
)
def func_modulo(left: Any, right: Any) -> Any:
    """Remainder of a division (sign follows the divisor)."""
    dividend, divisor = to_number(left), to_number(right)
    if divisor == 0:
        raise DivisionByZeroError("MODULO")
    return dividend % divisor


# Exact integer powers are capped at this many bits of result
_MAX_POWER_BITS = 1 << 16


@operator(
    "POWER",
    display_name="Power",
    symbol="^",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    examples=[((2, 10), 1024)],
)
def func_power(base: Any, exponent: Any) -> Any:
    """Raise a number to a power; undefined results are NULL."""
    b, e = to_number(base), to_number(exponent)
    if isinstance(b, int) and isinstance(e, int) and e >= 0 and abs(b).bit_length() * e <= _MAX_POWER_BITS:
        return b**e
    try:
        return math.pow(b, e)
    except (OverflowError, ValueError):
        return None


@operator(
    "NEGATE",
    display_name="Negate",
    symbol="-",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER,),
    output_type=NUMBER,
    arity=1,
    properties={INVOLUTORY},
    examples=[((5,), -5)],
)
def func_negate(value: Any) -> Any:
    """Flip the sign of a number."""
    return -to_number(value)


@operator(
    "ABS",
    display_name="Absolute Value",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER,),
    output_type=NUMBER,
    arity=1,
    properties={IDEMPOTENT},
    examples=[((-5,), 5)],
)
def func_abs(value: Any) -> Any:
    """Absolute value."""
    return abs(to_number(value))


@operator(
    "SQRT",
    display_name="Square Root",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER,),
    output_type=NUMBER,
    arity=1,
    examples=[((16,), 4.0)],
)
def func_sqrt(value: Any) -> float | None:
    """Square root; negative input has none."""
    number = to_number(value)
    if number < 0:
        return None
    return math.sqrt(number)


@operator(
    "ROUND",
    display_name="Round",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    min_arity=1,
    properties={IDEMPOTENT},
    examples=[((3.14159, 2), 3.14), ((2.5,), 3)],
)
def func_round(value: Any, digits: Any = 0) -> Any:
    """Round half away from zero to the given number of decimal places."""
    return _round_half_away(to_number(value), to_integer(digits))


def _to_multiple(value: Any, significance: Any, rounding: Any) -> Any:
    number = to_number(value)
    step = to_number(significance)
    if isinstance(number, float) and not math.isfinite(number):
        return number
    if step == 0:
        return 0
    result = rounding(number / step) * step
    return int(result) if float(result).is_integer() else result


@operator(
    "FLOOR",
    display_name="Floor",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    min_arity=1,
    properties={IDEMPOTENT},
    examples=[((3.7,), 3)],
)
def func_floor(value: Any, significance: Any = 1) -> Any:
    """Round down to the nearest multiple of significance."""
    return _to_multiple(value, significance, math.floor)


@operator(
    "CEIL",
    display_name="Ceiling",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER, NUMBER),
    output_type=NUMBER,
    arity=2,
    min_arity=1,
    properties={IDEMPOTENT},
    aliases=("CEILING",),
    examples=[((3.2,), 4)],
)
def func_ceil(value: Any, significance: Any = 1) -> Any:
    """Round up to the nearest multiple of significance."""
    return _to_multiple(value, significance, math.ceil)


@operator(
    "INT",
    display_name="Integer",
    category=OperatorCategory.ARITHMETIC,
    input_types=(NUMBER,),
    output_type=NUMBER,
    arity=1,
    examples=[((-2.5,), -3)],
)
def func_int(value: Any) -> Any:
    """Round down to an integer."""
    number = to_number(value)
    if isinstance(number, float) and not math.isfinite(number):
        return number
    return math.floor(number)


# =============================================================================
# Comparison Operators
# =============================================================================


@operator(
    "EQUAL",
    display_name="Equal",
    symbol="=",
    category=OperatorCategory.COMPARISON,
    input_types=(ANY, ANY),
    output_type=BOOLEAN,
    arity=2,
    properties={COMMUTATIVE},
    examples=[((5, 5), True), (("a", "b"), False)],
)
def func_equal(left: Any, right: Any) -> bool:
    """Check two values for equality."""
    return values_equal(left, right)


@operator(
    "NOT_EQUAL",
    display_name="Not Equal",
    symbol="!=",
    category=OperatorCategory.COMPARISON,
    input_types=(ANY, ANY),
    output_type=BOOLEAN,
    arity=2,
    properties={COMMUTATIVE},
    examples=[((5, 3), True)],
)
def func_not_equal(left: Any, right: Any) -> bool:
    """Check two values for inequality."""
    return not values_equal(left, right)


@operator(
    "LESS_THAN",
    display_name="Less Than",
    symbol="<",
    category=OperatorCategory.COMPARISON,
    input_types=(NUMBER, NUMBER),
    output_type=BOOLEAN,
    arity=2,
    examples=[((3, 5), True)],
)
def func_less_than(left: Any, right: Any) -> bool:
    return compare_values(left, right) < 0


@operator(
    "GREATER_THAN",
    display_name="Greater Than",
    symbol=">",
    category=OperatorCategory.COMPARISON,
    input_types=(NUMBER, NUMBER),
    output_type=BOOLEAN,
    arity=2,
    examples=[((5, 3), True)],
)
def func_greater_than(left: Any, right: Any) -> bool:
    return compare_values(left, right) > 0


@operator(
    "LESS_EQUAL",
    display_name="Less or Equal",
    symbol="<=",
    category=OperatorCategory.COMPARISON,
    input_types=(NUMBER, NUMBER),
    output_type=BOOLEAN,
    arity=2,
    examples=[((5, 5), True)],
)
def func_less_equal(left: Any, right: Any) -> bool:
    return compare_values(left, right) <= 0


@operator(
    "GREATER_EQUAL",
    display_name="Greater or Equal",
    symbol=">=",
    category=OperatorCategory.COMPARISON,
    input_types=(NUMBER, NUMBER),
    output_type=BOOLEAN,
    arity=2,
    examples=[((5, 6), False)],
)
def func_greater_equal(left: Any, right: Any) -> bool:
    return compare_values(left, right) >= 0


# =============================================================================
# Logical Functions
# =============================================================================


@operator(
    "AND",
    display_name="And",
    category=OperatorCategory.LOGICAL,
    input_types=VARIADIC,
    output_type=BOOLEAN,
    arity=VARIADIC,
    properties={ASSOCIATIVE, COMMUTATIVE, IDEMPOTENT, IDENTITY, ABSORBING},
    identity=True,
    absorbing=False,
    lazy=True,
    examples=[((True, True), True), ((True, False), False)],
)
def func_and(*args: Any) -> bool:
    """True if every argument is truthy."""
    return all(to_boolean(a) for a in args)


@operator(
    "OR",
    display_name="Or",
    category=OperatorCategory.LOGICAL,
    input_types=VARIADIC,
    output_type=BOOLEAN,
    arity=VARIADIC,
    properties={ASSOCIATIVE, COMMUTATIVE, IDEMPOTENT, IDENTITY, ABSORBING},
    identity=False,
    absorbing=True,
    lazy=True,
    examples=[((False, True), True), ((False, False), False)],
)
def func_or(*args: Any) -> bool:
    """True if any argument is truthy."""
    return any(to_boolean(a) for a in args)


@operator(
    "NOT",
    display_name="Not",
    symbol="!",
    category=OperatorCategory.LOGICAL,
    input_types=(BOOLEAN,),
    output_type=BOOLEAN,
    arity=1,
    properties={INVOLUTORY},
    examples=[((True,), False)],
)
def func_not(value: Any) -> bool:
    """Logical negation."""
    return not to_boolean(value)


@operator(
    "XOR",
    display_name="Exclusive Or",
    category=OperatorCategory.LOGICAL,
    input_types=VARIADIC,
    output_type=BOOLEAN,
    arity=VARIADIC,
    min_arity=1,
    properties={ASSOCIATIVE, COMMUTATIVE},
    examples=[((True, False), True), ((True, True), False)],
)
def func_xor(*args: Any) -> bool:
    """True if an odd number of arguments are truthy."""
    return sum(1 for a in _flatten(args) if to_boolean(a)) % 2 == 1


@operator(
    "IF",
    display_name="If",
    category=OperatorCategory.LOGICAL,
    input_types=(BOOLEAN, ANY, ANY),
    output_type=ANY,
    arity=3,
    min_arity=2,
    lazy=True,
    examples=[((True, "yes", "no"), "yes"), ((False, "yes"), None)],
)
def func_if(condition: Any, if_true: Any, if_false: Any = None) -> Any:
    """Pick one of two values by a condition."""
    return if_true if to_boolean(condition) else if_false


# =============================================================================
# Text Functions
# =============================================================================


@operator(
    "CONCAT",
    display_name="Concatenate",
    symbol="&",
    category=OperatorCategory.TEXT,
    input_types=VARIADIC,
    output_type=TEXT,
    arity=VARIADIC,
    min_arity=1,
    properties={ASSOCIATIVE, IDENTITY},
    identity="",
    aliases=("CONCATENATE",),
    examples=[(("Hello", " ", "World"), "Hello World")],
)
def func_concat(*args: Any) -> str:
    """Join values as text; absent values contribute nothing."""
    return "".join(to_text(a) for a in args)


@operator(
    "UPPER",
    display_name="Upper Case",
    category=OperatorCategory.TEXT,
    input_types=(TEXT,),
    output_type=TEXT,
    arity=1,
    properties={IDEMPOTENT},
    examples=[(("hello",), "HELLO")],
)
def func_upper(text: Any) -> str:
    return to_text(text).upper()


@operator(
    "LOWER",
    display_name="Lower Case",
    category=OperatorCategory.TEXT,
    input_types=(TEXT,),
    output_type=TEXT,
    arity=1,
    properties={IDEMPOTENT},
    examples=[(("HELLO",), "hello")],
)
def func_lower(text: Any) -> str:
    return to_text(text).lower()


@operator(
    "TRIM",
    display_name="Trim",
    category=OperatorCategory.TEXT,
    input_types=(TEXT,),
    output_type=TEXT,
    arity=1,
    properties={IDEMPOTENT},
    examples=[(("  hi  ",), "hi")],
)
def func_trim(text: Any) -> str:
    """Remove leading/trailing whitespace."""
    return to_text(text).strip()


@operator(
    "LEN",
    display_name="Length",
    category=OperatorCategory.TEXT,
    input_types=(TEXT,),
    output_type=NUMBER,
    arity=1,
    examples=[(("hello",), 5)],
)
def func_len(text: Any) -> int:
    return len(to_text(text))


@operator(
    "LEFT",
    display_name="Left",
    category=OperatorCategory.TEXT,
    input_types=(TEXT, NUMBER),
    output_type=TEXT,
    arity=2,
    min_arity=1,
    examples=[(("hello", 2), "he")],
)
def func_left(text: Any, count: Any = 1) -> str:
    """Return leftmost characters."""
    n = to_integer(count, 1)
    return to_text(text)[:n] if n > 0 else ""


@operator(
    "RIGHT",
    display_name="Right",
    category=OperatorCategory.TEXT,
    input_types=(TEXT, NUMBER),
    output_type=TEXT,
    arity=2,
    min_arity=1,
    examples=[(("hello", 2), "lo")],
)
def func_right(text: Any, count: Any = 1) -> str:
    """Return rightmost characters."""
    n = to_integer(count, 1)
    return to_text(text)[-n:] if n > 0 else ""


@operator(
    "MID",
    display_name="Middle",
    category=OperatorCategory.TEXT,
    input_types=(TEXT, NUMBER, NUMBER),
    output_type=TEXT,
    arity=3,
    examples=[(("hello", 2, 3), "ell")],
)
def func_mid(text: Any, start: Any, count: Any) -> str:
    """Return a substring; ``start`` is 1-indexed."""
    first = max(1, to_integer(start, 1))
    n = max(0, to_integer(count))
    return to_text(text)[first - 1 : first - 1 + n]


@operator(
    "FIND",
    display_name="Find",
    category=OperatorCategory.TEXT,
    input_types=(TEXT, TEXT, NUMBER),
    output_type=NUMBER,
    arity=3,
    min_arity=2,
    examples=[(("l", "hello"), 3), (("z", "hello"), 0)],
)
def func_find(search: Any, text: Any, start: Any = 1) -> int:
    """1-indexed position of ``search`` in ``text``, 0 if missing."""
    offset = max(1, to_integer(start, 1)) - 1
    return to_text(text).find(to_text(search), offset) + 1


@operator(
    "SUBSTITUTE",
    display_name="Substitute",
    category=OperatorCategory.TEXT,
    input_types=(TEXT, TEXT, TEXT, NUMBER),
    output_type=TEXT,
    arity=4,
    min_arity=3,
    examples=[(("a-b-c", "-", "+"), "a+b+c")],
)
def func_substitute(text: Any, old: Any, new: Any, count: Any = None) -> str:
    """Replace occurrences of old with new."""
    source, target = to_text(text), to_text(old)
    if not target:
        return source
    if count is None:
        return source.replace(target, to_text(new))
    return source.replace(target, to_text(new), max(0, to_integer(count)))


@operator(
    "REPT",
    display_name="Repeat",
    category=OperatorCategory.TEXT,
    input_types=(TEXT, NUMBER),
    output_type=TEXT,
    arity=2,
    examples=[(("ab", 3), "ababab")],
)
def func_rept(text: Any, count: Any) -> str:
    return to_text(text) * max(0, to_integer(count))


# =============================================================================
# Aggregate Functions
# =============================================================================


@operator(
    "SUM",
    display_name="Sum",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    examples=[((1, 2, 3), 6)],
)
def func_sum(*args: Any) -> int | float:
    """Sum of numeric values; others are skipped."""
    return sum(_numbers(args))


@operator(
    "AVG",
    display_name="Average",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    aliases=("AVERAGE",),
    examples=[((2, 4, 6), 4.0)],
)
def func_avg(*args: Any) -> float | None:
    """Average of numeric values."""
    numbers = _numbers(args)
    if not numbers:
        return None
    return sum(numbers) / len(numbers)


@operator(
    "COUNT",
    display_name="Count",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    examples=[((1, "a", 2), 2)],
)
def func_count(*args: Any) -> int:
    """Count of numeric values."""
    return sum(1 for v in _flatten(args) if _is_number(v))


@operator(
    "COUNTA",
    display_name="Count Non-Empty",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    examples=[((1, "a", None), 2)],
)
def func_counta(*args: Any) -> int:
    """Count of non-empty values."""
    return sum(1 for v in _flatten(args) if not is_absent(v))


@operator(
    "COUNTBLANK",
    display_name="Count Blank",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    examples=[((1, "", None), 2)],
)
def func_countblank(*args: Any) -> int:
    """Count of empty/blank values."""
    return sum(1 for v in _flatten(args) if is_absent(v))


def _extreme(args: Iterable[Any], pick: Any) -> Any:
    values = [v for v in _flatten(args) if not is_absent(v) and v is not UNKNOWN]
    if not values:
        return None
    if all(_is_date(v) for v in values):
        return pick(values, key=to_number)
    numbers = _numbers(values)
    return pick(numbers) if numbers else None


@operator(
    "MIN",
    display_name="Minimum",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    properties={ASSOCIATIVE, COMMUTATIVE, IDEMPOTENT},
    examples=[((3, 1, 2), 1)],
)
def func_min(*args: Any) -> Any:
    """Minimum of numeric (or all-date) values."""
    return _extreme(args, min)


@operator(
    "MAX",
    display_name="Maximum",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    properties={ASSOCIATIVE, COMMUTATIVE, IDEMPOTENT},
    examples=[((3, 1, 2), 3)],
)
def func_max(*args: Any) -> Any:
    """Maximum of numeric (or all-date) values."""
    return _extreme(args, max)


@operator(
    "ARRAY_JOIN",
    display_name="Array Join",
    symbol="ARRAYJOIN",
    category=OperatorCategory.AGGREGATE,
    input_types=(ARRAY, TEXT),
    output_type=TEXT,
    arity=2,
    min_arity=1,
    examples=[((["a", "b"], "-"), "a-b")],
)
def func_array_join(values: Any, separator: Any = ", ") -> str:
    """Join array items with a separator."""
    items = [to_text(v) for v in _flatten([values]) if not is_absent(v)]
    return to_text(separator).join(items)


@operator(
    "UNIQUE",
    display_name="Unique",
    category=OperatorCategory.AGGREGATE,
    input_types=(ARRAY,),
    output_type=ARRAY,
    arity=1,
    properties={IDEMPOTENT},
    aliases=("ARRAYUNIQUE",),
    examples=[(([1, 2, 1],), [1, 2])],
)
def func_unique(values: Any) -> list[Any]:
    """Distinct items in first-seen order."""
    unique: list[Any] = []
    for value in _flatten([values]):
        if not any(same_value(value, seen) for seen in unique):
            unique.append(value)
    return unique


@operator(
    "FIRST",
    display_name="First",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=ANY,
    arity=VARIADIC,
    min_arity=1,
    examples=[((None, 2, 3), 2)],
)
def func_first(*args: Any) -> Any:
    """First non-empty value."""
    return next((v for v in _flatten(args) if not is_absent(v)), None)


@operator(
    "LAST",
    display_name="Last",
    category=OperatorCategory.AGGREGATE,
    input_types=VARIADIC,
    output_type=ANY,
    arity=VARIADIC,
    min_arity=1,
    examples=[((1, 2, None), 2)],
)
def func_last(*args: Any) -> Any:
    """Last non-empty value."""
    present = [v for v in _flatten(args) if not is_absent(v)]
    return present[-1] if present else None


# =============================================================================
# Date Functions
# =============================================================================


@operator(
    "TODAY",
    display_name="Today",
    category=OperatorCategory.DATE,
    input_types=(),
    output_type=DATE,
    arity=0,
)
def func_today() -> date:
    """Current date."""
    return date.today()


@operator(
    "NOW",
    display_name="Now",
    category=OperatorCategory.DATE,
    input_types=(),
    output_type=DATE,
    arity=0,
)
def func_now() -> datetime:
    """Current date and time."""
    return datetime.now()


def _date_part(value: Any, part: str) -> int | None:
    converted = to_date(value)
    if converted is None:
        return None
    return getattr(converted, part, 0)


@operator(
    "YEAR",
    display_name="Year",
    category=OperatorCategory.DATE,
    input_types=(DATE,),
    output_type=NUMBER,
    arity=1,
    examples=[(("2024-03-15",), 2024)],
)
def func_year(value: Any) -> int | None:
    return _date_part(value, "year")


@operator(
    "MONTH",
    display_name="Month",
    category=OperatorCategory.DATE,
    input_types=(DATE,),
    output_type=NUMBER,
    arity=1,
    examples=[(("2024-03-15",), 3)],
)
def func_month(value: Any) -> int | None:
    return _date_part(value, "month")


@operator(
    "DAY",
    display_name="Day",
    category=OperatorCategory.DATE,
    input_types=(DATE,),
    output_type=NUMBER,
    arity=1,
    examples=[(("2024-03-15",), 15)],
)
def func_day(value: Any) -> int | None:
    return _date_part(value, "day")


@operator(
    "HOUR",
    display_name="Hour",
    category=OperatorCategory.DATE,
    input_types=(DATE,),
    output_type=NUMBER,
    arity=1,
)
def func_hour(value: Any) -> int | None:
    return _date_part(value, "hour")


@operator(
    "MINUTE",
    display_name="Minute",
    category=OperatorCategory.DATE,
    input_types=(DATE,),
    output_type=NUMBER,
    arity=1,
)
def func_minute(value: Any) -> int | None:
    return _date_part(value, "minute")


_UNIT_SECONDS = {
    "second": 1,
    "seconds": 1,
    "s": 1,
    "minute": 60,
    "minutes": 60,
    "min": 60,
    "hour": 3600,
    "hours": 3600,
    "h": 3600,
    "day": 86400,
    "days": 86400,
    "d": 86400,
    "week": 604800,
    "weeks": 604800,
    "w": 604800,
}


@operator(
    "DATEDIFF",
    display_name="Date Difference",
    category=OperatorCategory.DATE,
    input_types=(DATE, DATE, TEXT),
    output_type=NUMBER,
    arity=3,
    min_arity=2,
    aliases=("DATETIME_DIFF",),
    examples=[(("2024-01-01", "2024-01-31"), 30)],
)
def func_datediff(start: Any, end: Any, unit: Any = "days") -> int | None:
    """Whole units from ``start`` to ``end`` (days, weeks, months, years, ...)."""
    pair = _datetime_pair(start, end)
    if pair is None:
        return None
    first, second = pair
    unit = to_text(unit).strip().lower()
    if unit in ("month", "months", "m"):
        return (second.year - first.year) * 12 + (second.month - first.month)
    if unit in ("year", "years", "y"):
        return second.year - first.year
    seconds = _UNIT_SECONDS.get(unit)
    if seconds is None:
        return None
    return int((second - first).total_seconds() // seconds)


@operator(
    "DATEADD",
    display_name="Date Add",
    category=OperatorCategory.DATE,
    input_types=(DATE, NUMBER, TEXT),
    output_type=DATE,
    arity=3,
    min_arity=2,
    examples=[(("2024-01-31", 1, "months"), date(2024, 2, 29))],
)
def func_dateadd(value: Any, count: Any, unit: Any = "days") -> date | datetime | None:
    """Shift a date by a count of units; month ends are clamped."""
    start = to_date(value)
    if start is None:
        return None
    amount = to_integer(count)
    unit = to_text(unit).strip().lower()

    if unit in ("month", "months", "m", "year", "years", "y"):
        months = amount * 12 if unit.startswith("y") else amount
        total = start.month - 1 + months
        year, month = start.year + total // 12, total % 12 + 1
        if not 1 <= year <= 9999:
            return None
        day = min(start.day, calendar.monthrange(year, month)[1])
        return start.replace(year=year, month=month, day=day)

    seconds = _UNIT_SECONDS.get(unit)
    if seconds is None:
        return None
    if not isinstance(start, datetime) and seconds % 86400:
        start = to_datetime(start)
    try:
        return start + timedelta(seconds=amount * seconds)
    except OverflowError:
        return None


# =============================================================================
# Type Functions
# =============================================================================


@operator(
    "TO_NUMBER",
    display_name="To Number",
    symbol="VALUE",
    category=OperatorCategory.TYPE,
    input_types=(ANY,),
    output_type=NUMBER,
    arity=1,
    examples=[(("1,234.5",), 1234.5), (("abc",), None)],
)
def func_to_number(value: Any) -> int | float | None:
    """Parse a value as a number; NULL when it has none."""
    return to_number(value, strict=True)


@operator(
    "TO_TEXT",
    display_name="To Text",
    symbol="TEXT",
    category=OperatorCategory.TYPE,
    input_types=(ANY,),
    output_type=TEXT,
    arity=1,
    examples=[((3.0,), "3"), ((True,), "TRUE")],
)
def func_to_text(value: Any) -> str:
    return to_text(value)


@operator(
    "ISBLANK",
    display_name="Is Blank",
    category=OperatorCategory.TYPE,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
    examples=[(("",), True), ((0,), False)],
)
def func_isblank(value: Any) -> bool:
    """Check for an empty value (None, empty text or empty array)."""
    return is_absent(value) or (isinstance(value, (list, tuple)) and len(value) == 0)


@operator(
    "ISNUMBER",
    display_name="Is Number",
    category=OperatorCategory.TYPE,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
    examples=[((5,), True), (("5",), False)],
)
def func_isnumber(value: Any) -> bool:
    return _is_number(value)


@operator(
    "ISTEXT",
    display_name="Is Text",
    category=OperatorCategory.TYPE,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
    examples=[(("a",), True)],
)
def func_istext(value: Any) -> bool:
    return isinstance(value, str)


@operator(
    "BLANK",
    display_name="Blank",
    category=OperatorCategory.TYPE,
    input_types=(),
    output_type=NULL,
    arity=0,
)
def func_blank() -> None:
    """Return blank/null value."""
    return None


# =============================================================================
# NULL-Aware Functions
# =============================================================================


@dataclass(frozen=True)
class NullTrackedAggregate:
    """Aggregate result that reports how much of its input was missing."""

    value: Any
    total: int
    null_count: int
    i_mark_count: int
    present_count: int
    applicable_count: int
    certainty: float


def _tracked(args: Iterable[Any], value_of: Any, numeric: bool = True) -> NullTrackedAggregate:
    values = list(_flatten(args))
    present: list[Any] = []
    nulls = i_marks = 0
    for value in values:
        if isinstance(value, IMark):
            i_marks += 1
        elif is_absent(value) or value is UNKNOWN:
            nulls += 1
        elif not numeric:
            present.append(value)
        elif not isinstance(value, bool):
            number = to_number(value, strict=True)
            if number is not None:
                present.append(number)

    # Inapplicable values are outside the population
    applicable = len(values) - i_marks
    return NullTrackedAggregate(
        value=value_of(present),
        total=len(values),
        null_count=nulls,
        i_mark_count=i_marks,
        present_count=len(present),
        applicable_count=applicable,
        certainty=len(present) / applicable if applicable else 0.0,
    )


@operator(
    "ISNULL",
    display_name="Is Null",
    category=OperatorCategory.NULL,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
    examples=[((None,), True), ((0,), False)],
)
def func_isnull(value: Any) -> bool:
    """Check for NULL (None or an absence mark)."""
    return value is None or isinstance(value, (AMark, IMark))


@operator(
    "ISNOTNULL",
    display_name="Is Not Null",
    category=OperatorCategory.NULL,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
    examples=[((0,), True)],
)
def func_isnotnull(value: Any) -> bool:
    return not func_isnull(value)


@operator(
    "IS_DISTINCT_FROM",
    display_name="Is Distinct From",
    category=OperatorCategory.NULL,
    input_types=(ANY, ANY),
    output_type=BOOLEAN,
    arity=2,
    properties={COMMUTATIVE},
    examples=[((None, None), False), ((None, 5), True), ((5, 5), False)],
)
def func_is_distinct_from(left: Any, right: Any) -> bool:
    """NULL-safe inequality: two absent values are not distinct."""
    left_absent, right_absent = is_absent(left), is_absent(right)
    if left_absent or right_absent:
        return left_absent != right_absent
    return not same_value(left, right)


@operator(
    "IS_NOT_DISTINCT_FROM",
    display_name="Is Not Distinct From",
    category=OperatorCategory.NULL,
    input_types=(ANY, ANY),
    output_type=BOOLEAN,
    arity=2,
    properties={COMMUTATIVE},
    examples=[((None, None), True)],
)
def func_is_not_distinct_from(left: Any, right: Any) -> bool:
    return not func_is_distinct_from(left, right)


@operator(
    "NULLIF",
    display_name="Null If",
    category=OperatorCategory.NULL,
    input_types=(ANY, ANY),
    output_type=ANY,
    arity=2,
    examples=[((5, 5), None), ((5, 3), 5)],
)
def func_nullif(value: Any, other: Any) -> Any:
    """NULL when both values match, otherwise the first value."""
    if not is_absent(value) and not is_absent(other) and same_value(value, other):
        return None
    return value


@operator(
    "COALESCE",
    display_name="Coalesce",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=ANY,
    arity=VARIADIC,
    min_arity=1,
    examples=[((None, "", 3), 3)],
)
def func_coalesce(*args: Any) -> Any:
    """First argument that is not absent."""
    return next((a for a in args if not is_absent(a) and a is not UNKNOWN), None)


@operator(
    "A_MARK",
    display_name="Applicable Mark",
    category=OperatorCategory.NULL,
    input_types=(TEXT,),
    output_type=NULL,
    arity=1,
    min_arity=0,
)
def func_a_mark(reason: Any = None) -> AMark:
    """Mark a value as existing but unknown."""
    return AMark(to_text(reason)) if not is_absent(reason) else AMark()


@operator(
    "I_MARK",
    display_name="Inapplicable Mark",
    category=OperatorCategory.NULL,
    input_types=(TEXT,),
    output_type=NULL,
    arity=1,
    min_arity=0,
)
def func_i_mark(reason: Any = None) -> IMark:
    """Mark an attribute as not applying."""
    return IMark(to_text(reason)) if not is_absent(reason) else IMark()


@operator(
    "IS_A_MARK",
    display_name="Is Applicable Mark",
    category=OperatorCategory.NULL,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
)
def func_is_a_mark(value: Any) -> bool:
    return isinstance(value, AMark)


@operator(
    "IS_I_MARK",
    display_name="Is Inapplicable Mark",
    category=OperatorCategory.NULL,
    input_types=(ANY,),
    output_type=BOOLEAN,
    arity=1,
)
def func_is_i_mark(value: Any) -> bool:
    return isinstance(value, IMark)


@operator(
    "AND3",
    display_name="Three-Valued And",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=BOOLEAN,
    arity=VARIADIC,
    properties={ASSOCIATIVE, COMMUTATIVE},
    lazy=True,
    examples=[((False, UNKNOWN), False), ((True, UNKNOWN), UNKNOWN)],
)
def func_and3(*args: Any) -> Any:
    """Kleene AND: FALSE wins, then UNKNOWN, then TRUE."""
    result: Any = True
    for arg in args:
        truth = truth_value(arg)
        if truth is False:
            return False
        if truth is UNKNOWN:
            result = UNKNOWN
    return result


@operator(
    "OR3",
    display_name="Three-Valued Or",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=BOOLEAN,
    arity=VARIADIC,
    properties={ASSOCIATIVE, COMMUTATIVE},
    lazy=True,
    examples=[((True, UNKNOWN), True), ((False, UNKNOWN), UNKNOWN)],
)
def func_or3(*args: Any) -> Any:
    """Kleene OR: TRUE wins, then UNKNOWN, then FALSE."""
    result: Any = False
    for arg in args:
        truth = truth_value(arg)
        if truth is True:
            return True
        if truth is UNKNOWN:
            result = UNKNOWN
    return result


@operator(
    "NOT3",
    display_name="Three-Valued Not",
    category=OperatorCategory.NULL,
    input_types=(BOOLEAN,),
    output_type=BOOLEAN,
    arity=1,
    properties={INVOLUTORY},
    examples=[((UNKNOWN,), UNKNOWN), ((True,), False)],
)
def func_not3(value: Any) -> Any:
    truth = truth_value(value)
    return UNKNOWN if truth is UNKNOWN else not truth


@operator(
    "EQ3",
    display_name="Three-Valued Equal",
    category=OperatorCategory.NULL,
    input_types=(ANY, ANY),
    output_type=BOOLEAN,
    arity=2,
    properties={COMMUTATIVE},
    examples=[((None, None), UNKNOWN), ((5, 5), True)],
)
def func_eq3(left: Any, right: Any) -> Any:
    """Equality that is UNKNOWN when either side is missing."""
    if left is UNKNOWN or right is UNKNOWN or is_absent(left) or is_absent(right):
        return UNKNOWN
    return values_equal(left, right)


@operator(
    "SUM_CODD",
    display_name="Sum (NULL-tracked)",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=ANY,
    arity=VARIADIC,
    min_arity=1,
)
def func_sum_codd(*args: Any) -> NullTrackedAggregate:
    """Sum of present values, reporting how many were missing."""
    return _tracked(args, lambda present: sum(present) if present else None)


@operator(
    "AVG_CODD",
    display_name="Average (NULL-tracked)",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=ANY,
    arity=VARIADIC,
    min_arity=1,
)
def func_avg_codd(*args: Any) -> NullTrackedAggregate:
    """Average of present values, reporting how many were missing."""
    return _tracked(args, lambda present: sum(present) / len(present) if present else None)


@operator(
    "COUNT_CODD",
    display_name="Count (NULL-tracked)",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=ANY,
    arity=VARIADIC,
    min_arity=1,
)
def func_count_codd(*args: Any) -> NullTrackedAggregate:
    """Count of present values, reporting how many were missing."""
    return _tracked(args, len, numeric=False)


@operator(
    "COUNT_ALL",
    display_name="Count All",
    category=OperatorCategory.NULL,
    input_types=VARIADIC,
    output_type=NUMBER,
    arity=VARIADIC,
    min_arity=1,
    examples=[((1, None, ""), 3)],
)
def func_count_all(*args: Any) -> int:
    """Count every value, absent or not."""
    return sum(1 for _ in _flatten(args))


OPERATORS.freeze()
logger.info("Registered %d built-in operators", len(OPERATORS))
