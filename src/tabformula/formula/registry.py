"""Operator registry for tabformula.

Every function and operator available to formulas is described by an
``OperatorDescriptor``: its type signature, arity, algebraic properties
and evaluation rule. Descriptors live in an ``OperatorRegistry``; the
default registry is populated once at import time by
``tabformula.formula.functions`` and frozen afterwards.
"""

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tabformula.core.exceptions import (
    DuplicateOperatorError,
    OperatorNotFoundError,
    RegistryFrozenError,
)
from tabformula.core.logging import get_logger
from tabformula.formula.values import ValueType

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class _Variadic:
    """Marker for variadic input types and arity."""

    def __repr__(self) -> str:
        return "VARIADIC"


VARIADIC = _Variadic()


class OperatorCategory(str, Enum):
    """Operator categories."""

    ARITHMETIC = "arithmetic"
    COMPARISON = "comparison"
    LOGICAL = "logical"
    TEXT = "text"
    AGGREGATE = "aggregate"
    DATE = "date"
    TYPE = "type"
    NULL = "null"


class AlgebraicProperty(str, Enum):
    """Algebraic guarantees an operator may declare."""

    ASSOCIATIVE = "associative"  # (a op b) op c = a op (b op c)
    COMMUTATIVE = "commutative"  # a op b = b op a
    IDEMPOTENT = "idempotent"  # a op a = a
    INVOLUTORY = "involutory"  # op(op(a)) = a
    IDENTITY = "identity"  # a op e = a
    ABSORBING = "absorbing"  # a op z = z
    DISTRIBUTIVE = "distributive"  # a * (b + c) = (a * b) + (a * c)


@dataclass(frozen=True)
class OperatorExample:
    """A worked example attached to an operator."""

    inputs: tuple[Any, ...]
    output: Any


@dataclass(frozen=True)
class OperatorDescriptor:
    """Metadata and evaluation rule of one atomic operator."""

    id: str
    display_name: str
    symbol: str
    category: OperatorCategory
    input_types: tuple[ValueType, ...] | _Variadic
    output_type: ValueType
    arity: int | _Variadic
    evaluate: Callable[..., Any]
    min_arity: int | None = None
    properties: frozenset[AlgebraicProperty] = frozenset()
    identity_element: Any = None
    identity_side: str = "both"
    absorbing_element: Any = None
    inverse_id: str | None = None
    description: str = ""
    examples: tuple[OperatorExample, ...] = ()
    aliases: tuple[str, ...] = ()
    lazy: bool = False

    def __post_init__(self) -> None:
        if self.min_arity is None:
            default = 0 if self.arity is VARIADIC else self.arity
            object.__setattr__(self, "min_arity", default)
        if self.identity_side not in ("both", "right"):
            raise ValueError(f"identity_side must be 'both' or 'right', got {self.identity_side!r}")

    # ------------------------------------------------------------------
    # Signature helpers
    # ------------------------------------------------------------------

    @property
    def is_variadic(self) -> bool:
        return self.arity is VARIADIC

    @property
    def first_input_type(self) -> ValueType | None:
        """Type expected for the first argument, None if variadic or nullary."""
        if self.input_types is VARIADIC or not self.input_types:
            return None
        return self.input_types[0]

    def has_property(self, prop: AlgebraicProperty) -> bool:
        return prop in self.properties

    @property
    def has_identity(self) -> bool:
        return AlgebraicProperty.IDENTITY in self.properties

    @property
    def has_absorbing(self) -> bool:
        return AlgebraicProperty.ABSORBING in self.properties

    def accepts_arg_count(self, count: int) -> bool:
        """Check an argument count against ``[min_arity, arity]``."""
        if count < self.min_arity:
            return False
        return self.arity is VARIADIC or count <= self.arity

    @property
    def arity_text(self) -> str:
        """Human-readable expected argument count."""
        if self.arity is VARIADIC:
            return f"at least {self.min_arity}"
        if self.min_arity == self.arity:
            return f"exactly {self.arity}"
        return f"{self.min_arity} to {self.arity}"

    @property
    def call_names(self) -> tuple[str, ...]:
        """Upper-cased names a formula may use to call this operator."""
        names = [self.id.upper()]
        if _IDENTIFIER.match(self.symbol) and self.symbol.upper() not in names:
            names.append(self.symbol.upper())
        for alias in self.aliases:
            if alias.upper() not in names:
                names.append(alias.upper())
        return tuple(names)

    def format(self, args: Iterable[Any]) -> str:
        """Render a call of this operator for display."""
        rendered = [_render(a) for a in args]
        if not _IDENTIFIER.match(self.symbol):
            if len(rendered) == 2:
                return f"({rendered[0]} {self.symbol} {rendered[1]})"
            if len(rendered) == 1:
                return f"({self.symbol}{rendered[0]})"
        return f"{self.symbol}({', '.join(rendered)})"


def _render(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


class _RegistryView:
    """Lazy, restartable view over registry contents."""

    def __init__(self, factory: Callable[[], Iterator[Any]]) -> None:
        self._factory = factory

    def __iter__(self) -> Iterator[Any]:
        return self._factory()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({list(self)!r})"


class OperatorRegistry:
    """
    Catalog of atomic operators.

    Registration happens up front; once ``freeze()`` is called the
    registry is read-only and safe to share between threads.
    """

    def __init__(self) -> None:
        self._operators: dict[str, OperatorDescriptor] = {}
        self._call_names: dict[str, str] = {}
        self._frozen = False

    def register(self, descriptor: OperatorDescriptor) -> OperatorDescriptor:
        """
        Add an operator.

        Raises:
            RegistryFrozenError: If the registry has been frozen
            DuplicateOperatorError: If the id or a call name is taken
        """
        if self._frozen:
            raise RegistryFrozenError(descriptor.id)
        if descriptor.id in self._operators:
            raise DuplicateOperatorError(descriptor.id)
        for name in descriptor.call_names:
            if name in self._call_names:
                raise DuplicateOperatorError(name)

        self._operators[descriptor.id] = descriptor
        for name in descriptor.call_names:
            self._call_names[name] = descriptor.id
        return descriptor

    def get(self, operator_id: str) -> OperatorDescriptor:
        """
        Get an operator by id.

        Raises:
            OperatorNotFoundError: If no operator has this id
        """
        try:
            return self._operators[operator_id]
        except KeyError:
            raise OperatorNotFoundError(operator_id) from None

    def find(self, operator_id: str) -> OperatorDescriptor | None:
        """Get an operator by id, or None."""
        return self._operators.get(operator_id)

    def resolve_function(self, name: str) -> OperatorDescriptor | None:
        """Resolve a formula call name (case-insensitive) to its operator."""
        operator_id = self._call_names.get(name.upper())
        return self._operators[operator_id] if operator_id is not None else None

    def by_category(self, category: OperatorCategory | str) -> _RegistryView:
        """Operators in a category, in registration order."""
        category = OperatorCategory(category)
        return _RegistryView(
            lambda: (op for op in list(self._operators.values()) if op.category == category)
        )

    def categories(self) -> _RegistryView:
        """Distinct categories, in order of first registration."""

        def iterate() -> Iterator[OperatorCategory]:
            seen: set[OperatorCategory] = set()
            for op in list(self._operators.values()):
                if op.category not in seen:
                    seen.add(op.category)
                    yield op.category

        return _RegistryView(iterate)

    def call_names(self) -> list[str]:
        """All names callable from formula text, sorted."""
        return sorted(self._call_names)

    def freeze(self) -> None:
        """Make the registry read-only."""
        if not self._frozen:
            self._frozen = True
            logger.debug("Operator registry frozen with %d operators", len(self._operators))

    @property
    def frozen(self) -> bool:
        return self._frozen

    def clone(self) -> "OperatorRegistry":
        """Unfrozen copy, for extending the built-in catalog."""
        copy = OperatorRegistry()
        copy._operators = dict(self._operators)
        copy._call_names = dict(self._call_names)
        return copy

    def __contains__(self, operator_id: object) -> bool:
        return operator_id in self._operators

    def __iter__(self) -> Iterator[OperatorDescriptor]:
        return iter(list(self._operators.values()))

    def __len__(self) -> int:
        return len(self._operators)

    def __repr__(self) -> str:
        return f"OperatorRegistry(operators={len(self._operators)}, frozen={self._frozen})"


# Registry of built-in operators (populated by tabformula.formula.functions)
OPERATORS = OperatorRegistry()


def default_registry() -> OperatorRegistry:
    """Get the built-in operator registry, fully populated."""
    # Late import: functions registers into OPERATORS on import
    from tabformula.formula import functions  # noqa: F401

    return OPERATORS


def operator(
    operator_id: str,
    *,
    display_name: str,
    category: OperatorCategory,
    input_types: Iterable[ValueType] | _Variadic,
    output_type: ValueType,
    arity: int | _Variadic,
    symbol: str | None = None,
    min_arity: int | None = None,
    properties: Iterable[AlgebraicProperty] = (),
    identity: Any = None,
    identity_side: str = "both",
    absorbing: Any = None,
    inverse: str | None = None,
    description: str = "",
    examples: Iterable[tuple[tuple[Any, ...], Any]] = (),
    aliases: Iterable[str] = (),
    lazy: bool = False,
    registry: OperatorRegistry | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator to register a function as an operator's evaluation rule."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        descriptor = OperatorDescriptor(
            id=operator_id,
            display_name=display_name,
            symbol=symbol or operator_id,
            category=category,
            input_types=input_types if input_types is VARIADIC else tuple(input_types),
            output_type=output_type,
            arity=arity,
            evaluate=func,
            min_arity=min_arity,
            properties=frozenset(properties),
            identity_element=identity,
            identity_side=identity_side,
            absorbing_element=absorbing,
            inverse_id=inverse,
            description=description or (func.__doc__ or "").strip(),
            examples=tuple(OperatorExample(tuple(i), o) for i, o in examples),
            aliases=tuple(aliases),
            lazy=lazy,
        )
        (registry if registry is not None else OPERATORS).register(descriptor)
        return func

    return decorator
