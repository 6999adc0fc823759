"""Formula parser for tabformula.

Parses formula strings into an immutable AST using a Lark LALR(1)
parser, and memoises successful results in an LRU cache.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Union

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import (
    UnexpectedCharacters,
    UnexpectedEOF,
    UnexpectedInput,
    UnexpectedToken,
    VisitError,
)

from tabformula.core.exceptions import FormulaSyntaxError
from tabformula.core.logging import get_logger
from tabformula.formula.cache import CacheInfo, LRUCache
from tabformula.formula.grammar import FORMULA_GRAMMAR

logger = get_logger(__name__)

_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPED_CHARS = {"n": "\n", "t": "\t", "r": "\r"}


# AST Node types
@dataclass(frozen=True)
class LiteralNode:
    value: Any


@dataclass(frozen=True)
class FieldRefNode:
    field_name: str


@dataclass(frozen=True)
class FunctionCallNode:
    name: str
    arguments: tuple["Node", ...] = ()


@dataclass(frozen=True)
class UnaryOpNode:
    operator: str
    operand: "Node"


@dataclass(frozen=True)
class BinaryOpNode:
    operator: str
    left: "Node"
    right: "Node"


Node = Union[LiteralNode, FieldRefNode, FunctionCallNode, UnaryOpNode, BinaryOpNode]


@dataclass
class ParseResult:
    """Outcome of parsing one formula."""

    ast: Node | None
    dependencies: list[str] = field(default_factory=list)
    valid: bool = True
    error: str | None = None

    def copy(self) -> "ParseResult":
        """Copy with an independent dependency list (the AST is immutable)."""
        return replace(self, dependencies=list(self.dependencies))


class FormulaTransformer(Transformer):
    """Transform Lark parse tree into AST nodes."""

    @v_args(inline=True)
    def number(self, token):
        text = str(token)
        if text.isdigit():
            return LiteralNode(int(text))
        value = float(text)
        # Keep as int if no fractional part
        if value.is_integer():
            value = int(value)
        return LiteralNode(value)

    @v_args(inline=True)
    def string(self, token):
        body = str(token)[1:-1]
        return LiteralNode(_ESCAPE.sub(lambda m: _ESCAPED_CHARS.get(m.group(1), m.group(1)), body))

    @v_args(inline=True)
    def field_ref(self, token):
        # {Field Name} -> Field Name
        return FieldRefNode(str(token)[1:-1].strip())

    @v_args(inline=True)
    def name(self, token):
        word = str(token).upper()
        if word == "TRUE":
            return LiteralNode(True)
        if word == "FALSE":
            return LiteralNode(False)
        raise FormulaSyntaxError(f"Unknown identifier '{token}'", position=token.start_pos)

    @v_args(inline=True)
    def call(self, name, arguments=None):
        return FunctionCallNode(str(name).upper(), tuple(arguments or ()))

    def arguments(self, items):
        return list(items)

    # Binary operators
    @v_args(inline=True)
    def add(self, left, right):
        return BinaryOpNode("+", left, right)

    @v_args(inline=True)
    def sub(self, left, right):
        return BinaryOpNode("-", left, right)

    @v_args(inline=True)
    def concat(self, left, right):
        return BinaryOpNode("&", left, right)

    @v_args(inline=True)
    def mul(self, left, right):
        return BinaryOpNode("*", left, right)

    @v_args(inline=True)
    def div(self, left, right):
        return BinaryOpNode("/", left, right)

    @v_args(inline=True)
    def mod(self, left, right):
        return BinaryOpNode("%", left, right)

    @v_args(inline=True)
    def pow(self, left, right):
        return BinaryOpNode("^", left, right)

    # Comparison operators
    @v_args(inline=True)
    def eq(self, left, right):
        return BinaryOpNode("=", left, right)

    @v_args(inline=True)
    def ne(self, left, right):
        return BinaryOpNode("!=", left, right)

    @v_args(inline=True)
    def lt(self, left, right):
        return BinaryOpNode("<", left, right)

    @v_args(inline=True)
    def gt(self, left, right):
        return BinaryOpNode(">", left, right)

    @v_args(inline=True)
    def le(self, left, right):
        return BinaryOpNode("<=", left, right)

    @v_args(inline=True)
    def ge(self, left, right):
        return BinaryOpNode(">=", left, right)

    # Unary operators
    @v_args(inline=True)
    def neg(self, operand):
        return UnaryOpNode("-", operand)

    @v_args(inline=True)
    def pos(self, operand):
        return UnaryOpNode("+", operand)

    @v_args(inline=True)
    def not_(self, operand):
        return UnaryOpNode("!", operand)


def collect_field_references(ast: Node | None) -> list[str]:
    """Field names referenced by an AST, de-duplicated in first-seen order."""
    fields: list[str] = []
    seen: set[str] = set()
    stack: list[Any] = [ast] if ast is not None else []
    while stack:
        node = stack.pop()
        if isinstance(node, FieldRefNode):
            if node.field_name not in seen:
                seen.add(node.field_name)
                fields.append(node.field_name)
        elif isinstance(node, BinaryOpNode):
            stack.append(node.right)
            stack.append(node.left)
        elif isinstance(node, UnaryOpNode):
            stack.append(node.operand)
        elif isinstance(node, FunctionCallNode):
            stack.extend(reversed(node.arguments))
    return fields


def _describe(source: str, exc: UnexpectedInput) -> FormulaSyntaxError:
    """Turn a Lark error into a message that names the offending input."""
    if isinstance(exc, UnexpectedCharacters):
        position = exc.pos_in_stream
        char = source[position] if position < len(source) else ""
        if char in ("'", '"'):
            message = f"Unterminated string starting at position {position}"
        elif char == "{":
            message = f"Unterminated field reference starting at position {position}"
        else:
            message = f"Unexpected character '{char}' at position {position}"
        return FormulaSyntaxError(message, position=position)

    expected = set(getattr(exc, "expected", ()) or ())
    token = getattr(exc, "token", None)
    if isinstance(exc, UnexpectedEOF) or (isinstance(token, Token) and token.type == "$END"):
        if "RPAR" in expected:
            return FormulaSyntaxError("Missing closing parenthesis", position=len(source))
        return FormulaSyntaxError("Unexpected end of formula", position=len(source))

    if isinstance(exc, UnexpectedToken):
        position = token.start_pos
        return FormulaSyntaxError(f"Unexpected token '{token}' at position {position}", position=position)

    return FormulaSyntaxError(str(exc))


class FormulaParser:
    """
    Parser for tabformula formulas.

    Parses formula strings into an AST that can be evaluated, together
    with the list of fields the formula depends on. Successful results
    are cached; failures are not.
    """

    def __init__(self, cache_size: int = 1000):
        self._parser = Lark(
            FORMULA_GRAMMAR,
            parser="lalr",
            lexer="basic",
            transformer=FormulaTransformer(),
        )
        self._cache: LRUCache[str, ParseResult] = LRUCache(cache_size)

    def parse(self, formula: Any) -> ParseResult:
        """
        Parse a formula string.

        Args:
            formula: Formula string; a leading ``=`` is ignored

        Returns:
            ParseResult; ``valid`` is False and ``error`` set on bad syntax
        """
        if not isinstance(formula, str):
            return ParseResult(None, [], False, "Formula is required and must be a string")

        cached = self._cache.get(formula)
        if cached is not None:
            logger.debug("Parse cache hit for %r", formula)
            return cached.copy()

        try:
            ast = self.parse_expression(formula)
        except FormulaSyntaxError as e:
            logger.debug("Failed to parse %r: %s", formula, e.message)
            return ParseResult(None, [], False, e.message)

        result = ParseResult(ast, collect_field_references(ast), True, None)
        self._cache.put(formula, result.copy())
        return result

    def parse_expression(self, formula: str) -> Node:
        """
        Parse a formula string into an AST, bypassing the cache.

        Raises:
            FormulaSyntaxError: If formula syntax is invalid
        """
        source = _strip_leading_equals(formula)
        if not source.strip():
            raise FormulaSyntaxError("Formula is empty", position=0)
        try:
            return self._parser.parse(source)
        except FormulaSyntaxError:
            raise
        except VisitError as e:
            if isinstance(e.orig_exc, FormulaSyntaxError):
                raise e.orig_exc from None
            raise
        except UnexpectedInput as e:
            raise _describe(source, e) from None

    def validate(self, formula: Any) -> tuple[bool, str | None]:
        """
        Validate formula syntax.

        Args:
            formula: Formula string to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        result = self.parse(formula)
        return result.valid, result.error

    def get_field_references(self, formula: Any) -> list[str]:
        """
        Extract all field references from a formula.

        Args:
            formula: Formula string

        Returns:
            Field names in first-seen order; empty if the formula is invalid
        """
        return self.parse(formula).dependencies

    def cache_info(self) -> CacheInfo:
        return self._cache.info()

    def clear_cache(self) -> None:
        self._cache.clear()


def _strip_leading_equals(formula: str) -> str:
    """Blank out a spreadsheet-style leading ``=``, keeping positions intact."""
    stripped = formula.lstrip()
    if stripped.startswith("="):
        offset = len(formula) - len(stripped)
        return formula[:offset] + " " + stripped[1:]
    return formula
