"""Formula evaluator for tabformula.

Evaluates parsed formula ASTs against record data under one of two
NULL regimes:

- legacy: absent values are coerced to zero/empty before arithmetic and
  comparisons are ordinary booleans;
- codd: NULL propagates through arithmetic, comparisons involving NULL
  are UNKNOWN, and logic follows three-valued (Kleene) rules.
"""

from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from tabformula.core.config import NullMode, get_settings
from tabformula.core.exceptions import (
    ArityError,
    DivisionByZeroError,
    EvaluationError,
    UnknownFunctionError,
)
from tabformula.core.logging import LoggerMixin
from tabformula.formula.coercion import to_boolean, to_number
from tabformula.formula.functions import truth_value
from tabformula.formula.parser import (
    BinaryOpNode,
    FieldRefNode,
    FunctionCallNode,
    LiteralNode,
    Node,
    UnaryOpNode,
)
from tabformula.formula.registry import (
    OperatorCategory,
    OperatorDescriptor,
    OperatorRegistry,
    default_registry,
)
from tabformula.formula.values import UNKNOWN, is_absent, resolve_cell

BINARY_OPERATORS = {
    "+": "ADD",
    "-": "SUBTRACT",
    "*": "MULTIPLY",
    "/": "DIVIDE",
    "%": "MODULO",
    "^": "POWER",
    "&": "CONCAT",
    "=": "EQUAL",
    "!=": "NOT_EQUAL",
    "<": "LESS_THAN",
    ">": "GREATER_THAN",
    "<=": "LESS_EQUAL",
    ">=": "GREATER_EQUAL",
}

ARITHMETIC_OPERATORS = frozenset({"ADD", "SUBTRACT", "MULTIPLY", "DIVIDE", "MODULO", "POWER"})


class FormulaEvaluator(LoggerMixin):
    """
    Evaluates formula ASTs against record data.

    The evaluator holds no per-evaluation state, so a single instance may
    serve many threads.
    """

    def __init__(
        self,
        fields: Mapping[str, Any] | None = None,
        null_mode: NullMode | str | None = None,
        registry: OperatorRegistry | None = None,
        empty_text_is_absent: bool | None = None,
    ):
        """
        Initialize evaluator.

        Args:
            fields: Default record used when ``evaluate`` gets none
            null_mode: NULL regime; defaults to the configured one
            registry: Operator catalog; defaults to the built-ins
            empty_text_is_absent: Whether "" counts as NULL
        """
        settings = get_settings()
        self._fields = fields or {}
        self.null_mode = NullMode(null_mode) if null_mode is not None else settings.null_mode
        self.registry = registry if registry is not None else default_registry()
        self.empty_text_is_absent = (
            settings.empty_text_is_absent if empty_text_is_absent is None else empty_text_is_absent
        )
        self._lazy: dict[str, Callable[[Sequence[Node], Mapping[str, Any]], Any]] = {
            "IF": self._eval_if,
            "AND": lambda args, record: self._eval_and(args, record, self.codd_mode),
            "OR": lambda args, record: self._eval_or(args, record, self.codd_mode),
            "AND3": lambda args, record: self._eval_and(args, record, True),
            "OR3": lambda args, record: self._eval_or(args, record, True),
        }

    @property
    def codd_mode(self) -> bool:
        return self.null_mode == NullMode.CODD

    def evaluate(self, ast: Node, fields: Mapping[str, Any] | None = None) -> Any:
        """
        Evaluate an AST node.

        Args:
            ast: AST node to evaluate
            fields: Record to evaluate against (overrides constructor values)

        Returns:
            Evaluation result

        Raises:
            EvaluationError: On unknown functions, bad arity or (legacy
                mode) division by zero
        """
        record = fields if fields is not None else self._fields
        return self._eval(ast, record)

    def _eval(self, node: Node, record: Mapping[str, Any]) -> Any:
        """Recursively evaluate an AST node."""
        if isinstance(node, LiteralNode):
            return node.value

        if isinstance(node, FieldRefNode):
            return resolve_cell(record.get(node.field_name))

        if isinstance(node, FunctionCallNode):
            return self._eval_function(node, record)

        if isinstance(node, BinaryOpNode):
            return self._eval_binary(node, record)

        if isinstance(node, UnaryOpNode):
            return self._eval_unary(node, record)

        raise EvaluationError(f"Unknown node type: {type(node).__name__}")

    # ==========================================================================
    # Dispatch
    # ==========================================================================

    def _eval_function(self, node: FunctionCallNode, record: Mapping[str, Any]) -> Any:
        """Evaluate a function call."""
        descriptor = self.registry.resolve_function(node.name)
        if descriptor is None:
            raise UnknownFunctionError(node.name)
        if not descriptor.accepts_arg_count(len(node.arguments)):
            raise ArityError(node.name, descriptor.arity_text, len(node.arguments))

        lazy = self._lazy.get(descriptor.id) if descriptor.lazy else None
        if lazy is not None:
            return lazy(node.arguments, record)

        args = [self._eval(arg, record) for arg in node.arguments]

        if descriptor.id in ARITHMETIC_OPERATORS and len(args) == 2:
            return self._arithmetic(descriptor, args[0], args[1])
        if descriptor.category == OperatorCategory.COMPARISON:
            return self._comparison(descriptor, args[0], args[1])
        if descriptor.id == "NOT" and self.codd_mode:
            return self._not(args[0])
        return self._apply(descriptor, args)

    def _eval_binary(self, node: BinaryOpNode, record: Mapping[str, Any]) -> Any:
        """Evaluate a binary operation; both operands are always evaluated."""
        left = self._eval(node.left, record)
        right = self._eval(node.right, record)

        operator_id = BINARY_OPERATORS.get(node.operator)
        if operator_id is None:
            raise EvaluationError(f"Unknown operator: {node.operator}")
        descriptor = self.registry.get(operator_id)

        if operator_id in ARITHMETIC_OPERATORS:
            return self._arithmetic(descriptor, left, right)
        if descriptor.category == OperatorCategory.COMPARISON:
            return self._comparison(descriptor, left, right)
        return self._apply(descriptor, [left, right])

    def _eval_unary(self, node: UnaryOpNode, record: Mapping[str, Any]) -> Any:
        """Evaluate a unary operation."""
        operand = self._eval(node.operand, record)
        op = node.operator

        if op == "-":
            if self.codd_mode:
                operand = self._strict_operand(operand)
                if operand is None:
                    return None
            return self._apply(self.registry.get("NEGATE"), [operand])

        if op == "+":
            if self.codd_mode:
                return self._strict_operand(operand)
            return to_number(operand)

        if op == "!":
            if self.codd_mode:
                return self._not(operand)
            return self._apply(self.registry.get("NOT"), [operand])

        raise EvaluationError(f"Unknown unary operator: {op}")

    def _apply(self, descriptor: OperatorDescriptor, args: list[Any]) -> Any:
        """Run an operator's evaluation rule on evaluated arguments."""
        try:
            return descriptor.evaluate(*args)
        except DivisionByZeroError:
            if self.codd_mode:
                return None
            raise
        except (TypeError, ValueError, ArithmeticError) as e:
            raise EvaluationError(
                f"{descriptor.display_name} failed: {e}",
                details={"operator": descriptor.id},
            ) from e

    # ==========================================================================
    # NULL Regimes
    # ==========================================================================

    def _missing(self, value: Any) -> bool:
        return value is UNKNOWN or is_absent(value, self.empty_text_is_absent)

    def _strict_operand(self, value: Any) -> Any:
        """Codd arithmetic operand: dates pass through, the rest must be numbers."""
        if self._missing(value):
            return None
        if isinstance(value, (date, datetime)):
            return value
        return to_number(value, strict=True)

    def _arithmetic(self, descriptor: OperatorDescriptor, left: Any, right: Any) -> Any:
        if self.codd_mode:
            left, right = self._strict_operand(left), self._strict_operand(right)
            if left is None or right is None:
                return None
        return self._apply(descriptor, [left, right])

    def _comparison(self, descriptor: OperatorDescriptor, left: Any, right: Any) -> Any:
        if self.codd_mode and (self._missing(left) or self._missing(right)):
            return UNKNOWN
        return self._apply(descriptor, [left, right])

    def _truth(self, value: Any) -> Any:
        return truth_value(value, self.empty_text_is_absent)

    def _not(self, value: Any) -> Any:
        truth = self._truth(value)
        return UNKNOWN if truth is UNKNOWN else not truth

    # ==========================================================================
    # Short-Circuit Functions
    # ==========================================================================

    def _is_true(self, value: Any) -> bool:
        if self.codd_mode:
            return self._truth(value) is True
        return to_boolean(value)

    def _eval_if(self, args: Sequence[Node], record: Mapping[str, Any]) -> Any:
        """IF(condition, then, else): only the chosen branch is evaluated."""
        if self._is_true(self._eval(args[0], record)):
            return self._eval(args[1], record)
        if len(args) > 2:
            return self._eval(args[2], record)
        return None

    def _eval_and(self, args: Sequence[Node], record: Mapping[str, Any], three_valued: bool) -> Any:
        result: Any = True
        for arg in args:
            value = self._eval(arg, record)
            if not three_valued:
                if not to_boolean(value):
                    return False
                continue
            truth = self._truth(value)
            if truth is False:
                return False
            if truth is UNKNOWN:
                result = UNKNOWN
        return result

    def _eval_or(self, args: Sequence[Node], record: Mapping[str, Any], three_valued: bool) -> Any:
        result: Any = False
        for arg in args:
            value = self._eval(arg, record)
            if not three_valued:
                if to_boolean(value):
                    return True
                continue
            truth = self._truth(value)
            if truth is True:
                return True
            if truth is UNKNOWN:
                result = UNKNOWN
        return result


def evaluate_formula(
    formula_ast: Node,
    fields: Mapping[str, Any],
    null_mode: NullMode | str | None = None,
) -> Any:
    """
    Convenience function to evaluate a formula.

    Args:
        formula_ast: Parsed formula AST
        fields: Field values for the record
        null_mode: NULL regime; defaults to the configured one

    Returns:
        Evaluation result
    """
    evaluator = FormulaEvaluator(fields, null_mode=null_mode)
    return evaluator.evaluate(formula_ast)
