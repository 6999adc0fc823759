"""
Custom exceptions for tabformula.

Provides a hierarchy of exceptions carrying a machine-readable code
and structured details, so callers can turn them into tagged results.
"""

from typing import Any


class TabFormulaException(Exception):
    """
    Base exception for all tabformula errors.

    All custom exceptions should inherit from this class.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            code: Machine-readable error code
            details: Additional error details
        """
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a plain dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


# =============================================================================
# Parse Errors
# =============================================================================


class FormulaSyntaxError(TabFormulaException):
    """Formula text could not be parsed."""

    def __init__(self, message: str, position: int | None = None) -> None:
        super().__init__(
            message=message,
            code="FORMULA_SYNTAX_ERROR",
            details={"position": position},
        )
        self.position = position


# =============================================================================
# Evaluation Errors
# =============================================================================


class EvaluationError(TabFormulaException):
    """Formula could not be evaluated against a record."""

    def __init__(
        self,
        message: str,
        code: str = "EVALUATION_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class UnknownFunctionError(EvaluationError):
    """Formula calls a function that is not registered."""

    def __init__(self, name: str) -> None:
        super().__init__(
            message=f"Unknown function: {name}",
            code="UNKNOWN_FUNCTION",
            details={"function": name},
        )
        self.name = name


class ArityError(EvaluationError):
    """Function called with the wrong number of arguments."""

    def __init__(self, name: str, expected: str, received: int) -> None:
        super().__init__(
            message=f"{name} expects {expected} argument(s), got {received}",
            code="ARITY_MISMATCH",
            details={"function": name, "expected": expected, "received": received},
        )


class DivisionByZeroError(EvaluationError):
    """Division or modulo by zero."""

    def __init__(self, operator_id: str = "DIVIDE") -> None:
        super().__init__(
            message="Division by zero",
            code="DIVISION_BY_ZERO",
            details={"operator": operator_id},
        )


# =============================================================================
# Composition Errors
# =============================================================================


class CompositionError(TabFormulaException):
    """Operator pipeline is malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="COMPOSITION_ERROR", details=details)


# =============================================================================
# Registry Errors
# =============================================================================


class RegistryError(TabFormulaException):
    """Operator registry misuse."""


class OperatorNotFoundError(RegistryError):
    """No operator registered under the given id."""

    def __init__(self, operator_id: str) -> None:
        super().__init__(
            message=f"Unknown operator: {operator_id}",
            code="OPERATOR_NOT_FOUND",
            details={"operator": operator_id},
        )
        self.operator_id = operator_id


class DuplicateOperatorError(RegistryError):
    """Operator id or call name already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(
            message=f"Operator '{name}' is already registered",
            code="DUPLICATE_OPERATOR",
            details={"operator": name},
        )


class RegistryFrozenError(RegistryError):
    """Registry no longer accepts registrations."""

    def __init__(self, operator_id: str) -> None:
        super().__init__(
            message=f"Cannot register '{operator_id}': registry is frozen",
            code="REGISTRY_FROZEN",
            details={"operator": operator_id},
        )


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(TabFormulaException):
    """Invalid engine configuration."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            details={"setting": setting},
        )
