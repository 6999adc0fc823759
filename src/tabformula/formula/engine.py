"""Formula engine facade for tabformula.

Ties parser, evaluator and operator registry together. Every public
operation returns a tagged result instead of raising on bad formulas.
"""

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from tabformula.core.config import FormulaSettings, NullMode, get_settings
from tabformula.core.exceptions import ConfigurationError, TabFormulaException
from tabformula.core.logging import LoggerMixin
from tabformula.formula.composition import ChainValidator
from tabformula.formula.evaluator import FormulaEvaluator
from tabformula.formula.parser import FormulaParser, Node, ParseResult, collect_field_references
from tabformula.formula.registry import OperatorRegistry, default_registry

_DEFINITION_UNSAFE = re.compile(r"[^a-z0-9_]")


@dataclass(frozen=True)
class FormulaProvenance:
    """Where a computed value came from."""

    definition: str
    formula: str
    dependencies: tuple[str, ...] = ()
    method: str = "derived"
    scale: str = "individual"
    agent_type: str = "system"
    agent_id: str = "formula_engine"

    @classmethod
    def for_formula(cls, formula: str, dependencies: Sequence[str]) -> "FormulaProvenance":
        definition = _DEFINITION_UNSAFE.sub("_", formula.lower())[:50]
        return cls(definition=definition, formula=formula, dependencies=tuple(dependencies))


@dataclass
class EvaluationResult:
    """Outcome of evaluating one formula against one record."""

    value: Any
    dependencies: list[str] = field(default_factory=list)
    provenance: FormulaProvenance | None = None
    success: bool = True
    error: str | None = None
    error_code: str | None = None


class FormulaEngine(LoggerMixin):
    """
    Parse and evaluate formulas against records.

    Args:
        null_mode: NULL regime ("codd" or "legacy"); defaults to settings
        cache_size: Parse cache capacity; defaults to settings
        registry: Operator catalog; defaults to the built-ins
        settings: Settings object; defaults to ``get_settings()``
    """

    def __init__(
        self,
        null_mode: NullMode | str | None = None,
        cache_size: int | None = None,
        registry: OperatorRegistry | None = None,
        settings: FormulaSettings | None = None,
    ):
        self.settings = settings or get_settings()
        try:
            self.null_mode = NullMode(null_mode) if null_mode is not None else self.settings.null_mode
        except ValueError:
            raise ConfigurationError(f"Invalid null mode: {null_mode!r}", setting="null_mode") from None

        capacity = cache_size if cache_size is not None else self.settings.parse_cache_size
        if capacity < 1:
            raise ConfigurationError(
                f"Parse cache size must be at least 1, got {capacity}", setting="parse_cache_size"
            )

        self.registry = registry if registry is not None else default_registry()
        self.parser = FormulaParser(cache_size=capacity)
        self.evaluator = FormulaEvaluator(
            null_mode=self.null_mode,
            registry=self.registry,
            empty_text_is_absent=self.settings.empty_text_is_absent,
        )
        self._chain_validator: ChainValidator | None = None
        self.logger.info(
            "Formula engine created",
            extra={"null_mode": self.null_mode.value, "cache_size": capacity},
        )

    # ==========================================================================
    # Parsing
    # ==========================================================================

    def parse(self, formula: Any) -> ParseResult:
        return self.parser.parse(formula)

    def validate(self, formula: Any) -> tuple[bool, str | None]:
        """Check formula syntax; returns (is_valid, error_message)."""
        return self.parser.validate(formula)

    def get_field_references(self, formula: Any) -> list[str]:
        """Fields a formula reads, in first-seen order."""
        return self.parser.get_field_references(formula)

    # ==========================================================================
    # Evaluation
    # ==========================================================================

    def evaluate(self, formula: Any, record: Mapping[str, Any] | None = None) -> EvaluationResult:
        """
        Evaluate a formula against one record.

        Args:
            formula: Formula source
            record: Field values by name

        Returns:
            EvaluationResult; ``success`` is False when parsing or evaluation fails
        """
        parsed = self.parser.parse(formula)
        if not parsed.valid:
            return EvaluationResult(
                value=None,
                dependencies=parsed.dependencies,
                success=False,
                error=f"Formula parse error: {parsed.error}",
                error_code="FORMULA_SYNTAX_ERROR",
            )
        return self._run(parsed.ast, record, formula, parsed.dependencies)

    def evaluate_ast(
        self,
        ast: Node,
        record: Mapping[str, Any] | None = None,
        formula: str = "",
    ) -> EvaluationResult:
        """Evaluate an already-parsed formula."""
        return self._run(ast, record, formula, collect_field_references(ast))

    def evaluate_records(
        self,
        formula: Any,
        records: Iterable[Mapping[str, Any]],
    ) -> list[EvaluationResult]:
        """Evaluate one formula against many records, parsing it once."""
        parsed = self.parser.parse(formula)
        if not parsed.valid:
            failure = f"Formula parse error: {parsed.error}"
            return [
                EvaluationResult(None, [], success=False, error=failure, error_code="FORMULA_SYNTAX_ERROR")
                for _ in records
            ]
        return [self._run(parsed.ast, record, formula, list(parsed.dependencies)) for record in records]

    def _run(
        self,
        ast: Node,
        record: Mapping[str, Any] | None,
        formula: str,
        dependencies: list[str],
    ) -> EvaluationResult:
        try:
            value = self.evaluator.evaluate(ast, record if record is not None else {})
        except TabFormulaException as e:
            self.logger.debug("Evaluation of %r failed: %s", formula, e.message)
            return EvaluationResult(
                value=None,
                dependencies=dependencies,
                success=False,
                error=e.message,
                error_code=e.code,
            )
        except RecursionError:
            self.logger.debug("Evaluation of %r exceeded the nesting limit", formula)
            return EvaluationResult(
                value=None,
                dependencies=dependencies,
                success=False,
                error="Formula is nested too deeply to evaluate",
                error_code="NESTING_TOO_DEEP",
            )

        return EvaluationResult(
            value=value,
            dependencies=dependencies,
            provenance=FormulaProvenance.for_formula(formula, dependencies),
        )

    # ==========================================================================
    # Introspection
    # ==========================================================================

    def available_functions(self) -> list[str]:
        """Names callable from formula text, sorted."""
        return self.registry.call_names()

    @property
    def chain_validator(self) -> ChainValidator:
        if self._chain_validator is None:
            self._chain_validator = ChainValidator(self.registry)
        return self._chain_validator


@lru_cache
def get_default_engine() -> FormulaEngine:
    """Engine built from the global settings, created on first use."""
    return FormulaEngine()


def parse(formula: Any) -> ParseResult:
    """Parse a formula with the default engine."""
    return get_default_engine().parse(formula)


def evaluate(formula: Any, record: Mapping[str, Any] | None = None) -> EvaluationResult:
    """Evaluate a formula with the default engine."""
    return get_default_engine().evaluate(formula, record)
