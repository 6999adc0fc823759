"""Unit tests for FormulaEngine."""

from decimal import Decimal

import pytest

from tabformula.core.config import NullMode
from tabformula.core.exceptions import ConfigurationError
from tabformula.formula import engine as engine_module
from tabformula.formula.composition import ChainValidator
from tabformula.formula.engine import FormulaEngine, FormulaProvenance
from tabformula.formula.values import UNKNOWN


class TestFormulaEngine:
    """Tests for FormulaEngine class."""

    def test_evaluate_success(self, legacy_engine):
        """Test a successful evaluation carries value, dependencies and provenance."""
        result = legacy_engine.evaluate("{A} - {B}", {"A": 500, "B": 200})
        assert result.success is True
        assert result.value == 300
        assert result.dependencies == ["A", "B"]
        assert result.error is None
        assert result.provenance.formula == "{A} - {B}"
        assert result.provenance.dependencies == ("A", "B")
        assert result.provenance.method == "derived"
        assert result.provenance.agent_id == "formula_engine"

    def test_parse_failure(self, codd_engine):
        """Test syntax errors become failed results."""
        result = codd_engine.evaluate("{A} +", {"A": 1})
        assert result.success is False
        assert result.value is None
        assert result.error == "Formula parse error: Unexpected end of formula"
        assert result.error_code == "FORMULA_SYNTAX_ERROR"
        assert result.provenance is None

    def test_evaluation_failure(self, legacy_engine):
        """Test evaluation errors become failed results."""
        result = legacy_engine.evaluate("{A} / 0", {"A": 1})
        assert result.success is False
        assert result.error == "Division by zero"
        assert result.error_code == "DIVISION_BY_ZERO"
        assert result.dependencies == ["A"]

        result = legacy_engine.evaluate("NOPE(1)")
        assert result.error == "Unknown function: NOPE"
        assert result.error_code == "UNKNOWN_FUNCTION"

    def test_null_modes(self, legacy_engine, codd_engine):
        """Test the two engines disagree on NULL handling."""
        assert legacy_engine.evaluate("{A} + 1").value == 1
        assert codd_engine.evaluate("{A} + 1").value is None
        assert legacy_engine.evaluate("{A} = {B}").value is True
        assert codd_engine.evaluate("{A} = {B}").value is UNKNOWN
        assert legacy_engine.evaluate("{A} - {B}", {"A": 1000, "B": 700}).value == 300

        legacy = legacy_engine.evaluate("{A} / {B}", {"A": 10, "B": 0})
        assert legacy.success is False
        assert legacy.error_code == "DIVISION_BY_ZERO"
        codd = codd_engine.evaluate("{A} / {B}", {"A": 10, "B": 0})
        assert codd.success is True
        assert codd.value is None

    def test_decimal_infinity_and_nan(self, legacy_engine, codd_engine):
        """Test Decimal infinities and NaN evaluate without raising."""
        for engine in (legacy_engine, codd_engine):
            result = engine.evaluate("{A} + 1", {"A": Decimal("Infinity")})
            assert result.success is True
            assert result.value == float("inf")

        legacy = legacy_engine.evaluate("{A} + 1", {"A": Decimal("NaN")})
        assert legacy.success is True
        assert legacy.value == 1
        codd = codd_engine.evaluate("{A} + 1", {"A": Decimal("NaN")})
        assert codd.success is True
        assert codd.value is None

    def test_deep_nesting(self, codd_engine):
        """Test very deep formulas fail cleanly instead of crashing."""
        result = codd_engine.evaluate("-" * 5000 + "1")
        assert result.success is False
        assert result.error_code == "NESTING_TOO_DEEP"

    def test_evaluate_records(self, codd_engine):
        """Test one formula over several records."""
        results = codd_engine.evaluate_records("{Price} * {Qty}", [{"Price": 2, "Qty": 3}, {"Price": 5}])
        assert [r.value for r in results] == [6, None]
        results[0].dependencies.append("X")
        assert results[1].dependencies == ["Price", "Qty"]

    def test_evaluate_records_parse_failure(self, codd_engine):
        """Test every record fails when the formula does not parse."""
        results = codd_engine.evaluate_records("1 +", [{}, {}])
        assert len(results) == 2
        assert all(not r.success for r in results)

    def test_evaluate_ast(self, codd_engine):
        """Test evaluating a pre-parsed formula."""
        ast = codd_engine.parse("{X} * 2").ast
        result = codd_engine.evaluate_ast(ast, {"X": 21}, formula="{X} * 2")
        assert result.value == 42
        assert result.dependencies == ["X"]

    def test_validate_and_references(self, codd_engine):
        """Test validation and field extraction pass through."""
        assert codd_engine.validate("1 + 1") == (True, None)
        assert codd_engine.validate("1 +")[0] is False
        assert codd_engine.get_field_references("{B} + {A} + {B}") == ["B", "A"]

    def test_available_functions(self, codd_engine):
        """Test the callable names are sorted and include aliases."""
        names = codd_engine.available_functions()
        assert names == sorted(names)
        assert "SUM" in names
        assert "AVERAGE" in names
        assert "IF" in names

    def test_chain_validator(self, codd_engine):
        """Test the chain validator shares the engine's registry."""
        validator = codd_engine.chain_validator
        assert isinstance(validator, ChainValidator)
        assert validator is codd_engine.chain_validator
        assert validator.registry is codd_engine.registry


class TestConfiguration:
    """Tests for engine construction."""

    def test_settings_defaults(self, test_settings):
        """Test the engine falls back to the settings."""
        engine = FormulaEngine(settings=test_settings)
        assert engine.null_mode == NullMode.CODD
        assert engine.parser.cache_info().capacity == 100

    def test_mode_from_string(self, test_settings):
        """Test null modes given as strings."""
        assert FormulaEngine(null_mode="legacy", settings=test_settings).null_mode == NullMode.LEGACY

    def test_invalid_mode(self, test_settings):
        """Test an unknown null mode is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            FormulaEngine(null_mode="sql", settings=test_settings)
        assert exc_info.value.details == {"setting": "null_mode"}

    def test_invalid_cache_size(self, test_settings):
        """Test a non-positive cache size is a configuration error."""
        with pytest.raises(ConfigurationError):
            FormulaEngine(cache_size=0, settings=test_settings)


class TestProvenance:
    """Tests for FormulaProvenance."""

    def test_definition_is_sanitised(self):
        """Test the definition is lower-case with unsafe characters replaced."""
        provenance = FormulaProvenance.for_formula("{Unit Price} * 2", ["Unit Price"])
        assert provenance.definition == "_unit_price____2"
        assert provenance.dependencies == ("Unit Price",)

    def test_definition_is_truncated(self):
        """Test long formulas are cut to 50 characters."""
        provenance = FormulaProvenance.for_formula("A" * 80, [])
        assert provenance.definition == "a" * 50


class TestModuleFunctions:
    """Tests for the default-engine shortcuts."""

    def test_parse_and_evaluate(self):
        """Test module-level parse() and evaluate()."""
        assert engine_module.parse("{A} + 1").dependencies == ["A"]
        result = engine_module.evaluate("2 * 21")
        assert result.success
        assert result.value == 42
        assert engine_module.get_default_engine() is engine_module.get_default_engine()
