"""Unit tests for FormulaEvaluator."""

from datetime import date

import pytest

from tabformula.core.config import NullMode
from tabformula.core.exceptions import (
    ArityError,
    DivisionByZeroError,
    EvaluationError,
    UnknownFunctionError,
)
from tabformula.formula.evaluator import FormulaEvaluator, evaluate_formula
from tabformula.formula.parser import FormulaParser
from tabformula.formula.registry import OperatorCategory, default_registry, operator
from tabformula.formula.values import UNKNOWN, AMark, MultiObservationCell, ValueType


def _run(formula: str, fields=None, null_mode=NullMode.CODD, registry=None):
    ast = FormulaParser().parse_expression(formula)
    evaluator = FormulaEvaluator(null_mode=null_mode, registry=registry)
    return evaluator.evaluate(ast, fields or {})


@pytest.fixture
def probe_registry():
    """A writable registry with a PROBE() operator that records its calls."""
    calls = []
    registry = default_registry().clone()

    @operator(
        "PROBE",
        display_name="Probe",
        category=OperatorCategory.TYPE,
        input_types=(),
        output_type=ValueType.NUMBER,
        arity=0,
        registry=registry,
    )
    def probe():
        calls.append(1)
        return 99

    return registry, calls


class TestLegacyMode:
    """Tests for zero-coercion NULL handling."""

    def test_subtract_fields(self):
        """Test {A} - {B} with plain numbers."""
        assert _run("{A} - {B}", {"A": 500, "B": 200}, NullMode.LEGACY) == 300

    def test_absent_is_zero(self):
        """Test missing fields count as zero in arithmetic."""
        assert _run("{A} + 1", {}, NullMode.LEGACY) == 1
        assert _run("{A} * 3", {"A": None}, NullMode.LEGACY) == 0

    def test_division_by_zero_raises(self):
        """Test division by zero is an evaluation failure."""
        with pytest.raises(DivisionByZeroError):
            _run("10 / {A}", {"A": 0}, NullMode.LEGACY)
        with pytest.raises(DivisionByZeroError):
            _run("MOD(10, 0)", {}, NullMode.LEGACY)

    def test_null_equals_null(self):
        """Test two absent values compare equal."""
        assert _run("{A} = {B}", {}, NullMode.LEGACY) is True

    def test_comparison_operators(self):
        """Test the ordering operators."""
        fields = {"A": 5, "B": 10}
        assert _run("{A} < {B}", fields, NullMode.LEGACY) is True
        assert _run("{A} >= {B}", fields, NullMode.LEGACY) is False
        assert _run("{A} <> {B}", fields, NullMode.LEGACY) is True
        assert _run('"apple" < "banana"', {}, NullMode.LEGACY) is True

    def test_not(self):
        """Test two-valued negation."""
        assert _run("!{A}", {}, NullMode.LEGACY) is True
        assert _run("NOT(1)", {}, NullMode.LEGACY) is False


class TestCoddMode:
    """Tests for three-valued NULL handling."""

    def test_null_propagates_through_arithmetic(self):
        """Test arithmetic with a NULL operand is NULL."""
        assert _run("{A} + {B}", {"A": None, "B": 2}) is None
        assert _run("-{A}", {}) is None
        assert _run("{A} * 2", {"A": AMark()}) is None
        assert _run("{A} + 1", {"A": ""}) is None

    def test_numeric_text_operands(self):
        """Test numeric text is read as a number, other text is NULL."""
        assert _run("{A} * 2", {"A": "3"}) == 6
        assert _run("{A} * 2", {"A": "abc"}) is None

    def test_division_by_zero_is_null(self):
        """Test division by zero is NULL instead of an error."""
        assert _run("10 / {A}", {"A": 0}) is None
        assert _run("MOD(10, 0)", {}) is None

    def test_comparisons_with_null_are_unknown(self):
        """Test comparisons against NULL are UNKNOWN."""
        assert _run("{A} = {B}", {}) is UNKNOWN
        assert _run("{A} > 5", {"A": None}) is UNKNOWN
        assert _run("EQUAL({A}, 1)", {}) is UNKNOWN
        assert _run("{A} = 5", {"A": 5}) is True

    def test_not_unknown(self):
        """Test negating UNKNOWN stays UNKNOWN."""
        assert _run("!({A} > 0)", {}) is UNKNOWN
        assert _run("NOT({A} = 1)", {}) is UNKNOWN
        assert _run("NOT({A} = 1)", {"A": 2}) is True

    def test_three_valued_and_or(self):
        """Test AND/OR follow Kleene logic."""
        assert _run("AND({A} > 1, FALSE)", {}) is False
        assert _run("AND({A} > 1, TRUE)", {}) is UNKNOWN
        assert _run("OR({A} > 1, TRUE)", {}) is True
        assert _run("OR({A} > 1, FALSE)", {}) is UNKNOWN

    def test_if_with_unknown_condition(self):
        """Test an UNKNOWN condition takes the else branch."""
        assert _run('IF({A} > 0, "pos", "other")', {}) == "other"
        assert _run('IF({A} > 0, "pos")', {}) is None

    def test_concat_with_null(self):
        """Test concatenation treats NULL as empty text."""
        assert _run('"a" & {X} & "b"', {}) == "ab"
        assert _run('CONCAT("n=", {N})', {"N": 3}) == "n=3"

    def test_date_arithmetic(self):
        """Test shifting dates and taking date differences."""
        fields = {"Start": date(2024, 1, 1), "End": date(2024, 1, 31)}
        assert _run("{Start} + 7", fields) == date(2024, 1, 8)
        assert _run("{End} - {Start}", fields) == 30
        assert _run('DATEDIFF({Start}, {End}, "days")', fields) == 30


class TestShortCircuit:
    """Tests for lazily evaluated functions."""

    def test_if_guards_division(self):
        """Test the untaken IF branch never runs."""
        assert _run("IF({A} = 0, 0, 100 / {A})", {"A": 0}, NullMode.LEGACY) == 0
        assert _run("IF({A} = 0, 0, 100 / {A})", {"A": 4}, NullMode.LEGACY) == 25

    def test_if_division_branch(self):
        """Test the division branch only runs when it is selected."""
        assert _run("IF({A}>0, 1, 1/{A})", {"A": 5}, NullMode.LEGACY) == 1
        with pytest.raises(DivisionByZeroError):
            _run("IF({A}>0, 1, 1/{A})", {"A": 0}, NullMode.LEGACY)
        assert _run("IF({A}>0, 1, 1/{A})", {"A": 0}) is None

    def test_if_skips_branch(self, probe_registry):
        """Test only the chosen branch is evaluated."""
        registry, calls = probe_registry
        assert _run("IF(TRUE, 1, PROBE())", registry=registry) == 1
        assert calls == []
        assert _run("IF(FALSE, 1, PROBE())", registry=registry) == 99
        assert calls == [1]

    def test_and_or_stop_early(self, probe_registry):
        """Test AND stops at the first false, OR at the first true."""
        registry, calls = probe_registry
        assert _run("AND(FALSE, PROBE())", registry=registry, null_mode=NullMode.LEGACY) is False
        assert _run("OR(TRUE, PROBE())", registry=registry, null_mode=NullMode.LEGACY) is True
        assert _run("AND3(FALSE, PROBE())", registry=registry) is False
        assert calls == []

    def test_binary_operators_evaluate_both_sides(self, probe_registry):
        """Test infix operators always evaluate both operands."""
        registry, calls = probe_registry
        assert _run("0 * PROBE()", registry=registry) == 0
        assert calls == [1]


class TestFunctionCalls:
    """Tests for function dispatch."""

    def test_nested_functions(self):
        """Test calls compose."""
        assert _run("ROUND(SUM({A}, {B}) / 3, 2)", {"A": 1, "B": 1}) == 0.67
        assert _run('UPPER(LEFT({Name}, 3))', {"Name": "tabular"}) == "TAB"

    def test_aliases(self):
        """Test alias call names dispatch to the operator."""
        assert _run("AVERAGE(2, 4)") == 3
        assert _run('VALUE("12")') == 12

    def test_unknown_function(self):
        """Test calling an unregistered function."""
        with pytest.raises(UnknownFunctionError) as exc_info:
            _run("FOO(1)")
        assert exc_info.value.name == "FOO"
        assert exc_info.value.code == "UNKNOWN_FUNCTION"

    def test_arity_errors(self):
        """Test calls with too few or too many arguments."""
        with pytest.raises(ArityError):
            _run("ROUND()")
        with pytest.raises(ArityError) as exc_info:
            _run("ABS(1, 2)")
        assert exc_info.value.message == "ABS expects exactly 1 argument(s), got 2"

    def test_operator_failure_is_evaluation_error(self):
        """Test unexpected operator failures surface as EvaluationError."""
        registry = default_registry().clone()

        @operator(
            "BROKEN",
            display_name="Broken",
            category=OperatorCategory.TYPE,
            input_types=(ValueType.ANY,),
            output_type=ValueType.ANY,
            arity=1,
            registry=registry,
        )
        def broken(value):
            raise ValueError("bad input")

        with pytest.raises(EvaluationError) as exc_info:
            _run("BROKEN(1)", registry=registry)
        assert exc_info.value.message == "Broken failed: bad input"
        assert exc_info.value.details == {"operator": "BROKEN"}


class TestRecordCells:
    """Tests for reading record cells."""

    def test_multi_observation_cell(self):
        """Test the latest observation is used."""
        cell = MultiObservationCell().add(10, "2024-01-01").add(20, "2024-06-01").add(5, "2023-01-01")
        assert _run("{Reading} * 2", {"Reading": cell}) == 40

    def test_observation_mapping(self):
        """Test the mapping form of a multi-observation cell."""
        cell = {"values": [{"value": 1, "timestamp": 5}, {"value": 2, "timestamp": 3}]}
        assert _run("{X} + 1", {"X": cell}) == 2

    def test_constructor_fields(self):
        """Test evaluate() falls back to the constructor record."""
        ast = FormulaParser().parse_expression("{A} + {B}")
        evaluator = FormulaEvaluator({"A": 1, "B": 2}, null_mode=NullMode.CODD)
        assert evaluator.evaluate(ast) == 3
        assert evaluate_formula(ast, {"A": 2, "B": 2}, null_mode="legacy") == 4
