"""Unit tests for ChainValidator."""

import pytest

from tabformula.core.exceptions import (
    ArityError,
    CompositionError,
    EvaluationError,
    OperatorNotFoundError,
)
from tabformula.formula.composition import ChainValidator, PipelineStep, StepRef
from tabformula.formula.registry import (
    OperatorCategory,
    OperatorRegistry,
    default_registry,
    operator,
)
from tabformula.formula.values import ValueType


@pytest.fixture
def broken_validator():
    """A validator whose registry has a BROKEN() operator that always raises."""
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

    return ChainValidator(registry)


class TestCanChain:
    """Tests for type-level chaining."""

    def test_number_into_text(self, validator):
        """Test a number output can feed a text input."""
        assert validator.can_chain("ADD", "UPPER").valid
        assert validator.can_chain("ADD", "CONCAT").valid

    def test_text_into_number(self, validator):
        """Test text output cannot feed a numeric input."""
        check = validator.can_chain("CONCAT", "LESS_THAN")
        assert check.valid is False
        assert check.reason == "Cannot convert text to number"

    def test_unknown_operator(self, validator):
        """Test unknown operators are reported, not raised."""
        check = validator.can_chain("ADD", "NOPE")
        assert check.valid is False
        assert check.reason == "Unknown operator: NOPE"

    def test_operator_without_inputs(self, validator):
        """Test nothing chains into a zero-argument operator."""
        check = validator.can_chain("ADD", "TODAY")
        assert check.reason == "TODAY takes no arguments"

    def test_validate_chain_collects_every_error(self, validator):
        """Test every broken link is reported with its position."""
        result = validator.validate_chain(["ADD", "UPPER", "LESS_THAN", "NOPE"])
        assert result.valid is False
        assert [(e.position, e.from_id, e.to_id) for e in result.errors] == [
            (1, "UPPER", "LESS_THAN"),
            (2, "LESS_THAN", "NOPE"),
        ]

    def test_validate_short_chains(self, validator):
        """Test empty and single-operator chains are valid."""
        assert validator.validate_chain([]).valid
        assert validator.validate_chain(["ADD"]).valid


class TestCanSimplify:
    """Tests for algebraic simplification."""

    def test_identity(self, validator):
        """Test x + 0 and 0 + x simplify to x."""
        result = validator.can_simplify("ADD", [7, 0])
        assert (result.simplified, result.result, result.rule) == (True, 7, "identity")
        assert validator.can_simplify("ADD", [0, 7]).result == 7

    def test_right_identity_only(self, validator):
        """Test x - 0 simplifies but 0 - x does not."""
        assert validator.can_simplify("SUBTRACT", [7, 0]).result == 7
        assert validator.can_simplify("SUBTRACT", [0, 7]).simplified is False
        assert validator.can_simplify("DIVIDE", [1, 4]).simplified is False

    def test_absorbing(self, validator):
        """Test x * 0 simplifies to 0."""
        result = validator.can_simplify("MULTIPLY", [5, 0])
        assert (result.simplified, result.result, result.rule) == (True, 0, "absorbing")
        assert validator.can_simplify("OR", ["a", True]).rule == "absorbing"

    def test_idempotent(self, validator):
        """Test MAX(x, x) simplifies to x."""
        result = validator.can_simplify("MAX", [3, 3])
        assert (result.simplified, result.result, result.rule) == (True, 3, "idempotent")
        assert validator.can_simplify("MAX", [3, 4]).simplified is False

    def test_unary_idempotent_is_not_rewritten(self, validator):
        """Test ROUND(x, x) is not mistaken for x op x."""
        assert validator.can_simplify("ROUND", [2, 2]).simplified is False

    def test_matching_is_type_strict(self, validator):
        """Test False does not count as 0 and 1 does not count as True."""
        assert validator.can_simplify("MULTIPLY", [5, False]).simplified is False
        assert validator.can_simplify("ADD", [5, False]).simplified is False
        assert validator.can_simplify("OR", [1, "a"]).simplified is False

    def test_unknown_operator(self, validator):
        """Test unknown operators are never simplified."""
        assert validator.can_simplify("NOPE", [1, 0]).simplified is False


class TestCompose:
    """Tests for pipeline composition."""

    def test_compose_with_step_refs(self, validator):
        """Test steps read inputs and earlier results."""
        pipeline = validator.compose(
            [
                PipelineStep("ADD", (StepRef(0), StepRef(1))),
                PipelineStep("MULTIPLY", (StepRef(2), 10)),
            ]
        )
        assert pipeline([2, 3]) == 50
        assert pipeline([1, 1]) == 20

    def test_compose_mapping_steps(self, validator):
        """Test the mapping form of steps and references."""
        pipeline = validator.compose(
            [
                {"id": "CONCAT", "args": [{"ref": 0}, "!"]},
                {"id": "UPPER", "args": [{"ref": 1}]},
            ]
        )
        assert pipeline(["hi"]) == "HI!"

    def test_compose_unknown_operator(self, validator):
        """Test unknown operators fail at composition time."""
        with pytest.raises(OperatorNotFoundError):
            validator.compose([PipelineStep("NOPE")])

    def test_compose_invalid_step(self, validator):
        """Test malformed steps are rejected."""
        with pytest.raises(CompositionError):
            validator.compose([42])
        with pytest.raises(CompositionError):
            validator.compose([{"args": [1]}])

    def test_reference_out_of_range(self, validator):
        """Test references past the available values."""
        pipeline = validator.compose([PipelineStep("ADD", (StepRef(3), 1))])
        with pytest.raises(CompositionError):
            pipeline([1])

    def test_compose_checks_arity(self, validator):
        """Test a step with the wrong argument count is rejected when composing."""
        with pytest.raises(ArityError) as exc_info:
            validator.compose([PipelineStep("ABS", (1, 2))])
        assert exc_info.value.message == "ABS expects exactly 1 argument(s), got 2"
        with pytest.raises(ArityError):
            validator.compose([PipelineStep("ROUND")])

    def test_operator_failure_is_evaluation_error(self, broken_validator):
        """Test an operator raising at run time surfaces as EvaluationError."""
        pipeline = broken_validator.compose([PipelineStep("BROKEN", (StepRef(0),))])
        with pytest.raises(EvaluationError) as exc_info:
            pipeline([1])
        assert exc_info.value.message == "Broken failed: bad input"
        assert exc_info.value.details == {"operator": "BROKEN"}


class TestExecuteWithTrace:
    """Tests for traced pipeline execution."""

    def test_trace_records_each_step(self, validator):
        """Test inputs, simplifications, evaluations and output are traced."""
        execution = validator.execute_with_trace(
            [
                PipelineStep("ADD", (StepRef(0), 0)),
                PipelineStep("MULTIPLY", (StepRef(1), 3)),
            ],
            inputs=[4],
        )
        assert execution.result == 12
        assert execution.values == [4, 4, 12]
        assert [entry.kind for entry in execution.trace] == [
            "input",
            "simplification",
            "evaluation",
            "output",
        ]
        assert execution.trace[0].description == "Inputs: [4]"
        assert execution.trace[1].description == "(4 + 0) simplifies to 4 (identity)"
        assert execution.trace[2].description == "(4 * 3) = 12"
        assert execution.trace[3].description == "Result: 12"
        assert not execution.failed

    def test_failing_step_stops_the_run(self, validator):
        """Test a failing step is recorded and later steps are skipped."""
        execution = validator.execute_with_trace(
            [
                PipelineStep("DIVIDE", (StepRef(0), 0)),
                PipelineStep("ADD", (StepRef(1), 1)),
            ],
            inputs=[5],
        )
        assert execution.failed
        error = execution.trace[1]
        assert error.kind == "error"
        assert error.operator_id == "DIVIDE"
        assert error.error == "Division by zero"
        assert error.description == "Step 1 failed: Division by zero"
        assert execution.trace[-1].kind == "output"
        assert len(execution.trace) == 3

    def test_unknown_operator_is_traced(self, validator):
        """Test unknown operators become error entries."""
        execution = validator.execute_with_trace([{"id": "NOPE"}])
        assert execution.failed
        assert execution.trace[1].operator_id == "NOPE"
        assert execution.trace[1].error == "Unknown operator: NOPE"

    def test_bad_reference_is_traced(self, validator):
        """Test unavailable references become error entries."""
        execution = validator.execute_with_trace([PipelineStep("ADD", (StepRef(5), 1))], inputs=[1])
        assert execution.failed
        assert execution.trace[1].error.startswith("Reference 5 in ADD is not available")

    def test_wrong_arity_is_traced(self, validator):
        """Test a step with too many arguments becomes an error entry."""
        execution = validator.execute_with_trace([PipelineStep("ABS", (1, 2))])
        assert execution.failed
        error = execution.trace[1]
        assert error.kind == "error"
        assert error.operator_id == "ABS"
        assert error.error == "ABS expects exactly 1 argument(s), got 2"
        assert execution.result is None

    def test_operator_failure_is_traced(self, broken_validator):
        """Test an operator raising at run time stops the run with an error entry."""
        execution = broken_validator.execute_with_trace(
            [
                PipelineStep("BROKEN", (StepRef(0),)),
                PipelineStep("ADD", (StepRef(1), 1)),
            ],
            inputs=[1],
        )
        assert execution.failed
        assert execution.trace[1].operator_id == "BROKEN"
        assert execution.trace[1].error == "Broken failed: bad input"
        assert [entry.kind for entry in execution.trace] == ["input", "error", "output"]

    def test_custom_registry(self):
        """Test the validator uses the registry it was given."""
        validator = ChainValidator(registry=OperatorRegistry())
        assert validator.can_chain("ADD", "UPPER").reason == "Unknown operator: ADD"
