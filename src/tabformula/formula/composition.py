"""Operator composition for tabformula.

Checks whether operators can be chained by type, applies algebraic
simplifications, and runs operator pipelines with a step-by-step trace.
"""

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from tabformula.core.exceptions import (
    ArityError,
    CompositionError,
    EvaluationError,
    RegistryError,
)
from tabformula.core.logging import LoggerMixin
from tabformula.formula.coercion import can_coerce, to_text
from tabformula.formula.registry import (
    AlgebraicProperty,
    OperatorDescriptor,
    OperatorRegistry,
    default_registry,
)
from tabformula.formula.values import same_value


@dataclass(frozen=True)
class ChainCheck:
    """Whether one operator's output can feed the next."""

    valid: bool
    reason: str | None = None


@dataclass(frozen=True)
class ChainViolation:
    """A broken link between two adjacent operators in a chain."""

    position: int
    from_id: str
    to_id: str
    reason: str


@dataclass(frozen=True)
class ChainValidation:
    valid: bool
    errors: tuple[ChainViolation, ...] = ()


@dataclass(frozen=True)
class Simplification:
    """Result of trying the algebraic rewrite rules on one call."""

    simplified: bool
    result: Any = None
    rule: str | None = None


@dataclass(frozen=True)
class StepRef:
    """Reference to an earlier value: inputs first, then step results."""

    index: int


@dataclass(frozen=True)
class PipelineStep:
    operator_id: str
    args: tuple[Any, ...] = ()


@dataclass(frozen=True)
class TraceEntry:
    """One line of an execution trace."""

    step: int
    kind: str  # input | simplification | evaluation | error | output
    description: str
    operator_id: str | None = None
    args: tuple[Any, ...] = ()
    result: Any = None
    rule: str | None = None
    error: str | None = None


@dataclass
class ExecutionTrace:
    result: Any
    trace: list[TraceEntry] = field(default_factory=list)
    values: list[Any] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(entry.kind == "error" for entry in self.trace)


class ChainValidator(LoggerMixin):
    """
    Type-level and algebraic reasoning over registered operators.

    Args:
        registry: Operator catalog; defaults to the built-ins
    """

    def __init__(self, registry: OperatorRegistry | None = None):
        self.registry = registry if registry is not None else default_registry()

    # ==========================================================================
    # Chaining
    # ==========================================================================

    def can_chain(self, first_id: str, second_id: str) -> ChainCheck:
        """Check whether the output of ``first_id`` can feed ``second_id``."""
        first = self.registry.find(first_id)
        if first is None:
            return ChainCheck(False, f"Unknown operator: {first_id}")
        second = self.registry.find(second_id)
        if second is None:
            return ChainCheck(False, f"Unknown operator: {second_id}")

        if second.is_variadic:
            return ChainCheck(True)
        expected = second.first_input_type
        if expected is None:
            return ChainCheck(False, f"{second.id} takes no arguments")

        produced = first.output_type
        if can_coerce(produced, expected):
            return ChainCheck(True)
        return ChainCheck(False, f"Cannot convert {produced.value} to {expected.value}")

    def validate_chain(self, operator_ids: Sequence[str]) -> ChainValidation:
        """Check every adjacent pair, collecting all broken links."""
        errors = []
        for position in range(len(operator_ids) - 1):
            first_id, second_id = operator_ids[position], operator_ids[position + 1]
            check = self.can_chain(first_id, second_id)
            if not check.valid:
                errors.append(ChainViolation(position, first_id, second_id, check.reason or ""))
        return ChainValidation(not errors, tuple(errors))

    # ==========================================================================
    # Simplification
    # ==========================================================================

    def can_simplify(self, operator_id: str, args: Sequence[Any]) -> Simplification:
        """
        Try the algebraic rewrite rules on ``operator_id(*args)``.

        Rules are tried in order: identity, absorbing, idempotent. Values
        are matched type-strictly, so ``0`` never stands in for ``False``.
        """
        descriptor = self.registry.find(operator_id)
        if descriptor is None:
            return Simplification(False)
        args = list(args)

        if descriptor.has_identity and len(args) == 2:
            identity = descriptor.identity_element
            if same_value(args[1], identity):
                return Simplification(True, args[0], "identity")
            if descriptor.identity_side == "both" and same_value(args[0], identity):
                return Simplification(True, args[1], "identity")

        if descriptor.has_absorbing:
            absorbing = descriptor.absorbing_element
            if any(same_value(arg, absorbing) for arg in args):
                return Simplification(True, absorbing, "absorbing")

        # x op x = x only makes sense for binary combining operators
        if (
            descriptor.has_property(AlgebraicProperty.IDEMPOTENT)
            and descriptor.has_property(AlgebraicProperty.ASSOCIATIVE)
            and len(args) == 2
            and same_value(args[0], args[1])
        ):
            return Simplification(True, args[0], "idempotent")

        return Simplification(False)

    # ==========================================================================
    # Pipelines
    # ==========================================================================

    def compose(self, steps: Iterable[Any]) -> Callable[..., Any]:
        """
        Build a callable that runs ``steps`` in order.

        Each step is a ``PipelineStep`` (or ``{"id": ..., "args": [...]}``);
        an argument that is a ``StepRef`` (or ``{"ref": n}``) reads slot
        ``n`` of ``[*inputs, *results]``.

        Raises:
            OperatorNotFoundError: If a step names an unknown operator
            CompositionError: If a step is malformed
            ArityError: If a step has the wrong number of arguments
            EvaluationError: If a step fails when the pipeline runs
        """
        pipeline = [self._normalize(step) for step in steps]
        descriptors = [self.registry.get(step.operator_id) for step in pipeline]
        for step, descriptor in zip(pipeline, descriptors):
            _check_arity(descriptor, len(step.args))

        def run(inputs: Iterable[Any] = ()) -> Any:
            values = list(inputs)
            for step, descriptor in zip(pipeline, descriptors):
                values.append(self._apply(descriptor, self._resolve(step, values)))
            return values[-1] if values else None

        return run

    def execute_with_trace(self, steps: Iterable[Any], inputs: Iterable[Any] = ()) -> ExecutionTrace:
        """
        Run a pipeline, recording inputs, simplifications, evaluations and
        the final output. A failing step is recorded and stops the run.
        """
        values = list(inputs)
        trace = [
            TraceEntry(
                step=0,
                kind="input",
                description=f"Inputs: [{', '.join(_show(v) for v in values)}]",
                args=tuple(values),
            )
        ]

        for number, raw in enumerate(steps, start=1):
            try:
                step = self._normalize(raw)
                descriptor = self.registry.get(step.operator_id)
                _check_arity(descriptor, len(step.args))
                args = self._resolve(step, values)
            except (CompositionError, EvaluationError, RegistryError) as e:
                trace.append(_error_entry(number, raw, e.message))
                break

            simplification = self.can_simplify(descriptor.id, args)
            if simplification.simplified:
                result = simplification.result
                trace.append(
                    TraceEntry(
                        step=number,
                        kind="simplification",
                        description=f"{descriptor.format(args)} simplifies to {_show(result)} ({simplification.rule})",
                        operator_id=descriptor.id,
                        args=tuple(args),
                        result=result,
                        rule=simplification.rule,
                    )
                )
            else:
                try:
                    result = self._apply(descriptor, args)
                except EvaluationError as e:
                    trace.append(_error_entry(number, descriptor.id, e.message, args))
                    break
                trace.append(
                    TraceEntry(
                        step=number,
                        kind="evaluation",
                        description=f"{descriptor.format(args)} = {_show(result)}",
                        operator_id=descriptor.id,
                        args=tuple(args),
                        result=result,
                    )
                )
            values.append(result)

        final = values[-1] if values else None
        trace.append(
            TraceEntry(step=len(trace), kind="output", description=f"Result: {_show(final)}", result=final)
        )
        self.logger.debug("Executed pipeline with %d trace entries", len(trace))
        return ExecutionTrace(result=final, trace=trace, values=values)

    def _normalize(self, step: Any) -> PipelineStep:
        if isinstance(step, PipelineStep):
            return step
        if isinstance(step, Mapping):
            operator_id = step.get("operator_id", step.get("id"))
            if not isinstance(operator_id, str):
                raise CompositionError("Pipeline step has no operator id", {"step": repr(step)})
            return PipelineStep(operator_id, tuple(step.get("args", ())))
        raise CompositionError(f"Invalid pipeline step: {step!r}")

    def _apply(self, descriptor: OperatorDescriptor, args: list[Any]) -> Any:
        try:
            return descriptor.evaluate(*args)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise EvaluationError(
                f"{descriptor.display_name} failed: {e}",
                details={"operator": descriptor.id},
            ) from e

    def _resolve(self, step: PipelineStep, values: list[Any]) -> list[Any]:
        resolved = []
        for arg in step.args:
            index = _ref_index(arg)
            if index is None:
                resolved.append(arg)
                continue
            if not 0 <= index < len(values):
                raise CompositionError(
                    f"Reference {index} in {step.operator_id} is not available "
                    f"(only {len(values)} values so far)",
                    {"operator_id": step.operator_id, "ref": index},
                )
            resolved.append(values[index])
        return resolved


def _check_arity(descriptor: OperatorDescriptor, count: int) -> None:
    if not descriptor.accepts_arg_count(count):
        raise ArityError(descriptor.id, descriptor.arity_text, count)


def _ref_index(arg: Any) -> int | None:
    if isinstance(arg, StepRef):
        return arg.index
    if isinstance(arg, Mapping) and set(arg) == {"ref"} and isinstance(arg["ref"], int):
        return arg["ref"]
    return None


def _show(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "NULL"
    return to_text(value)


def _error_entry(number: int, step: Any, message: str, args: Sequence[Any] = ()) -> TraceEntry:
    operator_id = step if isinstance(step, str) else getattr(step, "operator_id", None)
    if operator_id is None and isinstance(step, Mapping):
        operator_id = step.get("operator_id", step.get("id"))
    return TraceEntry(
        step=number,
        kind="error",
        description=f"Step {number} failed: {message}",
        operator_id=operator_id,
        args=tuple(args),
        error=message,
    )
