"""Formula engine for tabformula.

This module provides a complete formula evaluation system supporting:
- Arithmetic operations (+, -, *, /, %, ^) and concatenation (&)
- Comparison operations (=, !=, <>, <, >, <=, >=)
- Logical functions (IF, AND, OR, NOT, XOR) with short-circuiting
- Text, aggregate, date and type functions
- Codd NULL semantics: three-valued logic, A-marks and I-marks
- Field references ({Field Name}) and multi-observation cells
- Operator composition: chain checks, simplification, traced pipelines
"""

from tabformula.formula.composition import ChainValidator, PipelineStep, StepRef
from tabformula.formula.dependencies import FormulaDependencyGraph
from tabformula.formula.engine import (
    EvaluationResult,
    FormulaEngine,
    FormulaProvenance,
    evaluate,
    parse,
)
from tabformula.formula.evaluator import FormulaEvaluator
from tabformula.formula.functions import NullTrackedAggregate
from tabformula.formula.parser import FormulaParser, ParseResult
from tabformula.formula.registry import (
    OPERATORS,
    OperatorDescriptor,
    OperatorRegistry,
    default_registry,
    operator,
)
from tabformula.formula.values import UNKNOWN, AMark, IMark, MultiObservationCell, ValueType

__all__ = [
    "FormulaEngine",
    "EvaluationResult",
    "FormulaProvenance",
    "parse",
    "evaluate",
    "FormulaParser",
    "ParseResult",
    "FormulaEvaluator",
    "ChainValidator",
    "PipelineStep",
    "StepRef",
    "FormulaDependencyGraph",
    "OPERATORS",
    "OperatorDescriptor",
    "OperatorRegistry",
    "default_registry",
    "operator",
    "NullTrackedAggregate",
    "UNKNOWN",
    "AMark",
    "IMark",
    "MultiObservationCell",
    "ValueType",
]
