"""
tabformula - Spreadsheet-style formula engine for tabular records.

Parses formulas such as ``IF({Qty} > 0, {Price} * {Qty}, 0)``, evaluates
them against records under legacy or Codd (three-valued) NULL semantics,
and reasons about operator composition.
"""

__version__ = "0.1.0"

from tabformula.formula import (
    UNKNOWN,
    AMark,
    EvaluationResult,
    FormulaEngine,
    IMark,
    evaluate,
    parse,
)

__all__ = [
    "FormulaEngine",
    "EvaluationResult",
    "parse",
    "evaluate",
    "UNKNOWN",
    "AMark",
    "IMark",
    "__version__",
]
