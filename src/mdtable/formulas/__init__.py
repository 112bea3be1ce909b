"""Formula language: tokenizing, parsing, evaluation and statement application.

Public API::

    from mdtable.formulas import parse_expression, evaluate, apply_formulas
"""

from mdtable.formulas.errors import (
    FormulaError,
    FormulaFunctionError,
    FormulaParseError,
    FormulaRefError,
    FormulaRuntimeError,
    FormulaShapeError,
)
from mdtable.formulas.evaluator import apply_binary_op, evaluate
from mdtable.formulas.parser import parse_expression
from mdtable.formulas.references import (
    parse_cell_reference,
    resolve_reference,
    table_to_matrix,
)
from mdtable.formulas.statements import (
    ParsedStatement,
    apply_formulas,
    parse_assignment,
    parse_statement,
)
from mdtable.formulas.tokenizer import tokenize
from mdtable.formulas.values import Matrix, Scalar, Span, Value, format_decimal, format_value

__all__ = [
    "FormulaError",
    "FormulaFunctionError",
    "FormulaParseError",
    "FormulaRefError",
    "FormulaRuntimeError",
    "FormulaShapeError",
    "Matrix",
    "ParsedStatement",
    "Scalar",
    "Span",
    "Value",
    "apply_binary_op",
    "apply_formulas",
    "evaluate",
    "format_decimal",
    "format_value",
    "parse_assignment",
    "parse_cell_reference",
    "parse_expression",
    "parse_statement",
    "resolve_reference",
    "table_to_matrix",
    "tokenize",
]
