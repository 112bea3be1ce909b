"""Statement parsing and ordered application of formulas to a grid.

A formula is either a variable binding or a write into the grid::

    let total = sum(A_)
    C_ = A_ * B_
    D1:E2 = from("prices", A1:B2)

Formulas run in list order and share one variable map, so later formulas
see variables bound and cells written by earlier ones.  A failing formula
leaves the grid untouched and does not stop the rest of the batch.
"""

from __future__ import annotations

import decimal
import re
from dataclasses import dataclass
from typing import Mapping, MutableSequence, Union

from mdtable.formulas.errors import FormulaError, InvalidAssignmentError
from mdtable.formulas.evaluator import evaluate
from mdtable.formulas.parser import parse_expression
from mdtable.formulas.references import (
    FIRST_DATA_ROW_INDEX,
    CellReference,
    ColumnRangeRef,
    ColumnVectorRef,
    Grid,
    RangeRef,
    RowRangeRef,
    RowVectorRef,
    ScalarRef,
    formula_row_to_table_index,
    parse_cell_reference,
    parse_reference_text,
)
from mdtable.formulas.values import Matrix, Scalar, Span, Value, format_decimal
from mdtable.logging import EventType, emit_info, emit_warning
from mdtable.logging.events import (
    FORMULA_ASSIGN_ERROR,
    FORMULA_EVAL_ERROR,
    FORMULA_PARSE_ERROR,
)

# Write targets share the six reference shapes
Assignment = CellReference

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")

DEFAULT_PRECISION = 28


@dataclass(frozen=True)
class LetStatement:
    name: str
    span: Span


@dataclass(frozen=True)
class AssignStatement:
    target: Assignment


Statement = Union[LetStatement, AssignStatement]


@dataclass(frozen=True)
class ParsedStatement:
    statement: Statement
    expression: str


def parse_assignment(target: str) -> Assignment | None:
    """Parse the left side of ``TARGET = EXPR``; ``None`` if it is not a reference."""
    return parse_reference_text(target)


def parse_statement(formula: str) -> ParsedStatement | None:
    """Split a formula into its statement and right-hand-side text.

    Returns ``None`` for anything that is neither ``let NAME = EXPR`` nor
    ``TARGET = EXPR`` with exactly one ``=``.  A ``let`` name that reads
    as a cell reference (``let A1 = 5``) is rejected.
    """
    formula = formula.strip()

    if formula.startswith("let "):
        name, sep, expr = formula[4:].partition("=")
        name = name.strip()
        if not sep or not name:
            return None
        if parse_cell_reference(name) is not None or not _IDENTIFIER_RE.match(name):
            return None
        return ParsedStatement(LetStatement(name, Span(0, len(formula))), expr.strip())

    parts = formula.split("=")
    if len(parts) != 2:
        return None
    target = parse_assignment(parts[0])
    if target is None:
        return None
    return ParsedStatement(AssignStatement(target), parts[1].strip())


def apply_formulas(
    grid: MutableSequence[MutableSequence[str]],
    formulas: list[str],
    tables: Mapping[str, Grid] | None = None,
    *,
    precision: int | None = None,
) -> list[str | None]:
    """Run *formulas* in order against *grid*, writing results in place.

    Args:
        grid: Header row, separator row, then data rows of cell strings.
        formulas: Statement texts, e.g. ``["let t = sum(A_)", "B1 = t"]``.
        tables: Other tables by id, for ``from("id")``.
        precision: Significant digits for decimal arithmetic.

    Returns:
        One entry per formula: ``None`` on success, otherwise the error
        message.
    """
    results: list[str | None] = []
    variables: dict[str, Value] = {}
    tables = tables or {}

    with decimal.localcontext() as ctx:
        ctx.prec = precision or DEFAULT_PRECISION
        for formula in formulas:
            formula = formula.strip()
            error, code = _apply_one(grid, formula, tables, variables)
            results.append(error)
            if error is None:
                emit_info(EventType.formula_applied, f"applied {formula}", {"formula": formula})
            else:
                emit_warning(
                    EventType.formula_failed,
                    error,
                    {"formula": formula},
                    error_code=code,
                )
    return results


def _apply_one(
    grid: MutableSequence[MutableSequence[str]],
    formula: str,
    tables: Mapping[str, Grid],
    variables: dict[str, Value],
) -> tuple[str | None, str | None]:
    parsed = parse_statement(formula)
    if parsed is None:
        return (
            f"Failed to parse statement '{formula}': invalid syntax "
            "(expected format: 'let VAR = EXPRESSION' or 'TARGET = EXPRESSION')",
            FORMULA_PARSE_ERROR,
        )

    statement, expr_text = parsed.statement, parsed.expression
    try:
        value = evaluate(parse_expression(expr_text), grid, tables, variables)
    except FormulaError as exc:
        if isinstance(statement, LetStatement):
            prefix = f"Failed to evaluate expression for variable '{statement.name}':"
            if exc.span is not None:
                return f"{prefix} \n{exc.with_context(expr_text)}", FORMULA_EVAL_ERROR
            return f"{prefix} {exc}", FORMULA_EVAL_ERROR
        if exc.span is not None:
            return f"Failed to evaluate expression:\n{exc.with_context(expr_text)}", FORMULA_EVAL_ERROR
        return f"Failed to evaluate expression '{expr_text}': {exc}", FORMULA_EVAL_ERROR

    if isinstance(statement, LetStatement):
        variables[statement.name] = value
        return None, None

    try:
        write_value(grid, statement.target, value)
    except InvalidAssignmentError as exc:
        return f"Assignment failed for '{formula}': {exc}", FORMULA_ASSIGN_ERROR
    return None, None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def write_value(
    grid: MutableSequence[MutableSequence[str]],
    target: Assignment,
    value: Value,
) -> None:
    """Write *value* into the cells named by *target*.

    Raises:
        InvalidAssignmentError: If the value's shape does not fit the
            target or the target lies outside the grid.  Nothing is
            written in that case.
    """
    if isinstance(target, ScalarRef):
        _write_scalar(grid, target, value)
    elif isinstance(target, ColumnVectorRef):
        _write_column(grid, target, value)
    elif isinstance(target, RowVectorRef):
        _write_row(grid, target, value)
    elif isinstance(target, RangeRef):
        _write_range(grid, target, value)
    elif isinstance(target, ColumnRangeRef):
        _write_column_range(grid, target, value)
    elif isinstance(target, RowRangeRef):
        _write_row_range(grid, target, value)
    else:
        raise InvalidAssignmentError(f"unsupported assignment target: {target!r}")


def _header_width(grid: Grid) -> int:
    return len(grid[0]) if grid else 0


def _write_scalar(grid, target: ScalarRef, value: Value) -> None:
    d = value.as_scalar()
    if d is None:
        raise InvalidAssignmentError(
            "cannot assign matrix to scalar cell (use a cell vector assignment like C_ instead)"
        )
    if target.row >= len(grid) or target.col >= len(grid[target.row]):
        raise InvalidAssignmentError("cell index out of bounds")
    grid[target.row][target.col] = format_decimal(d)


def _write_column(grid, target: ColumnVectorRef, value: Value) -> None:
    if not isinstance(value, Matrix) or not value.is_column_vector:
        if isinstance(value, Scalar):
            got = "scalar"
        elif value.is_row_vector:
            got = "row vector"
        else:
            got = "matrix"
        raise InvalidAssignmentError(f"expected column vector but got {got} result")
    if target.col >= _header_width(grid):
        raise InvalidAssignmentError("column index out of bounds")

    for i, d in enumerate(value.data):
        row_idx = FIRST_DATA_ROW_INDEX + i
        if row_idx >= len(grid):
            break
        if target.col < len(grid[row_idx]):
            grid[row_idx][target.col] = format_decimal(d)


def _write_row(grid, target: RowVectorRef, value: Value) -> None:
    if isinstance(value, Scalar):
        raise InvalidAssignmentError(
            "cannot assign scalar to row vector (expected row vector)"
        )
    if not value.is_row_vector:
        raise InvalidAssignmentError(
            f"expected row vector but got matrix with {value.rows} rows"
        )
    row_idx = formula_row_to_table_index(target.row)
    if row_idx >= len(grid):
        raise InvalidAssignmentError("row index out of bounds")

    row = grid[row_idx]
    for col_idx, d in enumerate(value.data[:len(row)]):
        row[col_idx] = format_decimal(d)


def _write_range(grid, target: RangeRef, value: Value) -> None:
    if isinstance(value, Scalar):
        raise InvalidAssignmentError("cannot assign scalar to range (expected matrix)")
    expected_rows, expected_cols = target.shape
    if value.shape != target.shape:
        raise InvalidAssignmentError(
            f"dimension mismatch (expected {expected_rows}×{expected_cols} "
            f"but got {value.rows}×{value.cols})"
        )
    if target.end_row >= len(grid):
        raise InvalidAssignmentError("range extends beyond table bounds")

    for i in range(expected_rows):
        row = grid[target.start_row + i]
        for j in range(expected_cols):
            col_idx = target.start_col + j
            if col_idx < len(row):
                row[col_idx] = format_decimal(value.at(i, j))


def _write_column_range(grid, target: ColumnRangeRef, value: Value) -> None:
    if isinstance(value, Scalar):
        raise InvalidAssignmentError(
            "cannot assign scalar to column range (expected matrix)"
        )
    if value.cols != target.width:
        raise InvalidAssignmentError(
            f"column dimension mismatch (expected {target.width} columns but got {value.cols})"
        )
    if target.end_col >= _header_width(grid):
        raise InvalidAssignmentError("column range extends beyond table bounds")

    for i in range(value.rows):
        row_idx = FIRST_DATA_ROW_INDEX + i
        if row_idx >= len(grid):
            break
        row = grid[row_idx]
        for j in range(value.cols):
            col_idx = target.start_col + j
            if col_idx < len(row):
                row[col_idx] = format_decimal(value.at(i, j))


def _write_row_range(grid, target: RowRangeRef, value: Value) -> None:
    if isinstance(value, Scalar):
        raise InvalidAssignmentError("cannot assign scalar to row range (expected matrix)")
    if value.rows != target.height:
        raise InvalidAssignmentError(
            f"row dimension mismatch (expected {target.height} rows but got {value.rows})"
        )
    if formula_row_to_table_index(target.end_row) >= len(grid):
        raise InvalidAssignmentError("row range extends beyond table bounds")

    start_idx = formula_row_to_table_index(target.start_row)
    for i in range(value.rows):
        row = grid[start_idx + i]
        for j in range(min(value.cols, len(row))):
            row[j] = format_decimal(value.at(i, j))
