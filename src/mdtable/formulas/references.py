"""Cell, vector and range references, and their resolution against a grid.

Reference syntax (case-insensitive):

- ``A1`` -- one cell (column letter + formula row)
- ``A_`` -- a whole column, every data row
- ``_1`` -- a whole row
- ``A1:C5``, ``A_:C_``, ``_1:_5`` -- rectangular, column and row ranges

Formula row 1 is the grid's first data row.  A grid is a list of rows of
cell strings: row 0 is the header, row 1 the separator, rows 2+ are data.
Cells that are empty or not numeric read as zero so that sparse tables
work without ceremony.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence, Union

from mdtable.formulas.errors import (
    CellOutOfBoundsError,
    ColumnOutOfBoundsError,
    FormulaRuntimeError,
    InvalidRangeError,
    RangeOutOfBoundsError,
    RowOutOfBoundsError,
)
from mdtable.formulas.values import Matrix, Scalar, Span, Value, format_decimal

Grid = Sequence[Sequence[str]]

# Header and separator rows precede the data
FIRST_DATA_ROW_INDEX = 2

_NUMBER_RE = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)\Z")


def formula_row_to_table_index(row_num: int) -> int:
    """Formula row 1 is grid row 2 (after header and separator)."""
    return FIRST_DATA_ROW_INDEX + row_num - 1


def col_index_to_letter(col: int) -> str:
    return chr(ord("A") + col)


def parse_cell_value(cell: str) -> Decimal:
    """Parse a cell string as a decimal; anything unparsable is zero."""
    if _NUMBER_RE.match(cell):
        return Decimal(cell)
    return Decimal(0)


# ---------------------------------------------------------------------------
# Reference types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalarRef:
    row: int  # grid index
    col: int

    def __str__(self) -> str:
        return f"{col_index_to_letter(self.col)}{self.row - FIRST_DATA_ROW_INDEX + 1}"


@dataclass(frozen=True)
class ColumnVectorRef:
    col: int

    def __str__(self) -> str:
        return f"{col_index_to_letter(self.col)}_"


@dataclass(frozen=True)
class RowVectorRef:
    row: int  # formula row

    def __str__(self) -> str:
        return f"_{self.row}"


@dataclass(frozen=True)
class RangeRef:
    start_row: int  # grid index
    start_col: int
    end_row: int
    end_col: int

    @property
    def shape(self) -> tuple[int, int]:
        return (self.end_row - self.start_row + 1, self.end_col - self.start_col + 1)

    def __str__(self) -> str:
        return f"{ScalarRef(self.start_row, self.start_col)}:{ScalarRef(self.end_row, self.end_col)}"


@dataclass(frozen=True)
class ColumnRangeRef:
    start_col: int
    end_col: int

    @property
    def width(self) -> int:
        return self.end_col - self.start_col + 1

    def __str__(self) -> str:
        return f"{ColumnVectorRef(self.start_col)}:{ColumnVectorRef(self.end_col)}"


@dataclass(frozen=True)
class RowRangeRef:
    start_row: int  # formula row
    end_row: int

    @property
    def height(self) -> int:
        return self.end_row - self.start_row + 1

    def __str__(self) -> str:
        return f"{RowVectorRef(self.start_row)}:{RowVectorRef(self.end_row)}"


CellReference = Union[ScalarRef, ColumnVectorRef, RowVectorRef, RangeRef, ColumnRangeRef, RowRangeRef]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_cell_reference(token: str) -> CellReference | None:
    """Parse ``A1``, ``A_`` or ``_1`` into a reference.

    Returns ``None`` for anything else (numbers, names, row ``0``), which
    lets callers fall back to other interpretations of the token.
    """
    token = token.strip().upper()
    if not token:
        return None

    if token.startswith("_"):
        rest = token[1:]
        if rest.isascii() and rest.isdigit() and int(rest) > 0:
            return RowVectorRef(int(rest))
        return None

    if token.endswith("_"):
        letter = token[:-1]
        if len(letter) == 1 and "A" <= letter <= "Z":
            return ColumnVectorRef(ord(letter) - ord("A"))
        return None

    letter, rest = token[0], token[1:]
    if not ("A" <= letter <= "Z") or not rest or not (rest.isascii() and rest.isdigit()):
        return None
    row_num = int(rest)
    if row_num == 0:
        return None
    return ScalarRef(formula_row_to_table_index(row_num), ord(letter) - ord("A"))


def parse_range(start: CellReference, end: CellReference, span: Span | None = None) -> CellReference:
    """Combine two endpoint references into a range of the matching kind.

    Raises:
        InvalidRangeError: If the endpoints have different shapes or the
            start lies after the end.
    """
    if isinstance(start, ScalarRef) and isinstance(end, ScalarRef):
        ref = RangeRef(start.row, start.col, end.row, end.col)
        backwards = start.row > end.row or start.col > end.col
    elif isinstance(start, ColumnVectorRef) and isinstance(end, ColumnVectorRef):
        ref = ColumnRangeRef(start.col, end.col)
        backwards = start.col > end.col
    elif isinstance(start, RowVectorRef) and isinstance(end, RowVectorRef):
        ref = RowRangeRef(start.row, end.row)
        backwards = start.row > end.row
    else:
        raise InvalidRangeError(f"{start}:{end}", span)
    if backwards:
        raise InvalidRangeError(f"{start}:{end}", span, "start must not come after end")
    return ref


def parse_reference_text(text: str) -> CellReference | None:
    """Parse a single reference or ``START:END`` range, ``None`` if invalid."""
    parts = text.strip().split(":")
    if len(parts) == 1:
        return parse_cell_reference(parts[0])
    if len(parts) != 2:
        return None
    start = parse_cell_reference(parts[0])
    end = parse_cell_reference(parts[1])
    if start is None or end is None:
        return None
    try:
        return parse_range(start, end)
    except InvalidRangeError:
        return None


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def resolve_reference(ref: CellReference, grid: Grid) -> Value:
    """Read the value(s) addressed by *ref* from *grid*.

    Single-cell ranges come back as a :class:`Scalar`; single-column and
    single-row ranges as column and row vectors.

    Raises:
        FormulaRefError: A subclass naming the reference and the reason
            when it falls outside the grid.
    """
    if isinstance(ref, ScalarRef):
        return _resolve_scalar(ref, grid)
    if isinstance(ref, ColumnVectorRef):
        return _resolve_column(ref, grid)
    if isinstance(ref, RowVectorRef):
        return _resolve_row(ref, grid)
    if isinstance(ref, RangeRef):
        return _resolve_range(ref, grid)
    if isinstance(ref, ColumnRangeRef):
        return _resolve_column_range(ref, grid)
    if isinstance(ref, RowRangeRef):
        return _resolve_row_range(ref, grid)
    raise FormulaRuntimeError(f"unsupported reference: {ref!r}")


def _resolve_scalar(ref: ScalarRef, grid: Grid) -> Value:
    if ref.row >= len(grid):
        raise CellOutOfBoundsError(
            str(ref),
            f"row {ref.row - FIRST_DATA_ROW_INDEX + 1} does not exist "
            f"(table has {_data_row_count(grid)} data rows)",
        )
    row = grid[ref.row]
    if ref.col >= len(row):
        raise CellOutOfBoundsError(
            str(ref),
            f"column {col_index_to_letter(ref.col)} does not exist (row has {len(row)} columns)",
        )
    return Scalar(parse_cell_value(row[ref.col]))


def _resolve_column(ref: ColumnVectorRef, grid: Grid) -> Value:
    if len(grid) <= FIRST_DATA_ROW_INDEX:
        raise ColumnOutOfBoundsError(
            str(ref), f"table has no data rows (only {len(grid)} rows total)"
        )
    width = len(grid[FIRST_DATA_ROW_INDEX])
    if ref.col >= width:
        raise ColumnOutOfBoundsError(
            str(ref),
            f"column {col_index_to_letter(ref.col)} does not exist (table has {width} columns)",
        )
    data = [
        parse_cell_value(row[ref.col])
        for row in grid[FIRST_DATA_ROW_INDEX:]
        if ref.col < len(row)
    ]
    return Matrix.column_vector(data)


def _resolve_row(ref: RowVectorRef, grid: Grid) -> Value:
    row_idx = formula_row_to_table_index(ref.row)
    if row_idx >= len(grid):
        raise RowOutOfBoundsError(
            str(ref),
            f"row {ref.row} does not exist (table has {_data_row_count(grid)} data rows)",
        )
    return Matrix.row_vector(parse_cell_value(cell) for cell in grid[row_idx])


def _resolve_range(ref: RangeRef, grid: Grid) -> Value:
    if ref.end_row >= len(grid):
        raise RangeOutOfBoundsError(
            str(ref),
            f"end row {ref.end_row - FIRST_DATA_ROW_INDEX + 1} does not exist "
            f"(table has {_data_row_count(grid)} data rows)",
        )
    for row_idx in range(ref.start_row, ref.end_row + 1):
        if ref.end_col >= len(grid[row_idx]):
            raise RangeOutOfBoundsError(
                str(ref),
                f"column {col_index_to_letter(ref.end_col)} does not exist in row "
                f"{row_idx - FIRST_DATA_ROW_INDEX + 1} (row has {len(grid[row_idx])} columns)",
            )

    num_rows, num_cols = ref.shape
    data = [
        parse_cell_value(grid[row_idx][col_idx])
        for row_idx in range(ref.start_row, ref.end_row + 1)
        for col_idx in range(ref.start_col, ref.end_col + 1)
    ]
    if num_rows == 1 and num_cols == 1:
        return Scalar(data[0])
    return Matrix(num_rows, num_cols, data)


def _resolve_column_range(ref: ColumnRangeRef, grid: Grid) -> Value:
    if len(grid) <= FIRST_DATA_ROW_INDEX:
        raise ColumnOutOfBoundsError(
            str(ref), f"table has no data rows (only {len(grid)} rows total)"
        )
    width = len(grid[FIRST_DATA_ROW_INDEX])
    if ref.end_col >= width:
        raise ColumnOutOfBoundsError(
            str(ref),
            f"column {col_index_to_letter(ref.end_col)} does not exist (table has {width} columns)",
        )

    data_rows = grid[FIRST_DATA_ROW_INDEX:]
    data = [
        _cell_or_zero(row, col_idx)
        for row in data_rows
        for col_idx in range(ref.start_col, ref.end_col + 1)
    ]
    if ref.width == 1:
        return Matrix.column_vector(data)
    return Matrix(len(data_rows), ref.width, data)


def _resolve_row_range(ref: RowRangeRef, grid: Grid) -> Value:
    start_idx = formula_row_to_table_index(ref.start_row)
    end_idx = formula_row_to_table_index(ref.end_row)
    if end_idx >= len(grid):
        raise RowOutOfBoundsError(
            str(ref),
            f"row {ref.end_row} does not exist (table has {_data_row_count(grid)} data rows)",
        )

    # Width is taken from the first row of the range
    num_cols = len(grid[start_idx])
    data = [
        _cell_or_zero(grid[row_idx], col_idx)
        for row_idx in range(start_idx, end_idx + 1)
        for col_idx in range(num_cols)
    ]
    if ref.height == 1:
        return Matrix.row_vector(data)
    return Matrix(ref.height, num_cols, data)


def _data_row_count(grid: Grid) -> int:
    return max(len(grid) - FIRST_DATA_ROW_INDEX, 0)


def _cell_or_zero(row: Sequence[str], col: int) -> Decimal:
    if col < len(row):
        return parse_cell_value(row[col])
    return Decimal(0)


def table_to_matrix(grid: Grid) -> Matrix:
    """Convert a whole grid's data region (all data rows, all columns) to a matrix."""
    if len(grid) < FIRST_DATA_ROW_INDEX:
        raise FormulaRuntimeError("table has no data rows")

    data_rows = grid[FIRST_DATA_ROW_INDEX:]
    if not data_rows:
        return Matrix(0, 0, ())

    num_cols = len(data_rows[0])
    data = [_cell_or_zero(row, col_idx) for row in data_rows for col_idx in range(num_cols)]
    return Matrix(len(data_rows), num_cols, data)


def matrix_to_grid(matrix: Matrix) -> list[list[str]]:
    """Lay a matrix out as a grid (blank header + separator + data rows).

    Lets references be resolved against a matrix held in a variable, with
    the same bounds checks and messages as for a table.
    """
    header = [""] * matrix.cols
    separator = ["---"] * matrix.cols
    body = [
        [format_decimal(d) for d in matrix.row_values(row)]
        for row in range(matrix.rows)
    ]
    return [header, separator, *body]
