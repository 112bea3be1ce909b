"""Runtime values of the formula language.

A formula evaluates to exactly one of two shapes:

- :class:`Scalar` -- a single :class:`~decimal.Decimal`.
- :class:`Matrix` -- a rectangular, row-major block of decimals.  Row vectors
  are ``1×n`` and column vectors are ``n×1``.

A ``1×1`` matrix is numerically a scalar (``as_scalar()`` extracts it) but it
is never silently widened or narrowed by the operators.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Union

from mdtable.formulas.errors import TransposeError


@dataclass(frozen=True)
class Span:
    """Half-open ``[start, end)`` offsets into a formula's text."""

    start: int
    end: int

    @classmethod
    def single(cls, pos: int) -> Span:
        return cls(pos, pos + 1)

    def merge(self, other: Span) -> Span:
        return Span(min(self.start, other.start), max(self.end, other.end))


@dataclass(frozen=True)
class Scalar:
    """A single arbitrary-precision decimal."""

    value: Decimal

    def as_scalar(self) -> Decimal:
        return self.value

    def transpose(self) -> Value:
        raise TransposeError()

    def describe_shape(self) -> str:
        return "scalar"


@dataclass(frozen=True)
class Matrix:
    """A ``rows × cols`` matrix stored in row-major order.

    Attributes:
        rows: Number of rows.
        cols: Number of columns.
        data: Exactly ``rows * cols`` decimals, row by row.
    """

    rows: int
    cols: int
    data: tuple[Decimal, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", tuple(self.data))
        if len(self.data) != self.rows * self.cols:
            raise ValueError(
                f"matrix data has {len(self.data)} elements, "
                f"expected {self.rows}×{self.cols} = {self.rows * self.cols}"
            )

    @classmethod
    def row_vector(cls, data: Iterable[Decimal]) -> Matrix:
        values = tuple(data)
        return cls(1, len(values), values)

    @classmethod
    def column_vector(cls, data: Iterable[Decimal]) -> Matrix:
        values = tuple(data)
        return cls(len(values), 1, values)

    @property
    def shape(self) -> tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def is_column_vector(self) -> bool:
        return self.cols == 1

    @property
    def is_row_vector(self) -> bool:
        return self.rows == 1

    def at(self, row: int, col: int) -> Decimal:
        return self.data[row * self.cols + col]

    def row_values(self, row: int) -> tuple[Decimal, ...]:
        start = row * self.cols
        return self.data[start:start + self.cols]

    def transpose(self) -> Matrix:
        """Swap rows and columns (row-major to column-major reindexing)."""
        transposed = [
            self.data[row * self.cols + col]
            for col in range(self.cols)
            for row in range(self.rows)
        ]
        return Matrix(self.cols, self.rows, transposed)

    def as_scalar(self) -> Decimal | None:
        if self.rows == 1 and self.cols == 1:
            return self.data[0]
        return None

    def describe_shape(self) -> str:
        return f"{self.rows}×{self.cols}"


Value = Union[Scalar, Matrix]


def format_decimal(value: Decimal) -> str:
    """Render a decimal for a table cell, always in plain (non-scientific) notation."""
    return format(value, "f")


def format_value(value: Value) -> str:
    """Render a value for display: a scalar inline, a matrix one row per line."""
    if isinstance(value, Scalar):
        return format_decimal(value.value)
    lines = []
    for row in range(value.rows):
        lines.append(" ".join(format_decimal(d) for d in value.row_values(row)))
    return "\n".join(lines)
