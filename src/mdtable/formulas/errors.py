"""Error types for formula parsing and evaluation.

Every failure of a single formula is one of the classes below.  Errors carry
the structured details needed to render a message, plus an optional source
``span`` that :meth:`FormulaError.with_context` turns into a caret excerpt.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mdtable.formulas.values import Span


class FormulaError(Exception):
    """Base class for all formula-related errors.

    Attributes:
        span: Source range of the offending expression, when known.
    """

    def __init__(self, message: str, span: Span | None = None) -> None:
        self.span = span
        super().__init__(message)

    def with_context(self, expression: str) -> str:
        """Format the error with a caret line pointing into *expression*."""
        if self.span is None:
            return str(self)
        width = max(self.span.end - self.span.start, 1)
        pointer = " " * self.span.start + "^" * width
        return f"{self}\n{expression}\n{pointer}"


class FormulaRuntimeError(FormulaError):
    """Catch-all for failures without a dedicated error class."""


# ---------------------------------------------------------------------------
# Parse errors
# ---------------------------------------------------------------------------


class FormulaParseError(FormulaError):
    """Syntax error in a formula expression.

    Attributes:
        position: Character position where the error was detected.
    """

    def __init__(self, message: str, position: int | None = None, span: Span | None = None) -> None:
        self.position = position
        if span is None and position is not None:
            from mdtable.formulas.values import Span

            span = Span.single(position)
        super().__init__(message, span)


class UnexpectedTokenError(FormulaParseError):
    def __init__(self, token: str, position: int, span: Span | None = None) -> None:
        self.token = token
        super().__init__(f"unexpected token: '{token}' at position {position}", position, span)


class UnmatchedParenthesisError(FormulaParseError):
    """A ``(`` that is never closed, or a ``)`` that closes nothing."""

    def __init__(self, paren: str, position: int | None = None) -> None:
        self.paren = paren
        self.opening = paren == "("
        if self.opening:
            message = "unmatched opening parenthesis '(' - missing closing ')'"
        else:
            message = "unmatched closing parenthesis ')'"
        super().__init__(message, position)


class InvalidTokenError(FormulaParseError):
    def __init__(self, token: str, context: str, position: int | None = None, span: Span | None = None) -> None:
        self.token = token
        self.context = context
        super().__init__(f"invalid token: '{token}' {context}", position, span)


class EmptyExpressionError(FormulaParseError):
    def __init__(self) -> None:
        super().__init__("empty expression")


class InvalidRangeError(FormulaParseError):
    """Range endpoints of different shapes (``A_:_5``) or in reverse order."""

    def __init__(self, text: str, span: Span | None = None, reason: str | None = None) -> None:
        self.text = text
        position = span.start if span is not None else None
        reason = reason or (
            "both ends must be cells (A1:C5), columns (A_:C_) or rows (_1:_5)"
        )
        super().__init__(f"invalid range '{text}': {reason}", position, span)


# ---------------------------------------------------------------------------
# Reference errors
# ---------------------------------------------------------------------------


class FormulaRefError(FormulaError):
    """A reference that cannot be resolved."""


class CellOutOfBoundsError(FormulaRefError):
    def __init__(self, cell: str, reason: str) -> None:
        self.cell = cell
        self.reason = reason
        super().__init__(f"cell {cell} is out of bounds: {reason}")


class ColumnOutOfBoundsError(FormulaRefError):
    def __init__(self, column: str, reason: str) -> None:
        self.column = column
        self.reason = reason
        super().__init__(f"column {column} is out of bounds: {reason}")


class RowOutOfBoundsError(FormulaRefError):
    def __init__(self, row: str, reason: str) -> None:
        self.row = row
        self.reason = reason
        super().__init__(f"row {row} is out of bounds: {reason}")


class RangeOutOfBoundsError(FormulaRefError):
    def __init__(self, range_text: str, reason: str) -> None:
        self.range_text = range_text
        self.reason = reason
        super().__init__(f"range {range_text} is out of bounds: {reason}")


class UndefinedVariableError(FormulaRefError):
    """Reference to a variable that no earlier ``let`` defined.

    Attributes:
        name: The unresolved variable name.
        available: Names that are currently defined.
    """

    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = available or []
        msg = f"undefined variable: '{name}'"
        if self.available:
            msg += f" (defined: {', '.join(self.available)})"
        super().__init__(msg)


class TableNotFoundError(FormulaRefError):
    def __init__(self, table_id: str) -> None:
        self.table_id = table_id
        super().__init__(f"table '{table_id}' not found (tables must have an id attribute)")


# ---------------------------------------------------------------------------
# Shape errors
# ---------------------------------------------------------------------------


class FormulaShapeError(FormulaError):
    """Operands whose shapes do not fit the operation."""


class DimensionMismatchError(FormulaShapeError):
    def __init__(self, operator: str, left_shape: str, right_shape: str) -> None:
        self.operator = operator
        self.left_shape = left_shape
        self.right_shape = right_shape
        super().__init__(
            f"element-wise operation '{operator}' requires matching dimensions: "
            f"got ({left_shape}) and ({right_shape})"
        )


class MatrixMultiplyDimensionError(FormulaShapeError):
    def __init__(self, left: tuple[int, int], right: tuple[int, int]) -> None:
        self.left = left
        self.right = right
        (m, n), (n2, p) = left, right
        super().__init__(
            f"matrix multiplication dimension mismatch: cannot multiply "
            f"({m}×{n}) @ ({n2}×{p}) - inner dimensions {n} and {n2} must match"
        )


class ScalarMatrixMultiplyError(FormulaShapeError):
    """``@`` used with a scalar on either side."""

    def __init__(self, left_shape: str, right_shape: str) -> None:
        self.left_shape = left_shape
        self.right_shape = right_shape
        if left_shape == "scalar" and right_shape == "scalar":
            msg = (
                "cannot use matrix multiplication (@) with two scalar values "
                "- use * for scalar multiplication"
            )
        elif left_shape == "scalar":
            msg = (
                "cannot use matrix multiplication (@) with scalar on left side "
                f"and ({right_shape}) matrix on right side"
            )
        else:
            msg = (
                f"cannot use matrix multiplication (@) with ({left_shape}) matrix "
                "on left side and scalar on right side"
            )
        super().__init__(msg)


class TransposeError(FormulaShapeError):
    def __init__(self) -> None:
        super().__init__("cannot transpose a scalar value - only matrices can be transposed")


# ---------------------------------------------------------------------------
# Arithmetic
# ---------------------------------------------------------------------------


class DivisionByZeroError(FormulaError, ZeroDivisionError):
    """Division by zero, optionally at a flat element *position*."""

    def __init__(self, detail: str, position: int | None = None) -> None:
        self.position = position
        msg = f"division by zero {detail}"
        if position is not None:
            msg += f" at position {position}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Functions and assignments
# ---------------------------------------------------------------------------


class FormulaFunctionError(FormulaError):
    """Bad arguments to a function.

    Attributes:
        func_name: The function that caused the error.
    """

    def __init__(self, func_name: str, message: str | None = None) -> None:
        self.func_name = func_name
        msg = message or f"function '{func_name}' failed"
        super().__init__(msg)


class UnknownFunctionError(FormulaFunctionError):
    def __init__(self, func_name: str, supported: list[str]) -> None:
        self.supported = supported
        super().__init__(
            func_name,
            f"unknown function: '{func_name}' (supported functions: {', '.join(supported)})",
        )


class FunctionArityError(FormulaFunctionError):
    def __init__(self, func_name: str, expected: str, got: int) -> None:
        self.expected = expected
        self.got = got
        super().__init__(func_name, f"function '{func_name}' expects {expected}, got {got}")


class InvalidAssignmentError(FormulaError):
    """Assignment target that cannot receive the computed value."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)
