"""Tree-walking evaluator for parsed formula expressions.

Supports:
- Cell, vector and range references against the current grid
- Element-wise arithmetic with scalar broadcasting, and ``@`` matrix products
- Aggregate functions from :mod:`mdtable.formulas.functions`
- ``from(...)`` lookups into other tables (by id) and matrix variables
"""

from __future__ import annotations

import math
from decimal import Decimal, DecimalException
from typing import Callable, Mapping

from mdtable.formulas.ast import (
    BinaryOp,
    BinaryOperator,
    CellRef,
    Expr,
    FunctionCall,
    Literal,
    String,
    Transpose,
    Variable,
)
from mdtable.formulas.errors import (
    DimensionMismatchError,
    DivisionByZeroError,
    FormulaError,
    FormulaFunctionError,
    FormulaRuntimeError,
    FunctionArityError,
    MatrixMultiplyDimensionError,
    ScalarMatrixMultiplyError,
    TableNotFoundError,
    UndefinedVariableError,
    UnknownFunctionError,
)
from mdtable.formulas.functions import aggregate_names, get_aggregate_fn
from mdtable.formulas.references import (
    Grid,
    matrix_to_grid,
    resolve_reference,
    table_to_matrix,
)
from mdtable.formulas.values import Matrix, Scalar, Value


def evaluate(
    expr: Expr,
    grid: Grid,
    tables: Mapping[str, Grid] | None = None,
    variables: Mapping[str, Value] | None = None,
) -> Value:
    """Evaluate an expression tree against a grid.

    Args:
        expr: Root node from ``parse_expression()``.
        grid: The table the formula belongs to.
        tables: Other tables by id, for ``from("id")`` lookups.
        variables: Values bound by earlier ``let`` statements.

    Returns:
        The computed :class:`Scalar` or :class:`Matrix`.

    Raises:
        FormulaError: With ``span`` set to the innermost failing node.
    """
    return _eval(expr, grid, tables or {}, variables or {})


def _eval(
    node: Expr,
    grid: Grid,
    tables: Mapping[str, Grid],
    variables: Mapping[str, Value],
) -> Value:
    try:
        return _eval_node(node, grid, tables, variables)
    except FormulaError as exc:
        if exc.span is None:
            exc.span = node.span
        raise


def _eval_node(
    node: Expr,
    grid: Grid,
    tables: Mapping[str, Grid],
    variables: Mapping[str, Value],
) -> Value:
    if isinstance(node, Literal):
        return Scalar(node.value)

    if isinstance(node, String):
        raise FormulaRuntimeError(
            f"string literal \"{node.text}\" can only be used as a function argument"
        )

    if isinstance(node, Variable):
        if node.name not in variables:
            raise UndefinedVariableError(node.name, sorted(variables))
        return variables[node.name]

    if isinstance(node, CellRef):
        return resolve_reference(node.reference, grid)

    if isinstance(node, BinaryOp):
        left = _eval(node.left, grid, tables, variables)
        right = _eval(node.right, grid, tables, variables)
        return apply_binary_op(node.op, left, right)

    if isinstance(node, Transpose):
        return _eval(node.inner, grid, tables, variables).transpose()

    if isinstance(node, FunctionCall):
        return _eval_func(node, grid, tables, variables)

    raise FormulaRuntimeError(f"unknown node type: {type(node).__name__}")


# ---------- Function dispatch ----------


def _eval_func(
    node: FunctionCall,
    grid: Grid,
    tables: Mapping[str, Grid],
    variables: Mapping[str, Value],
) -> Value:
    func_name = node.name.lower()

    # from() receives unevaluated argument nodes
    if func_name == "from":
        return _fn_from(node.args, tables, variables)

    try:
        fn = get_aggregate_fn(func_name)
    except KeyError:
        raise UnknownFunctionError(node.name, [*aggregate_names(), "from"]) from None

    if len(node.args) != 1:
        raise FunctionArityError(node.name, "exactly 1 argument", len(node.args))
    return fn(_eval(node.args[0], grid, tables, variables))


def _fn_from(
    args: tuple[Expr, ...],
    tables: Mapping[str, Grid],
    variables: Mapping[str, Value],
) -> Value:
    """from("id"), from("id", REF), from(var), from(var, REF)."""
    if not 1 <= len(args) <= 2:
        raise FunctionArityError("from", "1 or 2 arguments", len(args))

    source = args[0]
    if isinstance(source, String):
        if source.text not in tables:
            raise TableNotFoundError(source.text)
        target = tables[source.text]
        if len(args) == 1:
            return table_to_matrix(target)
    elif isinstance(source, Variable):
        if source.name not in variables:
            raise UndefinedVariableError(source.name, sorted(variables))
        value = variables[source.name]
        if not isinstance(value, Matrix):
            raise FormulaFunctionError(
                "from",
                f"cannot use from() with scalar variable '{source.name}' - expected matrix",
            )
        if len(args) == 1:
            return value
        target = matrix_to_grid(value)
    else:
        raise FormulaFunctionError(
            "from",
            "from() first argument must be a string literal (table ID) or variable reference",
        )

    selector = args[1]
    if not isinstance(selector, CellRef):
        raise FormulaFunctionError(
            "from", "from() second argument must be a cell reference or range"
        )
    return resolve_reference(selector.reference, target)


# ---------- Operators ----------


def apply_binary_op(op: BinaryOperator, left: Value, right: Value) -> Value:
    """Apply a binary operator with scalar broadcasting.

    ``@`` needs two matrices with matching inner dimensions.  The other
    operators combine two scalars directly, two matrices of identical shape
    element by element, and a matrix with a scalar by broadcasting.

    Raises:
        FormulaShapeError: On incompatible shapes.
        DivisionByZeroError: When any divisor element is zero.
    """
    if op is BinaryOperator.MATMUL:
        return _matmul(left, right)

    if isinstance(left, Scalar) and isinstance(right, Scalar):
        try:
            return Scalar(apply_scalar_op(op, left.value, right.value))
        except _ZeroDivisor:
            raise DivisionByZeroError(
                f"in scalar operation: {left.value} {op.value} {right.value}"
            ) from None

    if isinstance(left, Matrix) and isinstance(right, Matrix):
        if left.shape != right.shape:
            raise DimensionMismatchError(
                op.value, left.describe_shape(), right.describe_shape()
            )
        pairs = zip(left.data, right.data)
        return Matrix(
            left.rows,
            left.cols,
            _elementwise(op, pairs, "in element-wise operation"),
        )

    if isinstance(left, Matrix):
        pairs = ((v, right.value) for v in left.data)
        shape = left
    else:
        pairs = ((left.value, v) for v in right.data)
        shape = right
    return Matrix(
        shape.rows,
        shape.cols,
        _elementwise(op, pairs, "when broadcasting scalar to matrix"),
    )


def _elementwise(op: BinaryOperator, pairs, detail: str) -> list[Decimal]:
    result = []
    for i, (a, b) in enumerate(pairs):
        try:
            result.append(apply_scalar_op(op, a, b))
        except _ZeroDivisor:
            raise DivisionByZeroError(detail, position=i) from None
    return result


def _matmul(left: Value, right: Value) -> Matrix:
    if isinstance(left, Scalar) or isinstance(right, Scalar):
        raise ScalarMatrixMultiplyError(left.describe_shape(), right.describe_shape())

    m, n = left.shape
    n2, p = right.shape
    if n != n2:
        raise MatrixMultiplyDimensionError(left.shape, right.shape)

    result = []
    for i in range(m):
        for j in range(p):
            total = Decimal(0)
            for k in range(n):
                total += left.data[i * n + k] * right.data[k * p + j]
            result.append(total)
    return Matrix(m, p, result)


class _ZeroDivisor(Exception):
    """Raised by :func:`apply_scalar_op`; callers attach the position."""


def _add(a: Decimal, b: Decimal) -> Decimal:
    return a + b


def _sub(a: Decimal, b: Decimal) -> Decimal:
    return a - b


def _mul(a: Decimal, b: Decimal) -> Decimal:
    return a * b


def _div(a: Decimal, b: Decimal) -> Decimal:
    if b == 0:
        raise _ZeroDivisor()
    return a / b


_SCALAR_OPS: dict[BinaryOperator, Callable[[Decimal, Decimal], Decimal]] = {
    BinaryOperator.ADD: _add,
    BinaryOperator.SUBTRACT: _sub,
    BinaryOperator.MULTIPLY: _mul,
    BinaryOperator.DIVIDE: _div,
}


def apply_scalar_op(op: BinaryOperator, left: Decimal, right: Decimal) -> Decimal:
    """Combine two decimals under the current decimal context."""
    try:
        if op is BinaryOperator.POWER:
            return decimal_pow(left, right)
        return _SCALAR_OPS[op](left, right)
    except DecimalException as exc:
        raise FormulaRuntimeError(
            f"arithmetic error in {left} {op.value} {right}: {type(exc).__name__}"
        ) from exc


def decimal_pow(base: Decimal, exp: Decimal) -> Decimal:
    """Raise *base* to *exp*.

    Integer exponents are exact (``0^0`` is ``1``; a negative exponent is the
    reciprocal of the positive power).  Any other exponent goes through
    binary floating point and back, so the result carries float precision.
    """
    if exp == exp.to_integral_value():
        n = int(exp)
        if n == 0:
            return Decimal(1)
        if n > 0:
            return base ** n
        if base == 0:
            raise _ZeroDivisor()
        return Decimal(1) / (base ** -n)

    try:
        result = math.pow(float(base), float(exp))
    except (ValueError, OverflowError) as exc:
        raise FormulaRuntimeError(
            f"cannot raise {base} to non-integer power {exp}: {exc}"
        ) from exc
    return Decimal(repr(result))
