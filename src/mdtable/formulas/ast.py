"""Expression tree produced by :func:`mdtable.formulas.parser.parse_expression`.

Every node carries the :class:`~mdtable.formulas.values.Span` of the source
text it was built from; a parent's span is the union of its children's.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Union

from mdtable.formulas.references import CellReference
from mdtable.formulas.values import Span


class BinaryOperator(str, Enum):
    ADD = "+"
    SUBTRACT = "-"
    MULTIPLY = "*"
    DIVIDE = "/"
    POWER = "^"
    MATMUL = "@"


@dataclass(frozen=True)
class Literal:
    value: Decimal
    span: Span


@dataclass(frozen=True)
class String:
    """A quoted string; only meaningful as a function argument."""

    text: str
    span: Span


@dataclass(frozen=True)
class CellRef:
    reference: CellReference
    span: Span


@dataclass(frozen=True)
class Variable:
    name: str
    span: Span


@dataclass(frozen=True)
class BinaryOp:
    left: Expr
    op: BinaryOperator
    right: Expr
    span: Span


@dataclass(frozen=True)
class Transpose:
    inner: Expr
    span: Span


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: tuple[Expr, ...]
    span: Span


Expr = Union[Literal, String, CellRef, Variable, BinaryOp, Transpose, FunctionCall]
