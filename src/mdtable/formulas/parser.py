"""Lark-based parser for formula expressions.

The grammar runs over terminals produced by :class:`FormulaLexer`, which wraps
:func:`~mdtable.formulas.tokenizer.tokenize` and classifies each word:

- ``CELLREF`` -- ``A1``, ``B_``, ``_3`` (see ``parse_cell_reference``)
- ``NUMBER`` -- ``42``, ``3.14``
- ``FUNC`` -- any name directly followed by ``(``
- ``NAME`` -- a variable, ``[A-Za-z_][A-Za-z0-9_]*``
- ``T`` -- the ``T`` of a ``.T`` transpose suffix

Supports:
- Arithmetic ``+ - * /``, power ``^`` (right-associative), matrix product ``@``
- Postfix transpose ``EXPR.T``
- Ranges ``A1:C5``, ``A_:C_``, ``_1:_5``
- Function calls with comma-separated arguments and ``"string"`` literals
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Iterator

from lark import Lark, Token, Transformer
from lark.exceptions import UnexpectedInput, VisitError
from lark.lexer import Lexer

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
    EmptyExpressionError,
    FormulaParseError,
    InvalidTokenError,
    UnexpectedTokenError,
    UnmatchedParenthesisError,
)
from mdtable.formulas.references import parse_cell_reference, parse_range
from mdtable.formulas.tokenizer import TokenKind, tokenize
from mdtable.formulas.values import Span

# LALR(1) grammar.
# Operator precedence (lowest to highest):
#   1. Addition/subtraction: + -
#   2. Multiplication/division/matrix product: * / @
#   3. Exponentiation: ^ (right-associative)
#   4. Postfix transpose: .T
#   5. Atoms: number, string, reference, range, variable, call, parenthesized expr
GRAMMAR = r"""
?start: expression

?expression: term
    | expression PLUS term     -> binary
    | expression MINUS term    -> binary

?term: factor
    | term STAR factor         -> binary
    | term SLASH factor        -> binary
    | term AT factor           -> binary

?factor: unary
    | unary CARET factor       -> binary

?unary: primary
    | primary DOT T            -> transpose

?primary: NUMBER               -> number
    | STRING                   -> string
    | CELLREF                  -> cell_ref
    | CELLREF COLON CELLREF    -> range_ref
    | NAME                     -> variable
    | FUNC LPAR args RPAR      -> call
    | LPAR expression RPAR     -> group

args: expression (COMMA expression)*

%declare PLUS MINUS STAR SLASH CARET AT DOT T LPAR RPAR COLON COMMA
%declare NUMBER STRING CELLREF NAME FUNC
"""

_NUMBER_RE = re.compile(r"[0-9]+(?:\.[0-9]+)?\Z")
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")

_OPERATOR_TERMINALS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
    "^": "CARET",
    "@": "AT",
}

_PUNCTUATION_TERMINALS = {
    TokenKind.LPAREN: "LPAR",
    TokenKind.RPAREN: "RPAR",
    TokenKind.COLON: "COLON",
    TokenKind.COMMA: "COMMA",
    TokenKind.DOT: "DOT",
    TokenKind.STRING: "STRING",
}


class FormulaLexer(Lexer):
    """Feeds tokenizer output to lark, one terminal per token."""

    def __init__(self, lexer_conf) -> None:
        pass

    def lex(self, data: str) -> Iterator[Token]:
        tokens = tokenize(data)
        for i, tok in enumerate(tokens):
            if tok.kind == TokenKind.OPERATOR:
                kind = _OPERATOR_TERMINALS[tok.value]
            elif tok.kind in _PUNCTUATION_TERMINALS:
                kind = _PUNCTUATION_TERMINALS[tok.kind]
            else:
                prev = tokens[i - 1] if i > 0 else None
                nxt = tokens[i + 1] if i + 1 < len(tokens) else None
                kind = _classify_word(tok.value, prev, nxt, tok.span)
            yield Token(
                kind,
                tok.value,
                start_pos=tok.span.start,
                end_pos=tok.span.end,
                line=1,
                column=tok.span.start + 1,
            )


def _classify_word(word: str, prev, nxt, span: Span) -> str:
    if prev is not None and prev.kind == TokenKind.DOT and word == "T":
        return "T"
    if nxt is not None and nxt.kind == TokenKind.LPAREN:
        if not _NAME_RE.match(word):
            raise InvalidTokenError(word, "is not a valid function name", span=span)
        return "FUNC"
    if parse_cell_reference(word) is not None:
        return "CELLREF"
    if _NUMBER_RE.match(word):
        return "NUMBER"
    if _NAME_RE.match(word):
        return "NAME"
    raise InvalidTokenError(word, "is not a valid number, cell reference or name", span=span)


def _span(tok: Token) -> Span:
    return Span(tok.start_pos, tok.end_pos)


class _AstBuilder(Transformer):
    """Turn the lark parse tree into :mod:`mdtable.formulas.ast` nodes."""

    def number(self, children):
        (tok,) = children
        return Literal(Decimal(str(tok)), _span(tok))

    def string(self, children):
        (tok,) = children
        return String(str(tok), _span(tok))

    def cell_ref(self, children):
        (tok,) = children
        return CellRef(parse_cell_reference(str(tok)), _span(tok))

    def range_ref(self, children):
        start, _colon, end = children
        span = _span(start).merge(_span(end))
        ref = parse_range(parse_cell_reference(str(start)), parse_cell_reference(str(end)), span)
        return CellRef(ref, span)

    def variable(self, children):
        (tok,) = children
        return Variable(str(tok), _span(tok))

    def binary(self, children):
        left, op, right = children
        return BinaryOp(left, BinaryOperator(str(op)), right, left.span.merge(right.span))

    def transpose(self, children):
        inner, _dot, t = children
        return Transpose(inner, inner.span.merge(_span(t)))

    def call(self, children):
        name, _lpar, args, rpar = children
        return FunctionCall(str(name), args, _span(name).merge(_span(rpar)))

    def args(self, children):
        return tuple(c for c in children if not isinstance(c, Token))

    def group(self, children):
        _lpar, expr, _rpar = children
        return expr


_parser = Lark(GRAMMAR, parser="lalr", lexer=FormulaLexer, start="start")


def parse_expression(text: str) -> Expr:
    """Parse formula expression text into an expression tree.

    Args:
        text: The right-hand side of a formula, e.g. ``"sum(A_) * 2"``.

    Returns:
        The root :data:`~mdtable.formulas.ast.Expr` node.

    Raises:
        FormulaParseError: If the expression has invalid syntax.
    """
    if not text.strip():
        raise EmptyExpressionError()

    tokens = tokenize(text)
    _check_closing_parens(tokens)

    try:
        tree = _parser.parse(text)
    except UnexpectedInput as exc:
        raise _translate_error(exc, text, tokens) from exc

    try:
        return _AstBuilder().transform(tree)
    except VisitError as exc:
        if isinstance(exc.orig_exc, FormulaParseError):
            raise exc.orig_exc from None
        raise


def _check_closing_parens(tokens) -> None:
    depth = 0
    for tok in tokens:
        if tok.kind == TokenKind.LPAREN:
            depth += 1
        elif tok.kind == TokenKind.RPAREN:
            depth -= 1
            if depth < 0:
                raise UnmatchedParenthesisError(")", tok.span.start)


def _unclosed_paren(tokens) -> int | None:
    open_positions: list[int] = []
    for tok in tokens:
        if tok.kind == TokenKind.LPAREN:
            open_positions.append(tok.span.start)
        elif tok.kind == TokenKind.RPAREN and open_positions:
            open_positions.pop()
    return open_positions[-1] if open_positions else None


def _translate_error(exc: UnexpectedInput, text: str, tokens) -> FormulaParseError:
    tok = getattr(exc, "token", None)
    if tok is None or tok.type in ("$END", "<EOF>"):
        pos = _unclosed_paren(tokens)
        if pos is not None:
            return UnmatchedParenthesisError("(", pos)
        return UnexpectedTokenError("end of expression", len(text))
    start = tok.start_pos
    end = tok.end_pos if tok.end_pos is not None else start + 1
    return UnexpectedTokenError(text[start:end], start, Span(start, end))
