"""Tests for the formula tokenizer."""

from __future__ import annotations

import pytest

from mdtable.formulas.errors import InvalidTokenError
from mdtable.formulas.tokenizer import TokenKind, tokenize
from mdtable.formulas.values import Span


def _kinds_and_values(text: str) -> list[tuple[TokenKind, str]]:
    return [(t.kind, t.value) for t in tokenize(text)]


class TestTokenize:
    def test_blank_input(self) -> None:
        assert tokenize("") == []
        assert tokenize("   ") == []

    def test_function_call(self) -> None:
        tokens = tokenize("sum(A_) * 2")
        assert [(t.kind, t.value, t.span) for t in tokens] == [
            (TokenKind.WORD, "sum", Span(0, 3)),
            (TokenKind.LPAREN, "(", Span(3, 4)),
            (TokenKind.WORD, "A_", Span(4, 6)),
            (TokenKind.RPAREN, ")", Span(6, 7)),
            (TokenKind.OPERATOR, "*", Span(8, 9)),
            (TokenKind.WORD, "2", Span(10, 11)),
        ]

    def test_operators_need_no_spaces(self) -> None:
        assert _kinds_and_values("A1+B1^2@C_") == [
            (TokenKind.WORD, "A1"),
            (TokenKind.OPERATOR, "+"),
            (TokenKind.WORD, "B1"),
            (TokenKind.OPERATOR, "^"),
            (TokenKind.WORD, "2"),
            (TokenKind.OPERATOR, "@"),
            (TokenKind.WORD, "C_"),
        ]

    def test_decimal_point_inside_number(self) -> None:
        tokens = tokenize("3.14")
        assert len(tokens) == 1
        assert tokens[0].value == "3.14"
        assert tokens[0].span == Span(0, 4)

    def test_transpose_dot(self) -> None:
        assert _kinds_and_values("A_.T") == [
            (TokenKind.WORD, "A_"),
            (TokenKind.DOT, "."),
            (TokenKind.WORD, "T"),
        ]

    def test_dot_after_digits_without_fraction(self) -> None:
        """A dot not followed by a digit is never a decimal point."""
        assert _kinds_and_values("1.T") == [
            (TokenKind.WORD, "1"),
            (TokenKind.DOT, "."),
            (TokenKind.WORD, "T"),
        ]

    def test_second_dot_ends_the_number(self) -> None:
        assert _kinds_and_values("1.2.3") == [
            (TokenKind.WORD, "1.2"),
            (TokenKind.DOT, "."),
            (TokenKind.WORD, "3"),
        ]

    def test_range(self) -> None:
        assert _kinds_and_values("A1:B2") == [
            (TokenKind.WORD, "A1"),
            (TokenKind.COLON, ":"),
            (TokenKind.WORD, "B2"),
        ]


class TestStringLiterals:
    def test_string_argument(self) -> None:
        tokens = tokenize('from("sales", A1:B2)')
        assert [(t.kind, t.value, t.span) for t in tokens] == [
            (TokenKind.WORD, "from", Span(0, 4)),
            (TokenKind.LPAREN, "(", Span(4, 5)),
            (TokenKind.STRING, "sales", Span(5, 12)),
            (TokenKind.COMMA, ",", Span(12, 13)),
            (TokenKind.WORD, "A1", Span(14, 16)),
            (TokenKind.COLON, ":", Span(16, 17)),
            (TokenKind.WORD, "B2", Span(17, 19)),
            (TokenKind.RPAREN, ")", Span(19, 20)),
        ]

    def test_string_keeps_inner_spaces(self) -> None:
        tokens = tokenize('"my table"')
        assert tokens[0].value == "my table"

    def test_unterminated_string(self) -> None:
        with pytest.raises(InvalidTokenError, match="unterminated string literal") as exc_info:
            tokenize('from("sales')
        assert exc_info.value.span == Span(5, 11)
