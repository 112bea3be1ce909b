"""Tokenizer for formula expressions.

Splits the right-hand side of a formula into tokens, each carrying the exact
``[start, end)`` span it came from:

- operators ``+ - * / ^ @`` and the punctuation ``( ) : ,`` are one token each;
- ``.`` is its own token (the transpose prefix in ``A_.T``) unless it sits
  between digits, where it is a decimal point (``3.14``);
- ``"..."`` is a string literal (only meaningful as a function argument);
- any other run of non-space characters is a word: a cell reference, a
  number, a function or variable name.  Words are classified by the parser.

Whitespace only separates tokens.  For example ``"sum(A_) * 2"`` becomes
``sum ( A_ ) * 2``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from mdtable.formulas.errors import InvalidTokenError
from mdtable.formulas.values import Span


class TokenKind(str, Enum):
    OPERATOR = "operator"
    LPAREN = "lparen"
    RPAREN = "rparen"
    COLON = "colon"
    COMMA = "comma"
    DOT = "dot"
    STRING = "string"
    WORD = "word"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    span: Span


_SINGLE_CHAR_TOKENS: dict[str, TokenKind] = {
    "+": TokenKind.OPERATOR,
    "-": TokenKind.OPERATOR,
    "*": TokenKind.OPERATOR,
    "/": TokenKind.OPERATOR,
    "^": TokenKind.OPERATOR,
    "@": TokenKind.OPERATOR,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    ":": TokenKind.COLON,
    ",": TokenKind.COMMA,
}

_DIGITS_RE = re.compile(r"[0-9]+\Z")


def tokenize(text: str) -> list[Token]:
    """Convert formula text into a list of tokens.

    Args:
        text: Expression text, e.g. ``"A_.T @ B_"``.

    Returns:
        Tokens in source order; an empty list for blank input.

    Raises:
        InvalidTokenError: For an unterminated string literal.
    """
    tokens: list[Token] = []
    word_start: int | None = None
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]

        if ch == "." and word_start is not None:
            # Decimal point only inside an all-digit run followed by a digit
            if _DIGITS_RE.match(text, word_start, i) and i + 1 < n and "0" <= text[i + 1] <= "9":
                i += 1
                continue

        if ch in _SINGLE_CHAR_TOKENS or ch == "." or ch == '"' or ch.isspace():
            if word_start is not None:
                tokens.append(Token(TokenKind.WORD, text[word_start:i], Span(word_start, i)))
                word_start = None

            if ch == '"':
                close = text.find('"', i + 1)
                if close < 0:
                    raise InvalidTokenError(
                        text[i:], "is an unterminated string literal", span=Span(i, n)
                    )
                tokens.append(Token(TokenKind.STRING, text[i + 1:close], Span(i, close + 1)))
                i = close + 1
                continue
            if ch == ".":
                tokens.append(Token(TokenKind.DOT, ch, Span.single(i)))
            elif not ch.isspace():
                tokens.append(Token(_SINGLE_CHAR_TOKENS[ch], ch, Span.single(i)))
            i += 1
            continue

        if word_start is None:
            word_start = i
        i += 1

    if word_start is not None:
        tokens.append(Token(TokenKind.WORD, text[word_start:], Span(word_start, n)))

    return tokens
