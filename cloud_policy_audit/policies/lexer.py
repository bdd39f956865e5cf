"""Tokenizer for the policy rule language."""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Union

from .compilation import CompilationContext, SourcePosition


class TokenKind(str, Enum):
    IDENT = "identifier"
    STRING = "string"
    NUMBER = "number"
    OPERATOR = "operator"
    AND = "'&&'"
    DOT = "'.'"
    COMMA = "','"
    LBRACE = "'{'"
    RBRACE = "'}'"
    LPAREN = "'('"
    RPAREN = "')'"
    LBRACKET = "'['"
    RBRACKET = "']'"
    EOF = "end of input"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    text: str
    position: SourcePosition
    value: Union[str, int, float, None] = None

    def describe(self) -> str:
        if self.kind is TokenKind.EOF:
            return self.kind.value
        return f"'{self.text}'"


# Longest operators first so that "<=" is not read as "<".
_OPERATORS = ("!~=", "==", "!=", "~=", "<=", ">=", "<", ">")
_PUNCTUATION = {
    ".": TokenKind.DOT,
    ",": TokenKind.COMMA,
    "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET,
    "]": TokenKind.RBRACKET,
}
NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_ESCAPES = {'"': '"', "\\": "\\", "n": "\n", "t": "\t", "r": "\r"}


class Lexer:
    """Turns source text into tokens, reporting bad input as diagnostics."""

    def __init__(self, context: CompilationContext) -> None:
        self._context = context
        self._text = context.unit.source
        self._index = 0
        self._line = 1
        self._line_start = 0

    def _position(self, index: int) -> SourcePosition:
        return SourcePosition(offset=index, line=self._line, column=index - self._line_start + 1)

    def _skip_trivia(self) -> None:
        text = self._text
        while self._index < len(text):
            char = text[self._index]
            if char == "\n":
                self._index += 1
                self._line += 1
                self._line_start = self._index
            elif char in " \t\r\ufeff":
                self._index += 1
            elif char == "#":
                end = text.find("\n", self._index)
                self._index = len(text) if end < 0 else end
            else:
                return

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        text = self._text
        while True:
            self._skip_trivia()
            if self._index >= len(text):
                tokens.append(Token(TokenKind.EOF, "", self._position(self._index)))
                return tokens

            start = self._index
            position = self._position(start)
            char = text[start]

            if char == '"':
                tokens.append(self._read_string(position))
                continue

            if text.startswith("&&", start):
                self._index += 2
                tokens.append(Token(TokenKind.AND, "&&", position))
                continue

            operator = next((op for op in _OPERATORS if text.startswith(op, start)), None)
            if operator is not None:
                self._index += len(operator)
                tokens.append(Token(TokenKind.OPERATOR, operator, position))
                continue

            if char in _PUNCTUATION:
                self._index += 1
                tokens.append(Token(_PUNCTUATION[char], char, position))
                continue

            match = NUMBER_RE.match(text, start)
            if match:
                raw = match.group(0)
                self._index = match.end()
                value: Union[int, float]
                value = float(raw) if any(c in raw for c in ".eE") else int(raw)
                tokens.append(Token(TokenKind.NUMBER, raw, position, value))
                continue

            match = _IDENT_RE.match(text, start)
            if match:
                self._index = match.end()
                tokens.append(Token(TokenKind.IDENT, match.group(0), position, match.group(0)))
                continue

            self._context.error("PA1001", f"Unexpected character '{char}'", position)
            self._index += 1

    def _read_string(self, position: SourcePosition) -> Token:
        text = self._text
        start = self._index
        self._index += 1
        chars: List[str] = []
        while self._index < len(text):
            char = text[self._index]
            if char == '"':
                self._index += 1
                return Token(TokenKind.STRING, text[start:self._index], position, "".join(chars))
            if char == "\n":
                break
            if char == "\\" and self._index + 1 < len(text) and text[self._index + 1] != "\n":
                escaped = text[self._index + 1]
                if escaped in _ESCAPES:
                    chars.append(_ESCAPES[escaped])
                else:
                    self._context.error(
                        "PA1003",
                        f"Unknown escape sequence '\\{escaped}'",
                        self._position(self._index),
                    )
                self._index += 2
                continue
            chars.append(char)
            self._index += 1

        self._context.error("PA1002", "Unterminated string literal", position)
        return Token(TokenKind.STRING, text[start:self._index], position, "".join(chars))


def tokenize(context: CompilationContext) -> List[Token]:
    """Tokenize the unit held by *context*."""

    return Lexer(context).tokenize()


__all__ = ["Lexer", "NUMBER_RE", "Token", "TokenKind", "tokenize"]
