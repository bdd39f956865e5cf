"""Recursive-descent parser for policy source text."""
from __future__ import annotations

from typing import List, Optional

from .compilation import CompilationContext, SourcePosition
from .lexer import Token, TokenKind, tokenize
from .syntax import (
    Comparison,
    Conjunction,
    Expression,
    Literal,
    Operand,
    PolicyDocument,
    PropertyPath,
    Statement,
)

KEYWORD_OPERATORS = ("in", "contains")
_LITERAL_KEYWORDS = {"true": True, "false": False, "null": None}


class _SyntaxError(Exception):
    """Internal signal used to unwind to the nearest recovery point."""


class Parser:
    """Builds a :class:`PolicyDocument` from the unit held by a context.

    Syntax errors are recorded on the context.  The parser recovers at
    statement boundaries so one malformed line does not hide the rest.
    """

    def __init__(self, context: CompilationContext) -> None:
        self._context = context
        self._tokens = tokenize(context)
        self._index = 0

    # -- token helpers -------------------------------------------------
    @property
    def _current(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._tokens[self._index]
        if token.kind is not TokenKind.EOF:
            self._index += 1
        return token

    def _at(self, kind: TokenKind, text: Optional[str] = None) -> bool:
        token = self._current
        return token.kind is kind and (text is None or token.text == text)

    def _fail(self, code: str, message: str, position: SourcePosition) -> _SyntaxError:
        self._context.error(code, message, position)
        return _SyntaxError(message)

    def _expect(self, kind: TokenKind, text: Optional[str] = None, *, code: str = "PA1010") -> Token:
        if self._at(kind, text):
            return self._advance()
        expected = f"'{text}'" if text else kind.value
        token = self._current
        raise self._fail(code, f"Expected {expected} but found {token.describe()}", token.position)

    # -- grammar -------------------------------------------------------
    def parse(self) -> Optional[PolicyDocument]:
        try:
            self._expect(TokenKind.IDENT, "resource")
            name_token = self._expect(TokenKind.STRING)
            self._expect(TokenKind.IDENT, "validate")
            brace = self._expect(TokenKind.LBRACE)
        except _SyntaxError:
            return None

        statements: List[Statement] = []
        while not self._at(TokenKind.RBRACE) and not self._at(TokenKind.EOF):
            start = self._index
            try:
                expression = self._parse_conjunction()
                statements.append(Statement(expression=expression, position=expression.position))
            except _SyntaxError:
                self._synchronize(start)

        if self._at(TokenKind.EOF):
            self._context.error("PA1011", "Expected '}' to close the validate block", self._current.position)
        else:
            self._advance()
            if not self._at(TokenKind.EOF):
                token = self._current
                self._context.error(
                    "PA1015",
                    f"Unexpected {token.describe()} after the end of the validate block",
                    token.position,
                )

        if not statements and not self._context.has_errors:
            self._context.error(
                "PA1012", "The validate block must contain at least one statement", brace.position
            )

        return PolicyDocument(
            resource=str(name_token.value),
            resource_position=name_token.position,
            statements=tuple(statements),
        )

    def _synchronize(self, start: int) -> None:
        """Skip to the next token that can begin a statement."""

        if self._index == start:
            self._advance()
        while not self._at(TokenKind.EOF) and not self._at(TokenKind.RBRACE):
            if self._at(TokenKind.IDENT, "input") and not self._previous_is_operator():
                return
            self._advance()

    def _previous_is_operator(self) -> bool:
        if self._index == 0:
            return False
        previous = self._tokens[self._index - 1]
        return previous.kind in (TokenKind.OPERATOR, TokenKind.AND, TokenKind.LPAREN) or (
            previous.kind is TokenKind.IDENT and previous.text in KEYWORD_OPERATORS
        )

    def _parse_conjunction(self) -> Expression:
        first = self._parse_term()
        terms = [first]
        while self._at(TokenKind.AND):
            self._advance()
            terms.append(self._parse_term())
        if len(terms) == 1:
            return first
        return Conjunction(terms=tuple(terms), position=first.position)

    def _parse_term(self) -> Expression:
        if self._at(TokenKind.LPAREN):
            self._advance()
            expression = self._parse_conjunction()
            self._expect(TokenKind.RPAREN, code="PA1016")
            return expression
        return self._parse_comparison()

    def _parse_comparison(self) -> Comparison:
        left = self._parse_operand()
        if not isinstance(left, PropertyPath):
            raise self._fail(
                "PA1013",
                "The left side of a comparison must be an input property (input.<Property>)",
                left.position,
            )

        token = self._current
        if token.kind is TokenKind.OPERATOR or (
            token.kind is TokenKind.IDENT and token.text in KEYWORD_OPERATORS
        ):
            self._advance()
        else:
            raise self._fail(
                "PA1014",
                f"Expected a comparison operator after '{left}' but found {token.describe()}",
                token.position,
            )

        right = self._parse_operand()
        return Comparison(left=left, operator=token.text, right=right, position=left.position)

    def _parse_operand(self) -> Operand:
        token = self._current
        if token.kind is TokenKind.IDENT and token.text == "input":
            self._advance()
            self._expect(TokenKind.DOT)
            name = self._expect(TokenKind.IDENT)
            return PropertyPath(name=name.text, position=name.position)
        if token.kind is TokenKind.LBRACKET:
            return self._parse_list()
        return self._parse_scalar()

    def _parse_scalar(self) -> Literal:
        token = self._current
        if token.kind in (TokenKind.STRING, TokenKind.NUMBER):
            self._advance()
            return Literal(value=token.value, position=token.position)
        if token.kind is TokenKind.IDENT and token.text in _LITERAL_KEYWORDS:
            self._advance()
            return Literal(value=_LITERAL_KEYWORDS[token.text], position=token.position)
        raise self._fail("PA1017", f"Expected a value but found {token.describe()}", token.position)

    def _parse_list(self) -> Literal:
        bracket = self._advance()
        items: List[Literal] = []
        if not self._at(TokenKind.RBRACKET):
            items.append(self._parse_scalar())
            while self._at(TokenKind.COMMA):
                self._advance()
                items.append(self._parse_scalar())
        self._expect(TokenKind.RBRACKET, code="PA1018")
        return Literal(value=tuple(items), position=bracket.position)


def parse(context: CompilationContext) -> Optional[PolicyDocument]:
    """Parse the unit held by *context*; ``None`` when the header is malformed."""

    return Parser(context).parse()


__all__ = ["KEYWORD_OPERATORS", "Parser", "parse"]
