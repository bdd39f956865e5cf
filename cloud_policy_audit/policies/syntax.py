"""Syntax tree produced by the policy parser."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

from .compilation import SourcePosition


LiteralValue = Union[str, int, float, bool, None, Tuple["Literal", ...]]


@dataclass(frozen=True)
class PropertyPath:
    """``input.<name>`` reference."""

    name: str
    position: SourcePosition

    def __str__(self) -> str:
        return f"input.{self.name}"


@dataclass(frozen=True)
class Literal:
    value: LiteralValue
    position: SourcePosition

    @property
    def is_list(self) -> bool:
        return isinstance(self.value, tuple)

    @property
    def kind(self) -> str:
        value = self.value
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "boolean"
        if isinstance(value, (int, float)):
            return "number"
        if isinstance(value, str):
            return "string"
        return "list"

    def __str__(self) -> str:
        value = self.value
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, str):
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            return f'"{escaped}"'
        if isinstance(value, tuple):
            return "[" + ", ".join(str(item) for item in value) + "]"
        return str(value)


Operand = Union[PropertyPath, Literal]


@dataclass(frozen=True)
class Comparison:
    left: PropertyPath
    operator: str
    right: Operand
    position: SourcePosition

    def __str__(self) -> str:
        return f"{self.left} {self.operator} {self.right}"


@dataclass(frozen=True)
class Conjunction:
    """Boolean AND of two or more terms; ``&&`` in source."""

    terms: Tuple["Expression", ...]
    position: SourcePosition

    def __str__(self) -> str:
        parts = []
        for term in self.terms:
            text = str(term)
            parts.append(f"({text})" if isinstance(term, Conjunction) else text)
        return " && ".join(parts)


Expression = Union[Comparison, Conjunction]


@dataclass(frozen=True)
class Statement:
    expression: Expression
    position: SourcePosition

    def __str__(self) -> str:
        return str(self.expression)


@dataclass(frozen=True)
class PolicyDocument:
    """Root node: ``resource "<name>" validate { <statement>+ }``."""

    resource: str
    resource_position: SourcePosition
    statements: Tuple[Statement, ...]


__all__ = [
    "Comparison",
    "Conjunction",
    "Expression",
    "Literal",
    "LiteralValue",
    "Operand",
    "PolicyDocument",
    "PropertyPath",
    "Statement",
]
