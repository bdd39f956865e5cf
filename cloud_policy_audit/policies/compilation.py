"""Compilation units, diagnostics and the per-compile context."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Union

if TYPE_CHECKING:  # pragma: no cover
    from .compiler import CompiledPolicy


POLICY_FILE_EXTENSION = ".policy"
POLICY_SUITE_EXTENSION = ".suite"


@dataclass(frozen=True)
class CompilationUnit:
    """Source text of one policy and the name used when reporting on it."""

    name: str
    source: str

    @classmethod
    def from_text(cls, source: str, name: str = "<inline>") -> "CompilationUnit":
        return cls(name=name, source=source)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "CompilationUnit":
        """Load a UTF-8 policy file; the path becomes the unit name."""

        path = Path(path)
        return cls(name=str(path), source=path.read_text(encoding="utf-8"))


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class SourcePosition:
    """Location within a compilation unit (1-based line and column)."""

    offset: int
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line},{self.column}"


@dataclass(frozen=True)
class Diagnostic:
    """A compiler message tied to a source position."""

    severity: Severity
    code: str
    message: str
    position: SourcePosition

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def format(self, unit_name: str = "") -> str:
        prefix = f"{unit_name}({self.position})" if unit_name else f"({self.position})"
        return f"{prefix}: {self.severity.value} {self.code}: {self.message}"

    def as_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "line": self.position.line,
            "column": self.position.column,
        }


@dataclass
class CompilationContext:
    """Everything produced by one compile call.

    ``predicate`` is set only when no diagnostic has error severity; the
    compiler is the only writer of this object.
    """

    unit: CompilationUnit
    diagnostics: List[Diagnostic] = field(default_factory=list)
    predicate: Optional["CompiledPolicy"] = None

    def report(self, severity: Severity, code: str, message: str, position: SourcePosition) -> Diagnostic:
        diagnostic = Diagnostic(severity=severity, code=code, message=message, position=position)
        self.diagnostics.append(diagnostic)
        return diagnostic

    def error(self, code: str, message: str, position: SourcePosition) -> Diagnostic:
        return self.report(Severity.ERROR, code, message, position)

    def warning(self, code: str, message: str, position: SourcePosition) -> Diagnostic:
        return self.report(Severity.WARNING, code, message, position)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    @property
    def has_errors(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    def format_diagnostics(self) -> List[str]:
        return [d.format(self.unit.name) for d in self.diagnostics]


__all__ = [
    "CompilationContext",
    "CompilationUnit",
    "Diagnostic",
    "POLICY_FILE_EXTENSION",
    "POLICY_SUITE_EXTENSION",
    "Severity",
    "SourcePosition",
]
