"""
Diagnostic structure shared by every phase (lexer, parser, checker, runtime).

Errors raised by the pipeline convert themselves into a Diagnostic; the
driver decides how to render it (human-readable line or JSON).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class Span:
    """Best-effort source location (file/line/column)."""

    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    @classmethod
    def from_loc(cls, loc: Any, file: Optional[str] = None) -> "Span":
        if loc is None:
            return cls(file=file)
        if isinstance(loc, cls):
            return loc
        return cls(
            file=file,
            line=getattr(loc, "line", None),
            column=getattr(loc, "column", None),
        )

    def render(self) -> str:
        line = "?" if self.line is None else self.line
        column = "?" if self.column is None else self.column
        return f"{line}:{column}"


@dataclass
class Diagnostic:
    """A single reportable problem."""

    message: str
    code: str | None = None
    # lexer / parser / checker / runtime
    phase: str | None = None
    severity: str = "error"
    span: Span = field(default_factory=Span)

    def __post_init__(self) -> None:
        if self.span is None:  # type: ignore[unreachable]
            self.span = Span()

    def format(self, source: str | None = None) -> str:
        origin = self.span.file or source or "<input>"
        return f"{origin}:{self.span.render()}: {self.severity}: {self.message}"

    def to_json(self, source: str | None = None) -> dict:
        return {
            "phase": self.phase,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "file": self.span.file or source,
            "line": self.span.line,
            "column": self.span.column,
        }


__all__ = ["Diagnostic", "Span"]
