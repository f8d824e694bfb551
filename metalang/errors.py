from __future__ import annotations

from typing import FrozenSet, Optional

from .ast import Located
from .diagnostics import Diagnostic, Span


class MetaError(Exception):
    """Base class of every error the pipeline reports. All of them are fatal."""

    phase = "internal"

    def __init__(self, message: str, loc: Optional[Located] = None) -> None:
        self.message = message
        self.loc = loc
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.loc is None:
            return self.message
        return f"{self.loc.line}:{self.loc.column}: {self.message}"

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_diagnostic(self, file: Optional[str] = None) -> Diagnostic:
        return Diagnostic(
            message=self.message,
            code=self.code,
            phase=self.phase,
            span=Span.from_loc(self.loc, file=file),
        )


class LexError(MetaError):
    phase = "lexer"


class ParseError(MetaError):
    phase = "parser"

    def __init__(
        self,
        loc: Optional[Located],
        expected: FrozenSet[str] = frozenset(),
        found: str = "",
        message: Optional[str] = None,
    ) -> None:
        self.position = loc
        self.expected = frozenset(expected)
        self.found = found
        if message is None:
            wanted = ", ".join(sorted(self.expected)) or "something else"
            message = f"expected {wanted}, found {found}"
        super().__init__(message, loc)


class CheckError(MetaError):
    phase = "checker"


class UnknownTypeError(CheckError):
    pass


class FieldMismatchError(CheckError):
    pass


class EntryPointError(CheckError):
    pass


class DuplicateDefinitionError(CheckError):
    pass


class UnknownVariableError(CheckError):
    pass


# The following are detected statically where possible, and re-validated by
# the interpreter, which reports them with phase "runtime".


class UnknownFunctionError(CheckError):
    pass


class UnknownFieldError(CheckError):
    pass


class TypeMismatchError(CheckError):
    pass


class RuntimeFault(MetaError):
    phase = "runtime"


class ArithmeticError(RuntimeFault):  # noqa: A001 - name is part of the error taxonomy
    pass


class CallDepthError(RuntimeFault):
    pass


def at_runtime(error: MetaError) -> MetaError:
    """Mark a checker-class error as raised while the program was running."""
    error.phase = "runtime"
    return error
