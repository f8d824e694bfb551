from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Sequence, Tuple

from ..types import DISPLAYABLE, UNIT, FunctionSignature


@dataclass(frozen=True)
class StructValue:
    """
    A struct instance.

    Instances are immutable snapshots: writing a field produces a new snapshot
    that the interpreter stores back into the owning binding. Two bindings can
    therefore hold the same snapshot without either one observing the other's
    later writes, which is exactly value (copy) semantics.
    """

    type_name: str
    fields: Tuple[Tuple[str, object], ...]

    @classmethod
    def build(cls, type_name: str, values: Mapping[str, object], field_order: Sequence[str]) -> "StructValue":
        return cls(type_name=type_name, fields=tuple((name, values[name]) for name in field_order))

    def has_field(self, name: str) -> bool:
        return any(field_name == name for field_name, _ in self.fields)

    def get(self, name: str) -> object:
        for field_name, value in self.fields:
            if field_name == name:
                return value
        raise KeyError(name)

    def with_field(self, name: str, value: object) -> "StructValue":
        if not self.has_field(name):
            raise KeyError(name)
        return StructValue(
            type_name=self.type_name,
            fields=tuple((n, value if n == name else v) for n, v in self.fields),
        )


def format_value(value: object, nested: bool = False) -> str:
    """Display form used by `print`; strings are quoted only inside structs."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{value}"' if nested else value
    if isinstance(value, StructValue):
        if not value.fields:
            return f"{value.type_name} {{}}"
        inner = ", ".join(f"{name}: {format_value(v, nested=True)}" for name, v in value.fields)
        return f"{value.type_name} {{ {inner} }}"
    if value is None:
        return "()"
    raise TypeError(f"cannot display {value!r}")


BuiltinImpl = Callable[["RuntimeContext", Sequence[object]], object]


@dataclass
class BuiltinFunction:
    signature: FunctionSignature
    impl: BuiltinImpl


class RuntimeContext:
    def __init__(self, stdout) -> None:
        self.stdout = stdout


def _builtin_print(ctx: RuntimeContext, args: Sequence[object]) -> object:
    text = format_value(args[0])
    ctx.stdout.write(text + "\n")
    ctx.stdout.flush()
    return None


BUILTINS: Mapping[str, BuiltinFunction] = {
    "print": BuiltinFunction(
        signature=FunctionSignature("print", (DISPLAYABLE,), UNIT),
        impl=_builtin_print,
    ),
}


def builtin_signatures() -> Dict[str, FunctionSignature]:
    return {name: builtin.signature for name, builtin in BUILTINS.items()}
