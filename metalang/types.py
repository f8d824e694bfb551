from __future__ import annotations

from dataclasses import dataclass
from typing import Container, Dict, Optional, Tuple

from .ast import TypeExpr


@dataclass(frozen=True)
class Type:
    name: str
    is_struct: bool = False

    def __str__(self) -> str:  # pragma: no cover - trivial repr
        return self.name


I32 = Type("i32")
STR = Type("String")
BOOL = Type("bool")
UNIT = Type("()")
# Parameter type of builtins that accept any value with a display form.
DISPLAYABLE = Type("<displayable>")

I32_MIN = -(2**31)
I32_MAX = 2**31 - 1

_PRIMITIVES: Dict[str, Type] = {
    "i32": I32,
    "String": STR,
    "bool": BOOL,
}

_ALIAS_HINTS = {
    "int": "i32",
    "Int": "i32",
    "str": "String",
    "string": "String",
    "Bool": "bool",
    "boolean": "bool",
}


class TypeSystemError(Exception):
    pass


def resolve_type(type_expr: Optional[TypeExpr], struct_names: Container[str]) -> Type:
    """Resolve a written type against the primitives and the declared structs."""
    if type_expr is None:
        return UNIT
    builtin = _PRIMITIVES.get(type_expr.name)
    if builtin:
        return builtin
    if type_expr.name in struct_names:
        return Type(type_expr.name, is_struct=True)
    alias_hint = _ALIAS_HINTS.get(type_expr.name)
    if alias_hint:
        raise TypeSystemError(
            f"Type '{type_expr.name}' is not defined. Use '{alias_hint}' instead."
        )
    raise TypeSystemError(f"Unknown type '{type_expr.name}'")


def struct_type(name: str) -> Type:
    return Type(name, is_struct=True)


def in_i32_range(value: int) -> bool:
    return I32_MIN <= value <= I32_MAX


@dataclass(frozen=True)
class FunctionSignature:
    name: str
    params: Tuple[Type, ...]
    return_type: Type
