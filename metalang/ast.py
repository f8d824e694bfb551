from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Located:
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@dataclass(frozen=True)
class TypeExpr:
    name: str
    loc: Located


@dataclass(frozen=True)
class StructField:
    name: str
    type_expr: TypeExpr
    loc: Located


@dataclass(frozen=True)
class StructDef:
    name: str
    fields: Tuple[StructField, ...]
    loc: Located


@dataclass(frozen=True)
class Param:
    name: str
    type_expr: TypeExpr
    loc: Located


@dataclass(frozen=True)
class Block:
    statements: Tuple["Stmt", ...]


@dataclass(frozen=True)
class FunctionDef:
    name: str
    params: Tuple[Param, ...]
    return_type: Optional[TypeExpr]
    body: Block
    loc: Located
    # Set for procedures declared inside an `impl` block.
    owner: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        if self.owner:
            return f"{self.owner}::{self.name}"
        return self.name


@dataclass(frozen=True)
class ImplDef:
    type_name: str
    functions: Tuple[FunctionDef, ...]
    loc: Located


class Stmt:
    loc: Located


@dataclass(frozen=True)
class LetStmt(Stmt):
    loc: Located
    name: str
    type_expr: Optional[TypeExpr]
    value: "Expr"


@dataclass(frozen=True)
class AssignStmt(Stmt):
    loc: Located
    target: "Expr"
    value: "Expr"
    # "+" / "-" for compound assignment, None for plain `=`.
    op: Optional[str] = None


@dataclass(frozen=True)
class ExprStmt(Stmt):
    loc: Located
    value: "Expr"


@dataclass(frozen=True)
class IfStmt(Stmt):
    loc: Located
    condition: "Expr"
    then_block: Block
    else_block: Optional[Block] = None


@dataclass(frozen=True)
class WhileStmt(Stmt):
    loc: Located
    condition: "Expr"
    body: Block


@dataclass(frozen=True)
class ForRangeStmt(Stmt):
    loc: Located
    var: str
    start: "Expr"
    end: "Expr"
    body: Block


@dataclass(frozen=True)
class ReturnStmt(Stmt):
    loc: Located
    value: Optional["Expr"]


class Expr:
    loc: Located


@dataclass(frozen=True)
class Literal(Expr):
    loc: Located
    value: object


@dataclass(frozen=True)
class Name(Expr):
    loc: Located
    ident: str


@dataclass(frozen=True)
class Attr(Expr):
    loc: Located
    value: Expr
    attr: str


@dataclass(frozen=True)
class Binary(Expr):
    loc: Located
    op: str
    left: Expr
    right: Expr


@dataclass(frozen=True)
class Unary(Expr):
    loc: Located
    op: str
    operand: Expr


@dataclass(frozen=True)
class Call(Expr):
    loc: Located
    name: str
    args: Tuple[Expr, ...]
    # Set for associated calls (`Type::name(...)`).
    type_name: Optional[str] = None

    @property
    def qualified_name(self) -> str:
        if self.type_name:
            return f"{self.type_name}::{self.name}"
        return self.name


@dataclass(frozen=True)
class FieldInit:
    name: str
    value: Expr
    loc: Located


@dataclass(frozen=True)
class StructLiteral(Expr):
    loc: Located
    type_name: str
    fields: Tuple[FieldInit, ...]


@dataclass(frozen=True)
class Program:
    structs: Tuple[StructDef, ...]
    impls: Tuple[ImplDef, ...]
    functions: Tuple[FunctionDef, ...]
