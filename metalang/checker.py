from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set, Tuple

from . import ast
from .errors import (
    DuplicateDefinitionError,
    EntryPointError,
    FieldMismatchError,
    TypeMismatchError,
    UnknownFieldError,
    UnknownFunctionError,
    UnknownTypeError,
    UnknownVariableError,
)
from .runtime import builtin_signatures
from .types import (
    BOOL,
    DISPLAYABLE,
    I32,
    STR,
    UNIT,
    FunctionSignature,
    Type,
    TypeSystemError,
    in_i32_range,
    resolve_type,
)

ENTRY_POINT = "main"


@dataclass
class VarInfo:
    type: Type


@dataclass
class FunctionInfo:
    signature: FunctionSignature
    # None for builtins.
    node: Optional[ast.FunctionDef]


@dataclass
class StructInfo:
    name: str
    field_order: List[str]
    field_types: Dict[str, Type]
    loc: ast.Located


@dataclass
class CheckedProgram:
    """Read-only symbol table handed to the interpreter."""

    program: ast.Program
    structs: Dict[str, StructInfo]
    functions: Dict[str, FunctionInfo]
    associated: Dict[Tuple[str, str], FunctionInfo]
    entry: FunctionInfo

    def lookup_function(self, name: str, type_name: Optional[str] = None) -> Optional[FunctionInfo]:
        if type_name is not None:
            return self.associated.get((type_name, name))
        return self.functions.get(name)


class Scope:
    def __init__(self, parent: Optional[Scope] = None) -> None:
        self.parent = parent
        self.vars: Dict[str, VarInfo] = {}

    def define(self, name: str, info: VarInfo, loc: ast.Located) -> None:
        if name in self.vars:
            raise DuplicateDefinitionError(f"'{name}' already defined in this scope", loc)
        self.vars[name] = info

    def lookup(self, name: str, loc: ast.Located) -> VarInfo:
        if name in self.vars:
            return self.vars[name]
        if self.parent:
            return self.parent.lookup(name, loc)
        raise UnknownVariableError(f"Unknown identifier '{name}'", loc)


@dataclass
class FunctionContext:
    name: str
    signature: FunctionSignature
    scope: Scope


class Checker:
    """
    Declaration resolver and static checker.

    Collects structs, free procedures and associated procedures, resolves
    every written type, validates struct literals and the entry point, and
    type-checks procedure bodies. Nothing is executed.
    """

    def __init__(self, builtin_functions: Optional[Dict[str, FunctionSignature]] = None) -> None:
        if builtin_functions is None:
            builtin_functions = builtin_signatures()
        self.function_infos: Dict[str, FunctionInfo] = {
            name: FunctionInfo(signature=sig, node=None)
            for name, sig in builtin_functions.items()
        }
        self.struct_infos: Dict[str, StructInfo] = {}
        self.associated_infos: Dict[Tuple[str, str], FunctionInfo] = {}

    def check(self, program: ast.Program) -> CheckedProgram:
        self._register_structs(program.structs)
        self._check_struct_cycles()
        self._register_functions(program.functions)
        self._register_impls(program.impls)
        entry = self._check_entry_point(program)
        for func in program.functions:
            self._check_function(func, self.function_infos[func.name])
        for impl in program.impls:
            for func in impl.functions:
                self._check_function(func, self.associated_infos[(impl.type_name, func.name)])
        return CheckedProgram(
            program=program,
            structs=self.struct_infos,
            functions=self.function_infos,
            associated=self.associated_infos,
            entry=entry,
        )

    # Declarations.

    def _register_structs(self, structs: Sequence[ast.StructDef]) -> None:
        for struct in structs:
            if struct.name in self.struct_infos:
                raise DuplicateDefinitionError(f"Struct '{struct.name}' already defined", struct.loc)
            self.struct_infos[struct.name] = StructInfo(
                name=struct.name, field_order=[], field_types={}, loc=struct.loc
            )
        # Field types may name structs declared later in the file.
        for struct in structs:
            info = self.struct_infos[struct.name]
            for field in struct.fields:
                if field.name in info.field_types:
                    raise DuplicateDefinitionError(
                        f"duplicate field '{field.name}' in struct '{struct.name}'", field.loc
                    )
                info.field_order.append(field.name)
                info.field_types[field.name] = self._resolve(field.type_expr)

    def _check_struct_cycles(self) -> None:
        done: Set[str] = set()

        def visit(name: str, path: List[str]) -> None:
            if name in done:
                return
            if name in path:
                cycle = " -> ".join(path[path.index(name):] + [name])
                raise TypeMismatchError(
                    f"struct '{name}' contains itself by value ({cycle})",
                    self.struct_infos[name].loc,
                )
            info = self.struct_infos[name]
            for ty in info.field_types.values():
                if ty.is_struct:
                    visit(ty.name, path + [name])
            done.add(name)

        for struct_name in self.struct_infos:
            visit(struct_name, [])

    def _register_functions(self, functions: Sequence[ast.FunctionDef]) -> None:
        for fn in functions:
            if fn.name in self.function_infos:
                raise DuplicateDefinitionError(f"Function '{fn.name}' already defined", fn.loc)
            self.function_infos[fn.name] = FunctionInfo(signature=self._signature(fn), node=fn)

    def _register_impls(self, impls: Sequence[ast.ImplDef]) -> None:
        for impl in impls:
            if impl.type_name not in self.struct_infos:
                raise UnknownTypeError(f"impl for unknown type '{impl.type_name}'", impl.loc)
            for fn in impl.functions:
                key = (impl.type_name, fn.name)
                if key in self.associated_infos:
                    raise DuplicateDefinitionError(
                        f"Function '{fn.qualified_name}' already defined", fn.loc
                    )
                self.associated_infos[key] = FunctionInfo(signature=self._signature(fn), node=fn)

    def _signature(self, fn: ast.FunctionDef) -> FunctionSignature:
        seen: Set[str] = set()
        for param in fn.params:
            if param.name in seen:
                raise DuplicateDefinitionError(
                    f"duplicate parameter '{param.name}' in '{fn.qualified_name}'", param.loc
                )
            seen.add(param.name)
        return FunctionSignature(
            name=fn.qualified_name,
            params=tuple(self._resolve(param.type_expr) for param in fn.params),
            return_type=self._resolve(fn.return_type),
        )

    def _check_entry_point(self, program: ast.Program) -> FunctionInfo:
        candidates = [fn for fn in program.functions if fn.name == ENTRY_POINT]
        if not candidates:
            raise EntryPointError(f"program has no '{ENTRY_POINT}' procedure")
        fn = candidates[0]
        info = self.function_infos[ENTRY_POINT]
        if fn.params:
            raise EntryPointError(f"'{ENTRY_POINT}' must not take parameters", fn.loc)
        if info.signature.return_type not in (I32, UNIT):
            raise EntryPointError(
                f"'{ENTRY_POINT}' must return i32 or nothing, not {info.signature.return_type}", fn.loc
            )
        return info

    def _resolve(self, type_expr: Optional[ast.TypeExpr]) -> Type:
        try:
            return resolve_type(type_expr, self.struct_infos)
        except TypeSystemError as exc:
            raise UnknownTypeError(str(exc), type_expr.loc if type_expr else None) from exc

    # Bodies.

    def _check_function(self, fn: ast.FunctionDef, info: FunctionInfo) -> None:
        scope = Scope()
        for param, ty in zip(fn.params, info.signature.params):
            scope.define(param.name, VarInfo(type=ty), param.loc)
        ctx = FunctionContext(name=fn.qualified_name, signature=info.signature, scope=scope)
        self._check_block(fn.body, ctx, new_scope=False)
        is_entry = fn.owner is None and fn.name == ENTRY_POINT
        if info.signature.return_type != UNIT and not is_entry and not _always_returns(fn.body):
            raise TypeMismatchError(
                f"'{fn.qualified_name}' can end without returning a value of type {info.signature.return_type}",
                fn.loc,
            )

    def _check_block(self, block: ast.Block, ctx: FunctionContext, new_scope: bool = True) -> None:
        inner = ctx
        if new_scope:
            inner = FunctionContext(name=ctx.name, signature=ctx.signature, scope=Scope(parent=ctx.scope))
        for stmt in block.statements:
            self._check_stmt(stmt, inner)

    def _check_stmt(self, stmt: ast.Stmt, ctx: FunctionContext) -> None:
        if isinstance(stmt, ast.LetStmt):
            value_type = self._check_value(stmt.value, ctx)
            decl_type = value_type
            if stmt.type_expr is not None:
                decl_type = self._resolve(stmt.type_expr)
                self._expect_type(value_type, decl_type, stmt.value.loc)
            ctx.scope.define(stmt.name, VarInfo(type=decl_type), stmt.loc)
            return
        if isinstance(stmt, ast.AssignStmt):
            target_type = self._check_expr(stmt.target, ctx)
            value_type = self._check_value(stmt.value, ctx)
            if stmt.op is not None:
                self._expect_type(target_type, I32, stmt.target.loc, what=f"operand of '{stmt.op}='")
                self._expect_type(value_type, I32, stmt.value.loc, what=f"operand of '{stmt.op}='")
                return
            self._expect_type(value_type, target_type, stmt.value.loc)
            return
        if isinstance(stmt, ast.ExprStmt):
            self._check_expr(stmt.value, ctx)
            return
        if isinstance(stmt, ast.ReturnStmt):
            expected = ctx.signature.return_type
            if stmt.value is None:
                if expected != UNIT:
                    raise TypeMismatchError(f"'{ctx.name}' must return a value of type {expected}", stmt.loc)
                return
            if expected == UNIT:
                raise TypeMismatchError(f"'{ctx.name}' does not declare a return type", stmt.value.loc)
            self._expect_type(self._check_value(stmt.value, ctx), expected, stmt.value.loc)
            return
        if isinstance(stmt, ast.IfStmt):
            self._expect_type(self._check_expr(stmt.condition, ctx), BOOL, stmt.condition.loc, what="condition")
            self._check_block(stmt.then_block, ctx)
            if stmt.else_block is not None:
                self._check_block(stmt.else_block, ctx)
            return
        if isinstance(stmt, ast.WhileStmt):
            self._expect_type(self._check_expr(stmt.condition, ctx), BOOL, stmt.condition.loc, what="condition")
            self._check_block(stmt.body, ctx)
            return
        if isinstance(stmt, ast.ForRangeStmt):
            self._expect_type(self._check_value(stmt.start, ctx), I32, stmt.start.loc, what="range start")
            self._expect_type(self._check_value(stmt.end, ctx), I32, stmt.end.loc, what="range end")
            loop_scope = Scope(parent=ctx.scope)
            loop_scope.define(stmt.var, VarInfo(type=I32), stmt.loc)
            loop_ctx = FunctionContext(name=ctx.name, signature=ctx.signature, scope=loop_scope)
            self._check_block(stmt.body, loop_ctx, new_scope=False)
            return
        raise TypeMismatchError(f"Unsupported statement {stmt}", stmt.loc)

    def _check_value(self, expr: ast.Expr, ctx: FunctionContext) -> Type:
        """Check an expression whose result is consumed; unit results are rejected."""
        ty = self._check_expr(expr, ctx)
        if ty == UNIT:
            raise TypeMismatchError("expression does not produce a value", expr.loc)
        return ty

    def _check_expr(self, expr: ast.Expr, ctx: FunctionContext) -> Type:
        if isinstance(expr, ast.Literal):
            value = expr.value
            if isinstance(value, bool):
                return BOOL
            if isinstance(value, int):
                if not in_i32_range(value):
                    raise TypeMismatchError(f"integer literal {value} is out of range for i32", expr.loc)
                return I32
            if isinstance(value, str):
                return STR
            raise TypeMismatchError(f"Unsupported literal {value!r}", expr.loc)
        if isinstance(expr, ast.Name):
            return ctx.scope.lookup(expr.ident, expr.loc).type
        if isinstance(expr, ast.Attr):
            base_type = self._check_value(expr.value, ctx)
            return self._resolve_attr_type(base_type, expr)
        if isinstance(expr, ast.Unary):
            operand = self._check_value(expr.operand, ctx)
            self._expect_type(operand, I32, expr.operand.loc, what=f"operand of unary '{expr.op}'")
            return I32
        if isinstance(expr, ast.Binary):
            return self._check_binary(expr, ctx)
        if isinstance(expr, ast.Call):
            return self._check_call(expr, ctx)
        if isinstance(expr, ast.StructLiteral):
            return self._check_struct_literal(expr, ctx)
        raise TypeMismatchError(f"Unsupported expression {expr}", expr.loc)

    def _check_binary(self, expr: ast.Binary, ctx: FunctionContext) -> Type:
        left = self._check_value(expr.left, ctx)
        right = self._check_value(expr.right, ctx)
        op = expr.op
        if op in {"+", "-", "*", "/"}:
            if left != I32 or right != I32:
                raise TypeMismatchError(f"operator '{op}' is not defined for {left} and {right}", expr.loc)
            return I32
        if op in {"==", "!="}:
            if left != right:
                raise TypeMismatchError(f"cannot compare {left} with {right}", expr.loc)
            return BOOL
        if op in {"<", "<=", ">", ">="}:
            if left != I32 or right != I32:
                raise TypeMismatchError(f"operator '{op}' is not defined for {left} and {right}", expr.loc)
            return BOOL
        raise TypeMismatchError(f"Unsupported operator '{op}'", expr.loc)

    def _check_call(self, expr: ast.Call, ctx: FunctionContext) -> Type:
        if expr.type_name is not None:
            info = self.associated_infos.get((expr.type_name, expr.name))
        else:
            info = self.function_infos.get(expr.name)
        if info is None:
            raise UnknownFunctionError(f"Unknown function '{expr.qualified_name}'", expr.loc)
        sig = info.signature
        if len(expr.args) != len(sig.params):
            raise TypeMismatchError(
                f"'{expr.qualified_name}' expects {len(sig.params)} args, got {len(expr.args)}", expr.loc
            )
        for arg_expr, expected in zip(expr.args, sig.params):
            actual = self._check_value(arg_expr, ctx)
            if expected == DISPLAYABLE:
                continue
            self._expect_type(actual, expected, arg_expr.loc)
        return sig.return_type

    def _check_struct_literal(self, expr: ast.StructLiteral, ctx: FunctionContext) -> Type:
        info = self.struct_infos.get(expr.type_name)
        if info is None:
            raise UnknownTypeError(f"Unknown type '{expr.type_name}'", expr.loc)
        used: List[str] = []
        for init in expr.fields:
            if init.name not in info.field_types:
                raise FieldMismatchError(f"Struct '{info.name}' has no field '{init.name}'", init.loc)
            if init.name in used:
                raise FieldMismatchError(f"Field '{init.name}' initialized twice", init.loc)
            actual = self._check_value(init.value, ctx)
            self._expect_type(actual, info.field_types[init.name], init.value.loc)
            used.append(init.name)
        missing = [name for name in info.field_order if name not in used]
        if missing:
            raise FieldMismatchError(
                f"Missing fields for '{info.name}': {', '.join(missing)}", expr.loc
            )
        return Type(info.name, is_struct=True)

    def _resolve_attr_type(self, base_type: Type, attr: ast.Attr) -> Type:
        struct_info = self.struct_infos.get(base_type.name) if base_type.is_struct else None
        if struct_info is None:
            raise TypeMismatchError(f"type {base_type} has no fields", attr.loc)
        if attr.attr not in struct_info.field_types:
            raise UnknownFieldError(f"Struct '{struct_info.name}' has no field '{attr.attr}'", attr.loc)
        return struct_info.field_types[attr.attr]

    def _expect_type(self, actual: Type, expected: Type, loc: ast.Located, what: str = "") -> None:
        if actual != expected:
            prefix = f"{what}: " if what else ""
            raise TypeMismatchError(f"{prefix}Expected type {expected}, got {actual}", loc)


def _always_returns(block: ast.Block) -> bool:
    """True when every path through `block` reaches a `return`. Loop bodies never count."""
    for stmt in block.statements:
        if isinstance(stmt, ast.ReturnStmt):
            return True
        if (
            isinstance(stmt, ast.IfStmt)
            and stmt.else_block is not None
            and _always_returns(stmt.then_block)
            and _always_returns(stmt.else_block)
        ):
            return True
    return False
