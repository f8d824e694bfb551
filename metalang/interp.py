from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from . import ast
from .checker import CheckedProgram, FunctionInfo
from .errors import (
    ArithmeticError,
    CallDepthError,
    TypeMismatchError,
    UnknownFieldError,
    UnknownFunctionError,
    UnknownVariableError,
    at_runtime,
)
from .runtime import BUILTINS, BuiltinFunction, RuntimeContext, StructValue
from .types import BOOL, DISPLAYABLE, I32, STR, UNIT, Type, in_i32_range, struct_type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunOptions:
    max_call_depth: int = 200


class ReturnSignal(Exception):
    def __init__(self, value: object) -> None:
        self.value = value


class Environment:
    """One lexical scope of a call frame. Blocks open a child scope."""

    def __init__(self, parent: Environment | None = None) -> None:
        self.parent = parent
        self.values: Dict[str, object] = {}

    def define(self, name: str, value: object) -> None:
        self.values[name] = value

    def set(self, name: str, value: object) -> None:
        if name in self.values:
            self.values[name] = value
            return
        if self.parent:
            self.parent.set(name, value)
            return
        raise at_runtime(UnknownVariableError(f"Unknown variable '{name}'"))

    def get(self, name: str) -> object:
        if name in self.values:
            return self.values[name]
        if self.parent:
            return self.parent.get(name)
        raise at_runtime(UnknownVariableError(f"Unknown identifier '{name}'"))


def value_type(value: object) -> Type:
    if isinstance(value, bool):
        return BOOL
    if isinstance(value, int):
        return I32
    if isinstance(value, str):
        return STR
    if isinstance(value, StructValue):
        return struct_type(value.type_name)
    if value is None:
        return UNIT
    raise TypeError(f"not a runtime value: {value!r}")


class Interpreter:
    """
    Tree-walking evaluator over a checked program.

    Every value is passed by copy. Struct values are immutable snapshots, so
    binding, argument passing and returning never alias; field writes build a
    new snapshot and store it back into the variable that owns it.
    """

    def __init__(
        self,
        checked: CheckedProgram,
        builtins: Mapping[str, BuiltinFunction] | None = None,
        stdout=None,
        options: Optional[RunOptions] = None,
    ) -> None:
        self.checked = checked
        self.struct_infos = checked.structs
        self.stdout = stdout or sys.stdout
        self.runtime_ctx = RuntimeContext(self.stdout)
        self.builtins = BUILTINS if builtins is None else builtins
        self.options = options or RunOptions()
        self.depth = 0

    def run(self) -> object:
        """Execute `main`; returns its i32 result, or None when it declares no return type."""
        entry = self.checked.entry
        result = self._call_function(entry, [])
        if result is None and entry.signature.return_type == I32:
            return 0
        return result

    def call(self, name: str, *args: object) -> object:
        info = self.checked.lookup_function(name)
        if info is None:
            raise at_runtime(UnknownFunctionError(f"Unknown function '{name}'"))
        return self._call_function(info, list(args))

    def call_associated(self, type_name: str, name: str, *args: object) -> object:
        info = self.checked.lookup_function(name, type_name=type_name)
        if info is None:
            raise at_runtime(UnknownFunctionError(f"Unknown function '{type_name}::{name}'"))
        return self._call_function(info, list(args))

    def _call_function(self, info: FunctionInfo, args: List[object], loc: ast.Located | None = None) -> object:
        fn = info.node
        sig = info.signature
        if fn is None:
            builtin = self.builtins.get(sig.name)
            if builtin is None:
                raise at_runtime(UnknownFunctionError(f"Unknown function '{sig.name}'", loc))
            return self._call_builtin(builtin, args, loc)
        self._check_arguments(sig.name, sig.params, args, loc)
        if self.depth >= self.options.max_call_depth:
            raise CallDepthError(
                f"call depth limit of {self.options.max_call_depth} exceeded calling '{sig.name}'", loc
            )
        env = Environment()
        for param, value in zip(fn.params, args):
            env.define(param.name, value)
        logger.debug("enter %s depth=%d", sig.name, self.depth + 1)
        self.depth += 1
        try:
            self._execute_block(fn.body.statements, env)
            result = None
        except ReturnSignal as signal:
            result = signal.value
        except RecursionError:
            raise CallDepthError(f"host stack exhausted calling '{sig.name}'", loc) from None
        finally:
            self.depth -= 1
        if result is None and sig.return_type != UNIT and info is not self.checked.entry:
            raise at_runtime(
                TypeMismatchError(f"'{sig.name}' ended without returning a value of type {sig.return_type}", fn.loc)
            )
        logger.debug("exit %s -> %r", sig.name, result)
        return result

    def _call_builtin(self, builtin: BuiltinFunction, args: List[object], loc: ast.Located | None = None) -> object:
        self._check_arguments(builtin.signature.name, builtin.signature.params, args, loc)
        return builtin.impl(self.runtime_ctx, args)

    def _check_arguments(
        self, name: str, params: Sequence[Type], args: Sequence[object], loc: ast.Located | None
    ) -> None:
        if len(args) != len(params):
            raise at_runtime(TypeMismatchError(f"'{name}' expects {len(params)} args, got {len(args)}", loc))
        for expected, value in zip(params, args):
            actual = value_type(value)
            if expected == DISPLAYABLE:
                if actual == UNIT:
                    raise at_runtime(TypeMismatchError(f"'{name}' cannot display a unit value", loc))
                continue
            if actual != expected:
                raise at_runtime(TypeMismatchError(f"Expected type {expected}, got {actual}", loc))

    def _execute_block(self, statements: Sequence[ast.Stmt], env: Environment) -> None:
        for stmt in statements:
            self._exec_stmt(stmt, env)

    def _exec_stmt(self, stmt: ast.Stmt, env: Environment) -> None:
        if isinstance(stmt, ast.LetStmt):
            value = self._eval_expr(stmt.value, env)
            env.define(stmt.name, value)
            return
        if isinstance(stmt, ast.AssignStmt):
            value = self._eval_expr(stmt.value, env)
            if stmt.op is not None:
                current = self._eval_expr(stmt.target, env)
                value = self._arith(stmt.op, current, value, stmt.loc)
            self._assign(stmt.target, value, env)
            return
        if isinstance(stmt, ast.ExprStmt):
            self._eval_expr(stmt.value, env)
            return
        if isinstance(stmt, ast.ReturnStmt):
            value = self._eval_expr(stmt.value, env) if stmt.value else None
            raise ReturnSignal(value)
        if isinstance(stmt, ast.IfStmt):
            if self._eval_condition(stmt.condition, env):
                self._execute_block(stmt.then_block.statements, Environment(parent=env))
            elif stmt.else_block is not None:
                self._execute_block(stmt.else_block.statements, Environment(parent=env))
            return
        if isinstance(stmt, ast.WhileStmt):
            while self._eval_condition(stmt.condition, env):
                self._execute_block(stmt.body.statements, Environment(parent=env))
            return
        if isinstance(stmt, ast.ForRangeStmt):
            start = self._eval_i32(stmt.start, env)
            end = self._eval_i32(stmt.end, env)
            for i in range(start, end):
                loop_env = Environment(parent=env)
                loop_env.define(stmt.var, i)
                self._execute_block(stmt.body.statements, loop_env)
            return
        raise at_runtime(TypeMismatchError(f"Unsupported statement {stmt}", stmt.loc))

    def _eval_condition(self, expr: ast.Expr, env: Environment) -> bool:
        value = self._eval_expr(expr, env)
        if not isinstance(value, bool):
            raise at_runtime(TypeMismatchError(f"condition: Expected type bool, got {value_type(value)}", expr.loc))
        return value

    def _eval_i32(self, expr: ast.Expr, env: Environment) -> int:
        value = self._eval_expr(expr, env)
        if value_type(value) != I32:
            raise at_runtime(TypeMismatchError(f"Expected type i32, got {value_type(value)}", expr.loc))
        return value

    def _eval_expr(self, expr: ast.Expr, env: Environment) -> object:
        if isinstance(expr, ast.Literal):
            return expr.value
        if isinstance(expr, ast.Name):
            return env.get(expr.ident)
        if isinstance(expr, ast.Attr):
            base = self._eval_expr(expr.value, env)
            return self._resolve_attr(base, expr.attr, expr.loc)
        if isinstance(expr, ast.Unary):
            operand = self._eval_expr(expr.operand, env)
            return self._arith("-", 0, operand, expr.loc)
        if isinstance(expr, ast.Binary):
            return self._eval_binary(expr, env)
        if isinstance(expr, ast.Call):
            return self._eval_call(expr, env)
        if isinstance(expr, ast.StructLiteral):
            return self._eval_struct_literal(expr, env)
        raise at_runtime(TypeMismatchError(f"Unsupported expression {expr}", expr.loc))

    def _eval_call(self, expr: ast.Call, env: Environment) -> object:
        # Resolved before the arguments are evaluated.
        info = self.checked.lookup_function(expr.name, type_name=expr.type_name)
        if info is None:
            raise at_runtime(UnknownFunctionError(f"Unknown function '{expr.qualified_name}'", expr.loc))
        args = [self._eval_expr(arg, env) for arg in expr.args]
        return self._call_function(info, args, expr.loc)

    def _eval_struct_literal(self, expr: ast.StructLiteral, env: Environment) -> StructValue:
        info = self.struct_infos[expr.type_name]
        values: Dict[str, object] = {}
        for init in expr.fields:
            value = self._eval_expr(init.value, env)
            expected = info.field_types[init.name]
            if value_type(value) != expected:
                raise at_runtime(
                    TypeMismatchError(f"Expected type {expected}, got {value_type(value)}", init.value.loc)
                )
            values[init.name] = value
        return StructValue.build(info.name, values, info.field_order)

    def _eval_binary(self, expr: ast.Binary, env: Environment) -> object:
        left = self._eval_expr(expr.left, env)
        right = self._eval_expr(expr.right, env)
        op = expr.op
        if op in {"+", "-", "*", "/"}:
            return self._arith(op, left, right, expr.loc)
        left_type = value_type(left)
        right_type = value_type(right)
        if op in {"==", "!="}:
            if left_type != right_type:
                raise at_runtime(TypeMismatchError(f"cannot compare {left_type} with {right_type}", expr.loc))
            return (left == right) if op == "==" else (left != right)
        if left_type != I32 or right_type != I32:
            raise at_runtime(
                TypeMismatchError(f"operator '{op}' is not defined for {left_type} and {right_type}", expr.loc)
            )
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
        raise at_runtime(TypeMismatchError(f"Unsupported operator '{op}'", expr.loc))

    def _arith(self, op: str, left: object, right: object, loc: ast.Located) -> int:
        left_type = value_type(left)
        right_type = value_type(right)
        if left_type != I32 or right_type != I32:
            raise at_runtime(
                TypeMismatchError(f"operator '{op}' is not defined for {left_type} and {right_type}", loc)
            )
        if op == "+":
            result = left + right
        elif op == "-":
            result = left - right
        elif op == "*":
            result = left * right
        elif op == "/":
            if right == 0:
                raise ArithmeticError("division by zero", loc)
            # Truncates toward zero.
            result = abs(left) // abs(right)
            if (left < 0) != (right < 0):
                result = -result
        else:
            raise at_runtime(TypeMismatchError(f"Unsupported operator '{op}'", loc))
        if not in_i32_range(result):
            raise ArithmeticError(f"i32 overflow in {left} {op} {right}", loc)
        return result

    def _resolve_attr(self, base: object, attr: str, loc: ast.Located) -> object:
        if not isinstance(base, StructValue):
            raise at_runtime(TypeMismatchError(f"type {value_type(base)} has no fields", loc))
        if not base.has_field(attr):
            raise at_runtime(UnknownFieldError(f"Struct '{base.type_name}' has no field '{attr}'", loc))
        return base.get(attr)

    def _assign(self, target: ast.Expr, value: object, env: Environment) -> None:
        if isinstance(target, ast.Name):
            env.set(target.ident, value)
            return
        if isinstance(target, ast.Attr):
            path: List[ast.Attr] = []
            node: ast.Expr = target
            while isinstance(node, ast.Attr):
                path.append(node)
                node = node.value
            if not isinstance(node, ast.Name):
                raise at_runtime(TypeMismatchError("Unsupported assignment target", target.loc))
            path.reverse()
            root = env.get(node.ident)
            env.set(node.ident, self._replace_path(root, path, value))
            return
        raise at_runtime(TypeMismatchError("Unsupported assignment target", target.loc))

    def _replace_path(self, base: object, path: Sequence[ast.Attr], value: object) -> StructValue:
        """Rebuild `base` with the field chain `path` set to `value`."""
        head = path[0]
        current = self._resolve_attr(base, head.attr, head.loc)
        if len(path) > 1:
            value = self._replace_path(current, path[1:], value)
        elif value_type(current) != value_type(value):
            raise at_runtime(
                TypeMismatchError(f"Expected type {value_type(current)}, got {value_type(value)}", head.loc)
            )
        return base.with_field(head.attr, value)


def run_program(checked: CheckedProgram, stdout=None, options: Optional[RunOptions] = None) -> object:
    return Interpreter(checked, stdout=stdout, options=options).run()
