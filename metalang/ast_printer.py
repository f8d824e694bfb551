from __future__ import annotations

from typing import List

from . import ast


def format_expr(expr: ast.Expr) -> str:
    if isinstance(expr, ast.Literal):
        if isinstance(expr.value, bool):
            return "true" if expr.value else "false"
        if isinstance(expr.value, str):
            return f'"{expr.value}"'
        return str(expr.value)
    if isinstance(expr, ast.Name):
        return expr.ident
    if isinstance(expr, ast.Attr):
        return f"{format_expr(expr.value)}.{expr.attr}"
    if isinstance(expr, ast.Unary):
        return f"({expr.op}{format_expr(expr.operand)})"
    if isinstance(expr, ast.Binary):
        return f"({format_expr(expr.left)} {expr.op} {format_expr(expr.right)})"
    if isinstance(expr, ast.Call):
        args = ", ".join(format_expr(arg) for arg in expr.args)
        return f"{expr.qualified_name}({args})"
    if isinstance(expr, ast.StructLiteral):
        fields = ", ".join(f"{f.name}: {format_expr(f.value)}" for f in expr.fields)
        return f"{expr.type_name} {{ {fields} }}"
    return "<invalid expr>"


def format_stmt(stmt: ast.Stmt, indent: int) -> List[str]:
    pad = "  " * indent
    if isinstance(stmt, ast.LetStmt):
        annotation = f": {stmt.type_expr.name}" if stmt.type_expr else ""
        return [f"{pad}let {stmt.name}{annotation} = {format_expr(stmt.value)}"]
    if isinstance(stmt, ast.AssignStmt):
        op = f"{stmt.op}=" if stmt.op else "="
        return [f"{pad}{format_expr(stmt.target)} {op} {format_expr(stmt.value)}"]
    if isinstance(stmt, ast.ExprStmt):
        return [f"{pad}{format_expr(stmt.value)}"]
    if isinstance(stmt, ast.ReturnStmt):
        if stmt.value is None:
            return [f"{pad}return"]
        return [f"{pad}return {format_expr(stmt.value)}"]
    if isinstance(stmt, ast.IfStmt):
        lines = [f"{pad}if {format_expr(stmt.condition)}"]
        lines.extend(format_block(stmt.then_block, indent + 1))
        if stmt.else_block is not None:
            lines.append(f"{pad}else")
            lines.extend(format_block(stmt.else_block, indent + 1))
        return lines
    if isinstance(stmt, ast.WhileStmt):
        return [f"{pad}while {format_expr(stmt.condition)}"] + format_block(stmt.body, indent + 1)
    if isinstance(stmt, ast.ForRangeStmt):
        header = f"{pad}for {stmt.var} in {format_expr(stmt.start)}..{format_expr(stmt.end)}"
        return [header] + format_block(stmt.body, indent + 1)
    return [f"{pad}<invalid stmt>"]


def format_block(block: ast.Block, indent: int) -> List[str]:
    lines: List[str] = []
    for stmt in block.statements:
        lines.extend(format_stmt(stmt, indent))
    return lines


def format_function(fn: ast.FunctionDef, indent: int = 0) -> str:
    pad = "  " * indent
    params = ", ".join(f"{p.name}: {p.type_expr.name}" for p in fn.params)
    ret = f": {fn.return_type.name}" if fn.return_type else ""
    header = f"{pad}proc {fn.name}({params}){ret}"
    return "\n".join([header] + format_block(fn.body, indent + 1))


def format_program(prog: ast.Program) -> str:
    parts: List[str] = []
    for struct in prog.structs:
        fields = ", ".join(f"{f.name}: {f.type_expr.name}" for f in struct.fields)
        parts.append(f"struct {struct.name} {{ {fields} }}")
    for impl in prog.impls:
        body = "\n".join(format_function(fn, indent=1) for fn in impl.functions)
        parts.append(f"impl {impl.type_name}\n{body}" if body else f"impl {impl.type_name}")
    for fn in prog.functions:
        parts.append(format_function(fn))
    return "\n\n".join(parts)
