from __future__ import annotations

from typing import List, Optional

from lark import Token, Tree
from lark.exceptions import UnexpectedInput

from .ast import (
    AssignStmt,
    Attr,
    Binary,
    Block,
    Call,
    Expr,
    ExprStmt,
    FieldInit,
    ForRangeStmt,
    FunctionDef,
    IfStmt,
    ImplDef,
    LetStmt,
    Literal,
    Located,
    Name,
    Param,
    Program,
    ReturnStmt,
    Stmt,
    StructDef,
    StructField,
    StructLiteral,
    TypeExpr,
    Unary,
    WhileStmt,
)
from .errors import ParseError
from .lexer import LARK_PARSER, decode_string, translate_lark_error


def parse_program(source: str) -> Program:
    """Parse a translation unit. The first structural error aborts with ParseError."""
    try:
        tree = LARK_PARSER.parse(source)
    except UnexpectedInput as exc:
        raise translate_lark_error(exc) from None
    return _build_program(tree)


def _build_program(tree: Tree) -> Program:
    structs: List[StructDef] = []
    impls: List[ImplDef] = []
    functions: List[FunctionDef] = []
    for child in tree.children:
        if not isinstance(child, Tree):
            continue
        kind = _name(child)
        if kind == "struct_def":
            structs.append(_build_struct_def(child))
        elif kind == "impl_def":
            impls.append(_build_impl_def(child))
        elif kind == "proc_def":
            functions.append(_build_function(child))
    return Program(structs=tuple(structs), impls=tuple(impls), functions=tuple(functions))


def _build_struct_def(tree: Tree) -> StructDef:
    name_token = _first_token(tree, "NAME")
    fields = [
        _build_struct_field(child)
        for child in tree.children
        if isinstance(child, Tree) and _name(child) == "struct_field"
    ]
    return StructDef(name=name_token.value, fields=tuple(fields), loc=_loc_from_token(name_token))


def _build_struct_field(tree: Tree) -> StructField:
    name_token = _first_token(tree, "NAME")
    type_node = _first_tree(tree, "type_expr")
    return StructField(
        name=name_token.value,
        type_expr=_build_type_expr(type_node),
        loc=_loc_from_token(name_token),
    )


def _build_impl_def(tree: Tree) -> ImplDef:
    name_token = _first_token(tree, "NAME")
    functions = [
        _build_function(child, owner=name_token.value)
        for child in tree.children
        if isinstance(child, Tree) and _name(child) == "proc_def"
    ]
    return ImplDef(type_name=name_token.value, functions=tuple(functions), loc=_loc_from_token(name_token))


def _build_function(tree: Tree, owner: Optional[str] = None) -> FunctionDef:
    name_token = _first_token(tree, "NAME")
    params: List[Param] = []
    return_type: Optional[TypeExpr] = None
    body: Optional[Block] = None
    for child in tree.children:
        if not isinstance(child, Tree):
            continue
        kind = _name(child)
        if kind == "params":
            params = [_build_param(p) for p in child.children if isinstance(p, Tree)]
        elif kind == "type_expr":
            return_type = _build_type_expr(child)
        elif kind == "block":
            body = _build_block(child)
    if body is None:
        raise ValueError("procedure definition missing body")
    return FunctionDef(
        name=name_token.value,
        params=tuple(params),
        return_type=return_type,
        body=body,
        loc=_loc_from_token(name_token),
        owner=owner,
    )


def _build_param(tree: Tree) -> Param:
    name_token = _first_token(tree, "NAME")
    type_node = _first_tree(tree, "type_expr")
    return Param(name=name_token.value, type_expr=_build_type_expr(type_node), loc=_loc_from_token(name_token))


def _build_type_expr(tree: Tree) -> TypeExpr:
    name_token = _first_token(tree, "NAME")
    return TypeExpr(name=name_token.value, loc=_loc_from_token(name_token))


def _build_block(tree: Tree) -> Block:
    statements = [_build_stmt(child) for child in tree.children if isinstance(child, Tree)]
    return Block(statements=tuple(statements))


def _build_stmt(tree: Tree) -> Stmt:
    kind = _name(tree)
    if kind == "let_stmt":
        return _build_let_stmt(tree)
    if kind == "assign_stmt":
        return _build_assign_stmt(tree)
    if kind == "aug_assign_stmt":
        return _build_assign_stmt(tree)
    if kind == "expr_stmt":
        return ExprStmt(loc=_loc(tree), value=_build_expr(tree.children[0]))
    if kind == "return_stmt":
        return _build_return_stmt(tree)
    if kind == "if_stmt":
        return _build_if_stmt(tree)
    if kind == "while_stmt":
        return _build_while_stmt(tree)
    if kind == "for_stmt":
        return _build_for_stmt(tree)
    raise ValueError(f"Unsupported statement node: {kind}")


def _build_let_stmt(tree: Tree) -> LetStmt:
    name_token = _first_token(tree, "NAME")
    type_expr = None
    value_node = None
    for child in tree.children:
        if not isinstance(child, Tree):
            continue
        if _name(child) == "type_expr":
            type_expr = _build_type_expr(child)
        else:
            value_node = child
    if value_node is None:
        raise ValueError("let statement missing initializer")
    return LetStmt(
        loc=_loc(tree),
        name=name_token.value,
        type_expr=type_expr,
        value=_build_expr(value_node),
    )


def _build_assign_stmt(tree: Tree) -> AssignStmt:
    tree_children = [child for child in tree.children if isinstance(child, Tree)]
    op_token = next(
        (child for child in tree.children if isinstance(child, Token) and child.type in {"PLUSEQ", "MINUSEQ"}),
        None,
    )
    target = _build_assign_target(_build_expr(tree_children[0]))
    value = _build_expr(tree_children[1])
    op = op_token.value[0] if op_token is not None else None
    return AssignStmt(loc=_loc(tree), target=target, value=value, op=op)


def _build_assign_target(expr: Expr) -> Expr:
    node = expr
    while isinstance(node, Attr):
        node = node.value
    if not isinstance(node, Name):
        raise ParseError(
            expr.loc,
            frozenset({"identifier", "field access"}),
            "expression",
            message="assignment target must be a variable or a field of a variable",
        )
    return expr


def _build_return_stmt(tree: Tree) -> ReturnStmt:
    children = [child for child in tree.children if isinstance(child, Tree)]
    value = _build_expr(children[0]) if children else None
    return ReturnStmt(loc=_loc(tree), value=value)


def _build_if_stmt(tree: Tree) -> IfStmt:
    condition_node = None
    then_block_node = None
    else_block: Optional[Block] = None
    for child in tree.children:
        if not isinstance(child, Tree):
            continue
        name = _name(child)
        if condition_node is None:
            condition_node = child
            continue
        if then_block_node is None and name == "block":
            then_block_node = child
            continue
        if name == "else_clause":
            else_block = _build_else_clause(child)
    if condition_node is None or then_block_node is None:
        raise ValueError("malformed if statement")
    return IfStmt(
        loc=_loc(tree),
        condition=_build_expr(condition_node),
        then_block=_build_block(then_block_node),
        else_block=else_block,
    )


def _build_else_clause(tree: Tree) -> Block:
    branch = _first_tree(tree, None)
    if _name(branch) == "if_stmt":
        # `else if` is sugar for an else block holding a single if statement.
        return Block(statements=(_build_if_stmt(branch),))
    return _build_block(branch)


def _build_while_stmt(tree: Tree) -> WhileStmt:
    parts = [child for child in tree.children if isinstance(child, Tree)]
    return WhileStmt(loc=_loc(tree), condition=_build_expr(parts[0]), body=_build_block(parts[1]))


def _build_for_stmt(tree: Tree) -> ForRangeStmt:
    var_token = _first_token(tree, "NAME")
    parts = [child for child in tree.children if isinstance(child, Tree)]
    if len(parts) != 3:
        raise ValueError("for statement expects start, end and body")
    return ForRangeStmt(
        loc=_loc(tree),
        var=var_token.value,
        start=_build_expr(parts[0]),
        end=_build_expr(parts[1]),
        body=_build_block(parts[2]),
    )


def _build_expr(node) -> Expr:
    if not isinstance(node, Tree):
        raise TypeError(f"Unexpected node type: {type(node)}")
    name = _name(node)
    if name in {"binary", "comparison"}:
        return _build_binary(node)
    if name == "neg":
        return _build_neg(node)
    if name == "attr":
        base = _build_expr(node.children[0])
        attr_token = next(c for c in node.children[1:] if isinstance(c, Token) and c.type == "NAME")
        return Attr(loc=_loc_from_token(attr_token), value=base, attr=attr_token.value)
    if name == "var":
        token = node.children[0]
        return Name(loc=_loc_from_token(token), ident=token.value)
    if name == "int_lit":
        return Literal(loc=_loc(node), value=int(node.children[0].value))
    if name == "str_lit":
        return Literal(loc=_loc(node), value=decode_string(node.children[0]))
    if name == "true_lit":
        return Literal(loc=_loc(node), value=True)
    if name == "false_lit":
        return Literal(loc=_loc(node), value=False)
    if name == "call":
        return _build_call(node, associated=False)
    if name == "assoc_call":
        return _build_call(node, associated=True)
    if name == "struct_lit":
        return _build_struct_literal(node)
    raise ValueError(f"Unsupported expression node: {name}")


def _build_binary(tree: Tree) -> Binary:
    left_node, op_token, right_node = tree.children
    return Binary(
        loc=_loc_from_token(op_token),
        op=op_token.value,
        left=_build_expr(left_node),
        right=_build_expr(right_node),
    )


def _build_neg(tree: Tree) -> Expr:
    op_token, operand_node = tree.children
    operand = _build_expr(operand_node)
    loc = _loc_from_token(op_token)
    if isinstance(operand, Literal) and type(operand.value) is int:
        # Folded so that the most negative i32 is expressible as a literal.
        return Literal(loc=loc, value=-operand.value)
    return Unary(loc=loc, op="-", operand=operand)


def _build_call(tree: Tree, associated: bool) -> Call:
    names = [child for child in tree.children if isinstance(child, Token) and child.type == "NAME"]
    args_node = next((c for c in tree.children if isinstance(c, Tree) and _name(c) == "args"), None)
    args = [_build_expr(arg) for arg in args_node.children if isinstance(arg, Tree)] if args_node else []
    if associated:
        type_token, fn_token = names
        return Call(loc=_loc_from_token(type_token), name=fn_token.value, args=tuple(args), type_name=type_token.value)
    return Call(loc=_loc_from_token(names[0]), name=names[0].value, args=tuple(args))


def _build_struct_literal(tree: Tree) -> StructLiteral:
    name_token = _first_token(tree, "NAME")
    fields = []
    for child in tree.children:
        if isinstance(child, Tree) and _name(child) == "field_init":
            field_token = _first_token(child, "NAME")
            value_node = _first_tree(child, None)
            fields.append(
                FieldInit(name=field_token.value, value=_build_expr(value_node), loc=_loc_from_token(field_token))
            )
    return StructLiteral(loc=_loc_from_token(name_token), type_name=name_token.value, fields=tuple(fields))


def _first_token(tree: Tree, ttype: str) -> Token:
    return next(child for child in tree.children if isinstance(child, Token) and child.type == ttype)


def _first_tree(tree: Tree, name: Optional[str]) -> Tree:
    return next(
        child for child in tree.children if isinstance(child, Tree) and (name is None or _name(child) == name)
    )


def _loc(tree: Tree) -> Located:
    meta = tree.meta
    return Located(line=meta.line, column=meta.column)


def _loc_from_token(token: Token) -> Located:
    return Located(line=token.line, column=token.column)


def _name(node: Tree | Token) -> str:
    if isinstance(node, Tree):
        data = node.data
        if isinstance(data, Token):
            return data.value
        return data
    if isinstance(node, Token):
        return node.type
    return str(node)
