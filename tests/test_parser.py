from __future__ import annotations

import pytest

from metalang import ast
from metalang.errors import LexError, ParseError
from metalang.parser import parse_program


def _main_body(body: str) -> tuple:
    prog = parse_program(f"proc main() {{\n{body}\n}}")
    return prog.functions[0].body.statements


def test_items_are_collected_in_order() -> None:
    prog = parse_program(
        """
struct Car {
    make: String,
    year: i32,
}

impl Car {
    proc new(make: String, year: i32): Car {
        return Car { make: make, year: year };
    }
}

proc main(): i32 {
    return 0;
}
"""
    )
    assert [s.name for s in prog.structs] == ["Car"]
    assert [(f.name, f.type_expr.name) for f in prog.structs[0].fields] == [("make", "String"), ("year", "i32")]
    assert prog.impls[0].type_name == "Car"
    new = prog.impls[0].functions[0]
    assert new.qualified_name == "Car::new"
    assert [p.name for p in new.params] == ["make", "year"]
    assert new.return_type.name == "Car"
    main = prog.functions[0]
    assert main.name == "main"
    assert main.owner is None
    assert main.return_type.name == "i32"


def test_procedure_without_return_type() -> None:
    prog = parse_program("proc main() { }")
    assert prog.functions[0].return_type is None
    assert prog.functions[0].body.statements == ()


def test_precedence_multiplicative_over_additive_over_comparison() -> None:
    (stmt,) = _main_body("let ok = 1 + 2 * 3 < 10;")
    cmp = stmt.value
    assert isinstance(cmp, ast.Binary) and cmp.op == "<"
    add = cmp.left
    assert isinstance(add, ast.Binary) and add.op == "+"
    assert isinstance(add.right, ast.Binary) and add.right.op == "*"
    assert cmp.right == ast.Literal(loc=cmp.right.loc, value=10)


def test_additive_is_left_associative() -> None:
    (stmt,) = _main_body("let n = 10 - 3 - 2;")
    outer = stmt.value
    assert outer.op == "-"
    assert isinstance(outer.left, ast.Binary)
    assert outer.right.value == 2


def test_negative_literal_is_folded() -> None:
    (stmt,) = _main_body("let n = -2147483648;")
    assert isinstance(stmt.value, ast.Literal)
    assert stmt.value.value == -2147483648


def test_negation_of_expression_stays_unary() -> None:
    (stmt,) = _main_body("let n = -x;")
    assert isinstance(stmt.value, ast.Unary)
    assert stmt.value.operand == ast.Name(loc=stmt.value.operand.loc, ident="x")


def test_let_with_annotation() -> None:
    (stmt,) = _main_body('let s: String = "hi";')
    assert isinstance(stmt, ast.LetStmt)
    assert stmt.type_expr.name == "String"
    assert stmt.value.value == "hi"


def test_field_assignment_and_compound_assignment() -> None:
    plain, plus, minus = _main_body("car.engine.power = 5;\ncar.year += 1;\nn -= 2;")
    assert isinstance(plain, ast.AssignStmt) and plain.op is None
    assert isinstance(plain.target, ast.Attr) and plain.target.attr == "power"
    assert plain.target.value.attr == "engine"
    assert plus.op == "+" and plus.target.attr == "year"
    assert minus.op == "-" and minus.target == ast.Name(loc=minus.target.loc, ident="n")


def test_if_condition_does_not_swallow_block() -> None:
    (stmt,) = _main_body("if year == limit { year = 0; }")
    assert isinstance(stmt, ast.IfStmt)
    assert stmt.condition.op == "=="
    assert stmt.condition.right == ast.Name(loc=stmt.condition.right.loc, ident="limit")
    assert len(stmt.then_block.statements) == 1
    assert stmt.else_block is None


def test_else_if_chain_nests_if_in_else_block() -> None:
    (stmt,) = _main_body("if a < 0 { x = 1; } else if a == 0 { x = 2; } else { x = 3; }")
    nested = stmt.else_block.statements[0]
    assert isinstance(nested, ast.IfStmt)
    assert nested.condition.op == "=="
    assert len(nested.else_block.statements) == 1


def test_while_and_for_range() -> None:
    loop, rng = _main_body("while year < 2023 { year += 1; }\nfor i in lo..hi + 1 { print(i); }")
    assert isinstance(loop, ast.WhileStmt)
    assert isinstance(rng, ast.ForRangeStmt)
    assert rng.var == "i"
    assert rng.start == ast.Name(loc=rng.start.loc, ident="lo")
    assert isinstance(rng.end, ast.Binary) and rng.end.op == "+"


def test_calls_free_and_associated() -> None:
    free, assoc = _main_body('print(1, 2);\nlet c = Car::new("Honda", 2010);')
    assert free.value.name == "print" and free.value.type_name is None
    assert len(free.value.args) == 2
    call = assoc.value
    assert call.type_name == "Car" and call.name == "new"
    assert call.qualified_name == "Car::new"
    assert [a.value for a in call.args] == ["Honda", 2010]


def test_struct_literal_fields_keep_source_order() -> None:
    (stmt,) = _main_body('let p = Person { age: 22, name: "Jack" };')
    lit = stmt.value
    assert isinstance(lit, ast.StructLiteral)
    assert [f.name for f in lit.fields] == ["age", "name"]


def test_return_forms() -> None:
    bare, value = _main_body("return;\nreturn 1;")
    assert bare.value is None
    assert value.value.value == 1


def test_positions_are_one_based() -> None:
    prog = parse_program("proc main() {\n    let x = 1;\n}")
    stmt = prog.functions[0].body.statements[0]
    assert (stmt.loc.line, stmt.loc.column) == (2, 5)
    assert (prog.functions[0].loc.line, prog.functions[0].loc.column) == (1, 6)


def test_missing_semicolon_reports_expected_and_found() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_program("proc main() {\n    let x = 1\n}")
    err = excinfo.value
    assert err.found == "'}'"
    assert "';'" in err.expected
    assert (err.position.line, err.position.column) == (3, 1)


def test_unexpected_end_of_input() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_program("proc main() {")
    assert excinfo.value.found == "end of input"


def test_bare_struct_literal_in_condition_is_rejected() -> None:
    with pytest.raises(ParseError):
        parse_program("proc main() { if p == Point { x: 1 } { } }")


def test_parenthesised_struct_literal_in_condition_is_accepted() -> None:
    prog = parse_program("proc main() { if p == (Point { x: 1 }) { } }")
    cond = prog.functions[0].body.statements[0].condition
    assert isinstance(cond.right, ast.StructLiteral)


@pytest.mark.parametrize("target", ["1", "f()", "Car::new()", "a + b"])
def test_invalid_assignment_targets(target: str) -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_program(f"proc main() {{ {target} = 2; }}")
    assert "assignment target" in excinfo.value.message


def test_keywords_cannot_be_names() -> None:
    with pytest.raises(ParseError):
        parse_program("proc main() { let while = 1; }")


def test_lex_errors_surface_from_parser() -> None:
    with pytest.raises(LexError):
        parse_program("proc main() { let x = #; }")
