from __future__ import annotations

import io

import pytest

from metalang import run_source
from metalang.checker import Checker
from metalang.errors import (
    ArithmeticError,
    CallDepthError,
    TypeMismatchError,
    UnknownFieldError,
    UnknownFunctionError,
)
from metalang.interp import Interpreter, RunOptions
from metalang.parser import parse_program
from metalang.runtime import StructValue, format_value

CAR = """
struct Car {
    make: String,
    model: String,
    year: i32,
}

impl Car {
    proc new(make: String, model: String, year: i32): Car {
        return Car { make: make, model: model, year: year };
    }
}
"""


def _interpreter(src: str, **kwargs) -> Interpreter:
    return Interpreter(Checker().check(parse_program(src)), **kwargs)


def _run(src: str) -> tuple[object, str]:
    out = io.StringIO()
    result = run_source(src, stdout=out)
    return result, out.getvalue()


def _run_main(body: str, prelude: str = CAR) -> tuple[object, str]:
    return _run(f"{prelude}\nproc main(): i32 {{\n{body}\n}}\n")


def test_main_result_is_returned() -> None:
    result, out = _run("proc main(): i32 { print(\"hi\"); return 7; }")
    assert result == 7
    assert out == "hi\n"


def test_main_without_return_type_yields_none() -> None:
    result, _ = _run("proc main() { }")
    assert result is None


def test_main_falling_off_yields_zero() -> None:
    result, _ = _run("proc main(): i32 { let x = 1; }")
    assert result == 0


def test_let_copy_is_independent() -> None:
    result, out = _run_main(
        'let a = Car::new("Toyota", "Camry", 2023);\n'
        "let b = a;\n"
        'b.make = "Honda";\n'
        "b.year = 1999;\n"
        "print(a);\n"
        "print(b);\n"
        "return a.year;"
    )
    assert result == 2023
    assert out.splitlines() == [
        'Car { make: "Toyota", model: "Camry", year: 2023 }',
        'Car { make: "Honda", model: "Camry", year: 1999 }',
    ]


def test_parameter_mutation_is_not_visible_to_caller() -> None:
    result, out = _run(
        """
struct Person { name: String, age: i32, }

proc rename(p: Person): Person {
    p.name = "Jill";
    p.age = 0;
    return p;
}

proc main(): i32 {
    let person = Person { name: "Jack", age: 22 };
    person.age = 23;
    let other = rename(person);
    print(person.name);
    print(other.name);
    return person.age;
}
"""
    )
    assert result == 23
    assert out == "Jack\nJill\n"


def test_nested_struct_field_assignment_copies() -> None:
    result, out = _run(
        """
struct Engine { power: i32, }
struct Car { engine: Engine, }

proc main(): i32 {
    let e = Engine { power: 100 };
    let car = Car { engine: e };
    car.engine.power += 50;
    let snapshot = car.engine;
    car.engine.power = 1;
    print(e.power);
    print(snapshot.power);
    return car.engine.power;
}
"""
    )
    assert result == 1
    assert out == "100\n150\n"


def test_struct_literal_round_trip() -> None:
    result, out = _run_main(
        'let c = Car { make: "Honda", model: "Accord", year: 2010 };\n'
        "print(c.make);\nprint(c.model);\nreturn c.year;"
    )
    assert result == 2010
    assert out == "Honda\nAccord\n"


@pytest.mark.parametrize("lo,hi", [(0, 5), (2010, 2024), (3, 3), (5, 2), (-3, 1)])
def test_for_range_iterates_half_open_interval(lo: int, hi: int) -> None:
    result, out = _run(
        f"""
proc main(): i32 {{
    let count = 0;
    for i in {lo}..{hi} {{
        print(i);
        count += 1;
    }}
    return count;
}}
"""
    )
    assert result == max(0, hi - lo)
    assert out.split() == [str(i) for i in range(lo, hi)]


def test_for_bounds_are_evaluated_once() -> None:
    result, out = _run(
        """
proc main(): i32 {
    let hi = 3;
    let count = 0;
    for i in 0..hi {
        hi += 1;
        count += 1;
    }
    return count;
}
"""
    )
    assert result == 3


def test_loop_variable_is_fresh_per_iteration() -> None:
    _, out = _run(
        """
proc main() {
    for i in 0..3 {
        i = i * 100;
        print(i);
    }
}
"""
    )
    assert out == "0\n100\n200\n"


def test_while_checks_before_first_iteration() -> None:
    result, out = _run_main(
        "let n = 10;\nwhile n < 5 {\nprint(n);\nn += 1;\n}\nreturn n;"
    )
    assert result == 10
    assert out == ""


def test_while_rechecks_condition_each_iteration() -> None:
    result, _ = _run_main(
        'let car = Car::new("Toyota", "Camry", 2023);\n'
        "car.year = 2010;\n"
        "if car.year == 2010 {\n"
        "    while car.year < 2023 {\n"
        "        car.year += 1;\n"
        "    }\n"
        "}\n"
        "return car.year;"
    )
    assert result == 2023


def test_fourteen_independent_cars() -> None:
    interp = _interpreter(CAR + "\nproc main() { }\n")
    cars = [interp.call_associated("Car", "new", "Honda", "Accord", year) for year in range(2010, 2024)]
    assert len(cars) == 14
    assert [c.get("year") for c in cars] == list(range(2010, 2024))
    assert all(c.get("make") == "Honda" and c.get("model") == "Accord" for c in cars)
    assert len({id(c) for c in cars}) == 14


def test_if_else_chain() -> None:
    src = """
proc sign(n: i32): i32 {
    if n < 0 {
        return -1;
    } else if n == 0 {
        return 0;
    } else {
        return 1;
    }
}

proc main() { }
"""
    interp = _interpreter(src)
    assert [interp.call("sign", n) for n in (-5, 0, 9)] == [-1, 0, 1]


def test_block_scope_is_popped() -> None:
    result, out = _run_main(
        "let x = 1;\nif true {\nlet x = 2;\nx += 10;\nprint(x);\n}\nreturn x;"
    )
    assert result == 1
    assert out == "12\n"


def test_return_inside_loop_unwinds_to_caller() -> None:
    src = """
proc first_over(limit: i32): i32 {
    for i in 0..100 {
        if i * i > limit {
            return i;
        }
    }
    return -1;
}

proc main() { }
"""
    interp = _interpreter(src)
    assert interp.call("first_over", 50) == 8
    assert interp.call("first_over", 100000) == -1


def test_struct_equality_compares_fields() -> None:
    result, _ = _run_main(
        'let a = Car::new("H", "A", 1);\n'
        "let b = a;\n"
        "let same = 0;\n"
        "if a == b { same += 1; }\n"
        "b.year = 2;\n"
        "if a != b { same += 1; }\n"
        "return same;"
    )
    assert result == 2


def test_arithmetic() -> None:
    result, out = _run_main(
        "print(7 / 2);\nprint(-7 / 2);\nprint(7 / -2);\nprint(2 - 5 * 3);\nreturn (1 + 2) * 3;"
    )
    assert result == 9
    assert out.split() == ["3", "-3", "-3", "-13"]


@pytest.mark.parametrize(
    "expr",
    ["2147483647 + 1", "-2147483648 - 1", "65536 * 65536", "-2147483648 / -1", "1 / 0"],
)
def test_arithmetic_errors(expr: str) -> None:
    with pytest.raises(ArithmeticError) as excinfo:
        _run_main(f"let x = {expr};\nreturn x;")
    assert excinfo.value.phase == "runtime"


def test_compound_assignment_overflow() -> None:
    with pytest.raises(ArithmeticError):
        _run_main("let x = 2147483640;\nwhile true {\nx += 1;\n}\nreturn x;")


def test_output_before_runtime_error_is_kept() -> None:
    out = io.StringIO()
    with pytest.raises(ArithmeticError):
        run_source('proc main(): i32 { print("before"); return 1 / 0; }', stdout=out)
    assert out.getvalue() == "before\n"


def test_unknown_associated_function_is_rejected_before_running() -> None:
    out = io.StringIO()
    with pytest.raises(UnknownFunctionError):
        run_source(
            CAR + '\nproc main() { print("side effect"); let c = Car::build(Car::new("a", "b", 1)); }',
            stdout=out,
        )
    assert out.getvalue() == ""


def test_call_associated_validates_name() -> None:
    interp = _interpreter(CAR + "\nproc main() { }\n")
    with pytest.raises(UnknownFunctionError) as excinfo:
        interp.call_associated("Car", "build", "Honda")
    assert excinfo.value.phase == "runtime"
    with pytest.raises(UnknownFunctionError):
        interp.call_associated("Truck", "new")
    with pytest.raises(UnknownFunctionError):
        interp.call("new")


def test_call_validates_host_arguments() -> None:
    interp = _interpreter(CAR + "\nproc main() { }\n")
    with pytest.raises(TypeMismatchError):
        interp.call_associated("Car", "new", "Honda", "Accord", "2010")
    with pytest.raises(TypeMismatchError):
        interp.call_associated("Car", "new", "Honda")


def test_missing_builtin_is_an_unknown_function() -> None:
    interp = _interpreter("proc main() {\n    print(1);\n}", builtins={})
    with pytest.raises(UnknownFunctionError) as excinfo:
        interp.run()
    assert excinfo.value.phase == "runtime"
    assert excinfo.value.loc.line == 2


def test_call_depth_limit() -> None:
    src = """
proc depth(n: i32): i32 {
    if n == 0 {
        return 0;
    }
    return 1 + depth(n - 1);
}

proc main() { }
"""
    interp = _interpreter(src)
    assert interp.call("depth", 30) == 30
    assert interp.call("depth", 100) == 100
    with pytest.raises(CallDepthError):
        interp.call("depth", 1000)
    shallow = _interpreter(src, options=RunOptions(max_call_depth=5))
    assert shallow.call("depth", 4) == 4
    with pytest.raises(CallDepthError):
        shallow.call("depth", 5)


def test_interpreter_is_reusable_after_failure() -> None:
    interp = _interpreter("proc div(a: i32, b: i32): i32 { return a / b; }\nproc main() { }")
    with pytest.raises(ArithmeticError):
        interp.call("div", 1, 0)
    assert interp.depth == 0
    assert interp.call("div", 9, 3) == 3


def test_runtime_field_access_is_revalidated() -> None:
    interp = _interpreter(CAR + "\nproc main() { }\n")
    with pytest.raises(UnknownFieldError):
        interp._resolve_attr(StructValue("Car", (("year", 1),)), "make", None)


def test_print_display_forms() -> None:
    _, out = _run_main('print(true);\nprint(false);\nprint("plain");\nprint(-4);\nreturn 0;')
    assert out == "true\nfalse\nplain\n-4\n"
    empty = StructValue.build("Unit", {}, [])
    assert format_value(empty) == "Unit {}"
    nested = StructValue.build("Outer", {"inner": StructValue.build("Inner", {"s": "x"}, ["s"])}, ["inner"])
    assert format_value(nested) == 'Outer { inner: Inner { s: "x" } }'


def test_struct_values_are_immutable_snapshots() -> None:
    car = StructValue.build("Car", {"year": 2010}, ["year"])
    newer = car.with_field("year", 2011)
    assert car.get("year") == 2010
    assert newer.get("year") == 2011
    with pytest.raises(KeyError):
        car.with_field("color", "red")
