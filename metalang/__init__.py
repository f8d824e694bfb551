"""
metalang: interpreter for a small struct-oriented scripting language.

Pipeline:
  lexer   : source text -> tokens (lark terminals, see grammar.lark)
  parser  : tokens -> AST (ast.Program)
  checker : AST -> CheckedProgram (symbol table + static validation)
  interp  : CheckedProgram -> result of `main`
"""

from .errors import MetaError

__all__ = ["MetaError", "run_source"]


def run_source(source: str, stdout=None, options=None):
    """Parse, check and run `source`, returning the value produced by `main`."""
    from .checker import Checker
    from .interp import Interpreter
    from .parser import parse_program

    checked = Checker().check(parse_program(source))
    return Interpreter(checked, stdout=stdout, options=options).run()
