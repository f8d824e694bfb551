"""
Lexical layer.

The token set is defined once, in grammar.lark; `tokenize` runs lark's basic
lexer over it, and the parser drives the very same lexer, so the token
stream seen here is the one the parser consumes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from lark import Lark
from lark import Token as LarkToken
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from .ast import Located
from .errors import LexError, ParseError

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

LARK_PARSER = Lark(
    _GRAMMAR_SRC,
    parser="lalr",
    lexer="basic",
    start="program",
    propagate_positions=True,
    maybe_placeholders=False,
)

KEYWORDS = frozenset(
    {"STRUCT", "IMPL", "PROC", "LET", "IF", "ELSE", "WHILE", "FOR", "IN", "RETURN"}
)
LITERALS = frozenset({"INT", "STRING", "TRUE", "FALSE"})
OPERATORS = frozenset(
    {"==", "!=", "<=", ">=", "<", ">", "+", "-", "*", "/", "=", "+=", "-=", "::", "..", "."}
)

_TERMINAL_DESCRIPTIONS = {
    "NAME": "identifier",
    "INT": "integer literal",
    "STRING": "string literal",
    "COMP_OP": "comparison operator",
    "$END": "end of input",
}

_ESCAPE_RE = re.compile(r"\\(.)")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", '"': '"', "\\": "\\"}


@dataclass(frozen=True)
class Token:
    kind: str  # identifier / keyword / literal / operator / punctuation / eof
    text: str
    value: object
    loc: Located

    def __str__(self) -> str:
        return f"<{self.loc} {self.kind}> {self.text}"


def tokenize(source: str) -> Iterator[Token]:
    """Lazily lex `source`; the last token is always of kind "eof"."""
    end = Located(line=1, column=1)
    stream = LARK_PARSER.lex(source)
    while True:
        try:
            raw = next(stream)
        except StopIteration:
            break
        except UnexpectedInput as exc:
            raise translate_lark_error(exc) from None
        end = Located(line=raw.end_line or raw.line, column=raw.end_column or raw.column)
        yield convert_token(raw)
    yield Token(kind="eof", text="", value=None, loc=end)


def convert_token(raw: LarkToken) -> Token:
    loc = Located(line=raw.line, column=raw.column)
    if raw.type == "NAME":
        return Token(kind="identifier", text=raw.value, value=raw.value, loc=loc)
    if raw.type in KEYWORDS:
        return Token(kind="keyword", text=raw.value, value=raw.value, loc=loc)
    if raw.type in LITERALS:
        return Token(kind="literal", text=raw.value, value=literal_value(raw), loc=loc)
    if raw.value in OPERATORS:
        return Token(kind="operator", text=raw.value, value=raw.value, loc=loc)
    return Token(kind="punctuation", text=raw.value, value=raw.value, loc=loc)


def literal_value(raw: LarkToken) -> object:
    if raw.type == "INT":
        return int(raw.value)
    if raw.type == "TRUE":
        return True
    if raw.type == "FALSE":
        return False
    return decode_string(raw)


def decode_string(raw: LarkToken) -> str:
    content = raw.value[1:-1]  # strip quotes
    if "\\" not in content:
        return content

    def _replace(match: re.Match) -> str:
        escape = match.group(1)
        if escape not in _ESCAPES:
            column = raw.column + 1 + match.start()
            raise LexError(f"unknown escape sequence '\\{escape}'", Located(line=raw.line, column=column))
        return _ESCAPES[escape]

    return _ESCAPE_RE.sub(_replace, content)


def describe_terminal(name: str) -> str:
    if name in _TERMINAL_DESCRIPTIONS:
        return _TERMINAL_DESCRIPTIONS[name]
    try:
        terminal = LARK_PARSER.get_terminal(name)
    except KeyError:
        return name
    return f"'{terminal.pattern.value}'"


def translate_lark_error(exc: UnexpectedInput) -> LexError | ParseError:
    """Map a lark failure onto the LexError / ParseError taxonomy."""
    loc = None
    if exc.line not in (None, -1):
        loc = Located(line=exc.line, column=exc.column)
    if isinstance(exc, UnexpectedCharacters):
        if exc.char == '"':
            return LexError("unterminated string literal", loc)
        return LexError(f"illegal character {exc.char!r}", loc)
    expected = frozenset(describe_terminal(name) for name in (getattr(exc, "expected", None) or ()))
    if isinstance(exc, UnexpectedToken):
        token = exc.token
        if token.type == "$END":
            return ParseError(loc, expected, "end of input")
        return ParseError(loc, expected, f"'{token.value}'")
    if isinstance(exc, UnexpectedEOF):
        return ParseError(loc, expected, "end of input")
    return ParseError(loc, expected, str(exc))
