"""Read grammars written in the lalrgen description format.

    # A tiny calculator.
    @grammar Calc;
    @header { import operator }

    WS : "[ \\t\\n]+" @skip;
    NUM : "[0-9]+";
    PLUS : "\\+";

    expr @returns int : expr PLUS NUM { $0 + int($2.text) }
                      | NUM { int($0.text) }
                      ;

A file starts with `@grammar NAME;`, and then has any number of
declarations:

- `@header { ... }`: Python code that runs before any action is defined.
- `@start NAME;`: the start rule. If there isn't one, the first rule is it.
- `NAME : "regex" [@skip];`: a terminal. Terminals are matched in the order
  they are declared, so keywords go before identifiers.
- `NAME @returns TYPE : symbols { code } | symbols { code } ... ;`: the
  productions of a nonterminal. An alternative with no symbols is an empty
  production. TYPE is a name, or a name with bracketed type arguments like
  `list[str]`.

The format is parsed by a parser that lalrgen itself generates from the
grammar below, the first time it's needed.
"""

import dataclasses
import functools
import pathlib
import textwrap
import typing

from .grammar import Grammar, Rule, StarterRule, Terminal
from .runtime import GeneratedParser


@dataclasses.dataclass(frozen=True)
class Header:
    code: str


@dataclasses.dataclass(frozen=True)
class StartDeclaration:
    name: str


@dataclasses.dataclass(frozen=True)
class RuleDeclaration:
    name: str
    returns: str
    alternatives: typing.Tuple[typing.Tuple[typing.Tuple[str, ...], str], ...]


Declaration = Header | StartDeclaration | Terminal | RuleDeclaration


@dataclasses.dataclass(frozen=True)
class Description:
    name: str
    declarations: typing.Tuple[Declaration, ...]

    def to_grammar(self) -> Grammar:
        headers = []
        terminals = []
        rules = []
        start = None
        first_rule = None
        for declaration in self.declarations:
            match declaration:
                case Header(code=code):
                    headers.append(code)
                case StartDeclaration(name=name):
                    start = name
                case Terminal():
                    terminals.append(declaration)
                case RuleDeclaration(name=name, returns=returns, alternatives=alternatives):
                    if first_rule is None:
                        first_rule = name
                    for symbols, code in alternatives:
                        rules.append(StarterRule(Rule(name, symbols), code, returns))
                case _:
                    typing.assert_never(declaration)

        if start is None:
            start = first_rule or ""

        return Grammar(
            rules=rules,
            terminals=terminals,
            start=start,
            name=self.name,
            header="\n\n".join(headers),
        )


def unquote(text: str) -> str:
    """The regex inside a quoted string. Only `\\"` is an escape; every other
    backslash belongs to the regex."""
    return text[1:-1].replace('\\"', '"')


def strip_code(text: str) -> str:
    """The code inside `{ ... }`. Blocks of more than one line should start on
    the line after the opening brace."""
    return textwrap.dedent(text[1:-1].strip("\n")).strip()


_HEADER = """
from lalrgen.grammar import Terminal
from lalrgen.reader import (
    Description,
    Header,
    RuleDeclaration,
    StartDeclaration,
    strip_code,
    unquote,
)
"""

_TERMINALS = [
    Terminal("WS", r"[ \t\r\n]+", skip=True),
    Terminal("COMMENT", r"#[^\n]*", skip=True),
    Terminal.literal("GRAMMAR", "@grammar"),
    Terminal.literal("HEADER", "@header"),
    Terminal.literal("AT_START", "@start"),
    Terminal.literal("RETURNS", "@returns"),
    Terminal.literal("SKIP", "@skip"),
    Terminal("NAME", r"[A-Za-z_][A-Za-z0-9_.]*"),
    Terminal("STRING", r'"(?:[^"\\\n]|\\.)*"'),
    # Braces may nest two deep inside action code.
    Terminal("CODE", r"\{(?:[^{}]|\{(?:[^{}]|\{[^{}]*\})*\})*\}"),
    Terminal.literal("COLON", ":"),
    Terminal.literal("SEMICOLON", ";"),
    Terminal.literal("OR", "|"),
    Terminal.literal("COMMA", ","),
    Terminal.literal("LBRACKET", "["),
    Terminal.literal("RBRACKET", "]"),
]


def _rule(name: str, symbols: str, code: str, returns: str) -> StarterRule:
    return StarterRule(Rule(name, tuple(symbols.split())), code, returns)


_RULES = [
    _rule("description", "grammar declarations", "Description($0, tuple($1))", "Description"),
    _rule("grammar", "GRAMMAR NAME SEMICOLON", "$1.text", "str"),
    _rule("declarations", "declarations declaration", "$0 + [$1]", "list[Declaration]"),
    _rule("declarations", "", "[]", "list[Declaration]"),
    _rule("declaration", "HEADER CODE", "Header(strip_code($1.text))", "Declaration"),
    _rule("declaration", "AT_START NAME SEMICOLON", "StartDeclaration($1.text)", "Declaration"),
    _rule(
        "declaration",
        "NAME COLON STRING flags SEMICOLON",
        "Terminal($0.text, unquote($2.text), $3)",
        "Declaration",
    ),
    _rule(
        "declaration",
        "NAME RETURNS type COLON alternatives SEMICOLON",
        "RuleDeclaration($0.text, $2, tuple($4))",
        "Declaration",
    ),
    _rule("flags", "SKIP", "True", "bool"),
    _rule("flags", "", "False", "bool"),
    _rule("type", "NAME", "$0.text", "str"),
    _rule("type", "NAME LBRACKET types RBRACKET", '$0.text + "[" + $2 + "]"', "str"),
    _rule("types", "type", "$0", "str"),
    _rule("types", "types COMMA type", '$0 + ", " + $2', "str"),
    _rule("alternatives", "alternative", "[$0]", "list"),
    _rule("alternatives", "alternatives OR alternative", "$0 + [$2]", "list"),
    _rule("alternative", "names CODE", "(tuple($0), strip_code($1.text))", "tuple"),
    _rule("names", "names NAME", "$0 + [$1.text]", "list[str]"),
    _rule("names", "", "[]", "list[str]"),
]

DESCRIPTION_GRAMMAR = Grammar(
    rules=_RULES,
    terminals=_TERMINALS,
    start="description",
    name="description",
    header=_HEADER,
)


@functools.cache
def description_parser() -> GeneratedParser:
    return DESCRIPTION_GRAMMAR.compile()


def read_grammar(source: str | typing.TextIO) -> Grammar:
    """Parse a grammar description into a Grammar.

    Malformed descriptions raise the runtime's LexicalError or
    ParseSyntaxError; a well-formed description of a broken grammar is
    only caught when the grammar is validated or built.
    """
    description = description_parser().parse(source)
    return description.to_grammar()


def read_grammar_file(path: str | pathlib.Path) -> Grammar:
    with open(path, "r", encoding="utf-8") as file:
        return read_grammar(file)
