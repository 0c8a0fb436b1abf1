"""The grammar model: terminals, productions and the semantic actions bound to
them.

A grammar is a flat list of productions, each one wrapped in a `StarterRule`
that carries the action code to run when the production is reduced and the
name of the type that code returns:

    grammar = Grammar(
        rules=[
            StarterRule(Rule("E", ("E", "+", "T")), "$0 + $2", "int"),
            StarterRule(Rule("E", ("T",)), "$0", "int"),
            StarterRule(Rule("T", ("NUM",)), "int($0.text)", "int"),
        ],
        terminals=[
            Terminal.literal("+", "+"),
            Terminal("NUM", "[0-9]+"),
            Terminal("WS", r"\\s+", skip=True),
        ],
        start="E",
    )

The index of a production in `rules` is its identity everywhere downstream:
`Reduce` actions in the parse table carry it, and the compiled actions are
indexed by it.
"""

import dataclasses
import logging
import re
import typing

import regex

# The end-of-stream marker. Every lexer produces exactly one of these, last.
END = "$"

# The synthetic start symbol that wraps the user's start rule.
START = "__start"

# Marks an empty production when written out explicitly. Internally an empty
# production is just an empty tuple.
EPSILON = "__epsilon"

# Positional placeholders in action code: `$0` is the first matched symbol.
PLACEHOLDER = re.compile(r"\$(\d+)")


class GeneratorError(Exception):
    """Base class of everything that can go wrong while turning a grammar into
    tables."""


class GrammarError(GeneratorError):
    pass


class ReservedSymbolError(GrammarError):
    pass


class DuplicateSymbolError(GrammarError):
    pass


class DuplicateRuleError(GrammarError):
    pass


class MissingStartRuleError(GrammarError):
    pass


class UndefinedSymbolError(GrammarError):
    pass


class InconsistentReturnTypeError(GrammarError):
    pass


class EmptyActionError(GrammarError):
    pass


class ActionPlaceholderError(GrammarError):
    pass


class ActionCompileError(GrammarError):
    pass


def is_reserved(name: str) -> bool:
    return name.startswith("__") or name == END


@dataclasses.dataclass(frozen=True)
class Terminal:
    """A token: a name, a regular expression, and whether the parser should
    ever see it. Skipped terminals (whitespace, comments) are matched by the
    lexer and then thrown away.
    """

    name: str
    pattern: str
    skip: bool = False

    @classmethod
    def literal(cls, name: str, text: str, skip: bool = False) -> "Terminal":
        return cls(name, regex.escape(text), skip)


@dataclasses.dataclass(frozen=True)
class Rule:
    """A production, with a pointer that marks how much of it has been seen.

    When the pointer is somewhere other than zero this is what the textbooks
    call an "item". Rules are values: two rules with the same name, symbols
    and pointer are the same rule, and `advance` makes a new one rather than
    moving the pointer in place.
    """

    name: str
    production: typing.Tuple[str, ...]
    pointer: int = 0

    def __post_init__(self):
        production = tuple(self.production)
        if production == (EPSILON,):
            production = ()
        object.__setattr__(self, "production", production)

    @property
    def at_end(self) -> bool:
        return self.pointer == len(self.production)

    @property
    def pointed(self) -> str | None:
        """The symbol right after the pointer, if there is one."""
        if self.at_end:
            return None
        return self.production[self.pointer]

    def advance(self) -> "Rule":
        assert not self.at_end, f"Cannot advance past the end of {self}"
        return dataclasses.replace(self, pointer=self.pointer + 1)

    def rewind(self) -> "Rule":
        return dataclasses.replace(self, pointer=0)

    def __str__(self) -> str:
        bits = [("* " + sym) if i == self.pointer else sym for i, sym in enumerate(self.production)]
        if self.at_end:
            bits.append("*")
        return f"{self.name} -> {' '.join(bits)}"

    def format(self) -> str:
        """Format without the pointer, the way it was written."""
        if len(self.production) == 0:
            return f"{self.name} -> {EPSILON}"
        return f"{self.name} -> {' '.join(self.production)}"


@dataclasses.dataclass(frozen=True)
class StarterRule:
    rule: Rule
    code: str
    returns: str


class Grammar:
    """A complete grammar description: productions with their actions, the
    terminals, and the name of the rule to start from.

    `name` and `header` only matter to the code emitter: `header` is Python
    source that runs before any action is defined, usually imports the
    actions need.
    """

    rules: list[StarterRule]
    terminals: list[Terminal]
    start: str
    name: str
    header: str

    def __init__(
        self,
        rules: typing.Iterable[StarterRule],
        terminals: typing.Iterable[Terminal],
        start: str,
        name: str = "grammar",
        header: str = "",
    ):
        self.rules = list(rules)
        self.terminals = list(terminals)
        self.start = start
        self.name = name
        self.header = header

    def terminal_names(self) -> list[str]:
        """The names of the terminals the parser can see, in declaration
        order."""
        return [t.name for t in self.terminals if not t.skip]

    def nonterminal_names(self) -> list[str]:
        names: dict[str, None] = {}
        for starter in self.rules:
            names[starter.rule.name] = None
        return list(names)

    def productions(self) -> dict[str, list[Rule]]:
        """All of the productions, grouped by the name they define."""
        result: dict[str, list[Rule]] = {}
        for starter in self.rules:
            result.setdefault(starter.rule.name, []).append(starter.rule.rewind())
        return result

    def validate(self):
        """Check the grammar for mistakes that would otherwise turn into
        confusing tables, or no tables at all.

        Raises a GrammarError subclass naming the first problem found.
        """
        for name in [t.name for t in self.terminals] + self.nonterminal_names():
            if is_reserved(name):
                raise ReservedSymbolError(
                    f"'{name}' is a reserved name: names may not start with '__' or be '{END}'"
                )

        declared: set[str] = set()
        for terminal in self.terminals:
            if terminal.name in declared:
                raise DuplicateSymbolError(f"The terminal '{terminal.name}' is declared twice")
            declared.add(terminal.name)
        for name in self.nonterminal_names():
            if name in declared:
                raise DuplicateSymbolError(f"'{name}' is declared as both a terminal and a rule")

        seen: set[Rule] = set()
        for starter in self.rules:
            rule = starter.rule.rewind()
            if rule in seen:
                raise DuplicateRuleError(f"The production '{rule.format()}' is declared twice")
            seen.add(rule)

        nonterminals = set(self.nonterminal_names())
        if self.start not in nonterminals:
            raise MissingStartRuleError(f"No production defines the start rule '{self.start}'")

        terminals = set(self.terminal_names())
        skipped = {t.name for t in self.terminals if t.skip}
        for starter in self.rules:
            for symbol in starter.rule.production:
                if symbol in terminals or symbol in nonterminals:
                    continue
                if symbol in skipped:
                    raise UndefinedSymbolError(
                        f"'{starter.rule.format()}' refers to '{symbol}', which is skipped by "
                        "the lexer and never reaches the parser"
                    )
                raise UndefinedSymbolError(
                    f"'{starter.rule.format()}' refers to '{symbol}', which is neither a "
                    "terminal nor a rule"
                )

        returns: dict[str, StarterRule] = {}
        for starter in self.rules:
            first = returns.setdefault(starter.rule.name, starter)
            if first.returns != starter.returns:
                raise InconsistentReturnTypeError(
                    f"'{starter.rule.name}' returns '{first.returns}' in "
                    f"'{first.rule.format()}' but '{starter.returns}' in "
                    f"'{starter.rule.format()}'"
                )

        for starter in self.rules:
            if starter.code.strip() == "":
                raise EmptyActionError(f"'{starter.rule.format()}' has no action code")

            count = len(starter.rule.production)
            for match in PLACEHOLDER.finditer(starter.code):
                if int(match.group(1)) >= count:
                    raise ActionPlaceholderError(
                        f"The action for '{starter.rule.format()}' refers to {match.group(0)} "
                        f"but the production only has {count} symbol(s)"
                    )

    def build_table(self, logger: logging.Logger | None = None):
        """Construct the parse table for this grammar. See
        `lalrgen.generator.ParserGenerator` for the details."""
        from .generator import ParserGenerator

        return ParserGenerator(self, logger=logger).build().table

    def compile(self, logger: logging.Logger | None = None):
        """Build the tables and the actions, and return a parser that is ready
        to go."""
        from .actions import compile_actions
        from .runtime import GeneratedParser

        table = self.build_table(logger=logger)
        return GeneratedParser(self.terminals, table, compile_actions(self))
