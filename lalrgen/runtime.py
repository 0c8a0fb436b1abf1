"""The parts of a generated parser that run at parse time: the lexer, and the
shift-reduce engine that drives the parse table and runs the actions.

Nothing in here knows anything about how the tables were built; a generated
module is just tables and action functions handed to `GeneratedParser`.
"""

import collections
import dataclasses
import io
import logging
import typing

import regex

from .generator import Accept, Goto, ParseTable, Reduce, Shift
from .grammar import END, Terminal


@dataclasses.dataclass(frozen=True)
class Position:
    offset: int
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@dataclasses.dataclass(frozen=True)
class TokenValue:
    name: str
    text: str
    position: Position


class ParseError(Exception):
    """Something was wrong with the input. `position` says where."""

    message: str
    position: Position

    def __init__(self, message: str, position: Position):
        super().__init__(f"{position}: {message}")
        self.message = message
        self.position = position


class LexicalError(ParseError):
    text: str

    def __init__(self, message: str, position: Position, text: str):
        super().__init__(message, position)
        self.text = text


class InputReadError(LexicalError):
    pass


class ParseSyntaxError(ParseError):
    token: TokenValue | None
    expected: list[str]

    def __init__(
        self,
        message: str,
        position: Position,
        token: TokenValue | None = None,
        expected: typing.Iterable[str] = (),
    ):
        super().__init__(message, position)
        self.token = token
        self.expected = list(expected)


def _describe(name: str) -> str:
    if name == END:
        return "end of input"
    return f"'{name}'"


###############################################################################
# Lexer
###############################################################################
class Lexer:
    """A maximal-munch lexer.

    At every point the lexer looks for the longest run of characters that
    matches one of the terminals: it keeps reading while what it has is still
    the beginning of *some* match (which is what the `regex` library's partial
    matching tells us), remembers the longest complete match along the way,
    and gives back whatever it read past that. The lexeme then belongs to the
    first terminal whose pattern matches it, so when two terminals match the
    same text (a keyword and an identifier, say) the one declared first wins.

    Input is read a character at a time from a text stream; strings are
    wrapped in one. Skipped terminals are never returned, and once the input
    runs out every call returns the end-of-input token.
    """

    terminals: list[Terminal]
    position: Position

    def __init__(self, terminals: typing.Iterable[Terminal], source: str | typing.TextIO):
        if isinstance(source, str):
            source = io.StringIO(source)

        self.terminals = list(terminals)
        self.position = Position(0, 1, 1)

        self._patterns = [regex.compile(t.pattern) for t in self.terminals]
        self._combined = regex.compile("|".join(f"(?:{t.pattern})" for t in self.terminals))
        self._source = source
        self._pending: collections.deque[str] = collections.deque()
        self._exhausted = False

    def __iter__(self) -> typing.Iterator[TokenValue]:
        while True:
            token = self.next_token()
            yield token
            if token.name == END:
                return

    def next_token(self) -> TokenValue:
        while True:
            start = self.position
            if self._peek(0) is None:
                return TokenValue(END, "", start)

            text = self._consume(self._munch())
            terminal = self._classify(text, start)
            if not terminal.skip:
                return TokenValue(terminal.name, text, start)

    def _munch(self) -> int:
        """Find the length of the longest match at the current position."""
        text = ""
        longest = 0
        while (char := self._peek(len(text))) is not None:
            candidate = text + char
            if self._combined.fullmatch(candidate, partial=True) is None:
                break
            text = candidate
            if self._combined.fullmatch(text) is not None:
                longest = len(text)

        if longest == 0:
            if char is not None:
                text += char
            snippet = text if len(text) <= 20 else text[:20] + "..."
            raise LexicalError(f"Unexpected character sequence {snippet!r}", self.position, text)

        return longest

    def _classify(self, text: str, start: Position) -> Terminal:
        for terminal, pattern in zip(self.terminals, self._patterns):
            if pattern.fullmatch(text) is not None:
                return terminal
        raise LexicalError(f"No terminal matches {text!r}", start, text)

    def _peek(self, index: int) -> str | None:
        while len(self._pending) <= index and not self._exhausted:
            try:
                char = self._source.read(1)
            except OSError as e:
                raise InputReadError(f"Unable to read input: {e}", self.position, "") from e

            if char == "":
                self._exhausted = True
            else:
                self._pending.append(char)

        if index < len(self._pending):
            return self._pending[index]
        return None

    def _consume(self, count: int) -> str:
        offset, line, column = self.position.offset, self.position.line, self.position.column
        chars = []
        for _ in range(count):
            char = self._pending.popleft()
            chars.append(char)
            offset += 1
            if char == "\n":
                line += 1
                column = 1
            else:
                column += 1

        self.position = Position(offset, line, column)
        return "".join(chars)


###############################################################################
# Parser
###############################################################################
action_log = logging.getLogger("lalrgen.action")

Action = typing.Callable[..., typing.Any]


def _terminated(tokens: typing.Iterable[TokenValue]) -> typing.Iterator[TokenValue]:
    """Make sure the token stream ends with exactly one end-of-input token."""
    position = Position(0, 1, 1)
    for token in tokens:
        yield token
        if token.name == END:
            return
        position = token.position
    yield TokenValue(END, "", position)


class Parser:
    """The shift-reduce engine.

    There are two stacks: the states the automaton has been through, and the
    values that go with them. Shifting pushes the token itself as the value.
    Reducing a production of N symbols pops N of each, hands the N values to
    the production's action, and pushes whatever the action returns along with
    the state the table says to go to.
    """

    table: ParseTable
    actions: typing.Sequence[Action]

    def __init__(self, table: ParseTable, actions: typing.Sequence[Action]):
        self.table = table
        self.actions = actions

    def parse(self, tokens: typing.Iterable[TokenValue]) -> typing.Any:
        """Parse the tokens and return the value of the start rule's action.

        Raises ParseSyntaxError at the first token that has no action, and
        lets LexicalErrors from a lexer through untouched.
        """
        stream = _terminated(tokens)
        token = next(stream)

        states = [0]
        values: list[typing.Any] = []

        al = action_log
        while True:
            action = self.table.actions[states[-1]].get(token.name)
            if al.isEnabledFor(logging.DEBUG):
                al.debug(
                    "{stack: <30} {input: <15} {action}".format(
                        stack=repr(states[-5:]),
                        input=token.name,
                        action=repr(action),
                    )
                )

            match action:
                case Shift(state=state):
                    states.append(state)
                    values.append(token)
                    token = next(stream)

                case Reduce(rule=rule, name=name, count=count):
                    arguments = []
                    if count > 0:
                        arguments = values[-count:]
                        del values[-count:]
                        del states[-count:]

                    value = self.actions[rule](*arguments)

                    goto = self.table.actions[states[-1]].get(name)
                    assert isinstance(goto, Goto), f"No goto for {name} in state {states[-1]}"
                    states.append(goto.state)
                    values.append(value)

                case Accept():
                    break

                case None | Goto():
                    expected = self.table.expected(states[-1])
                    raise ParseSyntaxError(
                        f"Unexpected {_describe(token.name)}, expected one of: "
                        + ", ".join(_describe(name) for name in expected),
                        token.position,
                        token,
                        expected,
                    )

                case _:
                    typing.assert_never(action)

        if len(values) != 1:
            raise ParseSyntaxError(
                f"Parse ended with {len(values)} values on the stack instead of one",
                token.position,
                token,
            )
        return values[0]


class GeneratedParser:
    """A lexer and a parser, bundled up with the tables and actions they run
    on. This is what a generated module exports, and what
    `Grammar.compile` returns."""

    terminals: list[Terminal]
    table: ParseTable
    actions: list[Action]

    def __init__(
        self,
        terminals: typing.Iterable[Terminal],
        table: ParseTable,
        actions: typing.Iterable[Action],
    ):
        self.terminals = list(terminals)
        self.table = table
        self.actions = list(actions)

        for row in table.actions:
            for action in row.values():
                match action:
                    case Shift(state=state) | Goto(state=state):
                        if state >= len(table.actions):
                            raise ValueError(f"The table refers to a missing state {state}")
                    case Reduce(rule=rule):
                        if rule >= len(self.actions):
                            raise ValueError(f"No action is bound to production {rule}")

    def tokenize(self, source: str | typing.TextIO) -> Lexer:
        return Lexer(self.terminals, source)

    def parse(self, source: str | typing.TextIO) -> typing.Any:
        return Parser(self.table, self.actions).parse(self.tokenize(source))
