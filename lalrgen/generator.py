"""Generate LALR(1) parse tables from a `Grammar`.

The construction here is the "extended grammar" flavor of LALR:

1. Build the LR(0) automaton: the item sets (states) and the transitions
   between them. Nothing about lookahead is known yet.

2. Re-express every production once for every state it can be recognized
   from, recording the path of states the parser walks through while it
   shifts the production's symbols. These are the `ExtendedRule`s. A
   nonterminal that shows up in two different places in the automaton now
   has two different *instances*, named by the nonterminal and the state the
   parser was in when it started recognizing it.

3. Compute FIRST per nonterminal (context doesn't matter for FIRST), and then
   FOLLOW per instance. This is where LALR gets its precision over SLR: the
   FOLLOW of `E` in one context can be `{'$'}` while the FOLLOW of `E` in
   another is `{'$', '='}`, and only the relevant one is used when deciding
   where to reduce.

4. Fill in the table: transitions become shifts and gotos, every instance
   reduces at the last state of its path on every terminal in its FOLLOW set,
   and anything that lands on an already occupied cell is a conflict. There is
   no precedence, so conflicts are always fatal.

(If you want to read about it, the extended-grammar construction is the one
described in the Wikipedia article on LALR parsers, and goes back to
Bermudez and Logothetis, "Simple computation of LALR(1) lookahead sets",
1989.)

The pieces are all usable individually, which is handy in tests, but
normally you just want `ParserGenerator(grammar).build()`.
"""

import collections
import dataclasses
import json
import logging
import typing

from .grammar import END, EPSILON, START, GeneratorError, Grammar, Rule

build_log = logging.getLogger("lalrgen.build")


###############################################################################
# LR(0) Automaton
###############################################################################
@dataclasses.dataclass(frozen=True)
class ItemSet:
    """A closed set of items, which is to say, a parser state.

    The items are kept in the order they were discovered so that everything
    derived from them (successor order, and therefore state numbering) is
    repeatable. Equality, though, only looks at the set of items: two states
    with the same items are the same state no matter how we found them.
    """

    items: typing.Tuple[Rule, ...] = dataclasses.field(compare=False)
    core: frozenset[Rule] = dataclasses.field(init=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "core", frozenset(self.items))

    def successors(self) -> dict[str, list[Rule]]:
        """Group the items by the symbol after their pointer, and advance them
        past it. Symbols come out in the order they first appear."""
        groups: dict[str, list[Rule]] = {}
        for item in self.items:
            symbol = item.pointed
            if symbol is not None:
                groups.setdefault(symbol, []).append(item.advance())
        return groups

    def completed(self) -> list[Rule]:
        return [item for item in self.items if item.at_end]


def gen_closure(seeds: typing.Iterable[Rule], productions: dict[str, list[Rule]]) -> ItemSet:
    """Close a set of items: whenever the pointer is in front of a
    nonterminal, every production of that nonterminal (with the pointer at the
    start) belongs in the set too.

    Grammars are often deeply recursive, so this is a worklist and not a
    recursive walk.
    """
    closure: dict[Rule, None] = {}
    pending = collections.deque(seeds)
    while len(pending) > 0:
        item = pending.popleft()
        if item in closure:
            continue
        closure[item] = None

        symbol = item.pointed
        if symbol is None:
            continue
        for rule in productions.get(symbol, ()):
            if rule not in closure:
                pending.append(rule)

    return ItemSet(tuple(closure))


@dataclasses.dataclass
class StateGraph:
    """The LR(0) automaton: all of the item sets and their successors.

    `transitions[i]` maps a grammar symbol to the index of the state you reach
    by shifting (or going to) that symbol from state `i`. State 0 is always the
    closure of the synthetic start production.
    """

    item_sets: list[ItemSet]
    transitions: list[dict[str, int]]

    def dump_state(self) -> str:
        return json.dumps(
            {
                str(index): {
                    "items": [str(item) for item in item_set.items],
                    "transitions": {k: str(v) for k, v in transitions.items()},
                }
                for index, (item_set, transitions) in enumerate(
                    zip(self.item_sets, self.transitions)
                )
            },
            indent=4,
        )

    def format_transitions(self) -> str:
        symbols: dict[str, None] = {}
        for row in self.transitions:
            symbols.update((symbol, None) for symbol in row)

        header = "     | " + " ".join(f"{symbol: <6}" for symbol in symbols)
        lines = [header, "-" * len(header)]
        for index, row in enumerate(self.transitions):
            cells = " ".join(f"{str(row.get(symbol, '')): <6}" for symbol in symbols)
            lines.append(f"{index: <4} | {cells}")
        return "\n".join(lines)

    def find_path_to_state(self, target: int) -> list[str]:
        """Trace the symbols that lead from state 0 to the target state. This
        is what we show people when we report a conflict, since "state 37" on
        its own doesn't mean much.

        Raises KeyError if the state is unreachable, which should never
        happen for a graph built by `gen_sets`.
        """
        visited = set()
        queue: collections.deque = collections.deque()
        queue.append((0, []))
        while len(queue) > 0:
            index, path = queue.popleft()
            if index == target:
                return path

            if index in visited:
                continue
            visited.add(index)

            for symbol, successor in self.transitions[index].items():
                queue.append((successor, path + [symbol]))

        raise KeyError(f"Unable to find a path to state {target}")


def gen_sets(productions: dict[str, list[Rule]], start: Rule) -> StateGraph:
    """Build the LR(0) automaton, breadth first from the closure of the start
    item.

    States are numbered in the order they are discovered, and the queue is
    FIFO, so the same grammar always produces the same numbering.
    """
    initial = gen_closure([start], productions)
    item_sets = [initial]
    transitions: list[dict[str, int]] = [{}]
    index = {initial: 0}

    pending = collections.deque([0])
    while len(pending) > 0:
        state = pending.popleft()
        for symbol, seeds in item_sets[state].successors().items():
            successor = gen_closure(seeds, productions)
            target = index.get(successor)
            if target is None:
                target = len(item_sets)
                item_sets.append(successor)
                transitions.append({})
                index[successor] = target
                pending.append(target)

            transitions[state][symbol] = target

    return StateGraph(item_sets=item_sets, transitions=transitions)


###############################################################################
# Extended Grammar
###############################################################################
# A production instance is named by the nonterminal and the state in which
# the parser started recognizing it.
Instance = typing.Tuple[str, int]


@dataclasses.dataclass(frozen=True)
class ExtendedRule:
    """A production, plus the states the parser passes through recognizing it.

    `indices` has one more entry than there are symbols in the production
    (the entry state, then one state per shifted symbol) plus the exit state:
    the state we go to after reducing, from the entry state. The synthetic
    start production never reduces, its exit is the accepting state.
    """

    rule: Rule
    indices: typing.Tuple[int, ...]

    @property
    def name(self) -> str:
        return self.rule.name

    @property
    def production(self) -> typing.Tuple[str, ...]:
        return self.rule.production

    @property
    def entry(self) -> int:
        return self.indices[0]

    @property
    def exit(self) -> int:
        return self.indices[-1]

    @property
    def reduce_state(self) -> int:
        return self.indices[-2]

    @property
    def instance(self) -> Instance:
        return (self.name, self.entry)

    def symbol_instance(self, position: int) -> Instance:
        """The instance of the symbol at `position` in this production."""
        return (self.production[position], self.indices[position])

    def __str__(self) -> str:
        parts = [
            f"[{self.indices[i]} {symbol} {self.indices[i + 1]}]"
            for i, symbol in enumerate(self.production)
        ]
        if len(parts) == 0:
            parts.append(EPSILON)
        return f"[{self.entry} {self.name} {self.exit}] -> {' '.join(parts)}"


def extend_grammar(graph: StateGraph) -> list[ExtendedRule]:
    """Produce one ExtendedRule for every (state, fresh item) pair by
    replaying the item's symbols through the transitions."""
    result = []
    for state, item_set in enumerate(graph.item_sets):
        for item in item_set.items:
            if item.pointer != 0:
                continue

            current = state
            indices = [current]
            for symbol in item.production:
                current = graph.transitions[current][symbol]
                indices.append(current)

            if item.name == START:
                indices.append(current)
            else:
                indices.append(graph.transitions[state][item.name])

            result.append(ExtendedRule(rule=item, indices=tuple(indices)))

    return result


###############################################################################
# FIRST and FOLLOW
###############################################################################
def update_changed(items: set[str], other: typing.Iterable[str]) -> bool:
    """Merge the `other` set into the `items` set, and return True if this
    changed the items set.
    """
    old_len = len(items)
    items.update(other)
    return old_len != len(items)


@dataclasses.dataclass(frozen=True)
class FirstInfo:
    """The FIRST sets of a grammar.

    firsts[s] is the set of terminals that can begin something derived from
    s. For a terminal that's just the terminal itself. If a nonterminal can
    derive nothing at all, its set also contains EPSILON.

    For example, in:

        x -> y A
        y -> z
        y -> B x
        y ->
        z -> C

    FIRST[y] is {B, C, EPSILON} and FIRST[x] is {A, B, C}: since y can be
    empty, x can start with whatever comes after y.
    """

    firsts: dict[str, frozenset[str]]

    @classmethod
    def from_grammar(
        cls,
        productions: dict[str, list[Rule]],
        terminals: typing.Iterable[str],
    ) -> "FirstInfo":
        firsts: dict[str, set[str]] = {t: {t} for t in terminals}
        for name in productions:
            firsts[name] = set()

        # Left recursion is legal, so recursing into a nonterminal while
        # computing it would never end. Iterating to a fixed point does end,
        # since the sets only ever grow and there are finitely many terminals.
        changed = True
        while changed:
            changed = False
            for name, rules in productions.items():
                f = firsts[name]
                for rule in rules:
                    nullable = True
                    for symbol in rule.production:
                        other = firsts[symbol]
                        changed = update_changed(f, other - {EPSILON}) or changed
                        if EPSILON not in other:
                            nullable = False
                            break

                    if nullable and EPSILON not in f:
                        f.add(EPSILON)
                        changed = True

        return FirstInfo(firsts={k: frozenset(v) for k, v in firsts.items()})

    def of_sequence(self, symbols: typing.Iterable[str]) -> set[str]:
        """FIRST of a sequence of symbols. Contains EPSILON if every symbol
        can vanish (so the empty sequence gives {EPSILON})."""
        result: set[str] = set()
        for symbol in symbols:
            first = self.firsts[symbol]
            result.update(first - {EPSILON})
            if EPSILON not in first:
                return result
        result.add(EPSILON)
        return result

    def nullable(self, symbol: str) -> bool:
        return EPSILON in self.firsts[symbol]

    def format(self) -> str:
        return "\n".join(
            f"FIRST({name}) = {{{', '.join(sorted(first))}}}"
            for name, first in self.firsts.items()
            if first != frozenset([name])
        )


class _Groups:
    """Union-find over instances, for the instances whose FOLLOW sets have
    been merged because they depend on each other."""

    def __init__(self):
        self.parents: dict[Instance, Instance] = {}

    def find(self, instance: Instance) -> Instance:
        root = instance
        while (parent := self.parents.get(root, root)) != root:
            root = parent
        while instance != root:
            self.parents[instance], instance = root, self.parents.get(instance, instance)
        return root

    def union(self, a: Instance, b: Instance):
        a, b = self.find(a), self.find(b)
        if a != b:
            self.parents[b] = a


Edges = dict[Instance, dict[Instance, None]]


def _find_cycle(edges: Edges) -> list[Instance] | None:
    """Depth-first search for a cycle. Returns the instances on the first one
    found, in path order, or None if the graph is acyclic."""
    visited: set[Instance] = set()
    for root in edges:
        if root in visited:
            continue

        visited.add(root)
        path = [root]
        on_path = {root: 0}
        iterators = [iter(edges.get(root, ()))]
        while len(iterators) > 0:
            node = next(iterators[-1], None)
            if node is None:
                iterators.pop()
                del on_path[path.pop()]
                continue

            if node in on_path:
                return path[on_path[node] :]
            if node in visited:
                continue

            visited.add(node)
            on_path[node] = len(path)
            path.append(node)
            iterators.append(iter(edges.get(node, ())))

    return None


def _post_order(edges: Edges) -> list[Instance]:
    """Order the nodes of an acyclic graph so that every node comes after
    everything it points at."""
    order = []
    visited: set[Instance] = set()
    for root in edges:
        if root in visited:
            continue
        visited.add(root)
        stack = [(root, iter(edges.get(root, ())))]
        while len(stack) > 0:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                stack.pop()
                order.append(node)
            elif child not in visited:
                visited.add(child)
                stack.append((child, iter(edges.get(child, ()))))
    return order


@dataclasses.dataclass(frozen=True)
class FollowInfo:
    """The FOLLOW sets of every production instance in an extended grammar.

    The FOLLOW of an instance is the set of terminals that can come right
    after it, in the context that instance was recognized in.

    Computing it is a two step affair. First, every place an instance appears
    inside another production directly contributes the FIRST of whatever comes
    after it. Second, if everything after it can vanish, the instance also
    gets the FOLLOW of the production it appears in. That second kind of
    contribution is recorded as an edge (instance -> enclosing instance) and
    resolved once all the direct contributions are known.

    Those edges can form cycles (`A -> x B` and `B -> y A` make A and B depend
    on each other). Every member of a cycle must end up with the same FOLLOW
    set, so when we find a cycle we merge its members into one group and drop
    the edges inside the group, and search again. Once there are no cycles
    left we resolve the groups in dependency order.

    `merged` lists the groups that had to be collapsed, for diagnostics.
    """

    follows: dict[Instance, frozenset[str]]
    merged: typing.Tuple[frozenset[Instance], ...]

    @classmethod
    def from_extended_grammar(
        cls,
        extended: list[ExtendedRule],
        terminals: typing.Iterable[str],
        firsts: FirstInfo,
    ) -> "FollowInfo":
        terminals = set(terminals)

        direct: dict[Instance, set[str]] = {(START, 0): {END}}
        edges: Edges = {}
        for rule in extended:
            owner = rule.instance
            direct.setdefault(owner, set())
            for position, symbol in enumerate(rule.production):
                if symbol in terminals:
                    continue

                instance = rule.symbol_instance(position)
                rest = firsts.of_sequence(rule.production[position + 1 :])
                direct.setdefault(instance, set()).update(rest - {EPSILON})
                if EPSILON in rest and instance != owner:
                    edges.setdefault(instance, {})[owner] = None

        groups = _Groups()
        merged = []
        while (cycle := _find_cycle(edges)) is not None:
            for instance in cycle[1:]:
                groups.union(cycle[0], instance)
            merged.append(frozenset(cycle))

            collapsed: Edges = {}
            for source, targets in edges.items():
                source = groups.find(source)
                for target in targets:
                    target = groups.find(target)
                    if source != target:
                        collapsed.setdefault(source, {})[target] = None
            edges = collapsed

        resolved: dict[Instance, set[str]] = {}
        for instance, contribution in direct.items():
            resolved.setdefault(groups.find(instance), set()).update(contribution)
        for instance in _post_order(edges):
            for needed in edges.get(instance, ()):
                resolved[instance].update(resolved[needed])

        # Cycles that were merged in several steps can be described by more
        # than one entry; keep only the final groups.
        final: dict[Instance, set[Instance]] = {}
        for group in merged:
            for instance in group:
                final.setdefault(groups.find(instance), set()).add(instance)

        return FollowInfo(
            follows={
                instance: frozenset(resolved[groups.find(instance)]) for instance in direct
            },
            merged=tuple(frozenset(group) for group in final.values()),
        )

    def format(self) -> str:
        lines = [
            f"FOLLOW([{state} {name}]) = {{{', '.join(sorted(follow))}}}"
            for (name, state), follow in self.follows.items()
        ]
        for group in self.merged:
            members = ", ".join(f"[{state} {name}]" for name, state in sorted(group))
            lines.append(f"merged: {members}")
        return "\n".join(lines)


###############################################################################
# Parse Table
###############################################################################
@dataclasses.dataclass(frozen=True)
class Action:
    pass


@dataclasses.dataclass(frozen=True)
class Shift(Action):
    state: int


@dataclasses.dataclass(frozen=True)
class Reduce(Action):
    rule: int
    name: str
    count: int


@dataclasses.dataclass(frozen=True)
class Goto(Action):
    state: int


@dataclasses.dataclass(frozen=True)
class Accept(Action):
    pass


ParseAction = Shift | Reduce | Goto | Accept


class ConflictError(GeneratorError):
    """Two different actions want the same cell of the table."""

    kind = "conflict"

    state: int
    symbol: str
    path: list[str]
    existing: str
    incoming: str

    def __init__(self, state: int, symbol: str, path: list[str], existing: str, incoming: str):
        self.state = state
        self.symbol = symbol
        self.path = path
        self.existing = existing
        self.incoming = incoming
        super().__init__(str(self))

    def __str__(self):
        return (
            f"{self.kind} conflict in state {self.state}: when we have parsed "
            f"'{' '.join(self.path)}' and see '{self.symbol}' we don't know whether to "
            f"{self.existing} or {self.incoming}"
        )


class ShiftReduceConflictError(ConflictError):
    kind = "shift/reduce"


class ReduceReduceConflictError(ConflictError):
    kind = "reduce/reduce"


@dataclasses.dataclass
class ParseTable:
    """The ACTION/GOTO table. `actions[state][symbol]` is what to do in
    `state` when looking at `symbol`; gotos live in the same rows, keyed by
    nonterminal names, since terminals and nonterminals never share a name.
    A missing entry is a syntax error."""

    actions: list[dict[str, ParseAction]]

    def expected(self, state: int) -> list[str]:
        """The terminals that have an action in the given state."""
        return [
            symbol
            for symbol, action in self.actions[state].items()
            if not isinstance(action, Goto)
        ]

    def format(self) -> str:
        """Format a parser table so pretty."""

        def format_action(row: dict[str, ParseAction], symbol: str):
            action = row.get(symbol)
            match action:
                case Accept():
                    return "acc"
                case Shift(state=state):
                    return f"s{state}"
                case Reduce(rule=rule):
                    return f"r{rule}"
                case Goto(state=state):
                    return str(state)
                case None:
                    return ""
                case _:
                    typing.assert_never(action)

        terminals: dict[str, None] = {}
        nonterminals: dict[str, None] = {}
        for row in self.actions:
            for symbol, action in row.items():
                if isinstance(action, Goto):
                    nonterminals[symbol] = None
                else:
                    terminals[symbol] = None
        columns = list(terminals) + list(nonterminals)

        header = "     | " + " ".join(f"{symbol: <6}" for symbol in columns)
        lines = [header, "-" * len(header)]
        for index, row in enumerate(self.actions):
            cells = " ".join(f"{format_action(row, symbol): <6}" for symbol in columns)
            lines.append(f"{index: <4} | {cells}")
        return "\n".join(lines)


class TableBuilder:
    """A helper object to assemble actions into a parse table, watching for
    conflicts as it goes.

    Install the shifts and gotos first, then accept, then the reduces; a
    reduce that lands on anything else is a conflict.
    """

    graph: StateGraph
    rules: list[Rule]
    actions: list[dict[str, ParseAction]]

    def __init__(self, graph: StateGraph, rules: list[Rule]):
        self.graph = graph
        self.rules = rules
        self.actions = [{} for _ in graph.item_sets]

    def set_table_shift(self, state: int, symbol: str, target: int):
        self._set_table_action(state, symbol, Shift(target))

    def set_table_goto(self, state: int, symbol: str, target: int):
        self._set_table_action(state, symbol, Goto(target))

    def set_table_accept(self, state: int):
        self._set_table_action(state, END, Accept())

    def set_table_reduce(self, state: int, symbol: str, rule: int):
        production = self.rules[rule]
        action = Reduce(rule=rule, name=production.name, count=len(production.production))
        self._set_table_action(state, symbol, action)

    def flush(self) -> ParseTable:
        return ParseTable(actions=self.actions)

    def describe(self, action: ParseAction) -> str:
        match action:
            case Shift(state=state):
                return f"shift and go to state {state}"
            case Reduce(rule=rule):
                return f"reduce by '{self.rules[rule].format()}'"
            case Goto(state=state):
                return f"go to state {state}"
            case Accept():
                return "accept the input"
            case _:
                typing.assert_never(action)

    def _set_table_action(self, state: int, symbol: str, action: ParseAction):
        row = self.actions[state]
        existing = row.get(symbol)
        if existing is not None and existing != action:
            path = self.graph.find_path_to_state(state)
            error: type[ConflictError]
            if isinstance(existing, Shift):
                error = ShiftReduceConflictError
            else:
                error = ReduceReduceConflictError
            raise error(state, symbol, path, self.describe(existing), self.describe(action))

        row[symbol] = action


###############################################################################
# The whole pipeline
###############################################################################
@dataclasses.dataclass(frozen=True)
class BuildResult:
    graph: StateGraph
    extended: list[ExtendedRule]
    firsts: FirstInfo
    follows: FollowInfo
    table: ParseTable


class ParserGenerator:
    """Run a grammar through every stage and produce the table.

    Diagnostics go to `logger` (by default the `lalrgen.build` logger): a
    summary at INFO, and dumps of every intermediate structure at DEBUG.
    """

    grammar: Grammar
    log: logging.Logger

    # The user's productions, in declaration order. Reduce actions index this.
    rules: list[Rule]

    # All the productions by name, including the synthetic start production.
    productions: dict[str, list[Rule]]

    terminals: list[str]

    def __init__(self, grammar: Grammar, logger: logging.Logger | None = None):
        grammar.validate()

        self.grammar = grammar
        self.log = logger if logger is not None else build_log
        self.rules = [starter.rule.rewind() for starter in grammar.rules]
        self.productions = {START: [Rule(START, (grammar.start,))]}
        self.productions.update(grammar.productions())
        self.terminals = grammar.terminal_names()

    def gen_sets(self) -> StateGraph:
        return gen_sets(self.productions, self.productions[START][0])

    def gen_table(
        self,
        graph: StateGraph,
        extended: list[ExtendedRule],
        follows: FollowInfo,
    ) -> ParseTable:
        terminals = set(self.terminals)
        rule_index = {rule: index for index, rule in enumerate(self.rules)}

        builder = TableBuilder(graph, self.rules)
        for state, transitions in enumerate(graph.transitions):
            for symbol, target in transitions.items():
                if symbol in terminals:
                    builder.set_table_shift(state, symbol, target)
                else:
                    builder.set_table_goto(state, symbol, target)

        for rule in extended:
            if rule.name == START:
                builder.set_table_accept(rule.reduce_state)

        for rule in extended:
            if rule.name == START:
                continue
            index = rule_index[rule.rule]
            for symbol in sorted(follows.follows[rule.instance]):
                builder.set_table_reduce(rule.reduce_state, symbol, index)

        return builder.flush()

    def build(self) -> BuildResult:
        log = self.log

        graph = self.gen_sets()
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Item sets:\n%s", graph.dump_state())
            log.debug("Transitions:\n%s", graph.format_transitions())

        extended = extend_grammar(graph)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Extended grammar:\n%s", "\n".join(str(rule) for rule in extended))

        firsts = FirstInfo.from_grammar(self.productions, self.terminals)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("First sets:\n%s", firsts.format())

        follows = FollowInfo.from_extended_grammar(extended, self.terminals, firsts)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Follow sets:\n%s", follows.format())

        table = self.gen_table(graph, extended, follows)
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Parse table:\n%s", table.format())

        log.info(
            "%s: %d states, %d extended rules, %d merged follow cycles",
            self.grammar.name,
            len(graph.item_sets),
            len(extended),
            len(follows.merged),
        )
        return BuildResult(
            graph=graph,
            extended=extended,
            firsts=firsts,
            follows=follows,
            table=table,
        )
