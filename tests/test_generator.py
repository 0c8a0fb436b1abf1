import pytest

from lalrgen import (
    END,
    EPSILON,
    START,
    Accept,
    FirstInfo,
    Goto,
    Grammar,
    ParserGenerator,
    Reduce,
    ReduceReduceConflictError,
    Rule,
    Shift,
    ShiftReduceConflictError,
    StarterRule,
    Terminal,
)


def _rule(name, symbols, code="$0", returns="object"):
    return StarterRule(Rule(name, tuple(symbols.split())), code, returns)


def _terminals(*names):
    return [Terminal.literal(name, name) for name in names] + [
        Terminal("WS", r"\s+", skip=True)
    ]


def nev_grammar():
    # The classic grammar that is LALR(1) but not SLR(1).
    return Grammar(
        rules=[
            _rule("N", "V = E", '("assign", $0, $2)', "tuple"),
            _rule("N", "E", '("expr", $0)', "tuple"),
            _rule("E", "V", "$0"),
            _rule("V", "x", "$0.text"),
            _rule("V", "* E", '("deref", $1)'),
        ],
        terminals=_terminals("=", "*", "x"),
        start="N",
    )


def test_states_are_numbered_breadth_first():
    result = ParserGenerator(nev_grammar()).build()
    graph = result.graph

    assert len(graph.item_sets) == 10
    assert graph.transitions[0] == {"N": 1, "V": 2, "E": 3, "x": 4, "*": 5}
    assert graph.transitions[2] == {"=": 6}
    assert graph.transitions[5] == {"E": 7, "V": 8, "x": 4, "*": 5}
    assert graph.transitions[6] == {"E": 9, "V": 8, "x": 4, "*": 5}
    for state in (1, 3, 4, 7, 8, 9):
        assert graph.transitions[state] == {}

    assert graph.item_sets[0].items[0] == Rule(START, ("N",))
    assert set(graph.item_sets[2].items) == {
        Rule("N", ("V", "=", "E"), 1),
        Rule("E", ("V",), 1),
    }


def test_path_to_state():
    graph = ParserGenerator(nev_grammar()).build().graph
    assert graph.find_path_to_state(0) == []
    assert graph.find_path_to_state(9) == ["V", "=", "E"]


def test_extended_rules():
    extended = ParserGenerator(nev_grammar()).build().extended
    assert len(extended) == 12

    paths = {(str(rule.rule), rule.indices) for rule in extended}
    assert (f"{START} -> * N", (0, 1, 1)) in paths
    assert ("N -> * V = E", (0, 2, 6, 9, 1)) in paths
    assert ("E -> * V", (0, 2, 3)) in paths
    assert ("E -> * V", (5, 8, 7)) in paths
    assert ("E -> * V", (6, 8, 9)) in paths
    assert ("V -> * * E", (5, 5, 7, 8)) in paths

    for rule in extended:
        assert len(rule.indices) == len(rule.production) + 2


def test_first_sets():
    firsts = ParserGenerator(nev_grammar()).build().firsts
    for name in ("N", "E", "V"):
        assert firsts.firsts[name] == {"x", "*"}
    assert firsts.firsts["="] == {"="}


def test_first_with_epsilon():
    productions = {
        "X": [Rule("X", ("A", "B"))],
        "A": [Rule("A", ("a",)), Rule("A", ())],
        "B": [Rule("B", ("b",)), Rule("B", ())],
        "C": [Rule("C", ("A", "c"))],
    }
    firsts = FirstInfo.from_grammar(productions, ["a", "b", "c"])
    assert firsts.firsts["A"] == {"a", EPSILON}
    assert firsts.firsts["X"] == {"a", "b", EPSILON}
    assert firsts.firsts["C"] == {"a", "c"}
    assert firsts.of_sequence(["A", "B"]) == {"a", "b", EPSILON}
    assert firsts.of_sequence(["A", "c"]) == {"a", "c"}
    assert firsts.of_sequence([]) == {EPSILON}


def test_first_with_left_recursion():
    productions = {
        "E": [Rule("E", ("E", "+", "T")), Rule("E", ("T",))],
        "T": [Rule("T", ("T", "*", "id")), Rule("T", ("id",))],
    }
    firsts = FirstInfo.from_grammar(productions, ["+", "*", "id"])
    assert firsts.firsts["E"] == {"id"}
    assert firsts.firsts["T"] == {"id"}


def test_follow_is_per_instance():
    result = ParserGenerator(nev_grammar()).build()
    follows = result.follows.follows

    # E at the top level can only be followed by the end...
    assert follows[("E", 0)] == {END}
    # ...but V at the top level can also be followed by '='.
    assert follows[("V", 0)] == {"=", END}
    assert follows[("E", 6)] == {END}
    assert follows[("E", 5)] == {"=", END}


def test_follow_cycle_in_nev():
    # E after '*' and V in that same state depend on each other.
    merged = ParserGenerator(nev_grammar()).build().follows.merged
    assert frozenset({("E", 5), ("V", 5)}) in merged


def test_lalr_table_is_more_precise_than_slr():
    table = ParserGenerator(nev_grammar()).build().table

    assert table.actions[2] == {
        "=": Shift(6),
        END: Reduce(rule=2, name="E", count=1),
    }
    assert table.actions[1] == {END: Accept()}
    assert table.actions[0]["N"] == Goto(1)
    assert "=" not in table.actions[0]
    assert table.expected(0) == ["x", "*"]


def test_mutual_follow_recursion_converges():
    grammar = Grammar(
        rules=[_rule("A", "B x"), _rule("B", "A")],
        terminals=_terminals("x"),
        start="A",
    )
    follows = ParserGenerator(grammar).build().follows.follows
    for (name, _), follow in follows.items():
        if name in ("A", "B"):
            assert len(follow) > 0
    assert follows[("A", 0)] == {"x", END}
    assert follows[("B", 0)] == {"x"}


def test_follow_cycle_is_merged():
    grammar = Grammar(
        rules=[
            _rule("S", "A"),
            _rule("A", "x B", "($0.text, $1)"),
            _rule("B", "y A", "($0.text, $1)"),
            _rule("B", "z", "$0.text"),
        ],
        terminals=_terminals("x", "y", "z"),
        start="S",
    )
    result = ParserGenerator(grammar).build()
    assert any(len(group) == 2 for group in result.follows.merged)
    for (name, _), follow in result.follows.follows.items():
        if name in ("A", "B"):
            assert follow == {END}

    assert grammar.compile().parse("x y x z") == ("x", ("y", ("x", "z")))


def test_shift_reduce_conflict():
    grammar = Grammar(
        rules=[_rule("E", "E + E"), _rule("E", "id")],
        terminals=_terminals("+", "id"),
        start="E",
    )
    with pytest.raises(ShiftReduceConflictError) as info:
        grammar.build_table()

    assert info.value.symbol == "+"
    assert info.value.path == ["E", "+", "E"]
    assert "shift/reduce" in str(info.value)


def test_reduce_reduce_conflict():
    grammar = Grammar(
        rules=[_rule("S", "A"), _rule("S", "B"), _rule("A", "x"), _rule("B", "x")],
        terminals=_terminals("x"),
        start="S",
    )
    with pytest.raises(ReduceReduceConflictError) as info:
        grammar.build_table()

    assert info.value.symbol == END
    assert info.value.path == ["x"]


def test_build_is_idempotent():
    first = ParserGenerator(nev_grammar()).build()
    second = ParserGenerator(nev_grammar()).build()

    assert first.graph.transitions == second.graph.transitions
    assert first.table == second.table
    assert first.follows == second.follows


def test_epsilon_productions():
    grammar = Grammar(
        rules=[
            _rule("items", "items item", "$0 + [$1]", "list"),
            _rule("items", "", "[]", "list"),
            _rule("item", "x", "$0.text", "str"),
        ],
        terminals=_terminals("x"),
        start="items",
    )
    result = ParserGenerator(grammar).build()
    empty = [rule for rule in result.extended if rule.production == ()]
    assert len(empty) == 1
    assert empty[0].indices == (0, 1)
    assert result.table.actions[0]["x"] == Reduce(rule=1, name="items", count=0)
    assert result.table.actions[0][END] == Reduce(rule=1, name="items", count=0)

    parser = grammar.compile()
    assert parser.parse("") == []
    assert parser.parse("x x x") == ["x", "x", "x"]


def test_diagnostics_are_logged(caplog):
    with caplog.at_level("DEBUG", logger="lalrgen.build"):
        ParserGenerator(nev_grammar()).build()

    text = caplog.text
    assert "Item sets" in text
    assert "Transitions" in text
    assert "Extended grammar" in text
    assert "First sets" in text
    assert "Follow sets" in text
    assert "Parse table" in text


def test_table_format():
    table = ParserGenerator(nev_grammar()).build().table
    formatted = table.format()
    lines = formatted.splitlines()
    assert len(lines) == 2 + 10
    assert "s6" in lines[2 + 2]
    assert "acc" in lines[2 + 1]


def test_lr1_grammar_that_is_not_lalr1():
    # Canonical LR(1) keeps the states after `a e` and `b e` apart; LALR(1)
    # merges them, and with them the lookaheads of E and F.
    grammar = Grammar(
        rules=[
            _rule("S", "a E c"),
            _rule("S", "a F d"),
            _rule("S", "b F c"),
            _rule("S", "b E d"),
            _rule("E", "e"),
            _rule("F", "e"),
        ],
        terminals=_terminals("a", "b", "c", "d", "e"),
        start="S",
    )
    with pytest.raises(ReduceReduceConflictError) as info:
        grammar.build_table()

    assert info.value.symbol in ("c", "d")
    assert info.value.path[-1] == "e"
    assert "reduce/reduce" in str(info.value)
