import pytest

from lalrgen import (
    EPSILON,
    ActionPlaceholderError,
    DuplicateRuleError,
    DuplicateSymbolError,
    EmptyActionError,
    Grammar,
    InconsistentReturnTypeError,
    MissingStartRuleError,
    ReservedSymbolError,
    Rule,
    StarterRule,
    Terminal,
    UndefinedSymbolError,
)


def _grammar(*rules, start="E", terminals=None):
    if terminals is None:
        terminals = [
            Terminal.literal("+", "+"),
            Terminal("id", "[a-z]+"),
            Terminal("WS", r"\s+", skip=True),
        ]
    return Grammar(rules=list(rules), terminals=terminals, start=start)


def test_rule_advance_makes_a_new_rule():
    rule = Rule("E", ("E", "+", "id"))
    advanced = rule.advance()

    assert rule.pointer == 0
    assert advanced.pointer == 1
    assert advanced.pointed == "+"
    assert advanced != rule
    assert advanced.rewind() == rule


def test_rule_equality_is_structural():
    a = Rule("E", ("E", "+", "id"), 2)
    b = Rule("E", ["E", "+", "id"]).advance().advance()
    assert a == b
    assert hash(a) == hash(b)
    assert len({a, b}) == 1


def test_rule_format():
    rule = Rule("E", ("E", "+", "id"))
    assert str(rule.advance()) == "E -> E * + id"
    assert str(rule.advance().advance().advance()) == "E -> E + id *"
    assert rule.format() == "E -> E + id"


def test_epsilon_rule_is_empty():
    rule = Rule("X", (EPSILON,))
    assert rule.production == ()
    assert rule.at_end
    assert rule.pointed is None
    assert rule == Rule("X", ())
    assert rule.format() == f"X -> {EPSILON}"


def test_literal_terminal_is_escaped():
    assert Terminal.literal("+", "+").pattern == r"\+"


def test_valid_grammar():
    _grammar(
        StarterRule(Rule("E", ("E", "+", "id")), "$0 + $2.text", "str"),
        StarterRule(Rule("E", ("id",)), "$0.text", "str"),
    ).validate()


def test_undefined_symbol():
    g = _grammar(StarterRule(Rule("E", ("E", "-", "id")), "$0", "str"))
    with pytest.raises(UndefinedSymbolError, match="'-'"):
        g.validate()


def test_skipped_terminal_is_undefined():
    g = _grammar(StarterRule(Rule("E", ("id", "WS", "id")), "$0", "str"))
    with pytest.raises(UndefinedSymbolError, match="skipped"):
        g.validate()


def test_missing_start_rule():
    g = _grammar(StarterRule(Rule("E", ("id",)), "$0", "str"), start="S")
    with pytest.raises(MissingStartRuleError, match="'S'"):
        g.validate()


def test_inconsistent_return_types():
    g = _grammar(
        StarterRule(Rule("E", ("E", "+", "id")), "$0", "str"),
        StarterRule(Rule("E", ("id",)), "$0", "int"),
    )
    with pytest.raises(InconsistentReturnTypeError, match="'E'"):
        g.validate()


def test_empty_action():
    g = _grammar(StarterRule(Rule("E", ("id",)), "   ", "str"))
    with pytest.raises(EmptyActionError, match="E -> id"):
        g.validate()


def test_placeholder_out_of_range():
    g = _grammar(StarterRule(Rule("E", ("id",)), "$1", "str"))
    with pytest.raises(ActionPlaceholderError, match=r"\$1"):
        g.validate()


def test_duplicate_rule():
    g = _grammar(
        StarterRule(Rule("E", ("id",)), "$0", "str"),
        StarterRule(Rule("E", ("id",)), "$0.text", "str"),
    )
    with pytest.raises(DuplicateRuleError):
        g.validate()


@pytest.mark.parametrize("name", ["__secret", "$"])
def test_reserved_names(name):
    g = _grammar(
        StarterRule(Rule("E", ("id",)), "$0", "str"),
        terminals=[Terminal("id", "[a-z]+"), Terminal(name, "@")],
    )
    with pytest.raises(ReservedSymbolError):
        g.validate()


def test_productions_are_grouped_by_name():
    g = _grammar(
        StarterRule(Rule("E", ("E", "+", "T")), "$0", "str"),
        StarterRule(Rule("T", ("id",)), "$0", "str"),
        StarterRule(Rule("E", ("T",)), "$0", "str"),
    )
    productions = g.productions()
    assert list(productions) == ["E", "T"]
    assert productions["E"] == [Rule("E", ("E", "+", "T")), Rule("E", ("T",))]
    assert g.terminal_names() == ["+", "id"]


def test_terminal_declared_twice():
    g = _grammar(
        StarterRule(Rule("E", ("id",)), "$0", "str"),
        terminals=[Terminal("id", "[a-z]+"), Terminal("id", "[A-Z]+")],
    )
    with pytest.raises(DuplicateSymbolError, match="'id'"):
        g.validate()


def test_terminal_and_rule_share_a_name():
    g = _grammar(
        StarterRule(Rule("S", ("E", "y")), "$0", "str"),
        StarterRule(Rule("E", ("y",)), "$0", "str"),
        start="S",
        terminals=[Terminal("E", "e"), Terminal("y", "y"), Terminal("WS", r"\s+", skip=True)],
    )
    with pytest.raises(DuplicateSymbolError, match="'E'"):
        g.validate()
    with pytest.raises(DuplicateSymbolError):
        g.compile()
