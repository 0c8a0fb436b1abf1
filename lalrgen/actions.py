"""Turn semantic action code into Python functions.

Action code is a Python fragment where `$0`, `$1`, ... stand for the values
matched by the production's symbols: a `TokenValue` for a terminal, the result
of the nested action for a nonterminal. Most actions are single expressions:

    expr PLUS term    { $0 + $2 }

and those become `return ($0 + $2)`. Anything that isn't an expression is
treated as a function body, which had better `return` something.

Each production becomes one function, `_action_<index>`, with one parameter
per symbol. The in-process parser executes the rendered source; the emitter
writes the very same source into the generated module.

The header and the actions are ordinary Python and run with the full
privileges of the process that compiles them, so only compile grammars you
trust.
"""

import ast
import textwrap
import typing

from .grammar import PLACEHOLDER, ActionCompileError, Grammar, StarterRule


def action_name(index: int) -> str:
    return f"_action_{index}"


def _substitute(code: str) -> str:
    return PLACEHOLDER.sub(lambda m: f"_{m.group(1)}", code)


def _is_expression(code: str) -> bool:
    try:
        ast.parse(code, mode="eval")
    except SyntaxError:
        return False
    return True


def render_action(index: int, starter: StarterRule) -> str:
    """Render the function for one production."""
    parameters = ", ".join(f"_{i}" for i in range(len(starter.rule.production)))
    code = _substitute(textwrap.dedent(starter.code).strip())
    if _is_expression(code):
        body = "return (\n" + textwrap.indent(code, "    ") + "\n)"
    else:
        body = code

    return "\n".join(
        [
            f"def {action_name(index)}({parameters}) -> {starter.returns!r}:",
            f"    # {starter.rule.format()}",
            textwrap.indent(body, "    "),
        ]
    )


def render_actions(grammar: Grammar) -> str:
    return "\n\n\n".join(render_action(i, starter) for i, starter in enumerate(grammar.rules))


def _check_action(index: int, starter: StarterRule):
    source = render_action(index, starter)
    try:
        ast.parse(source)
    except SyntaxError as e:
        raise ActionCompileError(
            f"The action for '{starter.rule.format()}' is not valid Python: {e.msg}"
        ) from e


def check_actions(grammar: Grammar):
    """Make sure the header and every rendered action are valid Python,
    without running any of it. Raises ActionCompileError for the first one
    that isn't."""
    header = textwrap.dedent(grammar.header)
    try:
        ast.parse(header)
    except SyntaxError as e:
        raise ActionCompileError(f"The header of '{grammar.name}' is not valid Python: {e.msg}") from e

    for index, starter in enumerate(grammar.rules):
        _check_action(index, starter)


def compile_actions(grammar: Grammar) -> list[typing.Callable[..., typing.Any]]:
    """Compile every action in the grammar, once. The result is indexed the
    same way as `grammar.rules`, which is also how `Reduce` actions refer to
    productions.
    """
    check_actions(grammar)

    namespace: dict[str, typing.Any] = {"__name__": f"lalrgen.actions.{grammar.name}"}
    if grammar.header.strip() != "":
        exec(compile(textwrap.dedent(grammar.header), f"<{grammar.name} header>", "exec"), namespace)

    exec(compile(render_actions(grammar), f"<{grammar.name} actions>", "exec"), namespace)
    return [namespace[action_name(i)] for i in range(len(grammar.rules))]
