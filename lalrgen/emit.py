"""Render a grammar and its table as a standalone Python module.

The module holds data and nothing else that is clever: the terminals, the
parse table, one function per semantic action, and a `GeneratedParser` that
ties them to the runtime in `lalrgen.runtime`. It's signed (see
`generated_source`), and ends with a manual section that survives
regeneration.
"""

import textwrap

from . import generated_source
from .actions import action_name, check_actions, render_actions
from .generator import ParseTable
from .grammar import Grammar


def _format_terminals(grammar: Grammar) -> list[str]:
    lines = ["TERMINALS = ["]
    lines.extend(f"    {terminal!r}," for terminal in grammar.terminals)
    lines.append("]")
    return lines


def _format_table(table: ParseTable) -> list[str]:
    lines = ["TABLE = ParseTable(", "    actions=["]
    for index, row in enumerate(table.actions):
        lines.append(f"        # {index}")
        lines.append("        {")
        lines.extend(f"            {symbol!r}: {action!r}," for symbol, action in row.items())
        lines.append("        },")
    lines.extend(["    ]", ")"])
    return lines


def emit_module(grammar: Grammar, table: ParseTable) -> str:
    """Render the module source, signed.

    Raises ActionCompileError rather than writing out a module that wouldn't
    import.
    """
    check_actions(grammar)

    lines = [
        generated_source.signature_line(),
        f'"""Lexer and parser for the {grammar.name} grammar.',
        "",
        "Generated by lalrgen. Only the manual section at the end of the file survives",
        "regeneration; edits anywhere else will invalidate the signature.",
        '"""',
        "",
        "from lalrgen.generator import Accept, Goto, ParseTable, Reduce, Shift",
        "from lalrgen.grammar import Terminal",
        "from lalrgen.runtime import GeneratedParser",
        "",
    ]

    header = textwrap.dedent(grammar.header).strip()
    if header:
        lines.extend(["# Grammar header", header, ""])

    lines.append("")
    lines.extend(_format_terminals(grammar))
    lines.append("")
    lines.extend(_format_table(table))
    lines.extend(["", ""])

    if len(grammar.rules) > 0:
        lines.append(render_actions(grammar))
        lines.extend(["", ""])

    lines.append("ACTIONS = [")
    lines.extend(f"    {action_name(i)}," for i in range(len(grammar.rules)))
    lines.append("]")
    lines.extend(
        [
            "",
            "PARSER = GeneratedParser(TERMINALS, TABLE, ACTIONS)",
            "",
            "",
            "def parse(source):",
            '    """Parse a string or text stream and return the value of the start rule."""',
            "    return PARSER.parse(source)",
            "",
            "",
            generated_source.manual_section("extras"),
            "",
        ]
    )

    return generated_source.sign_generated_source("\n".join(lines))
