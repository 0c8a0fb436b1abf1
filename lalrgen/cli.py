import argparse
import logging
import pathlib
import sys

from . import generated_source
from .actions import check_actions
from .emit import emit_module
from .generator import ParserGenerator
from .grammar import GeneratorError
from .reader import read_grammar_file
from .runtime import ParseError

log = logging.getLogger("lalrgen.cli")


def _default_output(grammar_path: pathlib.Path) -> pathlib.Path:
    return grammar_path.with_suffix(".py")


def generate(grammar_path: pathlib.Path, output_path: pathlib.Path | None, check: bool) -> None:
    grammar = read_grammar_file(grammar_path)
    result = ParserGenerator(grammar).build()
    check_actions(grammar)
    if check:
        print(f"{grammar_path}: {len(result.table.actions)} states, no conflicts")
        return

    source = emit_module(grammar, result.table)
    if output_path is None:
        output_path = _default_output(grammar_path)

    if output_path.exists():
        existing = output_path.read_text(encoding="utf-8")
        if generated_source.is_signed(existing):
            if not generated_source.is_current(existing):
                log.info("%s was written by an older lalrgen; upgrading it", output_path)
            if not generated_source.validate_signature(existing):
                log.warning(
                    "%s was edited outside of its manual sections; those edits will be lost",
                    output_path,
                )
            # Manual sections aren't part of the digest, so the merged source
            # keeps the new signature.
            source = generated_source.merge_existing(existing, source)

    output_path.write_text(source, encoding="utf-8")
    log.info("Wrote %s", output_path)


def main(args: list[str]) -> int:
    parser = argparse.ArgumentParser(
        prog="lalrgen",
        description="Generate an LALR(1) lexer and parser module from a grammar description",
    )
    parser.add_argument("grammar", help="Path to the grammar description file")
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Path of the Python module to write. The default is the grammar path with a "
        ".py suffix. If the file exists and was generated by lalrgen, its manual sections "
        "are kept.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every intermediate structure: item sets, transitions, the extended "
        "grammar, FIRST and FOLLOW sets, and the parse table.",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only build the tables and report conflicts; don't write anything.",
    )

    parsed = parser.parse_args(args[1:])

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )

    output = pathlib.Path(parsed.output) if parsed.output is not None else None
    try:
        generate(pathlib.Path(parsed.grammar), output, parsed.check)
    except (GeneratorError, ParseError, generated_source.SignatureError, OSError) as e:
        print(f"{parsed.grammar}: {e}", file=sys.stderr)
        return 1

    return 0


def run():
    sys.exit(main(sys.argv))
