"""Signing for generated Python modules.

A generated module carries a signature comment with a digest of everything
that was generated. Hand edits inside a manual section are expected and
don't affect the digest; hand edits anywhere else do, and `validate_signature`
catches them. When a module is regenerated, `merge_existing` carries the
manual sections of the old file over into the new one.

    # BEGIN MANUAL SECTION extras
    ...whatever you like...
    # END MANUAL SECTION

The signature also records the layout version of the module, so a module
written by an older lalrgen can be told apart from one that was edited.
"""

import hashlib
import re
import typing

# Bump whenever the layout of generated modules changes.
FORMAT_VERSION = 1

_SIGNING_SLUG = "!*lalrgen-unsigned-5c0b0a1e9f3d4b27"
_SIGNING_PREFIX = "@generated by lalrgen"

_BEGIN_PATTERN = re.compile(r"^\s*# BEGIN MANUAL SECTION (\S+)")
_END_PATTERN = re.compile(r"^\s*# END MANUAL SECTION")
_SIGNATURE_PATTERN = re.compile(
    re.escape(_SIGNING_PREFIX) + r" Signed<<v(\d+):([0-9a-f]{64})>>"
)


class SignatureError(ValueError):
    pass


class Section(typing.NamedTuple):
    # None for generated text, otherwise the name of the manual section.
    name: str | None
    lines: list[str]


class Signature(typing.NamedTuple):
    version: int
    digest: str

    def token(self) -> str:
        return f"Signed<<v{self.version}:{self.digest}>>"


def signature_line() -> str:
    """The line to put at the top of a module before it is signed."""
    return f"# {_SIGNING_PREFIX} {_SIGNING_SLUG}"


def manual_section(name: str, body: str = "", indent: str = "") -> str:
    lines = [f"{indent}# BEGIN MANUAL SECTION {name}"]
    if body:
        lines.append(body.rstrip("\n"))
    lines.append(f"{indent}# END MANUAL SECTION")
    return "\n".join(lines)


def iterate_sections(source: str) -> typing.Iterator[Section]:
    """Split source into alternating generated and manual sections. The
    BEGIN and END marker lines belong to the generated sections around them.
    """
    name: str | None = None
    lines: list[str] = []
    for line in source.splitlines(keepends=True):
        if name is None:
            lines.append(line)
            match = _BEGIN_PATTERN.match(line)
            if match is not None:
                yield Section(None, lines)
                name = match.group(1)
                lines = []
        elif _END_PATTERN.match(line):
            yield Section(name, lines)
            name = None
            lines = [line]
        else:
            lines.append(line)

    yield Section(name, lines)


def _digest(source: str, version: int) -> str:
    """Hash the generated lines of `source`. Line endings are not part of the
    hash, so a module checked out with CRLF endings still validates."""
    m = hashlib.sha256(f"lalrgen module v{version}\n".encode("utf-8"))
    for section in iterate_sections(source):
        if section.name is not None:
            continue
        for line in section.lines:
            m.update(line.rstrip("\r\n").encode("utf-8"))
            m.update(b"\n")
    return m.hexdigest()


def sign_generated_source(source: str) -> str:
    if source.count(_SIGNING_SLUG) != 1:
        raise SignatureError("Source must contain exactly one signature line to sign")
    signature = Signature(FORMAT_VERSION, _digest(source, FORMAT_VERSION))
    return source.replace(_SIGNING_SLUG, signature.token())


def find_signature(source: str) -> Signature:
    """The signature of a signed module.

    Raises SignatureError if the source isn't signed exactly once.
    """
    signatures = [
        Signature(int(m.group(1)), m.group(2)) for m in _SIGNATURE_PATTERN.finditer(source)
    ]
    if len(signatures) > 1:
        raise SignatureError("Multiple signatures found in source")
    if len(signatures) == 0:
        raise SignatureError("Source does not appear to be signed")
    return signatures[0]


def is_signed(source: str) -> bool:
    return _SIGNATURE_PATTERN.search(source) is not None


def is_current(source: str) -> bool:
    """True if the module was signed with this version's module layout."""
    return find_signature(source).version == FORMAT_VERSION


def validate_signature(source: str) -> bool:
    """True if nothing outside the manual sections changed since signing.

    A module signed with an older layout is checked against that layout's
    digest, so it still validates if nobody touched it.
    """
    signature = find_signature(source)
    unsigned = source.replace(signature.token(), _SIGNING_SLUG)
    return _digest(unsigned, signature.version) == signature.digest


def merge_existing(existing: str, generated: str) -> str:
    """Take the generated source, but with the contents of every manual
    section that also exists in `existing` replaced by the existing text.
    Manual sections that no longer exist in the generated source are
    dropped.
    """
    manual: dict[str, list[str]] = {}
    for section in iterate_sections(existing):
        if section.name is not None:
            manual.setdefault(section.name, []).extend(section.lines)

    result = []
    for section in iterate_sections(generated):
        if section.name is not None:
            result.extend(manual.get(section.name, section.lines))
        else:
            result.extend(section.lines)
    return "".join(result)
