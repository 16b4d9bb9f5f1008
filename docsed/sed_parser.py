"""
sed expression parser.

Turns raw expression strings into SedExpression values:

    s/pattern/replacement/flags     substitute (any delimiter)
    d/pattern/                      delete matching paragraphs
    a/pattern/text/                 insert a paragraph after matches
    i/pattern/text/                 insert a paragraph before matches
    y/abc/xyz/                      transliterate characters

Patterns may address tables and images (``{T=1!A1}``, ``|1|[2,3]``,
``{img=2}``); replacements may carry markdown and brace formatting.
"""
import logging
import re
from typing import List, Optional

from docsed.errors import ErrorCode, SedParseError
from docsed.sed_brace import find_brace_exprs, has_brace_formatting, merge_brace_spans
from docsed.sed_expression import Command, SedExpression
from docsed.sed_refs import (
    brace_table_to_refs,
    create_spec_pipe_form,
    detect_brace_pattern,
    parse_brace_table_ref,
    parse_table_cell_ref,
    parse_table_ref,
)

logger = logging.getLogger(__name__)

_BACKREF = "\x00BACKREF_{}\x00"
_BACKREF_RE = re.compile("\x00BACKREF_(\\d)\x00")
_LITERAL_AMP = "\x00LITAMP\x00"

# Escaped characters that become literals in a replacement.
_UNESCAPED_LITERALS = set(".^[](){}+?|")

_COMMANDS = {
    "d": Command.DELETE,
    "a": Command.APPEND,
    "i": Command.INSERT,
    "y": Command.TRANSLITERATE,
}


def split_by_delim(text: str, delim: str) -> List[str]:
    """Split on an unescaped delimiter; ``\\<delim>`` becomes a literal delimiter."""
    parts = []
    current = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] == delim:
            current.append(delim)
            i += 2
            continue
        if ch == delim:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    parts.append("".join(current))
    return parts


def _flags_at(parts: List[str], idx: int) -> str:
    return parts[idx] if idx < len(parts) else ""


def _strip_flag_attrs(flags: str) -> str:
    brace = flags.find("{")
    return flags[:brace] if brace >= 0 else flags


def apply_regex_flags(pattern: str, flags: str) -> str:
    """Prefix inline flags for ``i`` (case-insensitive) and ``m`` (multiline)."""
    flags = _strip_flag_attrs(flags)
    inline = ""
    if "i" in flags:
        inline += "i"
    if "m" in flags:
        inline += "m"
    return f"(?{inline}){pattern}" if inline else pattern


def extract_nth(flags: str) -> int:
    """First positive integer in the flags (ignoring any ``{...}`` block), else 0."""
    match = re.search(r"\d+", _strip_flag_attrs(flags))
    if not match:
        return 0
    value = int(match.group(0))
    return value if value > 0 else 0


def convert_replacement(replacement: str) -> str:
    """
    Convert a sed replacement into the internal template.

    The template uses ``${N}`` for backreferences (``${0}`` is the whole
    match) and ``$$`` for a literal dollar. Escapes such as ``\\n`` and ``\\t``
    are kept for the markdown layer.
    """
    out = []
    i = 0
    n = len(replacement)
    while i < n:
        ch = replacement[i]
        nxt = replacement[i + 1] if i + 1 < n else ""
        if ch == "\\" and nxt:
            if nxt in "123456789":
                out.append(_BACKREF.format(nxt))
            elif nxt == "$":
                out.append("$$")
            elif nxt in "{}":
                # Left escaped for brace extraction.
                out.append("\\" + nxt)
            elif nxt in _UNESCAPED_LITERALS:
                out.append(nxt)
            elif nxt == "&":
                out.append(_LITERAL_AMP)
            elif nxt == "\\":
                out.append("\\")
            else:
                out.append("\\" + nxt)
            i += 2
            continue
        if ch == "$":
            if nxt == "$":
                out.append("$$")
                i += 2
                continue
            if nxt and nxt in "123456789":
                out.append(_BACKREF.format(nxt))
                i += 2
                continue
            if nxt == "{":
                out.append("$")
            else:
                out.append("$$")
            i += 1
            continue
        out.append(ch)
        i += 1

    template = _BACKREF_RE.sub(lambda m: "${" + m.group(1) + "}", "".join(out))
    template = template.replace("&", "${0}")
    return template.replace(_LITERAL_AMP, "&")


def _parse_delete(raw: str) -> SedExpression:
    parts = split_by_delim(raw[2:], raw[1])
    if not parts or not parts[0]:
        raise SedParseError("invalid delete command (empty pattern)")
    pattern = apply_regex_flags(parts[0], _flags_at(parts, 1))
    return SedExpression(pattern=pattern, command=Command.DELETE, raw=raw)


def _parse_append_insert(raw: str, command: Command) -> SedExpression:
    parts = split_by_delim(raw[2:], raw[1])
    if len(parts) < 2:
        letter = command.value
        raise SedParseError(
            f"invalid {letter} command (expected {letter}/pattern/text/)"
        )
    pattern = apply_regex_flags(parts[0], _flags_at(parts, 2))
    return SedExpression(pattern=pattern, replacement=parts[1], command=command, raw=raw)


def _parse_transliterate(raw: str) -> SedExpression:
    parts = split_by_delim(raw[2:], raw[1])
    if len(parts) < 2:
        raise SedParseError("invalid transliterate command (expected y/source/dest/)")
    source, dest = parts[0], parts[1]
    if len(source) != len(dest):
        raise SedParseError(
            f"transliterate: source and dest must have same length "
            f"({len(source)} vs {len(dest)})"
        )
    if not source:
        raise SedParseError("transliterate: empty source")
    return SedExpression(
        pattern=source, replacement=dest, command=Command.TRANSLITERATE, raw=raw
    )


def parse_expression(raw: str) -> SedExpression:
    """
    Parse one raw expression.

    Args:
        raw: Expression text, e.g. ``s/foo/**bar**/g`` or ``d/^DRAFT/``

    Returns:
        The parsed SedExpression

    Raises:
        SedParseError: If the expression or one of its references is malformed
    """
    if not raw:
        raise SedParseError("empty expression")

    if len(raw) >= 2 and not raw[1].isalnum() and raw[0] in _COMMANDS:
        command = _COMMANDS[raw[0]]
        if command is Command.DELETE:
            return _parse_delete(raw)
        if command is Command.TRANSLITERATE:
            return _parse_transliterate(raw)
        return _parse_append_insert(raw, command)

    if len(raw) < 4 or raw[0] != "s":
        raise SedParseError(
            "invalid sed expression (expected s/pattern/replacement/[flags])"
        )

    parts = split_by_delim(raw[2:], raw[1])
    if len(parts) < 2:
        raise SedParseError("invalid sed expression (missing replacement)")

    flags = _flags_at(parts, 2)
    raw_replacement = parts[1]
    pattern = apply_regex_flags(parts[0], flags)
    replacement = convert_replacement(raw_replacement)
    global_ = "g" in flags

    cell_ref = parse_table_cell_ref(pattern)
    table_ref = None
    if cell_ref is not None:
        pattern = cell_ref.sub_pattern

    if cell_ref is None and pattern.startswith("{"):
        remaining, brace_table, image_ref = detect_brace_pattern(pattern)
        if brace_table is not None:
            table_ref, cell_ref = brace_table_to_refs(brace_table)
            pattern = remaining
            if cell_ref is not None and remaining:
                cell_ref = cell_ref.with_sub_pattern(remaining)
            create_spec = brace_table.create_spec()
            if create_spec is not None:
                replacement = create_spec_pipe_form(create_spec)
        if image_ref is not None:
            pattern = image_ref.to_pattern()

    if cell_ref is None and table_ref is None:
        bare = parse_table_ref(pattern)
        if bare is not None:
            table_ref = bare
            pattern = ""

    brace = None
    brace_spans = ()
    if has_brace_formatting(replacement):
        cleaned, spans = find_brace_exprs(replacement)
        if spans:
            replacement = cleaned
            brace_spans = tuple(spans)
            if len(spans) == 1 and spans[0].is_global:
                brace = spans[0].expr
            else:
                brace = merge_brace_spans(spans)

            if brace.table_ref:
                create_spec = _replacement_create_spec(brace.table_ref)
                if create_spec is not None:
                    replacement = create_spec
                    brace = None
                    brace_spans = ()
    if not brace_spans:
        replacement = replacement.replace("\\{", "{").replace("\\}", "}")

    expr = SedExpression(
        pattern=pattern,
        replacement=replacement,
        command=Command.SUBSTITUTE,
        global_=global_,
        nth_match=extract_nth(flags),
        cell_ref=cell_ref,
        table_ref=table_ref,
        brace=brace,
        brace_spans=brace_spans,
        raw=raw,
    )
    logger.debug(f"Parsed {raw!r} -> pattern={expr.pattern!r} repl={expr.replacement!r}")
    return expr


def _replacement_create_spec(table_ref: str) -> Optional[str]:
    try:
        ref = parse_brace_table_ref(table_ref)
    except SedParseError:
        return None
    spec = ref.create_spec()
    return create_spec_pipe_form(spec) if spec is not None else None


def parse_expressions(raw_expressions: List[str]) -> List[SedExpression]:
    """
    Parse every expression before anything runs.

    Raises:
        SedParseError: Naming the 1-based position and raw text of the first
            expression that fails
    """
    parsed = []
    for position, raw in enumerate(raw_expressions, start=1):
        try:
            parsed.append(parse_expression(raw))
        except SedParseError as e:
            raise SedParseError(
                f'expression {position} ("{raw}"): {e.message}',
                code=e.code if isinstance(e.code, ErrorCode) else None,
            ) from e
    return parsed
