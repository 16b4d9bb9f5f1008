"""
Brace formatting directives.

A replacement may carry ``{...}`` blocks that describe formatting rather
than text, e.g. ``{b c=red}``, ``H{,=2}O`` or ``{h=2 a=center}``. This
module parses the block grammar, locates blocks inside a replacement and
reports where each one applies in the cleaned output text.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from docsed.errors import ErrorCode, SedParseError
from docsed.sed_expression import TriState

logger = logging.getLogger(__name__)

# Indent value meaning "not specified".
INDENT_NOT_SET = -1

# Short and long boolean flag names mapped to their canonical short name.
BOOL_FLAGS: Dict[str, str] = {
    "b": "b",
    "bold": "b",
    "i": "i",
    "italic": "i",
    "_": "_",
    "underline": "_",
    "-": "-",
    "strike": "-",
    "#": "#",
    "code": "#",
    "^": "^",
    "sup": "^",
    "super": "^",
    ",": ",",
    "sub": ",",
    "w": "w",
    "smallcaps": "w",
}

# Canonical flag -> BraceExpr attribute.
BOOL_FLAG_ATTRS: Dict[str, str] = {
    "b": "bold",
    "i": "italic",
    "_": "underline",
    "-": "strike",
    "#": "code",
    "^": "sup",
    ",": "sub",
    "w": "smallcaps",
}

NAMED_COLORS: Dict[str, str] = {
    "black": "#000000",
    "white": "#FFFFFF",
    "red": "#FF0000",
    "green": "#00FF00",
    "blue": "#0000FF",
    "yellow": "#FFFF00",
    "cyan": "#00FFFF",
    "magenta": "#FF00FF",
    "orange": "#FF8C00",
    "purple": "#800080",
    "pink": "#FF69B4",
    "brown": "#8B4513",
    "gray": "#808080",
    "grey": "#808080",
    "lightgray": "#D3D3D3",
    "darkgray": "#404040",
    "navy": "#000080",
    "teal": "#008080",
}

HEADING_STYLES: Dict[str, str] = {
    "t": "TITLE",
    "s": "SUBTITLE",
    "1": "HEADING_1",
    "2": "HEADING_2",
    "3": "HEADING_3",
    "4": "HEADING_4",
    "5": "HEADING_5",
    "6": "HEADING_6",
    "0": "NORMAL_TEXT",
}

ALIGNMENTS: Dict[str, str] = {
    "left": "START",
    "center": "CENTER",
    "right": "END",
    "justify": "JUSTIFIED",
}

BREAK_KINDS: Dict[str, str] = {
    "": "horizontal_rule",
    "p": "page_break",
    "c": "column_break",
    "s": "section_break",
}

# Long break names accepted after "+=".
BREAK_ALIASES: Dict[str, str] = {
    "page": "p",
    "column": "c",
    "section": "s",
}

# Key fragments that mark a block as a formatting directive.
VALUE_KEY_MARKERS = (
    "t=", "text=", "c=", "color=", "z=", "bg=", "f=", "font=",
    "s=", "size=", "u=", "url=", "h=", "heading=", "l=", "leading=",
    "a=", "align=", "o=", "opacity=", "n=", "indent=", "k=", "kerning=",
    "x=", "width=", "y=", "height=", "p=", "spacing=", "e=", "effect=",
    "cols=", "check", "toc", "img=", "T=", "@=", '"=',
)


@dataclass
class InlineSpan:
    """Text written in place of a ``{flag=text}`` block plus its flags."""
    text: str
    flags: List[str] = field(default_factory=list)


@dataclass
class BraceExpr:
    """Every attribute a brace block can set. Unset values keep their defaults."""
    bold: TriState = TriState.UNSET
    italic: TriState = TriState.UNSET
    underline: TriState = TriState.UNSET
    strike: TriState = TriState.UNSET
    code: TriState = TriState.UNSET
    sup: TriState = TriState.UNSET
    sub: TriState = TriState.UNSET
    smallcaps: TriState = TriState.UNSET

    inline_spans: List[InlineSpan] = field(default_factory=list)

    text: str = ""
    color: str = ""
    bg: str = ""
    font: str = ""
    size: float = 0.0
    url: str = ""
    heading: str = ""
    leading: float = 0.0
    align: str = ""
    opacity: int = 0
    indent: int = INDENT_NOT_SET
    kerning: float = 0.0
    width: int = 0
    height: int = 0

    spacing_above: float = 0.0
    spacing_below: float = 0.0
    spacing_set: bool = False

    effect: str = ""
    cols: int = 0

    reset: bool = False
    no_reset: bool = False
    break_kind: str = ""
    has_break: bool = False
    comment: str = ""
    bookmark: str = ""

    check: TriState = TriState.UNSET
    toc: int = 0
    has_toc: bool = False

    img_ref: str = ""
    table_ref: str = ""

    def set_flag(self, canonical: str, value: bool) -> None:
        setattr(self, BOOL_FLAG_ATTRS[canonical], TriState.of(value))

    def flag(self, canonical: str) -> TriState:
        return getattr(self, BOOL_FLAG_ATTRS[canonical])

    def copy(self, **changes) -> "BraceExpr":
        return replace(self, inline_spans=list(self.inline_spans), **changes)


@dataclass
class BraceSpan:
    """
    A brace block positioned in the cleaned replacement text.

    Global spans apply to the whole inserted text and carry end == -1.
    """
    expr: BraceExpr
    start: int
    end: int = 0
    is_global: bool = False
    raw: str = ""


def resolve_color(value: str) -> str:
    """Map a colour name to hex; anything else passes through unchanged."""
    return NAMED_COLORS.get(value.lower(), value)


def resolve_heading(value: str) -> str:
    return HEADING_STYLES.get(value, value)


def resolve_align(value: str) -> str:
    return ALIGNMENTS.get(value.lower(), value)


def resolve_break(value: str) -> str:
    return BREAK_KINDS.get(value, value)


def is_hex_color(value: str) -> bool:
    if not value.startswith("#"):
        return False
    digits = value[1:]
    if len(digits) not in (3, 6):
        return False
    return all(c in "0123456789abcdefABCDEF" for c in digits)


def normalize_hex_color(value: str) -> str:
    """Expand #RGB to #RRGGBB and uppercase."""
    if not value.startswith("#"):
        return value
    digits = value[1:].upper()
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return "#" + digits


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def tokenize_brace_content(content: str) -> List[str]:
    """Split block content on whitespace, keeping quoted values together."""
    tokens = []
    current = []
    quote = None
    for ch in content:
        if quote:
            if ch == quote:
                quote = None
            current.append(ch)
        elif ch in ('"', "'"):
            quote = ch
            current.append(ch)
        elif ch in (" ", "\t"):
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        tokens.append("".join(current))
    return tokens


def _parse_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _parse_spacing(value: str, expr: BraceExpr) -> None:
    expr.spacing_set = True
    if "," in value:
        above, below = value.split(",", 1)
        above_pt = _parse_float(above)
        below_pt = _parse_float(below)
        if above_pt is not None:
            expr.spacing_above = above_pt
        if below_pt is not None:
            expr.spacing_below = below_pt
    else:
        both = _parse_float(value)
        if both is not None:
            expr.spacing_above = both
            expr.spacing_below = both


def _parse_key_value(key: str, value: str, expr: BraceExpr) -> None:
    if key in BOOL_FLAGS:
        expr.inline_spans.append(InlineSpan(text=value, flags=[BOOL_FLAGS[key]]))
        return

    if key in ("t", "text"):
        expr.text = value
    elif key in ("c", "color"):
        expr.color = resolve_color(value)
    elif key in ("z", "bg"):
        expr.bg = resolve_color(value)
    elif key in ("f", "font"):
        expr.font = value
    elif key in ("s", "size"):
        size = _parse_float(value)
        if size is not None and size > 0:
            expr.size = size
    elif key in ("u", "url"):
        expr.url = value
    elif key in ("h", "heading"):
        expr.heading = value
    elif key in ("l", "leading"):
        leading = _parse_float(value)
        if leading is not None and leading > 0:
            expr.leading = leading
    elif key in ("a", "align"):
        expr.align = value.lower()
    elif key in ("o", "opacity"):
        opacity = _parse_int(value)
        if opacity is not None and 0 <= opacity <= 100:
            expr.opacity = opacity
    elif key in ("n", "indent"):
        indent = _parse_int(value)
        if indent is not None and indent >= 0:
            expr.indent = indent
    elif key in ("k", "kerning"):
        kerning = _parse_float(value)
        if kerning is not None:
            expr.kerning = kerning
    elif key in ("x", "width"):
        width = _parse_int(value)
        if width is not None and width > 0:
            expr.width = width
    elif key in ("y", "height"):
        height = _parse_int(value)
        if height is not None and height > 0:
            expr.height = height
    elif key in ("p", "spacing"):
        _parse_spacing(value, expr)
    elif key in ("e", "effect"):
        expr.effect = value
    elif key == "cols":
        cols = _parse_int(value)
        if cols is not None and cols >= 1:
            expr.cols = cols
    elif key == "check":
        lowered = value.lower()
        if lowered in ("y", "yes", "true", "1"):
            expr.check = TriState.TRUE
        elif lowered in ("n", "no", "false", "0"):
            expr.check = TriState.FALSE
    elif key == "toc":
        expr.has_toc = True
        depth = _parse_int(value)
        expr.toc = depth if depth is not None and depth >= 0 else -1
    elif key == "img":
        expr.img_ref = value
    elif key == "T":
        expr.table_ref = value
    else:
        raise SedParseError(f"unknown key: {key}", code=ErrorCode.INVALID_BRACE)


def _parse_bare_flag(token: str, expr: BraceExpr) -> None:
    if token in BOOL_FLAGS:
        expr.set_flag(BOOL_FLAGS[token], True)
        return

    if token == "check":
        expr.check = TriState.FALSE
    elif token == "toc":
        expr.has_toc = True
        expr.toc = -1
    elif token in ("t", "text"):
        expr.text = "$0"
    elif token in ("c", "color"):
        expr.color = "#000000"
    elif token in ("z", "bg"):
        expr.bg = ""
    elif token in ("f", "font"):
        expr.font = "Arial"
    elif token in ("s", "size"):
        expr.size = 11.0
    elif token in ("h", "heading"):
        expr.heading = "1"
    elif token in ("p", "spacing"):
        expr.spacing_set = True
    elif token == "cols":
        expr.cols = 1
    else:
        raise SedParseError(f"unknown flag: {token}", code=ErrorCode.INVALID_BRACE)


def _parse_token(token: str, expr: BraceExpr) -> None:
    if token == "+" or token.startswith("+="):
        expr.has_break = True
        if token.startswith("+="):
            kind = token[2:]
            expr.break_kind = BREAK_ALIASES.get(kind, kind)
        return

    if token.startswith("@="):
        expr.bookmark = _unquote(token[2:])
        return

    if token.startswith("!"):
        name = token[1:]
        if name == "0":
            expr.no_reset = True
            return
        if name in BOOL_FLAGS:
            expr.set_flag(BOOL_FLAGS[name], False)
            return
        raise SedParseError(f"unknown negated flag: {name}", code=ErrorCode.INVALID_BRACE)

    if "=" in token:
        key, value = token.split("=", 1)
        _parse_key_value(key, _unquote(value), expr)
        return

    _parse_bare_flag(token, expr)


def parse_brace_expr(content: str) -> BraceExpr:
    """
    Parse the content between ``{`` and ``}``.

    Args:
        content: Block content, e.g. ``b c=red t=hello``

    Returns:
        The parsed BraceExpr

    Raises:
        SedParseError: On unknown keys, flags or negated flags
    """
    content = content.strip()
    expr = BraceExpr()
    if not content:
        return expr

    # A comment swallows the rest of the block.
    comment_at = content.find('"=')
    if comment_at >= 0:
        expr.comment = content[comment_at + 2:]
        content = content[:comment_at].strip()

    if content == "0" or content.startswith("0 ") or content.startswith("0\t"):
        expr.reset = True
        content = content[1:].strip()

    for token in tokenize_brace_content(content):
        _parse_token(token, expr)
    return expr


def find_matching_brace(text: str, pos: int) -> int:
    """Index of the ``}`` closing the ``{`` at pos, or -1. Escapes are skipped."""
    if pos >= len(text) or text[pos] != "{":
        return -1
    depth = 1
    i = pos + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _is_global_block(text: str, open_idx: int, close_idx: int) -> bool:
    before = text[:open_idx].strip()
    after = text[close_idx + 1:].strip()
    # Only a block with text on both sides is positional.
    return not (before and after)


def find_brace_exprs(replacement: str) -> Tuple[str, List[BraceSpan]]:
    """
    Strip brace blocks from a replacement and locate their spans.

    ``\\{`` and ``\\}`` are literal braces. Unmatched or unparsable blocks are
    kept as literal text. Positions refer to the cleaned text.

    Args:
        replacement: Replacement string possibly containing brace blocks

    Returns:
        Tuple of (cleaned_text, spans)
    """
    if "{" not in replacement:
        return replacement, []

    spans: List[BraceSpan] = []
    out: List[str] = []
    pos = 0
    i = 0
    n = len(replacement)
    while i < n:
        ch = replacement[i]
        if ch == "\\" and i + 1 < n:
            if replacement[i + 1] in "{}":
                out.append(replacement[i + 1])
                pos += 1
                i += 2
                continue
            out.append(ch)
            pos += 1
            i += 1
            continue

        if ch != "{":
            out.append(ch)
            pos += 1
            i += 1
            continue

        close_idx = find_matching_brace(replacement, i)
        if close_idx < 0:
            out.append("{")
            pos += 1
            i += 1
            continue

        raw = replacement[i:close_idx + 1]
        try:
            expr = parse_brace_expr(replacement[i + 1:close_idx])
        except SedParseError as e:
            logger.debug(f"Treating {raw!r} as literal text: {e}")
            out.append("{")
            pos += 1
            i += 1
            continue

        if expr.inline_spans:
            for inline in expr.inline_spans:
                span_start = pos
                out.append(inline.text)
                pos += len(inline.text)
                inline_expr = BraceExpr()
                for flag in inline.flags:
                    inline_expr.set_flag(flag, True)
                spans.append(BraceSpan(inline_expr, span_start, pos, raw=raw))
            i = close_idx + 1
            continue

        if expr.text and expr.text != "$0":
            span_start = pos
            out.append(expr.text)
            pos += len(expr.text)
            spans.append(BraceSpan(expr, span_start, pos, raw=raw))
            i = close_idx + 1
            continue

        span = BraceSpan(expr, pos, raw=raw)
        if _is_global_block(replacement, i, close_idx):
            span.is_global = True
            span.end = -1
        spans.append(span)
        i = close_idx + 1

    return "".join(out), spans


def looks_like_brace_expr(content: str) -> bool:
    """Heuristic separating formatting blocks from literal braces."""
    content = content.strip()
    if not content:
        return False
    if content == "0" or content.startswith("0 "):
        return True
    for flag in BOOL_FLAGS:
        if content == flag or content.startswith(flag + " ") or content.startswith(flag + "="):
            return True
        if content == "!" + flag or content.startswith("!" + flag + " "):
            return True
    if any(marker in content for marker in VALUE_KEY_MARKERS):
        return True
    return content == "+" or content.startswith("+=")


def has_brace_formatting(replacement: str) -> bool:
    """True if the replacement holds at least one unescaped formatting block."""
    for i, ch in enumerate(replacement):
        if ch != "{" or (i > 0 and replacement[i - 1] == "\\"):
            continue
        close_idx = find_matching_brace(replacement, i)
        if close_idx > i + 1 and looks_like_brace_expr(replacement[i + 1:close_idx]):
            return True
    return False


def merge_brace_spans(spans: List[BraceSpan]) -> BraceExpr:
    """
    Fold every global span into one BraceExpr; later spans win.

    Positional spans are applied separately at their own offsets.
    """
    merged = BraceExpr()
    for span in spans:
        if not span.is_global or span.expr is None:
            continue
        src = span.expr
        for attr in BOOL_FLAG_ATTRS.values():
            if getattr(src, attr).is_set:
                setattr(merged, attr, getattr(src, attr))
        for attr in ("color", "bg", "font", "url", "heading", "align", "effect",
                     "comment", "bookmark", "img_ref", "table_ref"):
            if getattr(src, attr):
                setattr(merged, attr, getattr(src, attr))
        for attr in ("size", "leading", "opacity", "width", "height", "cols"):
            if getattr(src, attr) > 0:
                setattr(merged, attr, getattr(src, attr))
        if src.kerning:
            merged.kerning = src.kerning
        if src.spacing_set:
            merged.spacing_set = True
            merged.spacing_above = src.spacing_above
            merged.spacing_below = src.spacing_below
        if src.indent >= 0:
            merged.indent = src.indent
        if src.check.is_set:
            merged.check = src.check
        if src.has_toc:
            merged.has_toc = True
            merged.toc = src.toc
        if src.reset:
            merged.reset = True
        if src.no_reset:
            merged.no_reset = True
        if src.has_break:
            merged.has_break = True
            merged.break_kind = src.break_kind
    return merged


def brace_has_text_format(expr: Optional[BraceExpr]) -> bool:
    if expr is None:
        return False
    if any(expr.flag(flag).is_set for flag in BOOL_FLAG_ATTRS):
        return True
    return bool(expr.color or expr.bg or expr.font or expr.size > 0 or expr.url)


def brace_has_paragraph_format(expr: Optional[BraceExpr]) -> bool:
    if expr is None:
        return False
    return bool(
        expr.heading
        or expr.align
        or expr.indent >= 0
        or expr.leading > 0
        or expr.spacing_set
    )


def brace_has_any_format(expr: Optional[BraceExpr]) -> bool:
    """True if the block sets anything at all."""
    if expr is None:
        return False
    if brace_has_text_format(expr) or brace_has_paragraph_format(expr) or expr.inline_spans:
        return True
    if (
        expr.text
        or expr.opacity > 0
        or expr.kerning != 0
        or expr.width > 0
        or expr.height > 0
        or expr.effect
        or expr.cols > 0
    ):
        return True
    return bool(
        expr.reset
        or expr.has_break
        or expr.comment
        or expr.bookmark
        or expr.check.is_set
        or expr.has_toc
        or expr.img_ref
        or expr.table_ref
    )


def _format_float(value: float) -> str:
    if value == int(value):
        return str(int(value))
    return repr(value)


def brace_to_formats(expr: Optional[BraceExpr]) -> List[str]:
    """Express a block as markdown-style format names (``bold``, ``color:#F00``...)."""
    if expr is None:
        return []
    formats = []
    names = (
        ("bold", "bold"),
        ("italic", "italic"),
        ("underline", "underline"),
        ("strike", "strikethrough"),
        ("code", "code"),
        ("sup", "superscript"),
        ("sub", "subscript"),
        ("smallcaps", "smallcaps"),
    )
    for attr, name in names:
        if getattr(expr, attr) is TriState.TRUE:
            formats.append(name)
    if expr.font:
        formats.append("font:" + expr.font)
    if expr.size > 0:
        formats.append("size:" + _format_float(expr.size))
    if expr.color:
        formats.append("color:" + expr.color)
    if expr.bg:
        formats.append("bg:" + expr.bg)
    if expr.url:
        formats.append("link:" + expr.url)
    if expr.heading:
        if expr.heading == "t":
            formats.append("title")
        elif expr.heading == "s":
            formats.append("subtitle")
        elif expr.heading == "0":
            formats.append("normal")
        else:
            formats.append("heading" + expr.heading)
    if expr.align:
        formats.append("align:" + expr.align)
    return formats


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


def format_brace_flags(expr: Optional[BraceExpr]) -> str:
    """Compact ``{...}`` rendering of a block for dry-run output."""
    if expr is None:
        return ""
    parts = []
    if expr.reset:
        parts.append("0")
    for canonical in ("b", "i", "_", "-"):
        state = expr.flag(canonical)
        if state is TriState.TRUE:
            parts.append(canonical)
        elif state is TriState.FALSE:
            parts.append("!" + canonical)
    for canonical in ("#", "^", ",", "w"):
        if expr.flag(canonical) is TriState.TRUE:
            parts.append(canonical)
    if expr.color:
        parts.append("c=" + expr.color)
    if expr.bg:
        parts.append("z=" + expr.bg)
    if expr.font:
        parts.append("f=" + expr.font)
    if expr.size > 0:
        parts.append(f"s={expr.size:.0f}")
    if expr.url:
        parts.append("u=" + truncate(expr.url, 20))
    if expr.heading:
        parts.append("h=" + expr.heading)
    if expr.align:
        parts.append("a=" + expr.align)
    if expr.has_break:
        parts.append("+" if not expr.break_kind else "+=" + expr.break_kind)
    if not parts:
        return ""
    return "{" + " ".join(parts) + "}"
