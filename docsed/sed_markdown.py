"""
Markdown layer for replacements.

A replacement such as ``**Done**``, ``## Summary``, ``  - nested item`` or
``[docs](https://example.com)`` is reduced to plain text plus a list of
format names that the request builders understand. Image syntax, table
creation specs and the plain-text test for the native replace path also
live here.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from docsed.sed_brace import has_brace_formatting
from docsed.sed_expression import TableCreateSpec
from docsed.sed_refs import MAX_CREATE_COLS, MAX_CREATE_ROWS

logger = logging.getLogger(__name__)

_ESCAPES = (
    ("\\\\", "\x00ESC_BACKSLASH\x00", "\\"),
    ("\\*", "\x00ESC_ASTERISK\x00", "*"),
    ("\\#", "\x00ESC_HASH\x00", "#"),
    ("\\~", "\x00ESC_TILDE\x00", "~"),
    ("\\`", "\x00ESC_BACKTICK\x00", "`"),
    ("\\-", "\x00ESC_DASH\x00", "-"),
    ("\\+", "\x00ESC_PLUS\x00", "+"),
    ("\\n", "\n", None),
)
_ESCAPE_RE = re.compile("|".join(re.escape(src) for src, _, _ in _ESCAPES))
_ESCAPE_MAP = {src: placeholder for src, placeholder, _ in _ESCAPES}
_UNESCAPE_MAP = {placeholder: char for _, placeholder, char in _ESCAPES if char is not None}
_UNESCAPE_RE = re.compile("|".join(re.escape(p) for p in _UNESCAPE_MAP))

HRULE_MARKERS = ("---", "***", "___")

# Markers that need the manual path.
NATIVE_BLOCK_MARKERS = (
    "**", "*", "~~", "`",
    "# ", "## ", "### ", "#### ", "##### ", "###### ",
    "- ", "+ ",
    "> ",
    "[^",
)

_BULLET_PREFIXES = ("- ", "+ ")
_NUMBERED_RE = re.compile(r"\d\. ")


def escape_markdown(text: str) -> str:
    """Swap escaped markdown characters for placeholders and decode ``\\n``."""
    return _ESCAPE_RE.sub(lambda m: _ESCAPE_MAP[m.group(0)], text)


def unescape_markdown(text: str) -> str:
    return _UNESCAPE_RE.sub(lambda m: _UNESCAPE_MAP[m.group(0)], text)


def literal_replacement(template: str) -> str:
    """Turn the internal replacement template into literal text (``$$`` -> ``$``)."""
    return template.replace("$$", "$")


def is_hrule(text: str) -> bool:
    return text.strip() in HRULE_MARKERS


def _inline_format(text: str) -> Tuple[str, List[str]]:
    if text.startswith("***") and text.endswith("***") and len(text) > 6:
        return text[3:-3], ["bold", "italic"]
    if text.startswith("**") and text.endswith("**") and len(text) > 4:
        return text[2:-2], ["bold"]
    if text.startswith("*") and text.endswith("*") and len(text) > 2:
        return text[1:-1], ["italic"]
    if text.startswith("~~") and text.endswith("~~") and len(text) > 4:
        return text[2:-2], ["strikethrough"]
    if text.startswith("`") and text.endswith("`") and len(text) > 2:
        return text[1:-1], ["code"]

    link_at = text.find("](")
    if link_at > 0 and text.startswith("["):
        close_paren = text.rfind(")")
        if close_paren > link_at + 2:
            url = text[link_at + 2:close_paren].replace("\\/", "/")
            return text[1:link_at], ["link:" + url]

    if text.startswith("#"):
        level = min(len(text) - len(text.lstrip("#")), 6)
        if level > 0:
            stripped = text[level:]
            if stripped.startswith(" "):
                stripped = stripped[1:]
            return stripped, [f"heading{level}"]

    return text, []


def parse_markdown_replacement(replacement: str) -> Tuple[str, List[str]]:
    """
    Reduce a markdown replacement to plain text and format names.

    Block forms are checked first (horizontal rule, fenced code, blockquote,
    footnote, list prefix), then one inline form applies to the whole text.
    Two leading spaces per level before a list prefix nest the item; the
    nesting is carried as leading tab characters.

    Args:
        replacement: Literal replacement text

    Returns:
        Tuple of (plain_text, formats), e.g. ("Done", ["bold"])
    """
    text = escape_markdown(replacement)

    if is_hrule(text):
        return "\n", ["hrule"]

    if text.startswith("```") and text.endswith("```") and len(text) > 6:
        inner = text[3:-3]
        newline = inner.find("\n")
        if newline >= 0:
            inner = inner[newline + 1:]
        return unescape_markdown(inner), ["codeblock"]

    if text.startswith("> "):
        return unescape_markdown(text[2:]), ["blockquote"]

    if text.startswith("[^") and text.endswith("]") and len(text) > 3:
        return unescape_markdown(text[2:-1]), ["footnote"]

    formats: List[str] = []
    level = 0
    list_text = text
    while list_text.startswith("  "):
        level += 1
        list_text = list_text[2:]

    list_format = ""
    prefix_len = 2
    if list_text.startswith(_BULLET_PREFIXES):
        list_format = "bullet"
    elif list_text.startswith("* ") and not list_text.endswith("*"):
        list_format = "bullet"
    elif _NUMBERED_RE.match(list_text):
        list_format = "numbered"
        prefix_len = 3

    if list_format:
        formats.append(list_format)
        text = "\t" * level + list_text[prefix_len:]

    plain, inline = _inline_format(text)
    return unescape_markdown(plain), formats + inline


def can_use_native_replace(replacement: str) -> bool:
    """
    True if the replacement is plain text the native replaceAllText can write.

    Brace blocks, image syntax, markdown markers, horizontal rules, numbered
    prefixes, ``\\n`` escapes, backreferences and links all need the manual
    path.
    """
    if has_brace_formatting(replacement):
        return False
    if replacement.startswith("!["):
        return False
    if replacement.startswith("!(") and replacement.endswith(")"):
        if replacement[2:-1].startswith(("http://", "https://")):
            return False
    if any(marker in replacement for marker in NATIVE_BLOCK_MARKERS):
        return False
    if is_hrule(replacement):
        return False
    if _NUMBERED_RE.match(replacement):
        return False
    if "\\n" in replacement:
        return False
    if re.search(r"\$[1-9{]", replacement):
        return False
    return "](" not in replacement


@dataclass(frozen=True)
class ImageSpec:
    """Image to insert: URL plus optional alt text, title and size in points."""
    url: str
    alt: str = ""
    caption: str = ""
    width: int = 0
    height: int = 0


def _size_value(value: str, strip_units: bool) -> Optional[int]:
    if strip_units:
        value = value[:-2] if value.endswith("px") else value
        value = value[:-1] if value.endswith("%") else value
    try:
        return int(value)
    except ValueError:
        return None


def parse_image_syntax(text: str) -> Optional[ImageSpec]:
    """
    Parse ``![alt](url "title"){width=N height=N}``.

    ``w=``/``h=`` are accepted as short forms; ``px`` and ``%`` suffixes on
    width/height are ignored. Returns None if text is not an image.
    """
    if not text.startswith("!["):
        return None
    alt_end = text.find("](")
    if alt_end == -1:
        return None
    alt = text[2:alt_end]
    rest = text[alt_end + 2:]

    url_end = -1
    for i, ch in enumerate(rest):
        if ch in ('"', ")", "{"):
            url_end = i
            break
    if url_end == -1:
        if not rest.endswith(")"):
            return None
        url_end = len(rest) - 1

    url = rest[:url_end].strip()
    rest = rest[url_end:]
    caption = ""
    width = 0
    height = 0

    if rest.startswith(' "') or rest.startswith('"'):
        rest = rest.lstrip(" ")
        title_end = rest.find('"', 1)
        if title_end != -1:
            caption = rest[1:title_end]
            rest = rest[title_end + 1:]

    if rest.startswith(")"):
        rest = rest[1:]

    if rest.startswith("{"):
        attr_end = rest.find("}")
        if attr_end != -1:
            for part in rest[1:attr_end].split():
                key, _, value = part.partition("=")
                if key in ("width", "w"):
                    parsed = _size_value(value, key == "width")
                    if parsed is not None:
                        width = parsed
                elif key in ("height", "h"):
                    parsed = _size_value(value, key == "height")
                    if parsed is not None:
                        height = parsed

    return ImageSpec(url=url, alt=alt, caption=caption, width=width, height=height)


def parse_image_shorthand(text: str) -> Optional[ImageSpec]:
    """``!(https://...)`` inserts an image with no alt text."""
    if text.startswith("!(") and text.endswith(")"):
        inner = text[2:-1]
        if inner.startswith(("http://", "https://")):
            return ImageSpec(url=inner)
    return None


def parse_table_create(text: str) -> Optional[TableCreateSpec]:
    """Parse ``|RxC|`` or ``|RxC:header|``; None if text is not such a spec."""
    text = text.strip()
    if len(text) < 4 or text[0] != "|" or text[-1] != "|":
        return None
    inner = text[1:-1]
    header = False
    if ":" in inner:
        inner, suffix = inner.split(":", 1)
        if suffix.strip().lower() != "header":
            return None
        header = True

    match = re.fullmatch(r"\s*(\d+)\s*x\s*(\d+)\s*", inner.lower())
    if not match:
        return None
    rows, cols = int(match.group(1)), int(match.group(2))
    if not (1 <= rows <= MAX_CREATE_ROWS and 1 <= cols <= MAX_CREATE_COLS):
        return None
    return TableCreateSpec(rows=rows, cols=cols, header=header)


def parse_table_from_pipes(text: str) -> Optional[TableCreateSpec]:
    """
    Parse a markdown pipe table (``\\n`` separates rows).

    Separator rows (``|---|:-:|``) are skipped and rows are padded or
    truncated to the width of the first row.
    """
    text = text.replace("\\n", "\n").strip()
    if not text.startswith("|"):
        return None

    rows: List[Tuple[str, ...]] = []
    col_count = 0
    for line in text.split("\n"):
        line = line.strip()
        if not line:
            continue
        if not line.startswith("|"):
            return None

        cells: Optional[List[str]] = []
        for part in line.split("|"):
            part = part.strip()
            if not part:
                continue
            if not part.strip("-: "):
                cells = None
                break
            cells.append(part)
        if cells is None:
            continue
        if not cells:
            return None

        if col_count == 0:
            col_count = len(cells)
        elif len(cells) != col_count:
            cells = (cells + [""] * col_count)[:col_count]
        rows.append(tuple(cells))

    if not rows or col_count < 1:
        return None
    return TableCreateSpec(rows=len(rows), cols=col_count, cells=tuple(rows))


def parse_table_spec(text: str) -> Optional[TableCreateSpec]:
    """A ``|RxC|`` creation spec or a pipe table, whichever text is."""
    return parse_table_create(text) or parse_table_from_pipes(text)
