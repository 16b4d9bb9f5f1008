"""
Formatting translator.

Turns markdown format names and brace directives into Docs style requests
scoped to freshly inserted text, and builds the structural extras a brace
directive can ask for (breaks, columns, checkboxes, bookmarks, chips).
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from core.utils import utf16_len
from docsed import docs_helpers as helpers
from docsed.sed_brace import (
    BraceExpr,
    BraceSpan,
    brace_has_text_format,
    resolve_align,
    resolve_heading,
)
from docsed.sed_expression import TriState

logger = logging.getLogger(__name__)

# Field mask cleared by an implicit or explicit brace reset.
RESET_TEXT_FIELDS = [
    "bold", "italic", "underline", "strikethrough", "smallCaps",
    "baselineOffset", "foregroundColor", "backgroundColor",
    "fontSize", "weightedFontFamily", "link",
]

# Markdown formats that restyle the whole paragraph.
PARAGRAPH_FORMATS = ("bullet", "numbered", "checkbox", "blockquote")

_TEMPLATE_RE = re.compile(r"\$\$|\$\{(\d+)\}")

CHIP_PREFIX = "chip://"


def expand_template(template: str, match: Optional["re.Match[str]"]) -> str:
    """
    Expand ``${N}`` backreferences and ``$$`` against a regex match.

    Groups that did not participate expand to the empty string; with no
    match every backreference is empty.
    """
    def substitute(m: "re.Match[str]") -> str:
        if m.group(1) is None:
            return "$"
        if match is None:
            return ""
        group = int(m.group(1))
        if group > match.re.groups:
            return ""
        return match.group(group) or ""

    return _TEMPLATE_RE.sub(substitute, template)


def render_brace_text(template: str, match: Optional["re.Match[str]"]) -> str:
    """Text inserted for a brace-formatted replacement."""
    return expand_template(template, match).replace("\\n", "\n")


def has_format(formats: Sequence[str], name: str) -> bool:
    return name in formats


def has_paragraph_format(formats: Sequence[str]) -> bool:
    return any(f in PARAGRAPH_FORMATS or _heading_level(f) for f in formats)


def _heading_level(fmt: str) -> int:
    if fmt.startswith("heading") and len(fmt) == 8 and fmt[7] in "123456":
        return int(fmt[7])
    return 0


def _set_link(text_style: Dict[str, Any], url: str) -> bool:
    resolved = resolve_chip_url(url)[0] if url.startswith(CHIP_PREFIX) else url
    if not resolved:
        return False
    text_style['link'] = helpers.link_style(resolved)
    return True


def _set_code(text_style: Dict[str, Any], fields: List[str]) -> None:
    text_style['weightedFontFamily'] = {'fontFamily': helpers.CODE_FONT}
    text_style['backgroundColor'] = helpers.grey_color(helpers.CODE_BACKGROUND_GREY)
    fields.extend(['weightedFontFamily', 'backgroundColor'])


def build_text_style_requests(formats: Sequence[str], start: int, end: int) -> List[Dict[str, Any]]:
    """
    Build one updateTextStyle request from markdown-style format names.

    Handles bold, italic, strikethrough, code, underline, superscript,
    subscript, smallcaps and the valued forms ``link:``, ``font:``,
    ``size:``, ``color:`` and ``bg:``. Other names are ignored.

    Returns:
        A single-element list, or [] when nothing text-level applies
    """
    text_style: Dict[str, Any] = {}
    fields: List[str] = []

    for fmt in formats:
        if fmt == "bold":
            text_style['bold'] = True
            fields.append('bold')
        elif fmt == "italic":
            text_style['italic'] = True
            fields.append('italic')
        elif fmt == "strikethrough":
            text_style['strikethrough'] = True
            fields.append('strikethrough')
        elif fmt == "underline":
            text_style['underline'] = True
            fields.append('underline')
        elif fmt == "code":
            _set_code(text_style, fields)
        elif fmt == "superscript":
            text_style['baselineOffset'] = 'SUPERSCRIPT'
            fields.append('baselineOffset')
        elif fmt == "subscript":
            text_style['baselineOffset'] = 'SUBSCRIPT'
            fields.append('baselineOffset')
        elif fmt == "smallcaps":
            text_style['smallCaps'] = True
            fields.append('smallCaps')
        elif fmt.startswith("link:"):
            if _set_link(text_style, fmt[5:]):
                fields.append('link')
        elif fmt.startswith("font:"):
            text_style['weightedFontFamily'] = {'fontFamily': fmt[5:]}
            fields.append('weightedFontFamily')
        elif fmt.startswith("size:"):
            try:
                size = float(fmt[5:])
            except ValueError:
                continue
            if size > 0:
                text_style['fontSize'] = {'magnitude': size, 'unit': 'PT'}
                fields.append('fontSize')
        elif fmt.startswith("color:"):
            color = helpers.hex_optional_color(fmt[6:])
            if color:
                text_style['foregroundColor'] = color
                fields.append('foregroundColor')
        elif fmt.startswith("bg:"):
            color = helpers.hex_optional_color(fmt[3:])
            if color:
                text_style['backgroundColor'] = color
                fields.append('backgroundColor')

    if not fields:
        return []
    return [helpers.create_update_text_style_request(start, end, text_style, _dedupe(fields))]


def _dedupe(fields: List[str]) -> List[str]:
    seen = []
    for f in fields:
        if f not in seen:
            seen.append(f)
    return seen


def build_paragraph_style_requests(formats: Sequence[str], start: int, end: int) -> List[Dict[str, Any]]:
    """
    Build heading, bullet and blockquote requests from format names.

    ``end`` should already cover the paragraph's newline. Nesting comes
    from tab characters already present in the text.
    """
    heading = 0
    bullet_preset = ""
    blockquote = False
    for fmt in formats:
        heading = _heading_level(fmt) or heading
        if fmt == "bullet":
            bullet_preset = helpers.BULLET_PRESET_DISC
        elif fmt == "checkbox":
            bullet_preset = helpers.BULLET_PRESET_CHECKBOX
        elif fmt == "numbered":
            bullet_preset = helpers.NUMBERED_PRESET
        elif fmt == "blockquote":
            blockquote = True

    requests = []
    if heading:
        requests.append(helpers.create_named_style_request(start, end, f"HEADING_{heading}"))
    if bullet_preset:
        requests.append(helpers.create_bullet_list_request(start, end, bullet_preset))
    if blockquote:
        requests.append(helpers.create_blockquote_request(start, end))
    return requests


def build_paragraph_reset_requests(start: int, end: int) -> List[Dict[str, Any]]:
    """Back to NORMAL_TEXT with no bullet, so replaced paragraphs don't leak style."""
    return [
        helpers.create_named_style_request(start, end, "NORMAL_TEXT"),
        helpers.create_delete_bullets_request(start, end),
    ]


def build_brace_text_style_requests(brace: Optional[BraceExpr], start: int, end: int) -> List[Dict[str, Any]]:
    """
    Text style requests for a brace directive.

    Unless the directive says ``!0`` every directive first clears all text
    formatting on the range, then applies its own flags.
    """
    if brace is None:
        return []
    if brace.reset or not brace.no_reset:
        requests = [helpers.create_update_text_style_request(start, end, {}, RESET_TEXT_FIELDS)]
        additive = brace.copy(reset=False, no_reset=True)
        if brace_has_text_format(additive):
            requests.extend(build_brace_text_style_requests(additive, start, end))
        return requests

    text_style: Dict[str, Any] = {}
    fields: List[str] = []

    for attr, key in (("bold", "bold"), ("italic", "italic"), ("underline", "underline"),
                      ("strike", "strikethrough"), ("smallcaps", "smallCaps")):
        state = getattr(brace, attr)
        if state.is_set:
            text_style[key] = state.as_bool()
            fields.append(key)

    if brace.sup is TriState.TRUE:
        text_style['baselineOffset'] = 'SUPERSCRIPT'
        fields.append('baselineOffset')
    if brace.sub is TriState.TRUE:
        text_style['baselineOffset'] = 'SUBSCRIPT'
        fields.append('baselineOffset')
    if brace.sup is TriState.FALSE and brace.sub is TriState.FALSE:
        text_style['baselineOffset'] = 'NONE'
        fields.append('baselineOffset')

    if brace.code is TriState.TRUE:
        _set_code(text_style, fields)

    if brace.font:
        text_style['weightedFontFamily'] = {'fontFamily': brace.font}
        fields.append('weightedFontFamily')
    if brace.size > 0:
        text_style['fontSize'] = {'magnitude': brace.size, 'unit': 'PT'}
        fields.append('fontSize')
    if brace.color:
        color = helpers.hex_optional_color(brace.color)
        if color:
            text_style['foregroundColor'] = color
            fields.append('foregroundColor')
    if brace.bg:
        color = helpers.hex_optional_color(brace.bg)
        if color:
            text_style['backgroundColor'] = color
            fields.append('backgroundColor')
    if brace.url and _set_link(text_style, brace.url):
        fields.append('link')

    if not fields:
        return []
    return [helpers.create_update_text_style_request(start, end, text_style, _dedupe(fields))]


def build_brace_paragraph_style_requests(brace: Optional[BraceExpr], start: int, end: int) -> List[Dict[str, Any]]:
    """Heading, alignment, indent (36pt per level), line spacing and paragraph spacing."""
    if brace is None:
        return []

    style: Dict[str, Any] = {}
    fields: List[str] = []
    if brace.heading:
        style['namedStyleType'] = resolve_heading(brace.heading)
        fields.append('namedStyleType')
    if brace.align:
        style['alignment'] = resolve_align(brace.align)
        fields.append('alignment')
    if brace.indent >= 0:
        style['indentStart'] = {'magnitude': brace.indent * helpers.INDENT_POINTS_PER_LEVEL, 'unit': 'PT'}
        fields.append('indentStart')
    if brace.leading > 0:
        style['lineSpacing'] = brace.leading * 100
        fields.append('lineSpacing')
    if brace.spacing_set:
        style['spaceAbove'] = {'magnitude': brace.spacing_above, 'unit': 'PT'}
        style['spaceBelow'] = {'magnitude': brace.spacing_below, 'unit': 'PT'}
        fields.extend(['spaceAbove', 'spaceBelow'])

    if not fields:
        return []
    return [helpers.create_update_paragraph_style_request(start, end, style, fields)]


def build_brace_inline_requests(
    spans: Sequence[BraceSpan],
    base_index: int,
    template: str,
    match: Optional["re.Match[str]"] = None,
) -> List[Dict[str, Any]]:
    """
    Text style requests for positioned (non-global) brace spans.

    Span offsets refer to the cleaned replacement template; they are mapped
    through backreference expansion into UTF-16 offsets of the inserted text.
    """
    requests = []
    for span in spans:
        if span.is_global or span.expr is None:
            continue
        start = base_index + utf16_len(render_brace_text(template[:span.start], match))
        end = base_index + utf16_len(render_brace_text(template[:span.end], match))
        if end <= start:
            continue
        requests.extend(build_brace_text_style_requests(span.expr, start, end))
    return requests


def build_brace_break_requests(brace: Optional[BraceExpr], index: int) -> List[Dict[str, Any]]:
    """Page, column or section break, or a horizontal rule paragraph, at index."""
    if brace is None or not brace.has_break:
        return []
    if brace.break_kind == "p":
        return [helpers.create_insert_page_break_request(index)]
    if brace.break_kind == "c":
        return [helpers.create_insert_text_request(index, helpers.COLUMN_BREAK)]
    if brace.break_kind == "s":
        return [helpers.create_insert_section_break_request(index)]
    return [
        helpers.create_insert_text_request(index, "\n"),
        helpers.create_hrule_border_request(index, index + 1),
    ]


@dataclass
class ChipSpec:
    """A parsed ``chip://type/value`` URI."""
    kind: str
    value: str
    options: List[str] = field(default_factory=list)


CHIP_KINDS = ("person", "date", "file", "place", "dropdown", "chart", "bookmark")


def parse_chip_uri(uri: str) -> Optional[ChipSpec]:
    if not uri.startswith(CHIP_PREFIX):
        return None
    kind, sep, value = uri[len(CHIP_PREFIX):].partition("/")
    kind = kind.lower()
    if not sep or kind not in CHIP_KINDS:
        return None
    options = value.split("|") if kind == "dropdown" else []
    return ChipSpec(kind=kind, value=value, options=options)


def resolve_chip_url(url: str) -> Tuple[str, str]:
    """
    Resolve a link that may be a ``chip://`` URI.

    Returns:
        (link_url, fallback_text). Non-chip URLs come back unchanged; chips
        that can be approximated by a link get one (bookmark, file, place);
        the rest return an empty link.
    """
    if not url.startswith(CHIP_PREFIX):
        return url, ""
    chip = parse_chip_uri(url)
    if chip is None:
        return "", ""
    if chip.kind == "bookmark":
        return "#" + chip.value, ""
    if chip.kind == "file":
        return "https://docs.google.com/document/d/" + chip.value, ""
    if chip.kind == "place":
        return "https://maps.google.com/?q=" + quote_plus(chip.value), chip.value
    if chip.kind == "dropdown":
        return "", " / ".join(chip.options)
    if chip.kind == "date":
        return "", chip.value
    return "", ""


def person_chip_email(url: str) -> str:
    chip = parse_chip_uri(url)
    if chip is None or chip.kind != "person":
        return ""
    return chip.value


def has_brace_structural_features(brace: Optional[BraceExpr]) -> bool:
    """True if the directive needs requests beyond text and paragraph styling."""
    if brace is None:
        return False
    return bool(
        brace.cols > 0
        or brace.check.is_set
        or brace.has_toc
        or brace.comment
        or brace.bookmark
        or brace.url.startswith(CHIP_PREFIX)
    )


@dataclass
class StructuralRequests:
    """Structural extras for one formatted range."""
    columns: List[Dict[str, Any]] = field(default_factory=list)
    bullets: List[Dict[str, Any]] = field(default_factory=list)
    anchors: List[Dict[str, Any]] = field(default_factory=list)
    chips: List[Dict[str, Any]] = field(default_factory=list)


def build_structural_requests(
    brace: Optional[BraceExpr],
    text_start: int,
    text_end: int,
    section_start: int,
    section_end: int,
) -> StructuralRequests:
    """
    Columns apply to the enclosing section, checkboxes are bullets over the
    paragraph, bookmarks are named ranges over the text and a person chip
    is inserted at the start of the text.

    Comments and tables of contents have no batchUpdate request; they are
    logged and skipped.
    """
    result = StructuralRequests()
    if brace is None:
        return result

    if brace.cols > 0:
        result.columns.append(helpers.create_section_columns_request(section_start, section_end, brace.cols))
    if brace.check.is_set:
        # The API creates checkboxes unchecked only.
        result.bullets.append(
            helpers.create_bullet_list_request(text_start, text_end + 1, helpers.BULLET_PRESET_CHECKBOX)
        )
    if brace.bookmark:
        result.anchors.append(helpers.create_named_range_request(brace.bookmark, text_start, text_end))
    email = person_chip_email(brace.url)
    if email:
        result.chips.append(helpers.create_insert_person_request(text_start, email))
    if brace.comment:
        logger.info(f"Skipping comment {brace.comment!r}: comments cannot be created through batchUpdate")
    if brace.has_toc:
        logger.info("Skipping table of contents: it cannot be inserted through batchUpdate")
    return result
