"""
Edit Compiler

Manual substitution path: every match in the document is compiled into
delete/insert/style requests. Used whenever a replacement carries markdown,
brace directives, backreferences or images, or when only the first or
N-th match should change.

The work is split into calls because paragraph styles, footnotes, breaks
and structural extras all address text that only exists once the first
call has run:

1. image matches, each as a delete call followed by an image call
2. deletes, inserts and text styles, grouped per match, highest index first
3. paragraph styles, at offsets mapped through the length changes of 2
4. footnotes, each created and then filled
5. the break after the last formatted range (re-fetch first)
6. columns, checkboxes, bookmarks and chips (re-fetch first)

Nested bullets (text starting with a tab) are not created here; the caller
hands them to the bullet reconciler.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from core.utils import utf16_len
from docsed import docs_helpers as helpers
from docsed.docs_structure import body_end, iter_text_runs, section_range_for_match
from docsed.managers.batch_executor import DocsBatchExecutor, footnote_id
from docsed.managers.ordering import (
    EditGroup,
    OffsetShiftMap,
    map_through,
    order_edit_groups,
    request_start_index,
)
from docsed.sed_brace import BraceExpr, brace_has_paragraph_format, brace_to_formats
from docsed.sed_expression import SedExpression
from docsed.sed_format import (
    build_brace_break_requests,
    build_brace_inline_requests,
    build_brace_paragraph_style_requests,
    build_brace_text_style_requests,
    build_paragraph_reset_requests,
    build_paragraph_style_requests,
    build_structural_requests,
    build_text_style_requests,
    expand_template,
    has_brace_structural_features,
    render_brace_text,
)
from docsed.sed_markdown import ImageSpec, parse_image_syntax, parse_markdown_replacement

logger = logging.getLogger(__name__)


@dataclass
class DocMatch:
    """
    One regex match in the document and what replaces it.

    start/end are UTF-16 document indices. Exactly one of image or
    new_text/formats describes the replacement.
    """
    start: int
    end: int
    match: "re.Match[str]"
    new_text: str = ""
    formats: List[str] = field(default_factory=list)
    image: Optional[ImageSpec] = None
    brace: Optional[BraceExpr] = None

    @property
    def is_footnote(self) -> bool:
        return "footnote" in self.formats


@dataclass
class FormatRange:
    """Inserted text that still needs paragraph or structural formatting."""
    start: int
    length: int
    formats: List[str]
    has_tab: bool = False
    brace: Optional[BraceExpr] = None

    @property
    def end(self) -> int:
        return self.start + self.length


@dataclass
class CompiledEdits:
    """Output of compile_regular_matches."""
    requests: List[Dict[str, Any]]
    format_ranges: List[FormatRange]
    shift: OffsetShiftMap


@dataclass
class ManualResult:
    replaced: int = 0
    deferred_bullets: List[Dict[str, Any]] = field(default_factory=list)


def classify_match(start: int, end: int, match: "re.Match[str]", expr: SedExpression) -> DocMatch:
    """Decide whether a match becomes an image, brace-formatted text or markdown text."""
    expanded = expand_template(expr.replacement, match)
    brace = expr.brace

    if expanded.startswith("!["):
        image = parse_image_syntax(expanded)
        if image is not None:
            return DocMatch(start, end, match, image=image)
    if brace is not None and brace.img_ref:
        image = ImageSpec(url=brace.img_ref, width=brace.width, height=brace.height)
        return DocMatch(start, end, match, image=image)
    if brace is not None:
        return DocMatch(
            start,
            end,
            match,
            new_text=render_brace_text(expr.replacement, match),
            formats=brace_to_formats(brace),
            brace=brace,
        )

    text, formats = parse_markdown_replacement(expanded)
    return DocMatch(start, end, match, new_text=text, formats=formats)


def find_doc_matches(
    doc_data: Dict[str, Any], pattern: "re.Pattern[str]", expr: SedExpression
) -> List[DocMatch]:
    """
    Find matches in every text run, table cells included.

    A non-global expression keeps the first match in the document; an
    N-th match expression keeps only the N-th match counted across the
    whole document.
    """
    first_only = not expr.global_ and expr.nth_match <= 0
    matches: List[DocMatch] = []
    for text, base in iter_text_runs(doc_data):
        for m in pattern.finditer(text):
            start = base + utf16_len(text[:m.start()])
            end = base + utf16_len(text[:m.end()])
            matches.append(classify_match(start, end, m, expr))
            if first_only:
                return matches

    if expr.nth_match > 0:
        if len(matches) >= expr.nth_match:
            return [matches[expr.nth_match - 1]]
        return []
    return matches


def compile_regular_matches(
    matches: List[DocMatch], expr: SedExpression, offset_shift: Optional[OffsetShiftMap] = None
) -> CompiledEdits:
    """
    Build the delete/insert/text-style call for text matches.

    Args:
        matches: Text matches in document order
        expr: The expression being applied
        offset_shift: Length changes already applied since the snapshot
            the matches were found in

    Returns:
        CompiledEdits with requests ordered highest index first, the ranges
        that still need paragraph formatting (in this call's coordinates)
        and the call's own length changes
    """
    groups: List[EditGroup] = []
    format_ranges: List[FormatRange] = []
    shift = OffsetShiftMap()
    previous = [offset_shift] if offset_shift else []

    for m in matches:
        start = map_through(previous, m.start)
        end = map_through(previous, m.end)
        group = EditGroup(anchor=start)
        if end > start:
            group.requests.append(helpers.create_delete_range_request(start, end))

        if "hrule" in m.formats:
            group.requests.append(helpers.create_insert_text_request(start, "\n"))
            group.requests.append(helpers.create_hrule_border_request(start, start + 1))
            shift.record(start, end - start, 1)
            groups.append(group)
            continue

        length = utf16_len(m.new_text)
        if m.new_text:
            group.requests.append(helpers.create_insert_text_request(start, m.new_text))
        shift.record(start, end - start, length)

        if m.new_text and (m.formats or m.brace is not None):
            formats = list(m.formats)
            if "codeblock" in formats:
                formats.append("code")
            format_ranges.append(
                FormatRange(
                    start=start,
                    length=length,
                    formats=formats,
                    has_tab=m.new_text.startswith("\t"),
                    brace=m.brace,
                )
            )
            if m.brace is not None:
                group.requests.extend(build_brace_text_style_requests(m.brace, start, start + length))
                group.requests.extend(
                    build_brace_inline_requests(expr.brace_spans, start, expr.replacement, m.match)
                )
            else:
                group.requests.extend(build_text_style_requests(formats, start, start + length))
        groups.append(group)

    return CompiledEdits(order_edit_groups(groups), format_ranges, shift)


def compile_paragraph_requests(
    format_ranges: List[FormatRange], shift: OffsetShiftMap
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Paragraph styles for the ranges of a finished call.

    Each range is mapped through the call's length changes and extended
    by one to cover the paragraph's newline.

    Returns:
        (paragraph_requests, deferred_bullets); bullets on tab-nested text
        are deferred so they can be recreated together with their siblings
    """
    requests: List[Dict[str, Any]] = []
    deferred: List[Dict[str, Any]] = []
    for fr in format_ranges:
        start = shift.map(fr.start)
        paragraph_end = start + fr.length + 1
        if fr.brace is not None and brace_has_paragraph_format(fr.brace):
            requests.extend(build_brace_paragraph_style_requests(fr.brace, start, paragraph_end))
            continue

        styles = build_paragraph_style_requests(fr.formats, start, paragraph_end)
        if not styles:
            continue
        requests.extend(build_paragraph_reset_requests(start, paragraph_end))
        for request in styles:
            if 'createParagraphBullets' in request and fr.has_tab:
                deferred.append(request)
            else:
                requests.append(request)
    return requests, deferred


class EditCompiler:
    """
    Applies one manual expression to a document.
    """

    def __init__(self, executor: DocsBatchExecutor):
        self.executor = executor

    async def run(self, expr: SedExpression) -> ManualResult:
        """
        Compile and apply every match of expr.

        Returns:
            ManualResult with the match count and any deferred nested bullets

        Raises:
            SedPatternError: If the pattern does not compile
            HttpError: Propagated from the Docs API
        """
        pattern = expr.compile_pattern()
        doc_data = await self.executor.fetch_document()
        matches = find_doc_matches(doc_data, pattern, expr)
        if not matches:
            logger.info(f"No matches for {expr.pattern!r}")
            return ManualResult()

        footnotes = [m for m in matches if m.is_footnote]
        images = [m for m in matches if m.image is not None and not m.is_footnote]
        regular = [m for m in matches if m.image is None and not m.is_footnote]
        logger.debug(
            f"{len(matches)} matches for {expr.pattern!r}: "
            f"{len(regular)} text, {len(images)} image, {len(footnotes)} footnote"
        )

        image_shift = await self._apply_images(images)

        compiled = compile_regular_matches(regular, expr, image_shift)
        await self.executor.batch_update(compiled.requests)

        paragraph_requests, deferred = compile_paragraph_requests(compiled.format_ranges, compiled.shift)
        await self.executor.batch_update(paragraph_requests)

        footnote_shift = await self._apply_footnotes(footnotes, [image_shift, compiled.shift])

        final_ranges = [
            FormatRange(
                start=footnote_shift.map(compiled.shift.map(fr.start)),
                length=fr.length,
                formats=fr.formats,
                has_tab=fr.has_tab,
                brace=fr.brace,
            )
            for fr in compiled.format_ranges
        ]
        await self._apply_break(expr, final_ranges)
        await self._apply_structural(expr, final_ranges)

        return ManualResult(replaced=len(matches), deferred_bullets=deferred)

    async def _apply_images(self, images: List[DocMatch]) -> OffsetShiftMap:
        """Replace matches with images, last first; the image fetch fails when batched with edits."""
        shift = OffsetShiftMap()
        for m in reversed(images):
            if m.end > m.start:
                await self.executor.batch_update([helpers.create_delete_range_request(m.start, m.end)])
            width = m.image.width or None
            height = m.image.height or None
            logger.info(f"Inserting image {m.image.url} at {m.start}")
            await self.executor.batch_update(
                [helpers.create_insert_image_request(m.start, m.image.url, width, height)]
            )
            shift.record(m.start, m.end - m.start, 1)
        return shift

    async def _apply_footnotes(self, footnotes: List[DocMatch], shifts: List[OffsetShiftMap]) -> OffsetShiftMap:
        """Turn each footnote match into a footnote reference and fill the new footnote."""
        shift = OffsetShiftMap()
        for m in reversed(footnotes):
            start = map_through(shifts, m.start)
            end = map_through(shifts, m.end)
            response = await self.executor.batch_update([
                helpers.create_delete_range_request(start, end),
                helpers.create_footnote_request(start),
            ])
            shift.record(start, end - start, 1)
            created = footnote_id(response)
            if not created:
                logger.warning(f"No footnote id returned for match at {start}")
                continue
            await self.executor.batch_update(
                [helpers.create_insert_text_request(1, m.new_text, segment_id=created)]
            )
        return shift

    async def _apply_break(self, expr: SedExpression, ranges: List[FormatRange]) -> None:
        brace = expr.brace
        if brace is None or not brace.has_break or not ranges:
            return
        doc_data = await self.executor.fetch_document()
        last = max(ranges, key=lambda fr: fr.start)
        index = last.end + 1
        end = body_end(doc_data)
        if end and index >= end:
            index = end - 1
        logger.debug(f"Inserting break {brace.break_kind or 'hrule'} at {index}")
        await self.executor.batch_update(build_brace_break_requests(brace, index))

    async def _apply_structural(self, expr: SedExpression, ranges: List[FormatRange]) -> None:
        if not has_brace_structural_features(expr.brace):
            return
        doc_data = await self.executor.fetch_document()
        styles: List[Dict[str, Any]] = []
        chips: List[Dict[str, Any]] = []
        for fr in ranges:
            if fr.brace is None:
                continue
            section_start, section_end = section_range_for_match(doc_data, fr.start, fr.end)
            extras = build_structural_requests(fr.brace, fr.start, fr.end, section_start, section_end)
            styles.extend(extras.columns)
            styles.extend(extras.bullets)
            styles.extend(extras.anchors)
            chips.extend(extras.chips)
        chips.sort(key=lambda r: request_start_index(r) or 0, reverse=True)
        await self.executor.batch_update(styles + chips)
