"""
Google Docs Document Structure Traversal

Helpers that walk a fetched document (the raw dict returned by
``documents().get``) to find paragraphs, text runs, tables, cells and
images together with their absolute indices.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from core.utils import utf16_len
from docsed.docs_helpers import BULLET_PRESET_DISC, NUMBERED_PRESET
from docsed.errors import ErrorCode, SedTableError
from docsed.sed_expression import ImageRef

logger = logging.getLogger(__name__)

# Level-0 glyph types that mark a numbered list.
NUMBERED_GLYPH_TYPES = {
    "DECIMAL",
    "ZERO_DECIMAL",
    "ALPHA",
    "UPPER_ALPHA",
    "ROMAN",
    "UPPER_ROMAN",
}

# Smallest valid body end: one empty paragraph.
MIN_BODY_END = 2


def body_content(doc_data: dict[str, Any]) -> list[dict[str, Any]]:
    return doc_data.get("body", {}).get("content", []) or []


def body_end(doc_data: dict[str, Any]) -> int:
    """End index of the last structural element of the body (0 if empty)."""
    content = body_content(doc_data)
    if not content:
        return 0
    return content[-1].get("endIndex", 0)


def iter_paragraph_elements(
    content: list[dict[str, Any]], include_tables: bool = True
) -> Iterator[dict[str, Any]]:
    """
    Yield every structural element holding a paragraph, in document order.

    Args:
        content: Structural elements (body content or a cell's content)
        include_tables: Also descend into table cells, recursively
    """
    for element in content:
        if "paragraph" in element:
            yield element
        elif include_tables and "table" in element:
            for row in element["table"].get("tableRows", []):
                for cell in row.get("tableCells", []):
                    yield from iter_paragraph_elements(cell.get("content", []), include_tables)


def iter_text_runs(doc_data: dict[str, Any]) -> Iterator[tuple[str, int]]:
    """Yield (content, start_index) for every non-empty text run, table cells included."""
    for element in iter_paragraph_elements(body_content(doc_data)):
        for pe in element["paragraph"].get("elements", []):
            text_run = pe.get("textRun")
            if not text_run or not text_run.get("content"):
                continue
            yield text_run["content"], pe.get("startIndex", 0)


def extract_paragraph_text(paragraph: dict[str, Any]) -> str:
    return "".join(
        pe.get("textRun", {}).get("content", "") for pe in paragraph.get("elements", [])
    )


def first_run_text(paragraph: dict[str, Any]) -> Optional[str]:
    """Content of the paragraph's first text run, or None if it has none."""
    for pe in paragraph.get("elements", []):
        if "textRun" in pe:
            return pe["textRun"].get("content", "")
    return None


def is_document_empty(doc_data: dict[str, Any]) -> bool:
    """True when the body holds no tables and only whitespace text."""
    for element in body_content(doc_data):
        if "table" in element:
            return False
        if "paragraph" in element:
            if extract_paragraph_text(element["paragraph"]).strip():
                return False
    return True


@dataclass
class TableInfo:
    """A table plus its position in the body."""
    table: dict[str, Any]
    start_index: int
    end_index: int

    @property
    def rows(self) -> list[dict[str, Any]]:
        return self.table.get("tableRows", [])

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def column_count(self) -> int:
        rows = self.rows
        if not rows:
            return 0
        return len(rows[0].get("tableCells", []))


def collect_top_level_tables(doc_data: dict[str, Any]) -> list[TableInfo]:
    """Tables that sit directly in the body, in document order."""
    return [
        TableInfo(element["table"], element.get("startIndex", 0), element.get("endIndex", 0))
        for element in body_content(doc_data)
        if "table" in element
    ]


def collect_all_tables(doc_data: dict[str, Any]) -> list[TableInfo]:
    """
    Every table in document order, nested tables included.

    A table is listed before the tables nested in its cells.
    """
    tables: list[TableInfo] = []

    def walk(content: list[dict[str, Any]]) -> None:
        for element in content:
            if "table" not in element:
                continue
            tables.append(
                TableInfo(element["table"], element.get("startIndex", 0), element.get("endIndex", 0))
            )
            for row in element["table"].get("tableRows", []):
                for cell in row.get("tableCells", []):
                    walk(cell.get("content", []))

    walk(body_content(doc_data))
    return tables


def find_table_cell(table: TableInfo, row: int, col: int) -> dict[str, Any]:
    """
    Look up a cell by 1-based row and column.

    Raises:
        SedTableError: If the row or column is out of range
    """
    rows = table.rows
    if row < 1 or row > len(rows):
        raise SedTableError(
            f"row {row} out of range (table has {len(rows)} rows)",
            code=ErrorCode.CELL_OUT_OF_RANGE,
        )
    cells = rows[row - 1].get("tableCells", [])
    if col < 1 or col > len(cells):
        raise SedTableError(
            f"col {col} out of range (row has {len(cells)} columns)",
            code=ErrorCode.CELL_OUT_OF_RANGE,
        )
    return cells[col - 1]


def get_cell_text(cell: dict[str, Any]) -> tuple[str, int, int]:
    """
    Plain text of a cell with the index span of its text runs.

    Returns:
        (text, start_index, end_index); start is the first run's start and
        end the last run's end
    """
    parts = []
    start_index = 0
    end_index = 0
    for element in cell.get("content", []):
        if "paragraph" not in element:
            continue
        for pe in element["paragraph"].get("elements", []):
            if "textRun" not in pe:
                continue
            parts.append(pe["textRun"].get("content", ""))
            if start_index == 0 and pe.get("startIndex", 0) > 0:
                start_index = pe["startIndex"]
            end_index = pe.get("endIndex", end_index)
    return "".join(parts), start_index, end_index


def cell_delete_end(cell_text: str, end_index: int) -> int:
    """End of a cell's replaceable content: the trailing newline is kept."""
    if cell_text.endswith("\n"):
        return end_index - 1
    return end_index


@dataclass
class DocImage:
    """An image in the document."""
    object_id: str
    index: int
    alt: str
    is_positioned: bool = False


def _embedded_alt(properties: Optional[dict[str, Any]]) -> str:
    embedded = (properties or {}).get("embeddedObject", {}) or {}
    return embedded.get("title") or embedded.get("description") or ""


def find_doc_images(doc_data: dict[str, Any]) -> list[DocImage]:
    """
    Every image: inline images in document order (table cells included),
    then positioned images sorted by object id.
    """
    images: list[DocImage] = []
    inline_objects = doc_data.get("inlineObjects") or {}
    if inline_objects:
        for element in iter_paragraph_elements(body_content(doc_data)):
            for pe in element["paragraph"].get("elements", []):
                inline = pe.get("inlineObjectElement")
                if not inline:
                    continue
                object_id = inline.get("inlineObjectId", "")
                props = inline_objects.get(object_id, {}).get("inlineObjectProperties")
                images.append(DocImage(object_id, pe.get("startIndex", 0), _embedded_alt(props)))

    positioned = doc_data.get("positionedObjects") or {}
    for object_id in sorted(positioned):
        props = positioned[object_id].get("positionedObjectProperties")
        images.append(DocImage(object_id, 0, _embedded_alt(props), is_positioned=True))
    return images


def match_images(images: list[DocImage], ref: ImageRef) -> list[DocImage]:
    """Select images by position (negative from the end), all, or alt-text regex."""
    if ref.all_images:
        return list(images)
    if ref.by_alt:
        pattern = re.compile(ref.alt_pattern)
        return [img for img in images if pattern.search(img.alt)]
    position = ref.position
    if 0 < position <= len(images):
        return [images[position - 1]]
    if position < 0 and -position <= len(images):
        return [images[len(images) + position]]
    return []


def section_range_for_match(doc_data: dict[str, Any], match_start: int, match_end: int) -> tuple[int, int]:
    """
    Bounds of the section holding [match_start, match_end).

    Sections are delimited by section breaks; without any the whole body
    is one section.
    """
    content = body_content(doc_data)
    if not content:
        return 1, match_end + 1

    section_start = 1
    section_end = match_end + 1
    for element in content:
        if "sectionBreak" in element:
            if element.get("endIndex", 0) <= match_start:
                section_start = element["endIndex"]
            if element.get("startIndex", 0) > match_end and section_end == match_end + 1:
                section_end = element["startIndex"]
                break
        if element.get("endIndex", 0) > section_end:
            section_end = element["endIndex"]

    if section_end <= section_start:
        section_end = section_start + 1
    return section_start, section_end


def infer_bullet_preset(doc_data: dict[str, Any], list_id: str) -> str:
    """Numbered preset when the list's level-0 glyph is a number or letter, else disc."""
    lst = (doc_data.get("lists") or {}).get(list_id)
    if not lst:
        return BULLET_PRESET_DISC
    levels = lst.get("listProperties", {}).get("nestingLevels", [])
    if levels and levels[0] and levels[0].get("glyphType") in NUMBERED_GLYPH_TYPES:
        return NUMBERED_PRESET
    return BULLET_PRESET_DISC


def text_end(start_index: int, text: str) -> int:
    """Index just past text inserted at start_index."""
    return start_index + utf16_len(text)
