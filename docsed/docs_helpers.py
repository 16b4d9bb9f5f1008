"""
Google Docs Request Builders

Small functions that build the batchUpdate request dictionaries used by the
edit compiler, the table and image managers and the runner. Indices are
UTF-16 code unit offsets into the document body.
"""
import logging
from typing import Dict, Any, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Grey used behind inline code.
CODE_BACKGROUND_GREY = 0.95
# Grey used for blockquote and horizontal rule borders.
BORDER_GREY = 0.8
INDENT_POINTS_PER_LEVEL = 36.0
HRULE_PADDING_PT = 6.0
BLOCKQUOTE_BORDER_WIDTH_PT = 3.0
BLOCKQUOTE_INDENT_PT = 36.0
BLOCKQUOTE_PADDING_PT = 12.0
COLUMN_PADDING_PT = 36.0

CODE_FONT = "Courier New"
BULLET_PRESET_DISC = "BULLET_DISC_CIRCLE_SQUARE"
BULLET_PRESET_CHECKBOX = "BULLET_CHECKBOX"
NUMBERED_PRESET = "NUMBERED_DECIMAL_NESTED"

# Vertical tab renders as a column break.
COLUMN_BREAK = "\v"


def _range(start_index: int, end_index: int) -> Dict[str, int]:
    return {'startIndex': start_index, 'endIndex': end_index}


def parse_hex_color(value: str) -> Optional[Tuple[float, float, float]]:
    """
    Convert ``#RRGGBB`` or ``#RGB`` into 0.0-1.0 RGB floats.

    Returns:
        (red, green, blue), or None if the value is not a hex colour
    """
    digits = value[1:] if value.startswith('#') else value
    if len(digits) == 3:
        digits = ''.join(c * 2 for c in digits)
    if len(digits) != 6:
        return None
    try:
        rgb = int(digits, 16)
    except ValueError:
        return None
    return ((rgb >> 16) & 0xFF) / 255.0, ((rgb >> 8) & 0xFF) / 255.0, (rgb & 0xFF) / 255.0


def rgb_color(red: float, green: float, blue: float) -> Dict[str, Any]:
    """OptionalColor payload for a text or border colour."""
    return {'color': {'rgbColor': {'red': red, 'green': green, 'blue': blue}}}


def grey_color(intensity: float) -> Dict[str, Any]:
    """OptionalColor for a greyscale intensity (0.0 black, 1.0 white)."""
    return rgb_color(intensity, intensity, intensity)


def hex_optional_color(value: str) -> Optional[Dict[str, Any]]:
    parsed = parse_hex_color(value)
    if parsed is None:
        return None
    return rgb_color(*parsed)


def link_style(url: str) -> Dict[str, str]:
    """A ``#name`` URL links to a bookmark; anything else is a plain URL."""
    if url.startswith('#'):
        return {'bookmarkId': url[1:]}
    return {'url': url}


def create_insert_text_request(
    index: int,
    text: str,
    segment_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an insertText request.

    Args:
        index: Position to insert text
        text: Text to insert
        segment_id: Optional header/footer/footnote segment

    Returns:
        Dictionary representing the insertText request
    """
    location: Dict[str, Any] = {'index': index}
    if segment_id:
        location['segmentId'] = segment_id
    return {'insertText': {'location': location, 'text': text}}


def create_delete_range_request(start_index: int, end_index: int) -> Dict[str, Any]:
    """Create a deleteContentRange request for [start_index, end_index)."""
    return {'deleteContentRange': {'range': _range(start_index, end_index)}}


def create_update_text_style_request(
    start_index: int,
    end_index: int,
    text_style: Dict[str, Any],
    fields: List[str]
) -> Dict[str, Any]:
    """
    Create an updateTextStyle request.

    Args:
        start_index: Start of the styled range
        end_index: End of the styled range (exclusive)
        text_style: TextStyle payload; an empty dict clears the listed fields
        fields: Field mask entries

    Returns:
        Dictionary representing the updateTextStyle request
    """
    return {
        'updateTextStyle': {
            'range': _range(start_index, end_index),
            'textStyle': text_style,
            'fields': ','.join(fields),
        }
    }


def create_update_paragraph_style_request(
    start_index: int,
    end_index: int,
    paragraph_style: Dict[str, Any],
    fields: List[str]
) -> Dict[str, Any]:
    """Create an updateParagraphStyle request over the paragraphs in the range."""
    return {
        'updateParagraphStyle': {
            'range': _range(start_index, end_index),
            'paragraphStyle': paragraph_style,
            'fields': ','.join(fields),
        }
    }


def create_named_style_request(start_index: int, end_index: int, named_style: str) -> Dict[str, Any]:
    return create_update_paragraph_style_request(
        start_index, end_index, {'namedStyleType': named_style}, ['namedStyleType']
    )


def create_bullet_list_request(
    start_index: int,
    end_index: int,
    bullet_preset: str = BULLET_PRESET_DISC
) -> Dict[str, Any]:
    """
    Create a createParagraphBullets request.

    Leading tab characters already in the paragraphs become nesting levels.

    Args:
        start_index: Start of the paragraph range
        end_index: End of the paragraph range
        bullet_preset: Docs bullet glyph preset name

    Returns:
        Dictionary representing the createParagraphBullets request
    """
    return {
        'createParagraphBullets': {
            'range': _range(start_index, end_index),
            'bulletPreset': bullet_preset,
        }
    }


def create_delete_bullets_request(start_index: int, end_index: int) -> Dict[str, Any]:
    return {'deleteParagraphBullets': {'range': _range(start_index, end_index)}}


def create_find_replace_request(
    find_text: str,
    replace_text: str,
    match_case: bool = True,
    search_by_regex: bool = False
) -> Dict[str, Any]:
    """
    Create a replaceAllText request.

    Args:
        find_text: Text (or regex when search_by_regex is set) to find
        replace_text: Literal replacement text
        match_case: Whether to match case exactly
        search_by_regex: Treat find_text as a regular expression

    Returns:
        Dictionary representing the replaceAllText request
    """
    contains_text: Dict[str, Any] = {'text': find_text, 'matchCase': match_case}
    if search_by_regex:
        contains_text['searchByRegex'] = True
    return {
        'replaceAllText': {
            'containsText': contains_text,
            'replaceText': replace_text,
        }
    }


def create_insert_table_request(index: int, rows: int, columns: int) -> Dict[str, Any]:
    return {
        'insertTable': {
            'location': {'index': index},
            'rows': rows,
            'columns': columns,
        }
    }


def _table_cell_location(table_start: int, row_index: int, column_index: int) -> Dict[str, Any]:
    return {
        'tableStartLocation': {'index': table_start},
        'rowIndex': row_index,
        'columnIndex': column_index,
    }


def create_insert_table_row_request(table_start: int, row_index: int, insert_below: bool) -> Dict[str, Any]:
    """
    Create an insertTableRow request.

    Args:
        table_start: Start index of the table element
        row_index: 0-based reference row
        insert_below: Insert after the reference row instead of before it
    """
    return {
        'insertTableRow': {
            'tableCellLocation': _table_cell_location(table_start, row_index, 0),
            'insertBelow': insert_below,
        }
    }


def create_insert_table_column_request(table_start: int, column_index: int, insert_right: bool) -> Dict[str, Any]:
    return {
        'insertTableColumn': {
            'tableCellLocation': _table_cell_location(table_start, 0, column_index),
            'insertRight': insert_right,
        }
    }


def create_delete_table_row_request(table_start: int, row_index: int) -> Dict[str, Any]:
    return {
        'deleteTableRow': {
            'tableCellLocation': _table_cell_location(table_start, row_index, 0),
        }
    }


def create_delete_table_column_request(table_start: int, column_index: int) -> Dict[str, Any]:
    return {
        'deleteTableColumn': {
            'tableCellLocation': _table_cell_location(table_start, 0, column_index),
        }
    }


def _table_range(table_start: int, row_index: int, column_index: int, row_span: int, column_span: int) -> Dict[str, Any]:
    return {
        'tableCellLocation': _table_cell_location(table_start, row_index, column_index),
        'rowSpan': row_span,
        'columnSpan': column_span,
    }


def create_merge_cells_request(
    table_start: int,
    row_index: int,
    column_index: int,
    row_span: int,
    column_span: int
) -> Dict[str, Any]:
    """Create a mergeTableCells request; indices are 0-based, spans count cells."""
    return {
        'mergeTableCells': {
            'tableRange': _table_range(table_start, row_index, column_index, row_span, column_span),
        }
    }


def create_unmerge_cells_request(
    table_start: int,
    row_index: int,
    column_index: int,
    row_span: int,
    column_span: int
) -> Dict[str, Any]:
    return {
        'unmergeTableCells': {
            'tableRange': _table_range(table_start, row_index, column_index, row_span, column_span),
        }
    }


def create_pin_header_rows_request(table_start: int, rows: int = 1) -> Dict[str, Any]:
    """Create a pinTableHeaderRows request so the first rows repeat on every page."""
    return {
        'pinTableHeaderRows': {
            'tableStartLocation': {'index': table_start},
            'pinnedHeaderRowsCount': rows,
        }
    }


def create_insert_page_break_request(index: int) -> Dict[str, Any]:
    return {'insertPageBreak': {'location': {'index': index}}}


def create_insert_section_break_request(index: int, section_type: str = "NEXT_PAGE") -> Dict[str, Any]:
    return {
        'insertSectionBreak': {
            'location': {'index': index},
            'sectionType': section_type,
        }
    }


def create_insert_image_request(
    index: int,
    image_uri: str,
    width: Optional[int] = None,
    height: Optional[int] = None
) -> Dict[str, Any]:
    """
    Create an insertInlineImage request.

    Args:
        index: Position to insert the image
        image_uri: Public URL of the image
        width: Width in points (omitted when falsy)
        height: Height in points (omitted when falsy)

    Returns:
        Dictionary representing the insertInlineImage request
    """
    request: Dict[str, Any] = {
        'insertInlineImage': {
            'location': {'index': index},
            'uri': image_uri,
        }
    }
    object_size = {}
    if width:
        object_size['width'] = {'magnitude': width, 'unit': 'PT'}
    if height:
        object_size['height'] = {'magnitude': height, 'unit': 'PT'}
    if object_size:
        request['insertInlineImage']['objectSize'] = object_size
    return request


def create_replace_image_request(image_object_id: str, uri: str) -> Dict[str, Any]:
    """Swap the content of an inline image in place."""
    return {
        'replaceImage': {
            'imageObjectId': image_object_id,
            'uri': uri,
        }
    }


def create_delete_positioned_object_request(object_id: str) -> Dict[str, Any]:
    return {'deletePositionedObject': {'objectId': object_id}}


def create_footnote_request(index: int) -> Dict[str, Any]:
    """Create a createFootnote request; the reply carries the new footnoteId."""
    return {'createFootnote': {'location': {'index': index}}}


def create_named_range_request(name: str, start_index: int, end_index: int) -> Dict[str, Any]:
    return {
        'createNamedRange': {
            'name': name,
            'range': _range(start_index, end_index),
        }
    }


def create_section_columns_request(start_index: int, end_index: int, columns: int) -> Dict[str, Any]:
    """
    Set the column count of the section covering the range.

    Each column gets the standard gap as end padding and no separator line.
    """
    column_properties = [
        {'paddingEnd': {'magnitude': COLUMN_PADDING_PT, 'unit': 'PT'}}
        for _ in range(columns)
    ]
    return {
        'updateSectionStyle': {
            'range': _range(start_index, end_index),
            'sectionStyle': {
                'columnProperties': column_properties,
                'columnSeparatorStyle': 'NONE',
            },
            'fields': 'columnProperties,columnSeparatorStyle',
        }
    }


def create_insert_person_request(index: int, email: str) -> Dict[str, Any]:
    """Insert a person smart chip for the given email address."""
    return {
        'insertPerson': {
            'location': {'index': index},
            'personProperties': {'email': email},
        }
    }


def _border(width_pt: float, padding_pt: float) -> Dict[str, Any]:
    return {
        'color': grey_color(BORDER_GREY),
        'width': {'magnitude': width_pt, 'unit': 'PT'},
        'dashStyle': 'SOLID',
        'padding': {'magnitude': padding_pt, 'unit': 'PT'},
    }


def create_hrule_border_request(start_index: int, end_index: int) -> Dict[str, Any]:
    """Style a paragraph as a horizontal rule (bottom border only)."""
    return create_update_paragraph_style_request(
        start_index,
        end_index,
        {'borderBottom': _border(1, HRULE_PADDING_PT)},
        ['borderBottom'],
    )


def create_blockquote_request(start_index: int, end_index: int) -> Dict[str, Any]:
    """Indent a paragraph and give it a grey left border."""
    return create_update_paragraph_style_request(
        start_index,
        end_index,
        {
            'indentStart': {'magnitude': BLOCKQUOTE_INDENT_PT, 'unit': 'PT'},
            'borderLeft': _border(BLOCKQUOTE_BORDER_WIDTH_PT, BLOCKQUOTE_PADDING_PT),
        },
        ['indentStart', 'borderLeft'],
    )


def request_kind(request: Dict[str, Any]) -> str:
    """The single top-level key of a request, e.g. ``insertText``."""
    return next(iter(request), "")
