"""
Structural references in search patterns.

Two syntaxes address tables and images:

* brace form: ``{T=1!A1}``, ``{T=-1!row=$+}``, ``{T=3x4:header}``,
  ``{img=2}``, ``{img=logo.*}``
* legacy pipe form: ``|1|[2,3]``, ``|1|[A1]:sub``, ``|1|[row:+2]``, ``|*|``,
  and image patterns ``!(1)``, ``![](*)``, ``![regex]``
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from docsed.errors import ErrorCode, SedParseError
from docsed.sed_brace import find_matching_brace
from docsed.sed_expression import (
    CellRef,
    ImageRef,
    RowColOp,
    TableCreateSpec,
    TableSelector,
)

logger = logging.getLogger(__name__)

OP_APPEND = "append"
OP_INSERT = "insert"
OP_DELETE = "delete"

MAX_CREATE_ROWS = 100
MAX_CREATE_COLS = 26


def _table_error(message: str) -> SedParseError:
    return SedParseError(message, code=ErrorCode.INVALID_TABLE_REFERENCE)


def _image_error(message: str) -> SedParseError:
    return SedParseError(message, code=ErrorCode.INVALID_IMAGE_REFERENCE)


def _atoi(text: str) -> Optional[int]:
    text = text.strip()
    if not re.fullmatch(r"[+-]?\d+", text):
        return None
    return int(text)


@dataclass
class BraceTableRef:
    """Parsed ``{T=...}`` reference."""
    table: TableSelector = TableSelector.all()
    is_create: bool = False
    create_rows: int = 0
    create_cols: int = 0
    has_header: bool = False

    row: int = 0
    col: int = 0
    is_excel: bool = False
    excel_cell: str = ""

    has_range: bool = False
    end_row: int = 0
    end_col: int = 0

    is_all_cells: bool = False
    row_wild: bool = False
    col_wild: bool = False

    row_op: str = ""
    col_op: str = ""

    @property
    def is_table_only(self) -> bool:
        return not (
            self.is_create
            or self.is_all_cells
            or self.has_range
            or self.row
            or self.col
            or self.row_op
            or self.col_op
        )

    def create_spec(self) -> Optional[TableCreateSpec]:
        if not self.is_create:
            return None
        return TableCreateSpec(self.create_rows, self.create_cols, self.has_header)

    def __str__(self) -> str:
        if self.is_create:
            parts = [f"create:{self.create_rows}x{self.create_cols}"]
            if self.has_header:
                parts.append("header")
            return "{T=" + " ".join(parts) + "}"

        parts = [f"table:{self.table}"]
        if self.is_all_cells:
            parts.append("cells:*")
        elif self.has_range:
            parts.append(f"range:[{self.row},{self.col}:{self.end_row},{self.end_col}]")
        elif self.row_wild:
            parts.append(f"row:{self.row},*")
        elif self.col_wild:
            parts.append(f"col:*,{self.col}")
        elif self.row > 0 or self.col > 0:
            parts.append(f"cell:[{self.row},{self.col}]")
        if self.row_op:
            parts.append("rowOp:" + self.row_op)
        if self.col_op:
            parts.append("colOp:" + self.col_op)
        return "{T=" + " ".join(parts) + "}"


def parse_excel_ref(text: str) -> Optional[Tuple[int, int]]:
    """
    Parse a spreadsheet address such as ``A1`` or ``ab10``.

    Returns:
        (row, col), both 1-based, or None if text is not an address
    """
    match = re.fullmatch(r"([A-Za-z]+)(\d+)", text.strip())
    if not match:
        return None
    row = int(match.group(2))
    if row < 1:
        return None
    col = 0
    for ch in match.group(1).upper():
        col = col * 26 + (ord(ch) - ord("A") + 1)
    return row, col


def is_table_create_spec(spec: str) -> bool:
    """``RxC`` or ``RxC:header``: contains an x, no ``!``, starts with a digit."""
    if "!" in spec or "x" not in spec.lower():
        return False
    return bool(spec) and spec[0].isdigit()


def parse_table_create_brace(spec: str) -> BraceTableRef:
    ref = BraceTableRef(is_create=True)
    if ":" in spec:
        spec, suffix = spec.split(":", 1)
        suffix = suffix.strip().lower()
        if suffix != "header":
            raise _table_error(f"invalid table create suffix {suffix!r} (expected 'header')")
        ref.has_header = True

    parts = spec.lower().split("x", 1)
    if len(parts) != 2:
        raise _table_error(f"invalid table create spec {spec!r}")
    rows = _atoi(parts[0])
    if rows is None or not 1 <= rows <= MAX_CREATE_ROWS:
        raise _table_error(f"invalid row count in {spec!r} (must be 1-{MAX_CREATE_ROWS})")
    cols = _atoi(parts[1])
    if cols is None or not 1 <= cols <= MAX_CREATE_COLS:
        raise _table_error(f"invalid column count in {spec!r} (must be 1-{MAX_CREATE_COLS})")
    ref.create_rows = rows
    ref.create_cols = cols
    return ref


def _parse_cell_coord(text: str) -> Tuple[int, int]:
    text = text.strip()
    if "," in text:
        row_text, col_text = text.split(",", 1)
        row = _atoi(row_text)
        if row is None:
            raise _table_error(f"invalid row {row_text.strip()!r}")
        col = _atoi(col_text)
        if col is None:
            raise _table_error(f"invalid col {col_text.strip()!r}")
        return row, col
    excel = parse_excel_ref(text)
    if excel is None:
        raise _table_error(f"invalid cell reference {text!r}")
    return excel


def _parse_cell_spec(ref: BraceTableRef, spec: str) -> BraceTableRef:
    spec = spec.strip()
    if not spec:
        return ref

    if spec == "*":
        ref.is_all_cells = True
        return ref

    if spec.startswith("row="):
        value = spec[4:].strip()
        if not value:
            raise _table_error("empty row operation")
        ref.row_op = value
        return ref

    if spec.startswith("col="):
        value = spec[4:].strip()
        if not value:
            raise _table_error("empty column operation")
        ref.col_op = value
        return ref

    if ":" in spec:
        start, end = spec.split(":", 1)
        try:
            ref.row, ref.col = _parse_cell_coord(start)
        except SedParseError as e:
            raise _table_error(f"invalid range start {start.strip()!r}: {e}") from e
        try:
            ref.end_row, ref.end_col = _parse_cell_coord(end)
        except SedParseError as e:
            raise _table_error(f"invalid range end {end.strip()!r}: {e}") from e
        ref.has_range = True
        return ref

    if "," in spec:
        row_text, col_text = (part.strip() for part in spec.split(",", 1))
        if row_text == "*":
            ref.col_wild = True
        else:
            row = _atoi(row_text)
            if row is None:
                raise _table_error(f"invalid row {row_text!r}")
            ref.row = row
        if col_text == "*":
            ref.row_wild = True
        else:
            col = _atoi(col_text)
            if col is None:
                raise _table_error(f"invalid col {col_text!r}")
            ref.col = col
        if ref.row_wild and ref.col_wild:
            ref.is_all_cells = True
        return ref

    excel = parse_excel_ref(spec)
    if excel is not None:
        ref.row, ref.col = excel
        ref.is_excel = True
        ref.excel_cell = spec
        return ref

    raise _table_error(f"invalid cell spec {spec!r}")


def parse_brace_table_ref(spec: str) -> BraceTableRef:
    """
    Parse the value of a ``{T=...}`` reference.

    Args:
        spec: e.g. ``1``, ``-1``, ``*``, ``3x4:header``, ``1!A1``, ``2!1,*``,
            ``1!A1:C3``, ``1!row=+2``

    Returns:
        The parsed BraceTableRef

    Raises:
        SedParseError: If the reference is malformed
    """
    spec = spec.strip()
    if not spec:
        raise _table_error("empty table spec")

    if is_table_create_spec(spec):
        return parse_table_create_brace(spec)

    table_spec, _, cell_spec = spec.partition("!")
    ref = BraceTableRef()
    if table_spec != "*":
        index = _atoi(table_spec)
        if index is None:
            raise _table_error(f"invalid table index {table_spec!r}")
        if index == 0:
            raise _table_error("table index cannot be 0; use * for all")
        ref.table = TableSelector(index)

    if not cell_spec:
        return ref
    return _parse_cell_spec(ref, cell_spec)


def parse_row_col_op(op: str) -> Optional[RowColOp]:
    """
    Parse a row/column mutation value.

    ``$+`` appends, ``+N`` inserts before N, ``N``/``-N`` deletes N (negative
    counts from the end). Returns None for anything else.
    """
    op = op.strip()
    if op == "$+":
        return RowColOp(OP_APPEND, 0)
    if op.startswith("+"):
        target = _atoi(op[1:])
        return RowColOp(OP_INSERT, target) if target is not None else None
    target = _atoi(op)
    return RowColOp(OP_DELETE, target) if target is not None else None


def brace_table_to_refs(
    ref: BraceTableRef,
) -> Tuple[Optional[TableSelector], Optional[CellRef]]:
    """
    Translate a brace table reference into routing values.

    Returns:
        (table_ref, cell_ref); both None for creation specs
    """
    if ref.is_create:
        return None, None
    if ref.is_table_only:
        return ref.table, None

    row_op = None
    col_op = None
    if ref.row_op:
        row_op = parse_row_col_op(ref.row_op)
        if row_op is None:
            raise _table_error(f"invalid row operation {ref.row_op!r}")
    if ref.col_op:
        col_op = parse_row_col_op(ref.col_op)
        if col_op is None:
            raise _table_error(f"invalid column operation {ref.col_op!r}")

    if ref.is_all_cells:
        row, col, end_row, end_col = 0, 0, 0, 0
    elif ref.row_wild:
        row, col, end_row, end_col = ref.row, 0, 0, 0
    elif ref.col_wild:
        row, col, end_row, end_col = 0, ref.col, 0, 0
    elif ref.has_range:
        row, col, end_row, end_col = ref.row, ref.col, ref.end_row, ref.end_col
    else:
        row, col, end_row, end_col = ref.row, ref.col, 0, 0

    return None, CellRef(
        table=ref.table,
        row=row,
        col=col,
        end_row=end_row,
        end_col=end_col,
        row_op=row_op,
        col_op=col_op,
    )


def create_spec_pipe_form(spec: TableCreateSpec) -> str:
    """Render a creation spec as ``|RxC|`` or ``|RxC:header|``."""
    if spec.header:
        return f"|{spec.rows}x{spec.cols}:header|"
    return f"|{spec.rows}x{spec.cols}|"


def parse_brace_image_ref(spec: str) -> ImageRef:
    """
    Parse the value of an ``{img=...}`` reference.

    Raises:
        SedParseError: If the value is empty, zero or an invalid regex
    """
    spec = spec.strip()
    if not spec:
        raise _image_error("empty image spec")
    if spec == "*":
        return ImageRef(all_images=True)
    index = _atoi(spec)
    if index is not None:
        if index == 0:
            raise _image_error("image index cannot be 0; use * for all")
        return ImageRef(position=index)
    try:
        re.compile(spec)
    except re.error as e:
        raise _image_error(f"invalid image pattern {spec!r}: {e}") from e
    return ImageRef(alt_pattern=spec)


def detect_brace_pattern(
    pattern: str,
) -> Tuple[str, Optional[BraceTableRef], Optional[ImageRef]]:
    """
    Split a leading ``{T=...}`` or ``{img=...}`` reference off a pattern.

    Returns:
        (remaining_pattern, table_ref, image_ref). When the pattern carries no
        reference it is returned unchanged with both refs None.
    """
    pattern = pattern.strip()
    if not pattern.startswith("{"):
        return pattern, None, None
    close_idx = find_matching_brace(pattern, 0)
    if close_idx < 0:
        return pattern, None, None

    content = pattern[1:close_idx]
    remaining = pattern[close_idx + 1:].strip()
    if content.startswith("T="):
        try:
            return remaining, parse_brace_table_ref(content[2:]), None
        except SedParseError as e:
            raise _table_error(f"parse table ref: {e}") from e
    if content.startswith("img="):
        try:
            return remaining, None, parse_brace_image_ref(content[4:])
        except SedParseError as e:
            raise _image_error(f"parse image ref: {e}") from e
    return pattern, None, None


def _legacy_op(is_row: bool, op: RowColOp, table: TableSelector, **cell) -> CellRef:
    if is_row:
        return CellRef(table=table, row_op=op, **cell)
    return CellRef(table=table, col_op=op, **cell)


def parse_table_cell_ref(text: str) -> Optional[CellRef]:
    """
    Parse a legacy ``|N|[cell][:sub]`` reference.

    Returns None when text is not such a reference.
    """
    match = re.match(r"\|([^|]*)\|\[([^\]]*)\](.*)\Z", text, re.DOTALL)
    if not match:
        return None
    index = _atoi(match.group(1))
    if index is None or index == 0:
        return None
    table = TableSelector(index)
    cell = match.group(2)
    after = match.group(3)

    if cell.startswith("row:") or cell.startswith("col:"):
        is_row = cell.startswith("row:")
        value = cell[4:]
        if value == "$+":
            return _legacy_op(is_row, RowColOp(OP_APPEND, 0), table)
        if value.startswith("+"):
            target = _atoi(value[1:])
            if target is None:
                return None
            return _legacy_op(is_row, RowColOp(OP_INSERT, target), table)
        target = _atoi(value)
        if target is None:
            return None
        return _legacy_op(is_row, RowColOp(OP_DELETE, target), table)

    row = col = end_row = end_col = 0
    colon = cell.find(":")
    if colon > 0:
        start_parts = cell[:colon].split(",", 1)
        end_parts = cell[colon + 1:].split(",", 1)
        if len(start_parts) != 2 or len(end_parts) != 2:
            return None
        coords = [_atoi(p) for p in start_parts + end_parts]
        if any(c is None for c in coords):
            return None
        row, col, end_row, end_col = coords
    elif "," in cell:
        row_text, col_text = (part.strip() for part in cell.split(",", 1))
        if row_text == "*":
            row = 0
        elif row_text.startswith("+"):
            # +N in the row slot appends a row.
            if col_text == "*":
                target_col = 0
            else:
                target_col = _atoi(col_text)
                if target_col is None:
                    return None
            target = _atoi(row_text[1:]) or 0
            return CellRef(table=table, col=target_col, row_op=RowColOp(OP_APPEND, target))
        else:
            parsed_row = _atoi(row_text)
            if parsed_row is None:
                return None
            row = parsed_row

        if col_text == "*":
            col = 0
        elif col_text.startswith("+"):
            target = _atoi(col_text[1:]) or 0
            return CellRef(table=table, row=row, col_op=RowColOp(OP_APPEND, target))
        else:
            parsed_col = _atoi(col_text)
            if parsed_col is None:
                return None
            col = parsed_col
    else:
        excel = parse_excel_ref(cell)
        if excel is None:
            return None
        row, col = excel

    sub_pattern = after[1:] if after.startswith(":") else ""
    return CellRef(
        table=table,
        row=row,
        col=col,
        end_row=end_row,
        end_col=end_col,
        sub_pattern=sub_pattern,
    )


def parse_table_ref(text: str) -> Optional[TableSelector]:
    """Parse a bare legacy whole-table reference: ``|1|``, ``|-1|``, ``|*|``."""
    text = text.strip()
    if len(text) < 3 or text[0] != "|" or text[-1] != "|":
        return None
    inner = text[1:-1]
    if "x" in inner.lower():
        return None
    if inner == "*":
        return TableSelector.all()
    index = _atoi(inner)
    if index is None or index == 0:
        return None
    return TableSelector(index)


def parse_image_ref_pattern(pattern: str) -> Optional[ImageRef]:
    """
    Parse an image search pattern: ``!(n)``, ``!(*)``, ``![](n)``, ``![](*)``
    or ``![regex]``. Returns None for anything else, including ``!(url)``.
    """
    for prefix in ("!(", "![]("):
        if pattern.startswith(prefix) and pattern.endswith(")"):
            inner = pattern[len(prefix):-1]
            if inner == "*":
                return ImageRef(all_images=True)
            position = _atoi(inner)
            if position is not None and position != 0:
                return ImageRef(position=position)
            return None

    if pattern.startswith("![") and pattern.endswith("]") and "](" not in pattern:
        alt = pattern[2:-1]
        if not alt:
            return None
        try:
            re.compile(alt)
        except re.error:
            return None
        return ImageRef(alt_pattern=alt)
    return None
