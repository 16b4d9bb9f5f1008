"""
Table Operation Manager

This module handles every expression that addresses tables: whole-table
deletion, cell content replacement (single, wildcard, range and batched),
row/column mutation, merge/unmerge and table creation with optional cell
fill.

Whole-table operations address top-level tables only. Cell operations count
nested tables too, parents before the tables nested in their cells.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.utils import utf16_len
from docsed import docs_helpers as helpers
from docsed.docs_structure import (
    TableInfo,
    cell_delete_end,
    collect_all_tables,
    collect_top_level_tables,
    find_table_cell,
    get_cell_text,
    iter_text_runs,
)
from docsed.errors import ErrorCode, SedTableError
from docsed.managers.batch_executor import DocsBatchExecutor
from docsed.managers.ordering import EditGroup, order_edit_groups
from docsed.sed_expression import CellRef, RowColOp, SedExpression, TableCreateSpec, TableSelector
from docsed.sed_format import build_text_style_requests, expand_template
from docsed.sed_markdown import literal_replacement, parse_markdown_replacement
from docsed.sed_refs import OP_APPEND, OP_DELETE, OP_INSERT

logger = logging.getLogger(__name__)

# How far past the insertion point the first cell of a new table may start.
CREATED_TABLE_SEARCH_WINDOW = 10


def build_cell_replace_requests(
    start_index: int, delete_end: int, text: str, formats: Sequence[str]
) -> List[Dict[str, Any]]:
    """
    Replace [start_index, delete_end) of a cell with formatted text.

    The delete is skipped for an empty cell and the insert for an empty
    replacement.
    """
    requests = []
    if start_index < delete_end:
        requests.append(helpers.create_delete_range_request(start_index, delete_end))
    if text:
        requests.append(helpers.create_insert_text_request(start_index, text))
        if formats:
            requests.extend(build_text_style_requests(formats, start_index, start_index + utf16_len(text)))
    return requests


def whole_cell_replacement(template: str, cell_text: str) -> Tuple[str, List[str]]:
    """
    Text and formats written over a whole cell.

    ``${0}`` (``&``) stands for the cell's current text.
    """
    replacement = literal_replacement(template).replace("${0}", cell_text.rstrip("\n"))
    return parse_markdown_replacement(replacement)


def compile_whole_cell(cell: Dict[str, Any], template: str) -> EditGroup:
    """Edit group replacing a cell's content, keeping its final newline."""
    cell_text, start_index, end_index = get_cell_text(cell)
    text, formats = whole_cell_replacement(template, cell_text)
    delete_end = cell_delete_end(cell_text, end_index)
    return EditGroup(anchor=start_index, requests=build_cell_replace_requests(start_index, delete_end, text, formats))


def compile_cell_sub_pattern(
    cell: Dict[str, Any], pattern: "re.Pattern[str]", template: str, global_: bool
) -> List[EditGroup]:
    """
    Edit groups for pattern matches inside one cell.

    Backreferences expand against each match; markdown in the result is
    applied as text styles.
    """
    cell_text, start_index, _ = get_cell_text(cell)
    groups = []
    for m in pattern.finditer(cell_text):
        start = start_index + utf16_len(cell_text[:m.start()])
        end = start_index + utf16_len(cell_text[:m.end()])
        text, formats = parse_markdown_replacement(expand_template(template, m))
        requests = []
        if end > start:
            requests.append(helpers.create_delete_range_request(start, end))
        if text:
            requests.append(helpers.create_insert_text_request(start, text))
            requests.extend(build_text_style_requests(formats, start, start + utf16_len(text)))
        groups.append(EditGroup(anchor=start, requests=requests))
        if not global_:
            break
    return groups


def _resolve_one(selector: TableSelector, tables: List[TableInfo]) -> TableInfo:
    if selector.is_all:
        raise SedTableError(
            "cell operations need a single table (|*| only supports whole-table delete)",
            code=ErrorCode.UNSUPPORTED_OPERATION,
        )
    return tables[selector.resolve(len(tables))[0]]


def _resolve_target(target: int, count: int, noun: str, container: str, action: str = "") -> int:
    """1-based target with negatives counted from the end; raises when out of range."""
    resolved = count + target + 1 if target < 0 else target
    if resolved < 1 or resolved > count:
        suffix = f" for {action}" if action else ""
        raise SedTableError(
            f"{noun} {target} out of range{suffix} (table has {count} {container})",
            code=ErrorCode.CELL_OUT_OF_RANGE,
        )
    return resolved


def cell_in_selection(ref: CellRef, row: int, col: int) -> bool:
    """True if 1-based (row, col) is addressed by a wildcard or range reference."""
    if ref.is_range:
        return ref.row <= row <= ref.end_row and ref.col <= col <= ref.end_col
    return (ref.row == 0 or ref.row == row) and (ref.col == 0 or ref.col == col)


def build_row_col_requests(table: TableInfo, row_op: Optional[RowColOp], col_op: Optional[RowColOp]) -> Tuple[List[Dict[str, Any]], str]:
    """
    Requests for a row or column insert, append or delete.

    Returns:
        (requests, description)

    Raises:
        SedTableError: If the target is out of range or would delete the
            table's only row/column
    """
    requests: List[Dict[str, Any]] = []
    description = ""
    start = table.start_index

    if row_op is not None:
        rows = table.row_count
        if row_op.kind == OP_DELETE:
            target = _resolve_target(row_op.target, rows, "row", "rows")
            if rows <= 1:
                raise SedTableError("cannot delete the only row in a table", code=ErrorCode.UNSUPPORTED_OPERATION)
            requests.append(helpers.create_delete_table_row_request(start, target - 1))
            description = f"deleted row {target}"
        elif row_op.kind == OP_INSERT:
            target = _resolve_target(row_op.target, rows, "row", "rows", "insert")
            requests.append(helpers.create_insert_table_row_request(start, target - 1, insert_below=False))
            description = f"inserted row before row {target}"
        elif row_op.kind == OP_APPEND:
            requests.append(helpers.create_insert_table_row_request(start, rows - 1, insert_below=True))
            description = "appended row at end"

    if col_op is not None:
        cols = table.column_count
        if col_op.kind == OP_DELETE:
            target = _resolve_target(col_op.target, cols, "col", "columns")
            if cols <= 1:
                raise SedTableError("cannot delete the only column in a table", code=ErrorCode.UNSUPPORTED_OPERATION)
            requests.append(helpers.create_delete_table_column_request(start, target - 1))
            description = f"deleted column {target}"
        elif col_op.kind == OP_INSERT:
            target = _resolve_target(col_op.target, cols, "col", "columns", "insert")
            requests.append(helpers.create_insert_table_column_request(start, target - 1, insert_right=False))
            description = f"inserted column before column {target}"
        elif col_op.kind == OP_APPEND:
            requests.append(helpers.create_insert_table_column_request(start, cols - 1, insert_right=True))
            description = "appended column at end"

    return requests, description


def find_created_table(doc_data: Dict[str, Any], near_index: int) -> Optional[TableInfo]:
    """The table whose first cell starts just after near_index."""
    for info in collect_all_tables(doc_data):
        rows = info.rows
        if not rows or not rows[0].get("tableCells"):
            continue
        content = rows[0]["tableCells"][0].get("content", [])
        if not content:
            continue
        cell_start = content[0].get("startIndex", 0)
        if near_index <= cell_start <= near_index + CREATED_TABLE_SEARCH_WINDOW:
            return info
    return None


def build_table_fill_requests(table: TableInfo, cells: Sequence[Sequence[str]]) -> List[Dict[str, Any]]:
    """
    Insert markdown cell contents into an empty table, last cell first.

    Each empty cell is a single newline paragraph; text goes in front of it.
    """
    requests: List[Dict[str, Any]] = []
    for r in range(len(table.rows) - 1, -1, -1):
        row_cells = table.rows[r].get("tableCells", [])
        for c in range(len(row_cells) - 1, -1, -1):
            if r >= len(cells) or c >= len(cells[r]) or not cells[r][c]:
                continue
            content = row_cells[c].get("content", [])
            if not content:
                continue
            index = content[0].get("startIndex", 0)
            text, formats = parse_markdown_replacement(cells[r][c])
            if not text:
                continue
            requests.append(helpers.create_insert_text_request(index, text))
            requests.extend(build_text_style_requests(formats, index, index + utf16_len(text)))
    return requests


class TableOperationManager:
    """
    Executes table and cell expressions against one document.

    Every public method fetches a fresh snapshot, sends its requests and
    returns the ordered output fields of the operation.
    """

    def __init__(self, executor: DocsBatchExecutor):
        self.executor = executor

    async def delete_tables(self, expr: SedExpression) -> Dict[str, Any]:
        """
        Delete the tables addressed by a whole-table reference.

        Raises:
            SedTableError: No tables, index out of range, or a non-empty
                replacement (the only table-level operation is delete)
        """
        doc_data = await self.executor.fetch_document()
        tables = collect_top_level_tables(doc_data)
        targets = [tables[i] for i in expr.table_ref.resolve(len(tables))]

        replacement = expr.replacement.strip()
        if replacement:
            raise SedTableError(
                f"unsupported table operation: {replacement!r} (expected empty replacement for delete)",
                code=ErrorCode.UNSUPPORTED_OPERATION,
            )

        requests = [
            helpers.create_delete_range_request(t.start_index, t.end_index)
            for t in reversed(targets)
        ]
        await self.executor.batch_update(requests)
        logger.info(f"Deleted {len(targets)} table(s)")
        return {'deleted': f"{len(targets)} table(s)"}

    async def replace_cells(self, expr: SedExpression) -> Dict[str, Any]:
        """
        Replace cell content, or run a row/column mutation.

        A single cell, a wildcard row/column/table or a rectangular range
        can be addressed; with a pattern only matching text inside each cell
        is replaced.
        """
        ref = expr.cell_ref
        if ref.is_mutation:
            return await self.mutate_rows_cols(expr)

        doc_data = await self.executor.fetch_document()
        tables = collect_all_tables(doc_data)
        table = _resolve_one(ref.table, tables)

        if ref.is_single:
            cells = [find_table_cell(table, ref.row, ref.col)]
        else:
            cells = [
                cell
                for r, row in enumerate(table.rows, start=1)
                for c, cell in enumerate(row.get("tableCells", []), start=1)
                if cell_in_selection(ref, r, c)
            ]

        groups: List[EditGroup] = []
        replaced = 0
        if expr.pattern:
            pattern = expr.compile_pattern()
            for cell in cells:
                matched = compile_cell_sub_pattern(cell, pattern, expr.replacement, expr.global_)
                groups.extend(matched)
                replaced += len(matched)
        else:
            for cell in cells:
                groups.append(compile_whole_cell(cell, expr.replacement))
            replaced = len(cells)

        requests = order_edit_groups(groups)
        if not requests:
            return {'replaced': 0}
        await self.executor.batch_update(requests)
        logger.info(f"Replaced {replaced} in {ref.label()}")
        return {'replaced': replaced}

    async def replace_cells_batch(self, items: Sequence[Tuple[int, SedExpression]]) -> int:
        """
        Apply several whole-cell replacements on one table in one call.

        Args:
            items: (0-based position, expression) pairs

        Returns:
            Number of cells replaced
        """
        doc_data = await self.executor.fetch_document()
        tables = collect_all_tables(doc_data)
        groups = []
        for index, expr in items:
            try:
                table = _resolve_one(expr.cell_ref.table, tables)
                cell = find_table_cell(table, expr.cell_ref.row, expr.cell_ref.col)
            except SedTableError as e:
                raise SedTableError(f"expression {index + 1}: {e.message}", code=e.code) from e
            groups.append(compile_whole_cell(cell, expr.replacement))

        await self.executor.batch_update(order_edit_groups(groups))
        logger.info(f"Replaced {len(groups)} cells in one call")
        return len(groups)

    async def mutate_rows_cols(self, expr: SedExpression) -> Dict[str, Any]:
        """Insert, append or delete a row or column."""
        ref = expr.cell_ref
        doc_data = await self.executor.fetch_document()
        table = _resolve_one(ref.table, collect_all_tables(doc_data))

        requests, description = build_row_col_requests(table, ref.row_op, ref.col_op)
        if not requests:
            raise SedTableError("no row/column operation to perform", code=ErrorCode.UNSUPPORTED_OPERATION)
        await self.executor.batch_update(requests)
        return {'op': description}

    async def merge_cells(self, expr: SedExpression) -> Dict[str, Any]:
        """
        Merge a cell range (``merge``) or unmerge the region holding a cell
        (``unmerge``/``split``).
        """
        ref = expr.cell_ref
        doc_data = await self.executor.fetch_document()
        table = _resolve_one(ref.table, collect_all_tables(doc_data))
        operation = expr.replacement.strip().lower()

        if operation == "merge":
            if not ref.is_range:
                raise SedTableError(
                    "merge requires a range: |N|[r1,c1:r2,c2]",
                    code=ErrorCode.INVALID_TABLE_REFERENCE,
                )
            request = helpers.create_merge_cells_request(
                table.start_index,
                ref.row - 1,
                ref.col - 1,
                ref.end_row - ref.row + 1,
                ref.end_col - ref.col + 1,
            )
            description = f"merged [{ref.row},{ref.col}:{ref.end_row},{ref.end_col}]"
        elif operation in ("unmerge", "split"):
            # A 1x1 range unmerges whatever merged region contains the cell.
            request = helpers.create_unmerge_cells_request(table.start_index, ref.row - 1, ref.col - 1, 1, 1)
            description = f"unmerged [{ref.row},{ref.col}]"
        else:
            raise SedTableError(
                f"unknown merge operation {operation!r} (expected merge, unmerge, or split)",
                code=ErrorCode.UNSUPPORTED_OPERATION,
            )

        await self.executor.batch_update([request])
        return {'action': description}

    async def insert_table(self, index: int, spec: TableCreateSpec) -> None:
        """Insert an empty table at index, then fill it and pin its header row if requested."""
        await self.executor.batch_update([helpers.create_insert_table_request(index, spec.rows, spec.cols)])
        await self.finish_table(index, spec)

    async def finish_table(self, index: int, spec: TableCreateSpec) -> None:
        """Fill cell contents and pin the header row of a table just inserted at index."""
        if not spec.cells and not spec.header:
            return
        doc_data = await self.executor.fetch_document()
        table = find_created_table(doc_data, index)
        if table is None:
            logger.warning(f"Created table not found near index {index}; skipping fill")
            return
        requests = build_table_fill_requests(table, spec.cells or ())
        if spec.header:
            # Pinning does not move content, so it can go last in the same call.
            requests.append(helpers.create_pin_header_rows_request(table.start_index, 1))
        await self.executor.batch_update(requests)

    async def create_table(self, expr: SedExpression, spec: TableCreateSpec) -> Dict[str, Any]:
        """
        Replace the first match of the pattern with a new table.

        Returns:
            ``created`` (``RxC table``), plus ``filled`` and ``header`` when
            applicable; ``replaced=0`` when the pattern is not found
        """
        pattern = expr.compile_pattern()
        doc_data = await self.executor.fetch_document()

        found = None
        for text, base in iter_text_runs(doc_data):
            m = pattern.search(text)
            if m:
                found = (base + utf16_len(text[:m.start()]), base + utf16_len(text[:m.end()]))
                break
        if found is None:
            return {'replaced': 0, 'message': "pattern not found"}

        start, end = found
        requests = []
        if start < end:
            requests.append(helpers.create_delete_range_request(start, end))
        requests.append(helpers.create_insert_table_request(start, spec.rows, spec.cols))
        await self.executor.batch_update(requests)
        await self.finish_table(start, spec)

        result: Dict[str, Any] = {'created': f"{spec.rows}x{spec.cols} table"}
        if spec.cells:
            result['filled'] = True
        if spec.header:
            result['header'] = True
        return result
