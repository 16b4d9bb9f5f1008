"""
Expression Router

Decides which execution strategy each parsed expression takes, both for a
single-expression run and for the partitioned multi-expression run, and
renders the dry-run description of an expression.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from docsed.errors import SedPatternError
from docsed.sed_brace import brace_has_any_format, format_brace_flags, truncate
from docsed.sed_expression import POSITIONAL_PATTERNS, Command, ExprKind, SedExpression
from docsed.sed_markdown import can_use_native_replace, parse_table_spec
from docsed.sed_refs import parse_image_ref_pattern

logger = logging.getLogger(__name__)

MERGE_OPS = ("merge", "unmerge", "split")

_COMMAND_LABELS = {
    Command.DELETE: "delete",
    Command.APPEND: "append-after",
    Command.INSERT: "insert-before",
    Command.TRANSLITERATE: "transliterate",
}

IndexedExpr = Tuple[int, SedExpression]


def is_merge_op(replacement: str) -> bool:
    """True for the ``merge``/``unmerge``/``split`` cell replacements."""
    return replacement.strip().lower() in MERGE_OPS


def is_native(expr: SedExpression) -> bool:
    """Plain global replacement the service can perform with replaceAllText."""
    return (
        expr.global_
        and expr.nth_match <= 0
        and not expr.brace_spans
        and can_use_native_replace(expr.replacement)
    )


def inserts_image(expr: SedExpression) -> bool:
    """True if the replacement writes an image in place of matched text."""
    if expr.replacement.startswith("!["):
        return True
    return expr.brace is not None and bool(expr.brace.img_ref)


def classify_expression(expr: SedExpression) -> ExprKind:
    """
    Strategy for an expression run on its own.

    Order: commands, table operations, positional sentinels, cell
    references, table creation, image references, native, manual.
    """
    if expr.command is not Command.SUBSTITUTE:
        return ExprKind.COMMAND
    if expr.table_ref is not None:
        return ExprKind.TABLE
    if expr.is_positional:
        return ExprKind.POSITIONAL
    if expr.cell_ref is not None:
        return ExprKind.CELL
    if parse_table_spec(expr.replacement) is not None:
        return ExprKind.TABLE_CREATE
    if parse_image_ref_pattern(expr.pattern) is not None:
        return ExprKind.IMAGE
    if is_native(expr):
        return ExprKind.NATIVE
    return ExprKind.MANUAL


def classify_for_batch(expr: SedExpression) -> ExprKind:
    """
    Strategy for an expression inside a multi-expression run.

    Differs from classify_expression in two ways: image-inserting
    replacements get their own paced queue, and table operations share the
    cell queue. A pattern that addresses existing images stays an image
    reference whatever its replacement.
    """
    if expr.is_positional:
        return ExprKind.POSITIONAL
    plain_substitute = (
        expr.command is Command.SUBSTITUTE
        and expr.cell_ref is None
        and expr.table_ref is None
        and parse_image_ref_pattern(expr.pattern) is None
    )
    if plain_substitute and inserts_image(expr):
        return ExprKind.IMAGE_INSERT
    if expr.command is not Command.SUBSTITUTE:
        return ExprKind.COMMAND
    if expr.cell_ref is not None or expr.table_ref is not None:
        return ExprKind.CELL
    if parse_table_spec(expr.replacement) is not None:
        return ExprKind.TABLE_CREATE
    if parse_image_ref_pattern(expr.pattern) is not None:
        return ExprKind.IMAGE
    if is_native(expr):
        return ExprKind.NATIVE
    return ExprKind.MANUAL


@dataclass
class ExpressionPartition:
    """
    A multi-expression run split into execution queues.

    Every entry is (0-based position, expression); each queue keeps the
    original order.
    """
    positional: List[IndexedExpr] = field(default_factory=list)
    native: List[IndexedExpr] = field(default_factory=list)
    manual: List[IndexedExpr] = field(default_factory=list)
    table_create: List[IndexedExpr] = field(default_factory=list)
    cell: List[IndexedExpr] = field(default_factory=list)
    images: List[IndexedExpr] = field(default_factory=list)


def partition_expressions(exprs: Sequence[SedExpression]) -> ExpressionPartition:
    """
    Group expressions by strategy.

    Commands and image-reference patterns share the manual queue, which
    runs sequentially against a freshly fetched document.
    """
    partition = ExpressionPartition()
    queues = {
        ExprKind.POSITIONAL: partition.positional,
        ExprKind.IMAGE_INSERT: partition.images,
        ExprKind.COMMAND: partition.manual,
        ExprKind.IMAGE: partition.manual,
        ExprKind.MANUAL: partition.manual,
        ExprKind.CELL: partition.cell,
        ExprKind.TABLE_CREATE: partition.table_create,
        ExprKind.NATIVE: partition.native,
    }
    for index, expr in enumerate(exprs):
        kind = classify_for_batch(expr)
        logger.debug(f"Expression {index + 1} routed to {kind.value}")
        queues[kind].append((index, expr))
    return partition


def can_batch_cell(expr: SedExpression) -> bool:
    """Whole-cell replacement of a single cell, safe to coalesce with its neighbours."""
    ref = expr.cell_ref
    return (
        ref is not None
        and not expr.pattern
        and ref.row > 0
        and ref.col > 0
        and not ref.is_range
        and not ref.is_mutation
        and not is_merge_op(expr.replacement)
    )


def group_cell_expressions(cell_exprs: Sequence[IndexedExpr]) -> List[List[IndexedExpr]]:
    """
    Split the cell queue into execution units.

    Consecutive batchable replacements on the same table form one unit;
    everything else runs alone.
    """
    units: List[List[IndexedExpr]] = []
    i = 0
    while i < len(cell_exprs):
        index, expr = cell_exprs[i]
        if expr.table_ref is None and can_batch_cell(expr):
            unit = [(index, expr)]
            j = i + 1
            while j < len(cell_exprs):
                next_expr = cell_exprs[j][1]
                if not can_batch_cell(next_expr) or next_expr.cell_ref.table != expr.cell_ref.table:
                    break
                unit.append(cell_exprs[j])
                j += 1
            units.append(unit)
            i = j
            continue
        units.append([(index, expr)])
        i += 1
    return units


def describe_expression(expr: SedExpression) -> str:
    """Kind label shown by --dry-run."""
    if expr.command in _COMMAND_LABELS:
        return _COMMAND_LABELS[expr.command]
    if expr.cell_ref is not None:
        return expr.cell_ref.label()
    if expr.table_ref is not None:
        if not expr.replacement:
            return f"delete table {expr.table_ref}"
        return f"table {expr.table_ref} op"
    if parse_table_spec(expr.replacement) is not None:
        return "create table"
    if parse_image_ref_pattern(expr.pattern) is not None:
        return "image"
    if expr.pattern in POSITIONAL_PATTERNS:
        return "positional"
    if expr.brace is not None and brace_has_any_format(expr.brace):
        return "brace"
    if is_native(expr):
        return "native"
    return "manual"


def pattern_validity(expr: SedExpression) -> str:
    """``ok`` or ``ERROR: ...`` for the search pattern."""
    if not expr.pattern or expr.pattern in POSITIONAL_PATTERNS:
        return "ok"
    try:
        expr.compile_pattern()
    except SedPatternError as e:
        return f"ERROR: {e.message}"
    return "ok"


def dry_run_line(position: int, expr: SedExpression) -> str:
    """
    One tab-separated dry-run line.

    Args:
        position: 1-based position of the expression
        expr: Parsed expression
    """
    flag = "g" if expr.global_ else ""
    nth = str(expr.nth_match) if expr.nth_match > 0 else ""
    body = f"{expr.command.value}/{expr.pattern}/{truncate(expr.replacement, 40)}/{flag}{nth}"
    fields = [str(position), describe_expression(expr), pattern_validity(expr), body]
    brace_info = format_brace_flags(expr.brace)
    if brace_info:
        fields.append(brace_info)
    return "\t".join(fields)


def dry_run_lines(exprs: Sequence[SedExpression], summary: bool = True) -> List[str]:
    """Dry-run report: one line per expression, then the summary."""
    lines = [dry_run_line(position, expr) for position, expr in enumerate(exprs, start=1)]
    if summary:
        lines.append("---")
        lines.append(f"dry-run: {len(exprs)} expressions parsed, no changes made")
    return lines
