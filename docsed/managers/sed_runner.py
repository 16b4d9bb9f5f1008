"""
Sed Runner

Executes parsed sed expressions against one document. A single expression
is routed straight to its strategy; several expressions are partitioned and
run in a fixed order so that cheap index-free edits happen first and
index-sensitive ones always see a fresh snapshot:

1. positional inserts (``^``, ``$``, ``^$``)
2. native replacements, folded into one replaceAllText batch
3. manual substitutions, commands and image-reference edits, one by one
4. nested bullet reconciliation, if any manual edit deferred bullets
5. table creation
6. table and cell operations, with adjacent cell writes coalesced
7. image insertions, paced and retried once
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from googleapiclient.errors import HttpError

from core.config import SedConfig
from core.utils import RetryExhaustedError, utf16_len
from docsed import docs_helpers as helpers
from docsed.docs_structure import body_content, body_end, extract_paragraph_text, is_document_empty
from docsed.errors import ErrorCode, SedError, SedExecutionError, no_expressions_error
from docsed.managers.batch_executor import DocsBatchExecutor, occurrences_changed
from docsed.managers.bullet_reconciler import BulletReconciler
from docsed.managers.edit_compiler import EditCompiler
from docsed.managers.expression_router import (
    IndexedExpr,
    classify_expression,
    group_cell_expressions,
    is_merge_op,
    partition_expressions,
)
from docsed.managers.image_manager import ImageManager, image_spec_size
from docsed.managers.table_operation_manager import TableOperationManager
from docsed.sed_expression import Command, ExprKind, SedExpression
from docsed.sed_format import build_paragraph_style_requests, build_text_style_requests
from docsed.sed_markdown import literal_replacement, parse_image_syntax, parse_markdown_replacement, parse_table_spec
from docsed.sed_refs import parse_image_ref_pattern

logger = logging.getLogger(__name__)

# Failures that abort a run and get reported against the failing expression.
EXPRESSION_ERRORS = (SedError, HttpError, RetryExhaustedError)

# First private-use code point, used to stage overlapping transliterations.
_PLACEHOLDER_BASE = 0xE000


def format_value(value: Any) -> str:
    """Render an output field for the tab-separated text form."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class SedResult:
    """
    Outcome of a run.

    Attributes:
        doc_id: Document the run targeted
        fields: Strategy-specific output fields, in insertion order
        status: Always ``ok``; failures raise instead
    """
    doc_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    status: str = "ok"

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status, "docId": self.doc_id}
        result.update(self.fields)
        return result

    def text_lines(self) -> List[str]:
        lines = [f"status\t{self.status}", f"docId\t{self.doc_id}"]
        lines.extend(f"{key}\t{format_value(value)}" for key, value in self.fields.items())
        return lines


def _error_code(cause: BaseException) -> ErrorCode:
    code = getattr(cause, "code", None)
    return code if isinstance(code, ErrorCode) else ErrorCode.API_ERROR


def _expression_error(position: int, cause: BaseException) -> SedError:
    return SedError(f"expression {position}: {cause}", code=_error_code(cause))


def transliteration_pairs(source: str, dest: str) -> List[Tuple[str, str]]:
    """
    Character replacements for ``y/source/dest/``.

    When a destination character also appears in the source, a direct
    pairwise replacement would re-map text written by an earlier pair
    (``y/ab/ba/`` would turn everything into ``a``). Those mappings are
    staged through private-use placeholders: first every source character
    becomes its placeholder, then every placeholder becomes its target.
    """
    src = list(source)
    dst = list(dest)
    if not set(src) & set(dst):
        return list(zip(src, dst))
    placeholders = [chr(_PLACEHOLDER_BASE + i) for i in range(len(src))]
    return list(zip(src, placeholders)) + list(zip(placeholders, dst))


def _top_level_paragraphs(doc_data: Dict[str, Any]) -> List[Tuple[int, int, str]]:
    paragraphs = []
    for element in body_content(doc_data):
        paragraph = element.get("paragraph")
        if paragraph is None:
            continue
        text = extract_paragraph_text(paragraph)
        if text.endswith("\n"):
            text = text[:-1]
        paragraphs.append((element.get("startIndex", 0), element.get("endIndex", 0), text))
    return paragraphs


class SedRunner:
    """Runs sed expressions against a single Google Doc."""

    def __init__(self, service, document_id: str, config: Optional[SedConfig] = None):
        self.document_id = document_id
        self.config = config or SedConfig()
        self.executor = DocsBatchExecutor(service, document_id, self.config)
        self.compiler = EditCompiler(self.executor)
        self.tables = TableOperationManager(self.executor)
        self.images = ImageManager(self.executor)
        self.bullets = BulletReconciler(self.executor)

    async def run(self, exprs: Sequence[SedExpression]) -> SedResult:
        """
        Execute expressions and collect the output fields.

        Args:
            exprs: Parsed expressions, in command-line order

        Returns:
            SedResult with the strategy's output fields

        Raises:
            SedError: On the first failing expression; the message names it
        """
        if not exprs:
            raise no_expressions_error()
        if len(exprs) == 1:
            return await self.run_single(exprs[0])
        return await self.run_batch(exprs)

    async def run_single(self, expr: SedExpression) -> SedResult:
        fields = await self._dispatch(expr)
        return SedResult(self.document_id, fields)

    async def _dispatch(self, expr: SedExpression) -> Dict[str, Any]:
        kind = classify_expression(expr)
        logger.debug(f"Running {expr.raw!r} as {kind.value}")

        if kind is ExprKind.COMMAND:
            return await self.run_command(expr)
        if kind is ExprKind.TABLE:
            return await self.tables.delete_tables(expr)
        if kind is ExprKind.POSITIONAL:
            return await self.run_positional(expr)
        if kind is ExprKind.CELL:
            if is_merge_op(expr.replacement):
                return await self.tables.merge_cells(expr)
            return await self.tables.replace_cells(expr)
        if kind is ExprKind.TABLE_CREATE:
            return await self.tables.create_table(expr, parse_table_spec(expr.replacement))
        if kind is ExprKind.IMAGE:
            ref = parse_image_ref_pattern(expr.pattern)
            return await self.images.replace_images(ref, expr.replacement, expr.global_)
        if kind is ExprKind.NATIVE:
            replaced = await self.run_native([expr])
            return {'replaced': replaced, 'native': True}
        return await self.run_manual(expr)

    async def run_manual(self, expr: SedExpression) -> Dict[str, Any]:
        result = await self.compiler.run(expr)
        # Reconcile only when this edit left tab-nested text waiting for bullets.
        if result.deferred_bullets:
            await self.bullets.reconcile()
        return {'replaced': result.replaced}

    async def run_native(self, exprs: Sequence[SedExpression]) -> int:
        """
        Apply plain global substitutions with replaceAllText in one call.

        Returns:
            Total occurrences changed as reported by the service
        """
        requests = [
            helpers.create_find_replace_request(
                expr.pattern,
                literal_replacement(expr.replacement),
                match_case=True,
                search_by_regex=True,
            )
            for expr in exprs
        ]
        response = await self.executor.batch_update(requests)
        return occurrences_changed(response)

    # Commands

    async def run_command(self, expr: SedExpression) -> Dict[str, Any]:
        if expr.command is Command.DELETE:
            return await self.delete_lines(expr)
        if expr.command is Command.APPEND:
            return await self.insert_lines(expr, after=True)
        if expr.command is Command.INSERT:
            return await self.insert_lines(expr, after=False)
        if expr.command is Command.TRANSLITERATE:
            return await self.transliterate(expr)
        raise SedError(f"unknown command: {expr.command}", code=ErrorCode.INVALID_EXPRESSION)

    async def delete_lines(self, expr: SedExpression) -> Dict[str, Any]:
        """
        Delete every top-level paragraph whose text matches the pattern.

        The final paragraph's newline cannot be removed, so deleting it
        removes the newline in front of it instead.
        """
        pattern = expr.compile_pattern()
        doc_data = await self.executor.fetch_document()
        paragraphs = _top_level_paragraphs(doc_data)
        if not paragraphs:
            return {'deleted': "0 (empty document)"}

        limit = body_end(doc_data)
        requests = []
        for start, end, text in reversed(paragraphs):
            if not pattern.search(text):
                continue
            start = max(start, 1)
            if end >= limit:
                end = limit - 1
                if start > 1:
                    start -= 1
            if start >= end:
                continue
            requests.append(helpers.create_delete_range_request(start, end))

        if not requests:
            return {'deleted': "0 (no matches)"}
        await self.executor.batch_update(requests)
        logger.info(f"Deleted {len(requests)} paragraph(s) matching {expr.pattern!r}")
        return {'deleted': f"{len(requests)} lines"}

    async def insert_lines(self, expr: SedExpression, after: bool) -> Dict[str, Any]:
        """
        Insert a line after (``a``) or before (``i``) each matching paragraph.

        An append after the final paragraph goes in front of its newline,
        with the newline leading instead of trailing.
        """
        key = 'appended' if after else 'inserted'
        pattern = expr.compile_pattern()
        text = expr.replacement.replace("\\n", "\n")
        if not text.endswith("\n"):
            text += "\n"

        doc_data = await self.executor.fetch_document()
        limit = body_end(doc_data)
        requests = []
        for start, end, para_text in reversed(_top_level_paragraphs(doc_data)):
            if not pattern.search(para_text):
                continue
            if not after:
                requests.append(helpers.create_insert_text_request(max(start, 1), text))
            elif end >= limit:
                requests.append(helpers.create_insert_text_request(limit - 1, "\n" + text[:-1]))
            else:
                requests.append(helpers.create_insert_text_request(end, text))

        if not requests:
            return {key: "0 (no matches)"}
        await self.executor.batch_update(requests)
        return {key: f"{len(requests)} lines"}

    async def transliterate(self, expr: SedExpression) -> Dict[str, Any]:
        source, dest = expr.pattern, expr.replacement
        pairs = transliteration_pairs(source, dest)
        requests = [helpers.create_find_replace_request(src, dst, match_case=True) for src, dst in pairs]
        response = await self.executor.batch_update(requests)

        # Only the first stage counts when placeholders are used.
        counts = [r.get('replaceAllText', {}).get('occurrencesChanged', 0) for r in response.get('replies', [])]
        replaced = sum(counts[:len(source)])
        return {'transliterated': f"{replaced} chars across {len(source)} pairs"}

    # Positional inserts

    async def run_positional(self, expr: SedExpression) -> Dict[str, Any]:
        """
        Insert at the start (``^``) or end (``$``) of the body, or fill an
        empty document (``^$``).

        ``s/^$//`` on a non-empty document clears the body.
        """
        doc_data = await self.executor.fetch_document()
        end = max(body_end(doc_data), 2)
        empty = is_document_empty(doc_data)

        if expr.pattern == "^$":
            if expr.replacement == "":
                if empty:
                    return {'cleared': 0}
                delete_end = end - 1
                if delete_end < 2:
                    return {'cleared': 0}
                await self.executor.batch_update([helpers.create_delete_range_request(1, delete_end)])
                return {'cleared': delete_end - 1}
            if not empty:
                return {'replaced': 0, 'message': "document is not empty"}
            index = 1
        elif expr.pattern == "^":
            index = 1
        else:
            index = max(end - 1, 1)

        inserted = await self.insert_at(index, expr.replacement)
        return {'inserted': inserted}

    async def insert_at(self, index: int, replacement: str) -> str:
        """
        Insert a table, an image or formatted text at index.

        Returns:
            Short description for the ``inserted`` output field
        """
        spec = parse_table_spec(replacement)
        if spec is not None:
            await self.tables.insert_table(index, spec)
            label = f"{spec.rows}x{spec.cols} table"
            return label + " (filled)" if spec.cells else label

        image = parse_image_syntax(replacement)
        if image is not None:
            await self.executor.batch_update(
                [helpers.create_insert_image_request(index, image.url, **image_spec_size(image))]
            )
            return "image"

        text, formats = parse_markdown_replacement(literal_replacement(replacement))
        if not text:
            return "0 chars"
        end = index + utf16_len(text)
        requests = [helpers.create_insert_text_request(index, text)]
        requests.extend(build_text_style_requests(formats, index, end))
        requests.append(helpers.create_named_style_request(index, end, "NORMAL_TEXT"))
        requests.append(helpers.create_delete_bullets_request(index, end))
        requests.extend(build_paragraph_style_requests(formats, index, end))
        await self.executor.batch_update(requests)
        return f"{len(text)} chars"

    # Multi-expression runs

    async def run_batch(self, exprs: Sequence[SedExpression]) -> SedResult:
        partition = partition_expressions(exprs)
        total = 0

        for index, expr in partition.positional:
            try:
                await self.run_positional(expr)
            except EXPRESSION_ERRORS as e:
                raise _expression_error(index + 1, e) from e
            total += 1

        if partition.native:
            first = partition.native[0][0]
            try:
                total += await self.run_native([expr for _, expr in partition.native])
            except EXPRESSION_ERRORS as e:
                raise _expression_error(first + 1, e) from e

        deferred = False
        for index, expr in partition.manual:
            try:
                ref = parse_image_ref_pattern(expr.pattern)
                if expr.command is not Command.SUBSTITUTE:
                    await self.run_command(expr)
                    total += 1
                elif ref is not None:
                    await self.images.replace_images(ref, expr.replacement, expr.global_)
                    total += 1
                else:
                    result = await self.compiler.run(expr)
                    total += result.replaced
                    deferred = deferred or bool(result.deferred_bullets)
            except EXPRESSION_ERRORS as e:
                raise SedExecutionError(index + 1, expr.pattern, expr.replacement, e) from e
        # Reconcile only when some edit left tab-nested text waiting for bullets.
        if deferred:
            await self.bullets.reconcile()

        for index, expr in partition.table_create:
            try:
                await self.tables.create_table(expr, parse_table_spec(expr.replacement))
            except EXPRESSION_ERRORS as e:
                raise _expression_error(index + 1, e) from e
            total += 1

        total += await self._run_cell_units(partition.cell)
        total += await self._run_images(partition.images)

        logger.info(f"Ran {len(exprs)} expressions on {self.document_id}: {total} replaced")
        return SedResult(self.document_id, {'expressions': len(exprs), 'replaced': total})

    async def _run_cell_units(self, cell_exprs: List[IndexedExpr]) -> int:
        total = 0
        for unit in group_cell_expressions(cell_exprs):
            if len(unit) > 1:
                try:
                    await self.tables.replace_cells_batch(unit)
                except EXPRESSION_ERRORS as e:
                    first, last = unit[0][0] + 1, unit[-1][0] + 1
                    raise SedError(
                        f"cell batch (expressions {first}-{last}): {e}",
                        code=_error_code(e),
                    ) from e
                total += len(unit)
                continue

            index, expr = unit[0]
            try:
                if expr.table_ref is not None:
                    await self.tables.delete_tables(expr)
                elif is_merge_op(expr.replacement):
                    await self.tables.merge_cells(expr)
                else:
                    await self.tables.replace_cells(expr)
            except EXPRESSION_ERRORS as e:
                raise _expression_error(index + 1, e) from e
            total += 1
        return total

    async def _run_images(self, image_exprs: List[IndexedExpr]) -> int:
        """Image insertions, paced to stay under the per-minute image quota."""
        total = 0
        for index, expr in image_exprs:
            await asyncio.sleep(self.config.image_pause)
            try:
                result = await self.run_manual(expr)
            except EXPRESSION_ERRORS as first_error:
                logger.warning(
                    f"Image expression {index + 1} failed ({first_error}); "
                    f"retrying in {self.config.image_retry_pause}s"
                )
                await asyncio.sleep(self.config.image_retry_pause)
                try:
                    result = await self.run_manual(expr)
                except EXPRESSION_ERRORS as e:
                    raise SedError(
                        f"expression {index + 1} (image): {e}",
                        code=ErrorCode.API_ERROR,
                    ) from e
            total += result['replaced']
        return total
