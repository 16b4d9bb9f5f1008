"""
Bullet Reconciler

Docs derives a list item's nesting level from the tab characters in front
of it, but only when the bullets are created over the whole list at once.
Nested items are therefore written as tab-prefixed text without bullets;
afterwards the reconciler finds each run of adjacent list paragraphs that
contains such items and recreates the bullets over the whole run.

Creating bullets consumes the leading tabs and shifts every later index,
so one run is applied per call and the document is re-fetched in between.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from docsed import docs_helpers as helpers
from docsed.docs_structure import body_content, body_end, first_run_text, infer_bullet_preset
from docsed.managers.batch_executor import DocsBatchExecutor

logger = logging.getLogger(__name__)


@dataclass
class ParagraphInfo:
    start_index: int
    end_index: int
    has_bullet: bool
    has_tab: bool
    preset: str = ""


@dataclass
class BulletGroup:
    """Adjacent list paragraphs that get their bullets recreated together."""
    start_index: int
    end_index: int
    preset: str


def scan_paragraphs(doc_data: Dict[str, Any]) -> List[ParagraphInfo]:
    """Top-level body paragraphs with their list state."""
    paragraphs = []
    for element in body_content(doc_data):
        paragraph = element.get("paragraph")
        if paragraph is None:
            continue
        bullet = paragraph.get("bullet")
        text = first_run_text(paragraph)
        paragraphs.append(
            ParagraphInfo(
                start_index=element.get("startIndex", 0),
                end_index=element.get("endIndex", 0),
                has_bullet=bullet is not None,
                has_tab=bool(text) and text.startswith("\t"),
                preset=infer_bullet_preset(doc_data, bullet.get("listId", "")) if bullet is not None else "",
            )
        )
    return paragraphs


def has_pending_bullets(paragraphs: List[ParagraphInfo]) -> bool:
    """True if some tab-prefixed paragraph still has no bullet."""
    return any(p.has_tab and not p.has_bullet for p in paragraphs)


def find_bullet_groups(doc_data: Dict[str, Any]) -> List[BulletGroup]:
    """
    Runs of adjacent bulleted or tab-prefixed paragraphs.

    A run breaks where the list preset changes and is kept only if it holds
    at least one tab-prefixed paragraph. Ends are clamped inside the body
    and empty runs are dropped.
    """
    paragraphs = scan_paragraphs(doc_data)
    if not has_pending_bullets(paragraphs):
        return []

    limit = body_end(doc_data) - 1
    groups = []
    i = 0
    while i < len(paragraphs):
        p = paragraphs[i]
        if not p.has_tab and not p.has_bullet:
            i += 1
            continue

        start = p.start_index
        end = p.end_index - 1
        preset = p.preset or helpers.BULLET_PRESET_DISC
        any_tab = p.has_tab
        while i + 1 < len(paragraphs):
            nxt = paragraphs[i + 1]
            if not nxt.has_tab and not nxt.has_bullet:
                break
            if nxt.preset and nxt.preset != preset:
                break
            i += 1
            end = nxt.end_index - 1
            any_tab = any_tab or nxt.has_tab
            if nxt.preset:
                preset = nxt.preset
        i += 1

        if not any_tab:
            continue
        if end > limit:
            end = limit
        if start >= end:
            continue
        groups.append(BulletGroup(start, end, preset))
    return groups


def build_group_requests(group: BulletGroup) -> List[Dict[str, Any]]:
    """Drop any existing bullets on the run, then create them over all of it."""
    return [
        helpers.create_delete_bullets_request(group.start_index, group.end_index),
        helpers.create_bullet_list_request(group.start_index, group.end_index, group.preset),
    ]


class BulletReconciler:
    """Recreates bullets over list runs that contain tab-nested items."""

    def __init__(self, executor: DocsBatchExecutor):
        self.executor = executor

    async def reconcile(self, max_iterations: Optional[int] = None) -> int:
        """
        Apply one bullet run per call until none remains.

        Args:
            max_iterations: Upper bound on calls; defaults to the number of
                runs found on the first pass plus one

        Returns:
            Number of runs applied
        """
        applied = 0
        limit = max_iterations
        while limit is None or applied < limit:
            doc_data = await self.executor.fetch_document()
            groups = find_bullet_groups(doc_data)
            if limit is None:
                limit = len(groups) + 1
            if not groups:
                break
            group = groups[0]
            logger.debug(
                f"Recreating {group.preset} bullets over [{group.start_index}, {group.end_index}); "
                f"{len(groups) - 1} run(s) left"
            )
            await self.executor.batch_update(build_group_requests(group))
            applied += 1
        if applied:
            logger.info(f"Reconciled {applied} nested list run(s)")
        return applied
