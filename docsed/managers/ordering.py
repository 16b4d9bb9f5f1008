"""
Offset-safe ordering of edit requests.

Every request in a batchUpdate addresses absolute indices of the document
as it stands when that request runs. Edits computed against one snapshot
stay valid when they are applied from the highest index to the lowest, so
each location's requests are grouped and the groups are emitted in
descending anchor order.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Requests that insert or remove index space.
LENGTH_CHANGING_REQUESTS = (
    'insertText',
    'deleteContentRange',
    'insertTable',
    'insertInlineImage',
    'insertPageBreak',
    'insertSectionBreak',
    'createFootnote',
    'insertPerson',
)


@dataclass
class EditGroup:
    """
    Requests that belong to one location in the document.

    Attributes:
        anchor: Start index of the edited span in the pre-call snapshot
        requests: Length-changing requests first, then styles scoped to the
            freshly inserted span
    """
    anchor: int
    requests: List[Dict[str, Any]] = field(default_factory=list)


def order_edit_groups(groups: Iterable[EditGroup]) -> List[Dict[str, Any]]:
    """
    Flatten groups highest anchor first.

    The sort is stable, so groups sharing an anchor keep their relative order.
    """
    ordered = sorted(groups, key=lambda g: g.anchor, reverse=True)
    requests: List[Dict[str, Any]] = []
    for group in ordered:
        requests.extend(group.requests)
    return requests


def request_start_index(request: Dict[str, Any]) -> Optional[int]:
    """Start index a request operates at, or None for index-free requests."""
    if not request:
        return None
    body = next(iter(request.values()))
    if not isinstance(body, dict):
        return None
    if 'location' in body:
        return body['location'].get('index')
    if 'range' in body:
        return body['range'].get('startIndex')
    if 'tableCellLocation' in body:
        return body['tableCellLocation'].get('tableStartLocation', {}).get('index')
    return None


def is_length_changing(request: Dict[str, Any]) -> bool:
    return any(kind in request for kind in LENGTH_CHANGING_REQUESTS)


def verify_reverse_order(requests: List[Dict[str, Any]]) -> bool:
    """
    True if length-changing requests never move to a higher index.

    Style requests are ignored; they sit with their group and touch only
    text the group just inserted.
    """
    previous: Optional[int] = None
    for request in requests:
        if not is_length_changing(request):
            continue
        index = request_start_index(request)
        if index is None:
            continue
        if previous is not None and index > previous:
            logger.debug(f"Request at {index} follows request at {previous}")
            return False
        previous = index
    return True


class OffsetShiftMap:
    """
    Maps pre-call offsets to post-call offsets.

    Each recorded edit replaces old_length units at start with new_length
    units. Edits are assumed not to overlap. An offset moves by the net
    change of every edit that starts before it.
    """

    def __init__(self):
        self._edits: List[Tuple[int, int]] = []

    def record(self, start: int, old_length: int, new_length: int) -> None:
        delta = new_length - old_length
        if delta:
            self._edits.append((start, delta))

    def map(self, offset: int) -> int:
        return offset + sum(delta for start, delta in self._edits if start < offset)

    def __len__(self) -> int:
        return len(self._edits)


def map_through(shifts: Iterable[OffsetShiftMap], offset: int) -> int:
    """Map an offset through successive calls, oldest first."""
    for shift in shifts:
        offset = shift.map(offset)
    return offset
