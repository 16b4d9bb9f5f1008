"""
Pytest fixtures for docsed unit tests.

FakeDocsService stands in for the googleapiclient Docs resource: it serves
scripted document snapshots from documents().get() and records every
batchUpdate body. DocBuilder produces snapshots whose indexes line up the
way the real API reports them.
"""
import copy
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from core.config import SedConfig
from core.utils import utf16_len


class DocBuilder:
    """Builds documents.get() payloads with consistent indexes."""

    def __init__(self, document_id: str = "doc123"):
        self.document_id = document_id
        self.content: List[Dict[str, Any]] = [{'startIndex': 0, 'endIndex': 1, 'sectionBreak': {}}]
        self.index = 1
        self.inline_objects: Dict[str, Any] = {}
        self.positioned_objects: Dict[str, Any] = {}
        self.lists: Dict[str, Any] = {}

    def _paragraph(self, start: int, text: str, list_id: Optional[str] = None) -> Dict[str, Any]:
        if not text.endswith("\n"):
            text += "\n"
        end = start + utf16_len(text)
        paragraph: Dict[str, Any] = {
            'elements': [{'startIndex': start, 'endIndex': end, 'textRun': {'content': text, 'textStyle': {}}}],
            'paragraphStyle': {'namedStyleType': 'NORMAL_TEXT'},
        }
        if list_id:
            paragraph['bullet'] = {'listId': list_id}
        return {'startIndex': start, 'endIndex': end, 'paragraph': paragraph}

    def paragraph(self, text: str, list_id: Optional[str] = None) -> "DocBuilder":
        element = self._paragraph(self.index, text, list_id)
        self.content.append(element)
        self.index = element['endIndex']
        return self

    def bullet_list(self, list_id: str, numbered: bool = False) -> "DocBuilder":
        glyph = {'glyphType': 'DECIMAL'} if numbered else {'glyphSymbol': '●'}
        self.lists[list_id] = {'listProperties': {'nestingLevels': [glyph]}}
        return self

    def image(self, object_id: str, alt: str = "", before: str = "", after: str = "") -> "DocBuilder":
        """A paragraph holding one inline image between optional text."""
        start = self.index
        elements = []
        pos = start
        if before:
            elements.append({'startIndex': pos, 'endIndex': pos + utf16_len(before), 'textRun': {'content': before}})
            pos += utf16_len(before)
        elements.append({'startIndex': pos, 'endIndex': pos + 1, 'inlineObjectElement': {'inlineObjectId': object_id}})
        pos += 1
        tail = after + "\n"
        elements.append({'startIndex': pos, 'endIndex': pos + utf16_len(tail), 'textRun': {'content': tail}})
        pos += utf16_len(tail)
        self.content.append({'startIndex': start, 'endIndex': pos, 'paragraph': {'elements': elements}})
        self.inline_objects[object_id] = {
            'inlineObjectProperties': {'embeddedObject': {'title': alt}}
        }
        self.index = pos
        return self

    def positioned_image(self, object_id: str, alt: str = "") -> "DocBuilder":
        self.positioned_objects[object_id] = {
            'positionedObjectProperties': {'embeddedObject': {'description': alt}}
        }
        return self

    def table(self, rows: List[List[str]]) -> "DocBuilder":
        """A table whose cells each hold one paragraph of text."""
        table_start = self.index
        pos = table_start + 1
        table_rows = []
        for row in rows:
            row_start = pos
            pos += 1
            cells = []
            for text in row:
                cell_start = pos
                para = self._paragraph(cell_start + 1, text)
                pos = para['endIndex']
                cells.append({'startIndex': cell_start, 'endIndex': pos, 'content': [para]})
            table_rows.append({'startIndex': row_start, 'endIndex': pos, 'tableCells': cells})
        table_end = pos + 1
        self.content.append({
            'startIndex': table_start,
            'endIndex': table_end,
            'table': {
                'rows': len(rows),
                'columns': len(rows[0]) if rows else 0,
                'tableRows': table_rows,
            },
        })
        self.index = table_end
        # A table is always followed by a paragraph.
        return self.paragraph("")

    def build(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            'documentId': self.document_id,
            'title': 'Test Doc',
            'body': {'content': copy.deepcopy(self.content)},
        }
        if self.inline_objects:
            doc['inlineObjects'] = copy.deepcopy(self.inline_objects)
        if self.positioned_objects:
            doc['positionedObjects'] = copy.deepcopy(self.positioned_objects)
        if self.lists:
            doc['lists'] = copy.deepcopy(self.lists)
        return doc


class FakeDocsService:
    """
    Docs service double.

    documents().get() returns the scripted snapshots in order, repeating the
    last one. batchUpdate records the request body and answers with the next
    scripted response, or one empty reply per request.
    """

    def __init__(self, snapshots: Optional[List[Dict[str, Any]]] = None, responses=None):
        self.snapshots = list(snapshots or [DocBuilder().paragraph("").build()])
        self.responses = list(responses or [])
        self.get_calls = 0
        self.bodies: List[Dict[str, Any]] = []
        self._documents = MagicMock()
        self._documents.get.side_effect = self._get
        self._documents.batchUpdate.side_effect = self._batch_update

    def documents(self):
        return self._documents

    def _get(self, documentId):
        snapshot = self.snapshots[min(self.get_calls, len(self.snapshots) - 1)]
        self.get_calls += 1
        request = MagicMock()
        request.execute.return_value = copy.deepcopy(snapshot)
        return request

    def _batch_update(self, documentId, body):
        self.bodies.append(copy.deepcopy(body))
        request = MagicMock()
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                request.execute.side_effect = response
                return request
        else:
            response = {'documentId': documentId, 'replies': [{} for _ in body['requests']]}
        request.execute.return_value = response
        return request

    @property
    def requests(self) -> List[Dict[str, Any]]:
        """Every request sent, across all batchUpdate calls."""
        return [r for body in self.bodies for r in body['requests']]

    def kinds(self, call: int = -1) -> List[str]:
        """Request type names of one batchUpdate call."""
        return [next(iter(r)) for r in self.bodies[call]['requests']]


@pytest.fixture
def doc():
    """A fresh DocBuilder."""
    return DocBuilder()


@pytest.fixture
def make_doc():
    """DocBuilder factory, for tests that need several snapshots."""
    return DocBuilder


@pytest.fixture
def fast_config():
    """Config without pauses or retry delays."""
    return SedConfig(max_retries=0, base_delay=0.0, max_delay=0.0, image_pause=0.0, image_retry_pause=0.0)


@pytest.fixture
def make_service():
    """Factory for FakeDocsService: make_service(snapshots, responses=None)."""
    return FakeDocsService
