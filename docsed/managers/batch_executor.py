"""
Batch Executor

Thin async wrapper over the Docs v1 service. The googleapiclient calls are
blocking, so each one runs in a worker thread; every call goes through the
quota-aware retry loop.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from core.config import SedConfig
from core.utils import retry_on_quota

logger = logging.getLogger(__name__)


class DocsBatchExecutor:
    """
    Fetches a document and applies batchUpdate calls with retry on quota errors.
    """

    def __init__(self, service, document_id: str, config: Optional[SedConfig] = None):
        """
        Args:
            service: Google Docs API service (``build('docs', 'v1', ...)``)
            document_id: ID of the document every call targets
            config: Retry and pacing settings
        """
        self.service = service
        self.document_id = document_id
        self.config = config or SedConfig()
        self.calls = 0

    async def _with_retry(self, call, operation: str):
        return await retry_on_quota(
            lambda: asyncio.to_thread(call),
            max_retries=self.config.max_retries,
            base_delay=self.config.base_delay,
            max_delay=self.config.max_delay,
            operation=operation,
        )

    async def fetch_document(self) -> Dict[str, Any]:
        """Fetch the current document snapshot."""
        logger.debug(f"Fetching document {self.document_id}")
        return await self._with_retry(
            self.service.documents().get(documentId=self.document_id).execute,
            "get_document",
        )

    async def batch_update(self, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Apply requests in one batchUpdate call.

        An empty list is not sent; a response with no replies is returned.

        Returns:
            The batchUpdate response (``replies`` holds one entry per request)
        """
        if not requests:
            return {'documentId': self.document_id, 'replies': []}

        self.calls += 1
        logger.debug(f"batchUpdate #{self.calls} on {self.document_id} with {len(requests)} requests")
        return await self._with_retry(
            self.service.documents().batchUpdate(
                documentId=self.document_id,
                body={'requests': requests},
            ).execute,
            "batch_update",
        )


def replies(response: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not response:
        return []
    return [reply or {} for reply in response.get('replies', []) or []]


def occurrences_changed(response: Optional[Dict[str, Any]]) -> int:
    """Sum of replaceAllText occurrence counts in a batchUpdate response."""
    total = 0
    for reply in replies(response):
        total += reply.get('replaceAllText', {}).get('occurrencesChanged', 0) or 0
    return total


def footnote_id(response: Optional[Dict[str, Any]]) -> str:
    """ID of the first footnote created in a batchUpdate response, or ''."""
    for reply in replies(response):
        created = reply.get('createFootnote', {}).get('footnoteId')
        if created:
            return created
    return ""
