"""
Debounced, stale-guarded catalog search.

A fast-typing user produces one submit() per keystroke. Each call waits
for a quiet period before touching the network, and a response is only
published when no newer request has already published its results. The
guard is by request sequence number rather than cancellation, so it works
with transports that cannot cancel an in-flight request.
"""
import asyncio
import logging
from typing import List, Optional

from ..config import settings
from ..schemas import CodeMapping
from .client import CodeCatalogClient

logger = logging.getLogger(__name__)

MIN_DEBOUNCE_SECONDS = 0.3


class DebouncedSearch:
    """
    Wraps a CodeCatalogClient with debounce and sequence-number ordering.

    Usage:
        searcher = DebouncedSearch(client)
        results = await searcher.submit("shita")   # None if superseded
        searcher.latest                            # last published results
    """

    def __init__(self, client: CodeCatalogClient, debounce_seconds: float = None, limit: int = None):
        if debounce_seconds is None:
            debounce_seconds = settings.search_debounce_ms / 1000
        self.client = client
        self.debounce_seconds = max(debounce_seconds, MIN_DEBOUNCE_SECONDS)
        self.limit = limit
        self._issued = 0
        self._published = 0
        self.latest: List[CodeMapping] = []
        self.latest_query: Optional[str] = None

    @property
    def issued(self) -> int:
        """Sequence number of the most recent submit()."""
        return self._issued

    async def submit(self, query: str) -> Optional[List[CodeMapping]]:
        """
        Request results for `query`.

        Returns:
            The published results, or None when a newer submit() superseded
            this one (during the quiet period or before it resolved).
        """
        self._issued += 1
        sequence = self._issued

        await asyncio.sleep(self.debounce_seconds)
        if sequence != self._issued:
            return None

        results = await self.client.search(query, self.limit)
        return self._publish(sequence, query, results)

    def _publish(self, sequence: int, query: str, results: List[CodeMapping]) -> Optional[List[CodeMapping]]:
        if sequence <= self._published:
            logger.debug("Discarding stale results for %r (seq %d <= %d)",
                         query, sequence, self._published)
            return None
        self._published = sequence
        self.latest = results
        self.latest_query = query
        return results
