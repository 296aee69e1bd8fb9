"""
Code Catalog Client - external autocomplete API integration.

Queries the NAMASTE autocomplete endpoint and normalizes its suggestions
into CodeMapping records for the search page.

Expected response shape:
    {"success": true, "suggestions": [{"id", "code", "term", "englishName", ...}]}

Search never raises: transport, status and decode failures degrade to an
empty result set and are reported through the returned SearchResult and
the module logger.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..schemas import CodeMapping, ConsentState

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """
    Outcome of one catalog query.

    Attributes:
        success: Whether the endpoint answered with a usable payload
        mappings: Normalized, deduplicated records (empty on failure)
        error: Error message if failed
        metadata: Query details (term, limit, raw count)
    """
    success: bool
    mappings: List[CodeMapping] = field(default_factory=list)
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, mappings: List[CodeMapping], **metadata) -> "SearchResult":
        """Create successful result."""
        return cls(success=True, mappings=mappings, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata) -> "SearchResult":
        """Create failed result."""
        return cls(success=False, error=error, metadata=metadata)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_suggestion(
    item: Dict[str, Any],
    index: int,
    version: str,
    updated: date,
) -> CodeMapping:
    """
    Map one provider suggestion onto a CodeMapping.

    The provider only exposes a single code tier, so the secondary and
    target codes fall back to the primary code, and any missing display
    term falls back to the code itself.
    """
    code = _text(item.get("code"))
    term = _text(item.get("term"))
    english = _text(item.get("englishName"))
    secondary_code = _text(item.get("tm2Code")) or code
    target_code = _text(item.get("icdCode")) or code

    consent = _text(item.get("consent")).lower()
    consent_state = ConsentState.PENDING if consent == "pending" else ConsentState.GRANTED

    return CodeMapping(
        id=_text(item.get("id")) or f"result-{index}",
        source_code=code,
        source_term=term or code,
        secondary_code=secondary_code,
        secondary_term=english or term or secondary_code,
        target_code=target_code,
        target_term=english or target_code,
        version=_text(item.get("version")) or version,
        consent_state=consent_state,
        last_updated=updated,
    )


def deduplicate(mappings: List[CodeMapping]) -> List[CodeMapping]:
    """Drop repeats of the same (id, source_term) pair, keeping the first."""
    seen = set()
    unique = []
    for mapping in mappings:
        key = (mapping.id, mapping.source_term)
        if key in seen:
            continue
        seen.add(key)
        unique.append(mapping)
    return unique


class CodeCatalogClient:
    """
    Async client for the code catalog autocomplete endpoint.

    Usage:
        client = CodeCatalogClient()
        mappings = await client.search("jvara")
        await client.close()
    """

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        default_limit: int = None,
        version: str = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        today: Callable[[], date] = None,
    ):
        """
        Initialize the catalog client.

        Args:
            base_url: Autocomplete endpoint URL
            timeout: HTTP request timeout in seconds
            default_limit: Result limit when the caller gives none
            version: Version tag for suggestions that carry none
            transport: Optional httpx transport (used by tests)
            today: Date source for the mapping update date
        """
        self.base_url = base_url or settings.catalog_url
        self.timeout = timeout or settings.catalog_timeout
        self.default_limit = default_limit or settings.catalog_limit
        self.version = version or settings.catalog_version
        self._transport = transport
        self._today = today or (lambda: datetime.now(timezone.utc).date())
        self._client: Optional[httpx.AsyncClient] = None
        self.last_error: Optional[str] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch(self, query: str, limit: int) -> Any:
        """GET the endpoint, retrying transient transport errors."""
        client = await self._get_client()
        response = await client.get(self.base_url, params={"q": query, "limit": limit})
        response.raise_for_status()
        return response.json()

    async def execute(self, query: str, limit: int = None) -> SearchResult:
        """
        Query the catalog and normalize the response.

        Args:
            query: Free-text search term
            limit: Maximum suggestions to request

        Returns:
            SearchResult with deduplicated CodeMappings or an error
        """
        limit = limit or self.default_limit
        if not query or not query.strip():
            return SearchResult.ok([], search_term=query, limit=limit)

        term = query.strip()
        try:
            data = await self._fetch(term, limit)
        except httpx.TimeoutException:
            return self._failed(f"Catalog timeout searching: {term}", term, limit)
        except httpx.HTTPStatusError as e:
            return self._failed(
                f"Catalog error ({e.response.status_code}) searching: {term}", term, limit
            )
        except httpx.HTTPError as e:
            return self._failed(f"Catalog request failed: {e}", term, limit)
        except ValueError as e:
            return self._failed(f"Catalog returned invalid JSON: {e}", term, limit)

        self.last_error = None
        if not isinstance(data, dict) or not data.get("success") or "suggestions" not in data:
            logger.warning("Catalog response for %r has no suggestions; treating as empty", term)
            return SearchResult.ok([], search_term=term, limit=limit, raw_count=0)

        suggestions = data.get("suggestions") or []
        if not isinstance(suggestions, list):
            logger.warning("Catalog suggestions for %r are not a list; treating as empty", term)
            return SearchResult.ok([], search_term=term, limit=limit, raw_count=0)

        updated = self._today()
        mappings = [
            normalize_suggestion(item, index, self.version, updated)
            for index, item in enumerate(suggestions)
            if isinstance(item, dict)
        ]
        unique = deduplicate(mappings)
        logger.debug("Catalog returned %d suggestions (%d unique) for %r",
                     len(suggestions), len(unique), term)
        return SearchResult.ok(unique, search_term=term, limit=limit, raw_count=len(suggestions))

    async def search(self, query: str, limit: int = None) -> List[CodeMapping]:
        """
        Convenience method returning only the mappings.

        Failures yield an empty list; the message is kept in `last_error`.
        """
        result = await self.execute(query, limit)
        return result.mappings

    def _failed(self, error: str, term: str, limit: int) -> SearchResult:
        logger.warning(error)
        self.last_error = error
        return SearchResult.fail(error, search_term=term, limit=limit)
