"""
Code Catalog Module

Searches the external NAMASTE autocomplete endpoint and normalizes the
results into CodeMapping records.

Components:
- client: HTTP client, normalization and deduplication
- debounce: Quiet-period debounce with stale-response guard
"""
from .client import CodeCatalogClient, SearchResult
from .debounce import DebouncedSearch

__all__ = [
    "CodeCatalogClient",
    "SearchResult",
    "DebouncedSearch",
]
