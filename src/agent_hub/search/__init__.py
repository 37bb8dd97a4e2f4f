"""Web search providers."""

from agent_hub.search.base import (
    DEFAULT_MAX_RESULTS,
    SearchProvider,
    SearchResult,
    StaticSearchProvider,
)
from agent_hub.search.duckduckgo import DuckDuckGoSearchProvider

__all__ = [
    "DEFAULT_MAX_RESULTS",
    "DuckDuckGoSearchProvider",
    "SearchProvider",
    "SearchResult",
    "StaticSearchProvider",
]
