"""Search provider interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

DEFAULT_MAX_RESULTS = 5


@dataclass(slots=True, frozen=True)
class SearchResult:
    title: str
    snippet: str
    url: str


class SearchProvider(Protocol):
    """Web search boundary used by the research handler.

    Implementations never raise: a failed or empty search returns ``[]``.
    """

    def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[SearchResult]:
        """Return at most ``max_results`` hits for ``query``."""


class StaticSearchProvider:
    """Provider returning canned results; used for offline runs and tests."""

    def __init__(self, results: list[SearchResult] | None = None) -> None:
        self.results = list(results or [])
        self.queries: list[str] = []

    def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[SearchResult]:
        self.queries.append(query)
        return self.results[:max_results]
