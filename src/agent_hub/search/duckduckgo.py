"""DuckDuckGo HTML endpoint search provider."""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup, Tag

from agent_hub.search.base import DEFAULT_MAX_RESULTS, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_URL = "https://html.duckduckgo.com/html/"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class DuckDuckGoSearchProvider:
    """Scrapes the no-JS DuckDuckGo results page."""

    def __init__(
        self,
        *,
        search_url: str = DEFAULT_SEARCH_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.search_url = search_url
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"User-Agent": DEFAULT_USER_AGENT},
            follow_redirects=True,
        )

    def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> list[SearchResult]:
        try:
            response = self._client.get(self.search_url, params={"q": query})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Web search failed for %r: %s", query, exc)
            return []
        results = parse_results(response.text, max_results=max_results)
        logger.info("Web search for %r returned %d results", query, len(results))
        return results

    def close(self) -> None:
        self._client.close()


def parse_results(page: str, *, max_results: int = DEFAULT_MAX_RESULTS) -> list[SearchResult]:
    """Extract result title, snippet and target URL triples from a results page."""

    soup = BeautifulSoup(page, "html.parser")
    snippets = soup.select(".result__snippet")
    results: list[SearchResult] = []
    for index, link in enumerate(soup.select("a.result__a")):
        if len(results) >= max_results:
            break
        url = _resolve_redirect(str(link.get("href") or "").strip())
        if not url or "duckduckgo.com" in urlparse(url).netloc:
            continue
        results.append(
            SearchResult(
                title=_text(link) or url,
                snippet=_snippet_for(link, snippets, index),
                url=url,
            ),
        )
    return results


def _snippet_for(link: Tag, snippets: list[Tag], index: int) -> str:
    container = link.find_parent(class_="result")
    if container is not None:
        snippet = container.select_one(".result__snippet")
        return _text(snippet) if snippet is not None else ""
    # Flat markup without result containers: pair by position.
    return _text(snippets[index]) if index < len(snippets) else ""


def _resolve_redirect(href: str) -> str:
    """Unwrap ``//duckduckgo.com/l/?uddg=<target>`` redirect links."""

    parsed = urlparse(href if not href.startswith("//") else f"https:{href}")
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return href


def _text(node: Tag) -> str:
    return " ".join(node.get_text(" ").split())
