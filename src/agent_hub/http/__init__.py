"""HTTP helpers."""

from agent_hub.http.fetcher import FetchResult, HttpFetcher

__all__ = ["FetchResult", "HttpFetcher"]
