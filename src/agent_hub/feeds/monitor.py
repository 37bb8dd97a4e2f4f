"""One poll of one feed target: fetch, parse, diff, persist, deliver."""

from __future__ import annotations

import html
import logging
import re
import time
from collections.abc import Callable

from agent_hub.errors import AgentHubError
from agent_hub.feeds.diff import FeedDiffEngine
from agent_hub.feeds.models import (
    FeedCheckResult,
    FeedItem,
    FeedKind,
    FeedSnapshot,
    FeedTarget,
)
from agent_hub.feeds.parser import parse_feed, parse_html_listing
from agent_hub.feeds.repository import FeedRepository
from agent_hub.http.fetcher import HttpFetcher
from agent_hub.notify.base import NotificationSink

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 150
_TAG_RE = re.compile(r"<[^>]+>")


class FeedMonitor:
    """Runs feed checks; every failure is reported in the result, never raised."""

    def __init__(
        self,
        *,
        repository: FeedRepository,
        fetcher: HttpFetcher,
        notifier: NotificationSink,
        engine: FeedDiffEngine | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.notifier = notifier
        self.engine = engine or FeedDiffEngine()
        self._sleep = sleep

    def check(self, target: FeedTarget) -> FeedCheckResult:
        result = FeedCheckResult(name=target.name, feed_url=target.url)
        fetched = self.fetcher.fetch(target.url)
        if not fetched.is_success:
            result.error = f"fetch failed: {fetched.error}"
            logger.warning("Feed %s (%s) %s", target.name, target.url, result.error)
            return result

        try:
            snapshot = self._parse(target, fetched.content)
            items = snapshot.items
            if target.max_items is not None:
                items = items[: target.max_items]
            result.fetched = len(items)

            state = self.repository.get_state(target.url, scope=target.scope)
            diff = self.engine.diff(
                target.url,
                items,
                state,
                keywords=target.keywords,
                mode=target.mode,
                retention=target.retention,
                scope=target.scope,
            )
            # Persist before delivery: a crash mid-delivery skips items rather than repeating them.
            if diff.state is not None:
                self.repository.save_state(diff.state)
        except AgentHubError as error:
            result.error = str(error)
            logger.warning("Feed %s (%s) check failed: %s", target.name, target.url, error)
            return result

        result.baseline = diff.baseline
        result.filtered = len(diff.filtered_out)
        if diff.baseline:
            logger.info(
                "Feed %s baseline recorded with %d items; nothing delivered",
                target.name,
                len(items),
            )
            return result

        if diff.new_items and not target.destination:
            logger.warning(
                "Feed %s has %d new items but no destination",
                target.name,
                len(diff.new_items),
            )
            return result

        for index, item in enumerate(diff.new_items):
            if index > 0 and target.post_delay_seconds > 0:
                self._sleep(target.post_delay_seconds)
            message = format_feed_message(target.name, item)
            if self.notifier.notify(target.destination or "", message):
                result.delivered += 1
            else:
                result.failed_deliveries += 1

        logger.info(
            "Feed %s: fetched=%d delivered=%d filtered=%d failed=%d",
            target.name,
            result.fetched,
            result.delivered,
            result.filtered,
            result.failed_deliveries,
        )
        return result

    def check_all(self, targets: list[FeedTarget]) -> list[FeedCheckResult]:
        return [self.check(target) for target in targets]

    def _parse(self, target: FeedTarget, content: str) -> FeedSnapshot:
        if target.kind == FeedKind.HTML:
            return parse_html_listing(
                content,
                page_url=target.url,
                link_pattern=target.link_pattern,
                base_url=target.base_url,
            )
        return parse_feed(content, target.url)


def format_feed_message(source_name: str, item: FeedItem) -> str:
    """Markdown message: source, title, short plain-text excerpt, link."""

    parts = [f"*{source_name}*", f"*{item.title}*"]
    excerpt = make_excerpt(item.body)
    if excerpt:
        parts.append(excerpt)
    if item.link:
        parts.append(f"[Read more]({item.link})")
    return "\n\n".join(parts)


def make_excerpt(body: str, *, limit: int = EXCERPT_CHARS) -> str:
    text = " ".join(html.unescape(_TAG_RE.sub(" ", body)).split())
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."
