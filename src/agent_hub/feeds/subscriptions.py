"""Per-chat feed subscriptions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

from agent_hub.errors import FeedParseError, TransportError, ValidationError
from agent_hub.feeds.diff import FeedDiffEngine
from agent_hub.feeds.models import (
    DEFAULT_POST_DELAY_SECONDS,
    DEFAULT_RETENTION,
    CursorMode,
    FeedSubscription,
    FeedTarget,
)
from agent_hub.feeds.parser import parse_feed
from agent_hub.feeds.repository import FeedRepository
from agent_hub.http.fetcher import HttpFetcher

logger = logging.getLogger(__name__)

LATEST_TITLES = 5


@dataclass(slots=True)
class SubscribeResult:
    subscription: FeedSubscription
    latest_titles: list[str]


class FeedSubscriptionService:
    """Subscribe, unsubscribe and list feeds for a chat.

    Subscribing fetches the feed once to validate it and records the current
    items as the baseline, so only later posts are delivered to the chat.
    """

    def __init__(
        self,
        *,
        repository: FeedRepository,
        fetcher: HttpFetcher,
        engine: FeedDiffEngine | None = None,
        retention: int = DEFAULT_RETENTION,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.engine = engine or FeedDiffEngine()
        self.retention = retention

    def subscribe(self, chat_id: str, url: str, name: str | None = None) -> SubscribeResult:
        url = url.strip()
        parsed_url = urlparse(url)
        if parsed_url.scheme not in {"http", "https"} or not parsed_url.netloc:
            raise ValidationError(message="Invalid RSS feed URL", code="invalid_feed_url")
        if any(sub.feed_url == url for sub in self.repository.list_subscriptions(chat_id)):
            raise ValidationError(
                message="Already subscribed to this feed",
                code="duplicate_subscription",
            )

        fetched = self.fetcher.fetch(url)
        if not fetched.is_success:
            raise TransportError(
                message=f"Could not fetch feed {url}: {fetched.error}",
                status_code=fetched.status_code or None,
            )
        try:
            snapshot = parse_feed(fetched.content, url)
        except FeedParseError as error:
            raise ValidationError(message="Invalid RSS feed URL", code="invalid_feed") from error

        feed_name = (name or "").strip() or snapshot.title or parsed_url.netloc
        subscription = self.repository.add_subscription(
            chat_id=chat_id,
            feed_url=url,
            name=feed_name,
        )
        diff = self.engine.diff(
            url,
            snapshot.items,
            self.repository.get_state(url, scope=chat_id),
            mode=CursorMode.SEEN_SET,
            retention=self.retention,
            scope=chat_id,
        )
        if diff.state is not None:
            self.repository.save_state(diff.state)
        logger.info("Chat %s subscribed to %s (%s)", chat_id, feed_name, url)
        return SubscribeResult(
            subscription=subscription,
            latest_titles=[item.title for item in snapshot.items[:LATEST_TITLES]],
        )

    def unsubscribe(self, chat_id: str, index: int) -> FeedSubscription:
        """Remove the ``index``-th (1-based) subscription of ``chat_id`` and its state."""

        subscriptions = self.repository.list_subscriptions(chat_id)
        if index < 1 or index > len(subscriptions):
            raise ValidationError(message="Invalid subscription number")
        removed = subscriptions[index - 1]
        self.repository.remove_subscription(removed.subscription_id)
        self.repository.delete_state(removed.feed_url, scope=chat_id)
        logger.info("Chat %s unsubscribed from %s", chat_id, removed.feed_url)
        return removed

    def list_subscriptions(self, chat_id: str) -> list[FeedSubscription]:
        return self.repository.list_subscriptions(chat_id)

    def targets(
        self,
        *,
        post_delay_seconds: float = DEFAULT_POST_DELAY_SECONDS,
    ) -> list[FeedTarget]:
        """Every subscription as a poll target delivering to its own chat."""

        return [
            FeedTarget(
                name=subscription.name,
                url=subscription.feed_url,
                destination=subscription.chat_id,
                mode=CursorMode.SEEN_SET,
                retention=self.retention,
                post_delay_seconds=post_delay_seconds,
                scope=subscription.chat_id,
            )
            for subscription in self.repository.list_subscriptions()
        ]
