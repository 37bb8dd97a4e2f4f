"""Controllers for feed CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from agent_hub.config import Settings
from agent_hub.feeds.models import FeedCheckResult, FeedTarget
from agent_hub.feeds.monitor import FeedMonitor
from agent_hub.feeds.repository import FeedRepository
from agent_hub.feeds.scheduler import FeedScheduler
from agent_hub.feeds.subscriptions import FeedSubscriptionService
from agent_hub.http.fetcher import HttpFetcher
from agent_hub.notify.base import NotificationSink
from agent_hub.runtime import build_fetcher, build_notifier


@dataclass(slots=True)
class FeedsCheckCommand:
    """CLI input for an immediate poll of configured and subscribed feeds."""

    db_path: Path | None
    name: str | None = None


@dataclass(slots=True)
class FeedsWatchCommand:
    db_path: Path | None
    max_ticks: int | None = None


@dataclass(slots=True)
class FeedsSubscribeCommand:
    db_path: Path | None
    chat_id: str
    url: str
    name: str | None = None


@dataclass(slots=True)
class FeedsUnsubscribeCommand:
    db_path: Path | None
    chat_id: str
    index: int


@dataclass(slots=True)
class FeedsSubscriptionsCommand:
    db_path: Path | None
    chat_id: str


@dataclass(slots=True)
class FeedsResetCommand:
    """CLI input for dropping stored feed state; the next poll records a new baseline."""

    db_path: Path | None
    url: str
    scope: str = ""


@dataclass(slots=True)
class _FeedRuntime:
    repository: FeedRepository
    fetcher: HttpFetcher
    notifier: NotificationSink
    subscriptions: FeedSubscriptionService
    monitor: FeedMonitor


class FeedsCliController:
    """Coordinates feed polling and subscription CLI operations."""

    def check(self, command: FeedsCheckCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_feeds()
        with _feed_runtime(settings) as runtime:
            targets = _all_targets(settings, runtime.subscriptions)
            if command.name is not None:
                targets = [target for target in targets if target.name == command.name]
                if not targets:
                    return [f"No feed target named {command.name!r}"]
            results = runtime.monitor.check_all(targets)

        lines = [f"Feeds checked: {len(results)}"]
        lines.extend(_render_result(result) for result in results)
        return lines

    def watch(self, command: FeedsWatchCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_feeds()
        with _feed_runtime(settings) as runtime:
            scheduler = FeedScheduler(
                monitor=runtime.monitor,
                targets=lambda: _all_targets(settings, runtime.subscriptions),
                interval_seconds=settings.feeds.interval_seconds,
                max_workers=settings.feeds.max_workers,
            )
            try:
                ticks = scheduler.run_loop(max_ticks=command.max_ticks)
            finally:
                scheduler.shutdown(wait=True)
        return [f"Feed scheduler stopped: ticks={ticks}"]

    def subscribe(self, command: FeedsSubscribeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _feed_runtime(settings) as runtime:
            result = runtime.subscriptions.subscribe(command.chat_id, command.url, command.name)

        subscription = result.subscription
        lines = [
            f"Subscribed to {subscription.name}",
            f"URL: {subscription.feed_url}",
            f"Latest posts: {len(result.latest_titles)}",
        ]
        lines.extend(
            f"  {index}. {title}" for index, title in enumerate(result.latest_titles, start=1)
        )
        return lines

    def unsubscribe(self, command: FeedsUnsubscribeCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _feed_runtime(settings) as runtime:
            removed = runtime.subscriptions.unsubscribe(command.chat_id, command.index)
        return [f"Unsubscribed from {removed.name}"]

    def subscriptions(self, command: FeedsSubscriptionsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _feed_runtime(settings) as runtime:
            subscriptions = runtime.subscriptions.list_subscriptions(command.chat_id)

        if not subscriptions:
            return ["No subscriptions yet."]
        lines = [f"Subscriptions: {len(subscriptions)}"]
        lines.extend(
            f"  {index}. {subscription.name} {subscription.feed_url}"
            for index, subscription in enumerate(subscriptions, start=1)
        )
        return lines

    def reset(self, command: FeedsResetCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            removed = repository.delete_state(command.url, scope=command.scope)
        if not removed:
            return [f"No stored state for {command.url}"]
        return [f"Feed state cleared: {command.url}"]


def _all_targets(settings: Settings, subscriptions: FeedSubscriptionService) -> list[FeedTarget]:
    """Configured channel targets followed by every chat subscription; re-read on each call."""

    return [
        *settings.feeds.load_targets(),
        *subscriptions.targets(post_delay_seconds=settings.feeds.post_delay_seconds),
    ]


def _render_result(result: FeedCheckResult) -> str:
    if result.error is not None:
        return f"  {result.name} error={result.error}"
    if result.baseline:
        return f"  {result.name} baseline items={result.fetched}"
    return (
        f"  {result.name} fetched={result.fetched} delivered={result.delivered} "
        f"filtered={result.filtered} failed_deliveries={result.failed_deliveries}"
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[FeedRepository]:
    repository = FeedRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _feed_runtime(settings: Settings) -> Iterator[_FeedRuntime]:
    notifier = build_notifier(settings)
    with _repository(settings) as repository, build_fetcher(settings) as fetcher:
        try:
            yield _FeedRuntime(
                repository=repository,
                fetcher=fetcher,
                notifier=notifier,
                subscriptions=FeedSubscriptionService(
                    repository=repository,
                    fetcher=fetcher,
                    retention=settings.feeds.retention,
                ),
                monitor=FeedMonitor(repository=repository, fetcher=fetcher, notifier=notifier),
            )
        finally:
            close = getattr(notifier, "close", None)
            if callable(close):
                close()
