"""Domain models for feed monitoring."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_RETENTION = 1000
DEFAULT_POST_DELAY_SECONDS = 2.0


class CursorMode(str, Enum):
    """How a feed remembers what it has already seen."""

    CURSOR = "cursor"
    SEEN_SET = "seen_set"


class FeedKind(str, Enum):
    RSS = "rss"
    HTML = "html"


@dataclass(slots=True, frozen=True)
class FeedItem:
    """One entry of a fetched snapshot; never persisted."""

    identifier: str
    title: str
    body: str
    link: str
    published_at: datetime


@dataclass(slots=True)
class FeedSnapshot:
    """Parsed feed in its native order (newest first)."""

    title: str | None
    items: list[FeedItem]


@dataclass(slots=True)
class FeedState:
    """Per ``(feed_url, scope)`` memory of delivered or skipped items.

    ``seen_ids`` is ordered oldest to newest and capped at ``retention``.
    """

    feed_url: str
    mode: CursorMode
    scope: str = ""
    last_seen_id: str | None = None
    seen_ids: list[str] = field(default_factory=list)
    retention: int = DEFAULT_RETENTION
    last_checked_at: datetime | None = None


@dataclass(slots=True, frozen=True)
class FeedTarget:
    """A feed to poll and where to deliver its new items."""

    name: str
    url: str
    kind: FeedKind = FeedKind.RSS
    destination: str | None = None
    keywords: tuple[str, ...] = ()
    mode: CursorMode = CursorMode.SEEN_SET
    retention: int = DEFAULT_RETENTION
    link_pattern: str | None = None
    base_url: str | None = None
    max_items: int | None = None
    post_delay_seconds: float = DEFAULT_POST_DELAY_SECONDS
    scope: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return (self.url, self.scope)


@dataclass(slots=True)
class FeedDiff:
    """Outcome of comparing one snapshot with the stored state.

    ``new_items`` is oldest first. ``state`` is ``None`` only when nothing was
    ever seen and the snapshot was empty.
    """

    new_items: list[FeedItem]
    state: FeedState | None
    baseline: bool = False
    filtered_out: list[FeedItem] = field(default_factory=list)
    changed: bool = False


@dataclass(slots=True)
class FeedSubscription:
    subscription_id: int
    chat_id: str
    feed_url: str
    name: str
    added_at: datetime


@dataclass(slots=True)
class FeedCheckResult:
    """Per-target poll summary for logs and CLI output."""

    name: str
    feed_url: str
    fetched: int = 0
    delivered: int = 0
    filtered: int = 0
    failed_deliveries: int = 0
    baseline: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
