"""Incremental-fetch engine: snapshot + stored state -> new items, oldest first.

Snapshots arrive newest first and may overlap arbitrarily with earlier ones.
The engine never re-delivers an identifier recorded in the state and always
returns the next state to persist; it performs no I/O.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

from agent_hub.feeds.models import (
    DEFAULT_RETENTION,
    CursorMode,
    FeedDiff,
    FeedItem,
    FeedState,
)
from agent_hub.storage.common import utc_now


class FeedDiffEngine:
    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def diff(  # noqa: PLR0913
        self,
        feed_url: str,
        snapshot: list[FeedItem],
        state: FeedState | None,
        *,
        keywords: Iterable[str] = (),
        mode: CursorMode = CursorMode.SEEN_SET,
        retention: int = DEFAULT_RETENTION,
        scope: str = "",
    ) -> FeedDiff:
        """Compute deliverable items and the advanced state.

        ``mode``, ``retention`` and ``scope`` only apply when ``state`` is
        ``None``; an existing state keeps its own settings. The first poll of
        a feed records everything as seen and delivers nothing.
        """

        if not snapshot:
            return FeedDiff(new_items=[], state=state)

        now = self._clock()
        if state is None:
            baseline_ids = _unique_ids(reversed(snapshot))
            return FeedDiff(
                new_items=[],
                state=FeedState(
                    feed_url=feed_url,
                    mode=mode,
                    scope=scope,
                    last_seen_id=snapshot[0].identifier,
                    seen_ids=baseline_ids[-retention:] if retention > 0 else baseline_ids,
                    retention=retention,
                    last_checked_at=now,
                ),
                baseline=True,
                changed=True,
            )

        candidates = (
            _after_cursor(snapshot, state.last_seen_id)
            if state.mode == CursorMode.CURSOR
            else snapshot
        )
        already_seen = set(state.seen_ids)
        unseen = _dedupe([item for item in candidates if item.identifier not in already_seen])

        normalized_keywords = tuple(
            keyword.strip().lower() for keyword in keywords if keyword.strip()
        )
        delivered: list[FeedItem] = []
        filtered_out: list[FeedItem] = []
        for item in reversed(unseen):
            if not normalized_keywords or matches_keywords(item, normalized_keywords):
                delivered.append(item)
            else:
                filtered_out.append(item)

        seen_ids = list(state.seen_ids)
        known = set(seen_ids)
        for item in reversed(unseen):
            if item.identifier not in known:
                seen_ids.append(item.identifier)
                known.add(item.identifier)
        if state.retention > 0 and len(seen_ids) > state.retention:
            seen_ids = seen_ids[-state.retention :]

        next_cursor = snapshot[0].identifier
        changed = bool(unseen) or next_cursor != state.last_seen_id
        return FeedDiff(
            new_items=delivered,
            state=replace(
                state,
                last_seen_id=next_cursor,
                seen_ids=seen_ids,
                last_checked_at=now,
            ),
            filtered_out=filtered_out,
            changed=changed,
        )


def matches_keywords(item: FeedItem, keywords: Iterable[str]) -> bool:
    """Case-insensitive substring match over title and body."""

    text = f"{item.title} {item.body}".lower()
    return any(keyword.lower() in text for keyword in keywords)


def _after_cursor(snapshot: list[FeedItem], cursor: str | None) -> list[FeedItem]:
    unseen: list[FeedItem] = []
    for item in snapshot:
        if item.identifier == cursor:
            break
        unseen.append(item)
    return unseen


def _dedupe(items: list[FeedItem]) -> list[FeedItem]:
    seen: set[str] = set()
    unique: list[FeedItem] = []
    for item in items:
        if item.identifier in seen:
            continue
        seen.add(item.identifier)
        unique.append(item)
    return unique


def _unique_ids(items: Iterable[FeedItem]) -> list[str]:
    return [item.identifier for item in _dedupe(list(items))]
