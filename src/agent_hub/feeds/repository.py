"""SQLite persistence for feed states and per-chat subscriptions."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, delete, select

from agent_hub.errors import StorageError, ValidationError
from agent_hub.feeds.models import CursorMode, FeedState, FeedSubscription
from agent_hub.storage.alembic_runner import upgrade_head
from agent_hub.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    optional_utc,
    storage_errors,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_hub.storage.sqlmodel_models import FeedStateRow, FeedSubscriptionRow

logger = logging.getLogger(__name__)


class FeedRepository:
    """One row per ``(feed_url, scope)`` state plus the subscription list."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def get_state(self, feed_url: str, *, scope: str = "") -> FeedState | None:
        with storage_errors("get_state"), Session(self.engine) as session:
            row = session.exec(
                select(FeedStateRow).where(
                    FeedStateRow.feed_url == feed_url,
                    FeedStateRow.scope == scope,
                ),
            ).one_or_none()
            return _to_state(row) if row is not None else None

    def save_state(self, state: FeedState) -> None:
        """Insert or overwrite the state for ``(feed_url, scope)``."""

        now = to_db_datetime(utc_now())
        last_checked_at = (
            to_db_datetime(state.last_checked_at) if state.last_checked_at is not None else None
        )
        with storage_errors("save_state"), Session(self.engine) as session:
            row = session.exec(
                select(FeedStateRow).where(
                    FeedStateRow.feed_url == state.feed_url,
                    FeedStateRow.scope == state.scope,
                ),
            ).one_or_none()
            if row is None:
                row = FeedStateRow(
                    feed_url=state.feed_url,
                    scope=state.scope,
                    mode=state.mode.value,
                    created_at=now,
                    updated_at=now,
                )
            row.mode = state.mode.value
            row.last_seen_id = state.last_seen_id
            row.seen_ids_json = json.dumps(state.seen_ids, ensure_ascii=False)
            row.retention = state.retention
            row.last_checked_at = last_checked_at
            row.updated_at = now
            session.add(row)
            session.commit()

    def delete_state(self, feed_url: str, *, scope: str = "") -> bool:
        with storage_errors("delete_state"), Session(self.engine) as session:
            result = session.exec(
                delete(FeedStateRow).where(
                    col(FeedStateRow.feed_url) == feed_url,
                    col(FeedStateRow.scope) == scope,
                ),
            )
            session.commit()
        return bool(result.rowcount)

    def list_states(self) -> list[FeedState]:
        with storage_errors("list_states"), Session(self.engine) as session:
            rows = session.exec(
                select(FeedStateRow).order_by(
                    col(FeedStateRow.feed_url).asc(),
                    col(FeedStateRow.scope).asc(),
                ),
            ).all()
            return [_to_state(row) for row in rows]

    def add_subscription(self, *, chat_id: str, feed_url: str, name: str) -> FeedSubscription:
        try:
            with Session(self.engine) as session:
                row = FeedSubscriptionRow(
                    chat_id=chat_id,
                    feed_url=feed_url,
                    name=name,
                    added_at=to_db_datetime(utc_now()),
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return _to_subscription(row)
        except IntegrityError as error:
            raise ValidationError(
                message="Already subscribed to this feed",
                code="duplicate_subscription",
            ) from error
        except SQLAlchemyError as error:
            raise StorageError(message=f"add_subscription failed: {error}") from error

    def list_subscriptions(self, chat_id: str | None = None) -> list[FeedSubscription]:
        """Subscriptions in the order they were added, optionally for one chat."""

        with storage_errors("list_subscriptions"), Session(self.engine) as session:
            statement = select(FeedSubscriptionRow)
            if chat_id is not None:
                statement = statement.where(FeedSubscriptionRow.chat_id == chat_id)
            rows = session.exec(
                statement.order_by(
                    col(FeedSubscriptionRow.chat_id).asc(),
                    col(FeedSubscriptionRow.id).asc(),
                ),
            ).all()
            return [_to_subscription(row) for row in rows]

    def remove_subscription(self, subscription_id: int) -> bool:
        with storage_errors("remove_subscription"), Session(self.engine) as session:
            result = session.exec(
                delete(FeedSubscriptionRow).where(
                    col(FeedSubscriptionRow.id) == subscription_id,
                ),
            )
            session.commit()
        return bool(result.rowcount)


def _to_state(row: FeedStateRow) -> FeedState:
    seen_ids: list[str] = []
    if row.seen_ids_json:
        parsed = json.loads(row.seen_ids_json)
        if isinstance(parsed, list):
            seen_ids = [str(value) for value in parsed]
    return FeedState(
        feed_url=row.feed_url,
        scope=row.scope,
        mode=CursorMode(row.mode),
        last_seen_id=row.last_seen_id,
        seen_ids=seen_ids,
        retention=row.retention,
        last_checked_at=optional_utc(row.last_checked_at),
    )


def _to_subscription(row: FeedSubscriptionRow) -> FeedSubscription:
    return FeedSubscription(
        subscription_id=row.id or 0,
        chat_id=row.chat_id,
        feed_url=row.feed_url,
        name=row.name,
        added_at=to_utc_aware_datetime(row.added_at),
    )
