"""Per-chat conversation memory stored next to the job queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlalchemy import func
from sqlmodel import Session, col, delete, select

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
from agent_hub.storage.sqlmodel_models import ConversationMessage

logger = logging.getLogger(__name__)

MAX_CONTEXT_MESSAGES = 10
MAX_MESSAGES_PER_CHAT = 1000
ROLES = ("user", "assistant")


@dataclass(slots=True)
class ConversationTurn:
    role: str
    content: str
    model: str | None
    created_at: datetime


@dataclass(slots=True)
class MemoryStats:
    message_count: int
    first_message_at: datetime | None
    last_message_at: datetime | None


class ConversationMemory:
    """Append-only message log per chat, trimmed to the newest messages."""

    def __init__(
        self,
        db_path: Path,
        *,
        max_messages_per_chat: int = MAX_MESSAGES_PER_CHAT,
        sqlite_busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.max_messages_per_chat = max_messages_per_chat
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def add(self, chat_id: str, role: str, content: str, *, model: str | None = None) -> None:
        if role not in ROLES:
            raise ValueError(f"Unsupported conversation role: {role}")
        with storage_errors("memory add"), Session(self.engine) as session:
            session.add(
                ConversationMessage(
                    chat_id=chat_id,
                    role=role,
                    content=content,
                    model=model,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            session.flush()
            keep_ids = (
                select(ConversationMessage.id)
                .where(ConversationMessage.chat_id == chat_id)
                .order_by(col(ConversationMessage.id).desc())
                .limit(self.max_messages_per_chat)
            )
            session.exec(
                delete(ConversationMessage).where(
                    col(ConversationMessage.chat_id) == chat_id,
                    col(ConversationMessage.id).not_in(keep_ids),
                ),
            )
            session.commit()

    def context(self, chat_id: str, *, limit: int = MAX_CONTEXT_MESSAGES) -> list[ConversationTurn]:
        """Last ``limit`` messages for ``chat_id``, oldest first."""

        with storage_errors("memory context"), Session(self.engine) as session:
            rows = session.exec(
                select(ConversationMessage)
                .where(ConversationMessage.chat_id == chat_id)
                .order_by(col(ConversationMessage.id).desc())
                .limit(limit),
            ).all()
        return [
            ConversationTurn(
                role=row.role,
                content=row.content,
                model=row.model,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in reversed(rows)
        ]

    def clear(self, chat_id: str) -> int:
        """Forget everything said in ``chat_id``; returns the number of removed messages."""

        with storage_errors("memory clear"), Session(self.engine) as session:
            result = session.exec(
                delete(ConversationMessage).where(
                    col(ConversationMessage.chat_id) == chat_id,
                ),
            )
            session.commit()
        removed = int(result.rowcount or 0)
        logger.info("Cleared %d conversation messages for chat %s", removed, chat_id)
        return removed

    def stats(self, chat_id: str) -> MemoryStats:
        with storage_errors("memory stats"), Session(self.engine) as session:
            count, first_at, last_at = session.exec(
                select(
                    func.count(),
                    func.min(ConversationMessage.created_at),
                    func.max(ConversationMessage.created_at),
                ).where(ConversationMessage.chat_id == chat_id),
            ).one()
        return MemoryStats(
            message_count=int(count or 0),
            first_message_at=optional_utc(first_at),
            last_message_at=optional_utc(last_at),
        )


def format_context(turns: list[ConversationTurn]) -> str:
    """Render prior turns as a prompt prefix; empty history renders as ``""``."""

    if not turns:
        return ""
    lines = ["", "", "--- Previous Conversation ---"]
    for turn in turns:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    lines.append("--- End of Context ---")
    return "\n".join(lines) + "\n\n"
