"""SQLModel ORM tables for job and feed storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_queue", "status", "created_at", "job_id"),)

    job_id: str = Field(primary_key=True)
    job_type: str = Field(index=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    model: str
    priority: str = "normal"
    source: str = "cli"
    chat_id: str | None = Field(default=None, index=True)
    save_to: str | None = None
    status: str = Field(index=True)
    result: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    error: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    result_metadata_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    worker_id: str | None = None
    claim_count: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    heartbeat_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    failed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    duration_ms: int | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_events_job_time", "job_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    job_id: str = Field(
        sa_column=Column(ForeignKey("jobs.job_id", ondelete="CASCADE"), nullable=False),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class FeedStateRow(SQLModel, table=True):
    __tablename__ = "feed_states"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("feed_url", "scope", name="uq_feed_states_url_scope"),
    )

    id: int | None = Field(default=None, primary_key=True)
    feed_url: str = Field(index=True)
    scope: str = ""
    mode: str
    last_seen_id: str | None = None
    seen_ids_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    retention: int = 1000
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    last_checked_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )


class FeedSubscriptionRow(SQLModel, table=True):
    __tablename__ = "feed_subscriptions"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("chat_id", "feed_url", name="uq_feed_subscriptions_chat_url"),
    )

    id: int | None = Field(default=None, primary_key=True)
    chat_id: str = Field(index=True)
    feed_url: str
    name: str
    added_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ConversationMessage(SQLModel, table=True):
    __tablename__ = "conversation_messages"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_conversation_messages_chat", "chat_id", "id"),)

    id: int | None = Field(default=None, primary_key=True)
    chat_id: str
    role: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    model: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
