"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from agent_hub.feeds.repository import FeedRepository
from agent_hub.jobs.memory import ConversationMemory
from agent_hub.jobs.store import JobStore

SHARED_ENV_VARS = ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "OLLAMA_HOST")


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer shell settings out of tests."""
    for name in list(os.environ):
        if name.startswith("AGENT_HUB_") or name in SHARED_ENV_VARS:
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def job_store(tmp_path: Path) -> Iterator[JobStore]:
    store = JobStore(tmp_path / "jobs.db")
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@pytest.fixture()
def feed_repository(tmp_path: Path) -> Iterator[FeedRepository]:
    repository = FeedRepository(tmp_path / "feeds.db")
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def memory(tmp_path: Path) -> Iterator[ConversationMemory]:
    conversation_memory = ConversationMemory(tmp_path / "memory.db", max_messages_per_chat=6)
    conversation_memory.init_schema()
    try:
        yield conversation_memory
    finally:
        conversation_memory.close()
