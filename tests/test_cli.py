from __future__ import annotations

import re
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from agent_hub import __version__
from agent_hub.jobs.memory import ConversationMemory
from agent_hub.jobs.store import JobStore
from agent_hub.main import agent_hub

pytestmark = [
    allure.epic("Command Line"),
    allure.feature("Jobs, Feeds and Chat Commands"),
]

JOB_ID_RE = re.compile(r"job_id=(\S+)")


@pytest.fixture()
def offline_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("AGENT_HUB_MODEL_BACKEND", "echo")
    monkeypatch.setenv("AGENT_HUB_SEARCH_BACKEND", "none")
    monkeypatch.setenv("AGENT_HUB_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("AGENT_HUB_RETRY_BASE_SECONDS", "0")
    monkeypatch.setenv("AGENT_HUB_WORKSPACE_ROOT", str(tmp_path / "workspace"))
    return tmp_path / "hub.db"


def _invoke(*args: str):
    return CliRunner().invoke(agent_hub, list(args), catch_exceptions=False)


def test_version_option() -> None:
    result = _invoke("--version")

    assert result.exit_code == 0
    assert __version__ in result.output


def test_enqueue_then_worker_completes_job(offline_env: Path) -> None:
    db = str(offline_env)

    enqueued = _invoke(
        "jobs",
        "enqueue",
        "--db-path",
        db,
        "--type",
        "chat",
        "--prompt",
        "hello there",
        "--model",
        "gpt-4o",
        "--chat-id",
        "42",
    )
    assert enqueued.exit_code == 0, enqueued.output
    assert "status=pending" in enqueued.output
    job_id = JOB_ID_RE.search(enqueued.output).group(1)

    status = _invoke("jobs", "status", "--db-path", db)
    assert "Queue: pending=1 processing=0 completed=0 failed=0" in status.output

    worker = _invoke("jobs", "worker", "--db-path", db)
    assert worker.exit_code == 0, worker.output
    assert "processed=1 completed=1 failed=0" in worker.output

    listed = _invoke("jobs", "list", "--db-path", db, "--status", "completed")
    assert "Jobs: 1" in listed.output
    assert job_id in listed.output

    shown = _invoke("jobs", "show", "--db-path", db, job_id)
    assert "Status: completed" in shown.output
    assert "Model: gpt-4o" in shown.output
    assert "Effective model: llama3.2" in shown.output
    assert "Result: [echo:llama3.2]" in shown.output
    assert "pending -> processing" in shown.output

    history = _invoke("chat", "history", "--db-path", db, "--chat-id", "42")
    assert "Messages: 2" in history.output
    assert "user: hello there" in history.output


def test_worker_with_empty_queue_exits_idle(offline_env: Path) -> None:
    result = _invoke("jobs", "worker", "--db-path", str(offline_env), "--once")

    assert result.exit_code == 0
    assert "processed=0" in result.output
    assert "idle_polls=1" in result.output


def test_enqueue_validation_error_is_reported(offline_env: Path) -> None:
    result = CliRunner().invoke(
        agent_hub,
        [
            "jobs",
            "enqueue",
            "--db-path",
            str(offline_env),
            "--type",
            "chat",
            "--prompt",
            "hi",
            "--save-to",
            "out.txt",
        ],
    )

    assert result.exit_code == 1
    assert "only supported for code jobs" in result.output


def test_show_unknown_job(offline_env: Path) -> None:
    result = _invoke("jobs", "show", "--db-path", str(offline_env), "job-missing")

    assert result.exit_code == 0
    assert "Job not found: job-missing" in result.output


def test_recover_all_returns_processing_jobs(offline_env: Path) -> None:
    db = str(offline_env)
    _invoke("jobs", "enqueue", "--db-path", db, "--type", "research", "--prompt", "python")
    store = JobStore(offline_env)
    claimed = store.claim(worker_id="crashed-worker")
    store.close()

    untouched = _invoke("jobs", "recover", "--db-path", db)
    result = _invoke("jobs", "recover", "--db-path", db, "--all")

    assert "Recovered jobs: 0" in untouched.output
    assert result.exit_code == 0
    assert "Recovered jobs: 1" in result.output
    assert claimed.job_id in result.output
    assert "pending=1 processing=0" in _invoke("jobs", "status", "--db-path", db).output


def test_chat_model_reports_substitution(offline_env: Path) -> None:
    substituted = _invoke("chat", "model", "--db-path", str(offline_env), "claude-3-opus")
    allowed = _invoke("chat", "model", "--db-path", str(offline_env), "mistral")

    assert "Effective model: llama3.2" in substituted.output
    assert "not allowed" in substituted.output
    assert "Effective model: mistral" in allowed.output
    assert "not allowed" not in allowed.output


def test_chat_reset_clears_memory(offline_env: Path) -> None:
    memory = ConversationMemory(offline_env)
    memory.init_schema()
    memory.add("42", "user", "hello")
    memory.add("42", "assistant", "hi")
    memory.close()

    result = _invoke("chat", "reset", "--db-path", str(offline_env), "--chat-id", "42")

    assert "Conversation cleared: chat=42 messages=2" in result.output
    history = _invoke("chat", "history", "--db-path", str(offline_env), "--chat-id", "42")
    assert "Messages: 0" in history.output


def test_feed_commands_without_targets(offline_env: Path) -> None:
    db = str(offline_env)

    assert "Feeds checked: 0" in _invoke("feeds", "check", "--db-path", db).output
    assert "No subscriptions yet." in _invoke(
        "feeds",
        "subscriptions",
        "--db-path",
        db,
        "--chat-id",
        "42",
    ).output
    reset = _invoke("feeds", "reset", "--db-path", db, "https://example.com/rss")
    assert "No stored state for https://example.com/rss" in reset.output
    missing = _invoke("feeds", "check", "--db-path", db, "--name", "Breitbart")
    assert "No feed target named 'Breitbart'" in missing.output
