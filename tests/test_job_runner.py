from __future__ import annotations

from pathlib import Path

import allure
import httpx

from agent_hub.errors import TransportError
from agent_hub.gateway import EchoGateway, OllamaGateway
from agent_hub.jobs.memory import ConversationMemory
from agent_hub.jobs.models import JobCreate, JobRecord, JobStatus, JobType
from agent_hub.jobs.runner import JobRunner, format_job_notification
from agent_hub.jobs.store import JobStore
from agent_hub.notify import LogNotificationSink
from agent_hub.search import SearchResult, StaticSearchProvider

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Job Runner"),
]


class _FlakyGateway:
    def __init__(self, failures: list[TransportError], text: str = "recovered") -> None:
        self.failures = list(failures)
        self.text = text
        self.calls: list[tuple[str, str]] = []

    def generate(self, prompt: str, model_id: str) -> str:
        self.calls.append((prompt, model_id))
        if self.failures:
            raise self.failures.pop(0)
        return self.text


class _CrashingGateway:
    def generate(self, prompt: str, model_id: str) -> str:
        raise RuntimeError("boom")


def _runner(
    store: JobStore,
    tmp_path: Path,
    *,
    gateway=None,
    search=None,
    notifier=None,
    memory: ConversationMemory | None = None,
    **kwargs,
) -> JobRunner:
    return JobRunner(
        store=store,
        gateway=gateway or EchoGateway(),
        search=search or StaticSearchProvider(),
        notifier=notifier or LogNotificationSink(),
        worker_id="test-worker",
        workspace_root=tmp_path / "workspace",
        memory=memory,
        poll_interval_seconds=0.0,
        retry_base_seconds=0.0,
        retry_max_seconds=0.0,
        **kwargs,
    )


def _enqueue(
    store: JobStore,
    prompt: str,
    *,
    job_type: JobType = JobType.CHAT,
    model: str = "llama3.2",
    **kwargs,
) -> JobRecord:
    return store.enqueue(JobCreate(job_type=job_type, prompt=prompt, model=model, **kwargs))


def test_chat_job_completes_and_feeds_conversation_memory(
    job_store: JobStore,
    memory: ConversationMemory,
    tmp_path: Path,
) -> None:
    gateway = EchoGateway()
    notifier = LogNotificationSink()
    runner = _runner(job_store, tmp_path, gateway=gateway, notifier=notifier, memory=memory)

    first = _enqueue(job_store, "hello", chat_id="42")
    summary = runner.run_once()

    assert summary.processed == 1
    assert summary.completed == 1
    stored = job_store.get(first.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == "[echo:llama3.2] hello"
    assert stored.result_metadata["context_messages"] == 0
    assert stored.result_metadata["worker_id"] == "test-worker"
    assert [turn.role for turn in memory.context("42")] == ["user", "assistant"]

    _enqueue(job_store, "and again?", chat_id="42")
    runner.run_once()

    prompt, _ = gateway.calls[-1]
    assert "--- Previous Conversation ---" in prompt
    assert "User: hello" in prompt
    assert "Assistant: [echo:llama3.2] hello" in prompt
    assert prompt.endswith("User: and again?")

    destinations = [destination for destination, _ in notifier.sent]
    assert destinations == ["42", "42"]
    assert notifier.sent[0][1].startswith("Job completed (chat)")


def test_chat_history_records_the_model_that_answered(
    job_store: JobStore,
    memory: ConversationMemory,
    tmp_path: Path,
) -> None:
    runner = _runner(job_store, tmp_path, memory=memory)
    job = _enqueue(job_store, "hello", model="claude-3-opus", chat_id="7")

    runner.run_once()

    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.result == "[echo:llama3.2] hello"
    turns = memory.context("7")
    assert [(turn.role, turn.model) for turn in turns] == [
        ("user", None),
        ("assistant", "llama3.2"),
    ]


def test_unreachable_backend_fails_job_with_error_preserved(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    def _refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = OllamaGateway(
        base_url="http://ollama.test",
        client=httpx.Client(transport=httpx.MockTransport(_refuse)),
    )
    runner = _runner(job_store, tmp_path, gateway=gateway, max_attempts=2)
    job = _enqueue(job_store, "hello")

    summary = runner.run_once()

    assert summary.failed == 1
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.FAILED
    assert stored.error is not None
    assert "connection refused" in stored.error
    assert stored.result_metadata["error_code"] == "connection"
    assert stored.result_metadata["model_attempts"] == 2


def test_disallowed_model_is_downgraded_and_recorded(job_store: JobStore, tmp_path: Path) -> None:
    gateway = EchoGateway()
    runner = _runner(job_store, tmp_path, gateway=gateway)
    job = _enqueue(job_store, "hello", model="claude-3-opus")

    runner.run_once()

    assert gateway.calls == [("hello", "llama3.2")]
    details = job_store.get_details(job.job_id)
    assert details is not None
    metadata = details.job.result_metadata
    assert metadata["requested_model"] == "claude-3-opus"
    assert metadata["effective_model"] == "llama3.2"
    assert metadata["model_substituted"] is True
    assert "model_substituted" in [event.event_type for event in details.events]


def test_research_without_results_still_asks_the_model(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    gateway = EchoGateway()
    search = StaticSearchProvider()
    runner = _runner(job_store, tmp_path, gateway=gateway, search=search)
    job = _enqueue(job_store, "quantum widgets", job_type=JobType.RESEARCH)

    runner.run_once()

    assert search.queries == ["quantum widgets"]
    prompt, _ = gateway.calls[0]
    assert 'No web results were found for: "quantum widgets"' in prompt
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.result_metadata["search_results"] == 0
    assert stored.result_metadata["sources"] == []


def test_research_embeds_search_snippets(job_store: JobStore, tmp_path: Path) -> None:
    gateway = EchoGateway()
    search = StaticSearchProvider(
        [
            SearchResult(
                title="Widget news",
                snippet="Widgets are quantum now.",
                url="https://example.com/widgets",
            ),
        ],
    )
    runner = _runner(job_store, tmp_path, gateway=gateway, search=search)
    job = _enqueue(job_store, "quantum widgets", job_type=JobType.RESEARCH)

    runner.run_once()

    prompt, _ = gateway.calls[0]
    assert "1. Widget news\n   Widgets are quantum now.\n" in prompt
    assert "   URL: https://example.com/widgets" in prompt
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.result_metadata["sources"] == ["https://example.com/widgets"]


def test_code_job_writes_file_inside_workspace(job_store: JobStore, tmp_path: Path) -> None:
    runner = _runner(job_store, tmp_path)
    job = _enqueue(job_store, "fizzbuzz", job_type=JobType.CODE, save_to="scripts/fizz.py")

    runner.run_once()

    target = tmp_path / "workspace" / "scripts" / "fizz.py"
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert target.read_text("utf-8") == stored.result
    assert "Write code for: fizzbuzz" in target.read_text("utf-8")
    assert stored.result_metadata["saved_to"] == str(target.resolve())


def test_code_job_rejects_escaping_path_before_model_call(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    gateway = EchoGateway()
    runner = _runner(job_store, tmp_path, gateway=gateway)
    job = _enqueue(job_store, "fizzbuzz", job_type=JobType.CODE, save_to="../escape.py")

    runner.run_once()

    assert gateway.calls == []
    assert not (tmp_path / "escape.py").exists()
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.FAILED
    assert stored.result_metadata["error_code"] == "unsafe_path"
    assert "escapes the workspace root" in (stored.error or "")


def test_retryable_backend_error_is_retried_then_succeeds(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    gateway = _FlakyGateway(
        [TransportError(message="busy", code="http_status", status_code=503)],
    )
    runner = _runner(job_store, tmp_path, gateway=gateway, max_attempts=3)
    job = _enqueue(job_store, "hello")

    runner.run_once()

    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == "recovered"
    assert stored.result_metadata["model_attempts"] == 2


def test_non_retryable_backend_error_fails_on_first_attempt(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    gateway = _FlakyGateway(
        [TransportError(message="model not found", code="http_status", status_code=404)],
    )
    runner = _runner(job_store, tmp_path, gateway=gateway, max_attempts=3)
    job = _enqueue(job_store, "hello")

    runner.run_once()

    assert len(gateway.calls) == 1
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.FAILED
    assert stored.error == "model not found"


def test_unexpected_handler_exception_becomes_failed_state(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    runner = _runner(job_store, tmp_path, gateway=_CrashingGateway())
    job = _enqueue(job_store, "hello")

    summary = runner.run_once()

    assert summary.failed == 1
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.FAILED
    assert stored.error == "boom"
    assert stored.result_metadata["error_code"] == "unexpected_error"


def test_run_loop_drains_queue_and_exits_when_idle(job_store: JobStore, tmp_path: Path) -> None:
    runner = _runner(job_store, tmp_path)
    for index in range(3):
        _enqueue(job_store, f"job {index}")

    summary = runner.run_loop(max_idle_polls=1)

    assert summary.processed == 3
    assert summary.completed == 3
    assert summary.idle_polls == 1
    assert job_store.counts()[JobStatus.COMPLETED] == 3


def test_run_loop_honours_max_jobs(job_store: JobStore, tmp_path: Path) -> None:
    runner = _runner(job_store, tmp_path)
    for index in range(3):
        _enqueue(job_store, f"job {index}")

    summary = runner.run_loop(max_jobs=2)

    assert summary.processed == 2
    assert job_store.counts()[JobStatus.PENDING] == 1


def test_run_once_recovers_abandoned_claim_before_claiming(
    job_store: JobStore,
    tmp_path: Path,
) -> None:
    job = _enqueue(job_store, "hello")
    assert job_store.claim(worker_id="crashed-worker") is not None
    runner = _runner(job_store, tmp_path, stale_after_seconds=0)

    summary = runner.run_once()

    assert summary.recovered == 1
    assert summary.completed == 1
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.worker_id == "test-worker"
    assert stored.claim_count == 2


def test_failed_job_notifies_default_destination(job_store: JobStore, tmp_path: Path) -> None:
    notifier = LogNotificationSink()
    runner = _runner(
        job_store,
        tmp_path,
        gateway=_CrashingGateway(),
        notifier=notifier,
        default_destination="ops",
    )
    job = _enqueue(job_store, "hello")

    runner.run_once()

    assert notifier.sent == [
        ("ops", f"Job failed (chat)\nJob ID: {job.job_id}\n\nError: boom"),
    ]


def test_completion_notification_truncates_long_results(job_store: JobStore) -> None:
    job = _enqueue(job_store, "hello")
    job_store.claim(worker_id="test-worker")
    completed = job_store.complete(job.job_id, "x" * 5000)

    message = format_job_notification(completed)

    assert message.startswith(f"Job completed (chat)\nJob ID: {job.job_id}\n\n")
    assert message.endswith("x" * 10 + "...")
    assert len(message) < 3600
