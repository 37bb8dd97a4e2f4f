"""Controllers for job and chat CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from agent_hub.config import Settings
from agent_hub.jobs.memory import ConversationMemory
from agent_hub.jobs.models import JobStatus
from agent_hub.jobs.policy import ModelPolicy
from agent_hub.jobs.runner import JobRunner
from agent_hub.jobs.services import EnqueueJob, JobService
from agent_hub.jobs.store import JobStore
from agent_hub.runtime import build_notifier, runtime_clients

RESULT_PREVIEW_CHARS = 80


@dataclass(slots=True)
class JobsEnqueueCommand:
    """CLI input for job submission."""

    db_path: Path | None
    job_type: str
    prompt: str
    model: str | None = None
    priority: str | None = None
    chat_id: str | None = None
    save_to: str | None = None
    notify: bool = False


@dataclass(slots=True)
class JobsWorkerCommand:
    """CLI input for runner execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None = 1


@dataclass(slots=True)
class JobsListCommand:
    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class JobsShowCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobsRecoverCommand:
    """CLI input for manual stale-claim recovery."""

    db_path: Path | None
    stale_after_seconds: int | None


@dataclass(slots=True)
class JobsStatusCommand:
    db_path: Path | None


@dataclass(slots=True)
class ChatModelCommand:
    """CLI input for checking which model a request would run on."""

    db_path: Path | None
    model: str | None


@dataclass(slots=True)
class ChatMemoryCommand:
    """CLI input for conversation memory inspection and reset."""

    db_path: Path | None
    chat_id: str


class JobsCliController:
    """Coordinates queue, runner and inspection CLI operations."""

    def enqueue(self, command: JobsEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        notifier = build_notifier(settings) if command.notify else None
        try:
            with _store(settings) as store:
                service = JobService(
                    store=store,
                    notifier=notifier,
                    default_model=settings.model.default_model,
                    allowed_caller_id=settings.jobs.allowed_caller_id,
                    default_destination=settings.notify.default_destination,
                )
                job = service.enqueue(
                    EnqueueJob(
                        job_type=command.job_type,
                        prompt=command.prompt,
                        model=command.model,
                        priority=command.priority,
                        chat_id=command.chat_id,
                        save_to=command.save_to,
                        source="cli",
                        caller_id=command.chat_id,
                    ),
                )
        finally:
            close = getattr(notifier, "close", None)
            if callable(close):
                close()

        return [
            "Job enqueued: "
            f"job_id={job.job_id} type={job.job_type.value} "
            f"model={job.model} status={job.status.value}",
        ]

    def run_worker(self, command: JobsWorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        with (
            _store(settings) as store,
            _memory(settings) as memory,
            runtime_clients(settings) as clients,
        ):
            runner = JobRunner(
                store=store,
                gateway=clients.gateway,
                search=clients.search,
                notifier=clients.notifier,
                worker_id=settings.jobs.worker_id,
                workspace_root=settings.jobs.workspace_root,
                memory=memory,
                policy=_policy(settings),
                default_destination=settings.notify.default_destination,
                poll_interval_seconds=settings.jobs.poll_interval_seconds,
                max_attempts=settings.jobs.max_attempts,
                retry_base_seconds=settings.jobs.retry_base_seconds,
                retry_max_seconds=settings.jobs.retry_max_seconds,
                stale_after_seconds=settings.jobs.stale_after_seconds,
                search_max_results=settings.search.max_results,
            )
            summary = (
                runner.run_once()
                if command.once
                else runner.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )
            )

        return [
            "Runner summary: "
            f"processed={summary.processed} completed={summary.completed} "
            f"failed={summary.failed} lost={summary.lost} "
            f"recovered={summary.recovered} idle_polls={summary.idle_polls}",
        ]

    def list_jobs(self, command: JobsListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status = JobStatus(command.status.lower()) if command.status else None
        with _store(settings) as store:
            jobs = JobService(store=store).list_jobs(limit=command.limit, status=status)

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} type={job.job_type.value} status={job.status.value} "
                f"model={job.model} priority={job.priority} "
                f"created_at={job.created_at.isoformat()}",
            )
        return lines

    def show_job(self, command: JobsShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            details = store.get_details(command.job_id)
        if details is None:
            return [f"Job not found: {command.job_id}"]

        job = details.job
        metadata = job.result_metadata
        lines = [
            f"Job: {job.job_id}",
            f"Type: {job.job_type.value}",
            f"Status: {job.status.value}",
            f"Model: {job.model}",
            f"Effective model: {metadata.get('effective_model', '-')}",
            f"Priority: {job.priority}",
            f"Source: {job.source}",
            f"Chat: {job.chat_id or '-'}",
            f"Worker: {job.worker_id or '-'}",
            f"Claims: {job.claim_count}",
            f"Duration ms: {job.duration_ms if job.duration_ms is not None else '-'}",
            f"Prompt: {job.prompt}",
        ]
        if job.status == JobStatus.COMPLETED:
            lines.append(f"Result: {job.result or ''}")
        if job.status == JobStatus.FAILED:
            lines.append(f"Error: {job.error or '-'}")
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def recover(self, command: JobsRecoverCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        stale_after_seconds = (
            settings.jobs.stale_after_seconds
            if command.stale_after_seconds is None
            else command.stale_after_seconds
        )
        with _store(settings) as store:
            recovered = JobService(store=store).recover_stale(
                stale_after=timedelta(seconds=stale_after_seconds),
            )

        lines = [f"Recovered jobs: {len(recovered)}"]
        lines.extend(f"  {job_id}" for job_id in recovered)
        return lines

    def status(self, command: JobsStatusCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _store(settings) as store:
            service = JobService(store=store)
            counts = service.counts()
            recent = service.list_jobs(limit=5)

        lines = [
            "Queue: " + " ".join(f"{status.value}={counts.get(status, 0)}" for status in JobStatus),
            f"Recent: {len(recent)}",
        ]
        for job in recent:
            summary = job.result if job.status == JobStatus.COMPLETED else job.error
            lines.append(
                f"  {job.job_id} {job.job_type.value} {job.status.value} "
                f"{_preview(summary or job.prompt)}",
            )
        return lines

    def chat_model(self, command: ChatModelCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        decision = _policy(settings).resolve(command.model)
        lines = [
            f"Requested model: {decision.requested_model or '-'}",
            f"Effective model: {decision.effective_model}",
        ]
        if decision.substituted:
            lines.append("Requested model is not allowed; the local default runs instead.")
        return lines

    def chat_history(self, command: ChatMemoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _memory(settings) as memory:
            stats = memory.stats(command.chat_id)
            turns = memory.context(command.chat_id)

        lines = [
            f"Chat: {command.chat_id}",
            f"Messages: {stats.message_count}",
            "First message: "
            + (stats.first_message_at.isoformat() if stats.first_message_at else "-"),
            "Last message: "
            + (stats.last_message_at.isoformat() if stats.last_message_at else "-"),
        ]
        for turn in turns:
            lines.append(f"  {turn.role}: {_preview(turn.content)}")
        return lines

    def chat_reset(self, command: ChatMemoryCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _memory(settings) as memory:
            removed = memory.clear(command.chat_id)
        return [f"Conversation cleared: chat={command.chat_id} messages={removed}"]


def _policy(settings: Settings) -> ModelPolicy:
    return ModelPolicy(
        default_model=settings.model.default_model,
        disallowed_patterns=settings.model.disallowed_patterns,
    )


def _preview(text: str) -> str:
    flat = " ".join(text.split())
    if len(flat) <= RESULT_PREVIEW_CHARS:
        return flat
    return flat[:RESULT_PREVIEW_CHARS] + "..."


@contextmanager
def _store(settings: Settings) -> Iterator[JobStore]:
    store = JobStore(settings.db_path, sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms)
    store.init_schema()
    try:
        yield store
    finally:
        store.close()


@contextmanager
def _memory(settings: Settings) -> Iterator[ConversationMemory]:
    memory = ConversationMemory(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    memory.init_schema()
    try:
        yield memory
    finally:
        memory.close()
