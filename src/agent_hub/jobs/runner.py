"""Queue runner that claims jobs and drives them to a terminal state."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from agent_hub.errors import AgentHubError, HandlerError, StorageError, TransportError
from agent_hub.gateway.base import RETRYABLE_HTTP_STATUS_CODES, ModelGateway
from agent_hub.jobs.handlers import HANDLERS, HandlerContext, HandlerResult
from agent_hub.jobs.memory import ConversationMemory
from agent_hub.jobs.models import JobRecord, JobStatus
from agent_hub.jobs.policy import ModelDecision, ModelPolicy
from agent_hub.jobs.store import JobStore
from agent_hub.lifecycle import stop_on_signals
from agent_hub.notify.base import NotificationSink
from agent_hub.search.base import DEFAULT_MAX_RESULTS, SearchProvider

logger = logging.getLogger(__name__)

NOTIFICATION_RESULT_CHARS = 3500
STORE_WRITE_ATTEMPTS = 3
RETRYABLE_TRANSPORT_CODES = frozenset({"timeout", "connection", "transport"})


@dataclass(slots=True)
class RunnerSummary:
    """Aggregate runner counters for CLI reporting."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    lost: int = 0
    recovered: int = 0
    idle_polls: int = 0

    def add(self, other: RunnerSummary) -> None:
        self.processed += other.processed
        self.completed += other.completed
        self.failed += other.failed
        self.lost += other.lost
        self.recovered += other.recovered
        self.idle_polls += other.idle_polls


@dataclass(slots=True)
class _JobTrace:
    decisions: list[ModelDecision] = field(default_factory=list)
    model_attempts: int = 0


class JobRunner:
    """Claims pending jobs one at a time and executes them via their handler."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        gateway: ModelGateway,
        search: SearchProvider,
        notifier: NotificationSink,
        worker_id: str,
        workspace_root: Path,
        memory: ConversationMemory | None = None,
        policy: ModelPolicy | None = None,
        default_destination: str | None = None,
        poll_interval_seconds: float = 2.0,
        max_attempts: int = 3,
        retry_base_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        stale_after_seconds: int = 600,
        search_max_results: int = DEFAULT_MAX_RESULTS,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.search = search
        self.notifier = notifier
        self.worker_id = worker_id
        self.workspace_root = workspace_root
        self.memory = memory
        self.policy = policy or ModelPolicy()
        self.default_destination = default_destination
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.stale_after_seconds = stale_after_seconds
        self.search_max_results = search_max_results
        self._random = random.Random()  # noqa: S311
        self._stop_requested = False
        self._stop_signal_name: str | None = None

    def run_once(self) -> RunnerSummary:
        """Process at most one job from the pending area."""

        summary = RunnerSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        summary.recovered = len(self._recover_stale())
        job = self.store.claim(worker_id=self.worker_id)
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        try:
            final = self.run(job)
        except AgentHubError as error:
            # The job stays in processing and is picked up by stale recovery.
            logger.error("Job %s could not be finalized: %s", job.job_id, error)
            summary.lost = 1
            return summary

        if final.status == JobStatus.COMPLETED:
            summary.completed = 1
        else:
            summary.failed = 1
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> RunnerSummary:
        """Run until the queue is idle, ``max_jobs`` are processed or a stop signal arrives.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
            max_idle_polls: Consecutive empty polls before exiting
                (None = poll forever).
        """

        aggregate = RunnerSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    logger.info("Runner %s stopping on %s", self.worker_id, self._stop_signal_name)
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def run(self, job: JobRecord) -> JobRecord:
        """Execute a claimed job and persist exactly one terminal state.

        Handler failures of any kind become the ``failed`` state with the
        error text kept verbatim; only store failures escape.
        """

        started = time.monotonic()
        trace = _JobTrace()
        handler = HANDLERS.get(job.job_type)
        result: HandlerResult | None = None
        error_text: str | None = None
        error_code: str | None = None
        logger.info("Running job %s type=%s model=%s", job.job_id, job.job_type.value, job.model)
        try:
            if handler is None:
                raise HandlerError(message=f"No handler for job type: {job.job_type.value}")
            result = handler(job, self._handler_context(job, trace))
        except AgentHubError as error:
            error_text = str(error)
            error_code = error.code
            logger.warning("Job %s failed (%s): %s", job.job_id, error.code, error)
        except Exception as error:  # noqa: BLE001
            logger.exception("Job %s handler crashed", job.job_id)
            error_text = str(error) or type(error).__name__
            error_code = "unexpected_error"

        duration_ms = int((time.monotonic() - started) * 1000)
        metadata = self._result_metadata(job=job, trace=trace, result=result)
        if result is not None:
            text = result.text
            final = self._persist_terminal(
                lambda: self.store.complete(
                    job.job_id,
                    text,
                    metadata=metadata,
                    duration_ms=duration_ms,
                    worker_id=self.worker_id,
                ),
            )
        else:
            metadata["error_code"] = error_code
            final = self._persist_terminal(
                lambda: self.store.fail(
                    job.job_id,
                    error_text or "unknown error",
                    metadata=metadata,
                    duration_ms=duration_ms,
                    worker_id=self.worker_id,
                ),
            )
        logger.info("Job %s finished as %s in %d ms", job.job_id, final.status.value, duration_ms)
        self._notify(final)
        return final

    def request_stop(self, signal_name: str = "manual") -> None:
        self._stop_requested = True
        self._stop_signal_name = signal_name

    def _handler_context(self, job: JobRecord, trace: _JobTrace) -> HandlerContext:
        return HandlerContext(
            invoke_model=lambda prompt, model_id: self._invoke(
                prompt,
                model_id,
                job_id=job.job_id,
                trace=trace,
            ),
            search=self.search,
            workspace_root=self.workspace_root,
            memory=self.memory,
            search_max_results=self.search_max_results,
            effective_model=lambda model_id: self._effective_model(model_id, trace),
        )

    def _effective_model(self, model_id: str, trace: _JobTrace) -> str:
        if trace.decisions:
            return trace.decisions[-1].effective_model
        return self.policy.resolve(model_id).effective_model

    def _invoke(
        self,
        prompt: str,
        model_id: str,
        *,
        job_id: str,
        trace: _JobTrace,
    ) -> str:
        decision = self.policy.resolve(model_id)
        trace.decisions.append(decision)
        if decision.substituted:
            self.store.add_event(
                job_id=job_id,
                event_type="model_substituted",
                details=decision.as_metadata(),
            )

        attempt = 0
        while True:
            attempt += 1
            trace.model_attempts += 1
            self.store.touch(job_id=job_id)
            try:
                return self.gateway.generate(prompt, decision.effective_model)
            except TransportError as error:
                if attempt >= self.max_attempts or not _is_retryable(error) or self._stop_requested:
                    raise
                delay = self._compute_retry_delay(retry_number=attempt)
                logger.warning(
                    "Model call failed (attempt %d/%d): %s; retrying in %.1fs",
                    attempt,
                    self.max_attempts,
                    error,
                    delay,
                )
                self._sleep_with_stop(delay)

    def _persist_terminal(self, write: Callable[[], JobRecord]) -> JobRecord:
        attempt = 1
        while True:
            try:
                return write()
            except StorageError as error:
                if attempt >= STORE_WRITE_ATTEMPTS:
                    raise
                logger.warning("Terminal write failed (attempt %d): %s", attempt, error)
                time.sleep(0.1 * attempt)
                attempt += 1

    def _result_metadata(
        self,
        *,
        job: JobRecord,
        trace: _JobTrace,
        result: HandlerResult | None,
    ) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "worker_id": self.worker_id,
            "model_attempts": trace.model_attempts,
        }
        if trace.decisions:
            metadata.update(trace.decisions[-1].as_metadata())
        else:
            metadata.update(self.policy.resolve(job.model).as_metadata())
        if result is not None:
            metadata.update(result.metadata)
        return metadata

    def _notify(self, job: JobRecord) -> None:
        destination = job.chat_id or self.default_destination
        if not destination:
            return
        self.notifier.notify(destination, format_job_notification(job))

    def _recover_stale(self) -> list[str]:
        if self.stale_after_seconds < 0:
            return []
        return self.store.recover_stale(stale_after=timedelta(seconds=self.stale_after_seconds))

    def _compute_retry_delay(self, *, retry_number: int) -> float:
        max_delay = min(
            self.retry_max_seconds,
            self.retry_base_seconds * (2 ** max(retry_number - 1, 0)),
        )
        return self._random.uniform(0, max_delay)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        with stop_on_signals(self.request_stop):
            yield


def format_job_notification(job: JobRecord) -> str:
    if job.status == JobStatus.COMPLETED:
        body = job.result or ""
        if len(body) > NOTIFICATION_RESULT_CHARS:
            body = body[:NOTIFICATION_RESULT_CHARS] + "..."
        return f"Job completed ({job.job_type.value})\nJob ID: {job.job_id}\n\n{body}"
    return f"Job failed ({job.job_type.value})\nJob ID: {job.job_id}\n\nError: {job.error}"


def _is_retryable(error: TransportError) -> bool:
    if error.status_code is not None:
        return error.status_code in RETRYABLE_HTTP_STATUS_CODES
    return error.code in RETRYABLE_TRANSPORT_CODES
