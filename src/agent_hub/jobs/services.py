"""Use-case services at the enqueue and query boundary."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta

from agent_hub.errors import AuthorizationError, NotFoundError, ValidationError
from agent_hub.jobs.models import (
    JOB_PRIORITIES,
    JobCreate,
    JobDetails,
    JobRecord,
    JobStatus,
    JobType,
)
from agent_hub.jobs.policy import DEFAULT_LOCAL_MODEL
from agent_hub.jobs.store import JobStore
from agent_hub.notify.base import NotificationSink

logger = logging.getLogger(__name__)

SUBMIT_PROMPT_PREVIEW_CHARS = 100
MAX_LIST_LIMIT = 500


@dataclass(slots=True)
class EnqueueJob:
    """Submission from any input channel."""

    job_type: str | JobType | None
    prompt: str | None
    model: str | None = None
    priority: str | None = None
    chat_id: str | None = None
    save_to: str | None = None
    source: str = "cli"
    # Remote channels set this; None marks a trusted local submission.
    caller_id: str | None = None


class ChatPreferences:
    """Per-chat model override held in process memory.

    Set and cleared by chat commands; a restart returns every chat to the
    default model.
    """

    def __init__(self) -> None:
        self._models: dict[str, str] = {}
        self._lock = threading.Lock()

    def set_model(self, chat_id: str, model: str) -> None:
        with self._lock:
            self._models[chat_id] = model

    def model_for(self, chat_id: str | None) -> str | None:
        if chat_id is None:
            return None
        with self._lock:
            return self._models.get(chat_id)

    def clear(self, chat_id: str) -> bool:
        with self._lock:
            return self._models.pop(chat_id, None) is not None


class JobService:
    """Validates submissions and exposes read access to the job store."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: JobStore,
        notifier: NotificationSink | None = None,
        preferences: ChatPreferences | None = None,
        default_model: str = DEFAULT_LOCAL_MODEL,
        allowed_caller_id: str | None = None,
        default_destination: str | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.preferences = preferences or ChatPreferences()
        self.default_model = default_model
        self.allowed_caller_id = allowed_caller_id
        self.default_destination = default_destination

    def enqueue(self, command: EnqueueJob) -> JobRecord:
        """Validate and write a job into the pending area.

        Raises ``ValidationError`` for a missing or unknown type, an empty
        prompt or an unknown priority, and ``AuthorizationError`` when the
        caller is not the allow-listed one. The allow-list gates remote
        channels only: a submission without ``caller_id`` comes from the local
        CLI, whose access is already bounded by access to the database file.
        """

        self._authorize(command.caller_id)
        job_type = _parse_job_type(command.job_type)
        prompt = (command.prompt or "").strip()
        if not prompt:
            raise ValidationError(message="Missing type or prompt")
        priority = (command.priority or "normal").strip().lower()
        if priority not in JOB_PRIORITIES:
            raise ValidationError(
                message=(
                    f"Unknown priority {priority!r}; "
                    f"expected one of {', '.join(JOB_PRIORITIES)}"
                ),
            )
        save_to = (command.save_to or "").strip() or None
        if save_to is not None and job_type != JobType.CODE:
            raise ValidationError(message="save_to is only supported for code jobs")

        model = (
            (command.model or "").strip()
            or self.preferences.model_for(command.chat_id)
            or self.default_model
        )
        job = self.store.enqueue(
            JobCreate(
                job_type=job_type,
                prompt=prompt,
                model=model,
                priority=priority,
                source=command.source,
                chat_id=command.chat_id,
                save_to=save_to,
            ),
        )
        self._notify_submitted(job)
        return job

    def get_job(self, job_id: str) -> JobRecord:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError(message=f"Job not found: {job_id}")
        return job

    def get_details(self, job_id: str) -> JobDetails:
        details = self.store.get_details(job_id)
        if details is None:
            raise NotFoundError(message=f"Job not found: {job_id}")
        return details

    def list_jobs(self, *, limit: int = 10, status: JobStatus | None = None) -> list[JobRecord]:
        """Recent jobs across all state areas, newest first."""

        if limit <= 0 or limit > MAX_LIST_LIMIT:
            raise ValidationError(message=f"limit must be between 1 and {MAX_LIST_LIMIT}")
        return self.store.list_jobs(limit=limit, status=status)

    def counts(self) -> dict[JobStatus, int]:
        return self.store.counts()

    def recover_stale(self, *, stale_after: timedelta) -> list[str]:
        return self.store.recover_stale(stale_after=stale_after)

    def _authorize(self, caller_id: str | None) -> None:
        if self.allowed_caller_id is None:
            return
        if caller_id is None:
            logger.debug("Accepting local submission without caller id")
            return
        if str(caller_id) != self.allowed_caller_id:
            logger.warning("Rejected submission from unauthorized caller %s", caller_id)
            raise AuthorizationError(message="Unauthorized")

    def _notify_submitted(self, job: JobRecord) -> None:
        destination = job.chat_id or self.default_destination
        if self.notifier is None or not destination:
            return
        preview = job.prompt[:SUBMIT_PROMPT_PREVIEW_CHARS]
        if len(job.prompt) > SUBMIT_PROMPT_PREVIEW_CHARS:
            preview += "..."
        self.notifier.notify(
            destination,
            (
                f"New job submitted\n\nType: {job.job_type.value}\n"
                f"Prompt: {preview}\n\nJob ID: {job.job_id}"
            ),
        )


def _parse_job_type(value: str | JobType | None) -> JobType:
    if isinstance(value, JobType):
        return value
    normalized = (value or "").strip().lower()
    if not normalized:
        raise ValidationError(message="Missing type or prompt")
    try:
        return JobType(normalized)
    except ValueError as error:
        expected = ", ".join(item.value for item in JobType)
        raise ValidationError(
            message=f"Unknown job type {value!r}; expected one of {expected}",
        ) from error
