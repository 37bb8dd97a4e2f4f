"""Domain models for the job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """State areas a job moves through; the area a record sits in is its status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobType(str, Enum):
    """Job kinds; each one maps to a handler."""

    CHAT = "chat"
    CODE = "code"
    RESEARCH = "research"
    FILE = "file"
    GENERIC = "generic"


JOB_PRIORITIES = ("low", "normal", "high")


@dataclass(slots=True)
class JobCreate:
    """Input payload for enqueuing a job."""

    job_type: JobType
    prompt: str
    model: str
    job_id: str | None = None
    priority: str = "normal"
    source: str = "cli"
    chat_id: str | None = None
    save_to: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class JobRecord:
    """Readable job view for runners, services and the CLI."""

    job_id: str
    job_type: JobType
    prompt: str
    model: str
    priority: str
    source: str
    chat_id: str | None
    save_to: str | None
    status: JobStatus
    result: str | None
    error: str | None
    result_metadata: dict[str, Any]
    worker_id: str | None
    claim_count: int
    created_at: datetime
    claimed_at: datetime | None
    heartbeat_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    duration_ms: int | None
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(slots=True)
class JobEventView:
    """Job event entry for the audit trail."""

    event_id: int
    job_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job record with its event stream."""

    job: JobRecord
    events: list[JobEventView]
