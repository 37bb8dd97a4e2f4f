"""Durable job store backed by SQLModel + SQLite.

Each job is one row and its ``status`` column is the state area it lives in.
Every transition is a single conditional ``UPDATE ... WHERE status = <from>``
committed together with its audit event, so a job is never visible in two
areas and two callers can never both win the same transition.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from agent_hub.errors import NotFoundError, StorageError
from agent_hub.jobs.models import (
    JobCreate,
    JobDetails,
    JobEventView,
    JobRecord,
    JobStatus,
    JobType,
)
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
from agent_hub.storage.sqlmodel_models import Job, JobEvent

logger = logging.getLogger(__name__)


def new_job_id() -> str:
    """Collision-resistant job id."""

    return f"job-{uuid4().hex}"


class JobStore:
    """Queue persistence facade with atomic state-area transitions."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def enqueue(self, payload: JobCreate) -> JobRecord:
        """Write a new job into the pending area.

        An id collision is a programming error and is reported as
        ``StorageError``; an existing record is never overwritten.
        """

        now = utc_now()
        job_id = payload.job_id or new_job_id()
        created_at = payload.created_at or now
        try:
            with Session(self.engine) as session:
                row = Job(
                    job_id=job_id,
                    job_type=payload.job_type.value,
                    prompt=payload.prompt,
                    model=payload.model,
                    priority=payload.priority,
                    source=payload.source,
                    chat_id=payload.chat_id,
                    save_to=payload.save_to,
                    status=JobStatus.PENDING.value,
                    created_at=to_db_datetime(created_at),
                    updated_at=to_db_datetime(now),
                )
                session.add(row)
                # Flush the job first so the event row's foreign key is satisfied.
                session.flush()
                self._add_event(
                    session=session,
                    job_id=job_id,
                    event_type="enqueued",
                    status_from=None,
                    status_to=JobStatus.PENDING,
                    details={
                        "job_type": payload.job_type.value,
                        "model": payload.model,
                        "priority": payload.priority,
                        "source": payload.source,
                    },
                )
                session.commit()
                session.refresh(row)
                record = _to_record(row)
        except IntegrityError as error:
            raise StorageError(
                message=f"Job id collision on enqueue: {job_id}",
                code="duplicate_job_id",
            ) from error
        except SQLAlchemyError as error:
            raise StorageError(message=f"enqueue failed: {error}") from error

        logger.info(
            "Enqueued job %s type=%s model=%s",
            job_id,
            payload.job_type.value,
            payload.model,
        )
        return record

    def claim(self, *, worker_id: str) -> JobRecord | None:
        """Atomically move the oldest pending job to processing.

        Candidates are ordered by ``created_at`` then ``job_id``. The move is a
        conditional update on ``status = pending``; losing the race to another
        claimer just moves on to the next candidate.
        """

        while True:
            now = utc_now()
            with storage_errors("claim"), Session(self.engine) as session:
                candidate = session.exec(
                    select(Job)
                    .where(Job.status == JobStatus.PENDING.value)
                    .order_by(col(Job.created_at).asc(), col(Job.job_id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == candidate.job_id,
                        col(Job.status) == JobStatus.PENDING.value,
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        worker_id=worker_id,
                        claim_count=candidate.claim_count + 1,
                        claimed_at=to_db_datetime(now),
                        heartbeat_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                self._add_event(
                    session=session,
                    job_id=candidate.job_id,
                    event_type="claimed",
                    status_from=JobStatus.PENDING,
                    status_to=JobStatus.PROCESSING,
                    details={"worker_id": worker_id},
                )
                session.commit()
                claimed = session.exec(
                    select(Job).where(Job.job_id == candidate.job_id),
                ).one()
                return _to_record(claimed)

    def touch(self, *, job_id: str) -> None:
        """Update heartbeat for a processing job."""

        now = utc_now()
        with storage_errors("touch"), Session(self.engine) as session:
            session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == JobStatus.PROCESSING.value,
                )
                .values(heartbeat_at=to_db_datetime(now), updated_at=to_db_datetime(now)),
            )
            session.commit()

    def complete(
        self,
        job_id: str,
        result: str,
        *,
        metadata: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        worker_id: str | None = None,
    ) -> JobRecord:
        """Move a processing job to completed with its result.

        With ``worker_id`` the write only lands while that runner still holds
        the claim; a job requeued and claimed again by another runner raises
        :class:`NotFoundError`.
        """

        now = utc_now()
        return self._finish(
            job_id=job_id,
            status_to=JobStatus.COMPLETED,
            worker_id=worker_id,
            values={
                "result": result,
                "result_metadata_json": _dump_json(metadata),
                "completed_at": to_db_datetime(now),
                "heartbeat_at": to_db_datetime(now),
                "duration_ms": duration_ms,
                "updated_at": to_db_datetime(now),
            },
            event_type="completed",
            details={"duration_ms": duration_ms, "result_chars": len(result)},
        )

    def fail(
        self,
        job_id: str,
        error: str,
        *,
        metadata: dict[str, Any] | None = None,
        duration_ms: int | None = None,
        worker_id: str | None = None,
    ) -> JobRecord:
        """Move a processing job to failed, keeping the error text verbatim."""

        now = utc_now()
        return self._finish(
            job_id=job_id,
            status_to=JobStatus.FAILED,
            worker_id=worker_id,
            values={
                "error": error,
                "result_metadata_json": _dump_json(metadata),
                "failed_at": to_db_datetime(now),
                "heartbeat_at": to_db_datetime(now),
                "duration_ms": duration_ms,
                "updated_at": to_db_datetime(now),
            },
            event_type="failed",
            details={"duration_ms": duration_ms, "error": error},
        )

    def recover_stale(self, *, stale_after: timedelta) -> list[str]:
        """Requeue processing jobs whose runner stopped heart-beating.

        ``stale_after`` of zero requeues every processing job, which is the
        startup sweep when no other runner shares the store.
        """

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        recovered: list[str] = []
        with storage_errors("recover_stale"), Session(self.engine) as session:
            candidates = session.exec(
                select(Job)
                .where(
                    Job.status == JobStatus.PROCESSING.value,
                    col(Job.heartbeat_at) <= cutoff,
                )
                .order_by(col(Job.created_at).asc(), col(Job.job_id).asc()),
            ).all()
            for candidate in candidates:
                result = session.exec(
                    sa_update(Job)
                    .where(
                        col(Job.job_id) == candidate.job_id,
                        col(Job.status) == JobStatus.PROCESSING.value,
                        col(Job.heartbeat_at) <= cutoff,
                    )
                    .values(
                        status=JobStatus.PENDING.value,
                        worker_id=None,
                        claimed_at=None,
                        heartbeat_at=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    job_id=candidate.job_id,
                    event_type="stale_claim_recovered",
                    status_from=JobStatus.PROCESSING,
                    status_to=JobStatus.PENDING,
                    details={
                        "previous_worker_id": candidate.worker_id,
                        "stale_after_seconds": int(stale_after.total_seconds()),
                    },
                )
                recovered.append(candidate.job_id)
            session.commit()

        for job_id in recovered:
            logger.warning("Requeued stale processing job %s", job_id)
        return recovered

    def get(self, job_id: str) -> JobRecord | None:
        """Return the job with its current state tag, if it exists."""

        with storage_errors("get"), Session(self.engine) as session:
            row = session.exec(select(Job).where(Job.job_id == job_id)).one_or_none()
            return _to_record(row) if row is not None else None

    def list_jobs(self, *, limit: int = 10, status: JobStatus | None = None) -> list[JobRecord]:
        """Most recent jobs across all areas, newest ``created_at`` first."""

        with storage_errors("list"), Session(self.engine) as session:
            statement = select(Job)
            if status is not None:
                statement = statement.where(Job.status == status.value)
            statement = statement.order_by(
                col(Job.created_at).desc(),
                col(Job.job_id).desc(),
            ).limit(limit)
            rows = session.exec(statement).all()
        return [_to_record(row) for row in rows]

    def counts(self) -> dict[JobStatus, int]:
        """Number of jobs per state area."""

        counts = {status: 0 for status in JobStatus}
        with storage_errors("counts"), Session(self.engine) as session:
            rows = session.exec(
                select(Job.status, func.count()).group_by(Job.status),
            ).all()
        for status, count in rows:
            counts[JobStatus(status)] = int(count)
        return counts

    def get_details(self, job_id: str) -> JobDetails | None:
        """Return the job with its event stream."""

        with storage_errors("get_details"), Session(self.engine) as session:
            row = session.exec(select(Job).where(Job.job_id == job_id)).one_or_none()
            if row is None:
                return None
            event_rows = session.exec(
                select(JobEvent)
                .where(JobEvent.job_id == job_id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()
            record = _to_record(row)

        events: list[JobEventView] = []
        for event_row in event_rows:
            details: dict[str, Any] = {}
            if event_row.details_json:
                parsed = json.loads(event_row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                JobEventView(
                    event_id=event_row.id or 0,
                    job_id=event_row.job_id,
                    event_type=event_row.event_type,
                    status_from=(
                        JobStatus(event_row.status_from)
                        if event_row.status_from is not None
                        else None
                    ),
                    status_to=(
                        JobStatus(event_row.status_to) if event_row.status_to is not None else None
                    ),
                    created_at=to_utc_aware_datetime(event_row.created_at),
                    details=details,
                ),
            )
        return JobDetails(job=record, events=events)

    def add_event(
        self,
        *,
        job_id: str,
        event_type: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append a standalone audit event for a job."""

        with storage_errors("add_event"), Session(self.engine) as session:
            self._add_event(
                session=session,
                job_id=job_id,
                event_type=event_type,
                status_from=None,
                status_to=None,
                details=details or {},
            )
            session.commit()

    def _finish(  # noqa: PLR0913
        self,
        *,
        job_id: str,
        status_to: JobStatus,
        values: dict[str, Any],
        event_type: str,
        details: dict[str, Any],
        worker_id: str | None,
    ) -> JobRecord:
        conditions = [
            col(Job.job_id) == job_id,
            col(Job.status) == JobStatus.PROCESSING.value,
        ]
        if worker_id is not None:
            conditions.append(col(Job.worker_id) == worker_id)
        with storage_errors(event_type), Session(self.engine) as session:
            result = session.exec(
                sa_update(Job).where(*conditions).values(status=status_to.value, **values),
            )
            if result.rowcount != 1:
                session.rollback()
                owner = f" by {worker_id}" if worker_id is not None else ""
                raise NotFoundError(
                    message=(
                        f"Job {job_id} is not held{owner} in the processing area; "
                        f"cannot mark {event_type}"
                    ),
                )
            self._add_event(
                session=session,
                job_id=job_id,
                event_type=event_type,
                status_from=JobStatus.PROCESSING,
                status_to=status_to,
                details=details,
            )
            session.commit()
            row = session.exec(select(Job).where(Job.job_id == job_id)).one()
            return _to_record(row)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        job_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, Any],
    ) -> None:
        session.add(
            JobEvent(
                job_id=job_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=_dump_json(details),
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _dump_json(value: dict[str, Any] | None) -> str | None:
    if not value:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _to_record(row: Job) -> JobRecord:
    metadata: dict[str, Any] = {}
    if row.result_metadata_json:
        parsed = json.loads(row.result_metadata_json)
        if isinstance(parsed, dict):
            metadata = parsed
    return JobRecord(
        job_id=row.job_id,
        job_type=JobType(row.job_type),
        prompt=row.prompt,
        model=row.model,
        priority=row.priority,
        source=row.source,
        chat_id=row.chat_id,
        save_to=row.save_to,
        status=JobStatus(row.status),
        result=row.result,
        error=row.error,
        result_metadata=metadata,
        worker_id=row.worker_id,
        claim_count=row.claim_count,
        created_at=to_utc_aware_datetime(row.created_at),
        claimed_at=optional_utc(row.claimed_at),
        heartbeat_at=optional_utc(row.heartbeat_at),
        completed_at=optional_utc(row.completed_at),
        failed_at=optional_utc(row.failed_at),
        duration_ms=row.duration_ms,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
