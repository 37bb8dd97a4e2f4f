from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from agent_hub.errors import NotFoundError, StorageError
from agent_hub.jobs.models import JobCreate, JobStatus, JobType
from agent_hub.jobs.store import JobStore

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Durable Job Store"),
]


def _create(prompt: str = "hello", **kwargs) -> JobCreate:
    return JobCreate(job_type=JobType.CHAT, prompt=prompt, model="llama3.2", **kwargs)


def test_chat_job_moves_from_pending_to_completed(job_store: JobStore) -> None:
    job = job_store.enqueue(_create("hello"))
    assert job.status == JobStatus.PENDING
    assert job.job_id.startswith("job-")

    claimed = job_store.claim(worker_id="worker-a")
    assert claimed is not None
    assert claimed.job_id == job.job_id
    assert claimed.status == JobStatus.PROCESSING
    assert claimed.worker_id == "worker-a"
    assert claimed.claim_count == 1

    completed = job_store.complete(job.job_id, "hi there")
    assert completed.status == JobStatus.COMPLETED

    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == "hi there"
    assert stored.completed_at is not None
    assert job_store.list_jobs(status=JobStatus.PROCESSING) == []


def test_failed_job_keeps_error_text_verbatim(job_store: JobStore) -> None:
    job = job_store.enqueue(_create())
    assert job_store.claim(worker_id="worker-a") is not None

    failed = job_store.fail(job.job_id, "connection refused", metadata={"error_code": "connection"})

    assert failed.status == JobStatus.FAILED
    assert failed.error == "connection refused"
    assert failed.result_metadata == {"error_code": "connection"}
    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.FAILED
    assert stored.error == "connection refused"


def test_claim_returns_none_on_empty_queue(job_store: JobStore) -> None:
    assert job_store.claim(worker_id="worker-a") is None


def test_claim_order_is_oldest_first_regardless_of_priority(job_store: JobStore) -> None:
    base = datetime(2026, 1, 1, tzinfo=UTC)
    newer = job_store.enqueue(
        _create("newer", priority="high", created_at=base + timedelta(minutes=5)),
    )
    older = job_store.enqueue(_create("older", priority="low", created_at=base))

    first = job_store.claim(worker_id="worker-a")
    second = job_store.claim(worker_id="worker-a")

    assert first is not None and second is not None
    assert [first.job_id, second.job_id] == [older.job_id, newer.job_id]


def test_complete_twice_raises_not_found_and_keeps_record(job_store: JobStore) -> None:
    job = job_store.enqueue(_create())
    job_store.claim(worker_id="worker-a")
    job_store.complete(job.job_id, "first result")

    with pytest.raises(NotFoundError):
        job_store.complete(job.job_id, "second result")

    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.COMPLETED
    assert stored.result == "first result"


def test_fail_on_pending_job_raises_not_found(job_store: JobStore) -> None:
    job = job_store.enqueue(_create())

    with pytest.raises(NotFoundError):
        job_store.fail(job.job_id, "boom")

    stored = job_store.get(job.job_id)
    assert stored is not None
    assert stored.status == JobStatus.PENDING


def test_duplicate_job_id_is_rejected_without_overwrite(job_store: JobStore) -> None:
    job_store.enqueue(_create("original", job_id="job-fixed"))

    with pytest.raises(StorageError) as error:
        job_store.enqueue(_create("replacement", job_id="job-fixed"))

    assert error.value.code == "duplicate_job_id"
    stored = job_store.get("job-fixed")
    assert stored is not None
    assert stored.prompt == "original"


def test_concurrent_claims_never_return_the_same_job(tmp_path: Path) -> None:
    db_path = tmp_path / "concurrent.db"
    setup = JobStore(db_path)
    setup.init_schema()
    job_ids = {setup.enqueue(_create(f"job {index}")).job_id for index in range(12)}
    setup.close()

    claimed: list[str] = []
    errors: list[BaseException] = []
    lock = threading.Lock()
    start = threading.Event()

    def _claim_all(worker_id: str) -> None:
        store = JobStore(db_path)
        try:
            start.wait(timeout=5)
            while True:
                job = store.claim(worker_id=worker_id)
                if job is None:
                    return
                with lock:
                    claimed.append(job.job_id)
        except BaseException as error:  # noqa: BLE001
            with lock:
                errors.append(error)
        finally:
            store.close()

    threads = [
        threading.Thread(target=_claim_all, args=(f"worker-{index}",)) for index in range(4)
    ]
    for thread in threads:
        thread.start()
    start.set()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(claimed) == len(set(claimed))
    assert set(claimed) == job_ids


def test_stale_claim_is_recovered_exactly_once(job_store: JobStore) -> None:
    job = job_store.enqueue(_create())
    claimed = job_store.claim(worker_id="crashed-worker")
    assert claimed is not None

    assert job_store.recover_stale(stale_after=timedelta(hours=1)) == []

    recovered = job_store.recover_stale(stale_after=timedelta(0))
    assert recovered == [job.job_id]
    assert job_store.recover_stale(stale_after=timedelta(0)) == []

    requeued = job_store.get(job.job_id)
    assert requeued is not None
    assert requeued.status == JobStatus.PENDING
    assert requeued.worker_id is None

    reclaimed = job_store.claim(worker_id="worker-b")
    assert reclaimed is not None
    assert reclaimed.job_id == job.job_id
    assert reclaimed.claim_count == 2

    details = job_store.get_details(job.job_id)
    assert details is not None
    event_types = [event.event_type for event in details.events]
    assert event_types == ["enqueued", "claimed", "stale_claim_recovered", "claimed"]


def test_runner_that_lost_its_claim_cannot_finish_the_job(job_store: JobStore) -> None:
    job = job_store.enqueue(_create())
    assert job_store.claim(worker_id="worker-a") is not None
    assert job_store.recover_stale(stale_after=timedelta(0)) == [job.job_id]
    assert job_store.claim(worker_id="worker-b") is not None

    with pytest.raises(NotFoundError, match="not held by worker-a"):
        job_store.complete(job.job_id, "from worker-a", worker_id="worker-a")
    with pytest.raises(NotFoundError):
        job_store.fail(job.job_id, "late failure", worker_id="worker-a")

    completed = job_store.complete(job.job_id, "from worker-b", worker_id="worker-b")

    assert completed.status == JobStatus.COMPLETED
    assert completed.result == "from worker-b"
    assert completed.worker_id == "worker-b"
    details = job_store.get_details(job.job_id)
    assert details is not None
    assert [event.event_type for event in details.events].count("completed") == 1


def test_list_jobs_is_newest_first_and_counts_by_area(job_store: JobStore) -> None:
    base = datetime(2026, 1, 1, tzinfo=UTC)
    first = job_store.enqueue(_create("first", created_at=base))
    second = job_store.enqueue(_create("second", created_at=base + timedelta(seconds=1)))
    third = job_store.enqueue(_create("third", created_at=base + timedelta(seconds=2)))
    job_store.claim(worker_id="worker-a")
    job_store.complete(first.job_id, "done")

    listed = job_store.list_jobs(limit=10)
    assert [job.job_id for job in listed] == [third.job_id, second.job_id, first.job_id]
    assert [job.job_id for job in job_store.list_jobs(limit=2)] == [third.job_id, second.job_id]

    counts = job_store.counts()
    assert counts[JobStatus.PENDING] == 2
    assert counts[JobStatus.PROCESSING] == 0
    assert counts[JobStatus.COMPLETED] == 1
    assert counts[JobStatus.FAILED] == 0


def test_get_unknown_job_returns_none(job_store: JobStore) -> None:
    assert job_store.get("job-missing") is None
    assert job_store.get_details("job-missing") is None
