from pathlib import Path

import pytest

from conftest import FakeRenderer, wait_for
from virtprint.errors import CapacityError, ConversionError
from virtprint.jobstore import JobStore
from virtprint.models import JobOrigin, JobStatus
from virtprint.spool import Spool
from virtprint.worker import WorkerPool


@pytest.fixture
def store(config):
    return JobStore(config["DATA_DIR"], max_attempts=3)


@pytest.fixture
def spool(config):
    return Spool(config["DATA_DIR"])


def submit(store, spool, payload=b"%!PS\nshowpage\n"):
    writer = spool.open(1024 * 1024)
    writer.write(payload)
    size = writer.close()
    return store.create(writer.job_id, JobOrigin.RAW, "10.0.0.1", writer.path, size, account_id="acct-a")


def test_successful_conversion_publishes_artifacts(store, spool):
    pool = WorkerPool(store, FakeRenderer(page_count=4), worker_count=0, retry_backoff=0)
    job = submit(store, spool)

    final = pool.process(job.id)

    assert final.status == JobStatus.COMPLETED
    assert final.page_count == 4
    job_dir = Path(job.spool_path).parent
    assert final.document_path == str(job_dir / "document.pdf")
    assert final.thumbnail_path == str(job_dir / "thumbnail.png")
    assert Path(final.document_path).exists()
    assert not (job_dir / ".render").exists()


def test_process_skips_jobs_that_are_not_pending(store, spool):
    pool = WorkerPool(store, FakeRenderer(), worker_count=0)
    job = submit(store, spool)
    store.cancel(job.id)

    assert pool.process(job.id) is None


def test_retryable_failure_is_requeued_then_succeeds(store, spool):
    renderer = FakeRenderer([ConversionError("gs exited 1", ConversionError.EXIT_STATUS)])
    pool = WorkerPool(store, renderer, worker_count=0, retry_backoff=0)
    job = submit(store, spool)

    first = pool.process(job.id)
    assert first.status == JobStatus.PENDING
    assert first.attempts == 1
    assert first.error_code == "exit-status"
    assert pool.depth == 1

    second = pool.process(job.id)
    assert second.status == JobStatus.COMPLETED
    assert second.attempts == 2
    assert second.error is None


def test_attempts_are_bounded(store, spool):
    failures = [ConversionError("timed out", ConversionError.TIMEOUT) for _ in range(3)]
    pool = WorkerPool(store, FakeRenderer(failures), worker_count=0, retry_backoff=0)
    job = submit(store, spool)

    results = [pool.process(job.id) for _ in range(3)]

    assert [r.status for r in results] == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]
    assert results[-1].error_code == "timeout"
    assert results[-1].document_path is None


def test_unsupported_input_is_not_retried(store, spool):
    error = ConversionError("no payload", ConversionError.UNSUPPORTED, retryable=False)
    pool = WorkerPool(store, FakeRenderer([error]), worker_count=0, retry_backoff=0)
    job = submit(store, spool)

    final = pool.process(job.id)

    assert final.status == JobStatus.FAILED
    assert final.attempts == 1
    assert pool.depth == 0


def test_unexpected_exception_is_recorded_as_internal(config, spool):
    store = JobStore(config["DATA_DIR"], max_attempts=1)
    pool = WorkerPool(store, FakeRenderer([RuntimeError("kaboom")]), worker_count=0)
    job = submit(store, spool)

    final = pool.process(job.id)

    assert final.status == JobStatus.FAILED
    assert final.error_code == "internal"
    assert "kaboom" in final.error


def test_cancel_during_render_ends_cancelled(store, spool):
    job = submit(store, spool)

    def cancel_midway(cancel_check):
        store.cancel(job.id)
        assert cancel_check()

    pool = WorkerPool(store, FakeRenderer([cancel_midway]), worker_count=0)
    final = pool.process(job.id)

    assert final.status == JobStatus.CANCELLED
    assert not (Path(job.spool_path).parent / "document.pdf").exists()


def test_backpressure_bounds_new_work_but_not_retries(store, spool):
    pool = WorkerPool(store, FakeRenderer(), worker_count=0, max_depth=2)
    pool.reserve()
    pool.enqueue(submit(store, spool).id)

    assert not pool.has_capacity()
    with pytest.raises(CapacityError):
        pool.reserve()
    with pytest.raises(CapacityError):
        pool.enqueue(submit(store, spool).id)

    pool.requeue("retry-me")
    assert pool.depth == 3
    pool.release()
    assert pool.depth == 2


def test_worker_threads_drain_the_queue(store, spool):
    notified = []

    class RecordingNotifier:
        def job_finished(self, job):
            notified.append(job.id)

    pool = WorkerPool(store, FakeRenderer(), worker_count=3, notifier=RecordingNotifier())
    pool.start()
    try:
        ids = [submit(store, spool).id for _ in range(10)]
        for job_id in ids:
            pool.enqueue(job_id)
        assert wait_for(lambda: store.count([JobStatus.COMPLETED]) == 10)
    finally:
        pool.stop(timeout=5)

    assert sorted(notified) == sorted(ids)
    assert all(store.get(job_id).attempts == 1 for job_id in ids)
