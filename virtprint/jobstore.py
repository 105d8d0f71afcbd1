import dataclasses
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import JobNotFound, JobStateError
from .models import JobOrigin, JobStatus, PrintJob, utcnow

logger = logging.getLogger("store")

RECORD_NAME = "job.json"


class JobStore:
    """Source of truth for print jobs and their lifecycle.

    Every transition runs under one lock, is written to
    ``<data_dir>/jobs/<id>/job.json`` (temp file + rename) and only then
    becomes visible. Callers always get copies.

    pending -> processing -> completed | failed | cancelled
    pending -> cancelled
    processing -> pending (retry while attempts remain)

    Other processes (the command line) may rewrite a record; lookups and
    transitions adopt the on-disk record when it is newer than ours.
    Only the serving process passes ``recover=True``, which puts jobs left
    in processing by a crash back to pending.
    """

    def __init__(self, data_dir: Union[str, Path], max_attempts: int = 3, recover: bool = True) -> None:
        self.jobs_dir = Path(data_dir).resolve() / "jobs"
        self.max_attempts = max(1, int(max_attempts))
        self._lock = threading.RLock()
        self._jobs: Dict[str, PrintJob] = {}
        self._by_number: Dict[int, str] = {}
        self._next_number = 1
        self._recover = recover
        self._load()

    # ---- persistence -------------------------------------------------

    def _load(self) -> None:
        if not self.jobs_dir.is_dir():
            return
        recovered = 0
        for record in sorted(self.jobs_dir.glob(f"*/{RECORD_NAME}")):
            try:
                job = PrintJob.from_dict(json.loads(record.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError, TypeError):
                logger.exception("Skipping unreadable job record %s", record)
                continue
            if job.status == JobStatus.PROCESSING and self._recover:
                # interrupted mid-render by a restart
                if job.cancel_requested:
                    job = dataclasses.replace(
                        job,
                        status=JobStatus.CANCELLED,
                        error_code="cancelled",
                        finished_at=utcnow(),
                    )
                else:
                    job = dataclasses.replace(job, status=JobStatus.PENDING, started_at=None)
                job.updated_at = utcnow()
                self._persist(job)
                recovered += 1
            self._jobs[job.id] = job
            self._by_number[job.number] = job.id
            self._next_number = max(self._next_number, job.number + 1)
        logger.info("Loaded %d job records (%d recovered from processing)", len(self._jobs), recovered)

    def _persist(self, job: PrintJob) -> None:
        job_dir = self.jobs_dir / job.id
        job_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".job-", dir=str(job_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(job.to_dict(), fh, indent=2, sort_keys=True)
            os.replace(tmp, job_dir / RECORD_NAME)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _commit(self, job: PrintJob, **changes: Any) -> PrintJob:
        # caller holds _lock
        updated = dataclasses.replace(job, **changes)
        updated.updated_at = utcnow()
        self._persist(updated)
        self._jobs[updated.id] = updated
        return updated.copy()

    # ---- creation and queries ---------------------------------------

    def create(
        self,
        job_id: str,
        origin: JobOrigin,
        source_ip: str,
        spool_path: Union[str, Path],
        size: int,
        account_id: Optional[str] = None,
        input_format: str = "application/octet-stream",
        document_name: str = "",
        app_name: str = "",
        user_name: str = "",
        status: JobStatus = JobStatus.PENDING,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> PrintJob:
        if status not in (JobStatus.PENDING, JobStatus.FAILED):
            raise JobStateError(f"jobs are created pending or failed, not {status.value}")
        with self._lock:
            if job_id in self._jobs:
                raise JobStateError(f"job {job_id} already exists")
            now = utcnow()
            job = PrintJob(
                id=job_id,
                number=self._next_number,
                origin=origin,
                source_ip=source_ip,
                spool_path=str(spool_path),
                size=size,
                account_id=account_id or None,
                input_format=input_format,
                status=status,
                document_name=document_name,
                app_name=app_name,
                user_name=user_name,
                error=error,
                error_code=error_code,
                created_at=now,
                updated_at=now,
                finished_at=now if status.terminal else None,
            )
            self._persist(job)
            self._jobs[job.id] = job
            self._by_number[job.number] = job.id
            self._next_number += 1
        logger.info(
            "Job %s (#%d) created: origin=%s source=%s account=%s bytes=%d status=%s",
            job.id,
            job.number,
            origin.value,
            source_ip,
            job.account_id or "<orphaned>",
            size,
            status.value,
        )
        return job.copy()

    def _get(self, job_id: str) -> PrintJob:
        try:
            job = self._jobs[job_id]
        except KeyError:
            raise JobNotFound(job_id) from None
        return self._sync(job)

    def _sync(self, job: PrintJob) -> PrintJob:
        # caller holds _lock; a newer record on disk was written by another process
        record = self.jobs_dir / job.id / RECORD_NAME
        try:
            on_disk = PrintJob.from_dict(json.loads(record.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.debug("Cannot re-read record for job %s: %s", job.id, exc)
            return job
        if on_disk.updated_at <= job.updated_at:
            return job
        logger.info("Job %s changed on disk: %s -> %s", job.id, job.status.value, on_disk.status.value)
        self._jobs[job.id] = on_disk
        return on_disk

    def get(self, job_id: str) -> PrintJob:
        with self._lock:
            return self._get(job_id).copy()

    def get_by_number(self, number: int) -> PrintJob:
        with self._lock:
            job_id = self._by_number.get(number)
            if job_id is None:
                raise JobNotFound(number)
            return self._get(job_id).copy()

    def find(self, ref: str) -> PrintJob:
        """Look a job up by id, or by number when ``ref`` is all digits."""
        with self._lock:
            if ref in self._jobs:
                return self._get(ref).copy()
        if ref.isdigit():
            return self.get_by_number(int(ref))
        raise JobNotFound(ref)

    def list_jobs(
        self,
        account_id: Optional[str] = None,
        orphaned: bool = False,
        statuses: Optional[Iterable[JobStatus]] = None,
        limit: Optional[int] = None,
    ) -> List[PrintJob]:
        """Newest first."""
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            jobs = [j.copy() for j in self._jobs.values()]
        out = []
        for job in sorted(jobs, key=lambda j: j.number, reverse=True):
            if orphaned and not job.orphaned:
                continue
            if account_id is not None and job.account_id != account_id:
                continue
            if wanted is not None and job.status not in wanted:
                continue
            out.append(job)
            if limit is not None and len(out) >= limit:
                break
        return out

    def pending_ids(self) -> List[str]:
        """Pending job ids, oldest first."""
        with self._lock:
            pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
        return [j.id for j in sorted(pending, key=lambda j: j.number)]

    def count(self, statuses: Optional[Iterable[JobStatus]] = None) -> int:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            return sum(1 for j in self._jobs.values() if wanted is None or j.status in wanted)

    # ---- transitions -------------------------------------------------

    def claim(self, job_id: str) -> Optional[PrintJob]:
        """Atomically move a pending job to processing.

        Exactly one concurrent caller gets the job back; everyone else gets None.
        """
        with self._lock:
            job = self._get(job_id)
            if job.status != JobStatus.PENDING:
                return None
            now = utcnow()
            claimed = self._commit(
                job,
                status=JobStatus.PROCESSING,
                attempts=job.attempts + 1,
                started_at=now,
            )
        logger.debug("Job %s claimed (attempt %d)", job_id, claimed.attempts)
        return claimed

    def complete(
        self,
        job_id: str,
        document_path: Union[str, Path],
        thumbnail_path: Optional[Union[str, Path]],
        page_count: int,
    ) -> PrintJob:
        with self._lock:
            job = self._require(job_id, JobStatus.PROCESSING)
            done = self._commit(
                job,
                status=JobStatus.COMPLETED,
                document_path=str(document_path),
                thumbnail_path=str(thumbnail_path) if thumbnail_path else None,
                page_count=page_count,
                error=None,
                error_code=None,
                finished_at=utcnow(),
            )
        logger.info("Job %s completed: %d pages", job_id, page_count)
        return done

    def fail(self, job_id: str, error: str, code: str = "internal", retryable: bool = True) -> PrintJob:
        """Record a failed attempt; requeue to pending while attempts remain."""
        with self._lock:
            job = self._require(job_id, JobStatus.PROCESSING)
            if retryable and job.attempts < self.max_attempts and not job.cancel_requested:
                updated = self._commit(
                    job,
                    status=JobStatus.PENDING,
                    error=error,
                    error_code=code,
                    started_at=None,
                )
                logger.warning(
                    "Job %s attempt %d/%d failed (%s): %s",
                    job_id,
                    job.attempts,
                    self.max_attempts,
                    code,
                    error,
                )
                return updated
            updated = self._commit(
                job,
                status=JobStatus.FAILED,
                error=error,
                error_code=code,
                finished_at=utcnow(),
            )
        logger.error("Job %s failed (%s): %s", job_id, code, error)
        return updated

    def cancel(self, job_id: str) -> PrintJob:
        """Cancel a pending job now, or flag a processing job for its worker."""
        with self._lock:
            job = self._get(job_id)
            if job.status.terminal:
                raise JobStateError(f"job {job_id} is already {job.status.value}")
            if job.status == JobStatus.PENDING:
                updated = self._commit(
                    job,
                    status=JobStatus.CANCELLED,
                    cancel_requested=True,
                    error_code="cancelled",
                    finished_at=utcnow(),
                )
                logger.info("Job %s cancelled while queued", job_id)
                return updated
            updated = self._commit(job, cancel_requested=True)
        logger.info("Cancellation requested for processing job %s", job_id)
        return updated

    def finish_cancel(self, job_id: str) -> PrintJob:
        with self._lock:
            job = self._require(job_id, JobStatus.PROCESSING)
            updated = self._commit(
                job,
                status=JobStatus.CANCELLED,
                error_code="cancelled",
                finished_at=utcnow(),
            )
        logger.info("Job %s cancelled during conversion", job_id)
        return updated

    def is_cancel_requested(self, job_id: str) -> bool:
        with self._lock:
            return self._get(job_id).cancel_requested

    def _require(self, job_id: str, status: JobStatus) -> PrintJob:
        job = self._get(job_id)
        if job.status != status:
            raise JobStateError(f"job {job_id} is {job.status.value}, expected {status.value}")
        return job
