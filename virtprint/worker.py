import logging
import os
import shutil
import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional, Set

from .errors import CapacityError, ConversionError
from .jobstore import JobStore
from .models import JobStatus, PrintJob
from .notify import Notifier
from .render import GhostscriptRenderer, RenderResult

logger = logging.getLogger("worker")

STAGING_DIR = ".render"


class WorkerPool:
    """Fixed set of conversion threads fed from a FIFO of job ids.

    New submissions are bounded by ``max_depth`` (queued ids plus
    outstanding reservations). Retries of accepted jobs bypass the bound.
    """

    def __init__(
        self,
        store: JobStore,
        renderer: GhostscriptRenderer,
        worker_count: int = 2,
        max_depth: int = 100,
        retry_backoff: float = 5.0,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.worker_count = worker_count
        self.max_depth = max_depth
        self.retry_backoff = retry_backoff
        self.notifier = notifier
        self._queue: Deque[str] = deque()
        self._reserved = 0
        self._cond = threading.Condition()
        self._threads: List[threading.Thread] = []
        self._timers: Set[threading.Timer] = set()
        self._stopping = False

    # ---- queue and backpressure -------------------------------------

    @property
    def depth(self) -> int:
        with self._cond:
            return len(self._queue) + self._reserved

    def has_capacity(self) -> bool:
        return self.depth < self.max_depth

    def reserve(self) -> None:
        """Hold one queue slot for a submission that is still arriving."""
        with self._cond:
            if len(self._queue) + self._reserved >= self.max_depth:
                raise CapacityError(f"Conversion queue is full ({self.max_depth} jobs)")
            self._reserved += 1

    def release(self) -> None:
        with self._cond:
            if self._reserved > 0:
                self._reserved -= 1

    def enqueue(self, job_id: str, reserved: bool = False) -> None:
        with self._cond:
            if reserved and self._reserved > 0:
                self._reserved -= 1
            elif len(self._queue) + self._reserved >= self.max_depth:
                raise CapacityError(f"Conversion queue is full ({self.max_depth} jobs)")
            self._queue.append(job_id)
            self._cond.notify()
        logger.debug("Job %s queued (depth=%d)", job_id, self.depth)

    def requeue(self, job_id: str) -> None:
        """Put an already-accepted job back on the queue, ignoring the bound."""
        with self._cond:
            self._timers = {t for t in self._timers if t.is_alive()}
            if self._stopping:
                return
            self._queue.append(job_id)
            self._cond.notify()
        logger.info("Job %s requeued", job_id)

    def _schedule_retry(self, job: PrintJob) -> None:
        delay = self.retry_backoff * (2 ** max(0, job.attempts - 1))
        logger.info("Retrying job %s in %.1fs (attempt %d failed)", job.id, delay, job.attempts)
        if delay <= 0:
            self.requeue(job.id)
            return
        timer = threading.Timer(delay, self.requeue, args=(job.id,))
        timer.daemon = True
        with self._cond:
            self._timers.add(timer)
        timer.start()

    # ---- lifecycle ---------------------------------------------------

    def start(self) -> None:
        with self._cond:
            self._stopping = False
        for index in range(self.worker_count):
            thread = threading.Thread(target=self._run, name=f"worker-{index + 1}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Started %d conversion workers (queue bound %d)", self.worker_count, self.max_depth)

    def stop(self, timeout: Optional[float] = None) -> None:
        with self._cond:
            self._stopping = True
            timers = list(self._timers)
            self._timers.clear()
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def _next(self) -> Optional[str]:
        with self._cond:
            while not self._queue and not self._stopping:
                self._cond.wait()
            if self._stopping:
                return None
            return self._queue.popleft()

    def _run(self) -> None:
        while True:
            job_id = self._next()
            if job_id is None:
                return
            try:
                self.process(job_id)
            except Exception:
                # one bad job must not take the worker down
                logger.exception("Unhandled error while processing job %s", job_id)

    # ---- conversion --------------------------------------------------

    def process(self, job_id: str) -> Optional[PrintJob]:
        job = self.store.claim(job_id)
        if job is None:
            logger.debug("Job %s is no longer pending; skipping", job_id)
            return None

        logger.info("Converting job %s (attempt %d, %d bytes)", job.id, job.attempts, job.size)
        job_dir = Path(job.spool_path).parent
        staging = job_dir / STAGING_DIR

        def cancel_check() -> bool:
            return self.store.is_cancel_requested(job.id)

        try:
            result = self.renderer.render(job.spool_path, staging, cancel_check)
            if cancel_check():
                raise ConversionError("Render cancelled", ConversionError.CANCELLED, retryable=False)
            document_path, thumbnail_path = self._publish(job_dir, result)
            final = self.store.complete(job.id, document_path, thumbnail_path, result.page_count)
        except ConversionError as exc:
            if exc.code == ConversionError.CANCELLED or self.store.is_cancel_requested(job.id):
                final = self.store.finish_cancel(job.id)
            else:
                final = self.store.fail(job.id, str(exc), exc.code, exc.retryable)
        except Exception as exc:
            logger.exception("Conversion of job %s crashed", job.id)
            final = self.store.fail(job.id, f"Internal error: {exc}", ConversionError.INTERNAL)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        if final.status == JobStatus.PENDING:
            self._schedule_retry(final)
        elif self.notifier is not None:
            self.notifier.job_finished(final)
        return final

    @staticmethod
    def _publish(job_dir: Path, result: RenderResult):
        # readers only learn these paths from the completed record
        thumbnail_path = None
        if result.thumbnail_path is not None:
            thumbnail_path = job_dir / "thumbnail.png"
            os.replace(result.thumbnail_path, thumbnail_path)
        document_path = job_dir / "document.pdf"
        os.replace(result.document_path, document_path)
        return document_path, thumbnail_path
