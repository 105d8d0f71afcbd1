import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .documents import OCTET_STREAM, detect_format, parse_dsc_metadata
from .errors import NotAuthorized
from .identity import IdentityDirectory, IdentityResolver
from .jobstore import JobStore
from .models import JobOrigin, JobStatus, PrintJob
from .notify import Notifier
from .render import GhostscriptRenderer
from .spool import Spool, SpoolWriter
from .worker import WorkerPool

logger = logging.getLogger("service")

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class PrintService:
    """Owns the job store, spool, identity lookup and conversion pool.

    The protocol listeners submit through this object and the web layer
    reads and cancels through it; neither touches the others' internals.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        directory: Optional[IdentityDirectory] = None,
        renderer: Optional[GhostscriptRenderer] = None,
    ) -> None:
        self.config = config
        self.directory = directory if directory is not None else IdentityDirectory.load(config["IDENTITY_FILE"])
        self.resolver = IdentityResolver(self.directory)
        self.spool = Spool(config["DATA_DIR"])
        self.store = JobStore(config["DATA_DIR"], max_attempts=config["MAX_ATTEMPTS"])
        self.renderer = renderer or GhostscriptRenderer(
            binary=config["GHOSTSCRIPT_BIN"],
            timeout=config["RENDER_TIMEOUT_SECONDS"],
            max_output=config["RENDER_MAX_OUTPUT_BYTES"],
            thumbnail_dpi=config["THUMBNAIL_DPI"],
        )
        self.notifier = Notifier(config)
        self.pool = WorkerPool(
            self.store,
            self.renderer,
            worker_count=config["WORKER_COUNT"],
            max_depth=config["QUEUE_MAX_DEPTH"],
            retry_backoff=config["RETRY_BACKOFF_SECONDS"],
            notifier=self.notifier,
        )

    def start(self) -> None:
        for job_id in self.store.pending_ids():
            self.pool.requeue(job_id)
        self.pool.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.pool.stop(timeout)

    # ---- submission (protocol layers) -------------------------------

    def reserve_capacity(self) -> None:
        """Raises CapacityError when the conversion queue is full."""
        self.pool.reserve()

    def release_capacity(self) -> None:
        self.pool.release()

    def accepting_jobs(self) -> bool:
        return self.pool.has_capacity()

    def open_spool(self, max_bytes: int) -> SpoolWriter:
        return self.spool.open(max_bytes)

    def submit(
        self,
        writer: SpoolWriter,
        origin: JobOrigin,
        source_ip: str,
        account_id: Optional[str] = None,
        input_format: Optional[str] = None,
        document_name: str = "",
        user_name: str = "",
        app_name: str = "",
        reserved: bool = False,
    ) -> PrintJob:
        """Commit a fully spooled submission as a pending job and queue it.

        With ``reserved`` the caller already holds a queue slot from
        ``reserve_capacity``; otherwise one is taken here (CapacityError).
        """
        if not reserved:
            self.pool.reserve()
        try:
            size = writer.close()
            head = bytes(writer.head)
            if not input_format or input_format == OCTET_STREAM:
                input_format = detect_format(head)
            dsc = parse_dsc_metadata(head)
            job = self.store.create(
                writer.job_id,
                origin,
                source_ip,
                writer.path,
                size,
                account_id=account_id,
                input_format=input_format,
                document_name=document_name or dsc.get("title", ""),
                user_name=user_name or dsc.get("for", ""),
                app_name=app_name or dsc.get("creator", ""),
            )
        except BaseException:
            self.pool.release()
            raise
        self.pool.enqueue(job.id, reserved=True)
        return job

    def record_failed_submission(
        self,
        writer: SpoolWriter,
        origin: JobOrigin,
        source_ip: str,
        account_id: Optional[str],
        error: str,
        error_code: str,
    ) -> PrintJob:
        """Keep what arrived of an interrupted submission as a failed job."""
        size = writer.close()
        head = bytes(writer.head)
        dsc = parse_dsc_metadata(head)
        return self.store.create(
            writer.job_id,
            origin,
            source_ip,
            writer.path,
            size,
            account_id=account_id,
            input_format=detect_format(head),
            document_name=dsc.get("title", ""),
            user_name=dsc.get("for", ""),
            app_name=dsc.get("creator", ""),
            status=JobStatus.FAILED,
            error=error,
            error_code=error_code,
        )

    # ---- read / cancel API (web layer) ------------------------------

    def list_jobs(
        self,
        account_id: Optional[str] = None,
        orphaned: bool = False,
        statuses: Optional[Iterable[JobStatus]] = None,
        limit: Optional[int] = None,
    ) -> List[PrintJob]:
        return self.store.list_jobs(account_id=account_id, orphaned=orphaned, statuses=statuses, limit=limit)

    def get_job(self, job_id: str) -> PrintJob:
        return self.store.get(job_id)

    def get_job_by_number(self, number: int) -> PrintJob:
        return self.store.get_by_number(number)

    def queued_job_count(self) -> int:
        return self.store.count(ACTIVE_STATUSES)

    def thumbnail_bytes(self, job_id: str) -> Optional[bytes]:
        job = self.store.get(job_id)
        if job.status != JobStatus.COMPLETED or not job.thumbnail_path:
            return None
        path = Path(job.thumbnail_path)
        return path.read_bytes() if path.exists() else None

    def document_path(self, job_id: str) -> Optional[Path]:
        job = self.store.get(job_id)
        if job.status != JobStatus.COMPLETED or not job.document_path:
            return None
        return Path(job.document_path)

    def cancel_job(self, job_id: str, account_id: Optional[str] = None) -> PrintJob:
        """Cancel on behalf of ``account_id``; None means an administrator."""
        job = self.store.get(job_id)
        if account_id is not None and job.account_id != account_id:
            raise NotAuthorized(f"job {job_id} does not belong to {account_id}")
        return self.store.cancel(job_id)
