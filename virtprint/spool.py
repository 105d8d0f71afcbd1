import errno
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from .errors import SpoolError
from .models import generate_short_id

logger = logging.getLogger("spool")

HEAD_BYTES = 64 * 1024
_EXHAUSTED_ERRNOS = {errno.ENOSPC, errno.EDQUOT}


def _spool_error(exc: OSError, action: str, path: Path) -> SpoolError:
    return SpoolError(f"{action} {path}: {exc}", exhausted=exc.errno in _EXHAUSTED_ERRNOS)


class Spool:
    """Per-job directories under ``<data_dir>/jobs``; the spool writes ``input.bin``."""

    def __init__(self, data_dir: Union[str, Path]) -> None:
        self.jobs_dir = Path(data_dir).resolve() / "jobs"

    def job_dir(self, job_id: str) -> Path:
        return self.jobs_dir / job_id

    def open(self, max_bytes: int, job_id: Optional[str] = None) -> "SpoolWriter":
        job_id = job_id or generate_short_id()
        return SpoolWriter(job_id, self.job_dir(job_id), max_bytes)


class SpoolWriter:
    """Single-writer stream of one submission's bytes onto disk.

    Only the first ``HEAD_BYTES`` are kept in memory, for format and
    metadata sniffing.
    """

    def __init__(self, job_id: str, job_dir: Path, max_bytes: int) -> None:
        self.job_id = job_id
        self.job_dir = job_dir
        self.path = job_dir / "input.bin"
        self.max_bytes = max_bytes
        self.size = 0
        self.head = bytearray()
        self._fh = None
        try:
            job_dir.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "wb")
        except OSError as exc:
            shutil.rmtree(job_dir, ignore_errors=True)
            raise _spool_error(exc, "Cannot create spool file", self.path) from exc
        logger.debug("Spooling job %s to %s", job_id, self.path)

    def write(self, chunk: bytes) -> None:
        if not chunk:
            return
        if self._fh is None:
            raise SpoolError(f"Spool for job {self.job_id} is closed")
        if self.size + len(chunk) > self.max_bytes:
            raise SpoolError(f"Submission exceeds {self.max_bytes} bytes")
        try:
            self._fh.write(chunk)
        except OSError as exc:
            raise _spool_error(exc, "Cannot write spool file", self.path) from exc
        if len(self.head) < HEAD_BYTES:
            self.head += chunk[: HEAD_BYTES - len(self.head)]
        self.size += len(chunk)

    def close(self) -> int:
        if self._fh is not None:
            fh, self._fh = self._fh, None
            try:
                fh.flush()
                fh.close()
            except OSError as exc:
                raise _spool_error(exc, "Cannot flush spool file", self.path) from exc
        return self.size

    def abort(self) -> None:
        """Drop everything written so far; no partial file is retained."""
        if self._fh is not None:
            fh, self._fh = self._fh, None
            try:
                fh.close()
            except OSError:
                logger.debug("Ignoring close error on aborted spool %s", self.path)
        shutil.rmtree(self.job_dir, ignore_errors=True)
        logger.debug("Discarded spool for job %s", self.job_id)
