import logging
import os
import shutil
import signal
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple, Union

import fitz  # PyMuPDF

from .documents import find_payload
from .errors import ConversionError
from .spool import HEAD_BYTES

logger = logging.getLogger("render")

CancelCheck = Callable[[], bool]

POLL_INTERVAL_SECONDS = 0.2
_COPY_CHUNK = 1024 * 1024


class RenderResult(NamedTuple):
    document_path: Path
    thumbnail_path: Optional[Path]
    page_count: int


def _terminate(proc: subprocess.Popen) -> None:
    # the renderer may fork helpers that outlive it; take the whole session down
    if hasattr(os, "killpg"):
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass  # group already gone
    if proc.poll() is None:
        proc.kill()
        proc.wait()


def _read_tail(fh, limit: int) -> bytes:
    fh.seek(0, os.SEEK_END)
    size = fh.tell()
    fh.seek(max(0, size - limit))
    return fh.read(limit)


def run_subprocess(
    cmd: Sequence[str],
    timeout: float,
    max_output: int,
    cancel_check: Optional[CancelCheck] = None,
) -> Tuple[int, bytes]:
    """Run ``cmd`` with a hard deadline and return (exit status, output tail).

    Output goes to an anonymous temp file so memory stays bounded; only the
    last ``max_output`` bytes are returned. The process is killed and reaped
    on every exit path: timeout, cancellation, or an exception in the caller.
    """
    with tempfile.TemporaryFile() as out:
        try:
            proc = subprocess.Popen(
                list(cmd),
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            raise ConversionError(f"Cannot start renderer {cmd[0]}: {exc}", ConversionError.INTERNAL) from exc

        deadline = time.monotonic() + timeout
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    _terminate(proc)
                    raise ConversionError(
                        f"Renderer timed out after {timeout:g}s",
                        ConversionError.TIMEOUT,
                    )
                try:
                    proc.wait(timeout=min(POLL_INTERVAL_SECONDS, remaining))
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel_check is not None and cancel_check():
                    _terminate(proc)
                    raise ConversionError("Render cancelled", ConversionError.CANCELLED, retryable=False)
        finally:
            _terminate(proc)

        return proc.returncode, _read_tail(out, max_output)


def render_first_page_png(pdf_path: Path, png_path: Path, dpi: int) -> int:
    """Write the first page of ``pdf_path`` as PNG and return the page count."""
    doc = fitz.open(str(pdf_path))
    try:
        total = doc.page_count
        if total:
            page = doc.load_page(0)
            pix = page.get_pixmap(dpi=dpi, alpha=False)
            png_path.write_bytes(pix.tobytes("png"))
        return total
    finally:
        doc.close()


class GhostscriptRenderer:
    """PostScript/PDF to normalized PDF via a Ghostscript subprocess."""

    def __init__(
        self,
        binary: str = "gs",
        timeout: float = 120.0,
        max_output: int = 64 * 1024,
        thumbnail_dpi: int = 150,
    ) -> None:
        self.binary = binary or "gs"
        self.timeout = timeout
        self.max_output = max_output
        self.thumbnail_dpi = thumbnail_dpi

    def pdf_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.binary,
            "-q",
            "-dNOPAUSE",
            "-dBATCH",
            "-dSAFER",
            "-sDEVICE=pdfwrite",
            "-dCompatibilityLevel=1.4",
            "-dPDFSETTINGS=/prepress",
            "-dColorConversionStrategy=/LeaveColorUnchanged",
            "-dDownsampleMonoImages=false",
            "-dDownsampleGrayImages=false",
            "-dDownsampleColorImages=false",
            "-dAutoFilterColorImages=false",
            "-dAutoFilterGrayImages=false",
            f"-sOutputFile={output_path}",
            str(input_path),
        ]

    def _prepare_input(self, input_path: Path, work_dir: Path) -> Path:
        with open(input_path, "rb") as fh:
            head = fh.read(HEAD_BYTES)
            offset = find_payload(head)
            if offset is None:
                raise ConversionError(
                    "No PostScript or PDF payload found in input",
                    ConversionError.UNSUPPORTED,
                    retryable=False,
                )
            if offset == 0:
                return input_path
            logger.debug("Stripping %d-byte PJL preamble from %s", offset, input_path)
            payload = work_dir / "payload.bin"
            fh.seek(offset)
            with open(payload, "wb") as out:
                shutil.copyfileobj(fh, out, _COPY_CHUNK)
            return payload

    def render(
        self,
        input_path: Union[str, Path],
        work_dir: Union[str, Path],
        cancel_check: Optional[CancelCheck] = None,
    ) -> RenderResult:
        input_path = Path(input_path)
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)

        try:
            source = self._prepare_input(input_path, work_dir)
        except OSError as exc:
            raise ConversionError(f"Cannot read spooled input: {exc}") from exc

        pdf_path = work_dir / "document.pdf"
        started = time.monotonic()
        status, output = run_subprocess(
            self.pdf_command(source, pdf_path),
            timeout=self.timeout,
            max_output=self.max_output,
            cancel_check=cancel_check,
        )
        detail = output.decode("utf-8", errors="replace").strip()
        if status != 0:
            raise ConversionError(
                f"Ghostscript exited with status {status}: {detail}",
                ConversionError.EXIT_STATUS,
            )
        if not pdf_path.exists() or pdf_path.stat().st_size == 0:
            raise ConversionError(f"Ghostscript produced no output: {detail}", ConversionError.EXIT_STATUS)
        logger.debug("Ghostscript finished in %.2fs for %s", time.monotonic() - started, input_path)

        thumb_path = work_dir / "thumbnail.png"
        try:
            page_count = render_first_page_png(pdf_path, thumb_path, self.thumbnail_dpi)
        except Exception as exc:
            raise ConversionError(
                f"Cannot read converted PDF: {exc}",
                ConversionError.INTERNAL,
                retryable=False,
            ) from exc
        if not thumb_path.exists():
            thumb_path = None
        return RenderResult(pdf_path, thumb_path, page_count)
