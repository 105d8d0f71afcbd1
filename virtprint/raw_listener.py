import logging
import socket
import socketserver
import threading
from typing import Any, Dict, Optional

from .errors import CapacityError, SpoolError
from .models import JobOrigin, PrintJob
from .service import PrintService

logger = logging.getLogger("raw")

RECV_CHUNK = 64 * 1024


class RawHandler(socketserver.BaseRequestHandler):
    """One raw (port 9100) connection = one job; closure or idle timeout ends it."""

    def handle(self) -> None:
        service: PrintService = self.server.service  # type: ignore[attr-defined]
        config = self.server.config  # type: ignore[attr-defined]
        sock: socket.socket = self.request
        client_ip = self.client_address[0] if self.client_address else ""

        sock.settimeout(config["RAW_IDLE_TIMEOUT_SECONDS"])
        logger.debug("Raw connection from %s", client_ip)

        try:
            first = sock.recv(RECV_CHUNK)
        except socket.timeout:
            logger.debug("Raw connection from %s idle before any data", client_ip)
            return
        except OSError as exc:
            logger.debug("Raw connection from %s failed before any data: %s", client_ip, exc)
            return
        if not first:
            logger.debug("Raw connection from %s closed without data; no job", client_ip)
            return

        account_id = service.resolver.resolve_address(client_ip)
        if account_id is None and not config["ALLOW_UNREGISTERED_IPS"]:
            logger.warning("Rejected raw job from unregistered address %s", client_ip)
            return

        try:
            service.reserve_capacity()
        except CapacityError as exc:
            logger.warning("Rejected raw job from %s: %s", client_ip, exc)
            return

        try:
            writer = service.open_spool(config["RAW_MAX_BYTES"])
        except SpoolError as exc:
            service.release_capacity()
            self._spool_failed(exc, client_ip)
            return

        reset: Optional[OSError] = None
        try:
            writer.write(first)
            while True:
                try:
                    chunk = sock.recv(RECV_CHUNK)
                except socket.timeout:
                    logger.info(
                        "Raw connection from %s idle for %ss; closing job at %d bytes",
                        client_ip,
                        config["RAW_IDLE_TIMEOUT_SECONDS"],
                        writer.size,
                    )
                    break
                except OSError as exc:
                    reset = exc
                    break
                if not chunk:
                    break
                writer.write(chunk)
        except SpoolError as exc:
            writer.abort()
            service.release_capacity()
            self._spool_failed(exc, client_ip)
            return

        if reset is not None:
            service.release_capacity()
            job = service.record_failed_submission(
                writer,
                JobOrigin.RAW,
                client_ip,
                account_id,
                f"Connection reset after {writer.size} bytes; partial data kept",
                "partial-data",
            )
            logger.warning("Raw job %s from %s interrupted: %s", job.id, client_ip, reset)
            return

        try:
            job = service.submit(writer, JobOrigin.RAW, client_ip, account_id=account_id, reserved=True)
        except SpoolError as exc:
            writer.abort()
            self._spool_failed(exc, client_ip)
            return
        self._accepted(job)

    def _accepted(self, job: PrintJob) -> None:
        logger.info(
            "Raw job %s received from %s: %d bytes, format=%s, title=%r",
            job.id,
            job.source_ip,
            job.size,
            job.input_format,
            job.document_name,
        )

    def _spool_failed(self, exc: SpoolError, client_ip: str) -> None:
        logger.error("Spool failure for raw job from %s: %s", client_ip, exc)
        if exc.exhausted:
            raise exc


class RawServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, service: PrintService, config: Dict[str, Any]) -> None:
        self.service = service
        self.config = config
        self._slots = threading.BoundedSemaphore(max(1, int(config["RAW_MAX_CONNECTIONS"])))
        super().__init__(server_address, RawHandler)

    def verify_request(self, request, client_address) -> bool:
        if not self._slots.acquire(blocking=False):
            logger.warning(
                "Connection limit (%s) reached; refusing %s",
                self.config["RAW_MAX_CONNECTIONS"],
                client_address[0] if client_address else "?",
            )
            return False
        return True

    def process_request_thread(self, request, client_address) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            self._slots.release()

    def handle_error(self, request, client_address) -> None:
        logger.exception("Error handling raw connection from %s", client_address[0] if client_address else "?")


def serve_raw(service: PrintService, config: Dict[str, Any]) -> RawServer:
    """Bind the raw listener and serve it on a background thread."""
    server = RawServer((config["RAW_LISTEN_HOST"], config["RAW_LISTEN_PORT"]), service, config)
    thread = threading.Thread(target=server.serve_forever, name="raw-listener", daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    logger.info("Raw printing listener on %s:%s", host, port)
    return server
