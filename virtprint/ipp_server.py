import base64
import binascii
import logging
import math
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional

from . import __version__
from .documents import OCTET_STREAM, SUPPORTED_FORMATS
from .errors import (
    AuthenticationError,
    CapacityError,
    JobNotFound,
    JobStateError,
    NotAuthorized,
    ProtocolError,
    SpoolError,
)
from .identity import normalize_address
from .ipp import (
    IPP_OP_CANCEL_JOB,
    IPP_OP_GET_JOB_ATTRIBUTES,
    IPP_OP_GET_JOBS,
    IPP_OP_GET_PRINTER_ATTRIBUTES,
    IPP_OP_PRINT_JOB,
    IPP_OP_VALIDATE_JOB,
    JOB_STATE_ABORTED,
    JOB_STATE_CANCELED,
    JOB_STATE_COMPLETED,
    JOB_STATE_PENDING,
    JOB_STATE_PROCESSING,
    PRINTER_STATE_IDLE,
    PRINTER_STATE_PROCESSING,
    STATUS_BAD_REQUEST,
    STATUS_BUSY,
    STATUS_DOCUMENT_FORMAT_NOT_SUPPORTED,
    STATUS_INTERNAL_ERROR,
    STATUS_NOT_AUTHENTICATED,
    STATUS_NOT_AUTHORIZED,
    STATUS_NOT_FOUND,
    STATUS_NOT_POSSIBLE,
    STATUS_OK,
    STATUS_OPERATION_NOT_SUPPORTED,
    STATUS_REQUEST_ENTITY_TOO_LARGE,
    STATUS_VERSION_NOT_SUPPORTED,
    SUPPORTED_OPERATIONS,
    TAG_JOB_ATTRIBUTES,
    TAG_PRINTER_ATTRIBUTES,
    VT_CHARSET,
    VT_ENUM,
    VT_INTEGER,
    VT_KEYWORD,
    VT_MIME_MEDIA_TYPE,
    VT_NAME_WITHOUT_LANGUAGE,
    VT_NATURAL_LANGUAGE,
    VT_TEXT_WITHOUT_LANGUAGE,
    VT_URI,
    IppRequest,
    IppResponse,
    op_name,
    peek_request_header,
    read_ipp_request,
)
from .models import JobOrigin, JobStatus, PrintJob, parse_network
from .service import PrintService

logger = logging.getLogger("ipp")

BODY_CHUNK = 64 * 1024

AUTH_OPERATIONS = frozenset({IPP_OP_PRINT_JOB, IPP_OP_VALIDATE_JOB, IPP_OP_GET_JOBS, IPP_OP_CANCEL_JOB})

JOB_STATES = {
    JobStatus.PENDING: (JOB_STATE_PENDING, "job-incoming"),
    JobStatus.PROCESSING: (JOB_STATE_PROCESSING, "job-printing"),
    JobStatus.CANCELLED: (JOB_STATE_CANCELED, "job-canceled-by-user"),
    JobStatus.FAILED: (JOB_STATE_ABORTED, "job-aborted-by-system"),
    JobStatus.COMPLETED: (JOB_STATE_COMPLETED, "job-completed-successfully"),
}

WHICH_JOBS = {
    "not-completed": (JobStatus.PENDING, JobStatus.PROCESSING),
    "completed": (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED),
}


def _redacted_headers(headers) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for k, v in headers.items():
        lk = k.lower()
        if lk in {"authorization", "proxy-authorization", "cookie"}:
            out[k] = "<redacted>"
        else:
            out[k] = v
    return out


class _ChallengeRequired(Exception):
    """No credentials were sent; answer with an HTTP Basic challenge."""


class RequestBody:
    """Incremental reader over a Content-Length or chunked HTTP body.

    Never yields more than ``max_bytes`` in total. The first eight bytes
    are kept in ``prefix`` so an error response can still echo the
    request-id of a message that failed to parse.
    """

    def __init__(self, rfile, max_bytes: int, length: Optional[int] = None, chunked: bool = False) -> None:
        self.rfile = rfile
        self.max_bytes = max_bytes
        self.chunked = chunked
        self.remaining = length or 0
        self.total = 0
        self.prefix = bytearray()
        self._chunk_left = 0
        self._done = not chunked and not length

    def _next_chunk(self) -> None:
        # chunk-size line (hex) optionally followed by extensions
        line = self.rfile.readline(65536)
        if not line:
            raise ProtocolError("chunked body truncated")
        line = line.strip()
        if b";" in line:
            line = line.split(b";", 1)[0]
        try:
            chunk_size = int(line.decode("ascii", errors="ignore") or "0", 16)
        except ValueError:
            raise ProtocolError("Invalid chunk size")
        if chunk_size < 0:
            raise ProtocolError("Invalid chunk size")
        if chunk_size == 0:
            # consume trailer headers until CRLF
            while True:
                trailer = self.rfile.readline(65536)
                if not trailer or trailer in {b"\r\n", b"\n"}:
                    break
            self._done = True
        self._chunk_left = chunk_size

    def read(self, n: int = -1) -> bytes:
        if n is None or n < 0:
            parts = []
            while True:
                part = self.read(BODY_CHUNK)
                if not part:
                    return b"".join(parts)
                parts.append(part)
        if self._done or n == 0:
            return b""

        if self.chunked:
            if self._chunk_left == 0:
                self._next_chunk()
                if self._done:
                    return b""
            want = min(n, self._chunk_left)
            data = self.rfile.read(want)
            if len(data) < want:
                raise ProtocolError("chunked body truncated")
            self._chunk_left -= len(data)
            if self._chunk_left == 0:
                # consume CRLF
                self.rfile.readline(3)
        else:
            want = min(n, self.remaining)
            data = self.rfile.read(want)
            if not data:
                raise ProtocolError(f"request body truncated with {self.remaining} bytes missing")
            self.remaining -= len(data)
            if self.remaining == 0:
                self._done = True

        self.total += len(data)
        if self.total > self.max_bytes:
            raise ProtocolError(f"request body exceeds {self.max_bytes} bytes", STATUS_REQUEST_ENTITY_TOO_LARGE)
        if len(self.prefix) < 8:
            self.prefix += data[: 8 - len(self.prefix)]
        return data

    def drain(self) -> int:
        drained = 0
        while True:
            chunk = self.read(BODY_CHUNK)
            if not chunk:
                return drained
            drained += len(chunk)


class IppHandler(BaseHTTPRequestHandler):
    server_version = f"virtprint/{__version__}"
    protocol_version = "HTTP/1.1"

    server: "IppServer"

    def do_GET(self) -> None:
        path_only = (self.path or "/").split("?", 1)[0]
        if path_only in {"/healthz", "/health"}:
            body = b"ok\n"
            self.send_response(200)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            try:
                self.wfile.write(body)
            except ConnectionResetError:
                logger.debug("Client reset connection while writing health response")
            return

        self.send_error(404)

    def do_POST(self) -> None:
        config = self.server.config
        path_only = (self.path or "/").split("?", 1)[0]

        if config.get("LOG_HEADERS"):
            logger.debug(
                "HTTP request: client=%s path=%s headers=%s",
                self.client_address,
                path_only,
                _redacted_headers(self.headers),
            )
        else:
            logger.debug("HTTP request: client=%s path=%s", self.client_address, path_only)

        if not self.server.accepts_path(path_only):
            logger.warning("Unexpected path %s (expected %s)", path_only, config["IPP_PATH"])
            self.send_error(404)
            return

        client_ip = self.source_address()

        # Some clients (incl. macOS printing stack) use Expect: 100-continue.
        if (self.headers.get("Expect") or "").lower() == "100-continue":
            logger.debug("Sending 100-continue")
            self.send_response_only(100)
            self.end_headers()

        body = self._open_body()
        if body is None:
            return

        try:
            request = read_ipp_request(body)
        except ProtocolError as exc:
            major, minor, request_id = peek_request_header(bytes(body.prefix))
            logger.warning("Malformed IPP request from %s: %s", client_ip, exc)
            self._finish_body(body)
            self._send_ipp(IppResponse(exc.status, request_id, _reply_version(major, minor), str(exc)))
            return

        logger.info(
            "IPP %s from %s (version=%s request_id=%s)",
            op_name(request.operation_id),
            client_ip,
            request.version,
            request.request_id,
        )

        try:
            response = self._dispatch(request, body, client_ip)
        except _ChallengeRequired:
            self._send_challenge()
            return
        except ProtocolError as exc:
            logger.warning("Rejected %s from %s: %s", op_name(request.operation_id), client_ip, exc)
            response = self._reply(request, exc.status, str(exc))
        except SpoolError as exc:
            logger.error("Spool failure for IPP job from %s: %s", client_ip, exc)
            self.close_connection = True
            self._send_ipp(self._reply(request, STATUS_INTERNAL_ERROR, "Spool failure"))
            if exc.exhausted:
                raise
            return
        except (ConnectionResetError, ConnectionAbortedError, BrokenPipeError) as exc:
            logger.warning("Connection from %s lost during %s: %s", client_ip, op_name(request.operation_id), exc)
            self.close_connection = True
            return

        self._finish_body(body)
        self._send_ipp(response)
        logger.debug("IPP response sent: status=0x%04x request_id=%s", response.status, request.request_id)

    # ---- transport helpers -------------------------------------------

    def source_address(self) -> str:
        peer = (self.client_address[0] if self.client_address else "") or ""
        if not self.server.is_trusted_proxy(peer):
            return peer
        forwarded = (self.headers.get("X-Forwarded-For") or "").split(",")[0].strip()
        if forwarded:
            return forwarded
        real_ip = (self.headers.get("X-Real-IP") or "").strip()
        return real_ip or peer

    def _open_body(self) -> Optional[RequestBody]:
        max_bytes = self.server.config["IPP_MAX_BYTES"]
        length = self.headers.get("Content-Length")
        transfer_encoding = (self.headers.get("Transfer-Encoding") or "").lower()

        if "chunked" in transfer_encoding:
            return RequestBody(self.rfile, max_bytes, chunked=True)
        if length is not None:
            try:
                content_length = int(length)
            except ValueError:
                self.send_error(400)
                return None
            if content_length < 0 or content_length > max_bytes:
                logger.warning("Invalid Content-Length=%s (max=%s)", content_length, max_bytes)
                self.send_error(413)
                return None
            return RequestBody(self.rfile, max_bytes, length=content_length)
        # No Content-Length and no chunked encoding: treat as empty body.
        return RequestBody(self.rfile, max_bytes)

    def _finish_body(self, body: RequestBody) -> None:
        # leave the connection positioned at the next request
        try:
            drained = body.drain()
        except ProtocolError as exc:
            logger.debug("Closing connection after unreadable body: %s", exc)
            self.close_connection = True
            return
        if drained:
            logger.debug("Discarded %d unread body bytes", drained)

    def _send_ipp(self, response: IppResponse) -> None:
        payload = response.to_bytes()
        try:
            self.send_response(200)
            self.send_header("Content-Type", "application/ipp")
            self.send_header("Content-Length", str(len(payload)))
            if self.close_connection:
                self.send_header("Connection", "close")
            self.end_headers()
            self.wfile.write(payload)
        except (ConnectionResetError, BrokenPipeError):
            logger.debug("Client reset connection while writing response")
            self.close_connection = True

    def _send_challenge(self) -> None:
        realm = self.server.config["IPP_AUTH_REALM"]
        body = b"Authentication required\n"
        self.close_connection = True
        try:
            self.send_response(401)
            self.send_header("WWW-Authenticate", f'Basic realm="{realm}"')
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.send_header("Connection", "close")
            self.end_headers()
            self.wfile.write(body)
        except (ConnectionResetError, BrokenPipeError):
            logger.debug("Client reset connection while writing challenge")

    def log_message(self, format: str, *args) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    # ---- dispatch ----------------------------------------------------

    def _dispatch(self, request: IppRequest, body: RequestBody, client_ip: str) -> IppResponse:
        if request.version_major not in (1, 2):
            return self._reply(
                request,
                STATUS_VERSION_NOT_SUPPORTED,
                f"IPP version {request.version} is not supported",
            )

        handlers: Dict[int, Callable[..., IppResponse]] = {
            IPP_OP_PRINT_JOB: self._print_job,
            IPP_OP_VALIDATE_JOB: self._validate_job,
            IPP_OP_CANCEL_JOB: self._cancel_job,
            IPP_OP_GET_JOB_ATTRIBUTES: self._get_job_attributes,
            IPP_OP_GET_JOBS: self._get_jobs,
            IPP_OP_GET_PRINTER_ATTRIBUTES: self._get_printer_attributes,
        }
        handler = handlers.get(request.operation_id)
        if handler is None:
            return self._reply(
                request,
                STATUS_OPERATION_NOT_SUPPORTED,
                f"{op_name(request.operation_id)} is not supported",
            )

        account_id = None
        if request.operation_id in AUTH_OPERATIONS:
            try:
                account_id = self._authenticate(client_ip)
            except AuthenticationError as exc:
                logger.warning("Authentication failed for %s from %s: %s", op_name(request.operation_id), client_ip, exc)
                return self._reply(request, STATUS_NOT_AUTHENTICATED, "Invalid credentials")

        return handler(request, body, client_ip, account_id)

    def _authenticate(self, client_ip: str) -> str:
        header = (self.headers.get("Authorization") or "").strip()
        if not header:
            if self.server.config["IPP_ALLOW_IP_AUTH"]:
                account_id = self.server.service.resolver.resolve_address(client_ip)
                if account_id:
                    logger.debug("Attributed %s to %s by address", client_ip, account_id)
                    return account_id
            raise _ChallengeRequired()

        scheme, _, encoded = header.partition(" ")
        if scheme.lower() != "basic":
            raise AuthenticationError(f"unsupported authorization scheme {scheme!r}")
        try:
            decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise AuthenticationError("malformed Basic credentials")
        account_id, sep, secret = decoded.partition(":")
        if not sep or not account_id:
            raise AuthenticationError("malformed Basic credentials")
        token = self.server.service.resolver.resolve_token(account_id, secret)
        return token.account_id

    def _reply(self, request: IppRequest, status: int, message: Optional[str] = None) -> IppResponse:
        return IppResponse(status, request.request_id, _reply_version(request.version_major, request.version_minor), message)

    def printer_uri(self) -> str:
        config = self.server.config
        port = self.server.server_address[1]
        host = config.get("EXTERNAL_HOSTNAME") or ""
        if host:
            if ":" not in host:
                host = f"{host}:{port}"
        else:
            host = self.headers.get("Host") or f"127.0.0.1:{port}"
        return f"ipp://{host}{config['IPP_PATH']}"

    def _add_job(self, response: IppResponse, job: PrintJob) -> None:
        state, reason = JOB_STATES[job.status]
        printer_uri = self.printer_uri()
        response.group(TAG_JOB_ATTRIBUTES)
        response.add(VT_INTEGER, "job-id", job.number)
        response.add(VT_URI, "job-uri", f"{printer_uri}/jobs/{job.number}")
        response.add(VT_URI, "job-printer-uri", printer_uri)
        response.add(VT_ENUM, "job-state", state)
        response.add(VT_KEYWORD, "job-state-reasons", reason)
        if job.error:
            response.add(VT_TEXT_WITHOUT_LANGUAGE, "job-state-message", job.error[:255])
        response.add(VT_NAME_WITHOUT_LANGUAGE, "job-name", job.document_name or job.id)
        if job.user_name:
            response.add(VT_NAME_WITHOUT_LANGUAGE, "job-originating-user-name", job.user_name)
        response.add(VT_INTEGER, "job-k-octets", math.ceil(job.size / 1024))
        response.add(VT_INTEGER, "time-at-creation", int(job.created_at.timestamp()))
        if job.page_count:
            response.add(VT_INTEGER, "job-impressions-completed", job.page_count)

    @staticmethod
    def _document_format(request: IppRequest) -> str:
        document_format = request.get("document-format") or OCTET_STREAM
        if document_format not in SUPPORTED_FORMATS:
            raise ProtocolError(
                f"document-format {document_format!r} is not supported",
                STATUS_DOCUMENT_FORMAT_NOT_SUPPORTED,
            )
        return document_format

    @staticmethod
    def _job_number(request: IppRequest) -> int:
        job_id = request.get("job-id")
        if isinstance(job_id, int) and not isinstance(job_id, bool):
            return job_id
        job_uri = request.get("job-uri")
        if isinstance(job_uri, str):
            tail = job_uri.rstrip("/").rsplit("/", 1)[-1]
            if tail.isdigit():
                return int(tail)
        raise ProtocolError("job-id or job-uri is required")

    # ---- operations --------------------------------------------------

    def _print_job(self, request: IppRequest, body: RequestBody, client_ip: str, account_id: str) -> IppResponse:
        document_format = self._document_format(request)
        service = self.server.service
        config = self.server.config

        try:
            service.reserve_capacity()
        except CapacityError as exc:
            logger.warning("Rejected Print-Job from %s: %s", client_ip, exc)
            return self._reply(request, STATUS_BUSY, str(exc))

        try:
            writer = service.open_spool(config["IPP_MAX_BYTES"])
        except SpoolError:
            service.release_capacity()
            raise

        # any failure while the body arrives (including a reset peer) drops the spool and the slot
        try:
            while True:
                chunk = body.read(BODY_CHUNK)
                if not chunk:
                    break
                writer.write(chunk)
        except BaseException:
            writer.abort()
            service.release_capacity()
            raise

        if writer.size == 0:
            writer.abort()
            service.release_capacity()
            return self._reply(request, STATUS_BAD_REQUEST, "Print-Job carried no document data")

        try:
            job = service.submit(
                writer,
                JobOrigin.IPP,
                client_ip,
                account_id=account_id,
                input_format=document_format,
                document_name=request.get("job-name") or request.get("document-name") or "",
                user_name=request.get("requesting-user-name") or "",
                reserved=True,
            )
        except BaseException:
            # submit already gave the slot back
            writer.abort()
            raise
        logger.info(
            "IPP job %s (job-id %d) received from %s for %s: %d bytes, format=%s",
            job.id,
            job.number,
            client_ip,
            account_id,
            job.size,
            job.input_format,
        )
        response = self._reply(request, STATUS_OK)
        self._add_job(response, service.get_job(job.id))
        return response

    def _validate_job(self, request: IppRequest, body: RequestBody, client_ip: str, account_id: str) -> IppResponse:
        self._document_format(request)
        return self._reply(request, STATUS_OK)

    def _get_printer_attributes(
        self, request: IppRequest, body: RequestBody, client_ip: str, account_id: Optional[str]
    ) -> IppResponse:
        config = self.server.config
        service = self.server.service
        queued = service.queued_job_count()

        response = self._reply(request, STATUS_OK)
        response.group(TAG_PRINTER_ATTRIBUTES)
        response.add(VT_URI, "printer-uri-supported", self.printer_uri())
        response.add(VT_KEYWORD, "uri-authentication-supported", "basic")
        response.add(VT_KEYWORD, "uri-security-supported", "none")
        response.add(VT_NAME_WITHOUT_LANGUAGE, "printer-name", config["PRINTER_NAME"])
        response.add(VT_TEXT_WITHOUT_LANGUAGE, "printer-info", config["PRINTER_NAME"])
        response.add(VT_TEXT_WITHOUT_LANGUAGE, "printer-make-and-model", "virtprint Virtual Printer")
        response.add(VT_ENUM, "printer-state", PRINTER_STATE_PROCESSING if queued else PRINTER_STATE_IDLE)
        response.add(VT_KEYWORD, "printer-state-reasons", "none")
        response.add_bool("printer-is-accepting-jobs", service.accepting_jobs())
        response.add(VT_INTEGER, "printer-up-time", self.server.uptime())
        response.add(VT_INTEGER, "queued-job-count", queued)
        response.add(VT_KEYWORD, "ipp-versions-supported", ["1.0", "1.1", "2.0"])
        response.add(VT_ENUM, "operations-supported", list(SUPPORTED_OPERATIONS))
        response.add(VT_CHARSET, "charset-configured", "utf-8")
        response.add(VT_CHARSET, "charset-supported", "utf-8")
        response.add(VT_NATURAL_LANGUAGE, "natural-language-configured", "en")
        response.add(VT_NATURAL_LANGUAGE, "generated-natural-language-supported", "en")
        response.add(VT_MIME_MEDIA_TYPE, "document-format-default", OCTET_STREAM)
        response.add(VT_MIME_MEDIA_TYPE, "document-format-supported", list(SUPPORTED_FORMATS))
        response.add(VT_KEYWORD, "compression-supported", "none")
        response.add(VT_KEYWORD, "pdl-override-supported", "attempted")
        response.add_bool("requesting-user-name-supported", True)
        response.add_bool("multiple-document-jobs-supported", False)
        response.add(VT_INTEGER, "multiple-operation-time-out", 120)

        # Without these, macOS may default the print pipeline/preview to B/W.
        response.add_bool("color-supported", True)
        response.add(VT_KEYWORD, "print-color-mode-supported", ["auto", "color", "monochrome"])
        response.add(VT_KEYWORD, "print-color-mode-default", "auto")
        return response

    def _get_jobs(self, request: IppRequest, body: RequestBody, client_ip: str, account_id: str) -> IppResponse:
        which = request.get("which-jobs") or "not-completed"
        statuses = WHICH_JOBS.get(which)
        if statuses is None:
            raise ProtocolError(f"which-jobs {which!r} is not supported")
        limit = request.get("limit")
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            limit = None

        jobs = self.server.service.list_jobs(account_id=account_id, statuses=statuses, limit=limit)
        response = self._reply(request, STATUS_OK)
        for job in jobs:
            self._add_job(response, job)
        logger.debug("Get-Jobs for %s: %d %s jobs", account_id, len(jobs), which)
        return response

    def _get_job_attributes(
        self, request: IppRequest, body: RequestBody, client_ip: str, account_id: Optional[str]
    ) -> IppResponse:
        number = self._job_number(request)
        try:
            job = self.server.service.get_job_by_number(number)
        except JobNotFound:
            return self._reply(request, STATUS_NOT_FOUND, f"job {number} not found")
        response = self._reply(request, STATUS_OK)
        self._add_job(response, job)
        return response

    def _cancel_job(self, request: IppRequest, body: RequestBody, client_ip: str, account_id: str) -> IppResponse:
        number = self._job_number(request)
        service = self.server.service
        try:
            job = service.get_job_by_number(number)
            job = service.cancel_job(job.id, account_id)
        except JobNotFound:
            return self._reply(request, STATUS_NOT_FOUND, f"job {number} not found")
        except NotAuthorized:
            logger.warning("%s tried to cancel job %d owned by someone else", account_id, number)
            return self._reply(request, STATUS_NOT_AUTHORIZED, "Job belongs to another account")
        except JobStateError as exc:
            return self._reply(request, STATUS_NOT_POSSIBLE, str(exc))
        logger.info("Job %s (job-id %d) cancel requested by %s; now %s", job.id, number, account_id, job.status.value)
        return self._reply(request, STATUS_OK)


def _reply_version(major: int, minor: int):
    if major in (1, 2):
        return major, minor
    return 1, 1


class IppServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address, service: PrintService, config: Dict[str, Any]) -> None:
        self.service = service
        self.config = config
        self.started_at = time.monotonic()
        self.trusted_proxies = [parse_network(value) for value in config.get("IPP_TRUSTED_PROXIES") or []]
        super().__init__(server_address, IppHandler)

    def accepts_path(self, path: str) -> bool:
        base = self.config["IPP_PATH"].rstrip("/")
        return path in {"/", base, base + "/"} or path.startswith(base + "/")

    def is_trusted_proxy(self, address: str) -> bool:
        if not self.trusted_proxies or not address:
            return False
        try:
            ip = normalize_address(address)
        except ValueError:
            return False
        return any(ip.version == net.version and ip in net for net in self.trusted_proxies)

    def uptime(self) -> int:
        return max(1, int(time.monotonic() - self.started_at))

    def handle_error(self, request, client_address) -> None:
        logger.exception("Error handling IPP request from %s", client_address[0] if client_address else "?")


def serve_ipp(service: PrintService, config: Dict[str, Any]) -> IppServer:
    """Bind the IPP listener and serve it on a background thread."""
    server = IppServer((config["IPP_LISTEN_HOST"], config["IPP_LISTEN_PORT"]), service, config)
    thread = threading.Thread(target=server.serve_forever, name="ipp-listener", daemon=True)
    thread.start()
    host, port = server.server_address[:2]
    logger.info("Listening on http://%s:%s%s", host, port, config["IPP_PATH"])
    return server
