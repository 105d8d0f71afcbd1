import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from .models import JobStatus, PrintJob

logger = logging.getLogger("notify")


def _resolve_endpoint_template(endpoint: str, account_id: str) -> str:
    if not endpoint:
        return endpoint
    placeholders = ("{account_id}", "<accountId>")
    if any(p in endpoint for p in placeholders):
        if not account_id:
            return ""
        return endpoint.replace("{account_id}", account_id).replace("<accountId>", account_id)
    return endpoint


def post_job_update(
    endpoint: str,
    auth_header: Optional[str],
    auth_value: Optional[str],
    timeout_seconds: int,
    file_field: str,
    include_meta_fields: bool,
    job: PrintJob,
) -> None:
    logger.info("POSTing job %s (%s) to %s", job.id, job.status.value, endpoint)
    headers = {}
    if auth_header and auth_value:
        headers[auth_header] = auth_value

    data: Dict[str, Any] = {"job_id": job.id, "status": job.status.value}
    if include_meta_fields:
        data.update(
            {
                "job_number": str(job.number),
                "account_id": job.account_id or "",
                "origin": job.origin.value,
                "source_ip": job.source_ip,
                "page_count": str(job.page_count),
                "document_name": job.document_name,
                "error": job.error or "",
                "error_code": job.error_code or "",
            }
        )

    files = None
    if job.status == JobStatus.COMPLETED and job.thumbnail_path:
        thumb = Path(job.thumbnail_path)
        if thumb.exists():
            files = {(file_field or "file"): (f"{job.id}_p1.png", thumb.read_bytes(), "image/png")}

    try:
        resp = requests.post(endpoint, data=data, files=files, headers=headers, timeout=timeout_seconds)
        logger.info("POST response: status=%s", resp.status_code)
        if resp.status_code >= 400:
            try:
                body = resp.text
            except Exception:
                body = "<unreadable response body>"
            if body and len(body) > 2000:
                body = body[:2000] + "...<truncated>"
            if body:
                logger.warning("POST response body: %s", body)
        resp.raise_for_status()
    except Exception:
        # a notification failure never touches the job
        logger.exception("Notification for job %s failed", job.id)


class Notifier:
    """Fire-and-forget webhook for terminal job transitions."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self.endpoint = config.get("NOTIFY_ENDPOINT") or ""
        self.auth_header = config.get("NOTIFY_AUTH_HEADER") or ""
        self.auth_value = config.get("NOTIFY_AUTH_VALUE") or ""
        self.timeout_seconds = int(config.get("NOTIFY_TIMEOUT_SECONDS", 30))
        self.file_field = config.get("NOTIFY_FILE_FIELD") or "file"
        self.include_meta_fields = bool(config.get("NOTIFY_INCLUDE_META_FIELDS", True))

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    def job_finished(self, job: PrintJob) -> Optional[threading.Thread]:
        if not self.enabled:
            return None
        endpoint = _resolve_endpoint_template(self.endpoint, job.account_id or "")
        if not endpoint:
            logger.debug("Notification skipped for orphaned job %s", job.id)
            return None
        # POST in background so workers move on to the next job
        thread = threading.Thread(
            target=post_job_update,
            kwargs={
                "endpoint": endpoint,
                "auth_header": self.auth_header,
                "auth_value": self.auth_value,
                "timeout_seconds": self.timeout_seconds,
                "file_field": self.file_field,
                "include_meta_fields": self.include_meta_fields,
                "job": job,
            },
            daemon=True,
        )
        thread.start()
        return thread
