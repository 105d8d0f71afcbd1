from pathlib import Path

import pytest

from virtprint.errors import NotAuthorized
from virtprint.models import JobOrigin, JobStatus


def spool_job(service, payload=b"%!PS-Adobe-3.0\n%%Title: (Memo)\nshowpage\n", account_id="acct-a"):
    writer = service.open_spool(4096)
    writer.write(payload)
    return service.submit(writer, JobOrigin.RAW, "10.2.2.2", account_id=account_id)


def test_converted_job_exposes_document_and_thumbnail(service):
    job = spool_job(service)
    assert job.document_name == "Memo"

    done = service.pool.process(job.id)

    assert done.status == JobStatus.COMPLETED
    job_dir = Path(job.spool_path).parent
    assert service.document_path(job.id) == job_dir / "document.pdf"
    assert service.document_path(job.id).read_bytes().startswith(b"%PDF")
    assert service.thumbnail_bytes(job.id) == b"\x89PNG\r\n\x1a\nfake"


def test_unconverted_job_has_no_document_or_thumbnail(service):
    job = spool_job(service)

    assert service.document_path(job.id) is None
    assert service.thumbnail_bytes(job.id) is None
    assert service.queued_job_count() == 1


def test_missing_thumbnail_file_reads_as_none(service):
    job = spool_job(service)
    service.pool.process(job.id)
    Path(service.get_job(job.id).thumbnail_path).unlink()

    assert service.thumbnail_bytes(job.id) is None


def test_cancel_job_checks_owner(service):
    job = spool_job(service)

    with pytest.raises(NotAuthorized):
        service.cancel_job(job.id, account_id="acct-b")
    assert service.get_job(job.id).status == JobStatus.PENDING

    assert service.cancel_job(job.id, account_id="acct-a").status == JobStatus.CANCELLED
    assert service.queued_job_count() == 0
