import json
import os

import pytest

from virtprint.cli import main
from virtprint.identity import IdentityDirectory, IdentityResolver
from virtprint.jobstore import JobStore
from virtprint.models import JobOrigin, JobStatus


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    path = tmp_path / "data"
    monkeypatch.setenv("DATA_DIR", str(path))
    monkeypatch.delenv("IDENTITY_FILE", raising=False)
    return path


def identity(data_dir):
    return IdentityDirectory.load(os.path.join(str(data_dir), "identity.json"))


def test_token_lifecycle(data_dir, capsys):
    assert main(["token", "create", "acct-a", "--name", "office laptop", "--expires-days", "30"]) == 0
    out = capsys.readouterr().out
    secret = next(line.split(": ", 1)[1] for line in out.splitlines() if line.startswith("Secret: "))
    token = IdentityResolver(identity(data_dir)).resolve_token("acct-a", secret)
    assert token.name == "office laptop"
    assert token.expires_at is not None

    main(["token", "list", "acct-a"])
    listing = capsys.readouterr().out
    assert token.id in listing and "valid" in listing
    assert secret not in listing

    main(["token", "revoke", token.id])
    assert "revoked" in capsys.readouterr().out
    main(["token", "list"])
    assert "revoked" in capsys.readouterr().out


def test_revoke_unknown_token(data_dir):
    with pytest.raises(SystemExit) as excinfo:
        main(["token", "revoke", "nope"])
    assert "No token with id nope" in str(excinfo.value)


def test_ip_registrations(data_dir, capsys):
    main(["ip", "add", "acct-a", "192.168.10.0/24", "--description", "branch office"])
    main(["ip", "add", "acct-b", "192.168.10.20"])
    capsys.readouterr()

    resolver = IdentityResolver(identity(data_dir))
    assert resolver.resolve_address("192.168.10.20") == "acct-b"
    assert resolver.resolve_address("192.168.10.21") == "acct-a"

    main(["ip", "list", "--account", "acct-a"])
    listing = capsys.readouterr().out
    assert "192.168.10.0/24" in listing and "branch office" in listing
    assert "acct-b" not in listing

    reg_id = listing.split()[0]
    main(["ip", "remove", reg_id])
    assert IdentityResolver(identity(data_dir)).resolve_address("192.168.10.21") is None


def test_ip_add_rejects_bad_network(data_dir):
    with pytest.raises(SystemExit) as excinfo:
        main(["ip", "add", "acct-a", "not-an-address"])
    assert "Invalid address or network" in str(excinfo.value)


def test_jobs_list_and_cancel(data_dir, capsys):
    store = JobStore(data_dir, max_attempts=3)
    owned = store.create("jobOwned0001", JobOrigin.RAW, "10.1.1.1", data_dir / "a.bin", 10, account_id="acct-a")
    orphan = store.create("jobOrphan001", JobOrigin.IPP, "10.1.1.2", data_dir / "b.bin", 20)

    main(["jobs", "list", "--orphaned"])
    listing = capsys.readouterr().out
    assert orphan.id in listing and owned.id not in listing

    main(["jobs", "cancel", owned.id])
    assert f"Job {owned.id}: cancelled" in capsys.readouterr().out
    assert JobStore(data_dir).get(owned.id).status == JobStatus.CANCELLED

    with pytest.raises(SystemExit) as excinfo:
        main(["jobs", "cancel", owned.id])
    assert "already cancelled" in str(excinfo.value)

    with pytest.raises(SystemExit):
        main(["jobs", "cancel", "missing"])


def spool_job(service, payload=b"%!PS\nshowpage\n"):
    writer = service.open_spool(1024)
    writer.write(payload)
    return service.submit(writer, JobOrigin.RAW, "10.1.1.1", account_id="acct-a")


def record_on_disk(service, job_id):
    with open(service.store.jobs_dir / job_id / "job.json", encoding="utf-8") as fh:
        return json.load(fh)


def test_cancel_from_command_line_is_honoured_by_running_service(data_dir, service, renderer, capsys):
    job = spool_job(service)

    assert main(["jobs", "cancel", job.id]) == 0
    assert f"Job {job.id}: cancelled" in capsys.readouterr().out

    assert service.pool.process(job.id) is None
    assert renderer.calls == []
    assert service.get_job(job.id).status == JobStatus.CANCELLED
    assert record_on_disk(service, job.id)["status"] == "cancelled"


def test_cancel_from_command_line_reaches_converting_worker(data_dir, service, capsys):
    job = spool_job(service)
    service.store.claim(job.id)

    main(["jobs", "cancel", job.id])
    assert "(cancel requested)" in capsys.readouterr().out

    assert service.store.is_cancel_requested(job.id)
    assert service.store.finish_cancel(job.id).status == JobStatus.CANCELLED
    assert record_on_disk(service, job.id)["status"] == "cancelled"


def test_jobs_list_leaves_processing_records_alone(data_dir, service, capsys):
    job = spool_job(service)
    service.store.claim(job.id)

    main(["jobs", "list"])
    assert "processing" in capsys.readouterr().out
    assert record_on_disk(service, job.id)["status"] == "processing"

    done = service.store.complete(job.id, data_dir / "document.pdf", None, 1)
    assert done.status == JobStatus.COMPLETED


def test_cancel_by_job_number(data_dir, service, capsys):
    spool_job(service)
    second = spool_job(service)

    main(["jobs", "cancel", str(second.number)])
    assert f"Job {second.id}: cancelled" in capsys.readouterr().out
    assert service.get_job(second.id).status == JobStatus.CANCELLED
