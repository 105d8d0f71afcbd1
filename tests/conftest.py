"""Shared fixtures: temp data dir, config dict, identity directory, service."""

import time
from pathlib import Path

import pytest

from virtprint.config import load_config
from virtprint.identity import IdentityDirectory
from virtprint.render import RenderResult
from virtprint.service import PrintService


class FakeRenderer:
    """Stands in for Ghostscript; each queued outcome drives one render call.

    An outcome is an exception to raise or a callable that receives the
    cancel check. With no outcomes left every render succeeds.
    """

    def __init__(self, outcomes=None, page_count=1):
        self.outcomes = list(outcomes or [])
        self.page_count = page_count
        self.calls = []

    def render(self, input_path, work_dir, cancel_check=None):
        self.calls.append(Path(input_path))
        work_dir = Path(work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            outcome(cancel_check)
        pdf = work_dir / "document.pdf"
        pdf.write_bytes(b"%PDF-1.4\n% fake\n")
        png = work_dir / "thumbnail.png"
        png.write_bytes(b"\x89PNG\r\n\x1a\nfake")
        return RenderResult(pdf, png, self.page_count)


def wait_for(predicate, timeout=5.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = predicate()
        if result:
            return result
        time.sleep(interval)
    return predicate()


@pytest.fixture
def config(tmp_path):
    cfg = load_config()
    data_dir = tmp_path / "data"
    cfg.update(
        {
            "DATA_DIR": str(data_dir),
            "IDENTITY_FILE": str(data_dir / "identity.json"),
            "EXTERNAL_HOSTNAME": "",
            "RAW_LISTEN_HOST": "127.0.0.1",
            "RAW_LISTEN_PORT": 0,
            "RAW_IDLE_TIMEOUT_SECONDS": 2.0,
            "RAW_MAX_CONNECTIONS": 8,
            "RAW_MAX_BYTES": 1024 * 1024,
            "ALLOW_UNREGISTERED_IPS": True,
            "IPP_LISTEN_HOST": "127.0.0.1",
            "IPP_LISTEN_PORT": 0,
            "IPP_PATH": "/ipp/print",
            "IPP_MAX_BYTES": 1024 * 1024,
            "IPP_ALLOW_IP_AUTH": False,
            "IPP_TRUSTED_PROXIES": [],
            "WORKER_COUNT": 0,
            "QUEUE_MAX_DEPTH": 100,
            "MAX_ATTEMPTS": 3,
            "RETRY_BACKOFF_SECONDS": 0.0,
            "NOTIFY_ENDPOINT": "",
        }
    )
    return cfg


@pytest.fixture
def directory(config):
    return IdentityDirectory(config["IDENTITY_FILE"])


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def service(config, directory, renderer):
    svc = PrintService(config, directory=directory, renderer=renderer)
    svc.start()
    yield svc
    svc.stop(timeout=5)
