import os
import signal
import threading

import pytest

from conftest import wait_for
from virtprint.identity import IdentityDirectory
from virtprint.server import run

HANDLED = (signal.SIGTERM, signal.SIGINT, getattr(signal, "SIGHUP", None))


@pytest.fixture
def saved_signal_handlers():
    saved = {sig: signal.getsignal(sig) for sig in HANDLED if sig is not None}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


@pytest.mark.skipif(not hasattr(signal, "SIGHUP"), reason="no SIGHUP on this platform")
def test_sighup_with_unreadable_identity_file_keeps_serving(config, saved_signal_handlers):
    IdentityDirectory(config["IDENTITY_FILE"]).add_registration("acct-a", "10.9.0.0/16")
    original = signal.getsignal(signal.SIGHUP)
    stop = threading.Event()
    still_running = []

    def break_file_then_hangup():
        wait_for(lambda: signal.getsignal(signal.SIGHUP) is not original)
        with open(config["IDENTITY_FILE"], "w", encoding="utf-8") as fh:
            fh.write("{not json")
        os.kill(os.getpid(), signal.SIGHUP)
        still_running.append(not wait_for(stop.is_set, timeout=0.5))
        stop.set()

    helper = threading.Thread(target=break_file_then_hangup, daemon=True)
    helper.start()
    run(config, stop_event=stop)
    helper.join(5)

    assert still_running == [True]


def test_stop_event_shuts_down_listeners(config, saved_signal_handlers):
    stop = threading.Event()
    timer = threading.Timer(0.3, stop.set)
    timer.start()
    run(config, stop_event=stop)
    timer.join()
    assert stop.is_set()
