import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .config import load_config, redacted_config
from .ipp_server import serve_ipp
from .raw_listener import serve_raw
from .service import PrintService

logger = logging.getLogger("server")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run(config: Dict[str, Any], stop_event: Optional[threading.Event] = None) -> None:
    """Start the worker pool and the enabled listeners; block until stopped."""
    stop_event = stop_event or threading.Event()
    logger.debug("Configuration: %s", redacted_config(config))

    service = PrintService(config)
    service.start()

    servers: List[Any] = []
    try:
        if config["RAW_ENABLED"]:
            servers.append(serve_raw(service, config))
        if config["IPP_ENABLED"]:
            servers.append(serve_ipp(service, config))
        if not servers:
            logger.warning("Both RAW_ENABLED and IPP_ENABLED are off; only pending jobs will be converted")

        def _stop(signum, frame) -> None:
            logger.info("Received signal %s; shutting down", signum)
            stop_event.set()

        def _reload(signum, frame) -> None:
            # an unreadable file is logged and the current tables are kept
            service.directory.refresh(force=True)

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, _stop)
            signal.signal(signal.SIGINT, _stop)
            if hasattr(signal, "SIGHUP"):
                signal.signal(signal.SIGHUP, _reload)

        stop_event.wait()
    finally:
        for server in servers:
            server.shutdown()
            server.server_close()
        service.stop(timeout=10)
        logger.info("Stopped")


def main() -> None:
    load_dotenv()
    config = load_config()
    configure_logging(config["LOG_LEVEL"])
    run(config)


if __name__ == "__main__":
    main()
