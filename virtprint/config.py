import os
from typing import Any, Dict, List


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> List[str]:
    value = os.getenv(name) or ""
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config() -> Dict[str, Any]:
    """Build the settings dict from the environment.

    Call ``load_dotenv()`` first if a ``.env`` file should be honored.
    """
    data_dir = _env_str("DATA_DIR", "./data")

    return {
        "LOG_LEVEL": _env_str("LOG_LEVEL", "INFO").upper(),
        "LOG_HEADERS": _env_bool("LOG_HEADERS", False),
        "DATA_DIR": data_dir,
        "IDENTITY_FILE": _env_str("IDENTITY_FILE", os.path.join(data_dir, "identity.json")),
        "PRINTER_NAME": _env_str("PRINTER_NAME", "Virtual Printer"),
        "EXTERNAL_HOSTNAME": _env_str("EXTERNAL_HOSTNAME", ""),
        # raw 9100
        "RAW_ENABLED": _env_bool("RAW_ENABLED", True),
        "RAW_LISTEN_HOST": _env_str("RAW_LISTEN_HOST", "0.0.0.0"),
        "RAW_LISTEN_PORT": _env_int("RAW_LISTEN_PORT", 9100),
        "RAW_IDLE_TIMEOUT_SECONDS": _env_float("RAW_IDLE_TIMEOUT_SECONDS", 30.0),
        "RAW_MAX_CONNECTIONS": _env_int("RAW_MAX_CONNECTIONS", 64),
        "RAW_MAX_BYTES": _env_int("RAW_MAX_BYTES", 200 * 1024 * 1024),
        "ALLOW_UNREGISTERED_IPS": _env_bool("ALLOW_UNREGISTERED_IPS", True),
        # IPP
        "IPP_ENABLED": _env_bool("IPP_ENABLED", True),
        "IPP_LISTEN_HOST": _env_str("IPP_LISTEN_HOST", "0.0.0.0"),
        "IPP_LISTEN_PORT": _env_int("IPP_LISTEN_PORT", 631),
        "IPP_PATH": _env_str("IPP_PATH", "/ipp/print"),
        "IPP_MAX_BYTES": _env_int("IPP_MAX_BYTES", 100 * 1024 * 1024),
        "IPP_AUTH_REALM": _env_str("IPP_AUTH_REALM", "virtprint"),
        "IPP_ALLOW_IP_AUTH": _env_bool("IPP_ALLOW_IP_AUTH", False),
        "IPP_TRUSTED_PROXIES": _env_list("IPP_TRUSTED_PROXIES"),
        # conversion
        "GHOSTSCRIPT_BIN": _env_str("GHOSTSCRIPT_BIN", "gs"),
        "RENDER_TIMEOUT_SECONDS": _env_float("RENDER_TIMEOUT_SECONDS", 120.0),
        "RENDER_MAX_OUTPUT_BYTES": _env_int("RENDER_MAX_OUTPUT_BYTES", 64 * 1024),
        "THUMBNAIL_DPI": _env_int("THUMBNAIL_DPI", 150),
        "WORKER_COUNT": _env_int("WORKER_COUNT", 2),
        "QUEUE_MAX_DEPTH": _env_int("QUEUE_MAX_DEPTH", 100),
        "MAX_ATTEMPTS": _env_int("MAX_ATTEMPTS", 3),
        "RETRY_BACKOFF_SECONDS": _env_float("RETRY_BACKOFF_SECONDS", 5.0),
        # completion webhook (optional)
        "NOTIFY_ENDPOINT": _env_str("NOTIFY_ENDPOINT", ""),
        "NOTIFY_AUTH_HEADER": os.getenv("NOTIFY_AUTH_HEADER") or "",
        "NOTIFY_AUTH_VALUE": os.getenv("NOTIFY_AUTH_VALUE") or "",
        "NOTIFY_TIMEOUT_SECONDS": _env_int("NOTIFY_TIMEOUT_SECONDS", 30),
        "NOTIFY_FILE_FIELD": _env_str("NOTIFY_FILE_FIELD", "file"),
        "NOTIFY_INCLUDE_META_FIELDS": _env_bool("NOTIFY_INCLUDE_META_FIELDS", True),
    }


def redacted_config(config: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(config)
    if out.get("NOTIFY_AUTH_VALUE"):
        out["NOTIFY_AUTH_VALUE"] = "<redacted>"
    return out
