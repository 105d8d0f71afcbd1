import pytest

from virtprint.config import load_config, redacted_config


def test_defaults(monkeypatch):
    for name in ("DATA_DIR", "IDENTITY_FILE", "RAW_LISTEN_PORT", "IPP_PATH", "WORKER_COUNT", "IPP_TRUSTED_PROXIES"):
        monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config["RAW_LISTEN_PORT"] == 9100
    assert config["IPP_PATH"] == "/ipp/print"
    assert config["IDENTITY_FILE"].endswith("identity.json")
    assert config["IPP_TRUSTED_PROXIES"] == []
    assert config["MAX_ATTEMPTS"] == 3


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RAW_LISTEN_PORT", "19100")
    monkeypatch.setenv("RAW_IDLE_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("ALLOW_UNREGISTERED_IPS", "no")
    monkeypatch.setenv("IPP_ALLOW_IP_AUTH", "Yes")
    monkeypatch.setenv("IPP_TRUSTED_PROXIES", "10.0.0.0/8, ,192.168.1.1")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("DATA_DIR", "/srv/printer")
    monkeypatch.delenv("IDENTITY_FILE", raising=False)

    config = load_config()

    assert config["RAW_LISTEN_PORT"] == 19100
    assert config["RAW_IDLE_TIMEOUT_SECONDS"] == 2.5
    assert config["ALLOW_UNREGISTERED_IPS"] is False
    assert config["IPP_ALLOW_IP_AUTH"] is True
    assert config["IPP_TRUSTED_PROXIES"] == ["10.0.0.0/8", "192.168.1.1"]
    assert config["LOG_LEVEL"] == "DEBUG"
    assert config["IDENTITY_FILE"].startswith("/srv/printer")


def test_empty_value_falls_back_to_default(monkeypatch):
    monkeypatch.setenv("WORKER_COUNT", "")
    assert load_config()["WORKER_COUNT"] == 2


def test_invalid_number_is_an_error(monkeypatch):
    monkeypatch.setenv("QUEUE_MAX_DEPTH", "lots")
    with pytest.raises(ValueError):
        load_config()


def test_redacted_config_hides_webhook_secret():
    config = {"NOTIFY_AUTH_VALUE": "Bearer abc", "PRINTER_NAME": "Office"}
    assert redacted_config(config) == {"NOTIFY_AUTH_VALUE": "<redacted>", "PRINTER_NAME": "Office"}
    assert config["NOTIFY_AUTH_VALUE"] == "Bearer abc"
