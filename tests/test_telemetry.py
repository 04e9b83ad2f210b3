import configparser
import json
import logging
import uuid

import pytest

from eternalmux.telemetry import (
    MAX_LOG_BUFFER,
    VERSION,
    TelemetryService,
    level_name,
    load_or_create_telemetry_id,
)


@pytest.fixture(autouse=True)
def _clean(monkeypatch):
    monkeypatch.delenv("ET_NO_TELEMETRY", raising=False)
    yield
    if TelemetryService.exists():
        TelemetryService.get().shutdown()
    TelemetryService.destroy()


def test_id_created_and_reused(tmp_path):
    first = load_or_create_telemetry_id(tmp_path)
    second = load_or_create_telemetry_id(tmp_path)
    assert first == second
    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read(tmp_path / "et" / "telemetry.ini")
    assert uuid.UUID(parser["Sentry"]["Id"]) == first


def test_config_without_id_is_rejected(tmp_path):
    (tmp_path / "et").mkdir()
    (tmp_path / "et" / "telemetry.ini").write_text("[Sentry]\nOther = 1\n")
    with pytest.raises(ValueError):
        load_or_create_telemetry_id(tmp_path)


def test_env_disables_telemetry(tmp_path, monkeypatch):
    monkeypatch.setenv("ET_NO_TELEMETRY", "1")
    service = TelemetryService(True, "Client", tmp_path)
    assert service.allowed is False
    assert not (tmp_path / "et" / "telemetry.ini").exists()


def test_entry_fields(tmp_path):
    service = TelemetryService(True, "Client", tmp_path, install_handler=False)
    service.log_to_datadog("hello", logging.ERROR, "file.cpp", 42)
    entries = json.loads(service.drain())
    assert len(entries) == 1
    entry = entries[0]
    assert entry["message"] == "hello"
    assert entry["level"] == "Error"
    assert entry["Environment"] == "Client"
    assert entry["Version"] == VERSION
    assert entry["File"] == "file.cpp"
    assert entry["Line"] == "42"
    assert entry["TelemetryId"] == str(service.telemetry_id)
    assert service.drain() is None


def test_buffer_is_bounded(tmp_path):
    service = TelemetryService(False, "Client", tmp_path)
    for _ in range(MAX_LOG_BUFFER + 10):
        service.log_to_datadog("x", logging.INFO, "f", 1)
    assert len(json.loads(service.drain())) == MAX_LOG_BUFFER + 1


def test_level_names():
    assert level_name(logging.CRITICAL) == "Fatal"
    assert level_name(logging.WARNING) == "Warning"
    assert level_name(5) == "Unknown"


def test_singleton_lifecycle(tmp_path):
    service = TelemetryService.create(False, "Server", tmp_path, None)
    assert TelemetryService.exists()
    assert TelemetryService.get() is service
    TelemetryService.destroy()
    assert not TelemetryService.exists()
    with pytest.raises(RuntimeError):
        TelemetryService.get()


def test_sender_receives_batch_on_shutdown(tmp_path):
    sent = []
    service = TelemetryService(
        True, "Client", tmp_path, sender=sent.append, install_handler=False
    )
    service.log_to_datadog("Session Started", logging.INFO, "main", 7)
    service.shutdown()
    messages = [entry["message"] for payload in sent for entry in json.loads(payload)]
    assert messages == ["Session Started"]
    assert service.shutting_down is True


def test_logging_errors_are_forwarded(tmp_path):
    service = TelemetryService(True, "Client", tmp_path)
    logging.getLogger("eternalmux.test").error("boom")
    logging.getLogger("eternalmux.test").info("quiet")
    service.shutdown()
    entries = json.loads(service.drain())
    assert len(entries) == 1
    assert entries[0]["message"].startswith("boom\n")
    assert entries[0]["level"] == "Error"