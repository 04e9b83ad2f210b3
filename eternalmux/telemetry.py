"""Anonymous error reporting: a persistent telemetry id and a batched log uploader."""

from __future__ import annotations

import atexit
import configparser
import contextlib
import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, ClassVar

logger = logging.getLogger(__name__)

VERSION = "6.2.11"
APPLICATION = "eternalmux"
MAX_LOG_BUFFER = 16 * 1024
FLUSH_BATCH_SIZE = 1024
CONFIG_SECTION = "Sentry"
CONFIG_KEY = "Id"
DISABLE_ENV = "ET_NO_TELEMETRY"

_NOTICE = (
    "This program collects crashes and errors in order to help us improve your "
    "experience.\nThe data collected is anonymous.\nYou can opt-out of telemetry "
    f"by setting the environment variable {DISABLE_ENV} to any non-empty value."
)

_LEVEL_NAMES = {
    logging.CRITICAL: "Fatal",
    logging.ERROR: "Error",
    logging.WARNING: "Warning",
    logging.INFO: "Info",
    logging.DEBUG: "Debug",
}


def level_name(level: int | str) -> str:
    """Return the report name of a logging level."""
    if isinstance(level, str):
        return level
    return _LEVEL_NAMES.get(level, "Unknown")


def _default_config_home() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg and os.path.isabs(xdg):
        return Path(xdg)
    return Path.home() / ".config"


def load_or_create_telemetry_id(config_home: str | os.PathLike | None = None) -> uuid.UUID:
    """Read the telemetry id from the config file, creating the file if it is missing."""
    home = Path(config_home) if config_home is not None else _default_config_home()
    config_path = home / "et" / "telemetry.ini"
    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep key case as written

    if config_path.exists():
        try:
            with config_path.open(encoding="utf-8") as handle:
                parser.read_file(handle)
        except (OSError, configparser.Error) as exc:
            raise ValueError(f"Invalid config file: {config_path}") from exc
        value = parser.get(CONFIG_SECTION, CONFIG_KEY, fallback=None)
        if not value:
            raise ValueError("Invalid telemetry config")
        try:
            return uuid.UUID(value)
        except ValueError as exc:
            raise ValueError(f"Invalid telemetry id: {value}") from exc

    telemetry_id = uuid.uuid4()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    parser[CONFIG_SECTION] = {CONFIG_KEY: str(telemetry_id)}
    with config_path.open("w", encoding="utf-8") as handle:
        parser.write(handle)
    print(_NOTICE)
    return telemetry_id


class _TelemetryHandler(logging.Handler):
    """Forwards error and fatal records to the telemetry buffer."""

    def __init__(self, service: "TelemetryService"):
        super().__init__(level=logging.ERROR)
        self.service = service
        self.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(pathname)s:%(lineno)d")
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = record.getMessage() + "\n" + self.format(record)
            self.service.log_to_datadog(text, record.levelno, record.pathname, record.lineno)
        except Exception:  # noqa: BLE001 - a log handler must never raise
            self.handleError(record)


class TelemetryService:
    """Buffers error reports and hands them in JSON batches to a sender."""

    _instance: ClassVar["TelemetryService | None"] = None
    _atexit_registered: ClassVar[bool] = False

    def __init__(
        self,
        allow: bool,
        environment: str,
        config_home: str | os.PathLike | None = None,
        sender: Callable[[str], object] | None = None,
        flush_interval: float = 30.0,
        poll_interval: float = 0.1,
        install_handler: bool = True,
    ):
        self.allowed = bool(allow) and not os.environ.get(DISABLE_ENV)
        self.environment = environment
        self.telemetry_id: uuid.UUID = uuid.UUID(int=0)
        self._sender = sender
        self._flush_interval = flush_interval
        self._poll_interval = poll_interval
        self._lock = threading.RLock()
        self._buffer: list[dict[str, str]] = []
        self._shutting_down = False
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._handler: _TelemetryHandler | None = None

        if not self.allowed:
            return
        self.telemetry_id = load_or_create_telemetry_id(config_home)
        if install_handler:
            self._handler = _TelemetryHandler(self)
            logging.getLogger().addHandler(self._handler)
        if sender is not None:
            self._thread = threading.Thread(
                target=self._send_loop, name="telemetry-sender", daemon=True
            )
            self._thread.start()

    @property
    def shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    def log_to_datadog(self, log_text: str, level: int | str, filename: str, line: int) -> None:
        """Queue one log entry; entries are dropped while the buffer is full."""
        entry = {
            "message": log_text,
            "level": level_name(level),
            "Environment": self.environment,
            "Application": APPLICATION,
            "Version": VERSION,
            "TelemetryId": str(self.telemetry_id),
            "File": filename,
            "Line": str(line),
        }
        with self._lock:
            if len(self._buffer) > MAX_LOG_BUFFER:
                return
            self._buffer.append(entry)
        if len(self._buffer) >= FLUSH_BATCH_SIZE:
            self._wake.set()

    def drain(self) -> str | None:
        """Take every buffered entry and return them as a JSON array, or None if empty."""
        with self._lock:
            if not self._buffer:
                return None
            payload = json.dumps(self._buffer, indent=4)
            self._buffer.clear()
        return payload

    def shutdown(self) -> None:
        """Flush what is left, stop the sender and detach from logging."""
        with self._lock:
            if self._shutting_down:
                return
            self._shutting_down = True
        self._wake.set()
        if self._handler is not None:
            logging.getLogger().removeHandler(self._handler)
            self._handler = None
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _send_loop(self) -> None:
        next_dump = time.monotonic()
        while True:
            with self._lock:
                last_run = self._shutting_down
                size = len(self._buffer)
            if size and (size >= FLUSH_BATCH_SIZE or next_dump < time.monotonic() or last_run):
                next_dump = time.monotonic() + self._flush_interval
                payload = self.drain()
                if payload is not None:
                    try:
                        self._sender(payload)
                    except Exception as exc:  # noqa: BLE001 - sending is best effort
                        logger.debug("Telemetry upload failed: %s", exc)
            if last_run:
                break
            self._wake.wait(self._poll_interval)
            self._wake.clear()

    @staticmethod
    def create(
        allow: bool,
        environment: str,
        config_home: str | os.PathLike | None = None,
        sender: Callable[[str], object] | None = None,
    ) -> "TelemetryService":
        """Create the process-wide service, replacing any earlier one."""
        service = TelemetryService(allow, environment, config_home, sender)
        TelemetryService._instance = service
        if not TelemetryService._atexit_registered:
            atexit.register(_shutdown_telemetry)
            TelemetryService._atexit_registered = True
        return service

    @staticmethod
    def get() -> "TelemetryService":
        """Return the process-wide service."""
        if TelemetryService._instance is None:
            raise RuntimeError("Tried to get a singleton before it was created!")
        return TelemetryService._instance

    @staticmethod
    def destroy() -> None:
        TelemetryService._instance = None

    @staticmethod
    def exists() -> bool:
        return TelemetryService._instance is not None


def _shutdown_telemetry() -> None:
    if TelemetryService.exists():
        service = TelemetryService.get()
        TelemetryService.destroy()
        with contextlib.suppress(Exception):
            service.shutdown()