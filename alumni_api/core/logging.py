"""Structured logging with terminal, daily file and Loki handlers."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from logging.handlers import TimedRotatingFileHandler
import os
from pathlib import Path
import queue
import sys
import threading
import time
from urllib import request

from alumni_api.config.schema import LogsConfig
from alumni_api.core.context import current_request_id


ROOT_LOGGER = "alumni_api"
DEFAULT_SERVICE_NAME = "alumni-api"
DEFAULT_LOG_FILE = "logs/application.log"
DEFAULT_LOG_LEVEL = "DEBUG"
LOKI_PUSH_PATH = "/loki/api/v1/push"


def _compact(document: dict[str, object]) -> dict[str, object]:
    compacted: dict[str, object] = {}
    for key, value in document.items():
        if isinstance(value, dict):
            value = _compact(value)
        if value is None or value == "" or value == {}:
            continue
        compacted[key] = value
    return compacted


class JsonFormatter(logging.Formatter):
    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME) -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).isoformat(timespec="microseconds")
        payload: dict[str, object] = {
            "@timestamp": timestamp,
            "message": record.getMessage(),
            "log": {
                "level": record.levelname.lower(),
                "logger": record.name,
            },
            "service": {
                "name": self.service_name,
            },
            "request": {
                "id": current_request_id(),
            },
            "worker": {
                "id": os.getpid(),
            },
            "payload": getattr(record, "payload", None),
            "error": {
                "stack": self.formatException(record.exc_info) if record.exc_info else None,
            },
        }
        return json.dumps(_compact(payload), separators=(",", ":"), default=str)


class TerminalFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %I:%M:%S.%f")[:-3]
        meridiem = datetime.fromtimestamp(record.created).strftime("%p")
        line = (
            f"{timestamp} {meridiem} [{record.levelname.lower()}]: "
            f"[Worker:{os.getpid()}] [{current_request_id()}] {record.getMessage()}"
        )
        payload = getattr(record, "payload", None)
        if payload:
            line = f"{line} {json.dumps(payload, separators=(',', ':'), default=str)}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class LokiHandler(logging.Handler):
    """Ships formatted records to a Loki push endpoint from a background thread."""

    def __init__(
        self,
        config: LogsConfig,
        formatter: logging.Formatter,
        *,
        batch_size: int = 50,
        flush_interval_seconds: float = 1.0,
        timeout_seconds: float = 2.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.5,
        max_queue_size: int = 5000,
    ) -> None:
        super().__init__()
        if not config.loki_url:
            raise ValueError("loki handler requires logs.lokiUrl")
        self.setFormatter(formatter)
        self.endpoint = config.loki_url.rstrip("/") + LOKI_PUSH_PATH
        self.labels = {
            "app": config.loki_app_name or DEFAULT_SERVICE_NAME,
            "workerId": str(os.getpid()),
        }
        self.batch_size = batch_size
        self.flush_interval_seconds = flush_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._queue: queue.Queue[tuple[str, str]] = queue.Queue(maxsize=max_queue_size)
        self._stop_event = threading.Event()
        self._worker = threading.Thread(target=self._run_worker, name="loki-shipper", daemon=True)
        self._worker.start()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            self._queue.put_nowait((str(int(record.created * 1_000_000_000)), line))
        except queue.Full:
            self._report_failure("loki queue full, dropping record")
        except Exception:
            self.handleError(record)

    def _run_worker(self) -> None:
        while not (self._stop_event.is_set() and self._queue.empty()):
            batch = self._collect_batch()
            if batch:
                self._push(batch)

    def _collect_batch(self) -> list[tuple[str, str]]:
        """Gather up to batch_size entries or whatever arrives within one flush interval."""
        batch: list[tuple[str, str]] = []
        deadline = time.monotonic() + self.flush_interval_seconds
        while len(batch) < self.batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self._queue.get(timeout=min(remaining, 0.1)))
            except queue.Empty:
                if self._stop_event.is_set():
                    break
        return batch

    def _push(self, batch: list[tuple[str, str]]) -> None:
        delays = [self.retry_backoff_seconds * (2**attempt) for attempt in range(self.max_retries)]
        error: Exception | None = None
        for delay in [*delays, None]:
            try:
                self._send_batch(batch)
                return
            except (OSError, ValueError) as exc:
                error = exc
            if delay is not None:
                time.sleep(delay)
        self._report_failure(f"loki push failed for {len(batch)} records: {error}")

    def build_push_body(self, entries: list[tuple[str, str]]) -> bytes:
        body = {
            "streams": [
                {
                    "stream": self.labels,
                    "values": [[timestamp, line] for timestamp, line in entries],
                }
            ]
        }
        return json.dumps(body, separators=(",", ":")).encode("utf-8")

    def _send_batch(self, entries: list[tuple[str, str]]) -> None:
        req = request.Request(
            self.endpoint,
            data=self.build_push_body(entries),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with request.urlopen(req, timeout=self.timeout_seconds):
            return

    def _report_failure(self, message: str) -> None:
        sys.stderr.write(f"{message}\n")

    def close(self) -> None:
        self._stop_event.set()
        self._worker.join(timeout=max(1.0, self.flush_interval_seconds * 2))
        super().close()


def _daily_file_handler(file_path: str, formatter: logging.Formatter) -> logging.Handler:
    log_file = Path(file_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=14, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def configure_logging(
    config: LogsConfig,
    *,
    force: bool = False,
    level: str | None = None,
    service_name: str = DEFAULT_SERVICE_NAME,
    file_path: str = DEFAULT_LOG_FILE,
) -> None:
    root = logging.getLogger(ROOT_LOGGER)
    if getattr(root, "_alumni_api_configured", False) and not force:
        return

    root.setLevel((level or os.environ.get("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper())
    for existing in list(root.handlers):
        existing.close()
    root.handlers.clear()

    json_formatter = JsonFormatter(service_name=service_name)
    if config.terminal:
        terminal = logging.StreamHandler()
        terminal.setFormatter(TerminalFormatter())
        root.addHandler(terminal)
    if config.daily_rotate_file:
        root.addHandler(_daily_file_handler(file_path, json_formatter))
    if config.loki:
        root.addHandler(LokiHandler(config, json_formatter))
    if not root.handlers:
        root.addHandler(logging.NullHandler())

    root.propagate = False
    setattr(root, "_alumni_api_configured", True)


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Package loggers never own handlers; records reach whatever configure_logging installed."""
    logger = logging.getLogger(name)
    if name.startswith(f"{ROOT_LOGGER}."):
        logger.propagate = True
        return logger
    if name == ROOT_LOGGER or logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def emit_metric(
    logger: logging.Logger,
    *,
    name: str,
    value: float,
    payload: dict[str, object] | None = None,
    level: str = "DEBUG",
) -> None:
    metric_name = name.strip() or "metric"
    metric_payload: dict[str, object] = {"metric_name": metric_name, "metric_value": float(value)}
    if payload:
        metric_payload.update(payload)
    logger.log(
        getattr(logging, level.upper(), logging.DEBUG),
        f"metric:{metric_name}",
        extra={"payload": metric_payload},
    )
