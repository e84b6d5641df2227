"""
Structured logging setup for the stop-loss arb engine.

Every module logs JSON event payloads through `log_event`. The console shows
them through rich; the optional log file gets one flat JSON object per line
with the event fields merged in. File writes go through a background thread
so they never stall the per-stock loops.
"""

from __future__ import annotations

import atexit
import logging
import queue
import sys
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional, Set

from rich.logging import RichHandler

from gridarb.core.json_utils import dumps, loads

LOGGER_NAME = "gridarb"

DEFAULT_THROTTLED_EVENTS = frozenset({"quote_unreliable", "market_not_open", "fill_pending"})


def _parse_event(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    """The event payload of a record logged by `log_event`, else None."""
    msg = record.getMessage()
    if not msg.startswith("{"):
        return None
    try:
        data = loads(msg)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class JsonFormatter(logging.Formatter):
    """One JSON object per record; event payloads are merged into it."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": record.created,
            "ts_iso": datetime.fromtimestamp(record.created).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }
        event = _parse_event(record)
        if event is None:
            payload["msg"] = record.getMessage()
        else:
            payload.update(event)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return dumps(payload)


class AsyncQueueHandler(logging.Handler):
    """Hands records to a writer thread that owns the target handler."""

    _STOP = object()

    def __init__(self, target: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self.target = target
        self.dropped = 0
        self._closed = False
        self._records: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._writer = threading.Thread(target=self._drain, daemon=True, name="gridarb-log-writer")
        self._writer.start()
        atexit.register(self.close)

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._records.put_nowait(record)
        except queue.Full:
            self.dropped += 1

    def _drain(self) -> None:
        while True:
            record = self._records.get()
            if record is self._STOP:
                return
            try:
                self.target.handle(record)
            except Exception:
                self.target.handleError(record)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._records.put(self._STOP, timeout=2.0)
        except queue.Full:
            pass
        self._writer.join(timeout=2.0)
        if self.dropped:
            sys.stderr.write(f"[logging] {self.dropped} records dropped, log queue was full\n")
        self.target.close()
        super().close()


class ThrottledFilter(logging.Filter):
    """
    Rate-limits selected events per stock: the first one passes, repeats
    within `cooldown_sec` are dropped. Everything else passes untouched.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self.cooldown_sec = cooldown_sec
        self.events = frozenset(throttled_events) if throttled_events else DEFAULT_THROTTLED_EVENTS
        self._last_pass: Dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        data = _parse_event(record)
        if data is None or data.get("event") not in self.events:
            return True
        key = f"{data['event']}:{data.get('stock', '')}"
        now = time.monotonic()
        last = self._last_pass.get(key)
        if last is not None and now - last < self.cooldown_sec:
            return False
        self._last_pass[key] = now
        return True


def _console_handler(level: int, throttle: bool) -> logging.Handler:
    handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    if throttle:
        handler.addFilter(ThrottledFilter())
    return handler


def _file_handler(path: str, level: int, background: bool) -> logging.Handler:
    target = logging.FileHandler(path)
    target.setFormatter(JsonFormatter())
    target.setLevel(level)
    if not background:
        return target
    handler = AsyncQueueHandler(target)
    handler.setLevel(level)
    return handler


def build_logger(
    name: str = LOGGER_NAME,
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    async_file: bool = True,
    throttle_events: bool = True,
) -> logging.Logger:
    """
    Configure and return a package logger.

    Safe to call again: later calls update levels and attach the file handler
    when a path is given and none is attached yet.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False

    for h in logger.handlers:
        h.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        logger.addHandler(_console_handler(level, throttle_events))

    has_file = any(isinstance(h, (logging.FileHandler, AsyncQueueHandler)) for h in logger.handlers)
    if file_path and not has_file:
        logger.addHandler(_file_handler(file_path, level, async_file))
    return logger


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data: Any) -> None:
    """
    Log a structured event.

        log_event(log, "position_changed", stock="PARA", previous=0, new=10)
    """
    if logger.isEnabledFor(level):
        logger.log(level, dumps({"event": event, **data}))
