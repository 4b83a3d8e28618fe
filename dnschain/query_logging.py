"""Resolver that records each answered query through a query log writer."""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import dns.rcode
import dns.rdatatype

from .resolver import ChainedResolver, Request, Response, answer_to_string

logger = logging.getLogger(__name__)

CLEAN_UP_RUN_PERIOD = 12 * 60 * 60.0
DEFAULT_QUEUE_SIZE = 1000
CONSOLE_LOG_TYPE = "console"
_POLL_INTERVAL = 0.05


@dataclass
class LogEntry:
    """One answered query together with its timing."""

    request: Request
    response: Response
    start: datetime
    duration_ms: int


class QueryLogWriter(ABC):
    """Destination of query log entries."""

    @abstractmethod
    def write(self, entry: LogEntry) -> None:
        """Store one log entry."""

    @abstractmethod
    def clean_up(self) -> None:
        """Remove entries older than the retention period."""


def _question_to_string(request: Request) -> str:
    return ", ".join(
        f"{dns.rdatatype.to_text(question.rdtype)} ({question.name})"
        for question in request.message.question
    )


class _ConsoleWriter(QueryLogWriter):
    """Writes entries to the application log."""

    def write(self, entry: LogEntry) -> None:
        message = entry.response.message
        logger.info(
            "query resolved: client_ip=%s client_names=%s duration_ms=%d reason=%s "
            "question=%s answer=%s response_code=%s",
            entry.request.client_ip or "",
            "; ".join(entry.request.client_names),
            entry.duration_ms,
            entry.response.reason,
            _question_to_string(entry.request),
            answer_to_string(message.answer) if message is not None else "",
            dns.rcode.to_text(message.rcode()) if message is not None else "",
        )

    def clean_up(self) -> None:
        # Console output has nothing to remove.
        return


class QueryLoggingResolver(ChainedResolver):
    """Hands each successful response to a writer on a background thread."""

    def __init__(
        self,
        writer: Optional[QueryLogWriter] = None,
        log_type: str = CONSOLE_LOG_TYPE,
        target: str = "",
        retention_days: int = 0,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        super().__init__()
        if queue_size < 1:
            raise ValueError("queue size must be at least 1")
        if writer is None:
            writer = _ConsoleWriter()
            log_type = CONSOLE_LOG_TYPE
        self.writer = writer
        self.log_type = log_type
        self.target = target
        self.retention_days = int(retention_days)
        self.queue_size = queue_size
        self._queue: queue.Queue[LogEntry] = queue.Queue(maxsize=queue_size)
        self._stop = threading.Event()

        self._writer_thread = threading.Thread(target=self._write_log, daemon=True)
        self._writer_thread.start()
        self._cleanup_thread: Optional[threading.Thread] = None
        if self.retention_days > 0:
            self._cleanup_thread = threading.Thread(target=self._periodic_clean_up, daemon=True)
            self._cleanup_thread.start()

    def __enter__(self) -> QueryLoggingResolver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def pending(self) -> int:
        """Number of entries waiting to be written."""
        return self._queue.qsize()

    def resolve(self, request: Request) -> Response:
        start = datetime.now(timezone.utc)
        started = time.monotonic()
        response = self._delegate(request)
        duration_ms = int((time.monotonic() - started) * 1000)

        entry = LogEntry(request=request, response=response, start=start, duration_ms=duration_ms)
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            logger.error("query log writer is too slow, log entry will be dropped")
        return response

    def configuration(self) -> list[str]:
        return [
            f'type: "{self.log_type}"',
            f'target: "{self.target}"',
            f"logRetentionDays: {self.retention_days}",
        ]

    def clean_up(self) -> None:
        """Ask the writer to remove old entries."""
        self.writer.clean_up()

    def close(self) -> None:
        """Write the entries still queued and stop the background threads."""
        self._stop.set()
        self._writer_thread.join()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join()
            self._cleanup_thread = None

    def _write_log(self) -> None:
        while True:
            try:
                entry = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue
            started = time.monotonic()
            try:
                self.writer.write(entry)
            except Exception:  # a failing writer must not stop logging
                logger.exception("can't write query log entry")
            pending = self._queue.qsize()
            if pending > self.queue_size // 2:
                logger.warning(
                    "query log writer is too slow, write duration: %d ms (channel_len=%d)",
                    int((time.monotonic() - started) * 1000), pending,
                )

    def _periodic_clean_up(self) -> None:
        while not self._stop.wait(CLEAN_UP_RUN_PERIOD):
            try:
                self.clean_up()
            except Exception:  # keep cleaning up on later runs
                logger.exception("can't clean up query log")