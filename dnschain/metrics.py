"""Resolver that records request and response statistics."""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import dns.rcode
import dns.rdatatype

from .resolver import ChainedResolver, Request, Response

DEFAULT_BUCKETS = (5.0, 10.0, 20.0, 30.0, 50.0, 75.0, 100.0, 200.0, 500.0, 1000.0, 2000.0)
DEFAULT_PATH = "/metrics"


@dataclass
class Histogram:
    """Cumulative distribution of observed values over fixed upper bounds."""

    buckets: tuple[float, ...] = DEFAULT_BUCKETS
    counts: list[int] = field(init=False, default_factory=list)
    total: float = field(init=False, default=0.0)
    count: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        self.counts = [0] * len(self.buckets)
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        """Record one value."""
        with self._lock:
            self.count += 1
            self.total += value
            self.counts = [c + (value <= bound) for c, bound in zip(self.counts, self.buckets)]


class MetricsResolver(ChainedResolver):
    """Counts queries, responses and errors, and times each request."""

    def __init__(self, enabled: bool = False, path: str = DEFAULT_PATH) -> None:
        super().__init__()
        self.enabled = enabled
        self.path = path
        self.total_queries: Counter[tuple[str, str]] = Counter()
        self.total_responses: Counter[tuple[str, str, str]] = Counter()
        self.total_errors = 0
        self.durations: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def _record(self, request: Request, response: Optional[Response]) -> None:
        qtype = dns.rdatatype.to_text(request.message.question[0].rdtype)
        elapsed = datetime.now(timezone.utc) - request.timestamp
        duration_ms = float(int(elapsed.total_seconds() * 1000))
        response_type = "err" if response is None else str(response.rtype)

        with self._lock:
            self.total_queries[(",".join(request.client_names), qtype)] += 1
            histogram = self.durations.setdefault(response_type, Histogram())
            if response is None:
                self.total_errors += 1
            else:
                rcode = dns.rcode.to_text(response.message.rcode()) if response.message is not None else ""
                self.total_responses[(response.reason, rcode, str(response.rtype))] += 1
        histogram.observe(duration_ms)

    def resolve(self, request: Request) -> Response:
        try:
            response = self._delegate(request)
        except Exception:
            if self.enabled:
                self._record(request, None)
            raise
        if self.enabled:
            self._record(request, response)
        return response

    def configuration(self) -> list[str]:
        return [
            "metrics:",
            f"  Enable = {str(self.enabled).lower()}",
            f"  Path   = {self.path}",
        ]