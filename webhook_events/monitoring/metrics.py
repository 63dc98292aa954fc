"""
Metrics sink for webhook activity.

The webhook system only writes to the sink. ``MetricsCollector`` is a
bounded in-memory implementation; any object with the same two methods
can be plugged in instead.
"""

import statistics
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Protocol

from loguru import logger


class MetricsSink(Protocol):
    """Write-only receiver of request outcomes."""

    def record_request(self, request_id: str, data: Dict[str, Any]) -> None:
        ...

    def record_error(self, request_id: str, error: Any) -> None:
        ...


@dataclass
class RequestRecord:
    """A single recorded request."""
    request_id: str
    method: str
    path: str
    status_code: Optional[int]
    duration: float
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorRecord:
    """A single recorded error."""
    request_id: str
    message: str
    timestamp: datetime


class MetricsCollector:
    """Keeps the most recent requests and errors; older entries fall off silently."""

    def __init__(self, max_samples: int = 1000):
        self.requests: Deque[RequestRecord] = deque(maxlen=max_samples)
        self.errors: Deque[ErrorRecord] = deque(maxlen=max_samples)
        self.counters: Dict[str, int] = defaultdict(int)

    def record_request(self, request_id: str, data: Dict[str, Any]) -> None:
        method = str(data.get("method", "UNKNOWN"))
        record = RequestRecord(
            request_id=request_id,
            method=method,
            path=str(data.get("path", "")),
            status_code=data.get("status_code"),
            duration=float(data.get("duration") or 0.0),
            timestamp=datetime.now(timezone.utc),
            metadata=dict(data.get("metadata") or {}),
        )
        self.requests.append(record)
        self.counters[f"requests_total:{method}"] += 1

    def record_error(self, request_id: str, error: Any) -> None:
        self.errors.append(ErrorRecord(
            request_id=request_id,
            message=str(error),
            timestamp=datetime.now(timezone.utc),
        ))
        self.counters["errors_total"] += 1

    def _percentile(self, values: List[float], percentile: int) -> float:
        """Calculate percentile value."""
        if not values:
            return 0
        sorted_values = sorted(values)
        index = int((percentile / 100) * len(sorted_values))
        return sorted_values[min(index, len(sorted_values) - 1)]

    def get_summary(self) -> Dict[str, Any]:
        """Summarize the retained samples."""
        deliveries = [r for r in self.requests if r.method == "POST"]
        durations = [r.duration for r in deliveries]
        successful = [
            r for r in deliveries
            if r.status_code is not None and 200 <= r.status_code < 300
        ]

        return {
            "counters": dict(self.counters),
            "retained_requests": len(self.requests),
            "retained_errors": len(self.errors),
            "delivery_attempts": len(deliveries),
            "successful_attempts": len(successful),
            "duration_ms": {
                "mean": round(statistics.mean(durations), 2) if durations else 0.0,
                "median": round(statistics.median(durations), 2) if durations else 0.0,
                "p95": round(self._percentile(durations, 95), 2),
                "max": round(max(durations), 2) if durations else 0.0,
            },
            "recent_errors": [
                {"request_id": e.request_id, "message": e.message, "timestamp": e.timestamp.isoformat()}
                for e in list(self.errors)[-10:]
            ],
        }


def report_request(sink: Optional[MetricsSink], request_id: str, data: Dict[str, Any]) -> None:
    """Forward a request record to ``sink``; sink failures are logged and dropped."""
    if sink is None:
        return
    try:
        sink.record_request(request_id, data)
    except Exception as e:
        logger.warning(f"Metrics sink failed to record request {request_id}: {e}")


def report_error(sink: Optional[MetricsSink], request_id: str, error: Any) -> None:
    """Forward an error to ``sink``; sink failures are logged and dropped."""
    if sink is None:
        return
    try:
        sink.record_error(request_id, error)
    except Exception as e:
        logger.warning(f"Metrics sink failed to record error {request_id}: {e}")
