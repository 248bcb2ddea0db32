from __future__ import annotations

from collections import defaultdict
from typing import Dict, Tuple

from prometheus_client import Counter, Histogram

_REQ_TOTAL = Counter(
    "compat_requests_total",
    "Proxied requests by logical operation and outcome",
    labelnames=["operation", "outcome"],
)
_REQ_DURATION = Histogram(
    "compat_request_duration_ms",
    "End to end proxy request duration in ms",
    labelnames=["operation"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)
_UPSTREAM_LATENCY = Histogram(
    "compat_upstream_latency_ms",
    "Upstream call latency in ms",
    labelnames=["status"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)
_TRANSLATION_ERRORS = Counter(
    "compat_translation_errors_total",
    "Request fields that could not be translated",
    labelnames=["operation", "field", "severity"],
)
_ENUM_FALLBACKS = Counter(
    "compat_enum_fallbacks_total",
    "Unknown upstream enum values replaced by their fallback",
    labelnames=["operation", "field"],
)
_UNEXPECTED_SHAPES = Counter(
    "compat_upstream_unexpected_shape_total",
    "Upstream replies that did not match the mapping table",
    labelnames=["operation", "field"],
)
_DISCONNECTS = Counter(
    "compat_client_disconnects_total",
    "Exchanges cancelled because the client went away",
)


class ProxyMetricsCollector:
    def __init__(self) -> None:
        # In-memory mirrors to provide summaries without scraping Prometheus
        self._request_totals: Dict[Tuple[str, str], int] = defaultdict(int)
        self._translation_errors: int = 0
        self._enum_fallbacks: int = 0
        self._unexpected_shapes: int = 0
        self._disconnects: int = 0
        self._latency_sum_ms: float = 0.0
        self._latency_count: int = 0

    def record_request(self, operation: str, outcome: str, duration_ms: float) -> None:
        _REQ_TOTAL.labels(operation=operation, outcome=outcome).inc()
        _REQ_DURATION.labels(operation=operation).observe(duration_ms)
        self._request_totals[(operation, outcome)] += 1
        self._latency_sum_ms += duration_ms
        self._latency_count += 1

    def record_upstream(self, status: int | str, duration_ms: float) -> None:
        _UPSTREAM_LATENCY.labels(status=str(status)).observe(duration_ms)

    def record_translation_error(self, operation: str, field: str, severity: str) -> None:
        _TRANSLATION_ERRORS.labels(operation=operation, field=field, severity=severity).inc()
        self._translation_errors += 1

    def record_enum_fallback(self, operation: str, field: str) -> None:
        _ENUM_FALLBACKS.labels(operation=operation, field=field).inc()
        self._enum_fallbacks += 1

    def record_unexpected_shape(self, operation: str, field: str) -> None:
        _UNEXPECTED_SHAPES.labels(operation=operation, field=field).inc()
        self._unexpected_shapes += 1

    def record_disconnect(self) -> None:
        _DISCONNECTS.inc()
        self._disconnects += 1

    def get_total_requests(self) -> int:
        return sum(self._request_totals.values())

    def get_outcome_count(self, outcome: str) -> int:
        return sum(count for (_, out), count in self._request_totals.items() if out == outcome)

    def get_average_latency(self) -> float:
        if self._latency_count == 0:
            return 0.0
        return self._latency_sum_ms / self._latency_count

    def summary(self) -> Dict[str, object]:
        return {
            "requests_total": self.get_total_requests(),
            "requests": {f"{op}:{out}": n for (op, out), n in sorted(self._request_totals.items())},
            "translation_errors": self._translation_errors,
            "enum_fallbacks": self._enum_fallbacks,
            "unexpected_shapes": self._unexpected_shapes,
            "client_disconnects": self._disconnects,
            "average_latency_ms": self.get_average_latency(),
        }

    def reset_metrics(self) -> None:
        # Only the local mirrors; prometheus collectors live for the process
        self._request_totals.clear()
        self._translation_errors = 0
        self._enum_fallbacks = 0
        self._unexpected_shapes = 0
        self._disconnects = 0
        self._latency_sum_ms = 0.0
        self._latency_count = 0
