"""Prometheus metrics for the driver.

Thin wrappers around prometheus_client primitives with a name guard, plus
the collectors the command and bulk-load paths update. Collectors live in
the default registry so the host application exposes them with its own
``/metrics`` endpoint.
"""

from __future__ import annotations

import re

from prometheus_client import Counter, Gauge, Histogram

_NAME_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_PREFIX = "ckdb"


def _validate(name: str) -> str:
    if not _NAME_RE.match(name):  # pragma: no cover - simple guard
        raise ValueError(
            f"Invalid metric name '{name}'. Use snake_case alphanumerics/underscores."
        )
    return name


def _prefix(name: str) -> str:
    if not name.startswith(_PREFIX + "_"):
        return f"{_PREFIX}_{name}"
    return name


def get_counter(name: str, documentation: str, labels: list[str] | None = None) -> Counter:
    return Counter(_validate(_prefix(name)), documentation, labels or ())


def get_histogram(
    name: str,
    documentation: str,
    buckets: list[float] | None = None,
) -> Histogram:
    full_name = _validate(_prefix(name))
    if buckets is None:
        return Histogram(full_name, documentation)
    return Histogram(full_name, documentation, buckets=buckets)


def get_gauge(name: str, documentation: str) -> Gauge:
    return Gauge(_validate(_prefix(name)), documentation)


QUERIES_TOTAL = get_counter("queries_total", "Statements sent to ClickHouse")
QUERY_ERRORS = get_counter("query_errors_total", "Statements that failed")
QUERY_CACHE_HITS = get_counter("query_cache_hits_total", "Results served from the query cache")
SHARED_RESULTS = get_counter(
    "shared_results_total", "Results served by request coalescing", ["tier"]
)
QUERY_LATENCY = get_histogram("query_latency_seconds", "Round trip of one statement")
BATCH_ROWS = get_counter("batch_rows_total", "Rows written through batch helpers and sinks")
IN_FLIGHT_UPLOADS = get_gauge("in_flight_uploads", "File uploads currently in flight")


__all__ = [
    "get_counter",
    "get_histogram",
    "get_gauge",
    "QUERIES_TOTAL",
    "QUERY_ERRORS",
    "QUERY_CACHE_HITS",
    "SHARED_RESULTS",
    "QUERY_LATENCY",
    "BATCH_ROWS",
    "IN_FLIGHT_UPLOADS",
]
