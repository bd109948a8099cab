"""Prometheus metrics for monitoring sync passes."""

import prometheus_client as _prom

Counter = _prom.Counter
Histogram = _prom.Histogram


# Per-source diff metrics
SOURCE_SYNC_LATENCY = Histogram(
    "idsync_source_sync_seconds",
    "Time to fetch a diff from a source, by source and source_id",
    ["source", "source_id"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
)
SOURCE_DIFF_ITEMS = Histogram(
    "idsync_source_diff_items",
    "Number of new, changed and removed users reported by a source",
    ["source", "source_id"],
    buckets=(0, 1, 5, 10, 20, 50, 100, 200, 500, 1000, 5000, float("inf")),
)
SOURCE_FAILURES = Counter(
    "idsync_source_failures",
    "Sources that failed to produce a diff, by source and source_id",
    ["source", "source_id"],
)

# Per-item provider operations
OPERATIONS = Counter(
    "idsync_operations",
    "Provider operations by operation and status",
    ["operation", "status"],
)
