"""Metrics module for Prometheus monitoring."""

from .metrics import (
    OPERATIONS,
    SOURCE_DIFF_ITEMS,
    SOURCE_FAILURES,
    SOURCE_SYNC_LATENCY,
)

__all__ = [
    "OPERATIONS",
    "SOURCE_DIFF_ITEMS",
    "SOURCE_FAILURES",
    "SOURCE_SYNC_LATENCY",
]
