"""In-process metrics for graph, search and MCP operations.

Operations are named ``<area>.<action>`` (``graph.create_match``,
``search.similar``, ``mcp.advance_match``).  Each name accumulates timing
samples plus a count of calls skipped because the store was unavailable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass
class LatencySummary:
    """Aggregated latency metrics for one operation."""

    count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    last_ms: float = 0.0

    def add(self, duration_ms: float, ok: bool) -> None:
        first = self.count == 0
        self.count += 1
        self.error_count += 0 if ok else 1
        self.total_ms += duration_ms
        self.last_ms = duration_ms
        self.min_ms = duration_ms if first else min(self.min_ms, duration_ms)
        self.max_ms = duration_ms if first else max(self.max_ms, duration_ms)

    def as_dict(self) -> dict[str, float | int]:
        avg = self.total_ms / self.count if self.count else 0.0
        return {
            "count": self.count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "total_ms": round(self.total_ms, 3),
            "avg_ms": round(avg, 3),
            "min_ms": round(self.min_ms, 3),
            "max_ms": round(self.max_ms, 3),
            "last_ms": round(self.last_ms, 3),
        }


class _MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._by_operation: dict[str, LatencySummary] = {}

    def _summary(self, operation: str) -> LatencySummary:
        summary = self._by_operation.get(operation)
        if summary is None:
            summary = self._by_operation[operation] = LatencySummary()
        return summary

    def observe(self, operation: str, duration_ms: float, ok: bool) -> None:
        duration_ms = max(float(duration_ms), 0.0)
        with self._lock:
            self._summary(operation).add(duration_ms, ok)
        logger.info("latency operation=%s duration_ms=%.3f ok=%s", operation, duration_ms, ok)

    def skipped(self, operation: str) -> None:
        with self._lock:
            self._summary(operation).skipped_count += 1
        logger.info("skipped operation=%s reason=store_unavailable", operation)

    def snapshot(self, prefix: str = "") -> dict[str, dict[str, float | int]]:
        with self._lock:
            return {
                name: summary.as_dict()
                for name, summary in sorted(self._by_operation.items())
                if name.startswith(prefix)
            }

    def clear(self) -> None:
        with self._lock:
            self._by_operation = {}


_REGISTRY = _MetricsRegistry()


def record_latency(*, operation: str, duration_ms: float, ok: bool = True) -> None:
    """Record one latency sample."""
    _REGISTRY.observe(operation, duration_ms, ok)


def record_skipped(*, operation: str) -> None:
    """Count an operation that never ran because the store was unavailable."""
    _REGISTRY.skipped(operation)


def latency_metrics_snapshot(prefix: str = "") -> dict[str, dict[str, float | int]]:
    """Return aggregates for every operation whose name starts with *prefix*."""
    return _REGISTRY.snapshot(prefix)


def reset_latency_metrics() -> None:
    _REGISTRY.clear()
