"""Metrics aggregation for tag resolution and snapshot budgeting.

Collects per-outcome resolution counts and latency, and per-purpose budget
counters, in memory so tests and health endpoints can inspect them.
"""

from __future__ import annotations

import math
import threading
from collections import defaultdict


def _percentile(values: list[float], p: float) -> float:
    if not values:
        return 0.0
    if len(values) == 1:
        return values[0]
    ordered = sorted(values)
    pos = (len(ordered) - 1) * p
    lo = math.floor(pos)
    hi = math.ceil(pos)
    if lo == hi:
        return ordered[lo]
    frac = pos - lo
    return ordered[lo] * (1 - frac) + ordered[hi] * frac


class MetricsCollector:
    """Thread-safe in-memory metrics collector."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._resolution_latencies: list[float] = []
        self._resolution_status: dict[str, int] = defaultdict(int)
        self._budget_stats: dict[str, dict] = {}

    def record_resolution(self, *, status: str, latency_ms: float) -> None:
        with self._lock:
            self._resolution_latencies.append(float(latency_ms))
            self._resolution_status[status] += 1

    def record_budget(
        self,
        *,
        purpose: str,
        kept: int,
        dropped: int,
        excluded: int = 0,
        total_size: int = 0,
    ) -> None:
        with self._lock:
            stats = self._budget_stats.setdefault(
                purpose,
                {
                    "purpose": purpose,
                    "request_count": 0,
                    "kept_count": 0,
                    "dropped_count": 0,
                    "excluded_count": 0,
                    "max_payload_size": 0,
                },
            )
            stats["request_count"] += 1
            stats["kept_count"] += kept
            stats["dropped_count"] += dropped
            stats["excluded_count"] += excluded
            stats["max_payload_size"] = max(stats["max_payload_size"], total_size)

    def get_budget_summary(self, purpose: str) -> dict:
        with self._lock:
            return dict(self._budget_stats.get(purpose, {}))

    def snapshot(self) -> dict:
        with self._lock:
            total = sum(self._resolution_status.values())
            failed = self._resolution_status.get("failed", 0)
            return {
                "resolution": {
                    "count": total,
                    "failure_rate": (failed / total) if total else 0.0,
                    "latency_p50_ms": round(_percentile(self._resolution_latencies, 0.5), 2),
                    "latency_p95_ms": round(_percentile(self._resolution_latencies, 0.95), 2),
                    "status_breakdown": dict(self._resolution_status),
                },
                "budgets": list(self._budget_stats.values()),
            }

    def reset(self) -> None:
        with self._lock:
            self._resolution_latencies.clear()
            self._resolution_status.clear()
            self._budget_stats.clear()


_metrics_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _metrics_collector
