"""
Wall-clock timing of engine operations, aggregated per operation name.
"""
import itertools
import statistics
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple


class PerformanceMonitor:
    def __init__(self):
        self._metrics: Dict[str, List[float]] = {}
        self._active: Dict[str, Tuple[str, float]] = {}
        self._ids = itertools.count(1)

    def start_operation(self, name: str) -> str:
        operation_id = f"{name}#{next(self._ids)}"
        self._active[operation_id] = (name, time.perf_counter())
        return operation_id

    def end_operation(self, operation_id: str) -> float:
        """Milliseconds since the matching start_operation; 0.0 for an unknown id."""
        started = self._active.pop(operation_id, None)
        if started is None:
            return 0.0
        name, start = started
        duration_ms = (time.perf_counter() - start) * 1000
        self._metrics.setdefault(name, []).append(duration_ms)
        return duration_ms

    @contextmanager
    def track(self, name: str, timings: Optional[Dict[str, float]] = None) -> Iterator[str]:
        operation_id = self.start_operation(name)
        try:
            yield operation_id
        finally:
            elapsed = self.end_operation(operation_id)
            if timings is not None:
                timings[name] = elapsed

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        stats = {}
        for name, durations in self._metrics.items():
            if not durations:
                continue
            ordered = sorted(durations)
            stats[name] = {
                "count": len(ordered),
                "average": statistics.fmean(ordered),
                "median": ordered[len(ordered) // 2],
                "p95": ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))],
                "min": ordered[0],
                "max": ordered[-1],
            }
        return stats

    def active_operations(self) -> int:
        return len(self._active)

    def reset(self) -> None:
        self._metrics.clear()
        self._active.clear()
