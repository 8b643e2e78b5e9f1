"""Per-tick stage timing.

A tick has to finish inside the polling interval or events start piling up
in the hub. Each stage is timed with ``time.perf_counter``; ``total``
samples longer than the budget are counted as overruns.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import numpy as np


@dataclass
class StageStats:
    """Timing over the sample window of one stage."""
    name: str
    avg_ms: float
    min_ms: float
    max_ms: float
    p95_ms: float
    call_count: int


class TickProfiler:
    """Rolling stage timings for the tick loop.

    Usage:
        profiler = TickProfiler(budget_ms=10)

        with profiler.stage("total"):
            with profiler.stage("advance"):
                ...

        print(profiler.summary(), profiler.overruns)
    """

    STAGES = ("drain", "advance", "correlate", "total")

    def __init__(self, budget_ms: float = 10.0, window_size: int = 500):
        self.budget_ms = budget_ms
        self.enabled = True
        self.overruns = 0
        self._window_size = window_size
        self._samples: dict[str, deque[float]] = {
            name: deque(maxlen=window_size) for name in self.STAGES
        }
        self._calls: Counter = Counter()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, (time.perf_counter() - t0) * 1000.0)

    def record(self, name: str, elapsed_ms: float):
        samples = self._samples.get(name)
        if samples is None:
            samples = self._samples[name] = deque(maxlen=self._window_size)
        samples.append(elapsed_ms)
        self._calls[name] += 1
        if name == "total" and elapsed_ms > self.budget_ms:
            self.overruns += 1

    def get_stage_stats(self, name: str) -> StageStats | None:
        samples = self._samples.get(name)
        if not samples:
            return None
        arr = np.fromiter(samples, dtype=np.float64, count=len(samples))
        return StageStats(
            name=name,
            avg_ms=float(arr.mean()),
            min_ms=float(arr.min()),
            max_ms=float(arr.max()),
            p95_ms=float(np.percentile(arr, 95)),
            call_count=self._calls[name],
        )

    def summary(self) -> dict[str, dict]:
        """Rounded stats for every stage that has samples."""
        result = {}
        for name in self._samples:
            stats = self.get_stage_stats(name)
            if stats is None:
                continue
            result[name] = {
                "avg_ms": round(stats.avg_ms, 3),
                "min_ms": round(stats.min_ms, 3),
                "max_ms": round(stats.max_ms, 3),
                "p95_ms": round(stats.p95_ms, 3),
                "calls": stats.call_count,
            }
        return result

    @property
    def utilization(self) -> float:
        """Mean total tick time as a fraction of the budget."""
        stats = self.get_stage_stats("total")
        return stats.avg_ms / self.budget_ms if stats else 0.0

    def reset(self):
        for samples in self._samples.values():
            samples.clear()
        self._calls.clear()
        self.overruns = 0
