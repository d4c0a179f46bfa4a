"""
Cycle timing and tracking accuracy metrics.

The ball filter runs once per control cycle for the whole lifetime of the
robot process, so timing samples are kept in a sliding window of the most
recent cycles instead of growing without bound.
"""

import time
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterable, Optional

import numpy as np

DEFAULT_WINDOW_SIZE = 1000


class PerformanceMetrics:
    """
    Sliding-window statistics of named samples, e.g. cycle durations.

    Only the last window_size samples per name are kept. The total number of
    samples ever recorded is counted separately.
    """

    def __init__(self, window_size: int = DEFAULT_WINDOW_SIZE):
        if window_size < 1:
            raise ValueError(f"Window size must be positive, got {window_size}")
        self.window_size = window_size
        self.samples: Dict[str, Deque[float]] = {}
        self.totals: Dict[str, int] = {}

    def record(self, name: str, value: float):
        """Append a sample, dropping the oldest one once the window is full."""
        if name not in self.samples:
            self.samples[name] = deque(maxlen=self.window_size)
            self.totals[name] = 0
        self.samples[name].append(float(value))
        self.totals[name] += 1

    def get_stats(self, name: str) -> Dict[str, float]:
        """
        Statistics over the current window.

        Args:
            name: Sample name

        Returns:
            Dictionary with mean, std, min, max, p95, count (samples in the
            window) and total (samples ever recorded); empty if nothing was
            recorded under this name
        """
        window = self.samples.get(name)
        if not window:
            return {}

        values = np.fromiter(window, dtype=float, count=len(window))
        return {
            "mean": float(np.mean(values)),
            "std": float(np.std(values)),
            "min": float(np.min(values)),
            "max": float(np.max(values)),
            "p95": float(np.percentile(values, 95)),
            "count": len(values),
            "total": self.totals[name],
        }

    def summary(self) -> Dict[str, Dict[str, float]]:
        return {name: self.get_stats(name) for name in self.samples}

    def reset(self):
        self.samples.clear()
        self.totals.clear()


@contextmanager
def timer(name: str, metrics: Optional[PerformanceMetrics] = None):
    """
    Time a block and record the elapsed seconds under name.

    Example:
        >>> metrics = PerformanceMetrics(window_size=100)
        >>> with timer("cycle", metrics):
        ...     ball_filter.cycle(now=0.0, delta_time=0.012)
        >>> metrics.get_stats("cycle")["p95"]
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        if metrics is not None:
            metrics.record(name, time.perf_counter() - start)


def position_error(estimated: np.ndarray, true_position: np.ndarray) -> float:
    """Euclidean distance between an estimated and a true ball position (m)."""
    return float(np.linalg.norm(np.asarray(estimated) - np.asarray(true_position)))


def position_rmse(errors: Iterable[float]) -> Optional[float]:
    """
    Root mean squared position error.

    Args:
        errors: Per-cycle position errors (m)

    Returns:
        RMSE (m), or None if there are no errors
    """
    errors = np.asarray(list(errors), dtype=float)
    if errors.size == 0:
        return None
    return float(np.sqrt(np.mean(errors ** 2)))
