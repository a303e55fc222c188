"""
Timing instrumentation for diagnostic passes.

Each sightline processed by a driver counts as one step; the monitor keeps a
moving window of step durations and the total elapsed wall-clock time of the
invocation.
"""

from __future__ import annotations

import logging
import statistics
import time
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger("taudiag.monitoring")


class PerformanceMonitor:
    """
    Aggregate timing statistics across repeated diagnostic steps.

    Parameters
    ----------
    log_interval:
        Emit a log entry every `log_interval` steps.  Set to zero to disable.
    window:
        Number of samples used when computing moving averages.
    """

    def __init__(self, *, log_interval: int = 0, window: int = 100) -> None:
        self.log_interval = max(0, log_interval)
        self.window = max(1, window)
        self.step_times: deque[float] = deque(maxlen=self.window)
        self.photon_counts: deque[int] = deque(maxlen=self.window)
        self._step = 0
        self._start = time.perf_counter()

    def __enter__(self) -> PerformanceMonitor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def monitor_step(self, n_photons: int = 0) -> Iterator[None]:
        """
        Context-manager that measures wall-clock duration of one step.

        Example
        -------
        >>> monitor = PerformanceMonitor(log_interval=4)
        >>> for sightline in sightlines:
        ...     with monitor.monitor_step(n_photons=len(frequencies)):
        ...         integrate(sightline)
        ...     monitor.maybe_log()
        """

        start = time.perf_counter()
        try:
            yield
        finally:
            self.step_times.append(time.perf_counter() - start)
            self.photon_counts.append(n_photons)
            self._step += 1

    def maybe_log(self, step: int | None = None) -> None:
        if self.log_interval == 0:
            return

        current_step = self._step if step is None else step
        if current_step == 0 or current_step % self.log_interval != 0:
            return

        logger.info("Step %s metrics: %s", current_step, self.current_metrics())

    @property
    def elapsed(self) -> float:
        """Seconds since the monitor was created or last reset."""
        return time.perf_counter() - self._start

    def current_metrics(self) -> dict[str, float]:
        metrics: dict[str, float] = {"elapsed_s": self.elapsed}

        if self.step_times:
            mean_time = statistics.mean(self.step_times)
            metrics["step_time_ms"] = 1e3 * mean_time
            total_time = max(sum(self.step_times), 1e-9)
            metrics["throughput_photons_s"] = sum(self.photon_counts) / total_time

        return metrics

    def reset(self) -> None:
        self.step_times.clear()
        self.photon_counts.clear()
        self._step = 0
        self._start = time.perf_counter()

    def close(self) -> None:
        self.step_times.clear()
        self.photon_counts.clear()


__all__ = ["PerformanceMonitor"]
