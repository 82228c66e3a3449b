"""Request counters and a background monitor that logs them periodically."""

import logging
import threading
import time
from datetime import timedelta

logger = logging.getLogger(__name__)


def _microseconds(duration) -> int:
    if isinstance(duration, timedelta):
        micros = duration // timedelta(microseconds=1)
    else:
        micros = int(float(duration) * 1_000_000)
    if micros < 0:
        raise ValueError("duration must not be negative")
    return micros


def _seconds(interval) -> float:
    if isinstance(interval, timedelta):
        return interval.total_seconds()
    return float(interval)


class Metrics:
    """Thread-safe counters of handled requests and their processing time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start = time.monotonic()
        self._total = 0
        self._failed = 0
        self._processing_us = 0

    @property
    def requests_total(self) -> int:
        with self._lock:
            return self._total

    @property
    def requests_failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def processing_time(self) -> timedelta:
        with self._lock:
            return timedelta(microseconds=self._processing_us)

    def record_request(self, duration, success=True) -> None:
        """Count one request that took ``duration`` (timedelta or seconds)."""
        micros = _microseconds(duration)
        with self._lock:
            self._total += 1
            self._processing_us += micros
            if not success:
                self._failed += 1

    def average_processing_time(self) -> timedelta:
        with self._lock:
            if self._total == 0:
                return timedelta(0)
            return timedelta(microseconds=self._processing_us // self._total)

    def uptime(self) -> timedelta:
        return timedelta(seconds=time.monotonic() - self._start)

    def snapshot(self) -> dict:
        """Return the current counters as a dict."""
        with self._lock:
            total, failed, micros = self._total, self._failed, self._processing_us
        average = timedelta(microseconds=micros // total) if total else timedelta(0)
        return {
            "total_requests": total,
            "failed_requests": failed,
            "avg_process_time": average,
        }


class Monitor:
    """Logs a Metrics snapshot every ``log_interval`` from a background thread."""

    def __init__(self, metrics, log_interval) -> None:
        interval = _seconds(log_interval)
        if interval <= 0:
            raise ValueError("log_interval must be positive")
        self.metrics = metrics
        self.log_interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name="metrics-monitor", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self, stop: threading.Event) -> None:
        while not stop.wait(self.log_interval):
            self.log_metrics()

    def log_metrics(self) -> dict:
        snap = self.metrics.snapshot()
        logger.info(
            "System metrics total_requests=%d failed_requests=%d avg_process_time=%s",
            snap["total_requests"],
            snap["failed_requests"],
            snap["avg_process_time"],
            extra=snap,
        )
        return snap