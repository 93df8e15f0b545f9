"""
Latency measurement for Simpleton CLI.

LatencyTracker brackets a block of code and exposes the elapsed time,
which the LLM client feeds into its response-time statistics. When a
PerformanceMonitor is attached, every bracket is also recorded as an
operation metric with a success flag.

PerformanceMonitor keeps a bounded history of operation metrics and
derives per-operation benchmarks and a short summary from it. It is an
ordinary instance; Session creates one and hands it to the client.
"""

import contextlib
import itertools
import json
import logging
import os
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_METRICS = 1000
RECENT_OPERATIONS_WINDOW = 50
DEFAULT_EXPORT_PATH = os.path.join("~", ".ai-cli", "performance.json")

# Load per CPU, in percent
CPU_WARNING_THRESHOLD = 75.0
CPU_CRITICAL_THRESHOLD = 90.0


@dataclass
class OperationMetric:
    """One timed operation."""

    name: str
    duration_ms: float
    success: bool
    timestamp: float  # Epoch seconds when the operation ended
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class BenchmarkResult:
    """Aggregate timings for one operation name."""

    operation_name: str
    avg_duration_ms: float
    min_duration_ms: float
    max_duration_ms: float
    total_runs: int
    success_rate: float  # Percent

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _average(values: list[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


class PerformanceMonitor:
    """
    Records per-operation timings for one session.

    Usage:
        op_id = monitor.start_operation("read_file")
        ...
        monitor.end_operation(op_id, success=True)

        with monitor.measure("list_files"):
            ...

        result = await monitor.measure_async("chat", lambda: client.chat_completion(msgs))
    """

    def __init__(
        self,
        max_metrics: int = DEFAULT_MAX_METRICS,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.max_metrics = max_metrics
        self.enabled = enabled
        self._clock = clock
        self._metrics: deque[OperationMetric] = deque(maxlen=max_metrics)
        self._active: dict[str, tuple[str, float]] = {}
        self._ids = itertools.count(1)

    @property
    def metrics(self) -> list[OperationMetric]:
        return list(self._metrics)

    def start_operation(self, name: str) -> str | None:
        """Start timing an operation. Returns None while disabled."""
        if not self.enabled:
            return None
        op_id = f"{name}#{next(self._ids)}"
        self._active[op_id] = (name, time.perf_counter())
        return op_id

    def end_operation(
        self,
        op_id: str | None,
        success: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> OperationMetric | None:
        """Stop timing an operation and record it. Unknown ids are ignored."""
        if not self.enabled or op_id is None:
            return None
        active = self._active.pop(op_id, None)
        if active is None:
            return None
        name, started = active
        return self.record(name, (time.perf_counter() - started) * 1000, success, metadata)

    def record(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> OperationMetric | None:
        """Record an operation timed elsewhere."""
        if not self.enabled:
            return None
        metric = OperationMetric(
            name=name,
            duration_ms=duration_ms,
            success=success,
            timestamp=self._clock(),
            metadata=dict(metadata or {}),
        )
        self._metrics.append(metric)
        return metric

    @contextlib.contextmanager
    def measure(self, name: str, metadata: dict[str, Any] | None = None) -> Iterator[None]:
        """Time a block; an exception marks the operation as failed and propagates."""
        op_id = self.start_operation(name)
        success = True
        try:
            yield
        except BaseException:
            success = False
            raise
        finally:
            self.end_operation(op_id, success, metadata)

    async def measure_async(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        metadata: dict[str, Any] | None = None,
    ) -> T:
        with self.measure(name, metadata):
            return await fn()

    def get_benchmarks(self, name: str | None = None) -> list[BenchmarkResult]:
        """Per-operation aggregates, in order of first appearance."""
        grouped: dict[str, list[OperationMetric]] = {}
        for metric in self._metrics:
            if name is None or metric.name == name:
                grouped.setdefault(metric.name, []).append(metric)

        results = []
        for op_name, metrics in grouped.items():
            durations = [m.duration_ms for m in metrics]
            successes = sum(1 for m in metrics if m.success)
            results.append(BenchmarkResult(
                operation_name=op_name,
                avg_duration_ms=_average(durations),
                min_duration_ms=min(durations),
                max_duration_ms=max(durations),
                total_runs=len(metrics),
                success_rate=successes / len(metrics) * 100,
            ))
        return results

    def get_performance_summary(self) -> dict[str, Any]:
        """Recent operations plus a coarse CPU health reading."""
        recent: dict[str, list[float]] = {}
        for metric in list(self._metrics)[-RECENT_OPERATIONS_WINDOW:]:
            recent.setdefault(metric.name, []).append(metric.duration_ms)

        cpu = self._cpu_usage()
        return {
            "recent_operations": [
                {"name": op_name, "avg_duration_ms": _average(durations), "count": len(durations)}
                for op_name, durations in recent.items()
            ],
            "active_operations": len(self._active),
            "cpu": cpu,
            "system_health": self._assess_health(cpu["usage"]),
        }

    def export_metrics(self, path: str | None = None) -> str:
        """Write metrics and benchmarks to a JSON file. Returns the path written."""
        path = os.path.expanduser(path or DEFAULT_EXPORT_PATH)
        data = {
            "timestamp": self._clock(),
            "system_info": {"platform": os.name, "cpus": os.cpu_count()},
            "metrics": [asdict(m) for m in self._metrics],
            "benchmarks": [b.to_dict() for b in self.get_benchmarks()],
        }

        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # Write atomically
        tmp_file = f"{path}.tmp"
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_file, path)

        logger.debug(f"Exported {len(self._metrics)} performance metrics to {path}")
        return path

    def clear(self) -> None:
        self._metrics.clear()
        self._active.clear()

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        if not enabled:
            self._active.clear()

    @staticmethod
    def _cpu_usage() -> dict[str, Any]:
        try:
            load = os.getloadavg()
        except (AttributeError, OSError):
            # Not available on this platform
            return {"usage": None, "load_average": []}
        cpus = os.cpu_count() or 1
        return {
            "usage": min(round(load[0] / cpus * 100, 2), 100.0),
            "load_average": [round(value, 2) for value in load],
        }

    @staticmethod
    def _assess_health(cpu_usage: float | None) -> str:
        if cpu_usage is None:
            return "unknown"
        if cpu_usage > CPU_CRITICAL_THRESHOLD:
            return "critical"
        if cpu_usage > CPU_WARNING_THRESHOLD:
            return "warning"
        return "good"


class LatencyTracker:
    """
    Times one request phase in milliseconds.

        with LatencyTracker("chat_completion", monitor=monitor) as tracker:
            response = await client.post(...)
            tracker.success = not response.is_error
        stats.record_response_time(tracker.elapsed_ms)

    Emits "[LATENCY] chat_completion: 45.3ms" at DEBUG level. An exception
    leaving the block, or success set to False, records a failed operation.
    """

    def __init__(self, phase_name: str = "operation", monitor: PerformanceMonitor | None = None):
        self.phase_name = phase_name
        self.monitor = monitor
        self.success = True
        self.start_time: float | None = None
        self.elapsed_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.success = False
        self.stop()

    def stop(self) -> float:
        """Freeze elapsed_ms now (idempotent after the first call)."""
        if self.start_time is not None:
            self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
            self.start_time = None
            logger.debug(f"[LATENCY] {self.phase_name}: {self.elapsed_ms:.1f}ms")
            if self.monitor is not None:
                self.monitor.record(self.phase_name, self.elapsed_ms, self.success)
        return self.elapsed_ms


def enable_profiling(log_level=logging.DEBUG):
    """Enable detailed latency output."""
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def disable_profiling():
    """Disable detailed latency output."""
    logging.getLogger("simpleton_cli").setLevel(logging.WARNING)
