"""Observability: in-process counters and timers for context assembly."""

import time
from contextlib import contextmanager
from typing import Any

import structlog

logger = structlog.get_logger().bind(source="observability")


class Metrics:
    """Dict-based metrics collector for counters and timers."""

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._timers: dict[str, list[float]] = {}

    def counter(self, name: str, value: int = 1):
        """Increment a counter by the given value."""
        self._counters[name] = self._counters.get(name, 0) + value

    def count(self, name: str) -> int:
        return self._counters.get(name, 0)

    def counters_under(self, prefix: str) -> dict[str, int]:
        """Counters named ``<prefix>.<rest>``, keyed by ``rest``."""
        head = prefix + "."
        return {name[len(head) :]: v for name, v in self._counters.items() if name.startswith(head)}

    @contextmanager
    def timer(self, name: str):
        """Time the wrapped block and record its duration in seconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self._timers.setdefault(name, []).append(time.perf_counter() - start)

    def summary(self) -> dict[str, Any]:
        """Return counters plus count/total/avg/max per timer."""
        timer_summary = {}
        for name, durations in self._timers.items():
            timer_summary[name] = {
                "count": len(durations),
                "total": sum(durations),
                "avg": sum(durations) / len(durations),
                "max": max(durations),
            }
        return {"counters": dict(self._counters), "timers": timer_summary}

    def reset(self):
        self._counters.clear()
        self._timers.clear()


# Module-level singleton
metrics = Metrics()


def log_run_summary():
    """Log what this process assembled. Silent when no window was built."""
    windows = metrics.count("context.windows")
    if not windows:
        return
    build = metrics.summary()["timers"].get("context.build", {})
    logger.info(
        "context_run_summary",
        windows=windows,
        build_avg_ms=round(build.get("avg", 0.0) * 1000, 2),
        cross_chat=metrics.counters_under("context.cross_chat"),
        degraded=metrics.counters_under("context.degraded"),
    )
