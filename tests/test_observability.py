"""Tests for the in-process metrics collector."""

from unittest.mock import MagicMock

import pytest

import observability
from observability import Metrics, log_run_summary, metrics


class TestMetrics:
    def test_counter(self):
        m = Metrics()
        m.counter("a")
        m.counter("a", 2)
        assert m.count("a") == 3
        assert m.count("missing") == 0

    def test_timer_records_on_error(self):
        m = Metrics()
        with pytest.raises(RuntimeError):
            with m.timer("t"):
                raise RuntimeError("boom")
        assert m.summary()["timers"]["t"]["count"] == 1

    def test_summary_and_reset(self):
        m = Metrics()
        with m.timer("t"):
            pass
        with m.timer("t"):
            pass
        m.counter("c")
        summary = m.summary()
        assert summary["counters"] == {"c": 1}
        assert summary["timers"]["t"]["count"] == 2
        assert summary["timers"]["t"]["max"] >= summary["timers"]["t"]["avg"]

        m.reset()
        assert m.summary() == {"counters": {}, "timers": {}}

    def test_counters_under(self):
        m = Metrics()
        m.counter("context.degraded.image")
        m.counter("context.degraded.facts", 2)
        m.counter("context.windows")
        assert m.counters_under("context.degraded") == {"image": 1, "facts": 2}
        assert m.counters_under("context.cross") == {}


class TestRunSummary:
    def test_logs_window_counts(self, monkeypatch):
        fake = MagicMock()
        monkeypatch.setattr(observability, "logger", fake)
        metrics.counter("context.windows", 2)
        metrics.counter("context.degraded.image")
        with metrics.timer("context.build"):
            pass

        log_run_summary()

        event, kwargs = fake.info.call_args.args[0], fake.info.call_args.kwargs
        assert event == "context_run_summary"
        assert kwargs["windows"] == 2
        assert kwargs["degraded"] == {"image": 1}
        assert kwargs["cross_chat"] == {}

    def test_silent_without_windows(self, monkeypatch):
        fake = MagicMock()
        monkeypatch.setattr(observability, "logger", fake)
        log_run_summary()
        fake.info.assert_not_called()
