"""Tests for heapscope.analysis.leak_analyzer."""

import pytest

from heapscope.analysis.leak_analyzer import Alert, AlertKind, LeakAnalyzer
from heapscope.profiler.sampler import MemorySample
from heapscope.profiler.scope_tracker import ScopeDelta


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_samples(heap_used: list, limit: int = 0) -> list:
    return [
        MemorySample(timestamp=float(i), heap_used_mb=used, heap_total_mb=used * 2, heap_limit_mb=limit)
        for i, used in enumerate(heap_used)
    ]


def _make_deltas(heap_used: list) -> list:
    return [
        ScopeDelta(timestamp=float(i), heap_used_mb=used, heap_total_mb=used, duration_ms=10)
        for i, used in enumerate(heap_used)
    ]


def _replay_global(analyzer: LeakAnalyzer, heap_used: list, threshold: float) -> list:
    """Feed samples one by one, as the sampling loop does; return alerts per step."""
    samples = _make_samples(heap_used)
    return [
        analyzer.check_global(samples[: i + 1], threshold)
        for i in range(len(samples))
    ]


def _replay_scope(analyzer: LeakAnalyzer, heap_used: list, threshold: float) -> list:
    deltas = _make_deltas(heap_used)
    return [
        analyzer.check_scope("/route", deltas[: i + 1], threshold)
        for i in range(len(deltas))
    ]


# ---------------------------------------------------------------------------
# Alert
# ---------------------------------------------------------------------------

class TestAlert:
    def test_to_dict(self):
        alert = Alert(kind=AlertKind.SCOPE_LEAK, magnitude=12.0, message="grew", scope="/home")
        d = alert.to_dict()
        assert d["kind"] == "scope_leak"
        assert d["scope"] == "/home"
        assert d["magnitude"] == 12.0
        assert d["timestamp"] > 0

    def test_frozen(self):
        alert = Alert(kind=AlertKind.GLOBAL_LEAK, magnitude=1.0, message="x")
        with pytest.raises(AttributeError):
            alert.magnitude = 2.0  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Global check
# ---------------------------------------------------------------------------

class TestCheckGlobal:
    def test_no_alert_with_fewer_than_two_samples(self):
        analyzer = LeakAnalyzer()
        assert analyzer.check_global([], 10) == []
        assert analyzer.check_global(_make_samples([500]), 10) == []

    def test_scenario_alert_only_at_third_sample(self):
        steps = _replay_global(LeakAnalyzer(), [50, 55, 70], threshold=10)
        assert steps[0] == []
        assert steps[1] == []
        assert len(steps[2]) == 1
        alert = steps[2][0]
        assert alert.kind is AlertKind.GLOBAL_LEAK
        assert alert.magnitude == 15
        assert alert.scope is None

    def test_equal_to_threshold_does_not_alert(self):
        assert LeakAnalyzer().check_global(_make_samples([50, 60]), 10) == []

    def test_just_above_threshold_alerts(self):
        alerts = LeakAnalyzer().check_global(_make_samples([50, 61]), 10)
        assert [a.kind for a in alerts] == [AlertKind.GLOBAL_LEAK]

    @pytest.mark.parametrize("previous,latest,threshold", [
        (1, 2, 0.5), (100, 250, 100), (10, 9, 1), (300, 300, 1), (1, 200, 198.5),
    ])
    def test_alert_iff_increase_exceeds_threshold(self, previous, latest, threshold):
        alerts = LeakAnalyzer().check_global(_make_samples([previous, latest]), threshold)
        leaks = [a for a in alerts if a.kind is AlertKind.GLOBAL_LEAK]
        assert bool(leaks) == (latest - previous > threshold)

    def test_only_latest_pair_compared(self):
        # Cumulative growth of 30 MB, but each step is below the threshold.
        alerts = LeakAnalyzer().check_global(_make_samples([10, 18, 26, 34, 40]), 10)
        assert alerts == []

    def test_unmeasurable_sample_suppresses_leak(self):
        samples = [
            MemorySample(timestamp=0.0, heap_used_mb=0, heap_total_mb=0),
            MemorySample(timestamp=1.0, heap_used_mb=400, heap_total_mb=800),
        ]
        assert LeakAnalyzer().check_global(samples, 10) == []

    def test_high_heap_usage(self):
        alerts = LeakAnalyzer().check_global(_make_samples([800, 850], limit=1000), 100)
        assert [a.kind for a in alerts] == [AlertKind.HIGH_HEAP_USAGE]
        assert alerts[0].magnitude == 85.0
        assert "850MB/1000MB" in alerts[0].message

    def test_high_heap_usage_boundary(self):
        # Exactly 80% does not alert.
        assert LeakAnalyzer().check_global(_make_samples([790, 800], limit=1000), 100) == []

    def test_no_high_heap_usage_without_limit(self):
        assert LeakAnalyzer().check_global(_make_samples([900, 950], limit=0), 100) == []

    def test_leak_and_high_usage_together(self):
        alerts = LeakAnalyzer().check_global(_make_samples([600, 900], limit=1000), 100)
        assert [a.kind for a in alerts] == [AlertKind.GLOBAL_LEAK, AlertKind.HIGH_HEAP_USAGE]


# ---------------------------------------------------------------------------
# Scope check
# ---------------------------------------------------------------------------

class TestCheckScope:
    def test_no_alert_with_single_delta(self):
        assert LeakAnalyzer().check_scope("/home", _make_deltas([500]), 10) == []

    def test_constant_cost_never_alerts(self):
        steps = _replay_scope(LeakAnalyzer(), [5, 5, 5], threshold=10)
        assert all(step == [] for step in steps)

    def test_large_but_steady_cost_never_alerts(self):
        # Every call uses more than the threshold, but the cost does not change.
        steps = _replay_scope(LeakAnalyzer(), [40, 41, 42, 43], threshold=10)
        assert all(step == [] for step in steps)

    def test_small_steps_never_alert(self):
        steps = _replay_scope(LeakAnalyzer(), list(range(1, 30)), threshold=10)
        assert all(step == [] for step in steps)

    def test_jump_in_per_call_cost_alerts(self):
        steps = _replay_scope(LeakAnalyzer(), [1, 2, 15, 16, 30], threshold=10)
        fired = [i for i, step in enumerate(steps) if step]
        assert fired == [2, 4]
        alert = steps[2][0]
        assert alert.kind is AlertKind.SCOPE_LEAK
        assert alert.scope == "/route"
        assert alert.magnitude == 13

    def test_equal_to_threshold_does_not_alert(self):
        assert LeakAnalyzer().check_scope("/a", _make_deltas([0, 10]), 10) == []

    def test_drop_in_cost_does_not_alert(self):
        assert LeakAnalyzer().check_scope("/a", _make_deltas([50, 0]), 10) == []
