"""Tests for heapscope.analysis.aggregator."""

import math

import pytest

from heapscope.analysis.aggregator import (
    INSUFFICIENT_DATA,
    ZERO_BASELINE,
    Report,
    ScopeSummary,
    Trend,
    build_report,
    calculate_average,
    calculate_trend,
    summarize_scope,
)
from heapscope.profiler.sampler import MemorySample
from heapscope.profiler.scope_tracker import ScopeDelta


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_samples(heap_used: list) -> list:
    return [
        MemorySample(timestamp=1_700_000_000.0 + i, heap_used_mb=used, heap_total_mb=used * 2)
        for i, used in enumerate(heap_used)
    ]


def _make_deltas(heap_used: list, durations: list = None) -> list:
    durations = durations or [10] * len(heap_used)
    return [
        ScopeDelta(timestamp=float(i), heap_used_mb=used, heap_total_mb=used, duration_ms=dur)
        for i, (used, dur) in enumerate(zip(heap_used, durations))
    ]


# ---------------------------------------------------------------------------
# calculate_trend
# ---------------------------------------------------------------------------

class TestCalculateTrend:
    def test_increase(self):
        trend = calculate_trend([50, 55, 70])
        assert trend.percent == 40.0
        assert trend.direction == "increase"
        assert str(trend) == "40.00% increase"

    def test_decrease(self):
        trend = calculate_trend([80, 60])
        assert trend.percent == -25.0
        assert str(trend) == "-25.00% decrease"

    def test_no_change(self):
        trend = calculate_trend([5, 5, 5])
        assert trend.percent == 0.0
        assert trend.direction == "no change"
        assert str(trend) == "0.00% no change"

    def test_negative_zero_normalised(self):
        trend = calculate_trend([-5, -5])
        assert trend.percent == 0.0
        assert math.copysign(1.0, trend.percent) == 1.0

    @pytest.mark.parametrize("values", [[], [42]])
    def test_insufficient_data(self, values):
        trend = calculate_trend(values)
        assert trend.percent is None
        assert not trend.is_defined
        assert str(trend) == INSUFFICIENT_DATA

    @pytest.mark.parametrize("values", [[0, 10], [0, 0], [0, -3]])
    def test_zero_baseline_sentinel(self, values):
        trend = calculate_trend(values)
        assert trend.percent is None
        assert str(trend) == ZERO_BASELINE
        assert "inf" not in str(trend) and "nan" not in str(trend)

    @pytest.mark.parametrize("values", [
        [50, 55, 70], [100, 10], [3, 7, 2, 9], [1000, 1001], [-4, 6], [12, 12],
    ])
    def test_reversal_negates_sign(self, values):
        forward = calculate_trend(values)
        backward = calculate_trend(list(reversed(values)))
        if forward.percent == 0:
            assert backward.percent == 0
        else:
            assert (forward.percent > 0) == (backward.percent < 0)

    def test_idempotent(self):
        values = [10, 20, 15]
        assert calculate_trend(values) == calculate_trend(values)
        assert values == [10, 20, 15]

    def test_rounded_to_two_decimals(self):
        assert calculate_trend([3, 4]).percent == 33.33

    def test_negative_baseline_keeps_direction(self):
        # A scope whose per-call cost rises from -5 MB to 5 MB is growing.
        assert calculate_trend([-5, 5]).direction == "increase"


class TestTrendSerialisation:
    def test_roundtrip(self):
        trend = Trend(percent=12.5, direction="increase")
        assert Trend.from_dict(trend.to_dict()) == trend

    def test_sentinel_roundtrip(self):
        trend = Trend(percent=None, direction=ZERO_BASELINE)
        d = trend.to_dict()
        assert d["text"] == ZERO_BASELINE
        assert Trend.from_dict(d) == trend


# ---------------------------------------------------------------------------
# Averages and scope summaries
# ---------------------------------------------------------------------------

class TestCalculateAverage:
    def test_empty(self):
        assert calculate_average([]) is None

    def test_rounds_half_up(self):
        assert calculate_average([1, 2]) == 2
        assert calculate_average([1, 1, 2]) == 1

    def test_generator_input(self):
        assert calculate_average(x for x in [10, 20, 30]) == 20


class TestSummarizeScope:
    def test_constant_scope(self):
        summary = summarize_scope(_make_deltas([5, 5, 5], [10, 20, 30]))
        assert summary.total_calls == 3
        assert summary.average_heap_used_mb == 5
        assert summary.average_duration_ms == 20
        assert summary.max_heap_used_mb == 5
        assert summary.min_heap_used_mb == 5
        assert str(summary.trend) == "0.00% no change"

    def test_growing_scope(self):
        summary = summarize_scope(_make_deltas([2, 4, 9]))
        assert summary.max_heap_used_mb == 9
        assert summary.min_heap_used_mb == 2
        assert summary.average_heap_used_mb == 5
        assert str(summary.trend) == "350.00% increase"

    def test_single_call(self):
        summary = summarize_scope(_make_deltas([7]))
        assert summary.total_calls == 1
        assert str(summary.trend) == INSUFFICIENT_DATA

    def test_roundtrip(self):
        summary = summarize_scope(_make_deltas([1, 3]))
        assert ScopeSummary.from_dict(summary.to_dict()) == summary


# ---------------------------------------------------------------------------
# build_report
# ---------------------------------------------------------------------------

class TestBuildReport:
    def test_global_statistics(self):
        report = build_report(_make_samples([50, 55, 70]), {})
        assert report.total_samples == 3
        assert str(report.memory_trend) == "40.00% increase"
        assert report.max_heap_used_mb == 70
        assert report.min_heap_used_mb == 50
        assert report.average_heap_used_mb == 58
        assert report.start_time is not None and report.start_time.startswith("20")
        assert report.end_time >= report.start_time
        assert report.scopes == {}

    def test_per_scope_breakdown(self):
        scopes = {"/home": _make_deltas([5, 5, 5]), "/search": _make_deltas([1, 2])}
        report = build_report(_make_samples([10, 10]), scopes)
        assert set(report.scopes) == {"/home", "/search"}
        assert report.scopes["/home"].total_calls == 3
        assert str(report.scopes["/search"].trend) == "100.00% increase"

    def test_empty_histories(self):
        report = build_report([], {})
        assert report.total_samples == 0
        assert report.start_time is None
        assert report.end_time is None
        assert report.max_heap_used_mb is None
        assert report.average_heap_used_mb is None
        assert str(report.memory_trend) == INSUFFICIENT_DATA

    def test_empty_scope_buckets_skipped(self):
        report = build_report([], {"/never": []})
        assert report.scopes == {}

    def test_inputs_not_mutated(self):
        samples = _make_samples([1, 2, 3])
        scopes = {"/a": _make_deltas([1, 2])}
        build_report(samples, scopes)
        assert len(samples) == 3
        assert len(scopes["/a"]) == 2

    def test_report_is_materialised(self):
        samples = _make_samples([10, 20])
        report = build_report(samples, {})
        samples.append(_make_samples([99])[0])
        assert report.total_samples == 2
        assert report.max_heap_used_mb == 20

    def test_all_zero_history_uses_sentinel(self):
        report = build_report(_make_samples([0, 0, 0]), {})
        assert str(report.memory_trend) == ZERO_BASELINE

    def test_to_dict_from_dict_roundtrip(self):
        report = build_report(_make_samples([50, 70]), {"/home": _make_deltas([5, 6])})
        restored = Report.from_dict(report.to_dict())
        assert restored.total_samples == report.total_samples
        assert restored.memory_trend == report.memory_trend
        assert restored.scopes["/home"] == report.scopes["/home"]
        assert restored.generated_at == report.generated_at
