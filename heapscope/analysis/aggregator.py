"""Reduce sample and scope histories into a :class:`Report`.

Everything here is a pure function of its inputs: histories are read, never
modified, and the returned report is fully materialised so it can be
rendered or serialised after the monitor has moved on.
"""

from __future__ import annotations

import datetime
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence

from heapscope.profiler.sampler import MemorySample

if TYPE_CHECKING:
    from heapscope.profiler.scope_tracker import ScopeDelta

# ---------------------------------------------------------------------------
# Trend labels
# ---------------------------------------------------------------------------
INCREASE = "increase"
DECREASE = "decrease"
NO_CHANGE = "no change"
INSUFFICIENT_DATA = "insufficient data"
ZERO_BASELINE = "undefined (zero baseline)"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _isoformat(timestamp: float) -> str:
    return datetime.datetime.fromtimestamp(timestamp).isoformat()


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class Trend:
    """Percentage change between the first and last value of a series.

    ``percent`` is ``None`` when the trend is undefined; ``direction`` then
    holds the sentinel explaining why.
    """

    percent: Optional[float]
    direction: str

    @property
    def is_defined(self) -> bool:
        return self.percent is not None

    def __str__(self) -> str:
        if self.percent is None:
            return self.direction
        return f"{self.percent:.2f}% {self.direction}"

    def to_dict(self) -> Dict[str, object]:
        return {"percent": self.percent, "direction": self.direction, "text": str(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> Trend:
        raw_percent = data.get("percent")
        return cls(
            percent=float(raw_percent) if raw_percent is not None else None,  # type: ignore[arg-type]
            direction=str(data.get("direction", INSUFFICIENT_DATA)),
        )


@dataclass
class ScopeSummary:
    """Aggregate statistics for one scope's delta history."""

    total_calls: int
    average_heap_used_mb: int
    average_duration_ms: int
    max_heap_used_mb: int
    min_heap_used_mb: int
    trend: Trend

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_calls": self.total_calls,
            "average_heap_used_mb": self.average_heap_used_mb,
            "average_duration_ms": self.average_duration_ms,
            "max_heap_used_mb": self.max_heap_used_mb,
            "min_heap_used_mb": self.min_heap_used_mb,
            "trend": self.trend.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> ScopeSummary:
        raw_trend = data.get("trend")
        return cls(
            total_calls=int(data.get("total_calls", 0)),  # type: ignore[arg-type]
            average_heap_used_mb=int(data.get("average_heap_used_mb", 0)),  # type: ignore[arg-type]
            average_duration_ms=int(data.get("average_duration_ms", 0)),  # type: ignore[arg-type]
            max_heap_used_mb=int(data.get("max_heap_used_mb", 0)),  # type: ignore[arg-type]
            min_heap_used_mb=int(data.get("min_heap_used_mb", 0)),  # type: ignore[arg-type]
            trend=(
                Trend.from_dict(raw_trend)  # type: ignore[arg-type]
                if isinstance(raw_trend, dict)
                else Trend(None, INSUFFICIENT_DATA)
            ),
        )


@dataclass
class Report:
    """Snapshot of everything the monitor has recorded."""

    start_time: Optional[str]
    end_time: Optional[str]
    total_samples: int
    memory_trend: Trend
    max_heap_used_mb: Optional[int]
    min_heap_used_mb: Optional[int]
    average_heap_used_mb: Optional[int]
    scopes: Dict[str, ScopeSummary] = field(default_factory=dict)
    generated_at: str = field(
        default_factory=lambda: datetime.datetime.now().isoformat()
    )

    def to_dict(self) -> Dict[str, object]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_samples": self.total_samples,
            "memory_trend": self.memory_trend.to_dict(),
            "max_heap_used_mb": self.max_heap_used_mb,
            "min_heap_used_mb": self.min_heap_used_mb,
            "average_heap_used_mb": self.average_heap_used_mb,
            "scopes": {name: s.to_dict() for name, s in self.scopes.items()},
            "generated_at": self.generated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> Report:
        def _opt_int(key: str) -> Optional[int]:
            value = data.get(key)
            return int(value) if value is not None else None  # type: ignore[arg-type]

        def _opt_str(key: str) -> Optional[str]:
            value = data.get(key)
            return str(value) if value is not None else None

        raw_trend = data.get("memory_trend")
        raw_scopes = data.get("scopes", {})
        scopes = (
            {
                str(name): ScopeSummary.from_dict(summary)  # type: ignore[arg-type]
                for name, summary in raw_scopes.items()  # type: ignore[union-attr]
            }
            if isinstance(raw_scopes, dict)
            else {}
        )

        return cls(
            start_time=_opt_str("start_time"),
            end_time=_opt_str("end_time"),
            total_samples=int(data.get("total_samples", 0)),  # type: ignore[arg-type]
            memory_trend=(
                Trend.from_dict(raw_trend)  # type: ignore[arg-type]
                if isinstance(raw_trend, dict)
                else Trend(None, INSUFFICIENT_DATA)
            ),
            max_heap_used_mb=_opt_int("max_heap_used_mb"),
            min_heap_used_mb=_opt_int("min_heap_used_mb"),
            average_heap_used_mb=_opt_int("average_heap_used_mb"),
            scopes=scopes,
            generated_at=str(data.get("generated_at", "")),
        )


# ============================================================================
# Calculations
# ============================================================================


def calculate_trend(values: Sequence[float]) -> Trend:
    """Return the percentage change from ``values[0]`` to ``values[-1]``.

    Fewer than two values yield the ``"insufficient data"`` sentinel and a
    zero first value yields ``"undefined (zero baseline)"``; neither case
    raises or produces ``inf`` / ``nan``.
    """
    if len(values) < 2:
        return Trend(percent=None, direction=INSUFFICIENT_DATA)

    first = values[0]
    last = values[-1]
    if first == 0:
        return Trend(percent=None, direction=ZERO_BASELINE)

    # Scope deltas can be negative; the magnitude keeps the sign meaningful.
    percent = round((last - first) / abs(first) * 100.0, 2)
    if not math.isfinite(percent):
        return Trend(percent=None, direction=ZERO_BASELINE)

    if percent > 0:
        return Trend(percent=percent, direction=INCREASE)
    if percent < 0:
        return Trend(percent=percent, direction=DECREASE)
    # Normalises -0.0 as well.
    return Trend(percent=0.0, direction=NO_CHANGE)


def calculate_average(values: Iterable[float]) -> Optional[int]:
    """Arithmetic mean rounded half-up to a whole unit; ``None`` when empty."""
    items = list(values)
    if not items:
        return None
    return _round_half_up(sum(items) / len(items))


def summarize_scope(deltas: Sequence[ScopeDelta]) -> ScopeSummary:
    """Aggregate one scope's deltas.  *deltas* must not be empty."""
    heap_used = [d.heap_used_mb for d in deltas]
    durations = [d.duration_ms for d in deltas]
    return ScopeSummary(
        total_calls=len(deltas),
        average_heap_used_mb=calculate_average(heap_used) or 0,
        average_duration_ms=calculate_average(durations) or 0,
        max_heap_used_mb=max(heap_used),
        min_heap_used_mb=min(heap_used),
        trend=calculate_trend(heap_used),
    )


def build_report(
    global_history: Sequence[MemorySample],
    scope_history: Mapping[str, Sequence[ScopeDelta]],
) -> Report:
    """Reduce the global samples and per-scope deltas into a :class:`Report`."""
    samples: List[MemorySample] = list(global_history)
    heap_used = [s.heap_used_mb for s in samples]

    scopes = {
        name: summarize_scope(list(deltas))
        for name, deltas in scope_history.items()
        if len(deltas) > 0
    }

    return Report(
        start_time=_isoformat(samples[0].timestamp) if samples else None,
        end_time=_isoformat(samples[-1].timestamp) if samples else None,
        total_samples=len(samples),
        memory_trend=calculate_trend(heap_used),
        max_heap_used_mb=max(heap_used) if heap_used else None,
        min_heap_used_mb=min(heap_used) if heap_used else None,
        average_heap_used_mb=calculate_average(heap_used),
        scopes=scopes,
    )
