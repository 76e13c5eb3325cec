"""Threshold-based leak heuristics.

Inspects the newest data points of the global sample history and of a
single scope's delta history and reports suspicious growth as
:class:`Alert` records.  The analyzer never dispatches alerts itself; the
caller routes them to whatever sinks it owns.

Two heuristics are applied:

1. **Global growth**: the latest sample's ``heap_used_mb`` minus the
   previous one exceeds the threshold.  A near-full heap (more than 80% of
   the known ceiling) is reported separately.
2. **Scope growth**: the latest scope delta's ``heap_used_mb`` minus the
   previous delta's exceeds the threshold.  This compares the per-call
   memory cost of two consecutive invocations (a delta of deltas), not the
   cumulative usage of the scope.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from heapscope.profiler.sampler import MemorySample

if TYPE_CHECKING:
    from heapscope.profiler.scope_tracker import ScopeDelta

logger = logging.getLogger(__name__)


# ============================================================================
# Data classes
# ============================================================================


class AlertKind(str, Enum):
    """Category of a memory alert."""

    GLOBAL_LEAK = "global_leak"
    SCOPE_LEAK = "scope_leak"
    HIGH_HEAP_USAGE = "high_heap_usage"


@dataclass(frozen=True)
class Alert:
    """A transient notification about suspicious memory behaviour.

    ``magnitude`` is the increase in MB for leak alerts and the heap usage
    percentage for :attr:`AlertKind.HIGH_HEAP_USAGE`.
    """

    kind: AlertKind
    magnitude: float
    message: str
    scope: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, object]:
        return {
            "kind": self.kind.value,
            "magnitude": self.magnitude,
            "message": self.message,
            "scope": self.scope,
            "timestamp": self.timestamp,
        }


# ============================================================================
# Leak Analyzer
# ============================================================================


class LeakAnalyzer:
    """Compare the newest data points against a growth threshold.

    Usage::

        analyzer = LeakAnalyzer()
        for alert in analyzer.check_global(samples, threshold_mb=100):
            print(alert.message)
    """

    # Fraction of the heap ceiling above which HIGH_HEAP_USAGE is raised.
    HIGH_USAGE_RATIO: float = 0.80

    def check_global(
        self,
        history: Sequence[MemorySample],
        threshold_mb: float,
    ) -> List[Alert]:
        """Check the two most recent global samples.

        Returns an empty list when fewer than two samples exist.
        """
        if len(history) < 2:
            return []

        previous = history[-2]
        latest = history[-1]
        alerts: List[Alert] = []

        if not (latest.is_unmeasurable or previous.is_unmeasurable):
            increase = latest.heap_used_mb - previous.heap_used_mb
            if increase > threshold_mb:
                alerts.append(
                    Alert(
                        kind=AlertKind.GLOBAL_LEAK,
                        magnitude=float(increase),
                        message=(
                            f"Memory grew by {increase}MB since the previous sample "
                            f"(heap used: {latest.heap_used_mb}MB)"
                        ),
                    )
                )

        if latest.heap_limit_mb > 0:
            ratio = latest.heap_used_mb / latest.heap_limit_mb
            if ratio > self.HIGH_USAGE_RATIO:
                usage_pct = round(ratio * 100.0, 2)
                alerts.append(
                    Alert(
                        kind=AlertKind.HIGH_HEAP_USAGE,
                        magnitude=usage_pct,
                        message=(
                            f"High heap usage: {usage_pct:.2f}% "
                            f"({latest.heap_used_mb}MB/{latest.heap_limit_mb}MB)"
                        ),
                    )
                )

        return alerts

    def check_scope(
        self,
        scope: str,
        history: Sequence[ScopeDelta],
        threshold_mb: float,
    ) -> List[Alert]:
        """Check the two most recent deltas recorded for *scope*.

        The comparison is between the per-call costs of two consecutive
        invocations: ``latest.heap_used_mb - previous.heap_used_mb``.
        """
        if len(history) < 2:
            return []

        previous = history[-2]
        latest = history[-1]
        increase = latest.heap_used_mb - previous.heap_used_mb
        if increase <= threshold_mb:
            return []

        return [
            Alert(
                kind=AlertKind.SCOPE_LEAK,
                scope=scope,
                magnitude=float(increase),
                message=f"Scope {scope!r} used {increase}MB more than its previous call",
            )
        ]
