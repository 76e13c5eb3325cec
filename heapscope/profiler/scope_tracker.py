"""Per-scope memory accounting.

A *scope* is a named unit of work (one HTTP route invocation, one call of a
decorated function, one ``with`` block).  :meth:`ScopeTracker.begin` takes a
start sample and returns a :class:`ScopeHandle`; :meth:`ScopeHandle.end`
takes the end sample, records the difference as a :class:`ScopeDelta` in that
scope's history and runs the scope leak check before returning.

Several handles for the same name may be open at once.  Deltas are appended
in the order their ``end()`` calls complete, which is not necessarily the
order in which the scopes began.

A window whose start or end reading is unmeasurable is recorded as a zeroed
delta and left out of the leak check.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, asdict
from typing import Callable, Deque, Dict, List, Optional

from heapscope.analysis.leak_analyzer import Alert, LeakAnalyzer
from heapscope.profiler.sampler import MemorySample, Sampler

logger = logging.getLogger(__name__)

AlertCallback = Callable[[List[Alert]], None]


class ScopeReuseError(RuntimeError):
    """Raised when :meth:`ScopeHandle.end` is called more than once."""


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class ScopeDelta:
    """Memory consumed by one completed scope execution."""

    timestamp: float
    heap_used_mb: int
    heap_total_mb: int
    duration_ms: int

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> ScopeDelta:
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),  # type: ignore[arg-type]
            heap_used_mb=int(data.get("heap_used_mb", 0)),  # type: ignore[arg-type]
            heap_total_mb=int(data.get("heap_total_mb", 0)),  # type: ignore[arg-type]
            duration_ms=int(data.get("duration_ms", 0)),  # type: ignore[arg-type]
        )


# ============================================================================
# Scope handle
# ============================================================================


class ScopeHandle:
    """An open measurement window for one scope execution.

    Returned by :meth:`ScopeTracker.begin`.  Call :meth:`end` exactly once,
    or use the handle as a context manager::

        with tracker.begin("/home"):
            handle_request()
    """

    def __init__(
        self,
        tracker: ScopeTracker,
        name: str,
        start_sample: MemorySample,
        start_monotonic: float,
    ) -> None:
        self._tracker = tracker
        self._name = name
        self._start_sample = start_sample
        self._start_monotonic = start_monotonic
        self._delta: Optional[ScopeDelta] = None
        self._ended = False
        self._end_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def delta(self) -> Optional[ScopeDelta]:
        """The recorded delta, or ``None`` while the scope is still open."""
        return self._delta

    def end(self) -> ScopeDelta:
        """Close the window, record the delta and return it.

        Only the first call, across all threads, records a delta.

        Raises
        ------
        ScopeReuseError
            If the handle has already been ended.
        """
        with self._end_lock:
            if self._ended:
                raise ScopeReuseError(f"Scope {self._name!r} has already been ended")
            self._ended = True
        self._delta = self._tracker._finish(self)
        return self._delta

    def __enter__(self) -> ScopeHandle:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._ended:
            self.end()

    def __repr__(self) -> str:
        state = "ended" if self.ended else "open"
        return f"ScopeHandle(name={self._name!r}, {state})"


# ============================================================================
# Scope tracker
# ============================================================================


class ScopeTracker:
    """Owns the scope name -> delta history mapping.

    Parameters
    ----------
    sampler:
        Source of start/end samples.
    threshold_mb:
        Threshold passed to :meth:`LeakAnalyzer.check_scope`.
    analyzer:
        Leak analyzer; a fresh :class:`LeakAnalyzer` by default.
    on_alerts:
        Called with the (non-empty) alert list produced after an append.
    max_deltas:
        Optional ring-buffer capacity per scope.
    """

    def __init__(
        self,
        sampler: Sampler,
        threshold_mb: float,
        analyzer: Optional[LeakAnalyzer] = None,
        on_alerts: Optional[AlertCallback] = None,
        max_deltas: Optional[int] = None,
    ) -> None:
        self._sampler = sampler
        self._threshold_mb = threshold_mb
        self._analyzer = analyzer if analyzer is not None else LeakAnalyzer()
        self._on_alerts = on_alerts
        self._max_deltas = max_deltas

        self._histories: Dict[str, Deque[ScopeDelta]] = {}
        self._last_measured: Dict[str, ScopeDelta] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def begin(self, name: str) -> ScopeHandle:
        """Open a measurement window for *name*."""
        start_monotonic = time.monotonic()
        start_sample = self._sampler.measure()
        return ScopeHandle(self, name, start_sample, start_monotonic)

    def history(self, name: str) -> List[ScopeDelta]:
        """Return a copy of the deltas recorded for *name*."""
        with self._lock:
            return list(self._histories.get(name, ()))

    def histories(self) -> Dict[str, List[ScopeDelta]]:
        """Return a copy of every scope's history."""
        with self._lock:
            return {name: list(deltas) for name, deltas in self._histories.items()}

    def scope_names(self) -> List[str]:
        with self._lock:
            return list(self._histories)

    def clear(self) -> None:
        with self._lock:
            self._histories.clear()
            self._last_measured.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(self, handle: ScopeHandle) -> ScopeDelta:
        end_sample = self._sampler.measure()
        elapsed_ms = (time.monotonic() - handle._start_monotonic) * 1000.0
        start = handle._start_sample
        measured = not (start.is_unmeasurable or end_sample.is_unmeasurable)

        # A window bracketed by a zeroed reading carries no information.
        delta = ScopeDelta(
            timestamp=end_sample.timestamp,
            heap_used_mb=end_sample.heap_used_mb - start.heap_used_mb if measured else 0,
            heap_total_mb=end_sample.heap_total_mb - start.heap_total_mb if measured else 0,
            duration_ms=int(elapsed_ms + 0.5),
        )

        recent: List[ScopeDelta] = []
        with self._lock:
            bucket = self._histories.get(handle.name)
            if bucket is None:
                bucket = deque(maxlen=self._max_deltas)
                self._histories[handle.name] = bucket
            bucket.append(delta)
            if measured:
                previous = self._last_measured.get(handle.name)
                recent = [previous, delta] if previous is not None else [delta]
                self._last_measured[handle.name] = delta

        logger.debug(
            "Scope %r finished: %+dMB heap used in %dms%s.",
            handle.name, delta.heap_used_mb, delta.duration_ms,
            "" if measured else " (unmeasurable)",
        )

        if not measured:
            return delta
        alerts = self._analyzer.check_scope(handle.name, recent, self._threshold_mb)
        if alerts and self._on_alerts is not None:
            self._on_alerts(alerts)
        return delta
