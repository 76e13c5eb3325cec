"""The monitor: lifecycle, periodic sampling and alert/report routing.

:class:`HeapMonitor` owns the global sample history and a
:class:`~heapscope.profiler.scope_tracker.ScopeTracker`.  While running, a
background thread samples memory every ``interval_ms``, appends the sample to
the global history, runs the global leak check and routes any alerts to the
configured alert sinks.  Stopping the monitor joins that thread, builds a
final report and hands it to the report sinks.

The monitor is an ordinary object: create one and pass it to whatever needs
to open scopes (middleware, decorators, request handlers).
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import Deque, Dict, Iterator, List, Optional, Sequence

from heapscope.analysis.aggregator import Report, build_report
from heapscope.analysis.leak_analyzer import Alert, LeakAnalyzer
from heapscope.config import MonitorConfig
from heapscope.profiler.sampler import MemorySample, MemorySource, Sampler, select_memory_source
from heapscope.profiler.scope_tracker import ScopeDelta, ScopeHandle, ScopeTracker
from heapscope.sinks import AlertSink, LoggingAlertSink, ReportSink, TerminalReportSink

logger = logging.getLogger(__name__)


class MonitorState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class HeapMonitor:
    """In-process memory telemetry collector.

    Usage::

        monitor = HeapMonitor(interval_ms=1000, threshold_mb=50)
        monitor.start()

        with monitor.scope("/home"):
            handle_request()

        report = monitor.stop()

    Parameters
    ----------
    config:
        A :class:`MonitorConfig`.  Built from *interval_ms* / *threshold_mb*
        when omitted.
    interval_ms, threshold_mb:
        Shorthand for the matching :class:`MonitorConfig` fields; ignored
        when *config* is given.
    source:
        Memory source override.  By default the source named by
        ``config.memory_source`` is selected once, here.
    alert_sinks:
        Callables receiving each :class:`Alert`.  Defaults to a
        :class:`LoggingAlertSink`.
    report_sinks:
        Callables receiving each emitted :class:`Report`.  Defaults to a
        :class:`TerminalReportSink`.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        *,
        interval_ms: Optional[int] = None,
        threshold_mb: Optional[float] = None,
        source: Optional[MemorySource] = None,
        alert_sinks: Optional[Sequence[AlertSink]] = None,
        report_sinks: Optional[Sequence[ReportSink]] = None,
    ) -> None:
        if config is None:
            overrides: Dict[str, float] = {}
            if interval_ms is not None:
                overrides["interval_ms"] = interval_ms
            if threshold_mb is not None:
                overrides["threshold_mb"] = threshold_mb
            config = MonitorConfig(**overrides)  # type: ignore[arg-type]
        self._config = config

        if source is None:
            source = select_memory_source(config.memory_source)
        self._sampler = Sampler(source)
        self._analyzer = LeakAnalyzer()

        self._alert_sinks: List[AlertSink] = (
            list(alert_sinks) if alert_sinks is not None else [LoggingAlertSink()]
        )
        self._report_sinks: List[ReportSink] = (
            list(report_sinks) if report_sinks is not None else [TerminalReportSink()]
        )

        self._samples: Deque[MemorySample] = deque(maxlen=config.max_samples)
        self._samples_lock = threading.Lock()
        self._scopes = ScopeTracker(
            sampler=self._sampler,
            threshold_mb=config.threshold_mb,
            analyzer=self._analyzer,
            on_alerts=self._dispatch_alerts,
            max_deltas=config.max_scope_samples,
        )

        self._state = MonitorState.STOPPED
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is MonitorState.RUNNING

    @property
    def sampler(self) -> Sampler:
        return self._sampler

    @property
    def samples(self) -> List[MemorySample]:
        """Copy of the global sample history, oldest first."""
        with self._samples_lock:
            return list(self._samples)

    @property
    def scope_histories(self) -> Dict[str, List[ScopeDelta]]:
        """Copy of every scope's delta history."""
        return self._scopes.histories()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background sampling loop.  No-op when already running."""
        with self._state_lock:
            if self._state is MonitorState.RUNNING:
                logger.warning("HeapMonitor is already running; ignoring duplicate start().")
                return

            # Each run gets its own event so a late start() cannot cancel a stop.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event,),
                name="heapscope-sampler",
                daemon=True,
            )
            self._state = MonitorState.RUNNING
            self._thread.start()

        logger.info(
            "Memory monitor started (interval=%d ms, threshold=%s MB, source=%s).",
            self._config.interval_ms,
            self._config.threshold_mb,
            self._sampler.source.name,
        )

    def stop(self) -> Optional[Report]:
        """Stop sampling and emit the final report.

        Returns ``None`` without emitting anything when the monitor is
        already stopped, so repeated calls are harmless.  No sampling tick
        runs after this method returns.
        """
        with self._state_lock:
            if self._state is MonitorState.STOPPED:
                return None
            self._state = MonitorState.STOPPED
            self._stop_event.set()
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join()

        logger.info("Memory monitor stopped (%d samples).", len(self._samples))
        return self.report(emit=True)

    @contextmanager
    def profile(self) -> Iterator[HeapMonitor]:
        """Context manager that monitors the enclosed block.

        Usage::

            with monitor.profile():
                serve()
        """
        self.start()
        try:
            yield self
        finally:
            self.stop()

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample_now(self) -> MemorySample:
        """Run one sampling tick synchronously and return its sample."""
        sample = self._sampler.measure()
        with self._samples_lock:
            self._samples.append(sample)
            recent = [self._samples[-2], sample] if len(self._samples) > 1 else [sample]

        alerts = self._analyzer.check_global(recent, self._config.threshold_mb)
        if alerts:
            self._dispatch_alerts(alerts)
        return sample

    def _run_loop(self, stop_event: threading.Event) -> None:
        """Background thread body: tick every interval until *stop_event* is set."""
        interval_s = self._config.interval_ms / 1000.0
        while not stop_event.wait(timeout=interval_s):
            try:
                self.sample_now()
            except Exception:
                logger.warning("Sampling tick failed; continuing.", exc_info=True)

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------

    def begin_scope(self, name: str) -> ScopeHandle:
        """Open a measurement window for *name*."""
        return self._scopes.begin(name)

    def end_scope(self, handle: ScopeHandle) -> ScopeDelta:
        """Close *handle*; equivalent to ``handle.end()``."""
        return handle.end()

    def scope(self, name: str) -> ScopeHandle:
        """Open a scope for use in a ``with`` block."""
        return self._scopes.begin(name)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def report(self, emit: bool = False) -> Report:
        """Build a report from the current histories.

        When *emit* is true the report is also routed to the report sinks.
        """
        result = build_report(self.samples, self._scopes.histories())
        if emit:
            self._dispatch_report(result)
        return result

    def reset(self) -> None:
        """Drop every recorded sample and scope delta."""
        with self._samples_lock:
            self._samples.clear()
        self._scopes.clear()

    # ------------------------------------------------------------------
    # Sink routing
    # ------------------------------------------------------------------

    def _dispatch_alerts(self, alerts: List[Alert]) -> None:
        for alert in alerts:
            for sink in self._alert_sinks:
                try:
                    sink(alert)
                except Exception:
                    logger.warning("Alert sink %r failed.", sink, exc_info=True)

    def _dispatch_report(self, report: Report) -> None:
        for sink in self._report_sinks:
            try:
                sink(report)
            except Exception:
                logger.warning("Report sink %r failed.", sink, exc_info=True)
