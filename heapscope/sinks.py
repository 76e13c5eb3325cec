"""Default destinations for alerts and reports.

Sinks are plain callables.  An alert sink receives one
:class:`~heapscope.analysis.leak_analyzer.Alert` at a time; a report sink
receives a finished :class:`~heapscope.analysis.aggregator.Report`.  The
monitor shields itself from sink failures, so a sink is free to raise.
"""

from __future__ import annotations

import datetime
import logging
from typing import Callable, Optional

from rich.console import Console

from heapscope.analysis.aggregator import Report
from heapscope.analysis.leak_analyzer import Alert, AlertKind
from heapscope.analysis.report_generator import DEFAULT_JSON_PATH, ReportGenerator

logger = logging.getLogger(__name__)

AlertSink = Callable[[Alert], None]
ReportSink = Callable[[Report], None]

_ALERT_TITLES = {
    AlertKind.GLOBAL_LEAK: "Memory leak warning",
    AlertKind.SCOPE_LEAK: "Scope memory leak",
    AlertKind.HIGH_HEAP_USAGE: "High heap usage",
}


class LoggingAlertSink:
    """Write each alert as a timestamped warning line."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log if log is not None else logger

    def __call__(self, alert: Alert) -> None:
        when = datetime.datetime.fromtimestamp(alert.timestamp).isoformat(timespec="seconds")
        title = _ALERT_TITLES.get(alert.kind, alert.kind.value)
        if alert.scope is not None:
            self._log.warning("[%s] %s [%s]: %s", when, title, alert.scope, alert.message)
        else:
            self._log.warning("[%s] %s: %s", when, title, alert.message)


class LoggingReportSink:
    """Log a one-line summary of the report."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log if log is not None else logger

    def __call__(self, report: Report) -> None:
        self._log.info(
            "Memory report: %d samples, trend %s, heap used max=%s min=%s avg=%s MB, %d scope(s).",
            report.total_samples,
            report.memory_trend,
            report.max_heap_used_mb,
            report.min_heap_used_mb,
            report.average_heap_used_mb,
            len(report.scopes),
        )


class TerminalReportSink:
    """Print the report to a Rich console."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console

    def __call__(self, report: Report) -> None:
        ReportGenerator(report, console=self._console).generate_terminal_report()


class JsonReportSink:
    """Persist the report as a JSON document at *path*."""

    def __init__(self, path: str = DEFAULT_JSON_PATH) -> None:
        self.path = path

    def __call__(self, report: Report) -> None:
        ReportGenerator(report).generate_json_report(self.path)
