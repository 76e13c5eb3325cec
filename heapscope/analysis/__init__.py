"""Analysis: leak heuristics, aggregation and report rendering."""

from heapscope.analysis.leak_analyzer import Alert, AlertKind, LeakAnalyzer
from heapscope.analysis.aggregator import (
    Report,
    ScopeSummary,
    Trend,
    build_report,
    calculate_trend,
)
from heapscope.analysis.report_generator import ReportGenerator, load_report

__all__ = [
    "Alert",
    "AlertKind",
    "LeakAnalyzer",
    "Report",
    "ScopeSummary",
    "Trend",
    "build_report",
    "calculate_trend",
    "ReportGenerator",
    "load_report",
]
