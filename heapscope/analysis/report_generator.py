"""Report rendering for heapscope.

Renders a :class:`~heapscope.analysis.aggregator.Report` either as a Rich
terminal summary (panels and tables, colour-coded trends) or as a structured
JSON document that can be loaded again with :func:`load_report`.
"""

from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from heapscope import __version__
from heapscope.analysis.aggregator import (
    DECREASE,
    INCREASE,
    NO_CHANGE,
    Report,
    Trend,
)

logger = logging.getLogger(__name__)

REPORT_FORMATS = ("terminal", "json")
DEFAULT_JSON_PATH = "heapscope_report.json"


# ============================================================================
# Helpers
# ============================================================================


def _trend_color(trend: Trend) -> str:
    """Return a Rich color name for a trend: growth is red, shrinkage green."""
    if trend.direction == INCREASE:
        return "red"
    if trend.direction == DECREASE:
        return "green"
    if trend.direction == NO_CHANGE:
        return "white"
    return "dim"


def _format_mb(value: Optional[int]) -> str:
    if value is None:
        return "-"
    return f"{value:,} MB"


def _format_ms(value: int) -> str:
    if value < 1000:
        return f"{value} ms"
    return f"{value / 1000.0:.2f} s"


def load_report(path: str) -> Report:
    """Load a report written by :meth:`ReportGenerator.generate_json_report`.

    Accepts both the wrapped document (``{"metadata": ..., "report": ...}``)
    and a bare ``Report.to_dict()`` payload.

    Raises
    ------
    OSError
        If the file cannot be read.
    ValueError
        If the file is not valid JSON or not a JSON object.
    """
    text = Path(path).read_text(encoding="utf-8")
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    payload = data.get("report", data)
    if not isinstance(payload, dict):
        raise ValueError(f"Malformed report section in {path}")
    return Report.from_dict(payload)


# ============================================================================
# Report Generator
# ============================================================================


class ReportGenerator:
    """Render a :class:`Report` in one of the supported formats.

    Usage::

        generator = ReportGenerator(report)
        generator.generate_report(format="terminal")
        generator.generate_report(format="json", output_path="memory.json")
    """

    def __init__(self, report: Report, console: Optional[Console] = None) -> None:
        self._report = report
        self._console = console

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_report(
        self,
        format: str = "terminal",
        output_path: Optional[str] = None,
    ) -> Optional[str]:
        """Dispatch to the appropriate report generation method.

        Returns
        -------
        str | None
            The output file path for JSON, or ``None`` for terminal.

        Raises
        ------
        ValueError
            If *format* is not recognised.
        """
        fmt = format.lower().strip()
        if fmt == "terminal":
            self.generate_terminal_report()
            return None
        elif fmt == "json":
            if output_path is None:
                output_path = DEFAULT_JSON_PATH
            self.generate_json_report(output_path)
            return output_path
        else:
            raise ValueError(
                f"Unknown report format {fmt!r}. "
                f"Expected one of: 'terminal', 'json'."
            )

    # ==================================================================
    # Terminal report
    # ==================================================================

    def generate_terminal_report(self) -> None:
        """Print the report header, global statistics and scope table."""
        console = self._console if self._console is not None else Console()
        report = self._report

        header_text = Text()
        header_text.append("heapscope", style="bold magenta")
        header_text.append(" - Memory Report", style="bold white")
        console.print()
        console.print(Panel(header_text, border_style="magenta", padding=(1, 2)))

        info_table = Table(show_header=False, box=None, padding=(0, 2), expand=False)
        info_table.add_column("Key", style="dim")
        info_table.add_column("Value", style="bold")
        info_table.add_row("Window start", report.start_time or "-")
        info_table.add_row("Window end", report.end_time or "-")
        info_table.add_row("Samples", str(report.total_samples))
        info_table.add_row(
            "Memory trend",
            Text(str(report.memory_trend), style=_trend_color(report.memory_trend)),
        )
        info_table.add_row("Max heap used", _format_mb(report.max_heap_used_mb))
        info_table.add_row("Min heap used", _format_mb(report.min_heap_used_mb))
        info_table.add_row("Average heap used", _format_mb(report.average_heap_used_mb))
        console.print(info_table)
        console.print()

        if report.scopes:
            self._print_scope_table(console)
            console.print()
        else:
            console.print("[dim]No scopes recorded.[/dim]")

    def _print_scope_table(self, console: Console) -> None:
        table = Table(
            title="Scope Analysis",
            box=box.ROUNDED,
            show_lines=False,
            title_style="bold white",
        )
        table.add_column("Scope", style="bold", min_width=16)
        table.add_column("Calls", justify="right")
        table.add_column("Avg heap", justify="right")
        table.add_column("Max heap", justify="right")
        table.add_column("Min heap", justify="right")
        table.add_column("Avg duration", justify="right")
        table.add_column("Trend", min_width=18)

        # Heaviest scopes first.
        ordered = sorted(
            self._report.scopes.items(),
            key=lambda item: item[1].average_heap_used_mb,
            reverse=True,
        )
        for name, summary in ordered:
            table.add_row(
                name,
                str(summary.total_calls),
                _format_mb(summary.average_heap_used_mb),
                _format_mb(summary.max_heap_used_mb),
                _format_mb(summary.min_heap_used_mb),
                _format_ms(summary.average_duration_ms),
                Text(str(summary.trend), style=_trend_color(summary.trend)),
            )

        console.print(table)

    # ==================================================================
    # JSON report
    # ==================================================================

    def generate_json_report(self, output_path: str) -> None:
        """Write the report and its metadata as a JSON document."""
        data: Dict[str, Any] = {
            "metadata": {
                "tool": "heapscope",
                "version": __version__,
                "report_generated": datetime.datetime.now().isoformat(),
                "format_version": "1.0",
            },
            "report": self._report.to_dict(),
        }

        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        logger.info("JSON report written to %s", output_path)
