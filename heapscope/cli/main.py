"""CLI interface for heapscope.

Provides commands for monitoring a Python script in-process, rendering
saved reports, and taking a one-off memory reading.

Uses Click for command parsing and Rich for terminal output.
"""

from __future__ import annotations

import json
import logging
import runpy
import sys
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from heapscope import __version__
from heapscope.analysis.aggregator import Report
from heapscope.analysis.report_generator import REPORT_FORMATS, ReportGenerator, load_report
from heapscope.config import MEMORY_SOURCES, ConfigError, MonitorConfig
from heapscope.profiler.engine import HeapMonitor
from heapscope.profiler.sampler import Sampler, select_memory_source
from heapscope.sinks import JsonReportSink, LoggingAlertSink, ReportSink, TerminalReportSink

logger = logging.getLogger(__name__)

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _error(message: str) -> None:
    """Print an error message and exit with code 1."""
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise SystemExit(1)


def _warn(message: str) -> None:
    """Print a warning message."""
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}", style="yellow")


def _info(message: str) -> None:
    """Print an informational message."""
    console.print(f"[dim]{message}[/dim]")


def _build_config(
    interval: Optional[int],
    threshold: Optional[float],
    source: Optional[str],
) -> MonitorConfig:
    """Merge CLI options over the ``HEAPSCOPE_*`` environment."""
    try:
        return MonitorConfig.from_env(
            interval_ms=interval,
            threshold_mb=threshold,
            memory_source=source,
        )
    except ConfigError as exc:
        _error(str(exc))
    raise AssertionError("unreachable")  # pragma: no cover


def _run_script(path: str, args: Tuple[str, ...]) -> int:
    """Execute *path* as ``__main__`` and return its exit code."""
    saved_argv = sys.argv
    sys.argv = [path, *args]
    try:
        runpy.run_path(path, run_name="__main__")
    except SystemExit as exc:
        if exc.code is None:
            return 0
        if isinstance(exc.code, int):
            return exc.code
        console.print(str(exc.code))
        return 1
    finally:
        sys.argv = saved_argv
    return 0


# ============================================================================
# CLI group
# ============================================================================


@click.group(name="heapscope")
@click.version_option(version=__version__, prog_name="heapscope")
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose debug logging.",
)
def cli(verbose: bool) -> None:
    """heapscope - In-process memory telemetry and leak detection."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


# ============================================================================
# run
# ============================================================================


@cli.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.argument("script", type=click.Path(exists=True, dir_okay=False))
@click.argument("script_args", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "--interval", "-i",
    type=int,
    default=None,
    help="Sampling interval in milliseconds [default: 5000].",
)
@click.option(
    "--threshold", "-t",
    type=float,
    default=None,
    help="Leak alert threshold in MB [default: 100].",
)
@click.option(
    "--source",
    type=click.Choice(list(MEMORY_SOURCES), case_sensitive=False),
    default=None,
    help="Memory source [default: auto].",
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also save the final report as JSON to this path.",
)
@click.option(
    "--quiet", "-q",
    is_flag=True,
    default=False,
    help="Do not print the terminal report.",
)
def run(
    script: str,
    script_args: Tuple[str, ...],
    interval: Optional[int],
    threshold: Optional[float],
    source: Optional[str],
    output: Optional[str],
    quiet: bool,
) -> None:
    """Run a Python script with memory monitoring enabled.

    Usage: heapscope run --interval 1000 app.py --port 8000
    """
    config = _build_config(interval, threshold, source.lower() if source else None)

    report_sinks: List[ReportSink] = []
    if not quiet:
        report_sinks.append(TerminalReportSink(console))
    if output:
        report_sinks.append(JsonReportSink(output))

    monitor = HeapMonitor(
        config,
        alert_sinks=[LoggingAlertSink()],
        report_sinks=report_sinks,
    )

    _info(
        f"Monitoring {script} (interval {config.interval_ms} ms, "
        f"threshold {config.threshold_mb} MB, source {monitor.sampler.source.name})"
    )

    exit_code = 0
    monitor.sample_now()
    monitor.start()
    try:
        exit_code = _run_script(script, script_args)
    except KeyboardInterrupt:
        _warn("Interrupted; writing the final report.")
        exit_code = 130
    except Exception as exc:
        logger.debug("Script raised.", exc_info=True)
        _warn(f"Script raised {type(exc).__name__}: {exc}")
        exit_code = 1
    finally:
        monitor.sample_now()
        monitor.stop()

    if output:
        console.print(f"[bold green]Report saved to:[/bold green] {output}")

    if exit_code != 0:
        raise SystemExit(exit_code)


# ============================================================================
# report
# ============================================================================


@cli.command()
@click.argument("report_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--format", "-f",
    "report_format",
    type=click.Choice(list(REPORT_FORMATS), case_sensitive=False),
    default="terminal",
    show_default=True,
    help="Report output format.",
)
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Output file path for the json format.",
)
def report(report_path: str, report_format: str, output: Optional[str]) -> None:
    """Render a saved JSON report.

    Usage: heapscope report heapscope_report.json
    """
    try:
        saved: Report = load_report(report_path)
    except json.JSONDecodeError as exc:
        _error(f"Invalid JSON in report file {report_path}: {exc}")
    except (OSError, ValueError) as exc:
        _error(f"Cannot read report file {report_path}: {exc}")

    result_path = ReportGenerator(saved, console=console).generate_report(
        format=report_format, output_path=output,
    )
    if result_path:
        console.print(f"[bold green]Report saved to:[/bold green] {result_path}")


# ============================================================================
# snapshot
# ============================================================================


@cli.command()
@click.option(
    "--source",
    type=click.Choice(list(MEMORY_SOURCES), case_sensitive=False),
    default="auto",
    show_default=True,
    help="Memory source to read.",
)
def snapshot(source: str) -> None:
    """Print one memory reading of the current process.

    Usage: heapscope snapshot --source psutil
    """
    try:
        sampler = Sampler(select_memory_source(source.lower()))
    except Exception as exc:
        _error(f"Memory source {source!r} is not available: {exc}")

    sample = sampler.measure()

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Source", sampler.source.name)
    table.add_row("Heap used", f"{sample.heap_used_mb:,} MB")
    table.add_row("Heap total", f"{sample.heap_total_mb:,} MB")
    table.add_row("Heap limit", f"{sample.heap_limit_mb:,} MB" if sample.heap_limit_mb else "-")

    console.print(Panel(table, title="[bold]Memory Snapshot[/bold]", border_style="cyan"))
    if sample.is_unmeasurable:
        _warn("This environment exposes no memory counters; the reading is unmeasurable.")


# ============================================================================
# Entry point
# ============================================================================


def main() -> None:
    """Entry point for the CLI.

    This function exists so the CLI can also be invoked via
    ``python -m heapscope.cli.main``.
    """
    cli()


if __name__ == "__main__":
    main()
