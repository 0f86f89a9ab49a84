from __future__ import annotations

from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from pg_cursor_stream.domain.models import StreamReport


def _format_mb(value: Optional[int]) -> str:
    if not value:
        return "N/A"
    return f"{value / (1024 * 1024):.2f}"


def build_table(reports: Iterable[StreamReport]) -> Table:
    """
    Build a rich table with one row per streamed query.
    """
    table = Table(title="Cursor Stream Results", box=box.ROUNDED)

    table.add_column("Cursor", style="cyan", no_wrap=True)
    table.add_column("Driver", style="blue")
    table.add_column("Batch size", justify="right")
    table.add_column("Batches", justify="right", style="magenta")
    table.add_column("Rows", justify="right", style="magenta")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Throughput (rows/s)", justify="right", style="bold green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")

    for report in reports:
        table.add_row(
            report.cursor_name,
            report.driver,
            f"{report.batch_size:,}",
            f"{report.batches:,}",
            f"{report.rows:,}",
            f"{report.duration_seconds:.2f}",
            f"{report.throughput_rows_per_sec:,.2f}",
            _format_mb(report.peak_rss_bytes),
        )
    return table


def print_reports(reports: Iterable[StreamReport], console: Optional[Console] = None) -> None:
    """Render stream reports to the terminal."""
    reports = list(reports)
    console = console or Console()
    if not reports:
        console.print("[yellow]No results to display.[/yellow]")
        return
    console.print(build_table(reports))


__all__ = ["build_table", "print_reports"]
