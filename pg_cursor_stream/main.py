from __future__ import annotations

import sys
from typing import Optional

import typer

from pg_cursor_stream.config import get_settings
from pg_cursor_stream.reader import available_drivers, run_stream
from pg_cursor_stream.reporter import print_reports
from pg_cursor_stream.utils.logging import configure_logging

app = typer.Typer(help="Stream PostgreSQL query results through a server-side cursor.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"batch={settings.cursor_batch_size} prefix={settings.cursor_name_prefix} "
        f"drivers={','.join(available_drivers())}"
    )


@app.command()
def stream(
    query: str = typer.Argument(..., help="SQL to stream. Passed to the server verbatim."),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size",
        "-b",
        min=1,
        help="Rows per FETCH (default from settings).",
    ),
    driver: str = typer.Option(
        "psycopg",
        "--driver",
        "-d",
        help="Driver to connect with (psycopg, asyncpg).",
    ),
    dsn: Optional[str] = typer.Option(
        None,
        "--dsn",
        help="Connection string override (default built from settings).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the report as JSON instead of a table.",
    ),
) -> None:
    """
    Stream a query to completion and report batches, rows and peak memory.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    if driver not in available_drivers():
        typer.echo(f"Unknown driver '{driver}'. Available: {', '.join(available_drivers())}", err=True)
        raise typer.Exit(code=2)

    report = run_stream(query, batch_size=batch_size, driver=driver, dsn=dsn)
    if json_output:
        typer.echo(report.model_dump_json(indent=2))
    else:
        print_reports([report])


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
