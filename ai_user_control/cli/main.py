"""
CLI interface for AI User Control.

Provides command-line access to report generation, identity unification
and directory lookups.
"""

import logging
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional, Tuple

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_user_control.config.loader import ReportConfig, load_report_config
from ai_user_control.core.collection import CollectionOrchestrator, collect_all_users
from ai_user_control.core.identity import build_collection_summary, unify_identities
from ai_user_control.core.report import ConsolidatedReport, generate_report
from ai_user_control.export.csv_writer import export_identities, export_report
from ai_user_control.sdk.workspace_client import build_directory_resolver
from ai_user_control.storage.models import ToolType
from ai_user_control.storage.repository import build_collectors, build_identity_sources

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_CONFIG = "ai-user-control.yaml"
DEFAULT_PERIOD_DAYS = 30


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True
    )


def _load_config(path: str) -> ReportConfig:
    """Load configuration, exiting with a readable error on failure."""
    try:
        return load_report_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def default_period(today: Optional[date] = None) -> Tuple[date, date]:
    """Return the 30-day period ending yesterday."""
    end = (today or date.today()) - timedelta(days=1)
    return end - timedelta(days=DEFAULT_PERIOD_DAYS - 1), end


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """AI User Control CLI."""
    _configure_logging(verbose)
    if ctx.invoked_subcommand is None:
        console.print("AI User Control - Use --help to see available commands")


@app.command()
def report(
    config: str = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to configuration file"),
    start: Optional[datetime] = typer.Option(
        None,
        "--start",
        "-s",
        formats=["%Y-%m-%d"],
        help="First day of the period (defaults to 30 days before yesterday)"
    ),
    end: Optional[datetime] = typer.Option(
        None,
        "--end",
        "-e",
        formats=["%Y-%m-%d"],
        help="Last day of the period (defaults to yesterday)"
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory for the CSV files (overrides the configuration)"
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Exit with error code if any source failed"
    )
):
    """
    Generate the consolidated usage and spending report.

    Collects from every configured source, rolls usage up per user and
    tool, and writes the result as CSV files.
    """
    report_config = _load_config(config)

    period_start, period_end = default_period()
    if end:
        period_end = end.date()
        period_start = period_end - timedelta(days=DEFAULT_PERIOD_DAYS - 1)
    if start:
        period_start = start.date()
    if period_start > period_end:
        console.print(f"[red]Error:[/] start ({period_start}) must not be after end ({period_end})")
        sys.exit(EXIT_CODE_FAIL)

    resolver = build_directory_resolver(report_config.directory)
    orchestrator = CollectionOrchestrator(
        build_collectors(report_config, resolver),
        timeout=report_config.collection.timeout_seconds,
        max_workers=report_config.collection.max_workers
    )
    result = generate_report(orchestrator, period_start, period_end, resolver)

    try:
        files = export_report(result, output_dir or report_config.output_dir)
    except OSError as e:
        console.print(f"[red]Error writing report:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_report(result)
    console.print("\n[bold]Files generated:[/bold]")
    for path in files:
        console.print(f"  {path}")

    if strict and result.failures:
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def users(
    config: str = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to configuration file"),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Directory for the CSV file (overrides the configuration)"
    )
):
    """Collect users from every tool and merge them into one list."""
    report_config = _load_config(config)

    data_by_tool = collect_all_users(build_identity_sources(report_config))
    identities = unify_identities(data_by_tool)

    try:
        path = export_identities(identities, output_dir or report_config.output_dir)
    except OSError as e:
        console.print(f"[red]Error writing users:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(build_collection_summary(identities, data_by_tool))
    console.print(f"\n[bold]File generated:[/bold] {path}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def lookup(
    login: str = typer.Argument(..., help="GitHub login to resolve"),
    config: str = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to configuration file")
):
    """Resolve one GitHub login through the corporate directory."""
    report_config = _load_config(config)

    resolver = build_directory_resolver(report_config.directory)
    if resolver is None:
        console.print("[red]Error:[/] directory is disabled or unavailable")
        sys.exit(EXIT_CODE_FAIL)

    email = resolver.find_email_by_git_name(login)
    if email is None:
        console.print(f"[yellow]No directory user registered for[/] {login}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"[green]✓[/] {login} -> {email}")
    sys.exit(EXIT_CODE_PASS)


def _format_currency(amount) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _format_optional(value) -> str:
    return "-" if value is None else f"{value:,}"


def _display_report(result: ConsolidatedReport):
    """Display report headline numbers and multi-tool users."""
    summary = result.summary
    console.print(f"\n[bold]AI Usage Report[/bold] ({result.period})")
    console.print("-" * 40)
    console.print(f"Users: {summary.user_count}")
    console.print(f"Input tokens: {summary.total_input_tokens:,}")
    console.print(f"Output tokens: {summary.total_output_tokens:,}")
    console.print(f"Total cost: {_format_currency(summary.total_cost)}")
    for tool in ToolType:
        if tool in summary.cost_by_tool:
            console.print(f"  {tool.display_name}: {_format_currency(summary.cost_by_tool[tool])}")

    if result.multi_tool_rows:
        table = Table(title="Multi-tool users")
        table.add_column("Email")
        table.add_column("Tools")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for row in result.multi_tool_rows:
            table.add_row(
                row.identity,
                ", ".join(tool.display_name for tool in ToolType if row.uses(tool)),
                _format_optional(row.total_tokens),
                _format_currency(row.total_cost) if row.total_cost is not None else "-"
            )
        console.print(table)

    if result.unregistered_checked:
        console.print(f"Users missing from the directory: {len(result.unregistered_rows)}")
    else:
        console.print("[yellow]Directory unavailable, unregistered user check skipped[/]")

    for failure in result.failures:
        console.print(f"[yellow]Warning:[/] {failure.operation} data from {failure.source} missing ({failure.error})")


if __name__ == "__main__":
    app()
