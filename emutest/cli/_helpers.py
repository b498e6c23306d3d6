"""Shared utilities for the emutest CLI."""

import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from emutest.lib.comparison import ComparisonResult
from emutest.lib.config import StartOptions, load_options, options_from_env
from emutest.lib.errors import ConfigurationError

console = Console()


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def start_options(config: Path | None) -> StartOptions:
    """StartOptions from an optional YAML file, then EMUTEST_* overrides. Exits on error."""
    try:
        base = load_options(config) if config else StartOptions()
        return options_from_env(base)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def print_results(results: list[ComparisonResult]) -> int:
    """Render a results table; return the number of failing pairs."""
    table = Table(title="Snapshot comparison")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Detail")
    for r in results:
        status = "[green]PASS[/green]" if r.equal else "[red]FAIL[/red]"
        table.add_row(f"{r.index:05d}", status, r.message)
    console.print(table)
    failed = sum(1 for r in results if not r.equal)
    if failed:
        console.print(f"[red]{failed}/{len(results)} snapshot(s) differ from golden[/red]")
    else:
        console.print(f"[green]All {len(results)} snapshot(s) match golden[/green]")
    return failed
