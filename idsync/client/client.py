"""CLI client for idsync.

Runs sync passes against the identity provider and inspects configuration.
"""

import asyncio
import base64
import binascii
import logging
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from idsync.entities.models import AttributeValue, link_id
from idsync.exceptions import IdsyncError
from idsync.models.config import ConfigLoader, IdsyncConfig
from idsync.sync.apply import Outcome
from idsync.sync.orchestrator import SyncReport, perform_sync

# Configure logging to stay quiet by default, will be adjusted by verbose flag
logging.basicConfig(
    level=logging.WARNING, format="%(message)s", datefmt="[%X]", handlers=[RichHandler(rich_tracebacks=True)]
)

app = typer.Typer(help="idsync - synchronize users from directory sources into Zitadel")
console = Console()


class State:
    """Application state container."""

    def __init__(self) -> None:
        """Initialize application state."""
        self.config_path: str = ConfigLoader.default_path()
        self.verbose: bool = False


state = State()


def _load_config() -> IdsyncConfig:
    try:
        config = ConfigLoader.load(state.config_path)
    except IdsyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    if not state.verbose:
        logging.getLogger("idsync").setLevel(config.log_level)
    return config


@app.callback()  # type: ignore[misc]
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to configuration file (default: $IDSYNC_CONFIG or config.yaml)"
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Enable verbose logging (DEBUG level)"),
) -> None:
    """idsync - synchronize users from directory sources into Zitadel."""
    state.config_path = config or ConfigLoader.default_path()
    state.verbose = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("idsync").setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.INFO)
        logging.getLogger("idsync").setLevel(logging.INFO)


def _report_table(report: SyncReport) -> Table:
    table = Table(title="Sync Results")
    table.add_column("Source", style="cyan")
    table.add_column("ID", style="cyan")
    table.add_column("Operations")
    for outcome in Outcome:
        table.add_column(outcome.value.replace("_", " ").title(), justify="right")
    table.add_column("Error", style="red")

    for result in report.results:
        counts = [
            str(sum(result.report.count(op, outcome) for op in result.report.counts)) for outcome in Outcome
        ]
        table.add_row(result.source, result.source_id, result.buckets, *counts, result.error or "")
    return table


@app.command()  # type: ignore[misc]
def sync() -> None:
    """Run one synchronization pass over all configured sources."""
    config = _load_config()
    if config.feature_flags.dry_run:
        console.print("[yellow]Dry run: no changes will be made.[/yellow]")

    try:
        report = asyncio.run(perform_sync(config))
    except IdsyncError as e:
        console.print(f"[red]Sync failed: {e}[/red]")
        if state.verbose:
            logging.exception("Sync error")
        raise typer.Exit(code=1)

    console.print(_report_table(report))

    if report.failed_operations:
        console.print(f"[yellow]{report.failed_operations} operations failed, see the log for details.[/yellow]")
    if report.failed_sources:
        names = ", ".join(f"{r.source} ({r.source_id})" for r in report.failed_sources)
        console.print(f"[red]Failed sources: {names}[/red]")
        raise typer.Exit(code=1)

    console.print("[green]Sync finished.[/green]")


@app.command("link-id")  # type: ignore[misc]
def link_id_command(
    external_id: str = typer.Argument(..., help="External user id as stored in the source"),
    binary: bool = typer.Option(False, "--binary", help="Interpret EXTERNAL_ID as base64-encoded bytes"),
) -> None:
    """Print the deterministic link id (localpart) for an external user id."""
    if binary:
        try:
            value = AttributeValue.binary(base64.b64decode(external_id, validate=True))
        except binascii.Error as e:
            console.print(f"[red]Invalid base64 value: {e}[/red]")
            raise typer.Exit(code=1)
    else:
        value = AttributeValue.text(external_id)

    console.print(str(link_id(value)))


@app.command("check-config")  # type: ignore[misc]
def check_config() -> None:
    """Validate the configuration and list enabled sources and feature flags."""
    config = _load_config()

    table = Table(title=f"Configuration ({state.config_path})")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Zitadel URL", config.zitadel.url)
    table.add_row("Organization", config.zitadel.organization_id)
    table.add_row("Project", config.zitadel.project_id)

    for name in config.sources.configured():
        source_config = getattr(config.sources, name)
        status = "enabled" if source_config.enabled else "disabled"
        table.add_row(f"Source {name}", f"{source_config.id} ({status})")

    flags = ", ".join(flag.value for flag in config.feature_flags.flags) or "none"
    table.add_row("Feature flags", flags)
    console.print(table)

    if not config.sources.configured():
        console.print("[yellow]No sources configured.[/yellow]")
        raise typer.Exit(code=1)
    console.print("[green]Configuration is valid.[/green]")


if __name__ == "__main__":
    app()
