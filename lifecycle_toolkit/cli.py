#!/usr/bin/env python3
"""
Command-line interface for the Lifecycle Toolkit.

Provides configuration checks and read-only soft delete audit tools.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .config import LifecycleConfig, get_config
from .soft_delete.reporting import TableAuditor

console = Console()


def _auditor(database_url: Optional[str], table: str) -> TableAuditor:
    url = database_url or get_config().default_database_url
    if not url:
        raise click.UsageError(
            "No database given. Use --database-url or set "
            "LIFECYCLE_DEFAULT_DATABASE_URL."
        )
    return TableAuditor(create_engine(url), table)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Lifecycle Toolkit - soft delete audit and configuration tools."""
    logging.basicConfig(level=logging.DEBUG if verbose else get_config().log_level)

    if ctx.invoked_subcommand is None:
        console.print(
            Panel.fit(
                f"[bold blue]Lifecycle Toolkit[/bold blue] v{__version__}\n"
                "[dim]Soft delete audit and configuration tools[/dim]\n\n"
                "Use [bold]lifecycle --help[/bold] to see available commands.",
                border_style="blue",
            )
        )


@cli.group()
def config() -> None:
    """Inspect toolkit configuration."""
    pass


@config.command("show")
@click.option("--format", type=click.Choice(["table", "json", "yaml"]), default="table")
def config_show(format: str) -> None:
    """Display current configuration."""
    config_dict = get_config().to_dict()

    if format == "json":
        console.print_json(data=config_dict)
    elif format == "yaml":
        console.print(yaml.safe_dump(config_dict, default_flow_style=False))
    else:
        table = Table(title="Lifecycle Configuration", show_header=True)
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")

        for setting, value in config_dict.items():
            if value is None:
                value = "[dim]Not configured[/dim]"
            elif isinstance(value, bool):
                value = "✓" if value else "✗"
            table.add_row(setting, str(value))

        console.print(table)


@config.command("validate")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def config_validate(path: str) -> None:
    """Validate a JSON or YAML configuration file."""
    try:
        loaded = LifecycleConfig.from_file(path)
    except ValidationError as e:
        console.print("[red]✗ Configuration validation failed:[/red]")
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            console.print(f"  [red]• {location}: {error['msg']}[/red]")
        sys.exit(1)
    except (ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]Error reading configuration: {e}[/red]")
        sys.exit(1)

    console.print("[green]✓ Configuration is valid[/green]")

    if not loaded.audit_enabled and loaded.environment == "production":
        console.print("\n[yellow]⚠ Warnings:[/yellow]")
        console.print("  [yellow]• Audit logging is disabled in production[/yellow]")


@cli.group()
def audit() -> None:
    """Read-only soft delete audit tools."""
    pass


@audit.command("summary")
@click.option("--database-url", help="SQLAlchemy database URL")
@click.option("--table", "table_name", required=True, help="Lifecycle table name")
def audit_summary(database_url: Optional[str], table_name: str) -> None:
    """Show active and inactive record counts."""
    try:
        counts = _auditor(database_url, table_name).summary()
    except (ValueError, SQLAlchemyError) as e:
        console.print(f"[red]Error reading {table_name}: {e}[/red]")
        sys.exit(1)

    table = Table(title=f"Lifecycle summary: {table_name}")
    table.add_column("Status", style="cyan")
    table.add_column("Records", style="green", justify="right")
    table.add_row("Active", str(counts["active"]))
    table.add_row("Inactive", str(counts["inactive"]))
    table.add_row("[bold]Total[/bold]", str(counts["total"]))
    console.print(table)


@audit.command("deleted")
@click.option("--database-url", help="SQLAlchemy database URL")
@click.option("--table", "table_name", required=True, help="Lifecycle table name")
@click.option("--actor", help="Only records deleted by this actor")
@click.option("--since", type=click.DateTime(), help="Deleted at or after")
@click.option("--until", type=click.DateTime(), help="Deleted at or before")
@click.option("--format", type=click.Choice(["table", "json"]), default="table")
def audit_deleted(
    database_url: Optional[str],
    table_name: str,
    actor: Optional[str],
    since: Optional[datetime],
    until: Optional[datetime],
    format: str,
) -> None:
    """List soft-deleted records."""
    try:
        rows = _auditor(database_url, table_name).deleted(
            actor=actor, since=since, until=until
        )
    except (ValueError, SQLAlchemyError) as e:
        console.print(f"[red]Error reading {table_name}: {e}[/red]")
        sys.exit(1)

    if not rows:
        console.print("[yellow]No deleted records found matching criteria[/yellow]")
        return

    if format == "json":
        console.print_json(
            data=[{key: str(value) for key, value in row.items()} for row in rows]
        )
        return

    table = Table(title=f"Deleted records in {table_name} ({len(rows)})")
    table.add_column("ID", style="cyan")
    table.add_column("Deleted at", style="yellow")
    table.add_column("Deleted by", style="green")
    for row in rows:
        deleted_at = row["deleted_at"]
        if hasattr(deleted_at, "strftime"):
            deleted_at = deleted_at.strftime("%Y-%m-%d %H:%M:%S")
        table.add_row(str(row["id"]), str(deleted_at), str(row["deleted_by"]))
    console.print(table)


if __name__ == "__main__":
    cli()
