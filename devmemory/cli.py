"""Dev Memory CLI with Rich output.

Provides commands for:
- Running the MCP server
- Migrating the legacy .dev-memory store
- Searching memories
- Backend status

Usage:
    devmemory serve                     # Run the MCP server over stdio
    devmemory migrate ./.dev-memory     # Import legacy JSON memories
    devmemory search "query"            # Search memories
    devmemory status                    # Show backend status
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from devmemory.config import Config
from devmemory.errors import DevMemoryError
from devmemory.models import ContextQueryOptions, MigrationOptions

app = typer.Typer(
    name="devmemory",
    help="Dev Memory - persistent development context for MCP clients",
    rich_markup_mode="rich",
    no_args_is_help=True,
)
console = Console()


def print_banner():
    """Print Dev Memory banner."""
    banner = Text()
    banner.append("Dev", style="bold cyan")
    banner.append(" Memory", style="cyan")
    console.print(Panel(banner, border_style="cyan", box=box.ROUNDED))


def _run(config: Config, operation):
    """Build services and run one async operation with them in a single event loop."""
    from devmemory.server import build_services

    # One-shot commands do not need periodic health checks
    config.monitor_connection = False

    async def runner():
        services = await build_services(config)
        try:
            return services, await operation(services)
        finally:
            await services.store.dispose()

    try:
        return asyncio.run(runner())
    except DevMemoryError as e:
        console.print(f"[red]Backend unavailable:[/red] {e}")
        raise typer.Exit(1)


def _format_time(timestamp: int | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M")


@app.command()
def serve():
    """Run the MCP server over stdio."""
    from devmemory.server import main as server_main

    server_main()


@app.command()
def migrate(
    legacy_dir: Optional[Path] = typer.Argument(
        None,
        help="Legacy store directory (default: DEV_MEMORY_LEGACY_DIR or ./.dev-memory)",
    ),
    batch_size: Optional[int] = typer.Option(
        None,
        "--batch-size", "-b",
        min=1,
        help="Entries per backend write",
    ),
    validate_only: bool = typer.Option(
        False,
        "--validate-only",
        help="Transform and validate without writing",
    ),
    rollback_on_error: bool = typer.Option(
        False,
        "--rollback-on-error",
        help="Stop on the first failure and delete everything written",
    ),
):
    """Import memories from the legacy .dev-memory JSON layout.

    Examples:
        devmemory migrate                       # Default legacy directory
        devmemory migrate ~/old --validate-only # Dry run
        devmemory migrate -b 20 --rollback-on-error
    """
    print_banner()
    config = Config()
    directory = legacy_dir or config.legacy_dir
    options = MigrationOptions(
        batch_size=batch_size or config.migration_batch_size,
        validate_only=validate_only,
        rollback_on_error=rollback_on_error,
    )

    async def operation(services):
        return await services.migration.migrate_legacy(directory, options)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    ) as progress:
        progress.add_task(f"Migrating {directory}...", total=None)
        services, (loaded, result) = _run(config, operation)

    table = Table(title="Migration", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Files loaded", str(len(loaded.entries)))
    table.add_row("Files skipped", str(len(loaded.skipped)))
    table.add_row("Processed", f"[green]{result.progress.processed}[/green]")
    table.add_row("Failed", f"[red]{result.progress.failed}[/red]" if result.progress.failed else "0")
    latest = services.migration.get_latest_snapshot()
    table.add_row("State", latest.state.value if latest else "-")
    console.print(table)

    for path, reason in loaded.skipped:
        console.print(f"[dim]skipped {path}: {reason}[/dim]")
    for error in result.progress.errors[:20]:
        console.print(f"[yellow]{error.id}[/yellow]: {error.error}")

    if not result.success:
        if result.rollback_required:
            console.print("\n[bold red]Migration aborted[/bold red] (rollback requested)")
        raise typer.Exit(1)
    console.print("\n[green]✓ Migration completed[/green]")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search text"),
    top_k: int = typer.Option(10, "--top-k", "-k", min=1, help="Number of results"),
    type: Optional[list[str]] = typer.Option(
        None,
        "--type", "-t",
        help="Only these memory types (repeatable)",
    ),
):
    """Search memories by meaning."""
    config = Config()
    options = ContextQueryOptions(top_k=top_k, context_types=type or None)

    async def operation(services):
        return await services.manager.retrieve_context(query, options)

    _, result = _run(config, operation)

    if not result.success:
        console.print(f"[red]Search failed:[/red] {result.error}")
        raise typer.Exit(1)

    contexts = result.get("contexts") or []
    if not contexts:
        console.print("[yellow]No memories found[/yellow]")
        return

    table = Table(title=f"Results for '{query[:40]}'", box=box.ROUNDED)
    table.add_column("Score", justify="right", style="green")
    table.add_column("Type", style="cyan")
    table.add_column("Created", style="dim")
    table.add_column("Content")
    for ctx in contexts:
        meta = ctx.entry.metadata
        table.add_row(f"{ctx.score:.3f}", meta.type, _format_time(meta.timestamp), ctx.entry.content[:80])
    console.print(table)


@app.command()
def status():
    """Show backend status and configuration."""
    print_banner()
    config = Config()

    async def operation(services):
        return await services.manager.get_stats()

    _, stats = _run(config, operation)

    table = Table(title="Backend Status", box=box.ROUNDED)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    backend = stats.get("backend") or {}
    connected = "[green]Yes[/green]" if backend.get("is_connected") else "[red]No[/red]"
    table.add_row("Backend", config.backend)
    table.add_row("Connected", connected)
    table.add_row("Last error", backend.get("last_error") or "-")
    table.add_row("Stored vectors", str(stats.get("vectors", "-")))
    table.add_row("Data dir", str(config.data_dir))
    table.add_row("Embedding model", config.embedding_model)
    table.add_row("Legacy dir", str(config.legacy_dir))
    console.print(table)


@app.command()
def version():
    """Show Dev Memory version."""
    from devmemory import __version__

    console.print(f"Dev Memory [cyan]{__version__}[/cyan]")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
