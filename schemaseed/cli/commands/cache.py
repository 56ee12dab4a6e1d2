"""Cache management commands."""
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from schemaseed.core.cache.manager import MetadataCache
from schemaseed.utils.config_manager import ConfigManager
from schemaseed.utils.rich_helpers import console, print_error, print_info, print_success


def cache_cmd(clear: bool, stats: bool, config_file: Optional[Path]) -> None:
    """Manage the persisted discovery cache."""
    settings = ConfigManager(config_file).settings
    if settings.cache_dir is None:
        print_error("No cache directory configured; set SCHEMASEED_CACHE_DIR")
        raise typer.Exit(1)

    cache = MetadataCache(settings.cache_dir, default_ttl=settings.cache_ttl, max_cache_size=settings.cache_max_entries)

    if clear:
        cache.clear_all()
        print_success("Cache cleared successfully")
        return

    if stats:
        stats = cache.get_stats()

        table = Table(title="Cache Statistics")
        table.add_column("Type", style="cyan")
        table.add_column("Entries", style="yellow")

        table.add_row("Constraint metadata", str(stats["constraint_entries"]))
        table.add_row("Introspection", str(stats["introspection_entries"]))
        table.add_row("[bold]Total[/bold]", f"[bold]{stats['total_entries']}[/bold]")

        console.print(table)
        for label in stats["table_sets"]:
            console.print(f"  • [cyan]{label}[/cyan]")
        console.print(f"\n[dim]Cache directory: {stats['cache_dir']}[/dim]")
        return

    print_info("Use --clear to clear cache or --stats to show statistics")
