"""Main CLI entry point for schemaseed."""
import typer
from pathlib import Path
from typing import List, Optional
from schemaseed.utils.rich_helpers import print_banner, setup_logging

app = typer.Typer(
    name="schemaseed",
    help="Constraint-aware test data seeding",
    add_completion=False
)

URL_HELP = "Database connection URL (defaults to SCHEMASEED_DATABASE_URL)"
SCHEMA_FILE_HELP = "Plan from a SQL DDL file instead of a live database"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")
) -> None:
    """schemaseed - discover schema constraints and seed data that satisfies them."""
    setup_logging("DEBUG" if verbose else "WARNING")
    if ctx.invoked_subcommand is None:
        print_banner()
        typer.echo("\nUse --help to see available commands")


@app.command()
def introspect(
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    schema_file: Path = typer.Option(None, "--schema-file", "-f", help=SCHEMA_FILE_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to inspect"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="SQL dialect of --schema-file"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file"),
    refresh: bool = typer.Option(False, "--refresh", "-r", help="Ignore cached results"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON")
) -> None:
    """Describe tables, detect the framework and suggest improvements."""
    from schemaseed.cli.commands.introspect import introspect_cmd
    introspect_cmd(url, schema_file, db_schema, dialect, config_file, refresh, as_json)


@app.command()
def discover(
    tables: Optional[List[str]] = typer.Argument(None, help="Tables to analyze (default: all)"),
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    schema_file: Path = typer.Option(None, "--schema-file", "-f", help=SCHEMA_FILE_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to inspect"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="SQL dialect of --schema-file"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON")
) -> None:
    """Discover business rules and table dependencies."""
    from schemaseed.cli.commands.introspect import discover_cmd
    discover_cmd(tables or [], url, schema_file, db_schema, dialect, config_file, as_json)


@app.command()
def graph(
    tables: Optional[List[str]] = typer.Argument(None, help="Tables to include (default: all)"),
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    schema_file: Path = typer.Option(None, "--schema-file", "-f", help=SCHEMA_FILE_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to inspect"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="SQL dialect of --schema-file"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file")
) -> None:
    """Show table creation order and dependency cycles."""
    from schemaseed.cli.commands.introspect import graph_cmd
    graph_cmd(tables or [], url, schema_file, db_schema, dialect, config_file)


@app.command()
def plan(
    tables: List[str] = typer.Argument(..., help="Tables to seed"),
    name: str = typer.Option(None, "--name", "-n", help="Workflow name"),
    strategy: str = typer.Option("adaptive", "--strategy", help="comprehensive, minimal or adaptive"),
    mode: str = typer.Option("auto_fix", "--mode", "-m", help="strict, permissive or auto_fix"),
    optional_steps: bool = typer.Option(True, "--optional/--no-optional", help="Keep optional steps"),
    include_dependencies: bool = typer.Option(True, "--with-deps/--no-deps", help="Add steps for referenced tables"),
    store_dir: Path = typer.Option(Path(".schemaseed"), "--store", help="Directory for saved workflows"),
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    schema_file: Path = typer.Option(None, "--schema-file", "-f", help=SCHEMA_FILE_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to inspect"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="SQL dialect of --schema-file"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file"),
    show: bool = typer.Option(False, "--show", help="Print the full step outline")
) -> None:
    """Generate and save a constraint-aware seeding workflow."""
    from schemaseed.cli.commands.plan import plan_cmd
    plan_cmd(tables, name, strategy, mode, optional_steps, include_dependencies, store_dir,
             url, schema_file, db_schema, dialect, config_file, show)


@app.command()
def run(
    workflow: str = typer.Argument(..., help="Name of a saved workflow"),
    input_file: Path = typer.Option(None, "--input", "-i", help="JSON file with input values"),
    store_dir: Path = typer.Option(Path(".schemaseed"), "--store", help="Directory for saved workflows"),
    workers: int = typer.Option(1, "--workers", "-w", help="Run independent steps in parallel"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to write to"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file")
) -> None:
    """Execute a saved workflow."""
    from schemaseed.cli.commands.run import run_cmd
    run_cmd(workflow, input_file, store_dir, workers, yes, url, db_schema, config_file)


@app.command()
def junctions(
    tables: Optional[List[str]] = typer.Argument(None, help="Tables to inspect (default: all)"),
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    schema_file: Path = typer.Option(None, "--schema-file", "-f", help=SCHEMA_FILE_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to inspect"),
    dialect: str = typer.Option("postgres", "--dialect", "-d", help="SQL dialect of --schema-file"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file")
) -> None:
    """Detect many-to-many junction tables."""
    from schemaseed.cli.commands.junction import junctions_cmd
    junctions_cmd(tables or [], url, schema_file, db_schema, dialect, config_file)


@app.command()
def link(
    table: str = typer.Argument(..., help="Junction table to fill"),
    density: float = typer.Option(0.3, "--density", help="Fraction of all possible pairs to create"),
    strategy: str = typer.Option("random", "--strategy", help="random, even or clustered"),
    avoid_orphans: bool = typer.Option(True, "--cover/--no-cover", help="Link every row at least once"),
    batch_size: int = typer.Option(None, "--batch-size", "-b", help="Rows per insert batch"),
    url: str = typer.Option(None, "--url", "-u", help=URL_HELP),
    db_schema: str = typer.Option(None, "--db-schema", "-s", help="Database schema to write to"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file")
) -> None:
    """Create links between existing rows through a junction table."""
    from schemaseed.cli.commands.junction import link_cmd
    link_cmd(table, density, strategy, avoid_orphans, batch_size, url, db_schema, config_file)


@app.command()
def cache(
    clear: bool = typer.Option(False, "--clear", help="Clear all cache"),
    stats: bool = typer.Option(False, "--stats", help="Show cache statistics"),
    config_file: Path = typer.Option(None, "--config", "-c", help="JSON settings file")
) -> None:
    """Manage the discovery cache."""
    from schemaseed.cli.commands.cache import cache_cmd
    cache_cmd(clear, stats, config_file)


if __name__ == "__main__":
    app()
