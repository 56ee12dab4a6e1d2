"""Schema introspection, constraint discovery and dependency graph commands."""
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from schemaseed.cli.commands.common import open_engine
from schemaseed.core.errors import SchemaSeedError
from schemaseed.utils.helpers import split_names
from schemaseed.utils.rich_helpers import (
    console,
    print_error,
    print_info,
    print_json,
    print_messages,
    print_success,
    print_table,
)


def _spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def introspect_cmd(
    url: Optional[str],
    schema_file: Optional[Path],
    db_schema: Optional[str],
    dialect: str,
    config_file: Optional[Path],
    refresh: bool,
    as_json: bool,
) -> None:
    """Describe every table, guess the framework and list recommendations."""
    with open_engine(url, schema_file, db_schema, dialect, config_file) as engine:
        try:
            with _spinner() as progress:
                progress.add_task("Introspecting schema...", total=None)
                result = engine.introspect(use_cache=not refresh)
        except SchemaSeedError as e:
            print_error(f"Introspection failed: {e}")
            raise typer.Exit(1)

    if as_json:
        print_json(result.model_dump(mode="json"), title="Introspection")
        return

    roles = {p.table: p for p in result.patterns}
    rows = []
    for table in result.tables:
        pattern = roles.get(table.name)
        rows.append([
            table.name,
            str(len(table.columns)),
            str(len(table.foreign_keys)),
            str(len(table.check_constraints)),
            str(table.row_count) if table.row_count is not None else "-",
            f"{pattern.suggested_role} ({pattern.confidence:.2f})" if pattern else "-",
        ])
    print_table(
        f"Tables ({len(result.tables)})",
        ["Table", "Columns", "FKs", "Checks", "Rows", "Role"],
        rows,
        styles=["cyan", "yellow", "yellow", "yellow", "dim", "green"],
    )

    framework = result.framework
    print_info(f"Framework: [bold]{framework.type}[/bold] (confidence {framework.confidence:.2f})")
    print_messages([f"[{r.priority}] {r.message}" for r in result.recommendations], "Recommendations", "blue")
    print_messages(result.warnings, "Warnings")


def discover_cmd(
    tables: List[str],
    url: Optional[str],
    schema_file: Optional[Path],
    db_schema: Optional[str],
    dialect: str,
    config_file: Optional[Path],
    as_json: bool,
) -> None:
    """Discover business rules and dependencies for the given tables."""
    with open_engine(url, schema_file, db_schema, dialect, config_file) as engine:
        names = split_names(tables) or engine.client.list_tables()
        try:
            with _spinner() as progress:
                progress.add_task(f"Discovering constraints for {len(names)} tables...", total=None)
                metadata = engine.discover_constraints(names)
        except SchemaSeedError as e:
            print_error(f"Discovery failed: {e}")
            raise typer.Exit(1)

    if as_json:
        print_json(metadata.model_dump(mode="json"), title="Constraint metadata")
        return

    rows = [
        [rule.id, rule.kind, rule.action, f"{rule.confidence:.2f}", rule.condition]
        for rule in metadata.business_rules
    ]
    print_table(
        f"Business rules ({len(rows)})",
        ["Rule", "Kind", "Action", "Confidence", "Condition"],
        rows,
        styles=["cyan", "yellow", "magenta", "green", "dim"],
    )

    if metadata.dependencies:
        print_table(
            "Dependencies",
            ["From", "To", "Required"],
            [
                [f"{d.from_table}.{d.from_column}", f"{d.to_table}.{d.to_column}", "yes" if d.required else "no"]
                for d in metadata.dependencies
            ],
            styles=["cyan", "cyan", "yellow"],
        )

    print_success(f"Discovered {len(rows)} rules across {len(metadata.tables)} tables "
                  f"(confidence {metadata.confidence:.2f})")
    print_messages(metadata.warnings, "Warnings")


def graph_cmd(
    tables: List[str],
    url: Optional[str],
    schema_file: Optional[Path],
    db_schema: Optional[str],
    dialect: str,
    config_file: Optional[Path],
) -> None:
    """Print creation order, cycles and junction tables."""
    with open_engine(url, schema_file, db_schema, dialect, config_file) as engine:
        names = split_names(tables) or engine.client.list_tables()
        try:
            graph = engine.build_dependency_graph(engine.discover_constraints(names))
        except SchemaSeedError as e:
            print_error(f"Could not build dependency graph: {e}")
            raise typer.Exit(1)

    rows = []
    for position, table in enumerate(graph.creation_order, 1):
        node = graph.nodes[table]
        flags = []
        if node.is_junction_table:
            flags.append("junction")
        if node.is_circular:
            flags.append("circular")
        rows.append([
            str(position),
            table,
            str(node.depth),
            ", ".join(node.dependencies) or "-",
            ", ".join(flags),
        ])
    print_table(
        "Creation order",
        ["#", "Table", "Depth", "Depends on", "Flags"],
        rows,
        styles=["dim", "cyan", "yellow", "magenta", "green"],
    )

    for cycle in graph.cycles:
        console.print(f"[yellow]Cycle:[/yellow] {' -> '.join(cycle + cycle[:1])}")
    print_messages(graph.warnings, "Warnings")
    print_messages(graph.recommendations, "Recommendations", "blue")
