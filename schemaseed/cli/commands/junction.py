"""Junction table detection and seeding commands."""
from pathlib import Path
from typing import List, Optional

import typer

from schemaseed.cli.commands.common import open_engine
from schemaseed.core.errors import SchemaSeedError
from schemaseed.core.junction_tables import JunctionSeedingOptions
from schemaseed.utils.helpers import split_names
from schemaseed.utils.rich_helpers import print_error, print_info, print_messages, print_success, print_table


def junctions_cmd(
    tables: List[str],
    url: Optional[str],
    schema_file: Optional[Path],
    db_schema: Optional[str],
    dialect: str,
    config_file: Optional[Path],
) -> None:
    """List tables that look like many-to-many links."""
    with open_engine(url, schema_file, db_schema, dialect, config_file) as engine:
        try:
            found = engine.detect_junction_tables(split_names(tables) or None)
        except SchemaSeedError as e:
            print_error(f"Detection failed: {e}")
            raise typer.Exit(1)

    if not found:
        print_info("No junction tables detected")
        return

    print_table(
        f"Junction tables ({len(found)})",
        ["Table", "Left", "Right", "Extra columns", "Confidence"],
        [
            [
                info.table,
                f"{info.left_table}.{info.left_reference}",
                f"{info.right_table}.{info.right_reference}",
                ", ".join(info.additional_columns) or "-",
                f"{info.confidence:.2f}",
            ]
            for info in found
        ],
        styles=["cyan", "magenta", "magenta", "dim", "green"],
    )


def link_cmd(
    table: str,
    density: float,
    strategy: str,
    avoid_orphans: bool,
    batch_size: Optional[int],
    url: Optional[str],
    db_schema: Optional[str],
    config_file: Optional[Path],
) -> None:
    """Fill a junction table with links between existing rows."""
    with open_engine(url, None, db_schema, config_file=config_file) as engine:
        try:
            options = JunctionSeedingOptions(
                density=density,
                strategy=strategy,
                avoid_orphans=avoid_orphans,
                batch_size=batch_size or engine.settings.junction_batch_size,
            )
        except ValueError as e:
            print_error(f"Invalid options: {e}")
            raise typer.Exit(1)

        try:
            result = engine.seed_junction_table(table, options)
        except SchemaSeedError as e:
            print_error(str(e))
            raise typer.Exit(1)

    print_messages(result.errors, "Errors", "red")
    line = (
        f"Inserted {result.relationships_created}/{result.target_count} links into {table} "
        f"(density {result.actual_density:.2f}, {result.orphans_avoided} orphans covered)"
    )
    if result.batches_failed:
        print_error(f"{line}; {result.batches_failed} of {result.batches_processed} batches failed")
        raise typer.Exit(1)
    print_success(line)
