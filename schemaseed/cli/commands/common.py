"""Shared option handling for the schemaseed commands."""
from pathlib import Path
from typing import Optional

import typer

from schemaseed.core.engine import SeedEngine
from schemaseed.core.errors import SchemaSeedError
from schemaseed.utils.config_manager import ConfigManager
from schemaseed.utils.rich_helpers import print_error


def open_engine(
    url: Optional[str],
    schema_file: Optional[Path],
    db_schema: Optional[str],
    dialect: str = "postgres",
    config_file: Optional[Path] = None,
) -> SeedEngine:
    """Build an engine from command line options, exiting with status 1 on failure."""
    if schema_file is not None and not schema_file.exists():
        print_error(f"Schema file not found: {schema_file}")
        raise typer.Exit(1)

    try:
        settings = ConfigManager(config_file, database_url=url, db_schema=db_schema).settings
        return SeedEngine.from_settings(settings, schema_file=schema_file, dialect=dialect)
    except (SchemaSeedError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)
