"""Workflow planning command."""
from pathlib import Path
from typing import List, Optional

import typer

from schemaseed.cli.commands.common import open_engine
from schemaseed.core.errors import SchemaSeedError
from schemaseed.core.workflow_store import WorkflowStore
from schemaseed.core.workflow_types import WorkflowGenerationOptions
from schemaseed.utils.helpers import split_names
from schemaseed.utils.rich_helpers import (
    console,
    print_error,
    print_info,
    print_messages,
    print_success,
    print_table,
)


def plan_cmd(
    tables: List[str],
    name: Optional[str],
    strategy: str,
    mode: str,
    optional_steps: bool,
    include_dependencies: bool,
    store_dir: Path,
    url: Optional[str],
    schema_file: Optional[Path],
    db_schema: Optional[str],
    dialect: str,
    config_file: Optional[Path],
    show: bool,
) -> None:
    """Generate a seeding workflow for the given tables and save it."""
    names = split_names(tables)
    if not names:
        print_error("At least one table is required")
        raise typer.Exit(1)

    try:
        options = WorkflowGenerationOptions(
            user_creation_strategy=strategy,
            constraint_handling=mode,
            generate_optional_steps=optional_steps,
            include_dependency_creation=include_dependencies,
        )
    except ValueError as e:
        print_error(f"Invalid options: {e}")
        raise typer.Exit(1)

    with open_engine(url, schema_file, db_schema, dialect, config_file) as engine:
        try:
            workflow, info = engine.generate_workflow(names, options)
        except SchemaSeedError as e:
            print_error(f"Workflow generation failed: {e}")
            raise typer.Exit(1)

    if name:
        workflow.name = name

    store = WorkflowStore(store_dir)
    content_hash = store.save_workflow(workflow)

    rows = [
        [
            step.id,
            step.operation,
            "yes" if step.required else "no",
            ", ".join(step.dependencies) or "-",
            step.on_error.type,
        ]
        for step in workflow.steps
    ]
    print_table(
        f"Workflow: {workflow.name}",
        ["Step", "Operation", "Required", "After", "On error"],
        rows,
        styles=["cyan", "yellow", "green", "magenta", "dim"],
    )
    if show:
        console.print(store.render_outline(workflow))

    for table, reason in info.skipped_tables.items():
        print_info(f"Skipped {table}: {reason}")
    print_messages(info.warnings, "Warnings")
    print_messages(info.recommendations, "Recommendations", "blue")
    print_success(
        f"Saved {workflow.name} ({len(workflow.steps)} steps, confidence {info.confidence:.2f}, hash {content_hash})"
    )
