"""Workflow execution command."""
import json
from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from schemaseed.cli.commands.common import open_engine
from schemaseed.core.errors import SchemaSeedError
from schemaseed.core.workflow_store import WorkflowStore
from schemaseed.core.workflow_types import ExecutionResult
from schemaseed.utils.helpers import load_json_file
from schemaseed.utils.rich_helpers import (
    confirm,
    console,
    print_error,
    print_info,
    print_messages,
    print_success,
)


def run_cmd(
    workflow_name: str,
    input_file: Optional[Path],
    store_dir: Path,
    workers: int,
    yes: bool,
    url: Optional[str],
    db_schema: Optional[str],
    config_file: Optional[Path],
) -> None:
    """Execute a saved workflow against the configured database."""
    store = WorkflowStore(store_dir)
    workflow = store.load_workflow(workflow_name)
    if workflow is None:
        print_error(f"Workflow '{workflow_name}' not found in {store_dir}")
        raise typer.Exit(1)

    input_data = {}
    if input_file is not None:
        try:
            input_data = load_json_file(input_file)
        except (OSError, ValueError) as e:
            print_error(f"Could not read input file: {e}")
            raise typer.Exit(1)

    if not yes and not confirm(f"Run {len(workflow.steps)} steps of '{workflow.name}' against the database?"):
        print_info("Execution cancelled")
        return

    with open_engine(url, None, db_schema, config_file=config_file) as engine:
        try:
            result = engine.execute(workflow, input_data, max_workers=workers)
        except SchemaSeedError as e:
            print_error(f"Execution failed: {e}")
            raise typer.Exit(1)

    _print_result(result)
    if not result.success:
        raise typer.Exit(1)


def _print_result(result: ExecutionResult) -> None:
    table = Table(title=f"Execution - {result.workflow}", show_header=True, header_style="bold violet")
    table.add_column("Step", style="cyan")
    table.add_column("State", style="yellow")
    table.add_column("Detail", style="dim")

    for step in result.steps_executed:
        fixes = f"{len(step.auto_fixes)} auto-fixes" if step.auto_fixes else ""
        table.add_row(step.step_id, "[green]succeeded[/green]", fixes)
    for step in result.steps_failed:
        table.add_row(step.step_id, "[red]failed[/red]", step.error or "")
    for skipped in result.steps_skipped:
        table.add_row(skipped.step_id, "skipped", skipped.reason)
    console.print(table)

    for fix in result.auto_fixes_applied:
        console.print(
            f"[blue]fix[/blue] {fix.table}.{fix.field}: {json.dumps(fix.old_value, default=str)} "
            f"-> {json.dumps(fix.new_value, default=str)}"
        )
    print_messages(result.warnings, "Warnings")

    summary = result.summary
    line = (
        f"{summary.succeeded}/{summary.total_steps} steps succeeded, {summary.skipped} skipped, "
        f"{summary.failed} failed in {summary.duration_ms:.0f} ms"
    )
    if summary.rollbacks:
        line += f", {summary.rollbacks} rolled back"
    if result.success:
        print_success(line)
    elif result.aborted:
        print_error(f"Aborted: {line}")
    else:
        print_error(line)
