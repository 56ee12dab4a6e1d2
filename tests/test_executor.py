"""Tests for constraint-aware workflow execution."""
import threading

import pytest

from schemaseed.core.constraint_discovery import ConstraintDiscoveryEngine
from schemaseed.core.db_connector import SQLAlchemyMetadataClient
from schemaseed.core.errors import QueryError, WorkflowAbortedError
from schemaseed.core.executor import ConstraintAwareExecutor
from schemaseed.core.workflow_generator import WorkflowGenerator
from schemaseed.core.workflow_types import (
    ConstraintCondition,
    ErrorAction,
    FieldMapping,
    Workflow,
    WorkflowGenerationOptions,
    WorkflowStep,
)

from conftest import BLOG_SCHEMA, create_schema


class FlakyInsertClient(SQLAlchemyMetadataClient):
    """Fails the first insert, then behaves normally."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.insert_calls = 0

    def insert_row(self, table_name, row):
        self.insert_calls += 1
        if self.insert_calls == 1:
            raise QueryError(f"Inserting into {table_name} failed: database is locked")
        return super().insert_row(table_name, row)


def make(client, tables, mode="auto_fix", **executor_kwargs):
    discovery = ConstraintDiscoveryEngine(client)
    workflow, _ = WorkflowGenerator(discovery).generate(
        tables, WorkflowGenerationOptions(constraint_handling=mode)
    )
    return workflow, ConstraintAwareExecutor(client, discovery=discovery, **executor_kwargs)


def with_step(workflow, step_id, **update):
    steps = [s.model_copy(update=update) if s.id == step_id else s for s in workflow.steps]
    return workflow.model_copy(update={"steps": steps})


def test_successful_run_links_rows(blog_client):
    """Authors are created first and posts reference the new author id."""
    workflow, executor = make(blog_client, ["posts"])

    result = executor.execute(workflow, {"email": "ann@example.com", "name": "Ann", "title": "Hello"})

    assert result.success
    assert [r.step_id for r in result.steps_executed] == ["create_authors", "create_posts"]
    author = blog_client.select_rows("authors")[0]
    post = blog_client.select_rows("posts")[0]
    assert post["author_id"] == author["id"]
    assert post["title"] == "Hello"
    assert post["status"] == "draft"
    assert result.summary.succeeded == 2
    assert result.summary.rules_discovered > 0


def test_table_scoped_input(blog_client):
    """Input keyed by table wins over flat input for that table."""
    workflow, executor = make(blog_client, ["posts"])

    result = executor.execute(workflow, {
        "email": "ann@example.com",
        "title": "Flat title",
        "posts": {"title": "Scoped title", "status": "published"},
    })

    assert result.success
    post = blog_client.select_rows("posts")[0]
    assert post["title"] == "Scoped title"
    assert post["status"] == "published"


def test_graceful_mode_skips_invalid_optional_step(blog_client):
    """A missing required field skips the step without stopping the run."""
    workflow, executor = make(blog_client, ["posts"])

    result = executor.execute(workflow, {"email": "ann@example.com"})

    assert result.success
    assert not result.aborted
    assert [s.step_id for s in result.steps_skipped] == ["create_posts"]
    assert "cannot be null" in result.steps_skipped[0].reason
    assert blog_client.count_rows("authors") == 1
    assert blog_client.count_rows("posts") == 0


def test_graceful_mode_runs_steps_after_a_skip(blog_client):
    """Independent steps ordered after a skipped one still run."""
    workflow, executor = make(blog_client, ["posts", "notes"])
    steps = sorted(workflow.steps, key=lambda s: s.id == "create_notes")
    workflow = workflow.model_copy(update={"steps": steps})

    result = executor.execute(workflow, {"email": "ann@example.com", "content": "x"})

    assert result.success
    assert not result.aborted
    assert [s.step_id for s in result.steps_skipped] == ["create_posts"]
    assert "create_notes" in [r.step_id for r in result.steps_executed]
    assert blog_client.select_rows("notes")[0]["content"] == "x"
    assert blog_client.count_rows("posts") == 0


def test_strict_mode_aborts_on_required_step(blog_client):
    """fail_fast stops at a failing required step and skips the rest."""
    workflow, executor = make(blog_client, ["posts"], mode="strict")

    result = executor.execute(workflow, {"name": "Ann", "title": "Hello"})

    assert result.aborted
    assert not result.success
    assert [r.step_id for r in result.steps_failed] == ["create_authors"]
    assert [s.step_id for s in result.steps_skipped] == ["create_posts"]
    assert result.steps_skipped[0].reason == "Workflow stopped before this step ran"
    assert any("no value for required field email" in w for w in result.warnings)
    assert blog_client.count_rows("authors") == 0


def test_abort_rolls_back_completed_steps(blog_client):
    """Rows written before a critical failure are deleted again."""
    workflow, executor = make(blog_client, ["posts"], mode="strict")
    workflow = with_step(workflow, "create_posts", required=True)

    result = executor.execute(workflow, {"email": "ann@example.com"})

    assert result.aborted
    assert [r.step_id for r in result.steps_executed] == ["create_authors"]
    assert len(result.rollback_actions) == 1
    action = result.rollback_actions[0]
    assert action.action == "delete"
    assert action.completed
    assert result.summary.rollbacks == 1
    assert blog_client.count_rows("authors") == 0


def test_permissive_mode_preserves_rows(blog_client):
    """best_effort never aborts below max_failures and keeps what succeeded."""
    workflow, executor = make(blog_client, ["posts"], mode="permissive")

    result = executor.execute(workflow, {"email": "ann@example.com"})

    assert not result.aborted
    assert blog_client.count_rows("authors") == 1
    assert result.rollback_actions == []


def test_raise_on_abort(blog_client):
    """Callers can opt in to an exception carrying the partial result."""
    workflow, executor = make(blog_client, ["posts"], mode="strict", raise_on_abort=True)

    with pytest.raises(WorkflowAbortedError) as excinfo:
        executor.execute(workflow, {"title": "Hello"})

    assert excinfo.value.result.aborted
    assert excinfo.value.result.steps_failed[0].step_id == "create_authors"


def test_retry_after_write_failure(sqlite_url):
    """A retry action reattempts the write once."""
    create_schema(sqlite_url, BLOG_SCHEMA)
    client = FlakyInsertClient(sqlite_url)
    try:
        workflow, executor = make(client, ["notes"])
        workflow = with_step(workflow, "create_notes", on_error=ErrorAction(type="retry", max_retries=1))

        result = executor.execute(workflow, {"content": "remember the milk"})

        assert result.success
        assert result.steps_executed[0].attempts == 2
        assert client.count_rows("notes") == 1
    finally:
        client.close()


def test_write_failure_without_retry(sqlite_url):
    """Without retries a failed write fails the step."""
    create_schema(sqlite_url, BLOG_SCHEMA)
    client = FlakyInsertClient(sqlite_url)
    try:
        workflow, executor = make(client, ["notes"], mode="permissive")

        result = executor.execute(workflow, {"content": "remember the milk"})

        assert not result.success
        assert result.steps_failed[0].attempts == 1
        assert "database is locked" in result.steps_failed[0].error
    finally:
        client.close()


def test_unmet_dependency_is_skipped(blog_client):
    """Steps whose dependencies did not succeed are skipped."""
    workflow = Workflow(
        name="orphan",
        steps=[WorkflowStep(
            id="create_notes",
            table="notes",
            field_mappings=[FieldMapping(name="content", source="input.content")],
            dependencies=["create_missing"],
        )],
    )
    executor = ConstraintAwareExecutor(blog_client)

    result = executor.execute(workflow, {"content": "hi"})

    assert not result.success
    assert result.steps_skipped[0].reason.startswith("Dependencies did not succeed")
    assert blog_client.count_rows("notes") == 0


def test_parallel_waves(blog_client):
    """Independent steps may run together; dependents still wait."""
    workflow, executor = make(blog_client, ["notes", "posts"], max_workers=2)

    result = executor.execute(workflow, {"email": "ann@example.com", "title": "Hello", "content": "body"})

    assert result.success
    assert {r.step_id for r in result.steps_executed} == {"create_authors", "create_notes", "create_posts"}
    assert blog_client.count_rows("posts") == 1
    assert blog_client.count_rows("notes") == 1


def test_cancellation(blog_client):
    """A set cancel event aborts before the first step."""
    workflow, executor = make(blog_client, ["posts"])
    cancel = threading.Event()
    cancel.set()

    result = executor.execute(workflow, {"email": "ann@example.com", "title": "Hello"}, cancel_event=cancel)

    assert result.aborted
    assert "Execution cancelled" in result.warnings
    assert len(result.steps_skipped) == 2
    assert blog_client.count_rows("authors") == 0


def test_auto_fix_rewrites_copy_only(blog_client):
    """Auto-fixes change the row and the run's copy, never the caller's workflow."""
    workflow, executor = make(blog_client, ["notes"])
    condition = ConstraintCondition(type="equals", table="notes", field="content", value="approved")
    step = workflow.steps[0]
    workflow = with_step(workflow, step.id, conditions=step.conditions + [condition])

    result = executor.execute(workflow, {"content": "draft"})

    assert result.success
    assert len(result.auto_fixes_applied) == 1
    fix = result.auto_fixes_applied[0]
    assert (fix.field, fix.old_value, fix.new_value) == ("content", "draft", "approved")
    assert blog_client.select_rows("notes")[0]["content"] == "approved"
    assert workflow.steps[0].mapping("content").source == "input.content"


def test_equals_condition_without_auto_fix_skips(blog_client):
    """With a skip action the failing condition skips the step."""
    workflow, executor = make(blog_client, ["notes"], mode="permissive")
    condition = ConstraintCondition(type="equals", table="notes", field="content", value="approved")
    workflow = with_step(workflow, "create_notes", conditions=[condition])

    result = executor.execute(workflow, {"content": "draft"})

    assert result.steps_skipped[0].step_id == "create_notes"
    assert result.constraint_violations[0].type == "condition"
    assert blog_client.count_rows("notes") == 0


def test_post_execution_validation(blog_client):
    """The comprehensive strategy verifies the written rows afterwards."""
    discovery = ConstraintDiscoveryEngine(blog_client)
    workflow, _ = WorkflowGenerator(discovery).generate(
        ["notes"], WorkflowGenerationOptions(user_creation_strategy="comprehensive")
    )

    result = ConstraintAwareExecutor(blog_client, discovery=discovery).execute(workflow, {"content": "hi"})

    assert result.success
    assert [r.step_id for r in result.steps_executed] == ["create_notes", "validate_workflow"]
    assert not any("no longer present" in w for w in result.warnings)
