"""End-to-end runs through the engine facade and the command line."""
import asyncio
import json

from typer.testing import CliRunner

from schemaseed.cli.main import app
from schemaseed.core.engine import SeedEngine
from schemaseed.core.junction_tables import JunctionSeedingOptions
from schemaseed.core.workflow_types import WorkflowGenerationOptions

from conftest import BLOG_SCHEMA, create_schema

runner = CliRunner()


def test_personal_account_slug_is_fixed(accounts_client):
    """The slug CHECK is satisfied by nulling the slug of a personal account."""
    engine = SeedEngine(accounts_client)
    workflow, info = engine.generate_workflow(["accounts", "profiles"])

    result = engine.execute(workflow, {"name": "Acme", "is_personal_account": True, "slug": "acme"})

    assert result.success, result.warnings
    assert [f.field for f in result.auto_fixes_applied] == ["slug"]
    account = accounts_client.select_rows("accounts")[0]
    profile = accounts_client.select_rows("profiles")[0]
    assert account["slug"] is None
    assert profile["id"] == account["id"]
    assert profile["display_name"] == "Acme"
    assert info.steps_generated == 2


def test_valid_accounts_pass_strict_mode(accounts_client):
    """Rows that already satisfy the slug CHECK are inserted unchanged under strict handling."""
    engine = SeedEngine(accounts_client)
    workflow, _ = engine.generate_workflow(["accounts"], WorkflowGenerationOptions(constraint_handling="strict"))

    personal = engine.execute(workflow, {"name": "Acme"})
    team = engine.execute(workflow, {"name": "Acme", "is_personal_account": False})

    assert personal.success, personal.warnings
    assert team.success, team.warnings
    assert personal.auto_fixes_applied == []
    assert team.auto_fixes_applied == []
    first, second = accounts_client.select_rows("accounts")
    assert first["slug"] is None
    assert bool(first["is_personal_account"])
    assert not second["is_personal_account"]


def test_slug_fix_leaves_flag_to_column_default(accounts_client):
    """Only the slug is rewritten when the personal flag is omitted."""
    engine = SeedEngine(accounts_client)
    workflow, _ = engine.generate_workflow(["accounts"])

    result = engine.execute(workflow, {"name": "Acme", "slug": "acme"})

    assert result.success, result.warnings
    assert [f.field for f in result.auto_fixes_applied] == ["slug"]
    account = accounts_client.select_rows("accounts")[0]
    assert account["slug"] is None
    assert bool(account["is_personal_account"])


def test_seed_junction_table(roles_client):
    """Half of the 10 x 3 user/role pairs are linked."""
    engine = SeedEngine(roles_client)

    junctions = engine.detect_junction_tables()
    result = engine.seed_junction_table("user_roles", JunctionSeedingOptions(density=0.5, seed=42))

    assert [j.table for j in junctions] == ["user_roles"]
    assert result.target_count == 15
    assert result.relationships_created == 15
    assert result.batches_failed == 0
    assert roles_client.count_rows("user_roles") == 15
    assert result.actual_density == 0.5


def test_async_variants(blog_client):
    engine = SeedEngine(blog_client)

    async def plan():
        introspection = await engine.aintrospect()
        workflow, _ = await engine.agenerate_workflow(["notes"])
        return introspection, await engine.aexecute(workflow, {"content": "hello"})

    introspection, result = asyncio.run(plan())

    assert {t.name for t in introspection.tables} == {"authors", "notes", "posts"}
    assert result.success
    assert blog_client.count_rows("notes") == 1


def test_cli_plan_from_schema_file(tmp_path):
    schema_file = tmp_path / "schema.sql"
    schema_file.write_text(
        "CREATE TABLE teams (id INT PRIMARY KEY, name TEXT NOT NULL);\n"
        "CREATE TABLE members (id INT PRIMARY KEY, team_id INT NOT NULL REFERENCES teams(id), email TEXT);\n"
    )
    store = tmp_path / "store"

    result = runner.invoke(app, ["plan", "members", "--schema-file", str(schema_file), "--store", str(store)])

    assert result.exit_code == 0, result.output
    saved = json.loads((store / "seed_members.workflow.json").read_text())
    assert [s["id"] for s in saved["steps"]] == ["create_teams", "create_members"]


def test_cli_plan_then_run(tmp_path):
    url = f"sqlite:///{tmp_path / 'blog.db'}"
    create_schema(url, BLOG_SCHEMA)
    store = tmp_path / "store"
    input_file = tmp_path / "input.json"
    input_file.write_text(json.dumps({"email": "ann@example.com", "title": "Hello"}))

    planned = runner.invoke(app, ["plan", "posts", "--url", url, "--store", str(store), "--name", "blog"])
    ran = runner.invoke(app, ["run", "blog", "--url", url, "--store", str(store), "--input", str(input_file), "--yes"])

    assert planned.exit_code == 0, planned.output
    assert ran.exit_code == 0, ran.output


def test_cli_errors(tmp_path, monkeypatch):
    monkeypatch.delenv("SCHEMASEED_CACHE_DIR", raising=False)
    monkeypatch.chdir(tmp_path)

    assert runner.invoke(app, ["cache", "--stats"]).exit_code == 1
    assert runner.invoke(app, ["run", "missing", "--store", str(tmp_path)]).exit_code == 1
    assert runner.invoke(app, ["plan", "posts", "--schema-file", str(tmp_path / "nope.sql")]).exit_code == 1
