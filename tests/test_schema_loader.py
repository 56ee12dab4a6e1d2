"""Tests for schema loader."""
import pytest

from schemaseed.core.errors import ReadOnlyClientError
from schemaseed.core.schema_loader import SchemaFileClient, SchemaLoader


def test_parse_simple_schema():
    """Test parsing a simple CREATE TABLE statement."""
    sql = """
    CREATE TABLE users (
        id INT PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        email VARCHAR(255) UNIQUE
    );
    """

    loader = SchemaLoader()
    tables = loader.parse_schema(sql)

    assert list(tables) == ["users"]
    table = tables["users"]
    assert [c["name"] for c in table.columns] == ["id", "name", "email"]
    assert table.primary_key["constrained_columns"] == ["id"]
    assert table.unique_constraints[0]["column_names"] == ["email"]


def test_parse_not_null_and_default():
    """Test NOT NULL and DEFAULT are carried into column rows."""
    sql = """
    CREATE TABLE accounts (
        id UUID PRIMARY KEY,
        name TEXT NOT NULL,
        is_personal_account BOOLEAN NOT NULL DEFAULT TRUE
    );
    """

    columns = {c["name"]: c for c in SchemaLoader().parse_schema(sql)["accounts"].columns}

    assert columns["id"]["nullable"] is False
    assert columns["name"]["nullable"] is False
    assert columns["is_personal_account"]["default"] is not None


def test_parse_with_foreign_keys():
    """Test parsing tables with foreign key relationships."""
    sql = """
    CREATE TABLE departments (
        dept_id INT PRIMARY KEY,
        dept_name VARCHAR(100)
    );

    CREATE TABLE employees (
        emp_id INT PRIMARY KEY,
        emp_name VARCHAR(100),
        dept_id INT,
        FOREIGN KEY (dept_id) REFERENCES departments(dept_id) ON DELETE CASCADE
    );
    """

    tables = SchemaLoader().parse_schema(sql)

    assert len(tables) == 2
    fk = tables["employees"].foreign_keys[0]
    assert fk["constrained_columns"] == ["dept_id"]
    assert fk["referred_table"] == "departments"
    assert fk["referred_columns"] == ["dept_id"]
    assert fk["options"]["ondelete"] == "CASCADE"


def test_named_check_constraint():
    """Test table-level named CHECK constraints keep their name."""
    sql = """
    CREATE TABLE accounts (
        id UUID PRIMARY KEY,
        is_personal_account BOOLEAN NOT NULL,
        slug TEXT,
        CONSTRAINT accounts_slug_null_if_personal_account_true
            CHECK (NOT is_personal_account OR slug IS NULL)
    );
    """

    checks = SchemaLoader().parse_schema(sql)["accounts"].check_constraints

    assert checks[0]["name"] == "accounts_slug_null_if_personal_account_true"
    assert "slug" in checks[0]["sqltext"].lower()


def test_triggers_are_attached_to_tables():
    """Test CREATE TRIGGER statements are picked up per table."""
    sql = """
    CREATE TABLE posts (id INT PRIMARY KEY, title TEXT);

    CREATE TRIGGER posts_audit
    AFTER INSERT OR UPDATE ON posts
    FOR EACH ROW EXECUTE FUNCTION audit_row();
    """

    trigger = SchemaLoader().parse_schema(sql)["posts"].triggers[0]

    assert trigger["name"] == "posts_audit"
    assert trigger["timing"] == "AFTER"
    assert trigger["events"] == ["INSERT", "UPDATE"]
    assert trigger["function_name"] == "audit_row"


def test_schema_file_client(tmp_path):
    """Test the offline client reads catalog rows and refuses writes."""
    schema_file = tmp_path / "schema.sql"
    schema_file.write_text(
        "CREATE TABLE teams (id INT PRIMARY KEY, name TEXT NOT NULL);\n"
        "CREATE TABLE members (id INT PRIMARY KEY, team_id INT NOT NULL REFERENCES teams(id));\n"
    )

    client = SchemaFileClient.from_file(schema_file)

    assert client.list_tables() == ["members", "teams"]
    assert client.get_foreign_keys("members")[0]["referred_table"] == "teams"
    assert client.count_rows("teams") == 0
    assert client.table_exists("teams")
    assert not client.table_exists("missing")
    with pytest.raises(ReadOnlyClientError):
        client.insert_row("teams", {"name": "a"})
