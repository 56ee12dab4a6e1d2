"""Tests for typed introspection and role inference."""
from schemaseed.core.schema_introspector import SchemaIntrospector
from schemaseed.core.schema_types import Column, Table


def test_describe_table_constraints(accounts_client):
    """Constraints of every kind are built from the catalog."""
    table = SchemaIntrospector(accounts_client).describe_table("accounts")

    kinds = {c.kind for c in table.constraints}
    assert {"primary_key", "check", "not_null"} <= kinds
    assert table.primary_key_columns == ["id"]
    assert table.check_constraints[0].name == "accounts_slug_null_if_personal_account_true"

    not_null = {c.columns[0]: c for c in table.constraints_of("not_null")}
    assert "id" not in not_null
    assert not_null["name"].has_default is False
    assert not_null["is_personal_account"].has_default is True


def test_describe_missing_table_returns_none(accounts_client):
    """A table whose columns cannot be read is reported, not raised."""
    warnings = []

    assert SchemaIntrospector(accounts_client).describe_table("nope", warnings) is None


def test_introspect_relationships_and_patterns(blog_client):
    """Test full introspection of a small blog schema."""
    result = SchemaIntrospector(blog_client, max_workers=2).introspect()

    assert [t.name for t in result.tables] == ["authors", "notes", "posts"]
    relationship = result.relationships[0]
    assert (relationship.from_table, relationship.to_table) == ("posts", "authors")
    assert relationship.is_required

    roles = {p.table: p.suggested_role for p in result.patterns}
    assert roles["authors"] == "user"
    assert roles["posts"] == "content"
    assert result.framework.type == "custom"
    assert any(r.type == "orphan_tables" and "notes" in r.tables for r in result.recommendations)


def test_introspect_cancelled(blog_client):
    """A set cancel event stops before any table is described."""
    import threading

    event = threading.Event()
    event.set()

    result = SchemaIntrospector(blog_client).introspect(event)

    assert result.cancelled


def test_framework_detection_from_columns():
    """MakerKit's account columns point at MakerKit."""
    accounts = Table(
        name="accounts",
        columns=[
            Column(name="id", data_type="uuid", nullable=False, is_primary_key=True),
            Column(name="primary_owner_user_id", data_type="uuid", nullable=False),
            Column(name="is_personal_account", data_type="boolean", nullable=False),
        ],
    )
    memberships = Table(name="memberships", columns=[Column(name="id", data_type="uuid")])

    guess = SchemaIntrospector(client=None).detect_framework([accounts, memberships])

    assert guess.type == "makerkit"
    assert guess.version == "v1"
    assert 0.0 < guess.confidence <= 1.0
