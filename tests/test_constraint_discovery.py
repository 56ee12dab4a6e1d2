"""Tests for business-rule and dependency discovery."""
from schemaseed.core.cache.manager import MetadataCache
from schemaseed.core.constraint_discovery import ConstraintDiscoveryEngine


def test_discover_accounts_rules(accounts_client):
    """CHECK and NOT NULL constraints become rules with auto-fixes."""
    metadata = ConstraintDiscoveryEngine(accounts_client).discover(["accounts"])

    rule = metadata.rule("accounts.accounts_slug_null_if_personal_account_true")
    assert rule is not None
    assert rule.kind == "validation"
    assert rule.action == "default"
    assert rule.confidence == 0.95
    assert rule.auto_fix.field == "slug"
    assert rule.auto_fix.value is None
    assert "accounts.is_personal_account.not_null" in rule.dependencies

    name_rule = metadata.rule("accounts.name.not_null")
    assert name_rule.action == "require"
    assert 0.0 <= metadata.confidence <= 1.0
    assert metadata.table("accounts").name == "accounts"


def test_dependencies_follow_foreign_keys(accounts_client):
    """profiles.id references accounts.id and cannot be null."""
    metadata = ConstraintDiscoveryEngine(accounts_client).discover(["profiles", "accounts"])

    assert len(metadata.dependencies) == 1
    dependency = metadata.dependencies[0]
    assert (dependency.from_table, dependency.from_column) == ("profiles", "id")
    assert (dependency.to_table, dependency.to_column) == ("accounts", "id")
    assert dependency.required


def test_missing_table_is_a_warning(accounts_client):
    """Unknown tables are reported, not raised."""
    metadata = ConstraintDiscoveryEngine(accounts_client).discover(["accounts", "ghosts"])

    assert any("ghosts" in w for w in metadata.warnings)
    assert [t.table.name for t in metadata.tables] == ["accounts"]


def test_cache_hit_and_clear(accounts_client):
    """A second discovery of the same table set is served from the cache."""
    cache = MetadataCache()
    engine = ConstraintDiscoveryEngine(accounts_client, cache=cache)

    first = engine.discover(["accounts", "profiles"])
    second = engine.discover(["profiles", "accounts"])

    assert second.discovery_timestamp == first.discovery_timestamp
    assert cache.get_stats()["constraint_entries"] == 1

    engine.clear_cache()
    third = engine.discover(["accounts", "profiles"])
    assert third.discovery_timestamp >= first.discovery_timestamp
    assert cache.get_stats()["constraint_entries"] == 1


def test_trigger_rules(sqlite_url):
    """SQLite triggers become low-confidence business_logic rules."""
    from sqlalchemy import create_engine, text

    from schemaseed.core.db_connector import SQLAlchemyMetadataClient

    engine = create_engine(sqlite_url)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE items (id INTEGER PRIMARY KEY, qty INTEGER)"))
        conn.execute(text("CREATE TABLE audit (item_id INTEGER)"))
        conn.execute(text(
            "CREATE TRIGGER items_audit AFTER INSERT ON items "
            "BEGIN INSERT INTO audit (item_id) VALUES (NEW.id); END"
        ))
    engine.dispose()

    client = SQLAlchemyMetadataClient(sqlite_url)
    try:
        rules = ConstraintDiscoveryEngine(client).discover(["items"]).business_rules
    finally:
        client.close()

    assert [r.id for r in rules] == ["items.trigger.items_audit"]
    assert rules[0].kind == "business_logic"
    assert rules[0].confidence < 0.7
