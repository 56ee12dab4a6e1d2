"""Tests for settings and small helpers."""
import json

import pytest

from schemaseed.utils.config_manager import ConfigManager, Settings
from schemaseed.utils.helpers import load_json_file, normalize_dialect, split_names


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("SCHEMASEED_DATABASE_URL", "sqlite:///env.db")
    monkeypatch.setenv("SCHEMASEED_MAX_WORKERS", "8")

    settings = Settings()

    assert settings.database_url == "sqlite:///env.db"
    assert settings.max_workers == 8
    assert settings.always_required_tables == ["users", "accounts", "profiles"]


def test_config_file_and_overrides(tmp_path):
    config_file = tmp_path / "schemaseed.json"
    config_file.write_text(json.dumps({"db_schema": "app", "junction_batch_size": 25}))

    settings = ConfigManager(config_file, db_schema="public", database_url=None).settings

    assert settings.db_schema == "public"
    assert settings.junction_batch_size == 25


def test_invalid_config_file(tmp_path):
    config_file = tmp_path / "schemaseed.json"
    config_file.write_text("[1, 2]")

    with pytest.raises(ValueError):
        ConfigManager(config_file)


def test_save_omits_database_url(tmp_path):
    manager = ConfigManager(database_url="postgresql://secret@db/app")

    target = manager.save(tmp_path / "out" / "settings.json")

    saved = json.loads(target.read_text())
    assert "database_url" not in saved
    assert saved["cache_ttl"] == 600


def test_helpers(tmp_path):
    assert normalize_dialect("PostgreSQL") == "postgres"
    assert normalize_dialect(None) == "postgres"
    assert normalize_dialect("sqlite3") == "sqlite"
    assert split_names(["posts,authors", " notes ", "posts"]) == ["posts", "authors", "notes"]

    path = tmp_path / "input.json"
    path.write_text('"just a string"')
    with pytest.raises(ValueError):
        load_json_file(path)
