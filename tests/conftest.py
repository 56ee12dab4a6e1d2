"""Shared fixtures: small SQLite databases built per test."""
import pytest
from sqlalchemy import create_engine, text

from schemaseed.core.db_connector import SQLAlchemyMetadataClient

ACCOUNTS_SCHEMA = [
    """
    CREATE TABLE accounts (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        is_personal_account BOOLEAN NOT NULL DEFAULT 1,
        slug TEXT,
        CONSTRAINT accounts_slug_null_if_personal_account_true CHECK (NOT is_personal_account OR slug IS NULL)
    )
    """,
    """
    CREATE TABLE profiles (
        id INTEGER PRIMARY KEY REFERENCES accounts(id),
        display_name TEXT
    )
    """,
]

ROLES_SCHEMA = [
    "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)",
    "CREATE TABLE roles (id INTEGER PRIMARY KEY, name TEXT)",
    """
    CREATE TABLE user_roles (
        user_id INTEGER NOT NULL REFERENCES users(id),
        role_id INTEGER NOT NULL REFERENCES roles(id),
        PRIMARY KEY (user_id, role_id)
    )
    """,
]

BLOG_SCHEMA = [
    "CREATE TABLE authors (id INTEGER PRIMARY KEY, email TEXT NOT NULL, name TEXT)",
    """
    CREATE TABLE posts (
        id INTEGER PRIMARY KEY,
        author_id INTEGER NOT NULL REFERENCES authors(id),
        title TEXT NOT NULL,
        body TEXT,
        status TEXT NOT NULL DEFAULT 'draft',
        CONSTRAINT posts_status_check CHECK (status IN ('draft', 'published'))
    )
    """,
    "CREATE TABLE notes (id INTEGER PRIMARY KEY, content TEXT)",
]


def create_schema(url, statements, rows=None):
    engine = create_engine(url)
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
        for sql, params in rows or []:
            conn.execute(text(sql), params)
    engine.dispose()


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'seed.db'}"


@pytest.fixture
def accounts_client(sqlite_url):
    create_schema(sqlite_url, ACCOUNTS_SCHEMA)
    client = SQLAlchemyMetadataClient(sqlite_url)
    yield client
    client.close()


@pytest.fixture
def roles_client(sqlite_url):
    rows = [("INSERT INTO users (id, name) VALUES (:id, :name)", [{"id": i, "name": f"user{i}"} for i in range(1, 11)])]
    rows.append(("INSERT INTO roles (id, name) VALUES (:id, :name)", [
        {"id": 1, "name": "admin"}, {"id": 2, "name": "editor"}, {"id": 3, "name": "viewer"},
    ]))
    create_schema(sqlite_url, ROLES_SCHEMA, rows)
    client = SQLAlchemyMetadataClient(sqlite_url)
    yield client
    client.close()


@pytest.fixture
def blog_client(sqlite_url):
    create_schema(sqlite_url, BLOG_SCHEMA)
    client = SQLAlchemyMetadataClient(sqlite_url)
    yield client
    client.close()
