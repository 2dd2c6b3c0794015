"""Pytest configuration and fixtures for sqlmapper tests."""

import os
import sqlite3
from unittest.mock import patch

import pytest

from sqlmapper import ExecutionContext, SqlMapper
from sqlmapper.cache import MemoryCacheStore

SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    age INTEGER NOT NULL,
    active INTEGER NOT NULL DEFAULT 1
)
"""

SEED = [("alice", 30), ("bob", 25)]


def make_config(write_url, read_urls=None, **settings):
    """Mapper configuration used across the test suite."""
    if read_urls is None:
        read_urls = [write_url]
    return {
        "database": {
            "write": {"name": "primary", "url": write_url},
            "reads": [
                {"name": f"replica{i}", "url": url} for i, url in enumerate(read_urls, start=1)
            ],
        },
        "statements": [
            {"id": "User.Insert", "sql": "INSERT INTO users (name, age) VALUES (:name, :age)"},
            {"id": "User.UpdateAge", "sql": "UPDATE users SET age = :age WHERE name = :name"},
            {"id": "User.DeleteAll", "sql": "DELETE FROM users"},
            {
                "id": "User.GetAll",
                "sql": "SELECT id, name, age FROM users ORDER BY id",
                "cache": "Users",
            },
            {
                "id": "User.GetByName",
                "sql": "SELECT id, name, age FROM users WHERE name = :name",
                "cache": "Users",
            },
            {"id": "User.Count", "sql": "SELECT COUNT(*) FROM users", "cache": "Users"},
            {"id": "User.MaxAge", "sql": "SELECT MAX(age) FROM users"},
            {"id": "User.Uncached", "sql": "SELECT name FROM users ORDER BY name"},
            {
                "id": "User.Summary",
                "sql": "SELECT COUNT(*) AS total FROM users; SELECT name FROM users ORDER BY name",
            },
            {"id": "User.Broken", "sql": "SELECT * FROM missing_table"},
        ],
        "caches": [
            {
                "id": "Users",
                "flush_on_execute": ["User.Insert", "User.UpdateAge", "User.DeleteAll"],
            }
        ],
        "settings": settings,
    }


def create_database(path):
    conn = sqlite3.connect(path)
    try:
        conn.execute(SCHEMA)
        conn.executemany("INSERT INTO users (name, age) VALUES (?, ?)", SEED)
        conn.commit()
    finally:
        conn.close()


def count_users(path, name=None):
    conn = sqlite3.connect(path)
    try:
        if name is None:
            return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        return conn.execute("SELECT COUNT(*) FROM users WHERE name = ?", (name,)).fetchone()[0]
    finally:
        conn.close()


@pytest.fixture(autouse=True)
def isolated_environment():
    """Keep SQLMAPPER_* variables from the host out of the tests."""
    cleaned = {key: value for key, value in os.environ.items() if not key.startswith("SQLMAPPER_")}
    with patch.dict(os.environ, cleaned, clear=True):
        yield


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "app.db")
    create_database(path)
    return path


@pytest.fixture
def db_url(db_path):
    return f"sqlite:///{db_path}"


@pytest.fixture
def config(db_url):
    return make_config(db_url)


@pytest.fixture
def cache_store():
    return MemoryCacheStore(max_size=100)


@pytest.fixture
def mapper(config, cache_store):
    m = SqlMapper.from_config(config, cache_store=cache_store)
    yield m
    m.close()


@pytest.fixture
async def async_mapper(config, cache_store):
    m = SqlMapper.from_config(config, cache_store=cache_store)
    yield m
    await m.close_async()


@pytest.fixture
def ctx():
    return ExecutionContext("test")


@pytest.fixture
def user_count(db_path):
    """Count rows through an independent connection."""
    return lambda name=None: count_users(db_path, name)


@pytest.fixture
def config_factory():
    return make_config
