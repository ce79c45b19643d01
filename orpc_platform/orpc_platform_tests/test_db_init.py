"""Tests for the database handle."""
import pytest
from sqlalchemy import text

from orpc_platform.orpc_platform.backend_service.db import (
    Database,
    create_database,
    normalize_database_url,
)
from orpc_platform.orpc_platform.backend_service.env import validate_environment


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgres://u:p@h/db", "postgresql+psycopg://u:p@h/db"),
        ("postgresql://u:p@h:5432/db", "postgresql+psycopg://u:p@h:5432/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("sqlite:///./app.db", "sqlite:///./app.db"),
    ],
)
def test_normalize_database_url(url, expected):
    """Test that Postgres URLs are pointed at the psycopg driver."""
    assert normalize_database_url(url) == expected


def test_create_database_uses_env_url(env, sqlite_url):
    """Test that the engine is built from DATABASE_URL."""
    database = create_database(env)
    try:
        assert database.url == sqlite_url
        assert database.engine.dialect.name == "sqlite"
        # SQL echo is on in development
        assert database.engine.echo is True
        assert database.check_connection() is True
    finally:
        database.dispose()


def test_production_disables_echo(sqlite_url):
    """Test that SQL echo is off in production."""
    env = validate_environment({"DATABASE_URL": sqlite_url, "NODE_ENV": "production"})
    database = create_database(env)
    try:
        assert database.engine.echo is False
    finally:
        database.dispose()


def test_check_connection_reports_failure(tmp_path):
    """Test that an unreachable database reports False."""
    database = Database(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'app.db'}")
    try:
        assert database.check_connection() is False
    finally:
        database.dispose()


def test_session_commits_on_success(database):
    """Test that the session context commits on success."""
    with database.engine.begin() as conn:
        conn.execute(text("CREATE TABLE items (id INTEGER PRIMARY KEY)"))

    with database.session() as db:
        db.execute(text("INSERT INTO items (id) VALUES (1)"))

    with database.session() as db:
        assert db.execute(text("SELECT COUNT(*) FROM items")).scalar() == 1


def test_session_rolls_back_on_error(database):
    """Test that the session context rolls back on error."""
    with database.engine.begin() as conn:
        conn.execute(text("CREATE TABLE items (id INTEGER PRIMARY KEY)"))

    with pytest.raises(RuntimeError):
        with database.session() as db:
            db.execute(text("INSERT INTO items (id) VALUES (1)"))
            raise RuntimeError("boom")

    with database.session() as db:
        assert db.execute(text("SELECT COUNT(*) FROM items")).scalar() == 0


def test_get_db_yields_session(database):
    """Test the get_db dependency generator."""
    gen = database.get_db()
    db = next(gen)
    assert db.execute(text("SELECT 1")).scalar() == 1
    with pytest.raises(StopIteration):
        next(gen)
