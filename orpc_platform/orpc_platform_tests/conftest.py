import pytest

from orpc_platform.orpc_platform.backend_service.db import Database
from orpc_platform.orpc_platform.backend_service.env import get_env, validate_environment


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'app.db'}"


@pytest.fixture
def env(sqlite_url):
    return validate_environment({"DATABASE_URL": sqlite_url})


@pytest.fixture
def database(sqlite_url):
    db = Database(sqlite_url)
    yield db
    db.dispose()


@pytest.fixture(autouse=True)
def clear_env_cache():
    get_env.cache_clear()
    yield
    get_env.cache_clear()
