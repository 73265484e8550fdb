import os

# picks .env.test (absent is fine) before the app reads its settings
os.environ.setdefault("APP_ENV", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from users_api.database import build_engine, get_engine, init_db
from users_api.main import app


# Fresh database file per test, created and seeded like the real one
@pytest.fixture
def engine(tmp_path):
    test_engine = build_engine(f"sqlite:///{tmp_path / 'users_test.db'}")
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def client(engine):
    # Override the get_engine dependency to use the test database
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def audit_rows(engine):
    """Return the update_logs rows, optionally only those of one user, oldest first."""

    def fetch(user_id=None):
        query = "SELECT * FROM update_logs"
        params = {}
        if user_id is not None:
            query += " WHERE user_id = :user_id"
            params["user_id"] = user_id
        with engine.connect() as conn:
            return [dict(row) for row in conn.execute(text(query + " ORDER BY id"), params).mappings()]

    return fetch


@pytest.fixture
def user_rows(engine):
    def fetch():
        with engine.connect() as conn:
            rows = conn.execute(text("SELECT id, name, email, age FROM users ORDER BY id")).mappings()
            return [dict(row) for row in rows]

    return fetch
