"""
tests/conftest.py - Pytest configuration and fixtures

- Sets auth / webhook / admin env vars for the whole session
- Provides a fresh SQLite file database per test (`db`)
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

TEST_ENV = {
    "API_AUTH_ENABLED": "false",
    "ADMIN_EMAILS": "admin@example.com,admin-user",
    "TOSS_WEBHOOK_SECRET": "toss-webhook-test-secret",
    "STRIPE_WEBHOOK_SECRET": "whsec_testsecret123",
    "APP_BASE_URL": "https://fortune.test",
    "LOG_FORMAT": "text",
}


@pytest.fixture(scope="session", autouse=True)
def test_env():
    """
    Set env vars once per session and restore them afterwards.

    Everything that reads these (auth, authorizer, webhook secrets) reads
    them at call time, so setting them here is early enough.
    """
    old = {k: os.environ.get(k) for k in TEST_ENV}
    os.environ.update(TEST_ENV)

    yield TEST_ENV

    for key, value in old.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


@pytest.fixture
def db(tmp_path):
    """Initialize a fresh SQLite database for one test."""
    import database

    assert database.init_database(f"sqlite:///{tmp_path}/test.db")
    yield database
    database.close_database()


@pytest.fixture
def authorizer():
    from core.auth import AllowListAuthorizer
    return AllowListAuthorizer(["admin@example.com", "admin-user"])


@pytest.fixture
def user():
    from core.auth import CurrentUser
    return CurrentUser(id="user-1", email="user1@example.com")


@pytest.fixture
def admin():
    from core.auth import CurrentUser
    return CurrentUser(id="admin-user", email="admin@example.com")
