"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and give every test a fresh,
in-memory application state (repositories, cache, sessions, notifications)
so API tests never depend on a running Postgres or Redis.
"""
import os

import pytest

# Import-time guard in backend.web.main must stay permissive under tests.
os.environ["EDUCADEMY_ENV"] = "test"
os.environ.pop("REDIS_URL", None)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def memory_tables():
    """Reset the web wiring to in-memory repos sharing one set of tables."""
    from backend.web import wiring

    tables = wiring.reset_for_tests()
    yield tables
    wiring.reset_for_tests()


@pytest.fixture
def login():
    """Return a factory creating a session and its cookie value for a role."""
    from backend.web import wiring

    def _login(sub: str, *roles: str, email: str | None = None) -> str:
        rec = wiring.SESSION_STORE.create(sub=sub, name=sub.title(), email=email, roles=list(roles))
        return rec.session_id

    return _login
