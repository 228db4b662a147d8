import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import threadbot.models  # noqa: F401
from threadbot.db import DatabaseManager

pytest_plugins = [
    "tests.fixtures.adapter_fixtures",
    "tests.fixtures.conversation_fixtures",
]


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite shared across threads so to_thread() sees the same data."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_manager(engine):
    manager = DatabaseManager(engine=engine)
    manager.create_all()
    return manager


@pytest.fixture(scope="function")
def db(db_manager):
    session = db_manager.session_factory()
    try:
        yield session
    finally:
        session.close()
