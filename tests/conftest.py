"""
Pytest configuration and fixtures for Contact Importer tests.

Tests run against an in-memory SQLite database so the contact store can be
exercised without a Postgres server, and against fake chat models so no
classifier call leaves the process.
"""

import os

# The API lifespan must not try to reach the configured database in tests.
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from contact_importer.db.store import ContactStore, init_tables


@pytest.fixture
def test_engine():
    """Fresh in-memory database with the contact store tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(test_engine):
    return ContactStore(sessionmaker(bind=test_engine, autoflush=False))


@pytest.fixture
def fake_classifier():
    """Build a chat model that answers with the given replies in order."""
    def _build(*replies):
        return FakeListChatModel(responses=list(replies))
    return _build
