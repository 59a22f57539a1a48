"""Fixtures for storage layer tests."""

import pytest

from cashbatch.storage.database import base


@pytest.fixture(scope="function", autouse=True)
def test_db():
    """Initialize the module-level engine on an in-memory SQLite database."""
    base.init_db("sqlite:///:memory:")

    yield

    if base.engine is not None:
        base.engine.dispose()
    base.engine = None
    base.SessionLocal = None
