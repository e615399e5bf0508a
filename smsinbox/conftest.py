"""
Pytest configuration and shared fixtures.

Environment variables may come from .env.test; otherwise a local SQLite file
is used. Settings are reloaded with the test env vars before app imports.
"""

import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./smsinbox_test.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from smsinbox.config import get_settings  # noqa: E402
get_settings.cache_clear()

from smsinbox.storage import Base, SessionLocal, engine  # noqa: E402
from smsinbox import models  # noqa: E402,F401


@pytest.fixture(scope="function")
def db():
    """Fresh schema and session for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
