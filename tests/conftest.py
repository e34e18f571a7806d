"""
Shared fixtures: an in-memory SQLite store per test and an app wired to it.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import chathook.core.database as database
from chathook.api.dependencies import get_broadcaster
from chathook.core.config import Settings, get_settings
from chathook.core.database import Base
from chathook.main import app
from chathook.models import message  # noqa: F401 - Import to register models
from chathook.services.broadcast import ConnectionManager
from chathook.services.repository import MessageRepository


def get_test_settings() -> Settings:
    """Override settings for testing."""
    return Settings(
        database_url="sqlite://",
        log_level="DEBUG",
        log_format="text",
        delivery_delay_seconds=0,
    )


@pytest.fixture
def settings():
    return get_test_settings()


@pytest.fixture
def engine(monkeypatch):
    """Fresh in-memory database, also used by code that opens its own sessions."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    session_factory = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )
    monkeypatch.setattr(database, "_engine", engine)
    monkeypatch.setattr(database, "_SessionLocal", session_factory)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = database.get_session_factory()()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repository(db):
    return MessageRepository(db)


@pytest.fixture
def broadcaster():
    return ConnectionManager()


@pytest.fixture
def client(engine, settings, broadcaster):
    """Test client against the in-memory store."""
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    yield TestClient(app)
    app.dependency_overrides.clear()
