"""Shared fixtures: in-memory database, fake connections and a stubbed provider API."""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOGS_DIR", tempfile.mkdtemp(prefix="relay-test-logs-"))

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from relay.core.db import Base, get_db_session
from relay.core.settings import Settings
from relay.models import schema  # noqa: F401
from relay.services.recall_client import RecallClient
from relay.services.transcript_relay import build_relay
from tests.fakes import FakeConnections, FakeRecallApi


@pytest.fixture
def test_db():
    """Create an in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(test_db):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def relay_settings():
    return Settings(
        database_url="sqlite://",
        recall_api_key="test-key",
        recall_api_url="https://recall.example.com/api/v1",
        webhook_base_url="https://relay.example.com",
        n8n_webhook_url="https://n8n.example.com/webhook/transcripts",
        intervention_idle_timeout_seconds=0.05,
        duplicate_window_seconds=1.0,
        http_max_retries=2,
    )


@pytest.fixture
def fake_recall():
    return FakeRecallApi()


@pytest.fixture
def fake_connections():
    return FakeConnections(live=["conn-a", "conn-b"])


def _recall_client(settings: Settings, handler: FakeRecallApi) -> RecallClient:
    from tenacity import wait_none

    return RecallClient(
        settings,
        httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_wait=wait_none(),
    )


@pytest.fixture
def relay(relay_settings, session_factory, fake_connections, fake_recall):
    """Relay wired to fake connections and the stub provider."""
    return build_relay(
        relay_settings,
        session_factory,
        connections=fake_connections,
        recall=_recall_client(relay_settings, fake_recall),
    )


@pytest.fixture
def client(relay_settings, session_factory, db_session, fake_recall):
    """Test client with a real connection manager and the database overridden."""
    from relay.main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.state.relay = build_relay(
        relay_settings,
        session_factory,
        recall=_recall_client(relay_settings, fake_recall),
    )
    app.dependency_overrides[get_db_session] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    app.state.relay = None
