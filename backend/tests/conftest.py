"""Shared fixtures: in-memory database, app, fake connections."""

import asyncio
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from storypoint.app import create_app
from storypoint.core.config import Settings
from storypoint.core.database import build_session_factory, init_db
from storypoint.schemas.session_schemas import SessionCreate
from storypoint.services.auth_service import AuthService
from storypoint.services.connection_registry import ConnectionRegistry
from storypoint.services.session_gateway import SessionGateway
from storypoint.services.session_service import SessionService


class FakeConnection:
    """Records every message the server would have sent."""

    def __init__(self):
        self.id = uuid.uuid4().hex
        self.messages = []
        self.closed = False

    def send(self, message):
        if self.closed:
            return False
        self.messages.append(message)
        return True

    def of_type(self, message_type):
        return [m for m in self.messages if m["type"] == message_type]

    def types(self):
        return [m["type"] for m in self.messages]

    def last(self):
        return self.messages[-1]

    def clear(self):
        self.messages.clear()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def gateway(session_factory, registry):
    return SessionGateway(session_factory, registry)


@pytest.fixture
def settings():
    return Settings(DATABASE_URL="sqlite://", DEBUG=False)


@pytest.fixture
def client(settings, engine):
    app = create_app(settings=settings, engine=engine)
    with TestClient(app) as test_client:
        yield test_client


def run(coro):
    return asyncio.run(coro)


def make_host(db, email="host@example.com"):
    """Create a host account; returns (user, plaintext token)."""
    return AuthService(db).register_host(email)


def make_session(db, host, stories=("A", "B"), notifications=False, scale_type="fibonacci", custom_scale=None):
    data = SessionCreate(
        name="Sprint planning",
        scale_type=scale_type,
        custom_scale=custom_scale,
        notifications_enabled=notifications,
        stories=[{"title": title} for title in stories],
    )
    return SessionService(db).create_session(host, data)
