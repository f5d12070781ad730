# tests/conftest.py
from __future__ import annotations

import contextlib
import json
import os
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from uthread.core.security import create_access_token
from uthread.db.session import Base
from uthread.db.session import get_db as app_get_session
from uthread.db.session import get_session_factory as app_get_session_factory
from uthread.main import app as fastapi_app
from uthread.main import install_realtime
from uthread.models import User
from uthread.services import DeliveryRouter, NotificationFanout, PushChannel, SessionRegistry
from uthread.schemas.push import SubscriptionDescriptor
from uthread.services.push import PushDeliveryError

TEST_DB_URL = "sqlite://"


class FakeHandle:
    """Connection handle that records every frame pushed to it."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        # Round-trip through JSON so tests see exactly what a client would.
        self.frames.append(json.loads(json.dumps(data)))

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames]

    def payloads(self, event: str) -> list[Any]:
        return [frame["data"] for frame in self.frames if frame["event"] == event]


class FakePushTransport:
    """Stands in for pywebpush; endpoints listed in ``statuses`` fail with that code."""

    def __init__(self, statuses: dict[str, int] | None = None) -> None:
        self.statuses = statuses or {}
        self.calls: list[tuple[dict[str, Any], dict[str, Any], dict[str, Any]]] = []

    def __call__(self, subscription_info: dict[str, Any], data: str, options: dict[str, Any]) -> None:
        self.calls.append((subscription_info, json.loads(data), options))
        status_code = self.statuses.get(subscription_info["endpoint"])
        if status_code is not None:
            raise PushDeliveryError("push service rejected the request", status_code=status_code)

    @property
    def payloads(self) -> list[dict[str, Any]]:
        return [payload for _, payload, _ in self.calls]


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own; hand transaction control to SQLAlchemy
    # so SAVEPOINT works inside the per-test transaction.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


class SessionFactorySpy:
    """Session factory handing out the test session and counting how often it is opened."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.opened = 0

    @contextlib.contextmanager
    def __call__(self) -> Iterator[Session]:
        self.opened += 1
        yield self.session


@pytest.fixture()
def session_factory(db_session: Session) -> SessionFactorySpy:
    return SessionFactorySpy(db_session)


@pytest.fixture(autouse=True)
def override_session_factory_dependency(app: FastAPI, session_factory: SessionFactorySpy) -> Iterator[None]:
    app.dependency_overrides[app_get_session_factory] = lambda: session_factory
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session_factory, None)


@pytest.fixture()
def make_handle() -> Callable[..., FakeHandle]:
    """Return a factory for recording connection handles."""
    return FakeHandle


@pytest.fixture()
def push_transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture()
def client(app: FastAPI, push_transport: FakePushTransport) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        # Startup installed the production components; swap in the fake transport.
        install_realtime(app, push_transport=push_transport)
        yield test_client


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def push_channel(push_transport: FakePushTransport) -> PushChannel:
    return PushChannel(push_transport)


@pytest.fixture()
def router(registry: SessionRegistry, push_channel: PushChannel) -> DeliveryRouter:
    return DeliveryRouter(registry, push_channel)


@pytest.fixture()
def fanout(router: DeliveryRouter) -> NotificationFanout:
    return NotificationFanout(router)


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory persisting users with the given username."""

    def _make_user(username: str, display_name: str | None = None) -> User:
        user = User(username=username, display_name=display_name or username.title())
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def test_user(make_user: Callable[..., User]) -> User:
    """Create and return the primary test user."""
    return make_user("alice", "Alice")


@pytest.fixture()
def other_user(make_user: Callable[..., User]) -> User:
    """Create and return a second test user."""
    return make_user("bob", "Bob")


@pytest.fixture()
def auth_token(test_user: User) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def other_auth_token(other_user: User) -> dict[str, str]:
    """Return authorization headers for the secondary test user."""
    token = create_access_token(other_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def subscribe(db_session: Session, push_channel: PushChannel) -> Callable[[str, str], Any]:
    """Return a helper registering a push endpoint for a user."""

    def _subscribe(user_id: str, endpoint: str) -> Any:
        descriptor = SubscriptionDescriptor(
            endpoint=endpoint,
            keys={"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA", "auth": "tBHItJI5svbpez7KI4CCXg"},
        )
        return push_channel.subscribe(db_session, user_id, descriptor)

    return _subscribe
