"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, create_engine
from sqlmodel.pool import StaticPool

from smarthome.auth.authority import Authority
from smarthome.core.config import AuthConfig
from smarthome.core.dependencies import (
    get_authority,
    get_dispatcher,
    get_reporter,
)
from smarthome.core.persistence import SqlBlobStore
from smarthome.devices import DeviceRegistry, HoodDevice, OnOffDevice
from smarthome.homegraph.reporter import StateReporter
from smarthome.intents.dispatcher import IntentDispatcher
from smarthome.main import app

PROJECT_ID = "proj123"
REDIRECT_URI = f"https://oauth-redirect.googleusercontent.com/r/{PROJECT_ID}"


class FakeClock:
    """Controllable replacement for datetime.now(UTC)."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="auth_config")
def auth_config_fixture() -> AuthConfig:
    return AuthConfig(
        client_id="client-123",
        client_secret="secret-456",
        username="admin",
        password="hunter2",
        access_token_duration=60,
        project_id=PROJECT_ID,
    )


@pytest.fixture(name="blob_store")
def blob_store_fixture(engine) -> SqlBlobStore:
    return SqlBlobStore(engine, "test-node")


@pytest.fixture(name="authority")
def authority_fixture(auth_config: AuthConfig, blob_store: SqlBlobStore, clock: FakeClock) -> Authority:
    """An Authority backed by the in-memory database and a fake clock."""
    authority = Authority(auth_config, persistence=blob_store, clock=clock)
    authority.load()
    return authority


@pytest.fixture(name="registry")
def registry_fixture() -> DeviceRegistry:
    """Registry with two online devices and one offline device."""
    return DeviceRegistry([
        HoodDevice("hood-1", "Kitchen Hood", room_hint="Kitchen"),
        OnOffDevice("light-1", "Desk Light", device_type="LIGHT"),
        OnOffDevice("plug-1", "Garden Plug", device_type="OUTLET", states={"online": False}),
    ])


@pytest.fixture(name="dispatcher")
def dispatcher_fixture(authority: Authority, registry: DeviceRegistry) -> IntentDispatcher:
    return IntentDispatcher(
        authority,
        registry,
        node_id="test-node",
        local_execution=True,
        http_port=3001,
        local_path_prefix="/local",
    )


@pytest.fixture(name="reporter")
def reporter_fixture() -> MagicMock:
    """Reporter double; background state reports are recorded, not sent."""
    return MagicMock(spec=StateReporter)


@pytest.fixture(name="redirect_uri")
def redirect_uri_fixture() -> str:
    return REDIRECT_URI


@pytest.fixture(name="tokens")
def tokens_fixture(authority: Authority) -> dict:
    """Tokens of a linked account for user "u1"."""
    code = authority.issue_auth_code("u1")
    return authority.exchange_code(code, REDIRECT_URI)


@pytest.fixture(name="client")
def client_fixture(authority, dispatcher, reporter):
    """Create a test client wired to the test components."""
    app.dependency_overrides[get_authority] = lambda: authority
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_reporter] = lambda: reporter
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
