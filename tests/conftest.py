"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

import app.models  # noqa: F401
from app.calendar.client import GraphClient
from app.calendar.sync import CalendarSync
from app.calendar.tokens import RefreshLockRegistry, TokenManager
from app.core.config import Settings
from app.core.database import configure_sqlite, get_session
from app.core.dependencies import get_http_client, get_refresh_locks, get_settings
from app.core.security import get_encryptor
from app.main import app
from app.models import Credential, Event
from app.stores.credentials import CredentialStore
from app.stores.tenants import TenantConfigStore
from tests.fake_graph import FakeGraph

USER_ID = "u1"
STUDIO_ID = "studio-1"


class FakeClock:
    """Callable clock that tests move forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = configure_sqlite(
        create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a new database session for each test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="test_settings")
def settings_fixture() -> Settings:
    return Settings(retry_initial_delay=0.0, default_timezone="Europe/Rome")


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock(datetime.now(UTC).replace(microsecond=0))


@pytest.fixture(name="encryptor")
def encryptor_fixture():
    return get_encryptor()


@pytest.fixture(name="fake_graph")
def fake_graph_fixture() -> FakeGraph:
    return FakeGraph()


@pytest.fixture(name="http_client")
def http_client_fixture(fake_graph: FakeGraph) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_graph.handler))


@pytest.fixture(name="studio")
def studio_fixture(session: Session, encryptor):
    """A studio with an enabled app registration and user u1 as member."""
    store = TenantConfigStore(session)
    config = store.save(
        encryptor,
        studio_id=STUDIO_ID,
        client_id="client-123",
        client_secret="s3cret",
        tenant_id="contoso-directory",
    )
    store.add_member(USER_ID, STUDIO_ID, "u1@example.com")
    return config


@pytest.fixture(name="make_credential")
def make_credential_fixture(session: Session, encryptor, clock: FakeClock):
    """Store a credential for a user expiring the given number of minutes from now."""

    def _make(
        user_id: str = USER_ID,
        expires_in_minutes: float = 60,
        access_token: str = "header.payload.signature",
        refresh_token: str = "refresh-1",
    ) -> Credential:
        return CredentialStore(session).put(
            Credential(
                user_id=user_id,
                access_token_encrypted=encryptor.encrypt(access_token),
                refresh_token_encrypted=encryptor.encrypt(refresh_token),
                expires_at=clock() + timedelta(minutes=expires_in_minutes),
            )
        )

    return _make


@pytest.fixture(name="tokens")
def tokens_fixture(session, encryptor, http_client, test_settings, clock) -> TokenManager:
    return TokenManager(
        credentials=CredentialStore(session),
        tenants=TenantConfigStore(session),
        encryptor=encryptor,
        http_client=http_client,
        settings=test_settings,
        locks=RefreshLockRegistry(),
        clock=clock,
    )


@pytest.fixture(name="graph")
def graph_fixture(tokens, http_client, test_settings) -> GraphClient:
    return GraphClient(tokens, http_client, test_settings)


@pytest.fixture(name="calendar_sync")
def calendar_sync_fixture(session, graph, test_settings, clock) -> CalendarSync:
    return CalendarSync(session, graph, test_settings, clock=clock)


@pytest.fixture(name="make_event")
def make_event_fixture(session: Session, clock: FakeClock):
    """Create a local agenda event starting the given number of hours from now."""

    def _make(
        title: str = "Client meeting",
        hours_from_now: float = 24,
        duration_hours: float = 1,
        owner_user_id: str = USER_ID,
        **fields,
    ) -> Event:
        start = clock() + timedelta(hours=hours_from_now)
        event = Event(
            title=title,
            start_time=start,
            end_time=start + timedelta(hours=duration_hours),
            owner_user_id=owner_user_id,
            **fields,
        )
        session.add(event)
        session.commit()
        session.refresh(event)
        return event

    return _make


@pytest.fixture(name="client")
def client_fixture(session: Session, http_client, test_settings):
    """Create a test client wired to the test database and fake Graph."""
    locks = RefreshLockRegistry()

    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_refresh_locks] = lambda: locks
    app.dependency_overrides[get_settings] = lambda: test_settings
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
