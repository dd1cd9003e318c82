import os

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("WEBHOOK_SECRET", None)
os.environ.pop("TRACKSTAR_API_KEY", None)

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import wms_sync.models  # noqa: E402,F401
from wms_sync.connectors.base import Page  # noqa: E402
from wms_sync.connectors.trackstar_connector import TrackstarConnector  # noqa: E402
from wms_sync.constants.sync import IntegrationType  # noqa: E402
from wms_sync.database import Base, get_db  # noqa: E402
from wms_sync.main import app  # noqa: E402
from wms_sync.services.budget import CreditBudgetManager  # noqa: E402
from wms_sync.services.credentials import CredentialStore, Credentials  # noqa: E402
from wms_sync.services.sync_service import SyncSessionScheduler  # noqa: E402

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Override dependency for test database session
def override_get_db() -> Session:
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def db() -> Session:
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def tenant(db):
    """A tenant with Trackstar credentials, status 'connecting'."""
    credentials = Credentials(
        integration_type=IntegrationType.TRACKSTAR,
        access_token="access-token-1",
        api_key="api-key-1",
        connection_id="conn-1",
        integration_name="Test WMS",
    )
    return CredentialStore(db).set_credentials("brand-1", credentials, name="Brand One")


class ScriptedConnector(TrackstarConnector):
    """Trackstar parsing with pages served from a script instead of HTTP."""

    def __init__(self, script: Optional[List[Any]] = None, **config):
        super().__init__({"base_url": "https://wms.test", **config})
        self.script = list(script or [])
        self.calls = []

    async def _fetch_page(self, path, since, cursor):
        self.calls.append((path, since, cursor))
        if not self.script:
            return Page(items=[])
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


@pytest.fixture
def scripted_connector():
    def _make(*script, **config) -> ScriptedConnector:
        return ScriptedConnector(list(script), **config)
    return _make


@pytest.fixture
def make_order():
    def _make(i: int, **overrides) -> Dict[str, Any]:
        order = {
            "id": f"ord-{i}",
            "order_number": f"#{1000 + i}",
            "status": "processing",
            "customer": {"name": f"Customer {i}", "email": f"c{i}@example.com"},
            "total_price": "25.50",
            "created_date": "2026-01-01T10:00:00Z",
            "updated_date": "2026-01-01T10:00:00Z",
            "line_items": [{"id": f"li-{i}-1", "sku": "SKU-1", "quantity": 2, "unit_price": "12.75"}],
        }
        order.update(overrides)
        return order
    return _make


@pytest.fixture
def sync_scheduler():
    """Factory for a SyncSessionScheduler bound to the test database and a given connector."""
    def _make(connector=None, catalog=None, budget: Optional[int] = None) -> SyncSessionScheduler:
        return SyncSessionScheduler(
            session_factory=TestingSessionLocal,
            budget=CreditBudgetManager(default_budget=budget),
            catalog=catalog,
            connector_factory=(lambda credentials, **_: connector) if connector is not None else None,
        )
    return _make


@pytest.fixture
def client(db) -> TestClient:
    previous = app.state.sync_scheduler
    app.state.sync_scheduler = SyncSessionScheduler(session_factory=TestingSessionLocal)
    try:
        yield TestClient(app)
    finally:
        app.state.sync_scheduler = previous
