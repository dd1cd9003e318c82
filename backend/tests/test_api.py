from fastapi.testclient import TestClient

from wms_sync.connectors.base import Page
from wms_sync.main import app
from wms_sync.models import Order, Tenant
from wms_sync.services.budget import CreditBudgetManager
from wms_sync.utils.encrypt import decrypt_secret

SYNC = "/api/v1/sync"
INTEGRATIONS = "/api/v1/integrations"


def use_connector(connector):
    app.state.sync_scheduler.connector_factory = lambda credentials, **_: connector


class TestIntegrationEndpoints:
    def test_set_integration_encrypts_and_masks(self, client: TestClient, db):
        response = client.put(f"{INTEGRATIONS}/brand-9", json={
            "integration_type": "shiphero",
            "access_token": "secret-token",
            "connection_id": "sh-conn",
            "tenant_name": "Brand Nine",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["integration_status"] == "connecting"
        assert data["has_access_token"] is True
        assert data["has_api_key"] is False
        assert "access_token" not in data
        assert "secret-token" not in response.text

        stored = db.get(Tenant, "brand-9")
        assert stored.access_token != "secret-token"
        assert decrypt_secret(stored.access_token) == "secret-token"

    def test_rejects_empty_token(self, client: TestClient):
        response = client.put(f"{INTEGRATIONS}/brand-9", json={"integration_type": "trackstar", "access_token": ""})
        assert response.status_code == 422

    def test_get_unknown_tenant(self, client: TestClient):
        assert client.get(f"{INTEGRATIONS}/nobody").status_code == 404
        assert client.delete(f"{INTEGRATIONS}/nobody").status_code == 404

    def test_clear_keeps_synced_data(self, client: TestClient, db, tenant):
        db.add(Order(tenant_id="brand-1", external_id="ord-1", order_number="#1", status="pending"))
        db.commit()

        response = client.delete(f"{INTEGRATIONS}/brand-1")

        assert response.status_code == 200
        assert response.json()["integration_status"] == "disconnected"
        assert response.json()["has_access_token"] is False
        assert db.query(Order).count() == 1


class TestSyncEndpoints:
    def test_run_unknown_tenant(self, client: TestClient):
        assert client.post(f"{SYNC}/nobody/run").status_code == 404

    def test_run_without_credentials(self, client: TestClient, tenant):
        client.delete(f"{INTEGRATIONS}/brand-1")
        response = client.post(f"{SYNC}/brand-1/run")
        assert response.status_code == 412

    def test_run_while_running(self, client: TestClient, tenant):
        lock = app.state.sync_scheduler.lock
        lock.try_acquire("brand-1")
        try:
            assert client.post(f"{SYNC}/brand-1/run").status_code == 409
            assert client.post(f"{SYNC}/brand-1/reset").status_code == 409
        finally:
            lock.release("brand-1")

    def test_run_with_insufficient_budget(self, client: TestClient, tenant, scripted_connector):
        use_connector(scripted_connector())
        app.state.sync_scheduler.budget = CreditBudgetManager(default_budget=100)

        response = client.post(f"{SYNC}/brand-1/run")
        assert response.status_code == 402

    def test_run_and_status(self, client: TestClient, db, tenant, make_order, scripted_connector):
        use_connector(scripted_connector(Page(items=[make_order(1), make_order(2)])))

        response = client.post(f"{SYNC}/brand-1/run")

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == "brand-1"
        assert data["trigger_type"] == "manual"
        assert data["created"] == 2
        assert data["results"][0]["name"] == "critical_orders_today"
        assert data["state"] in ("completed", "budget_exhausted")

        status = client.get(f"{SYNC}/brand-1/status").json()
        assert status["integration_status"] == "connected"
        assert status["running"] is False
        assert status["budget"]["remaining"] == data["remaining_credits"]
        assert status["last_session"]["session_id"] == data["session_id"]
        assert {s["data_type"] for s in status["statuses"]} >= {"orders"}

    def test_reset_budget(self, client: TestClient, tenant):
        response = client.post(f"{SYNC}/brand-1/reset", json={"budget": 500})

        assert response.status_code == 200
        assert response.json() == {
            "tenant_id": "brand-1", "initial": 500, "remaining": 500, "reserved": 0, "state": "fresh",
        }

        default = client.post(f"{SYNC}/brand-1/reset").json()
        assert default["remaining"] == 2000

    def test_status_before_any_session(self, client: TestClient, tenant):
        data = client.get(f"{SYNC}/brand-1/status").json()
        assert data["statuses"] == []
        assert data["budget"] is None
        assert data["last_session"] is None
