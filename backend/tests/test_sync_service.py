from datetime import timedelta

import httpx
import pytest

from wms_sync.connectors.base import Page
from wms_sync.connectors.trackstar_connector import TrackstarConnector
from wms_sync.constants.sync import DataType, IntegrationStatus, IntegrationType, SyncOutcome, TriggerType
from wms_sync.exceptions import (
    AuthError,
    BudgetInsufficientForRequired,
    IntegrationNotConfigured,
    SyncAlreadyRunning,
    UpstreamError,
)
from wms_sync.models import Order, SyncStatus, Tenant
from wms_sync.services.budget import BudgetState
from wms_sync.services.strategies import SyncStrategy, SyncStrategyCatalog
from wms_sync.services.sync_service import SessionState, StrategyStatus
from wms_sync.utils.circuit_breaker import CircuitBreaker, CircuitState

TENANT = "brand-1"

REQUIRED = SyncStrategy("critical", "Critical orders", cost=150, priority=1,
                        data_type=DataType.ORDERS, lookback=timedelta(days=1), required=True)
OPPORTUNISTIC = SyncStrategy("recent", "Recent orders", cost=400, priority=2,
                             data_type=DataType.ORDERS, lookback=timedelta(days=7))
PRODUCTS = SyncStrategy("products", "All products", cost=100, priority=3, data_type=DataType.PRODUCTS)


def catalog(*strategies):
    return SyncStrategyCatalog(strategies or (REQUIRED, OPPORTUNISTIC))


def orders_page(make_order, start, count, **page):
    return Page(items=[make_order(i) for i in range(start, start + count)], **page)


@pytest.mark.asyncio
class TestRunSession:
    async def test_first_sync_completes_within_budget(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        connector = scripted_connector(orders_page(make_order, 0, 50), orders_page(make_order, 50, 200))
        scheduler = sync_scheduler(connector, catalog(), budget=2000)

        session = await scheduler.run_session(TENANT)

        assert session.state == SessionState.COMPLETED
        assert session.created == 250
        assert session.remaining_credits == 1450
        assert session.credits_used == 550
        assert session.completed_strategies == ["critical", "recent"]
        assert db.query(Order).filter(Order.tenant_id == TENANT).count() == 250

        db.expire_all()
        assert db.get(Tenant, TENANT).integration_status == IntegrationStatus.CONNECTED.value

    async def test_budget_exhaustion_skips_opportunistic(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        connector = scripted_connector(orders_page(make_order, 0, 10))
        scheduler = sync_scheduler(connector, catalog(), budget=300)

        session = await scheduler.run_session(TENANT)

        assert session.state == SessionState.BUDGET_EXHAUSTED
        assert session.created == 10
        assert session.remaining_credits == 150
        assert session.rejected_strategies == ["recent"]
        rejected = session.results[-1]
        assert rejected.status == StrategyStatus.REJECTED
        assert rejected.error_message == "insufficient credits"

    async def test_later_opportunistic_strategies_are_skipped(self, tenant, make_order, scripted_connector, sync_scheduler):
        cheap = SyncStrategy("cheap", "Cheap", cost=10, priority=3, data_type=DataType.ORDERS)
        connector = scripted_connector(orders_page(make_order, 0, 1))
        scheduler = sync_scheduler(connector, catalog(REQUIRED, OPPORTUNISTIC, cheap), budget=300)

        session = await scheduler.run_session(TENANT)

        assert session.rejected_strategies == ["recent", "cheap"]
        assert session.remaining_credits == 150

    async def test_budget_persists_between_sessions(self, tenant, make_order, scripted_connector, sync_scheduler):
        scheduler = sync_scheduler(scripted_connector(), catalog(), budget=600)

        first = await scheduler.run_session(TENANT)
        assert first.remaining_credits == 50

        with pytest.raises(BudgetInsufficientForRequired):
            await scheduler.run_session(TENANT)
        assert scheduler.get_session(TENANT).state == SessionState.FAILED

        ledger = scheduler.reset_session(TENANT)
        assert ledger.remaining == 600
        assert scheduler.get_session(TENANT) is None

        after_reset = await scheduler.run_session(TENANT)
        assert after_reset.state == SessionState.COMPLETED

    async def test_required_budget_insufficient(self, db, tenant, scripted_connector, sync_scheduler):
        connector = scripted_connector()
        scheduler = sync_scheduler(connector, catalog(), budget=100)

        with pytest.raises(BudgetInsufficientForRequired):
            await scheduler.run_session(TENANT)

        assert connector.calls == []
        assert scheduler.get_session(TENANT).state == SessionState.FAILED
        assert db.query(Order).count() == 0

        db.expire_all()
        status = db.query(SyncStatus).filter(SyncStatus.data_type == DataType.ORDERS.value).one()
        assert status.last_outcome == SyncOutcome.ERROR.value
        assert status.error_count == 1
        assert "need 150 credits" in status.error_details[0]["error"]

    async def test_required_rejected_mid_session_keeps_progress(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        # Upstream telemetry drops the balance below the second required strategy's cost
        required_products = SyncStrategy("catalog", "Product catalog", cost=150, priority=2,
                                         data_type=DataType.PRODUCTS, required=True)
        connector = scripted_connector(orders_page(make_order, 0, 3, credits_remaining=100))
        scheduler = sync_scheduler(connector, catalog(REQUIRED, required_products), budget=2000)

        with pytest.raises(BudgetInsufficientForRequired):
            await scheduler.run_session(TENANT)

        session = scheduler.get_session(TENANT)
        assert session.state == SessionState.FAILED
        assert session.created == 3
        assert session.remaining_credits == 100
        assert session.completed_strategies == ["critical"]
        assert session.failed_strategies == ["catalog"]
        assert session.results[-1].status == StrategyStatus.FAILED
        assert len(connector.calls) == 1
        assert db.query(Order).count() == 3

        db.expire_all()
        rows = {s.data_type: s for s in db.query(SyncStatus).all()}
        assert rows["orders"].last_outcome == SyncOutcome.SUCCESS.value
        assert rows["products"].last_outcome == SyncOutcome.ERROR.value

    async def test_unexpected_error_is_contained_to_strategy(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        connector = scripted_connector(
            orders_page(make_order, 0, 3),
            AttributeError("'NoneType' object has no attribute 'get'"),
            Page(items=[{"id": "p-1", "sku": "SKU-1", "name": "Widget"}]),
        )
        scheduler = sync_scheduler(connector, catalog(REQUIRED, OPPORTUNISTIC, PRODUCTS), budget=2000)

        session = await scheduler.run_session(TENANT)

        assert session.state == SessionState.PARTIALLY_FAILED
        assert session.failed_strategies == ["recent"]
        assert session.completed_strategies == ["critical", "products"]
        failed = next(r for r in session.results if r.name == "recent")
        assert failed.error_message.startswith("AttributeError")
        assert not scheduler.is_running(TENANT)
        assert scheduler.budget.get_ledger(TENANT).state != BudgetState.ADMITTING

        db.expire_all()
        orders_status = db.query(SyncStatus).filter(SyncStatus.data_type == DataType.ORDERS.value).one()
        assert orders_status.last_outcome == SyncOutcome.PARTIAL.value
        assert db.query(Order).count() == 3

    async def test_open_circuit_stops_requests_across_sessions(self, tenant, sync_scheduler):
        calls = []

        def handler(request: httpx.Request):
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        def factory(credentials, **options):
            return TrackstarConnector({"base_url": "https://wms.test", "transport": httpx.MockTransport(handler), **options})

        scheduler = sync_scheduler(catalog=catalog(REQUIRED, PRODUCTS), budget=2000)
        scheduler.connector_factory = factory
        breaker = scheduler.breakers["trackstar"] = CircuitBreaker("trackstar", failure_threshold=1, reset_timeout=60)

        first = await scheduler.run_session(TENANT)
        second = await scheduler.run_session(TENANT)

        assert len(calls) == 1
        assert breaker.state == CircuitState.OPEN
        assert first.state == SessionState.PARTIALLY_FAILED
        assert first.failed_strategies == ["critical", "products"]
        assert "Circuit breaker trackstar is open" in first.results[1].error_message
        assert second.failed_strategies == ["critical", "products"]
        assert scheduler.breaker_for(IntegrationType.TRACKSTAR) is breaker

    async def test_auth_failure_aborts_session(self, db, tenant, scripted_connector, sync_scheduler):
        connector = scripted_connector(AuthError("token expired", status_code=401))
        scheduler = sync_scheduler(connector, catalog(REQUIRED, OPPORTUNISTIC, PRODUCTS), budget=2000)

        session = await scheduler.run_session(TENANT)

        assert session.state == SessionState.FAILED
        assert session.created == 0
        assert session.failed_strategies == ["critical"]
        assert len(connector.calls) == 1
        assert db.query(Order).count() == 0

        db.expire_all()
        stored = db.get(Tenant, TENANT)
        assert stored.integration_status == IntegrationStatus.ERROR.value
        assert "token expired" in stored.status_detail

    async def test_upstream_error_is_partial_failure(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        connector = scripted_connector(
            orders_page(make_order, 0, 3),
            UpstreamError("boom", status_code=502),
            Page(items=[{"id": "p-1", "sku": "SKU-1", "name": "Widget"}]),
        )
        scheduler = sync_scheduler(connector, catalog(REQUIRED, OPPORTUNISTIC, PRODUCTS), budget=2000)

        session = await scheduler.run_session(TENANT)

        assert session.state == SessionState.PARTIALLY_FAILED
        assert session.failed_strategies == ["recent"]
        assert session.completed_strategies == ["critical", "products"]
        # Admitted credits are not refunded on failure
        assert session.remaining_credits == 2000 - 150 - 400 - 100

        db.expire_all()
        orders_status = db.query(SyncStatus).filter(SyncStatus.data_type == DataType.ORDERS.value).one()
        assert orders_status.last_outcome == SyncOutcome.PARTIAL.value

    async def test_bad_record_does_not_abort_strategy(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        page = Page(items=[make_order(1), {"status": "shipped"}, make_order(2)])
        connector = scripted_connector(page)
        scheduler = sync_scheduler(connector, catalog(REQUIRED), budget=2000)

        session = await scheduler.run_session(TENANT)

        result = session.results[0]
        assert result.status == StrategyStatus.COMPLETED
        assert result.fetched == 3
        assert result.created == 2
        assert result.errors == 1
        assert session.state == SessionState.COMPLETED

        db.expire_all()
        status = db.query(SyncStatus).one()
        assert status.last_outcome == SyncOutcome.PARTIAL.value
        assert status.error_count == 1
        assert status.records_processed == 2

    async def test_second_run_updates_instead_of_duplicating(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        scheduler = sync_scheduler(
            scripted_connector(orders_page(make_order, 0, 5), orders_page(make_order, 0, 5)),
            catalog(REQUIRED),
            budget=2000,
        )

        await scheduler.run_session(TENANT)
        second = await scheduler.run_session(TENANT)

        assert second.created == 0
        assert second.updated == 5
        assert db.query(Order).count() == 5

    async def test_status_rows_recorded_per_data_type(self, db, tenant, make_order, scripted_connector, sync_scheduler):
        connector = scripted_connector(orders_page(make_order, 0, 2))
        scheduler = sync_scheduler(connector, catalog(REQUIRED, PRODUCTS), budget=2000)

        await scheduler.run_session(TENANT, TriggerType.SCHEDULED)

        db.expire_all()
        rows = {s.data_type: s for s in db.query(SyncStatus).all()}
        assert set(rows) == {"orders", "products"}
        assert rows["orders"].records_processed == 2
        assert rows["orders"].last_outcome == SyncOutcome.SUCCESS.value
        assert rows["orders"].next_scheduled_sync is not None

    async def test_incremental_strategy_uses_last_success(self, db, tenant, scripted_connector, sync_scheduler):
        connector = scripted_connector()
        scheduler = sync_scheduler(connector, catalog(PRODUCTS), budget=2000)

        await scheduler.run_session(TENANT)
        await scheduler.run_session(TENANT)

        assert connector.calls[0][1] is None
        assert connector.calls[1][1] is not None

    async def test_not_configured(self, db, scripted_connector, sync_scheduler):
        scheduler = sync_scheduler(scripted_connector(), catalog(), budget=2000)

        with pytest.raises(IntegrationNotConfigured):
            await scheduler.run_session("nobody")
        assert not scheduler.is_running("nobody")

    async def test_concurrent_trigger_is_rejected(self, tenant, scripted_connector, sync_scheduler):
        scheduler = sync_scheduler(scripted_connector(), catalog(), budget=2000)
        assert scheduler.lock.try_acquire(TENANT)
        try:
            with pytest.raises(SyncAlreadyRunning):
                await scheduler.run_session(TENANT)
            with pytest.raises(SyncAlreadyRunning):
                scheduler.reset_session(TENANT)
        finally:
            scheduler.lock.release(TENANT)

        session = await scheduler.run_session(TENANT)
        assert session.state == SessionState.COMPLETED

    async def test_summary_is_serializable(self, tenant, make_order, scripted_connector, sync_scheduler):
        scheduler = sync_scheduler(scripted_connector(orders_page(make_order, 0, 1)), catalog(), budget=2000)

        summary = (await scheduler.run_session(TENANT)).summary()

        assert summary["state"] == "completed"
        assert summary["trigger_type"] == "manual"
        assert summary["results"][0]["data_type"] == "orders"
        assert summary["credits_used"] == 550
        assert summary["recommendation"].startswith("All strategies completed")
