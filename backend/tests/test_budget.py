import pytest

from wms_sync.constants.sync import DataType
from wms_sync.exceptions import BudgetInsufficientForRequired
from wms_sync.services.budget import BudgetState, CreditBudgetManager
from wms_sync.services.strategies import SyncStrategy

REQUIRED = SyncStrategy("required_orders", "required", cost=150, priority=1, data_type=DataType.ORDERS, required=True)
SMALL = SyncStrategy("small", "small", cost=300, priority=2, data_type=DataType.ORDERS)
LARGE = SyncStrategy("large", "large", cost=1200, priority=3, data_type=DataType.PRODUCTS)


def test_open_creates_ledger_with_default_budget():
    manager = CreditBudgetManager(default_budget=2000)
    ledger = manager.open("t1", [REQUIRED])

    assert ledger.initial == 2000
    assert ledger.remaining == 2000
    assert ledger.reserved == 150
    assert ledger.state == BudgetState.ADMITTING


def test_admission_deducts_cost_before_fetch():
    manager = CreditBudgetManager(default_budget=2000)
    manager.open("t1", [REQUIRED])

    assert manager.try_admit("t1", REQUIRED).admitted
    admission = manager.try_admit("t1", SMALL)

    assert admission.admitted
    assert admission.remaining == 2000 - 150 - 300
    assert manager.get_ledger("t1").spent == [("required_orders", 150), ("small", 300)]


def test_opportunistic_cannot_spend_reserved_credits():
    manager = CreditBudgetManager(default_budget=400)
    manager.open("t1", [REQUIRED])

    # 400 remaining but 150 reserved for the required strategy
    admission = manager.try_admit("t1", SMALL)
    assert admission.admitted is False
    assert admission.reason == "insufficient credits"
    assert manager.get_ledger("t1").remaining == 400


def test_required_cost_above_budget_raises():
    manager = CreditBudgetManager(default_budget=100)
    with pytest.raises(BudgetInsufficientForRequired) as exc_info:
        manager.open("t1", [REQUIRED])

    assert exc_info.value.required_cost == 150
    assert exc_info.value.available == 100


def test_remaining_equals_initial_minus_admitted_costs():
    manager = CreditBudgetManager(default_budget=2000)
    manager.open("t1", [REQUIRED])
    admitted = []
    for strategy in (REQUIRED, SMALL, LARGE, SMALL):
        admission = manager.try_admit("t1", strategy)
        if admission.admitted:
            admitted.append(strategy.cost)
        else:
            assert strategy.cost > manager.get_ledger("t1").available

    ledger = manager.get_ledger("t1")
    assert ledger.remaining == 2000 - sum(admitted)
    assert ledger.remaining >= 0
    assert ledger.used == sum(admitted)


def test_budget_persists_across_sessions_until_reset():
    manager = CreditBudgetManager(default_budget=500)
    manager.open("t1")
    manager.try_admit("t1", SMALL)
    manager.close("t1", exhausted=False)

    ledger = manager.open("t1")
    assert ledger.remaining == 200
    assert manager.try_admit("t1", SMALL).admitted is False

    ledger = manager.reset("t1")
    assert ledger.remaining == 500
    assert ledger.state == BudgetState.FRESH


def test_reset_with_explicit_budget():
    manager = CreditBudgetManager(default_budget=500)
    assert manager.reset("t1", budget=5000).initial == 5000


def test_telemetry_only_lowers_remaining():
    manager = CreditBudgetManager(default_budget=2000)
    manager.open("t1")

    manager.observe_remaining("t1", 2500)
    assert manager.get_ledger("t1").remaining == 2000

    manager.observe_remaining("t1", 900)
    assert manager.get_ledger("t1").remaining == 900

    manager.observe_remaining("t1", None)
    assert manager.get_ledger("t1").remaining == 900


def test_close_releases_reservation_and_sets_state():
    manager = CreditBudgetManager(default_budget=2000)
    manager.open("t1", [REQUIRED])

    ledger = manager.close("t1", exhausted=True)
    assert ledger.reserved == 0
    assert ledger.state == BudgetState.EXHAUSTED
    assert manager.try_admit("t1", SMALL).admitted is False


def test_tenants_have_independent_ledgers():
    manager = CreditBudgetManager(default_budget=400)
    manager.open("t1")
    manager.open("t2")
    manager.try_admit("t1", SMALL)

    assert manager.get_ledger("t1").remaining == 100
    assert manager.get_ledger("t2").remaining == 400


def test_admit_before_open_is_rejected():
    manager = CreditBudgetManager(default_budget=2000)

    admission = manager.try_admit("t1", SMALL)

    assert admission.admitted is False
    assert admission.reason == "ledger is not open"
    assert manager.get_ledger("t1") is None
