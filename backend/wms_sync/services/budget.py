"""Per-tenant credit accounting for metered external APIs."""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from wms_sync.config import settings
from wms_sync.exceptions import BudgetInsufficientForRequired
from wms_sync.services.strategies import SyncStrategy

log = logging.getLogger(__name__)


class BudgetState(str, Enum):
    FRESH = "fresh"
    ADMITTING = "admitting"
    EXHAUSTED = "exhausted"
    COMPLETED = "completed"


@dataclass
class CreditLedger:
    tenant_id: str
    initial: int
    remaining: int
    reserved: int = 0
    state: BudgetState = BudgetState.FRESH
    spent: List[Tuple[str, int]] = field(default_factory=list)

    @property
    def available(self) -> int:
        """Credits an opportunistic strategy may draw on."""
        return max(self.remaining - self.reserved, 0)

    @property
    def used(self) -> int:
        return sum(cost for _, cost in self.spent)


@dataclass
class Admission:
    admitted: bool
    strategy: str
    cost: int
    remaining: int
    reason: Optional[str] = None


class CreditBudgetManager:
    """
    Tracks a consumable credit budget per tenant.

    Costs are deducted on admission, before the fetch starts, and are not
    refunded when the fetch fails. Credits come back only through reset().
    The ledger outlives individual sessions.
    """

    def __init__(self, default_budget: Optional[int] = None):
        self.default_budget = settings.default_credit_budget if default_budget is None else default_budget
        self._ledgers: Dict[str, CreditLedger] = {}
        self._guard = threading.Lock()

    def get_ledger(self, tenant_id: str) -> Optional[CreditLedger]:
        return self._ledgers.get(tenant_id)

    def open(self, tenant_id: str, required: Iterable[SyncStrategy] = ()) -> CreditLedger:
        """Start admitting for a session, reserving the cost of every required strategy."""
        required_cost = sum(s.cost for s in required)
        with self._guard:
            ledger = self._ledgers.get(tenant_id)
            if ledger is None:
                ledger = CreditLedger(tenant_id=tenant_id, initial=self.default_budget, remaining=self.default_budget)
                self._ledgers[tenant_id] = ledger
            if required_cost > ledger.remaining:
                ledger.reserved = 0
                ledger.state = BudgetState.EXHAUSTED
                raise BudgetInsufficientForRequired(tenant_id, required_cost, ledger.remaining)
            ledger.reserved = required_cost
            ledger.state = BudgetState.ADMITTING
        log.debug(f"Budget opened for tenant {tenant_id}: remaining={ledger.remaining}, reserved={required_cost}")
        return ledger

    def try_admit(self, tenant_id: str, strategy: SyncStrategy) -> Admission:
        with self._guard:
            ledger = self._ledgers.get(tenant_id)
            if ledger is None:
                return Admission(False, strategy.name, strategy.cost, 0, "ledger is not open")
            if ledger.state != BudgetState.ADMITTING:
                return Admission(False, strategy.name, strategy.cost, ledger.remaining, f"ledger is {ledger.state.value}")

            if strategy.required:
                affordable = strategy.cost <= ledger.remaining
            else:
                affordable = strategy.cost <= ledger.available
            if not affordable:
                log.info(
                    f"Tenant {tenant_id}: rejected '{strategy.name}' (cost {strategy.cost}, "
                    f"remaining {ledger.remaining}, reserved {ledger.reserved})"
                )
                return Admission(False, strategy.name, strategy.cost, ledger.remaining, "insufficient credits")

            if strategy.required:
                ledger.reserved = max(ledger.reserved - strategy.cost, 0)
            ledger.remaining -= strategy.cost
            ledger.spent.append((strategy.name, strategy.cost))
            log.debug(f"Tenant {tenant_id}: admitted '{strategy.name}' for {strategy.cost}, {ledger.remaining} left")
            return Admission(True, strategy.name, strategy.cost, ledger.remaining)

    def observe_remaining(self, tenant_id: str, credits: Optional[int]) -> None:
        """Apply upstream credit telemetry. It can only lower the balance."""
        if credits is None:
            return
        with self._guard:
            ledger = self._ledgers.get(tenant_id)
            if ledger is not None and 0 <= credits < ledger.remaining:
                log.debug(f"Tenant {tenant_id}: upstream reports {credits} credits, lowering from {ledger.remaining}")
                ledger.remaining = credits

    def close(self, tenant_id: str, exhausted: bool) -> Optional[CreditLedger]:
        with self._guard:
            ledger = self._ledgers.get(tenant_id)
            if ledger is None:
                return None
            ledger.reserved = 0
            ledger.state = BudgetState.EXHAUSTED if exhausted else BudgetState.COMPLETED
            return ledger

    def reset(self, tenant_id: str, budget: Optional[int] = None) -> CreditLedger:
        amount = self.default_budget if budget is None else budget
        with self._guard:
            ledger = CreditLedger(tenant_id=tenant_id, initial=amount, remaining=amount)
            self._ledgers[tenant_id] = ledger
        log.info(f"Reset credit budget for tenant {tenant_id} to {amount}")
        return ledger
