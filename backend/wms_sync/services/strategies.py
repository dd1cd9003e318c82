"""Priority-ranked catalog of fixed-cost sync strategies."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Iterator, List, Optional, Sequence

from wms_sync.constants.sync import DataType

# Upstream credit refill rate used for the "wait" recommendation
CREDITS_PER_HOUR = 30


@dataclass(frozen=True)
class SyncStrategy:
    name: str
    description: str
    cost: int
    priority: int
    data_type: DataType
    lookback: Optional[timedelta] = None
    required: bool = False

    def __post_init__(self):
        if self.cost < 0:
            raise ValueError(f"Strategy {self.name} has a negative cost")


DEFAULT_STRATEGIES = (
    SyncStrategy(
        name="critical_orders_today",
        description="Today's critical orders only",
        cost=150,
        priority=1,
        data_type=DataType.ORDERS,
        lookback=timedelta(days=1),
        required=True,
    ),
    SyncStrategy(
        name="recent_orders_minimal",
        description="Recent orders with minimal fields",
        cost=300,
        priority=2,
        data_type=DataType.ORDERS,
        lookback=timedelta(days=7),
    ),
    SyncStrategy(
        name="recent_shipments",
        description="Shipments of the last week",
        cost=300,
        priority=3,
        data_type=DataType.SHIPMENTS,
        lookback=timedelta(days=7),
    ),
    SyncStrategy(
        name="product_inventory_summary",
        description="Product inventory summary",
        cost=400,
        priority=4,
        data_type=DataType.INVENTORY,
    ),
    SyncStrategy(
        name="orders_with_line_items",
        description="Orders with basic line items",
        cost=800,
        priority=5,
        data_type=DataType.ORDERS,
        lookback=timedelta(days=30),
    ),
    SyncStrategy(
        name="full_product_details",
        description="Complete product information",
        cost=1200,
        priority=6,
        data_type=DataType.PRODUCTS,
    ),
)


class SyncStrategyCatalog:
    """Immutable, priority-sorted strategy list with unique names."""

    def __init__(self, strategies: Iterable[SyncStrategy] = DEFAULT_STRATEGIES):
        ordered = sorted(strategies, key=lambda s: s.priority)
        names = [s.name for s in ordered]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate strategy names in catalog: {names}")
        self._strategies = tuple(ordered)

    def __iter__(self) -> Iterator[SyncStrategy]:
        return iter(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)

    @property
    def strategies(self) -> Sequence[SyncStrategy]:
        return self._strategies

    @property
    def required(self) -> List[SyncStrategy]:
        return [s for s in self._strategies if s.required]

    @property
    def required_cost(self) -> int:
        return sum(s.cost for s in self.required)

    def get(self, name: str) -> Optional[SyncStrategy]:
        return next((s for s in self._strategies if s.name == name), None)

    def next_recommendation(self, remaining_credits: int, done: Iterable[str] = ()) -> str:
        """Operator hint: the next strategy worth running, or how long to wait for credits."""
        done = set(done)
        pending = [s for s in self._strategies if s.name not in done]
        if not pending:
            return "All strategies completed. Wait for credit refresh or upgrade account."

        affordable = [s for s in pending if s.cost <= remaining_credits]
        if not affordable:
            upcoming = pending[0]
            hours = -(-(upcoming.cost - remaining_credits) // CREDITS_PER_HOUR)
            return f"Wait {hours} hours for credit refresh, then run '{upcoming.name}'"
        return f"Next recommended strategy: '{affordable[0].name}' ({affordable[0].description})"
