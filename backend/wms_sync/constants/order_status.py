"""Mapping of external order statuses onto the local status vocabulary."""

from enum import Enum
from typing import Dict, Optional, Tuple


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ALLOCATED = "allocated"
    ON_HOLD = "on_hold"
    UNFULFILLED = "unfulfilled"
    PARTIALLY_FULFILLED = "partially_fulfilled"
    FULFILLED = "fulfilled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


# Statuses a shipment event must not move an order away from
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED})

TRACKSTAR_STATUS_MAP: Dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "open": OrderStatus.PENDING,
    "processing": OrderStatus.PROCESSING,
    "backordered": OrderStatus.PROCESSING,
    "allocated": OrderStatus.ALLOCATED,
    "on_hold": OrderStatus.ON_HOLD,
    "unfulfilled": OrderStatus.UNFULFILLED,
    "partially_fulfilled": OrderStatus.PARTIALLY_FULFILLED,
    "fulfilled": OrderStatus.FULFILLED,
    "shipped": OrderStatus.SHIPPED,
    "delivered": OrderStatus.DELIVERED,
    "cancelled": OrderStatus.CANCELLED,
    "canceled": OrderStatus.CANCELLED,
    "returned": OrderStatus.RETURNED,
}

SHIPHERO_STATUS_MAP: Dict[str, OrderStatus] = {
    "pending": OrderStatus.PENDING,
    "unfulfilled": OrderStatus.UNFULFILLED,
    "allocated": OrderStatus.ALLOCATED,
    "picked": OrderStatus.PROCESSING,
    "packed": OrderStatus.PROCESSING,
    "hold": OrderStatus.ON_HOLD,
    "on_hold": OrderStatus.ON_HOLD,
    "partial": OrderStatus.PARTIALLY_FULFILLED,
    "fulfilled": OrderStatus.FULFILLED,
    "shipped": OrderStatus.SHIPPED,
    "delivered": OrderStatus.DELIVERED,
    "canceled": OrderStatus.CANCELLED,
    "cancelled": OrderStatus.CANCELLED,
}

STATUS_MAPS: Dict[str, Dict[str, OrderStatus]] = {
    "trackstar": TRACKSTAR_STATUS_MAP,
    "shiphero": SHIPHERO_STATUS_MAP,
}


def map_order_status(source: str, external_status: Optional[str]) -> Tuple[OrderStatus, bool]:
    """
    Map an external status to the local vocabulary.

    Returns (status, mapped). Unknown or missing statuses fall back to PENDING
    with mapped=False so the caller can report the gap.
    """
    if not external_status:
        return OrderStatus.PENDING, True
    table = STATUS_MAPS.get(source, TRACKSTAR_STATUS_MAP)
    status = table.get(external_status.strip().lower())
    if status is None:
        return OrderStatus.PENDING, False
    return status, True
