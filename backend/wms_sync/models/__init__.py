"""Database models."""

from wms_sync.models.tenant import Tenant
from wms_sync.models.order import Order, OrderItem
from wms_sync.models.product import Product, InventoryRecord
from wms_sync.models.shipment import Shipment
from wms_sync.models.sync_status import SyncStatus

__all__ = [
    "Tenant",
    "Order",
    "OrderItem",
    "Product",
    "InventoryRecord",
    "Shipment",
    "SyncStatus",
]
