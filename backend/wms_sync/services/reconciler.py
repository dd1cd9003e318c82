"""
Idempotent merge of external WMS entities into local storage.

Every merge runs in its own transaction. Entities are matched by
(tenant, external id) first; the human key (order number, SKU, SKU +
warehouse) is only consulted for rows that never had an external id
attached, and the oldest such row wins.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wms_sync.connectors.base import ExternalInventory, ExternalOrder, ExternalProduct, ExternalShipment
from wms_sync.constants.order_status import TERMINAL_STATUSES, OrderStatus, map_order_status
from wms_sync.constants.sync import DataType
from wms_sync.models.order import Order, OrderItem
from wms_sync.models.product import InventoryRecord, Product
from wms_sync.models.shipment import Shipment
from wms_sync.utils.dates import ensure_aware, utcnow

log = logging.getLogger(__name__)


class MergeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    STALE = "stale"  # Payload older than what is stored; nothing but last_sync_at changed


@dataclass
class MappingGap:
    """An external value with no local equivalent. A safe default was applied."""
    entity: str
    external_id: str
    field: str
    value: Any
    applied: Any


@dataclass
class MergeResult:
    action: MergeAction
    entity: Any
    mapping_gaps: List[MappingGap] = field(default_factory=list)


def _is_stale(stored: Optional[datetime], incoming: Optional[datetime]) -> bool:
    if stored is None or incoming is None:
        return False
    return ensure_aware(incoming) < ensure_aware(stored)


def _assign_present(target: Any, **values: Any) -> None:
    """Overwrite attributes only where the payload carries a value."""
    for name, value in values.items():
        if value is not None:
            setattr(target, name, value)


class EntityReconciler:
    """Shared merge path for scheduled pulls and webhooks."""

    def __init__(self, db: Session):
        self.db = db

    def _transaction(self, label: str, apply: Callable[[], MergeResult]) -> MergeResult:
        """Run one merge; a unique-constraint race on insert is retried once as an update."""
        for attempt in (1, 2):
            try:
                result = apply()
                self.db.commit()
                return result
            except IntegrityError:
                self.db.rollback()
                if attempt == 2:
                    raise
                log.info(f"Concurrent insert detected for {label}, retrying as update")
            except Exception:
                self.db.rollback()
                raise

    def merge(self, data_type: DataType, tenant_id: str, record: Any) -> MergeResult:
        mergers = {
            DataType.ORDERS: self.merge_order,
            DataType.PRODUCTS: self.merge_product,
            DataType.INVENTORY: self.merge_inventory,
            DataType.SHIPMENTS: self.merge_shipment,
        }
        return mergers[DataType(data_type)](tenant_id, record)

    # Orders

    def _find_order(self, tenant_id: str, external_id: Optional[str], order_number: Optional[str] = None) -> Optional[Order]:
        if external_id:
            order = (
                self.db.query(Order)
                .filter(Order.tenant_id == tenant_id, Order.external_id == external_id)
                .first()
            )
            if order is not None:
                return order
        if order_number:
            return (
                self.db.query(Order)
                .filter(
                    Order.tenant_id == tenant_id,
                    Order.order_number == order_number,
                    Order.external_id.is_(None),
                )
                .order_by(Order.id)
                .first()
            )
        return None

    def merge_order(self, tenant_id: str, external: ExternalOrder) -> MergeResult:
        def apply() -> MergeResult:
            now = utcnow()
            order = self._find_order(tenant_id, external.external_id, external.order_number)
            if order is None:
                order = Order(tenant_id=tenant_id, external_id=external.external_id)
                self.db.add(order)
                action = MergeAction.CREATED
            else:
                if order.external_id is None:
                    log.info(
                        f"Attaching external id {external.external_id} to order {order.order_number} "
                        f"(tenant {tenant_id})"
                    )
                    order.external_id = external.external_id
                if _is_stale(order.external_updated_at, external.updated_at):
                    log.debug(f"Ignoring stale payload for order {external.external_id}")
                    order.last_sync_at = now
                    return MergeResult(MergeAction.STALE, order)
                action = MergeAction.UPDATED

            gaps = []
            status, mapped = map_order_status(external.source, external.status)
            if not mapped:
                log.warning(
                    f"Unmapped {external.source} order status '{external.status}' on order "
                    f"{external.external_id}, defaulting to {status.value}"
                )
                gaps.append(MappingGap("order", external.external_id, "status", external.status, status.value))

            order.order_number = external.order_number
            order.status = status.value
            order.external_status = external.status
            _assign_present(
                order,
                tracking_number=external.tracking_number,
                carrier=external.carrier,
                order_date=external.order_date,
                allocated_at=external.allocated_at,
                packed_at=external.packed_at,
                shipped_at=external.shipped_at,
                delivered_at=external.delivered_at,
                cancelled_at=external.cancelled_at,
                external_updated_at=external.updated_at,
                fulfillment_status=external.fulfillment_status,
                customer_name=external.customer_name,
                customer_email=external.customer_email,
                shipping_address=external.shipping_address,
                total_amount=external.total_amount,
                currency=external.currency,
            )
            order.raw_data = external.raw or order.raw_data
            order.last_sync_at = now

            if external.line_items or "line_items" in external.raw:
                order.items = [
                    OrderItem(
                        external_id=item.external_id,
                        sku=item.sku,
                        product_name=item.product_name,
                        quantity=item.quantity,
                        quantity_allocated=item.quantity_allocated,
                        quantity_shipped=item.quantity_shipped,
                        unit_price=item.unit_price,
                        fulfillment_status=item.fulfillment_status,
                    )
                    for item in external.line_items
                ]
            self.db.flush()
            return MergeResult(action, order, gaps)

        return self._transaction(f"order {external.external_id}", apply)

    def apply_order_status(
        self, tenant_id: str, external_id: str, status: OrderStatus, at: Optional[datetime] = None
    ) -> Optional[MergeResult]:
        """Set a status reported by an event that carries no full order payload."""
        def apply() -> Optional[MergeResult]:
            order = self._find_order(tenant_id, external_id)
            if order is None:
                return None
            order.status = OrderStatus(status).value
            if status == OrderStatus.CANCELLED:
                order.cancelled_at = at or utcnow()
            elif status == OrderStatus.SHIPPED and at:
                order.shipped_at = at
            order.last_sync_at = utcnow()
            return MergeResult(MergeAction.UPDATED, order)

        result = self._transaction(f"order status {external_id}", apply)
        if result is None:
            log.info(f"Status change for unknown order {external_id} (tenant {tenant_id}) ignored")
        return result

    # Products and inventory

    def _find_product(self, tenant_id: str, external_id: Optional[str], sku: Optional[str]) -> Optional[Product]:
        if external_id:
            product = (
                self.db.query(Product)
                .filter(Product.tenant_id == tenant_id, Product.external_id == external_id)
                .first()
            )
            if product is not None:
                return product
        if sku:
            return (
                self.db.query(Product)
                .filter(Product.tenant_id == tenant_id, Product.sku == sku, Product.external_id.is_(None))
                .order_by(Product.id)
                .first()
            )
        return None

    def merge_product(self, tenant_id: str, external: ExternalProduct) -> MergeResult:
        def apply() -> MergeResult:
            now = utcnow()
            product = self._find_product(tenant_id, external.external_id, external.sku)
            if product is None:
                product = Product(tenant_id=tenant_id, external_id=external.external_id, inventory_count=0)
                self.db.add(product)
                action = MergeAction.CREATED
            else:
                if product.external_id is None:
                    product.external_id = external.external_id
                if _is_stale(product.external_updated_at, external.updated_at):
                    product.last_sync_at = now
                    return MergeResult(MergeAction.STALE, product)
                action = MergeAction.UPDATED

            product.sku = external.sku
            product.name = external.name
            _assign_present(
                product,
                description=external.description,
                price=external.price,
                weight=external.weight,
                dimensions=external.dimensions,
                barcode=external.barcode,
                external_updated_at=external.updated_at,
            )
            product.raw_data = external.raw or product.raw_data
            product.last_sync_at = now
            self.db.flush()
            return MergeResult(action, product)

        return self._transaction(f"product {external.external_id}", apply)

    def _link_product(self, tenant_id: str, external: ExternalInventory) -> Optional[Product]:
        if external.product_external_id:
            product = (
                self.db.query(Product)
                .filter(Product.tenant_id == tenant_id, Product.external_id == external.product_external_id)
                .first()
            )
            if product is not None:
                return product
        return (
            self.db.query(Product)
            .filter(Product.tenant_id == tenant_id, Product.sku == external.sku)
            .order_by(Product.id)
            .first()
        )

    def _recount(self, product: Optional[Product]) -> None:
        if product is None:
            return
        total = (
            self.db.query(func.coalesce(func.sum(InventoryRecord.on_hand), 0))
            .filter(InventoryRecord.product_id == product.id)
            .scalar()
        )
        product.inventory_count = int(total or 0)

    def merge_inventory(self, tenant_id: str, external: ExternalInventory) -> MergeResult:
        def apply() -> MergeResult:
            record = (
                self.db.query(InventoryRecord)
                .filter(InventoryRecord.tenant_id == tenant_id, InventoryRecord.external_id == external.external_id)
                .first()
            )
            if record is None:
                record = (
                    self.db.query(InventoryRecord)
                    .filter(
                        InventoryRecord.tenant_id == tenant_id,
                        InventoryRecord.sku == external.sku,
                        InventoryRecord.warehouse_id == external.warehouse_id,
                        InventoryRecord.external_id.is_(None),
                    )
                    .order_by(InventoryRecord.id)
                    .first()
                )
            if record is None:
                record = InventoryRecord(tenant_id=tenant_id, external_id=external.external_id)
                self.db.add(record)
                action = MergeAction.CREATED
            else:
                record.external_id = record.external_id or external.external_id
                action = MergeAction.UPDATED

            previous_product = record.product
            product = self._link_product(tenant_id, external)
            record.product = product
            record.sku = external.sku
            record.warehouse_id = external.warehouse_id
            record.on_hand = external.on_hand
            record.available = external.available
            record.allocated = external.allocated
            _assign_present(record, warehouse_name=external.warehouse_name, location=external.location)
            record.raw_data = external.raw or record.raw_data
            record.last_sync_at = utcnow()
            self.db.flush()

            self._recount(product)
            if previous_product is not None and previous_product is not product:
                self._recount(previous_product)
            return MergeResult(action, record)

        return self._transaction(f"inventory {external.external_id}", apply)

    # Shipments

    def merge_shipment(self, tenant_id: str, external: ExternalShipment) -> MergeResult:
        def apply() -> MergeResult:
            now = utcnow()
            shipment = (
                self.db.query(Shipment)
                .filter(Shipment.tenant_id == tenant_id, Shipment.external_id == external.external_id)
                .first()
            )
            if shipment is None:
                shipment = Shipment(tenant_id=tenant_id, external_id=external.external_id)
                self.db.add(shipment)
                action = MergeAction.CREATED
            else:
                action = MergeAction.UPDATED

            shipment.order_external_id = external.order_external_id or shipment.order_external_id
            _assign_present(
                shipment,
                tracking_number=external.tracking_number,
                carrier=external.carrier,
                service=external.service,
                status=external.status,
                shipped_at=external.shipped_at,
                delivered_at=external.delivered_at,
            )
            shipment.raw_data = external.raw or shipment.raw_data
            shipment.last_sync_at = now

            order = self._find_order(tenant_id, shipment.order_external_id) if shipment.order_external_id else None
            if order is not None:
                shipment.order = order
                _assign_present(
                    order,
                    tracking_number=external.tracking_number,
                    carrier=external.carrier,
                    shipped_at=external.shipped_at,
                )
                if order.status not in {s.value for s in TERMINAL_STATUSES}:
                    order.status = OrderStatus.SHIPPED.value
                order.last_sync_at = now
            elif shipment.order_external_id:
                log.info(
                    f"Shipment {external.external_id} references unknown order "
                    f"{shipment.order_external_id} (tenant {tenant_id})"
                )
            self.db.flush()
            return MergeResult(action, shipment)

        return self._transaction(f"shipment {external.external_id}", apply)
