"""Order and order line item models."""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from wms_sync.database import Base
from wms_sync.models.types import JSONType


class Order(Base):
    """Local order record reconciled against the external WMS."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), nullable=False, index=True)

    # Reconciliation keys
    external_id = Column(String(255), nullable=True)
    order_number = Column(String(255), nullable=False)

    # Status (external system is authoritative)
    status = Column(String(50), nullable=False, default="pending", index=True)
    external_status = Column(String(100), nullable=True)
    fulfillment_status = Column(String(100), nullable=True)
    tracking_number = Column(String(255), nullable=True)
    carrier = Column(String(100), nullable=True)

    # Descriptive fields
    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    shipping_address = Column(JSONType, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(10), nullable=True)

    # External timestamps
    order_date = Column(DateTime(timezone=True), nullable=True)
    allocated_at = Column(DateTime(timezone=True), nullable=True)
    packed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    external_updated_at = Column(DateTime(timezone=True), nullable=True)

    # Local annotations, never overwritten by a sync
    internal_tags = Column(JSONType, nullable=True)
    ticket_links = Column(JSONType, nullable=True)
    internal_notes = Column(Text, nullable=True)

    raw_data = Column(JSONType, nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    shipments = relationship("Shipment", back_populates="order")

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_orders_tenant_external_id"),
        Index("idx_orders_tenant_order_number", "tenant_id", "order_number"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, tenant='{self.tenant_id}', number='{self.order_number}', status='{self.status}')>"


class OrderItem(Base):
    """Line item of an order. Replaced wholesale on every merge."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    external_id = Column(String(255), nullable=True)
    sku = Column(String(255), nullable=True, index=True)
    product_name = Column(String(500), nullable=True)
    quantity = Column(Integer, nullable=False, default=0)
    quantity_allocated = Column(Integer, nullable=False, default=0)
    quantity_shipped = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(12, 4), nullable=True)
    fulfillment_status = Column(String(100), nullable=True)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem(id={self.id}, sku='{self.sku}', qty={self.quantity})>"
