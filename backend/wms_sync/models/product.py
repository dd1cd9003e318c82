"""Product and per-warehouse inventory models."""

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from wms_sync.database import Base
from wms_sync.models.types import JSONType


class Product(Base):
    """Local product record reconciled against the external WMS."""

    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), nullable=False, index=True)

    external_id = Column(String(255), nullable=True)
    sku = Column(String(255), nullable=False)

    name = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    weight = Column(Numeric(10, 3), nullable=True)
    dimensions = Column(JSONType, nullable=True)
    barcode = Column(String(255), nullable=True)
    inventory_count = Column(Integer, nullable=False, default=0)  # Sum of on-hand across warehouses

    # Local annotations
    internal_tags = Column(JSONType, nullable=True)
    low_stock_threshold = Column(Integer, nullable=False, default=10)

    external_updated_at = Column(DateTime(timezone=True), nullable=True)
    raw_data = Column(JSONType, nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    inventory_records = relationship("InventoryRecord", back_populates="product")

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_products_tenant_external_id"),
        Index("idx_products_tenant_sku", "tenant_id", "sku"),
    )

    def __repr__(self):
        return f"<Product(id={self.id}, tenant='{self.tenant_id}', sku='{self.sku}')>"


class InventoryRecord(Base):
    """Stock level of one product in one warehouse."""

    __tablename__ = "inventory_records"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)

    external_id = Column(String(255), nullable=True)
    sku = Column(String(255), nullable=False)
    warehouse_id = Column(String(255), nullable=True)
    warehouse_name = Column(String(255), nullable=True)

    on_hand = Column(Integer, nullable=False, default=0)
    available = Column(Integer, nullable=False, default=0)
    allocated = Column(Integer, nullable=False, default=0)
    location = Column(String(255), nullable=True)

    raw_data = Column(JSONType, nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    product = relationship("Product", back_populates="inventory_records")

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_inventory_tenant_external_id"),
        Index("idx_inventory_tenant_sku_warehouse", "tenant_id", "sku", "warehouse_id"),
    )

    def __repr__(self):
        return f"<InventoryRecord(id={self.id}, sku='{self.sku}', warehouse='{self.warehouse_id}', on_hand={self.on_hand})>"
