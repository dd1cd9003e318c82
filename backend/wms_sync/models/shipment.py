"""Shipment model."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from wms_sync.database import Base
from wms_sync.models.types import JSONType


class Shipment(Base):
    """Outbound shipment reported by the external WMS."""

    __tablename__ = "shipments"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    external_id = Column(String(255), nullable=False)
    order_external_id = Column(String(255), nullable=True)
    tracking_number = Column(String(255), nullable=True)
    carrier = Column(String(100), nullable=True)
    service = Column(String(100), nullable=True)
    status = Column(String(50), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    raw_data = Column(JSONType, nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    order = relationship("Order", back_populates="shipments")

    __table_args__ = (
        UniqueConstraint("tenant_id", "external_id", name="uq_shipments_tenant_external_id"),
    )

    def __repr__(self):
        return f"<Shipment(id={self.id}, tracking='{self.tracking_number}', status='{self.status}')>"
