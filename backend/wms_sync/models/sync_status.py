"""Sync status model: latest attempt per tenant and data type."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from wms_sync.database import Base
from wms_sync.models.types import JSONType


class SyncStatus(Base):
    """One row per (tenant, data type), upserted after every session and webhook batch."""

    __tablename__ = "sync_status"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String(64), ForeignKey("tenants.id"), nullable=False, index=True)
    data_type = Column(String(50), nullable=False)  # 'orders', 'products', 'inventory', 'shipments'

    last_sync_at = Column(DateTime(timezone=True), nullable=False)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_outcome = Column(String(20), nullable=False)  # 'success', 'partial', 'error'
    records_processed = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    error_details = Column(JSONType, nullable=True)
    next_scheduled_sync = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    tenant = relationship("Tenant", back_populates="sync_statuses")

    __table_args__ = (
        UniqueConstraint("tenant_id", "data_type", name="uq_sync_status_tenant_data_type"),
    )

    def __repr__(self):
        return f"<SyncStatus(tenant='{self.tenant_id}', type='{self.data_type}', outcome='{self.last_outcome}')>"
