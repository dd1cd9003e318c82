"""Tenant model holding the external-system connection of a brand."""

from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from wms_sync.database import Base


class Tenant(Base):
    """A brand/organization with at most one external WMS connection."""

    __tablename__ = "tenants"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=True)

    # Integration
    integration_type = Column(String(50), nullable=True, index=True)  # 'trackstar' or 'shiphero'
    connection_id = Column(String(255), nullable=True, index=True)
    access_token = Column(Text, nullable=True)  # Encrypted
    api_key = Column(Text, nullable=True)  # Encrypted
    integration_name = Column(String(255), nullable=True)
    integration_status = Column(String(20), nullable=False, default="disconnected", index=True)
    status_detail = Column(Text, nullable=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_webhook_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Orders and products are retained when the integration is removed
    sync_statuses = relationship("SyncStatus", back_populates="tenant", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Tenant(id='{self.id}', integration='{self.integration_type}', status='{self.integration_status}')>"
