from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from wms_sync.constants.sync import IntegrationType


class IntegrationSet(BaseModel):
    integration_type: IntegrationType
    access_token: str = Field(..., min_length=1)  # Encrypted before storage
    api_key: Optional[str] = None
    connection_id: Optional[str] = None
    integration_name: Optional[str] = None
    tenant_name: Optional[str] = None


class IntegrationInDB(BaseModel):
    """Masked view of a tenant's integration; secrets are never returned."""
    tenant_id: str
    name: Optional[str] = None
    integration_type: Optional[str] = None
    integration_name: Optional[str] = None
    connection_id: Optional[str] = None
    integration_status: str
    status_detail: Optional[str] = None
    has_access_token: bool = False
    has_api_key: bool = False
    last_synced_at: Optional[datetime] = None
    last_webhook_at: Optional[datetime] = None
