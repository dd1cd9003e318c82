"""Per-tenant integration credentials, encrypted at rest."""

import logging
from typing import Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.constants.sync import IntegrationStatus, IntegrationType
from wms_sync.models.tenant import Tenant
from wms_sync.utils.dates import utcnow
from wms_sync.utils.encrypt import decrypt_secret, encrypt_secret

log = logging.getLogger(__name__)


class Credentials(BaseModel):
    """Decrypted connection details for one tenant."""
    integration_type: IntegrationType
    access_token: str
    api_key: Optional[str] = None
    connection_id: Optional[str] = None
    integration_name: Optional[str] = None


class CredentialStore:
    """Reads and writes tenant credentials. Holds no state beyond the db session."""

    def __init__(self, db: Session):
        self.db = db

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self.db.get(Tenant, tenant_id)

    def get_credentials(self, tenant_id: str) -> Optional[Credentials]:
        """Return decrypted credentials, or None when the tenant has no usable integration."""
        tenant = self.get_tenant(tenant_id)
        if not tenant or not tenant.integration_type or not tenant.access_token:
            return None

        api_key = decrypt_secret(tenant.api_key)
        if tenant.integration_type == IntegrationType.TRACKSTAR.value and not api_key:
            api_key = settings.trackstar_api_key
        return Credentials(
            integration_type=IntegrationType(tenant.integration_type),
            access_token=decrypt_secret(tenant.access_token),
            api_key=api_key,
            connection_id=tenant.connection_id,
            integration_name=tenant.integration_name,
        )

    def set_credentials(self, tenant_id: str, credentials: Credentials, name: Optional[str] = None) -> Tenant:
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            tenant = Tenant(id=tenant_id, name=name or tenant_id)
            self.db.add(tenant)
        elif name:
            tenant.name = name

        tenant.integration_type = IntegrationType(credentials.integration_type).value
        tenant.access_token = encrypt_secret(credentials.access_token)
        tenant.api_key = encrypt_secret(credentials.api_key)
        tenant.connection_id = credentials.connection_id
        tenant.integration_name = credentials.integration_name
        tenant.integration_status = IntegrationStatus.CONNECTING.value
        tenant.status_detail = None
        self.db.commit()
        self.db.refresh(tenant)
        log.info(f"Stored {tenant.integration_type} credentials for tenant {tenant_id}")
        return tenant

    def clear_credentials(self, tenant_id: str) -> Optional[Tenant]:
        """Remove the integration. Synced orders and products stay in place."""
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            return None
        tenant.integration_type = None
        tenant.access_token = None
        tenant.api_key = None
        tenant.connection_id = None
        tenant.integration_name = None
        tenant.integration_status = IntegrationStatus.DISCONNECTED.value
        tenant.status_detail = None
        self.db.commit()
        log.info(f"Cleared integration credentials for tenant {tenant_id}")
        return tenant

    def mark_status(self, tenant_id: str, status: IntegrationStatus, detail: Optional[str] = None) -> None:
        tenant = self.get_tenant(tenant_id)
        if tenant is None:
            return
        tenant.integration_status = IntegrationStatus(status).value
        tenant.status_detail = detail
        if status == IntegrationStatus.CONNECTED:
            tenant.last_synced_at = utcnow()
        self.db.commit()

    def find_by_connection(self, connection_id: str) -> Optional[Tenant]:
        if not connection_id:
            return None
        return self.db.query(Tenant).filter(Tenant.connection_id == connection_id).first()
