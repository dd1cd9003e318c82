import logging
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from wms_sync.database import get_db
from wms_sync.models.tenant import Tenant
from wms_sync.schemas.integration import IntegrationInDB, IntegrationSet
from wms_sync.services.credentials import CredentialStore, Credentials

log = logging.getLogger(__name__)
router = APIRouter()


def _to_response(tenant: Tenant) -> IntegrationInDB:
    return IntegrationInDB(
        tenant_id=tenant.id,
        name=tenant.name,
        integration_type=tenant.integration_type,
        integration_name=tenant.integration_name,
        connection_id=tenant.connection_id,
        integration_status=tenant.integration_status,
        status_detail=tenant.status_detail,
        has_access_token=bool(tenant.access_token),
        has_api_key=bool(tenant.api_key),
        last_synced_at=tenant.last_synced_at,
        last_webhook_at=tenant.last_webhook_at,
    )


@router.put("/{tenant_id}", response_model=IntegrationInDB)
async def set_integration(tenant_id: str, request: IntegrationSet, db: Session = Depends(get_db)):
    """Create or rotate the tenant's integration credentials."""
    credentials = Credentials(
        integration_type=request.integration_type,
        access_token=request.access_token,
        api_key=request.api_key,
        connection_id=request.connection_id,
        integration_name=request.integration_name,
    )
    tenant = CredentialStore(db).set_credentials(tenant_id, credentials, name=request.tenant_name)
    return _to_response(tenant)


@router.get("/{tenant_id}", response_model=IntegrationInDB)
async def get_integration(tenant_id: str, db: Session = Depends(get_db)):
    tenant = CredentialStore(db).get_tenant(tenant_id)
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {tenant_id} not found")
    return _to_response(tenant)


@router.delete("/{tenant_id}", response_model=IntegrationInDB)
async def clear_integration(tenant_id: str, db: Session = Depends(get_db)):
    """Remove the integration. Synced orders and products are kept."""
    tenant = CredentialStore(db).clear_credentials(tenant_id)
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {tenant_id} not found")
    return _to_response(tenant)
