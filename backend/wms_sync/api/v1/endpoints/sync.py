import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from wms_sync.api.deps import get_sync_scheduler
from wms_sync.constants.sync import TriggerType
from wms_sync.database import get_db
from wms_sync.exceptions import BudgetInsufficientForRequired, IntegrationNotConfigured, SyncAlreadyRunning
from wms_sync.models.tenant import Tenant
from wms_sync.schemas.sync import (
    BudgetResponse,
    ResetRequest,
    SyncSessionResponse,
    SyncStatusInDB,
    TenantSyncStatusResponse,
)
from wms_sync.services.status_tracker import SyncStatusTracker
from wms_sync.services.sync_service import SyncSessionScheduler

log = logging.getLogger(__name__)
router = APIRouter()


def _get_tenant_or_404(db: Session, tenant_id: str) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Tenant {tenant_id} not found")
    return tenant


@router.post("/{tenant_id}/run", response_model=SyncSessionResponse)
async def run_sync(
    tenant_id: str,
    db: Session = Depends(get_db),
    sync_scheduler: SyncSessionScheduler = Depends(get_sync_scheduler),
):
    """Start a sync session for the tenant immediately."""
    _get_tenant_or_404(db, tenant_id)
    log.info(f"Manual sync requested for tenant {tenant_id}")
    try:
        session = await sync_scheduler.run_session(tenant_id, TriggerType.MANUAL)
    except SyncAlreadyRunning as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except IntegrationNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(e))
    except BudgetInsufficientForRequired as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))
    return session.summary()


@router.post("/{tenant_id}/reset", response_model=BudgetResponse)
async def reset_budget(
    tenant_id: str,
    request: Optional[ResetRequest] = None,
    db: Session = Depends(get_db),
    sync_scheduler: SyncSessionScheduler = Depends(get_sync_scheduler),
):
    """Restore the tenant's credit budget. Refused while a session is running."""
    _get_tenant_or_404(db, tenant_id)
    try:
        ledger = sync_scheduler.reset_session(tenant_id, request.budget if request else None)
    except SyncAlreadyRunning as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return BudgetResponse(
        tenant_id=tenant_id,
        initial=ledger.initial,
        remaining=ledger.remaining,
        reserved=ledger.reserved,
        state=ledger.state.value,
    )


@router.get("/{tenant_id}/status", response_model=TenantSyncStatusResponse)
async def get_sync_status(
    tenant_id: str,
    db: Session = Depends(get_db),
    sync_scheduler: SyncSessionScheduler = Depends(get_sync_scheduler),
):
    """Per-data-type status rows plus the tenant's budget and last session."""
    tenant = _get_tenant_or_404(db, tenant_id)
    statuses = SyncStatusTracker(db).list_statuses(tenant_id)
    ledger = sync_scheduler.budget.get_ledger(tenant_id)
    session = sync_scheduler.get_session(tenant_id)
    return TenantSyncStatusResponse(
        tenant_id=tenant_id,
        integration_status=tenant.integration_status,
        running=sync_scheduler.is_running(tenant_id),
        statuses=[SyncStatusInDB.model_validate(s) for s in statuses],
        budget=BudgetResponse(
            tenant_id=tenant_id,
            initial=ledger.initial,
            remaining=ledger.remaining,
            reserved=ledger.reserved,
            state=ledger.state.value,
        ) if ledger else None,
        last_session=SyncSessionResponse(**session.summary()) if session else None,
    )
