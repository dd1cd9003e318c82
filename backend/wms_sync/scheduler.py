"""APScheduler integration for periodic sync sessions."""

import asyncio
import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from wms_sync.config import settings
from wms_sync.constants.sync import IntegrationStatus, TriggerType
from wms_sync.exceptions import SyncError
from wms_sync.models.tenant import Tenant
from wms_sync.services.status_tracker import SyncStatusTracker
from wms_sync.services.sync_service import SyncSessionScheduler
from wms_sync.utils.dates import utcnow

log = logging.getLogger(__name__)

JOB_ID = "periodic_sync"

# Global scheduler instance
scheduler = AsyncIOScheduler()


def due_tenants(sync_scheduler: SyncSessionScheduler) -> List[str]:
    """Connected (or connecting) tenants whose status says a sync is due."""
    db = sync_scheduler.session_factory()
    try:
        tenants = (
            db.query(Tenant)
            .filter(
                Tenant.integration_type.isnot(None),
                Tenant.integration_status.in_(
                    [IntegrationStatus.CONNECTING.value, IntegrationStatus.CONNECTED.value]
                ),
            )
            .all()
        )
        tracker = SyncStatusTracker(db)
        now = utcnow()
        return [t.id for t in tenants if tracker.is_due(t.id, now) and not sync_scheduler.is_running(t.id)]
    finally:
        db.close()


async def _run_one(sync_scheduler: SyncSessionScheduler, tenant_id: str) -> None:
    try:
        await sync_scheduler.run_session(tenant_id, TriggerType.SCHEDULED)
    except SyncError as e:
        log.warning(f"Scheduled sync for tenant {tenant_id} did not run: {e}")
    except Exception as e:
        log.error(f"Scheduled sync for tenant {tenant_id} failed: {e}", exc_info=True)


async def scheduled_sync_job(sync_scheduler: SyncSessionScheduler) -> None:
    """Start sessions for every due tenant; tenants run concurrently."""
    tenant_ids = due_tenants(sync_scheduler)
    if not tenant_ids:
        log.debug("Scheduled sync: no tenants due")
        return
    log.info(f"Scheduled sync starting for {len(tenant_ids)} tenant(s): {tenant_ids}")
    await asyncio.gather(*(_run_one(sync_scheduler, tenant_id) for tenant_id in tenant_ids))


def start_scheduler(sync_scheduler: SyncSessionScheduler, interval_minutes: Optional[int] = None):
    """Register the periodic job and start APScheduler."""
    minutes = interval_minutes or settings.sync_interval_minutes
    if scheduler.get_job(JOB_ID):
        scheduler.remove_job(JOB_ID)
    scheduler.add_job(
        scheduled_sync_job,
        IntervalTrigger(minutes=minutes),
        args=[sync_scheduler],
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()
        log.info(f"APScheduler started, periodic sync every {minutes} minute(s)")


def shutdown_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("APScheduler shut down successfully")
