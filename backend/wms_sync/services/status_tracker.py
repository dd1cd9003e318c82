"""Durable per-tenant, per-data-type sync status."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.constants.sync import DataType, SyncOutcome
from wms_sync.models.sync_status import SyncStatus
from wms_sync.utils.dates import ensure_aware, utcnow

log = logging.getLogger(__name__)


@dataclass
class SyncCounts:
    records_processed: int = 0
    error_count: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)


class SyncStatusTracker:
    """Upserts one SyncStatus row per (tenant, data type); the row always reflects the latest attempt."""

    def __init__(self, db: Session, interval_minutes: Optional[int] = None):
        self.db = db
        self.interval = timedelta(minutes=interval_minutes or settings.sync_interval_minutes)

    def record(
        self,
        tenant_id: str,
        data_type: DataType,
        outcome: SyncOutcome,
        counts: SyncCounts,
        at: Optional[datetime] = None,
    ) -> SyncStatus:
        at = at or utcnow()
        data_type = DataType(data_type)
        status = self.get_status(tenant_id, data_type)
        if status is None:
            status = SyncStatus(tenant_id=tenant_id, data_type=data_type.value)
            self.db.add(status)

        status.last_sync_at = at
        status.last_outcome = SyncOutcome(outcome).value
        if outcome != SyncOutcome.ERROR:
            status.last_success_at = at
        status.records_processed = counts.records_processed
        status.error_count = counts.error_count
        status.error_details = counts.error_details[: settings.max_error_details] or None
        status.next_scheduled_sync = at + self.interval
        self.db.commit()
        log.debug(
            f"Recorded {data_type.value} status for tenant {tenant_id}: {status.last_outcome}, "
            f"{counts.records_processed} processed, {counts.error_count} errors"
        )
        return status

    def get_status(self, tenant_id: str, data_type: DataType) -> Optional[SyncStatus]:
        return (
            self.db.query(SyncStatus)
            .filter(SyncStatus.tenant_id == tenant_id, SyncStatus.data_type == DataType(data_type).value)
            .first()
        )

    def list_statuses(self, tenant_id: str) -> List[SyncStatus]:
        return (
            self.db.query(SyncStatus)
            .filter(SyncStatus.tenant_id == tenant_id)
            .order_by(SyncStatus.data_type)
            .all()
        )

    def is_due(self, tenant_id: str, now: Optional[datetime] = None) -> bool:
        """A tenant is due when it has never synced or any row's next run time has passed."""
        now = now or utcnow()
        statuses = self.list_statuses(tenant_id)
        if not statuses:
            return True
        return any(
            s.next_scheduled_sync is None or ensure_aware(s.next_scheduled_sync) <= now
            for s in statuses
        )
