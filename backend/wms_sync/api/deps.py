from fastapi import Request

from wms_sync.services.sync_service import SyncSessionScheduler


def get_sync_scheduler(request: Request) -> SyncSessionScheduler:
    """The process-wide session scheduler created at app start-up."""
    return request.app.state.sync_scheduler
