from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel


class StrategyResultResponse(BaseModel):
    name: str
    data_type: str
    cost: int
    status: str
    fetched: int = 0
    created: int = 0
    updated: int = 0
    stale: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    mapping_gaps: int = 0


class SyncSessionResponse(BaseModel):
    session_id: str
    tenant_id: str
    trigger_type: str
    state: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    initial_credits: int
    remaining_credits: int
    credits_used: int
    completed_strategies: List[str] = []
    failed_strategies: List[str] = []
    rejected_strategies: List[str] = []
    results: List[StrategyResultResponse] = []
    counts: Dict[str, int] = {}
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    recommendation: Optional[str] = None


class BudgetResponse(BaseModel):
    tenant_id: str
    initial: int
    remaining: int
    reserved: int
    state: str


class ResetRequest(BaseModel):
    budget: Optional[int] = None


class SyncStatusInDB(BaseModel):
    data_type: str
    last_sync_at: datetime
    last_success_at: Optional[datetime] = None
    last_outcome: str
    records_processed: int
    error_count: int
    error_details: Optional[List[Dict[str, Any]]] = None
    next_scheduled_sync: Optional[datetime] = None

    class Config:
        from_attributes = True


class TenantSyncStatusResponse(BaseModel):
    tenant_id: str
    integration_status: str
    running: bool
    statuses: List[SyncStatusInDB] = []
    budget: Optional[BudgetResponse] = None
    last_session: Optional[SyncSessionResponse] = None
