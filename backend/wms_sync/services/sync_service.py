"""
Sync session orchestration.

A session walks the strategy catalog in priority order for one tenant,
admitting each strategy against the tenant's credit ledger, paging through
the external system and merging every record through the EntityReconciler.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.connectors import get_connector
from wms_sync.connectors.base import BaseConnector
from wms_sync.constants.sync import DataType, IntegrationStatus, SyncOutcome, TriggerType
from wms_sync.database import SessionLocal
from wms_sync.exceptions import (
    AuthError,
    BudgetInsufficientForRequired,
    ConnectorError,
    IntegrationNotConfigured,
    SyncAlreadyRunning,
)
from wms_sync.services.budget import CreditBudgetManager, CreditLedger
from wms_sync.services.credentials import CredentialStore
from wms_sync.services.reconciler import EntityReconciler, MergeAction
from wms_sync.services.status_tracker import SyncCounts, SyncStatusTracker
from wms_sync.services.strategies import SyncStrategy, SyncStrategyCatalog
from wms_sync.utils.circuit_breaker import CircuitBreaker
from wms_sync.utils.dates import ensure_aware, utcnow
from wms_sync.utils.locks import KeyedLock

log = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FAILED = "failed"


class StrategyStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass
class StrategyResult:
    name: str
    data_type: DataType
    cost: int
    status: StrategyStatus = StrategyStatus.COMPLETED
    fetched: int = 0
    created: int = 0
    updated: int = 0
    stale: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    error_details: List[Dict[str, Any]] = field(default_factory=list)
    mapping_gaps: int = 0


@dataclass
class SyncSession:
    session_id: str
    tenant_id: str
    trigger_type: TriggerType
    started_at: datetime
    finished_at: Optional[datetime] = None
    initial_credits: int = 0
    remaining_credits: int = 0
    state: SessionState = SessionState.IDLE
    completed_strategies: List[str] = field(default_factory=list)
    failed_strategies: List[str] = field(default_factory=list)
    rejected_strategies: List[str] = field(default_factory=list)
    results: List[StrategyResult] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=lambda: {t.value: 0 for t in DataType})
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    recommendation: Optional[str] = None

    @property
    def credits_used(self) -> int:
        return self.initial_credits - self.remaining_credits

    def summary(self) -> Dict[str, Any]:
        data = asdict(self)
        data["trigger_type"] = self.trigger_type.value
        data["state"] = self.state.value
        for result in data["results"]:
            result["data_type"] = DataType(result["data_type"]).value
            result["status"] = StrategyStatus(result["status"]).value
        data["credits_used"] = self.credits_used
        return data


class SyncSessionScheduler:
    """
    Runs at most one session per tenant at a time.

    Sessions for different tenants may run concurrently. A trigger for a
    tenant whose session is still running is rejected with SyncAlreadyRunning.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        budget: Optional[CreditBudgetManager] = None,
        catalog: Optional[SyncStrategyCatalog] = None,
        connector_factory: Optional[Callable[..., BaseConnector]] = None,
        connector_options: Optional[Dict[str, Any]] = None,
    ):
        self.session_factory = session_factory
        self.budget = budget or CreditBudgetManager()
        self.catalog = catalog or SyncStrategyCatalog()
        self.connector_factory = connector_factory or get_connector
        self.connector_options = connector_options or {}
        self.lock = KeyedLock()
        self._sessions: Dict[str, SyncSession] = {}
        self.breakers: Dict[str, CircuitBreaker] = {}

    def get_session(self, tenant_id: str) -> Optional[SyncSession]:
        return self._sessions.get(tenant_id)

    def is_running(self, tenant_id: str) -> bool:
        return self.lock.is_held(tenant_id)

    def breaker_for(self, integration_type) -> CircuitBreaker:
        """One breaker per external system, shared by every tenant's sessions."""
        key = getattr(integration_type, "value", integration_type)
        breaker = self.breakers.get(key)
        if breaker is None:
            breaker = CircuitBreaker(
                key,
                failure_threshold=settings.circuit_failure_threshold,
                reset_timeout=settings.circuit_reset_seconds,
            )
            self.breakers[key] = breaker
        return breaker

    def reset_session(self, tenant_id: str, budget: Optional[int] = None) -> CreditLedger:
        """Restore the tenant's credits. Refused while a session is running."""
        if self.lock.is_held(tenant_id):
            raise SyncAlreadyRunning(tenant_id)
        self._sessions.pop(tenant_id, None)
        return self.budget.reset(tenant_id, budget)

    async def run_session(self, tenant_id: str, trigger_type: TriggerType = TriggerType.MANUAL) -> SyncSession:
        with self.lock.hold(tenant_id):
            db = self.session_factory()
            try:
                return await self._run(db, tenant_id, TriggerType(trigger_type))
            finally:
                db.close()

    def _since(self, tracker: SyncStatusTracker, tenant_id: str, strategy: SyncStrategy, now: datetime) -> Optional[datetime]:
        if strategy.lookback is not None:
            return now - strategy.lookback
        status = tracker.get_status(tenant_id, strategy.data_type)
        if status is None or status.last_success_at is None:
            return None
        return ensure_aware(status.last_success_at) - timedelta(minutes=settings.incremental_overlap_minutes)

    async def _run(self, db: Session, tenant_id: str, trigger_type: TriggerType) -> SyncSession:
        session = SyncSession(
            session_id=uuid.uuid4().hex,
            tenant_id=tenant_id,
            trigger_type=trigger_type,
            started_at=utcnow(),
            state=SessionState.RUNNING,
        )
        self._sessions[tenant_id] = session
        log.info(f"Starting {trigger_type.value} sync session {session.session_id} for tenant {tenant_id}")

        store = CredentialStore(db)
        credentials = store.get_credentials(tenant_id)
        if credentials is None:
            self._fail(session, f"Tenant {tenant_id} has no configured integration")
            raise IntegrationNotConfigured(tenant_id)

        tracker = SyncStatusTracker(db)
        try:
            ledger = self.budget.open(tenant_id, self.catalog.required)
        except BudgetInsufficientForRequired as e:
            self._fail(session, str(e))
            ledger = self.budget.get_ledger(tenant_id)
            session.initial_credits = session.remaining_credits = ledger.remaining if ledger else 0
            for data_type in dict.fromkeys(s.data_type for s in self.catalog.required):
                tracker.record(
                    tenant_id, data_type, SyncOutcome.ERROR,
                    SyncCounts(error_count=1, error_details=[{"error": str(e)}]),
                )
            raise
        session.initial_credits = ledger.remaining

        reconciler = EntityReconciler(db)
        touched: Dict[DataType, List[StrategyResult]] = {}
        abort_error: Optional[Exception] = None
        stop_opportunistic = False

        options = dict(self.connector_options)
        options.setdefault("circuit_breaker", self.breaker_for(credentials.integration_type))
        connector = self.connector_factory(credentials, **options)
        async with connector:
            for strategy in self.catalog:
                if stop_opportunistic and not strategy.required:
                    self._reject(session, strategy, "skipped after a higher-priority strategy was rejected")
                    continue

                admission = self.budget.try_admit(tenant_id, strategy)
                if not admission.admitted:
                    if strategy.required:
                        abort_error = BudgetInsufficientForRequired(tenant_id, strategy.cost, admission.remaining)
                        session.error_message = str(abort_error)
                        result = StrategyResult(strategy.name, strategy.data_type, strategy.cost,
                                                status=StrategyStatus.FAILED, error_message=str(abort_error))
                        self._collect(session, result)
                        touched.setdefault(strategy.data_type, []).append(result)
                        break
                    self._reject(session, strategy, admission.reason)
                    stop_opportunistic = True
                    continue

                try:
                    result = await self._run_strategy(connector, reconciler, tracker, tenant_id, strategy)
                except AuthError as e:
                    log.error(f"Authentication failed for tenant {tenant_id}, aborting session: {e}")
                    result = StrategyResult(strategy.name, strategy.data_type, strategy.cost,
                                            status=StrategyStatus.FAILED, error_message=str(e))
                    abort_error = e
                    session.error_message = str(e)
                    store.mark_status(tenant_id, IntegrationStatus.ERROR, str(e))

                self._collect(session, result)
                touched.setdefault(strategy.data_type, []).append(result)
                if abort_error is not None:
                    break

        for data_type, results in touched.items():
            tracker.record(tenant_id, data_type, self._outcome_for(results), self._counts_for(results))

        if abort_error is not None:
            session.state = SessionState.FAILED
        elif session.failed_strategies:
            session.state = SessionState.PARTIALLY_FAILED
        elif session.rejected_strategies:
            session.state = SessionState.BUDGET_EXHAUSTED
        else:
            session.state = SessionState.COMPLETED

        ledger = self.budget.close(tenant_id, exhausted=bool(session.rejected_strategies) or abort_error is not None)
        session.remaining_credits = ledger.remaining
        session.recommendation = self.catalog.next_recommendation(ledger.remaining, session.completed_strategies)
        session.finished_at = utcnow()

        if session.state != SessionState.FAILED:
            store.mark_status(tenant_id, IntegrationStatus.CONNECTED)

        log.info(
            f"Sync session {session.session_id} for tenant {tenant_id} finished: {session.state.value}, "
            f"created={session.created}, updated={session.updated}, errors={session.errors}, "
            f"credits used={session.credits_used}, remaining={session.remaining_credits}"
        )
        if isinstance(abort_error, BudgetInsufficientForRequired):
            raise abort_error
        return session

    async def _run_strategy(
        self,
        connector: BaseConnector,
        reconciler: EntityReconciler,
        tracker: SyncStatusTracker,
        tenant_id: str,
        strategy: SyncStrategy,
    ) -> StrategyResult:
        result = StrategyResult(strategy.name, strategy.data_type, strategy.cost)
        try:
            since = self._since(tracker, tenant_id, strategy, utcnow())
            log.info(f"Tenant {tenant_id}: running strategy '{strategy.name}' (cost {strategy.cost}, since {since})")
            async for page in connector.iter_pages(strategy.data_type, since=since):
                self.budget.observe_remaining(tenant_id, page.credits_remaining)
                for raw in page.items:
                    result.fetched += 1
                    try:
                        record = connector.parse(strategy.data_type, raw)
                        merged = reconciler.merge(strategy.data_type, tenant_id, record)
                    except Exception as e:
                        result.errors += 1
                        record_id = raw.get("id") if isinstance(raw, dict) else None
                        result.error_details.append({"record_id": record_id, "error": f"{e.__class__.__name__}: {e}"})
                        log.warning(f"Tenant {tenant_id}: failed to merge {strategy.data_type.value} record {record_id}: {e}")
                        continue

                    if merged.action == MergeAction.CREATED:
                        result.created += 1
                    elif merged.action == MergeAction.UPDATED:
                        result.updated += 1
                    else:
                        result.stale += 1
                    result.mapping_gaps += len(merged.mapping_gaps)
        except AuthError:
            raise
        except ConnectorError as e:
            log.error(f"Tenant {tenant_id}: strategy '{strategy.name}' failed: {e}")
            result.status = StrategyStatus.FAILED
            result.error_message = str(e)
        except Exception as e:
            log.error(f"Tenant {tenant_id}: strategy '{strategy.name}' failed unexpectedly: {e}", exc_info=True)
            tracker.db.rollback()
            result.status = StrategyStatus.FAILED
            result.error_message = f"{e.__class__.__name__}: {e}"
        return result

    def _collect(self, session: SyncSession, result: StrategyResult) -> None:
        session.results.append(result)
        session.counts[result.data_type.value] += result.fetched
        session.created += result.created
        session.updated += result.updated
        session.errors += result.errors
        if result.status == StrategyStatus.COMPLETED:
            session.completed_strategies.append(result.name)
        else:
            session.failed_strategies.append(result.name)

    def _reject(self, session: SyncSession, strategy: SyncStrategy, reason: Optional[str]) -> None:
        session.rejected_strategies.append(strategy.name)
        session.results.append(
            StrategyResult(strategy.name, strategy.data_type, strategy.cost,
                           status=StrategyStatus.REJECTED, error_message=reason)
        )

    def _fail(self, session: SyncSession, message: str) -> None:
        session.state = SessionState.FAILED
        session.error_message = message
        session.finished_at = utcnow()
        log.warning(f"Sync session {session.session_id} for tenant {session.tenant_id} failed: {message}")

    @staticmethod
    def _outcome_for(results: List[StrategyResult]) -> SyncOutcome:
        if all(r.status == StrategyStatus.FAILED for r in results):
            return SyncOutcome.ERROR
        if any(r.status == StrategyStatus.FAILED or r.errors for r in results):
            return SyncOutcome.PARTIAL
        return SyncOutcome.SUCCESS

    @staticmethod
    def _counts_for(results: List[StrategyResult]) -> SyncCounts:
        details: List[Dict[str, Any]] = []
        for r in results:
            if r.error_message:
                details.append({"strategy": r.name, "error": r.error_message})
            details.extend(dict(d, strategy=r.name) for d in r.error_details)
        return SyncCounts(
            records_processed=sum(r.created + r.updated + r.stale for r in results),
            error_count=sum(r.errors + (1 if r.status == StrategyStatus.FAILED else 0) for r in results),
            error_details=details,
        )
