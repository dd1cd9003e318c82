"""Error taxonomy shared by the connectors, the scheduler and the webhook path."""

from typing import Optional


class SyncError(Exception):
    """Base class for all engine errors."""


class ConnectorError(SyncError):
    """Raised by external system adapters."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(ConnectorError):
    """Credentials rejected by the external system. Never retried."""


class RateLimited(ConnectorError):
    """Upstream throttled the request (HTTP 429 or credit exhaustion)."""

    def __init__(self, message: str, retry_after: Optional[float] = None, status_code: Optional[int] = 429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class TransientNetworkError(ConnectorError):
    """Connection failure or timeout talking to the external system."""


class UpstreamError(ConnectorError):
    """Any other non-success response from the external system."""


class CircuitOpen(UpstreamError):
    """Calls to the external system are suspended after repeated failures."""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        super().__init__(f"Circuit breaker {name} is open")
        self.retry_after = retry_after


class BudgetInsufficientForRequired(SyncError):
    """The remaining credit budget cannot cover the required strategies."""

    def __init__(self, tenant_id: str, required_cost: int, available: int):
        super().__init__(
            f"Tenant {tenant_id}: required strategies need {required_cost} credits, only {available} available"
        )
        self.tenant_id = tenant_id
        self.required_cost = required_cost
        self.available = available


class SyncAlreadyRunning(SyncError):
    """A session for the tenant is already active."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Sync already running for tenant {tenant_id}")
        self.tenant_id = tenant_id


class IntegrationNotConfigured(SyncError):
    """The tenant has no usable external-system credentials."""

    def __init__(self, tenant_id: str):
        super().__init__(f"Tenant {tenant_id} has no configured integration")
        self.tenant_id = tenant_id


class InvalidSignature(SyncError):
    """Webhook signature missing or not matching the shared secret."""


class MalformedPayload(SyncError):
    """Webhook body is not a JSON object."""
