import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, field_validator

from wms_sync.constants.sync import DataType
from wms_sync.exceptions import (
    AuthError,
    ConnectorError,
    RateLimited,
    TransientNetworkError,
    UpstreamError,
)
from wms_sync.utils.circuit_breaker import CircuitBreaker

log = logging.getLogger(__name__)


def _coerce_id(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    return str(value)


class ExternalLineItem(BaseModel):
    """Normalized order line item."""
    external_id: Optional[str] = Field(None, description="Line item ID in the source system")
    sku: Optional[str] = Field(None, description="SKU of the ordered product")
    product_name: Optional[str] = Field(None, description="Product title as shown on the order")
    quantity: int = Field(0, ge=0)
    quantity_allocated: int = Field(0, ge=0)
    quantity_shipped: int = Field(0, ge=0)
    unit_price: Optional[Decimal] = None
    fulfillment_status: Optional[str] = None

    coerce_ids = field_validator("external_id", "sku", mode="before")(_coerce_id)


class ExternalOrder(BaseModel):
    """Normalized order structure shared by pulls and webhooks."""
    external_id: str = Field(..., min_length=1, description="Order ID in the source system (reconciliation key)")
    source: str = Field(..., description="System family the order came from ('trackstar', 'shiphero')")
    order_number: str = Field(..., min_length=1, description="Human-readable order number (fallback key)")
    status: Optional[str] = Field(None, description="Raw status string from the source system")
    fulfillment_status: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    order_date: Optional[datetime] = None
    allocated_at: Optional[datetime] = None
    packed_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: Optional[datetime] = Field(None, description="Last modification time in the source system")
    line_items: List[ExternalLineItem] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original payload")

    coerce_ids = field_validator("external_id", "order_number", "tracking_number", mode="before")(_coerce_id)


class ExternalProduct(BaseModel):
    """Normalized product structure."""
    external_id: str = Field(..., min_length=1)
    source: str
    sku: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    weight: Optional[Decimal] = None
    dimensions: Optional[Dict[str, Any]] = None
    barcode: Optional[str] = None
    updated_at: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    coerce_ids = field_validator("external_id", "sku", "barcode", mode="before")(_coerce_id)


class ExternalInventory(BaseModel):
    """Normalized stock level of one SKU in one warehouse."""
    external_id: str = Field(..., min_length=1)
    source: str
    sku: str = Field(..., min_length=1)
    product_external_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    warehouse_name: Optional[str] = None
    on_hand: int = 0
    available: int = 0
    allocated: int = 0
    location: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    coerce_ids = field_validator("external_id", "sku", "product_external_id", "warehouse_id", mode="before")(_coerce_id)


class ExternalShipment(BaseModel):
    """Normalized shipment structure."""
    external_id: str = Field(..., min_length=1)
    source: str
    order_external_id: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    service: Optional[str] = None
    status: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict)

    coerce_ids = field_validator("external_id", "order_external_id", "tracking_number", mode="before")(_coerce_id)


@dataclass
class Page:
    """One page of results plus the cursor for the next one (None at end of data)."""
    items: List[Any]
    next_cursor: Optional[str] = None
    credits_remaining: Optional[int] = None


class BaseConnector(ABC):
    """
    Abstract Base Class for external WMS adapters.

    Subclasses translate domain calls into one system family's request and
    response shapes. Credentials and tuning knobs come in through the config
    dict; the connector holds no other state.
    """

    name: str = "base"
    default_page_size: int = 1000

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.base_url = config["base_url"]
        self.access_token = config.get("access_token")
        self.api_key = config.get("api_key")
        self.connection_id = config.get("connection_id")
        self.page_size = int(config.get("page_size") or self.default_page_size)
        self.max_pages = int(config.get("max_pages", 100))
        self.max_attempts = max(1, int(config.get("max_attempts", 3)))
        self.backoff_base = float(config.get("backoff_base", 2.0))
        self.max_backoff = float(config.get("max_backoff", 300.0))
        self._sleep: Callable[[float], Awaitable[Any]] = config.get("sleep") or asyncio.sleep
        self.breaker: Optional[CircuitBreaker] = config.get("circuit_breaker")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=float(config.get("timeout", 30.0)),
            transport=config.get("transport"),
        )
        log.debug(f"{self.name} connector initialized with base URL: {self.base_url}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    @property
    @abstractmethod
    def headers(self) -> Dict[str, str]:
        """Authentication headers sent with every request."""

    def _check_payload(self, payload: Any) -> None:
        """Hook for payload-level errors reported with a 200 status (e.g. GraphQL errors)."""

    def _backoff_delay(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(max(retry_after, 0.0), self.max_backoff)
        return min(self.backoff_base * (2 ** (attempt - 1)), self.max_backoff)

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> Optional[float]:
        for header in ("Retry-After", "x-rate-limit-retry-after"):
            value = response.headers.get(header)
            if value:
                try:
                    return float(value)
                except ValueError:
                    continue
        return None

    async def _send_once(self, method: str, path: str, **kwargs) -> Any:
        log.trace(f"{self.name} API {method} {path} params: {kwargs.get('params', 'none')}")
        try:
            response = await self.client.request(method, path, headers=self.headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method} {path} failed: {e.__class__.__name__}: {e}") from e

        log.trace(f"{self.name} API response for {path}: {response.status_code}")
        if response.status_code in (401, 403):
            raise AuthError(
                f"{self.name} rejected credentials for {path}: {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 429:
            raise RateLimited(
                f"{self.name} rate limited {path}",
                retry_after=self._parse_retry_after(response),
            )
        if response.is_error:
            raise UpstreamError(
                f"{self.name} returned {response.status_code} for {path}: {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(f"{self.name} returned invalid JSON for {path}", status_code=response.status_code) from e

        self._check_payload(payload)
        return payload

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """
        Authenticated request with bounded retry on rate limits and network errors.

        With a circuit breaker configured, a request that still fails after its
        retries counts as one breaker failure. Auth and 4xx errors do not count.
        """
        if self.breaker is not None:
            self.breaker.before_call()
        attempt = 0
        while True:
            attempt += 1
            try:
                payload = await self._send_once(method, path, **kwargs)
            except (RateLimited, TransientNetworkError) as e:
                if attempt >= self.max_attempts:
                    log.error(f"{self.name} {method} {path} giving up after {attempt} attempts: {e}")
                    self._record_failure(e)
                    raise
                delay = self._backoff_delay(attempt, getattr(e, "retry_after", None))
                log.warning(f"{self.name} {method} {path} attempt {attempt} failed ({e}); retrying in {delay:.1f}s")
                await self._sleep(delay)
            except ConnectorError as e:
                log.error(f"{self.name} {method} {path} failed: {e}")
                self._record_failure(e)
                raise
            else:
                if self.breaker is not None:
                    self.breaker.record_success()
                return payload

    def _record_failure(self, error: ConnectorError) -> None:
        if self.breaker is None or isinstance(error, AuthError):
            return
        if isinstance(error, UpstreamError) and error.status_code is not None and error.status_code < 500:
            return
        self.breaker.record_failure()

    def _fetchers(self) -> Dict[DataType, Callable[..., Awaitable[Page]]]:
        return {
            DataType.ORDERS: self.fetch_orders,
            DataType.PRODUCTS: self.fetch_products,
            DataType.INVENTORY: self.fetch_inventory,
            DataType.SHIPMENTS: self.fetch_shipments,
        }

    async def iter_pages(self, data_type: DataType, since: Optional[datetime] = None) -> AsyncIterator[Page]:
        """
        Yield pages until the cursor runs out or max_pages is hit.

        An empty page with a cursor is not end-of-data: adapters that flatten
        nested records (ShipHero inventory) can yield nothing for a page that
        still has more behind it.
        """
        fetch = self._fetchers()[DataType(data_type)]
        cursor: Optional[str] = None
        for page_number in range(1, self.max_pages + 1):
            page = await fetch(since=since, cursor=cursor)
            log.debug(f"{self.name} {data_type.value} page {page_number}: {len(page.items)} records")
            yield page
            if not page.next_cursor:
                return
            cursor = page.next_cursor
        log.warning(f"Pagination limit reached for {self.name} {data_type.value}, stopping at page {self.max_pages}")

    @abstractmethod
    async def fetch_orders(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        """Fetches one page of orders updated since the given time."""

    @abstractmethod
    async def fetch_products(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        """Fetches one page of products."""

    @abstractmethod
    async def fetch_inventory(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        """Fetches one page of inventory records."""

    @abstractmethod
    async def fetch_shipments(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        """Fetches one page of shipments."""

    @abstractmethod
    def parse_order(self, raw: Dict[str, Any]) -> ExternalOrder:
        """Normalizes a raw order payload."""

    @abstractmethod
    def parse_product(self, raw: Dict[str, Any]) -> ExternalProduct:
        """Normalizes a raw product payload."""

    @abstractmethod
    def parse_inventory(self, raw: Dict[str, Any]) -> ExternalInventory:
        """Normalizes a raw inventory payload."""

    @abstractmethod
    def parse_shipment(self, raw: Dict[str, Any]) -> ExternalShipment:
        """Normalizes a raw shipment payload."""

    def parse(self, data_type: DataType, raw: Dict[str, Any]) -> BaseModel:
        parsers = {
            DataType.ORDERS: self.parse_order,
            DataType.PRODUCTS: self.parse_product,
            DataType.INVENTORY: self.parse_inventory,
            DataType.SHIPMENTS: self.parse_shipment,
        }
        return parsers[DataType(data_type)](raw)


def first(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first non-empty value among the given keys."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return default


def to_int(value: Any, default: int = 0) -> int:
    if value in (None, ""):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default
