"""
Inbound push notifications from external WMS systems.

Webhooks share the EntityReconciler merge path with scheduled pulls and
bypass the credit budget. Anything the processor can absorb is acknowledged
with a 200: upstream systems disable endpoints that keep failing.
"""

import hashlib
import hmac
import json
import logging
from datetime import datetime
from typing import Annotated, Any, Callable, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from sqlalchemy.orm import Session

from wms_sync.config import settings
from wms_sync.connectors import get_connector
from wms_sync.connectors.base import BaseConnector
from wms_sync.constants.order_status import OrderStatus
from wms_sync.constants.sync import DataType, IntegrationStatus, SyncOutcome
from wms_sync.exceptions import InvalidSignature, MalformedPayload
from wms_sync.models.tenant import Tenant
from wms_sync.services.credentials import CredentialStore, Credentials
from wms_sync.services.reconciler import EntityReconciler, MergeResult
from wms_sync.services.status_tracker import SyncCounts, SyncStatusTracker
from wms_sync.utils.dates import parse_timestamp, utcnow

log = logging.getLogger(__name__)

# Event names as sent by the providers, singular and plural spellings alike
EVENT_KINDS: Dict[str, str] = {
    "order.created": "order",
    "order.updated": "order",
    "orders.created": "order",
    "orders.updated": "order",
    "orders.shipped": "order_shipped",
    "order.shipped": "order_shipped",
    "orders.cancelled": "order_cancelled",
    "orders.canceled": "order_cancelled",
    "order.cancelled": "order_cancelled",
    "order.canceled": "order_cancelled",
    "shipment.created": "shipment",
    "shipment.updated": "shipment",
    "shipments.created": "shipment",
    "shipments.updated": "shipment",
    "order.shipment.created": "shipment",
    "product.created": "product",
    "product.updated": "product",
    "products.created": "product",
    "products.updated": "product",
    "inventory.updated": "inventory",
    "connection.historical-sync-completed": "historical_sync",
}


def _require_any(data: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    if not any(data.get(key) not in (None, "") for key in keys):
        raise ValueError(f"payload needs one of: {', '.join(keys)}")
    return data


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: str
    connection_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class OrderEvent(_Event):
    kind: Literal["order"]
    data: Dict[str, Any]

    @field_validator("data")
    @classmethod
    def _has_id(cls, v):
        return _require_any(v, "id", "order_id")


class OrderStatusEvent(_Event):
    kind: Literal["order_shipped", "order_cancelled"]
    data: Dict[str, Any]

    @field_validator("data")
    @classmethod
    def _has_id(cls, v):
        return _require_any(v, "id", "order_id")


class ShipmentEvent(_Event):
    kind: Literal["shipment"]
    data: Dict[str, Any]

    @field_validator("data")
    @classmethod
    def _has_id(cls, v):
        return _require_any(v, "id", "shipment_id")


class ProductEvent(_Event):
    kind: Literal["product"]
    data: Dict[str, Any]

    @field_validator("data")
    @classmethod
    def _has_id(cls, v):
        return _require_any(v, "id", "product_id")


class InventoryEvent(_Event):
    kind: Literal["inventory"]
    data: Dict[str, Any]

    @field_validator("data")
    @classmethod
    def _has_sku(cls, v):
        return _require_any(v, "sku")


class HistoricalSyncEvent(_Event):
    kind: Literal["historical_sync"]


class UnknownEvent(_Event):
    kind: Literal["unknown"]


WebhookEvent = Annotated[
    Union[OrderEvent, OrderStatusEvent, ShipmentEvent, ProductEvent, InventoryEvent, HistoricalSyncEvent, UnknownEvent],
    Field(discriminator="kind"),
]
_event_adapter = TypeAdapter(WebhookEvent)


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    timestamp: datetime
    processed: bool = False
    detail: Optional[str] = None


def verify_signature(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 hex digest of the raw body, optionally prefixed with 'sha256='."""
    if not signature:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided.lower())


def parse_event(body: Dict[str, Any]) -> WebhookEvent:
    """Validate an envelope into its tagged variant. Raises pydantic.ValidationError."""
    event_type = str(body.get("event_type") or body.get("type") or "unknown")
    data = body.get("data", body.get("payload"))
    return _event_adapter.validate_python({
        "kind": EVENT_KINDS.get(event_type, "unknown"),
        "event_type": event_type,
        "connection_id": body.get("connection_id") or body.get("account_id"),
        "data": data,
    })


class WebhookProcessor:
    def __init__(
        self,
        db: Session,
        secret: Optional[str] = None,
        connector_factory: Callable[..., BaseConnector] = get_connector,
    ):
        self.db = db
        self.secret = secret if secret is not None else settings.webhook_secret
        self.connector_factory = connector_factory
        self.store = CredentialStore(db)
        self.reconciler = EntityReconciler(db)
        self.tracker = SyncStatusTracker(db)

    def _ack(self, event_type: str, processed: bool, detail: Optional[str] = None) -> WebhookAck:
        return WebhookAck(event_type=event_type, timestamp=utcnow(), processed=processed, detail=detail)

    async def handle(self, raw_body: bytes, signature: Optional[str] = None) -> WebhookAck:
        if self.secret:
            if not verify_signature(self.secret, raw_body, signature):
                log.warning("Rejected webhook with missing or invalid signature")
                raise InvalidSignature("Invalid webhook signature")
        else:
            log.warning("No webhook secret configured, accepting unsigned webhook")

        try:
            body = json.loads(raw_body or b"")
        except (ValueError, UnicodeDecodeError) as e:
            raise MalformedPayload(f"Webhook body is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise MalformedPayload("Webhook body must be a JSON object")

        event_type = str(body.get("event_type") or body.get("type") or "unknown")
        try:
            event = parse_event(body)
        except ValidationError as e:
            log.warning(f"Webhook {event_type} failed payload validation: {e.errors()}")
            return self._ack(event_type, False, "invalid_payload")

        if isinstance(event, UnknownEvent):
            log.info(f"Ignoring unhandled webhook event type: {event_type}")
            return self._ack(event_type, False, "unknown_event")

        tenant = self.store.find_by_connection(event.connection_id)
        if tenant is None or not tenant.integration_type:
            log.info(f"Ignoring {event_type} webhook for unknown connection {event.connection_id}")
            return self._ack(event_type, False, "unknown_connection")

        log.info(f"Processing {event_type} webhook for tenant {tenant.id}")
        tenant.last_webhook_at = utcnow()
        self.db.commit()

        if isinstance(event, HistoricalSyncEvent):
            self.store.mark_status(tenant.id, IntegrationStatus.CONNECTED, "Historical sync completed")
            return self._ack(event_type, True)

        return await self._dispatch(tenant, event)

    async def _dispatch(self, tenant: Tenant, event: _Event) -> WebhookAck:
        credentials = self.store.get_credentials(tenant.id)
        if credentials is None:
            return self._ack(event.event_type, False, "unknown_connection")

        try:
            return await self._apply(tenant, event, credentials)
        except Exception as e:
            # Acknowledged with a 200; the error surfaces in SyncStatus
            log.error(f"Webhook {event.event_type} for tenant {tenant.id} could not be processed: {e}", exc_info=True)
            self.db.rollback()
            self.tracker.record(
                tenant.id, self._data_type(event), SyncOutcome.ERROR,
                SyncCounts(error_count=1, error_details=[{"event_type": event.event_type, "error": f"{e.__class__.__name__}: {e}"}]),
            )
            return self._ack(event.event_type, False, "processing_error")

    @staticmethod
    def _data_type(event: _Event) -> DataType:
        return {
            OrderEvent: DataType.ORDERS,
            OrderStatusEvent: DataType.ORDERS,
            ShipmentEvent: DataType.SHIPMENTS,
            ProductEvent: DataType.PRODUCTS,
            InventoryEvent: DataType.INVENTORY,
        }[type(event)]

    async def _apply(self, tenant: Tenant, event: _Event, credentials: Credentials) -> WebhookAck:
        if isinstance(event, OrderStatusEvent):
            status = OrderStatus.SHIPPED if event.kind == "order_shipped" else OrderStatus.CANCELLED
            at = parse_timestamp(
                event.data.get("shipped_date") if status == OrderStatus.SHIPPED
                else event.data.get("cancelled_date") or event.data.get("canceled_date")
            )
            external_id = str(event.data.get("id") or event.data.get("order_id"))
            result = self.reconciler.apply_order_status(tenant.id, external_id, status, at)
            self._record(tenant.id, DataType.ORDERS, result)
            return self._ack(event.event_type, result is not None, None if result else "not_found")

        data_type = self._data_type(event)

        connector = self.connector_factory(credentials)
        try:
            record = connector.parse(data_type, event.data)
        except ValidationError as e:
            log.warning(f"Webhook {event.event_type} payload could not be normalized: {e.errors()}")
            return self._ack(event.event_type, False, "invalid_payload")
        finally:
            await connector.aclose()

        result = self.reconciler.merge(data_type, tenant.id, record)
        for gap in result.mapping_gaps:
            log.warning(f"Mapping gap from webhook: {gap}")
        self._record(tenant.id, data_type, result)
        return self._ack(event.event_type, True)

    def _record(self, tenant_id: str, data_type: DataType, result: Optional[MergeResult]) -> None:
        processed = 1 if result is not None else 0
        self.tracker.record(tenant_id, data_type, SyncOutcome.SUCCESS, SyncCounts(records_processed=processed))
