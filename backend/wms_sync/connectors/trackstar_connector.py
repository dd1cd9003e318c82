import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from wms_sync.connectors.base import (
    BaseConnector,
    ExternalInventory,
    ExternalLineItem,
    ExternalOrder,
    ExternalProduct,
    ExternalShipment,
    Page,
    first,
    to_int,
)
from wms_sync.exceptions import UpstreamError
from wms_sync.utils.dates import parse_timestamp

log = logging.getLogger(__name__)

OFFSET_PREFIX = "offset:"


class TrackstarConnector(BaseConnector):
    """
    Connector for the Trackstar WMS aggregation API (REST).

    Trackstar pages with an opaque `next_token`, but silently caps some
    listings at 1000 records without returning one. A full page with no token
    is followed up with offset paging until a short page comes back.
    """

    name = "trackstar"
    default_page_size = 1000

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["x-trackstar-api-key"] = self.api_key
        if self.access_token:
            headers["x-trackstar-access-token"] = self.access_token
        return headers

    async def _fetch_page(self, path: str, since: Optional[datetime], cursor: Optional[str]) -> Page:
        params: Dict[str, Any] = {"limit": self.page_size}
        offset = 0
        if cursor and cursor.startswith(OFFSET_PREFIX):
            offset = int(cursor[len(OFFSET_PREFIX):])
            params["offset"] = offset
        elif cursor:
            params["page_token"] = cursor
        if since:
            params["updated_date[gte]"] = since.isoformat()

        payload = await self._request("GET", path, params=params)
        if isinstance(payload, list):
            items: List[Dict[str, Any]] = payload
            next_token = None
        elif isinstance(payload, dict):
            items = payload.get("data") or []
            next_token = payload.get("next_token")
        else:
            raise UpstreamError(f"Trackstar returned an unexpected {type(payload).__name__} payload for {path}")
        if not isinstance(items, list):
            raise UpstreamError(f"Trackstar returned a non-list data field for {path}")

        if not items:
            next_cursor = None
        elif next_token:
            next_cursor = next_token
        elif len(items) >= self.page_size:
            next_cursor = f"{OFFSET_PREFIX}{offset + len(items)}"
            log.debug(f"Trackstar {path} returned a full page without next_token, continuing at {next_cursor}")
        else:
            next_cursor = None
        return Page(items=items, next_cursor=next_cursor)

    async def fetch_orders(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        return await self._fetch_page("/wms/orders", since, cursor)

    async def fetch_products(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        return await self._fetch_page("/wms/products", since, cursor)

    async def fetch_inventory(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        return await self._fetch_page("/wms/inventory", since, cursor)

    async def fetch_shipments(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        return await self._fetch_page("/wms/shipments", since, cursor)

    def parse_order(self, raw: Dict[str, Any]) -> ExternalOrder:
        customer = raw.get("customer") or {}
        shipments = raw.get("shipments") or []
        latest_shipment = shipments[-1] if shipments else {}
        line_items = [
            ExternalLineItem(
                external_id=first(item, "id", "line_item_id"),
                sku=item.get("sku"),
                product_name=first(item, "product_name", "name", "title"),
                quantity=to_int(item.get("quantity")),
                quantity_allocated=to_int(first(item, "quantity_allocated", "allocated")),
                quantity_shipped=to_int(first(item, "quantity_shipped", "shipped")),
                unit_price=first(item, "unit_price", "price"),
                fulfillment_status=item.get("fulfillment_status"),
            )
            for item in raw.get("line_items") or []
        ]
        external_id = first(raw, "id", "order_id")
        return ExternalOrder(
            external_id=external_id,
            source=self.name,
            order_number=first(raw, "order_number", "reference_id", default=external_id),
            status=raw.get("status"),
            fulfillment_status=raw.get("fulfillment_status"),
            customer_name=first(raw, "customer_name") or customer.get("name"),
            customer_email=first(raw, "customer_email") or customer.get("email"),
            shipping_address=first(raw, "ship_to_address", "shipping_address"),
            total_amount=first(raw, "total_price", "total", "total_amount"),
            currency=raw.get("currency"),
            tracking_number=first(raw, "tracking_number") or first(latest_shipment, "tracking_number"),
            carrier=first(raw, "carrier") or first(latest_shipment, "carrier"),
            order_date=parse_timestamp(first(raw, "created_date", "order_date", "created_at")),
            allocated_at=parse_timestamp(raw.get("allocated_date")),
            packed_at=parse_timestamp(raw.get("packed_date")),
            shipped_at=parse_timestamp(first(raw, "shipped_date") or first(latest_shipment, "shipped_date")),
            delivered_at=parse_timestamp(raw.get("delivered_date")),
            cancelled_at=parse_timestamp(first(raw, "cancelled_date", "canceled_date")),
            updated_at=parse_timestamp(first(raw, "updated_date", "updated_at")),
            line_items=line_items,
            raw=raw,
        )

    def parse_product(self, raw: Dict[str, Any]) -> ExternalProduct:
        return ExternalProduct(
            external_id=first(raw, "id", "product_id"),
            source=self.name,
            sku=raw.get("sku"),
            name=first(raw, "name", "title", default=raw.get("sku")),
            description=raw.get("description"),
            price=first(raw, "price", "unit_price"),
            weight=raw.get("weight"),
            dimensions=raw.get("dimensions"),
            barcode=first(raw, "gtin", "barcode", "upc"),
            updated_at=parse_timestamp(first(raw, "updated_date", "updated_at")),
            raw=raw,
        )

    def parse_inventory(self, raw: Dict[str, Any]) -> ExternalInventory:
        return ExternalInventory(
            external_id=first(raw, "id", "inventory_item_id"),
            source=self.name,
            sku=raw.get("sku"),
            product_external_id=raw.get("product_id"),
            warehouse_id=raw.get("warehouse_id"),
            warehouse_name=raw.get("warehouse_name"),
            on_hand=to_int(first(raw, "onhand", "on_hand", "quantity_on_hand")),
            available=to_int(first(raw, "fulfillable", "available", "quantity_fulfillable")),
            allocated=to_int(first(raw, "committed", "allocated")),
            location=first(raw, "location", "bin"),
            raw=raw,
        )

    def parse_shipment(self, raw: Dict[str, Any]) -> ExternalShipment:
        return ExternalShipment(
            external_id=first(raw, "id", "shipment_id"),
            source=self.name,
            order_external_id=raw.get("order_id"),
            tracking_number=raw.get("tracking_number"),
            carrier=raw.get("carrier"),
            service=first(raw, "shipping_method", "service"),
            status=raw.get("status"),
            shipped_at=parse_timestamp(first(raw, "shipped_date", "created_date")),
            delivered_at=parse_timestamp(raw.get("delivered_date")),
            raw=raw,
        )
