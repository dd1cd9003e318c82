import logging
import re
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
from wms_sync.exceptions import RateLimited, UpstreamError
from wms_sync.utils.dates import parse_timestamp

log = logging.getLogger(__name__)

# GraphQL error code returned when the account has run out of credits
NOT_ENOUGH_CREDITS = 30

ORDERS_QUERY = """
query getOrders($updatedFrom: ISODateTime, $first: Int, $after: String) {
  orders(updated_from: $updatedFrom) {
    request_id
    complexity
    data(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      edges {
        node {
          id
          legacy_id
          order_number
          fulfillment_status
          order_date
          updated_at
          total_price
          currency
          email
          profile
          shipping_address { first_name last_name address1 address2 city state country zip phone }
          line_items(first: 50) {
            edges {
              node { id sku product_name quantity quantity_allocated quantity_shipped price fulfillment_status }
            }
          }
        }
      }
    }
  }
}
"""

PRODUCTS_QUERY = """
query getProducts($updatedFrom: ISODateTime, $first: Int, $after: String) {
  products(updated_from: $updatedFrom) {
    request_id
    complexity
    data(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      edges {
        node {
          id
          legacy_id
          sku
          name
          price
          barcode
          updated_at
          dimensions { height width length weight }
          warehouse_products { id warehouse_id on_hand available allocated inventory_bin }
        }
      }
    }
  }
}
"""

SHIPMENTS_QUERY = """
query getShipments($dateFrom: ISODateTime, $first: Int, $after: String) {
  shipments(date_from: $dateFrom) {
    request_id
    complexity
    data(first: $first, after: $after) {
      pageInfo { hasNextPage endCursor }
      edges {
        node {
          id
          order_id
          created_date
          shipping_labels { tracking_number carrier shipping_method status }
        }
      }
    }
  }
}
"""


def _seconds(value: Any) -> Optional[float]:
    """Parse ShipHero's `time_remaining` hint ('12 seconds' or a bare number)."""
    if value is None:
        return None
    match = re.search(r"\d+(\.\d+)?", str(value))
    return float(match.group()) if match else None


def _nodes(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not connection:
        return []
    return [edge.get("node") or {} for edge in connection.get("edges") or []]


class ShipHeroConnector(BaseConnector):
    """
    Connector for the ShipHero public GraphQL API.
    Pages with Relay-style `first`/`after` cursors.
    """

    name = "shiphero"
    default_page_size = 100

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _check_payload(self, payload: Any) -> None:
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if not errors:
            return
        for error in errors:
            if error.get("code") == NOT_ENOUGH_CREDITS:
                raise RateLimited(
                    f"ShipHero credits exhausted: {error.get('message')}",
                    retry_after=_seconds(error.get("time_remaining")),
                    status_code=None,
                )
        raise UpstreamError(f"ShipHero GraphQL errors: {errors}")

    async def _query(self, query: str, root: str, variables: Dict[str, Any], cursor: Optional[str]) -> tuple:
        variables = dict(variables, first=self.page_size, after=cursor)
        payload = await self._request("POST", "/graphql", json={"query": query, "variables": variables})
        if not isinstance(payload, dict):
            raise UpstreamError(f"ShipHero returned an unexpected {type(payload).__name__} payload for {root}")

        result = ((payload.get("data") or {}).get(root) or {})
        connection = result.get("data") or {}
        page_info = connection.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None

        quota = ((payload.get("extensions") or {}).get("throttling") or {}).get("user_quota") or {}
        credits_remaining = quota.get("credits_remaining")
        if result.get("complexity") is not None:
            log.debug(f"ShipHero {root} query complexity: {result.get('complexity')}")
        return _nodes(connection), next_cursor, credits_remaining

    async def fetch_orders(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        variables = {"updatedFrom": since.isoformat() if since else None}
        items, next_cursor, credits = await self._query(ORDERS_QUERY, "orders", variables, cursor)
        return Page(items=items, next_cursor=next_cursor, credits_remaining=credits)

    async def fetch_products(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        variables = {"updatedFrom": since.isoformat() if since else None}
        items, next_cursor, credits = await self._query(PRODUCTS_QUERY, "products", variables, cursor)
        return Page(items=items, next_cursor=next_cursor, credits_remaining=credits)

    async def fetch_inventory(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        # Stock levels live on products as warehouse_products; flatten one record per warehouse
        variables = {"updatedFrom": since.isoformat() if since else None}
        products, next_cursor, credits = await self._query(PRODUCTS_QUERY, "products", variables, cursor)
        items = []
        for product in products:
            for warehouse_product in product.get("warehouse_products") or []:
                items.append(dict(warehouse_product, sku=product.get("sku"), product_id=product.get("id")))
        return Page(items=items, next_cursor=next_cursor if products else None, credits_remaining=credits)

    async def fetch_shipments(self, since: Optional[datetime] = None, cursor: Optional[str] = None) -> Page:
        variables = {"dateFrom": since.isoformat() if since else None}
        items, next_cursor, credits = await self._query(SHIPMENTS_QUERY, "shipments", variables, cursor)
        return Page(items=items, next_cursor=next_cursor, credits_remaining=credits)

    def parse_order(self, raw: Dict[str, Any]) -> ExternalOrder:
        address = raw.get("shipping_address") or {}
        name = " ".join(part for part in (address.get("first_name"), address.get("last_name")) if part)
        items = raw.get("line_items")
        if isinstance(items, dict):
            items = _nodes(items)
        line_items = [
            ExternalLineItem(
                external_id=item.get("id"),
                sku=item.get("sku"),
                product_name=first(item, "product_name", "title"),
                quantity=to_int(item.get("quantity")),
                quantity_allocated=to_int(item.get("quantity_allocated")),
                quantity_shipped=to_int(item.get("quantity_shipped")),
                unit_price=item.get("price"),
                fulfillment_status=item.get("fulfillment_status"),
            )
            for item in items or []
        ]
        external_id = first(raw, "id", "order_id")
        return ExternalOrder(
            external_id=external_id,
            source=self.name,
            order_number=first(raw, "order_number", default=external_id),
            status=raw.get("fulfillment_status"),
            fulfillment_status=raw.get("fulfillment_status"),
            customer_name=name or None,
            customer_email=raw.get("email"),
            shipping_address=address or None,
            total_amount=first(raw, "total_price", "subtotal"),
            currency=raw.get("currency"),
            tracking_number=raw.get("tracking_number"),
            carrier=raw.get("carrier"),
            order_date=parse_timestamp(raw.get("order_date")),
            allocated_at=parse_timestamp(raw.get("allocated_at")),
            packed_at=parse_timestamp(raw.get("packed_at")),
            shipped_at=parse_timestamp(raw.get("shipped_at")),
            delivered_at=parse_timestamp(raw.get("delivered_at")),
            cancelled_at=parse_timestamp(raw.get("canceled_at")),
            updated_at=parse_timestamp(raw.get("updated_at")),
            line_items=line_items,
            raw=raw,
        )

    def parse_product(self, raw: Dict[str, Any]) -> ExternalProduct:
        dimensions = raw.get("dimensions") or None
        return ExternalProduct(
            external_id=raw.get("id"),
            source=self.name,
            sku=raw.get("sku"),
            name=first(raw, "name", default=raw.get("sku")),
            price=raw.get("price"),
            weight=(dimensions or {}).get("weight"),
            dimensions=dimensions,
            barcode=raw.get("barcode"),
            updated_at=parse_timestamp(raw.get("updated_at")),
            raw=raw,
        )

    def parse_inventory(self, raw: Dict[str, Any]) -> ExternalInventory:
        external_id = raw.get("id") or f"{raw.get('product_id')}:{raw.get('warehouse_id')}"
        return ExternalInventory(
            external_id=external_id,
            source=self.name,
            sku=raw.get("sku"),
            product_external_id=raw.get("product_id"),
            warehouse_id=raw.get("warehouse_id"),
            on_hand=to_int(raw.get("on_hand")),
            available=to_int(raw.get("available")),
            allocated=to_int(raw.get("allocated")),
            location=raw.get("inventory_bin"),
            raw=raw,
        )

    def parse_shipment(self, raw: Dict[str, Any]) -> ExternalShipment:
        labels = raw.get("shipping_labels") or [{}]
        label = labels[0] if labels else {}
        return ExternalShipment(
            external_id=raw.get("id"),
            source=self.name,
            order_external_id=raw.get("order_id"),
            tracking_number=first(raw, "tracking_number") or label.get("tracking_number"),
            carrier=first(raw, "carrier") or label.get("carrier"),
            service=first(raw, "method", "service") or label.get("shipping_method"),
            status=first(raw, "status") or label.get("status"),
            shipped_at=parse_timestamp(first(raw, "shipped_date", "created_date")),
            delivered_at=parse_timestamp(raw.get("delivered_date")),
            raw=raw,
        )
