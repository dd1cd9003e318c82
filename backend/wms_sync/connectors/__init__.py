"""External WMS adapters and the registry selecting one per integration type."""

from typing import Any, Dict, Type

from wms_sync.config import settings
from wms_sync.connectors.base import BaseConnector
from wms_sync.connectors.shiphero_connector import ShipHeroConnector
from wms_sync.connectors.trackstar_connector import TrackstarConnector

CONNECTOR_TYPES: Dict[str, Type[BaseConnector]] = {
    "trackstar": TrackstarConnector,
    "shiphero": ShipHeroConnector,
}

BASE_URLS = {
    "trackstar": lambda: settings.trackstar_base_url,
    "shiphero": lambda: settings.shiphero_base_url,
}


def get_connector(credentials, **overrides: Any) -> BaseConnector:
    """Build the adapter for a tenant's decrypted credentials."""
    integration_type = getattr(credentials.integration_type, "value", credentials.integration_type)
    connector_class = CONNECTOR_TYPES.get(integration_type)
    if not connector_class:
        raise ValueError(f"Unknown integration type: {integration_type}")

    config = {
        "base_url": BASE_URLS[integration_type](),
        "access_token": credentials.access_token,
        "api_key": credentials.api_key,
        "connection_id": credentials.connection_id,
        "timeout": settings.http_timeout_seconds,
        "max_attempts": settings.http_max_attempts,
        "backoff_base": settings.http_backoff_base_seconds,
        "max_backoff": settings.http_max_backoff_seconds,
        "max_pages": settings.max_pages,
    }
    if integration_type == "trackstar":
        config["page_size"] = settings.page_size
    config.update(overrides)
    return connector_class(config)


__all__ = ["BaseConnector", "CONNECTOR_TYPES", "get_connector", "ShipHeroConnector", "TrackstarConnector"]
