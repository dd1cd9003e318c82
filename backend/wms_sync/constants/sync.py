from enum import Enum


class DataType(str, Enum):
    ORDERS = "orders"
    PRODUCTS = "products"
    INVENTORY = "inventory"
    SHIPMENTS = "shipments"


class IntegrationType(str, Enum):
    TRACKSTAR = "trackstar"
    SHIPHERO = "shiphero"


class IntegrationStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class SyncOutcome(str, Enum):
    """Outcome stored on a SyncStatus row."""
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class TriggerType(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    WEBHOOK = "webhook"
