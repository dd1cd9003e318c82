"""WMS synchronization and reconciliation engine."""

from wms_sync.utils import log_setup  # noqa: F401  (registers the TRACE level)

__version__ = "0.1.0"
