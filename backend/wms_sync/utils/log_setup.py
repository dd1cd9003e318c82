"""Logging configuration with a custom TRACE level."""

import logging

TRACE = 5
logging.TRACE = TRACE
logging.addLevelName(TRACE, "TRACE")


def trace_method(self, msg, *args, **kwargs):
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


# Add trace method to standard Logger class for all instances
logging.Logger.trace = trace_method


def configure_logging(level_name: str) -> None:
    """Configure the root logger and per-package levels once per process."""
    log_level_str = level_name.upper()
    if log_level_str == "TRACE":
        log_level = TRACE
    elif log_level_str == "VERBOSE":
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, log_level_str, logging.INFO)

    root = logging.getLogger()
    if root.hasHandlers():
        return

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'
    )

    # VERBOSE and TRACE open up HTTP and connector details for debugging
    if log_level_str == "VERBOSE":
        http_level = logging.DEBUG
        connectors_level = TRACE
        root.info("VERBOSE mode enabled: HTTP details and connector traces active for debugging.")
    elif log_level_str == "TRACE":
        http_level = TRACE
        connectors_level = TRACE
    else:
        http_level = logging.WARNING
        connectors_level = log_level

    root.setLevel(log_level)
    logging.getLogger("httpcore").setLevel(http_level)
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("wms_sync.connectors").setLevel(connectors_level)
    logging.getLogger("apscheduler").setLevel(max(log_level, logging.INFO))

    if log_level_str == "TRACE":
        root.trace("Trace logging enabled at startup (verbose details).")
    else:
        root.debug("Debug logging enabled at startup.")
