"""Consecutive-failure circuit breaker shared by connectors of one integration type."""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

from wms_sync.exceptions import CircuitOpen

log = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Opens after `failure_threshold` consecutive upstream failures and rejects
    calls until `reset_timeout` seconds have passed. The next call is then let
    through as a trial: success closes the circuit, failure reopens it.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._guard = threading.Lock()
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None

    def before_call(self) -> None:
        """Raise CircuitOpen while the circuit is open and the reset timeout has not elapsed."""
        with self._guard:
            if self.state != CircuitState.OPEN:
                return
            waited = self._clock() - self.opened_at
            if waited < self.reset_timeout:
                raise CircuitOpen(self.name, retry_after=self.reset_timeout - waited)
            self.state = CircuitState.HALF_OPEN
        log.info(f"Circuit breaker {self.name} half-open, allowing a trial request")

    def record_success(self) -> None:
        with self._guard:
            recovered = self.state != CircuitState.CLOSED
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.opened_at = None
        if recovered:
            log.info(f"Circuit breaker {self.name} closed after a successful request")

    def record_failure(self) -> None:
        with self._guard:
            self.failure_count += 1
            if self.state != CircuitState.HALF_OPEN and self.failure_count < self.failure_threshold:
                return
            self.state = CircuitState.OPEN
            self.opened_at = self._clock()
        log.error(
            f"Circuit breaker {self.name} opened after {self.failure_count} consecutive failures, "
            f"rejecting calls for {self.reset_timeout:.0f}s"
        )
