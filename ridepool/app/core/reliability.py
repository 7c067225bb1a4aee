"""
Circuit breaker for calls to the payout gateway.

After `failure_threshold` consecutive failures the circuit opens and calls
fail fast with CircuitOpenError. Once `reset_timeout` seconds pass, one
trial call is let through: success closes the circuit, failure re-opens it.
"""

import logging
import time
from typing import Callable, Any

logger = logging.getLogger("ridepool.reliability")

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60, name: str = "circuit"):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = CLOSED

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == OPEN:
            if time.monotonic() - self.last_failure_time < self.reset_timeout:
                raise CircuitOpenError(f"{self.name} circuit is open")
            self.state = HALF_OPEN
            logger.info("%s circuit half-open, sending a trial call", self.name)

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.monotonic()
        if self.state != OPEN and (self.state == HALF_OPEN or self.failures >= self.failure_threshold):
            self.state = OPEN
            logger.warning("%s circuit opened after %s failure(s)", self.name, self.failures)

    def reset_state(self):
        if self.state != CLOSED:
            logger.info("%s circuit closed", self.name)
        self.failures = 0
        self.state = CLOSED


payout_circuit_breaker = CircuitBreaker(failure_threshold=3, reset_timeout=30, name="payout-gateway")
