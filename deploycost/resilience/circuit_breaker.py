"""
Circuit breaker for the Azure Retail Prices API.

Pricing lookups for every role and region go through one shared breaker, so a
retail pricing outage fails fast instead of stalling each lookup on its own
timeout. Only failures that say the service itself is unhealthy trip it:
5xx and 429 answers, timeouts, transport errors and unparseable bodies. A 4xx
answer means the query was bad and fails that one lookup only.
"""
from enum import Enum
import logging
import time
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


FAILURE_THRESHOLD = 3  # Consecutive upstream failures before opening
OPEN_STATE_SECONDS = 60.0  # Cool-down before a trial lookup is let through
HALF_OPEN_MAX_PROBES = 1

# Client errors that still mean the upstream is struggling
_RETRYABLE_CLIENT_STATUSES = (408, 429)


def is_upstream_failure(status_code: int) -> bool:
    """
    Tell whether an HTTP status should count against the breaker.

    Args:
        status_code: Status of the pricing API answer

    Returns:
        True for 5xx, 408 and 429; False for successes and other 4xx
    """
    return status_code >= 500 or status_code in _RETRYABLE_CLIENT_STATUSES


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Breaker shared by all lookups against one upstream.

    - CLOSED -> OPEN after ``failure_threshold`` consecutive upstream failures
    - OPEN -> HALF_OPEN once ``open_seconds`` have elapsed; one trial lookup goes out
    - HALF_OPEN -> CLOSED when the trial gets an answer, back to OPEN when it fails

    While OPEN, callers get an immediate refusal and the cost report records the
    affected resources as unpriced.
    """

    def __init__(
        self,
        upstream: str,
        failure_threshold: int = FAILURE_THRESHOLD,
        open_seconds: float = OPEN_STATE_SECONDS,
        half_open_max_probes: int = HALF_OPEN_MAX_PROBES,
        clock: Callable[[], float] = time.monotonic
    ):
        self.upstream = upstream
        self.failure_threshold = failure_threshold
        self.open_seconds = open_seconds
        self.half_open_max_probes = half_open_max_probes
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.opened_at: Optional[float] = None
        self.probes_in_flight = 0

    def allow_request(self) -> bool:
        """
        Decide whether a lookup may call the upstream.

        Returns:
            True if the request should go out, False while the breaker is open
            or a trial lookup is already in flight
        """
        if self.state == CircuitState.OPEN:
            if self.opened_at is not None and self._clock() - self.opened_at >= self.open_seconds:
                logger.warning("Circuit breaker for %s: OPEN -> HALF_OPEN", self.upstream)
                self.state = CircuitState.HALF_OPEN
                self.probes_in_flight = 1
                return True
            return False

        if self.state == CircuitState.HALF_OPEN:
            if self.probes_in_flight < self.half_open_max_probes:
                self.probes_in_flight += 1
                return True
            return False

        return True

    def record_success(self) -> None:
        """Record an answer from the upstream (2xx, or a 4xx blamed on the query)."""
        if self.state == CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker for %s: HALF_OPEN -> CLOSED", self.upstream)
            self.state = CircuitState.CLOSED
            self.opened_at = None
            self.probes_in_flight = 0
        self.consecutive_failures = 0

    def record_failure(self) -> None:
        """Record an upstream failure, opening the breaker when the threshold is reached."""
        self.consecutive_failures += 1

        if self.state == CircuitState.HALF_OPEN:
            logger.warning("Circuit breaker for %s: HALF_OPEN -> OPEN", self.upstream)
            self._open()
        elif self.state == CircuitState.CLOSED and self.consecutive_failures >= self.failure_threshold:
            logger.warning(
                "Circuit breaker for %s: CLOSED -> OPEN (%d consecutive failures)",
                self.upstream,
                self.consecutive_failures
            )
            self._open()

    def _open(self) -> None:
        self.state = CircuitState.OPEN
        self.opened_at = self._clock()
        self.probes_in_flight = 0


# One breaker per upstream, shared by every pricing client in the process
_circuit_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(upstream: str) -> CircuitBreaker:
    """
    Get or create the circuit breaker for an upstream.

    Args:
        upstream: Upstream name (e.g., "retail_pricing")

    Returns:
        CircuitBreaker instance for the upstream
    """
    if upstream not in _circuit_breakers:
        _circuit_breakers[upstream] = CircuitBreaker(upstream)
    return _circuit_breakers[upstream]


def reset_circuit_breakers() -> None:
    """Forget all breakers (used between tests)."""
    _circuit_breakers.clear()
