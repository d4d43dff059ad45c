"""
Circuit breaker guarding upstream pricing and inventory APIs.
Shared across fetch worker threads, so every transition happens under a lock.
"""
from enum import Enum
import logging
import threading
import time
from typing import Callable, Dict, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FAILURE_THRESHOLD = 3  # Trip after N consecutive failures
OPEN_STATE_DURATION = 60  # Seconds to stay OPEN before letting a trial request through


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    CLOSED -> OPEN after ``failure_threshold`` failures in a row.
    OPEN -> HALF_OPEN once ``open_duration`` seconds have passed; a single trial
    request is let through, and its outcome closes or re-opens the circuit.
    """

    def __init__(
        self,
        service_name: str,
        failure_threshold: int = FAILURE_THRESHOLD,
        open_duration: float = OPEN_STATE_DURATION,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            service_name: Upstream name used in logs (e.g. "aws_pricing", "gcp_billing")
            failure_threshold: Consecutive failures before opening
            open_duration: Seconds to remain OPEN before HALF_OPEN
            clock: Monotonic time source, injectable for tests
        """
        self.service_name = service_name
        self.failure_threshold = failure_threshold
        self.open_duration = open_duration
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    def allow_request(self) -> bool:
        """
        Check if a call may proceed.

        Returns:
            True if the call should go upstream, False to fail fast
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True
            if self._state == CircuitState.OPEN:
                if self._clock() - self._opened_at < self.open_duration:
                    return False
                logger.warning(f"Circuit breaker for {self.service_name}: OPEN -> HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit breaker for {self.service_name}: HALF_OPEN -> CLOSED")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit breaker for {self.service_name}: HALF_OPEN -> OPEN")
                self._trip()
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning(
                    f"Circuit breaker for {self.service_name}: "
                    f"CLOSED -> OPEN ({self._failure_count} consecutive failures)"
                )
                self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._trial_in_flight = False

    def current_state(self) -> CircuitState:
        with self._lock:
            return self._state

    def call(self, func: Callable[[], T], error_type: Type[Exception]) -> T:
        """
        Run ``func`` under the breaker.

        Args:
            func: Zero-argument callable performing the upstream request
            error_type: Exception raised when the circuit is open

        Returns:
            Whatever ``func`` returns

        Raises:
            error_type: If the circuit is open
        """
        if not self.allow_request():
            raise error_type(
                f"{self.service_name} temporarily unavailable (circuit breaker open)"
            )
        try:
            result = func()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


_circuit_breakers: Dict[str, CircuitBreaker] = {}
_registry_lock = threading.Lock()


def get_circuit_breaker(service_name: str) -> CircuitBreaker:
    """
    Get or create the shared circuit breaker for a service.

    Args:
        service_name: Name of the upstream service

    Returns:
        CircuitBreaker instance for the service
    """
    with _registry_lock:
        if service_name not in _circuit_breakers:
            _circuit_breakers[service_name] = CircuitBreaker(service_name)
        return _circuit_breakers[service_name]
