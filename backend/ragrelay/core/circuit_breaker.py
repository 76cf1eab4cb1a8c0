"""
Circuit breaker for provider destinations.

One breaker per named destination:
- Opens when the failure rate over the sliding window reaches the threshold
  (only once min_requests calls have been seen in the window)
- Stays open for open_duration_seconds, rejecting calls immediately
- Then lets a single probe call through (half-open); its result closes or
  re-opens the circuit

Only transport-level failures count against a destination. Validation errors
raised before a request is sent never reach the breaker.
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

from ragrelay.core.logging import get_logger

logger = get_logger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit is open and the call is rejected."""

    def __init__(self, name: str):
        super().__init__(f"Circuit breaker {name} is OPEN. Destination unavailable.")
        self.name = name


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: int = 60,
        open_duration_seconds: int = 30,
        min_requests: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.min_requests = min_requests
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._lock = Lock()
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._probe_in_flight = False
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)

    def _open(self, now: float, **details: Any) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._history.clear()
        logger.warning("circuit_breaker_opened", circuit_breaker=self.name, **details)

    def _acquire(self) -> None:
        with self._lock:
            self._refresh(self._clock())
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpenError(self.name)
            if self._state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitBreakerOpenError(self.name)
                self._probe_in_flight = True

    def _record(self, success: bool) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                if success:
                    self._state = CircuitState.CLOSED
                    self._opened_at = None
                    logger.info("circuit_breaker_closed", circuit_breaker=self.name)
                else:
                    self._open(now, reason="probe_failed")
                return

            self._history.append((now, success))
            self._refresh(now)
            total = len(self._history)
            if total < self.min_requests:
                return
            failures = sum(1 for _, ok in self._history if not ok)
            error_rate = failures / total
            if error_rate >= self.failure_threshold:
                self._open(now, error_rate=error_rate, failures=failures, total=total)

    async def call_async(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        is_failure: Callable[[BaseException], bool] = lambda exc: True,
        **kwargs: Any,
    ) -> Any:
        """
        Execute an async callable under breaker protection.

        Args:
            func: Coroutine function to call
            is_failure: Decides whether a raised exception counts as a
                destination failure (e.g. 4xx answers do not)

        Raises:
            CircuitBreakerOpenError: circuit is open or a probe is already running
        """
        self._acquire()
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            self._record(not is_failure(exc))
            raise
        except BaseException:
            # Cancellation says nothing about the destination's health.
            with self._lock:
                self._probe_in_flight = False
            raise
        self._record(True)
        return result

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            self._refresh(self._clock())
            total = len(self._history)
            failures = sum(1 for _, ok in self._history if not ok)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "opened_at": self._opened_at,
            }
