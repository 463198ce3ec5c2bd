"""Circuit breaker implementation for handling failures and retries.

The breaker's state is a frozen ``CircuitSnapshot`` moved between states by
the pure functions ``admit``, ``record_success``, ``record_failure`` and
``release_probe``. ``CircuitBreaker`` only holds the current snapshot, reads
the clock and reports transitions, so the state machine can be exercised
without any network calls.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, TypeVar

from .base import ServiceErrorDetails
from .errors import CircuitOpenError, ServiceUnavailableError, TransientServiceError
from .events import EventKind, EventRecorder
from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, rejecting calls
    HALF_OPEN = "half_open"  # Single probe allowed


@dataclass(frozen=True)
class CircuitPolicy:
    failure_threshold: int = 5
    window_seconds: float = 60.0
    cooldown_seconds: float = 30.0


@dataclass(frozen=True)
class CircuitSnapshot:
    state: CircuitState = CircuitState.CLOSED
    # Timestamps of consecutive failures still inside the rolling window
    failures: tuple[float, ...] = ()
    opened_at: float | None = None
    probe_in_flight: bool = False
    last_error: str | None = None


def admit(snapshot: CircuitSnapshot, policy: CircuitPolicy, now: float) -> tuple[CircuitSnapshot, bool]:
    """Decide whether a call may proceed, returning the next snapshot."""
    if snapshot.state == CircuitState.CLOSED:
        return snapshot, True

    if snapshot.state == CircuitState.OPEN:
        if snapshot.opened_at is None:
            # Opened without a timestamp; the cooldown starts now
            return replace(snapshot, opened_at=now), False
        if now - snapshot.opened_at >= policy.cooldown_seconds:
            return replace(snapshot, state=CircuitState.HALF_OPEN, probe_in_flight=True), True
        return snapshot, False

    # HALF_OPEN: exactly one probe at a time
    if snapshot.probe_in_flight:
        return snapshot, False
    return replace(snapshot, probe_in_flight=True), True


def record_success(snapshot: CircuitSnapshot) -> CircuitSnapshot:
    """The service answered. Any state returns to closed with a clean slate."""
    return CircuitSnapshot()


def record_failure(
    snapshot: CircuitSnapshot,
    policy: CircuitPolicy,
    now: float,
    error: str | None = None,
) -> CircuitSnapshot:
    """Count a failure; open the circuit once the threshold is reached in the window."""
    if snapshot.state == CircuitState.HALF_OPEN:
        return CircuitSnapshot(
            state=CircuitState.OPEN,
            failures=(now,),
            opened_at=now,
            probe_in_flight=False,
            last_error=error,
        )

    if snapshot.state == CircuitState.OPEN:
        # A call admitted before the circuit opened failed late
        return replace(snapshot, last_error=error)

    failures = tuple(t for t in snapshot.failures if now - t < policy.window_seconds) + (now,)
    if len(failures) >= policy.failure_threshold:
        return CircuitSnapshot(
            state=CircuitState.OPEN,
            failures=failures,
            opened_at=now,
            last_error=error,
        )
    return replace(snapshot, failures=failures, last_error=error)


def release_probe(snapshot: CircuitSnapshot) -> CircuitSnapshot:
    """Give back an unfinished probe slot, e.g. after cancellation."""
    if snapshot.state == CircuitState.HALF_OPEN and snapshot.probe_in_flight:
        return replace(snapshot, probe_in_flight=False)
    return snapshot


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, TransientServiceError)


class CircuitBreaker:
    """
    Circuit breaker for handling service failures gracefully.

    The circuit breaker has three states:
    - CLOSED: Normal operation, calls go through
    - OPEN: Service is failing, calls are rejected immediately
    - HALF_OPEN: One probe call tests whether the service recovered

    Only errors for which ``is_failure`` returns True count against the
    service. Any other exception means the service answered, which counts
    as a success. Cancellation counts as neither.
    """

    def __init__(
        self,
        name: str,
        policy: CircuitPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        events: EventRecorder | None = None,
        is_failure: Callable[[BaseException], bool] = _is_transient,
    ):
        self.name = name
        self.policy = policy or CircuitPolicy()
        self.clock = clock
        self.events = events or EventRecorder()
        self.is_failure = is_failure
        self.snapshot = CircuitSnapshot()

    @property
    def state(self) -> CircuitState:
        return self.snapshot.state

    def _transition(self, new: CircuitSnapshot) -> None:
        old = self.snapshot
        self.snapshot = new
        if old.state == new.state:
            return
        if new.state == CircuitState.OPEN:
            logger.error(
                f"Circuit breaker '{self.name}' opening",
                failures=len(new.failures),
                last_exception=new.last_error,
            )
            self.events.emit(
                EventKind.CIRCUIT_OPENED,
                circuit=self.name,
                failures=len(new.failures),
                last_error=new.last_error,
            )
        elif new.state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}' attempting reset (half-open)")
            self.events.emit(EventKind.CIRCUIT_HALF_OPEN, circuit=self.name)
        else:
            logger.info(f"Circuit breaker '{self.name}' closing after recovery")
            self.events.emit(EventKind.CIRCUIT_CLOSED, circuit=self.name)

    def _reject(self, operation: str) -> CircuitOpenError:
        error_msg = f"Circuit breaker '{self.name}' is open"
        if self.snapshot.last_error:
            error_msg += f" (last error: {self.snapshot.last_error})"
        retry_after = None
        if self.snapshot.opened_at is not None:
            retry_after = max(0.0, self.policy.cooldown_seconds - (self.clock() - self.snapshot.opened_at))
        return CircuitOpenError(
            message=error_msg,
            details=ServiceErrorDetails(
                source="circuit_breaker",
                operation=operation,
                service_name=self.name,
                status_code=503,  # Service Unavailable
                retry_after_seconds=retry_after,
            ),
        )

    async def call_async(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Call an async function through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call
            Original exception: If the function fails
        """
        snapshot, allowed = admit(self.snapshot, self.policy, self.clock())
        self._transition(snapshot)
        if not allowed:
            raise self._reject("call_async")

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if self.is_failure(e):
                self._transition(record_failure(self.snapshot, self.policy, self.clock(), str(e)))
            else:
                self._transition(record_success(self.snapshot))
            raise
        except BaseException:
            self._transition(release_probe(self.snapshot))
            raise

        self._transition(record_success(self.snapshot))
        return result

    def get_state(self) -> dict[str, Any]:
        """Get current circuit breaker state for monitoring."""
        return {
            "name": self.name,
            "state": self.snapshot.state.value,
            "failure_count": len(self.snapshot.failures),
            "opened_at": self.snapshot.opened_at,
            "probe_in_flight": self.snapshot.probe_in_flight,
            "last_exception": self.snapshot.last_error,
        }


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 0.5
    backoff_factor: float = 2.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.max_delay, self.initial_delay * self.backoff_factor ** (attempt - 1))


class RetryWithCircuitBreaker:
    """
    Combines retry logic with circuit breaker pattern.

    Transient failures are retried with exponential backoff up to a fixed
    number of attempts, so the worst-case latency is bounded by
    ``sum(delay_for(n))`` plus the per-call timeouts. An open circuit and
    non-transient errors are surfaced immediately.
    """

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        policy: RetryPolicy | None = None,
        retryable_exceptions: tuple[type[Exception], ...] = (TransientServiceError,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.circuit_breaker = circuit_breaker
        self.policy = policy or RetryPolicy()
        self.retryable_exceptions = retryable_exceptions
        self.sleep = sleep

    async def call_async(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Call an async function with retries and circuit breaker.

        Raises:
            CircuitOpenError: If the circuit is open
            ServiceUnavailableError: When every attempt failed transiently
            Original exception: For non-retryable failures
        """
        last_exception: Exception | None = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return await self.circuit_breaker.call_async(func, *args, **kwargs)
            except CircuitOpenError:
                raise
            except self.retryable_exceptions as e:
                last_exception = e
                if attempt == self.policy.max_attempts:
                    break
                delay = self.policy.delay_for(attempt)
                self.circuit_breaker.events.emit(
                    EventKind.RETRY_SCHEDULED,
                    circuit=self.circuit_breaker.name,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(e),
                )
                await self.sleep(delay)

        raise ServiceUnavailableError(
            message=(
                f"'{self.circuit_breaker.name}' unavailable after {self.policy.max_attempts} attempts"
                f" ({last_exception}); retry later"
            ),
            details=ServiceErrorDetails(
                source="retry_circuit_breaker",
                operation="call_async",
                service_name=self.circuit_breaker.name,
                status_code=503,
                retry_after_seconds=self.policy.max_delay,
            ),
        ) from last_exception
