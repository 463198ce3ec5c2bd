import pytest

from semantic_memory.core.circuit_breaker import (
    CircuitBreaker,
    CircuitPolicy,
    CircuitSnapshot,
    CircuitState,
    RetryPolicy,
    RetryWithCircuitBreaker,
    admit,
    record_failure,
    record_success,
)
from semantic_memory.core.errors import (
    CircuitOpenError,
    ModelNotFoundError,
    ServiceUnavailableError,
    ServiceUnreachableError,
)
from semantic_memory.core.events import EventKind

POLICY = CircuitPolicy(failure_threshold=5, window_seconds=60.0, cooldown_seconds=30.0)


class FlakyService:
    def __init__(self, failures: int = 0, error: Exception | None = None):
        self.failures = failures
        self.error = error or ServiceUnreachableError("connection refused")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestStateMachine:
    def test_closed_admits(self):
        snapshot, allowed = admit(CircuitSnapshot(), POLICY, now=0.0)
        assert allowed
        assert snapshot.state == CircuitState.CLOSED

    def test_opens_at_threshold(self):
        snapshot = CircuitSnapshot()
        for second in range(4):
            snapshot = record_failure(snapshot, POLICY, now=float(second))
            assert snapshot.state == CircuitState.CLOSED
        snapshot = record_failure(snapshot, POLICY, now=4.0, error="boom")
        assert snapshot.state == CircuitState.OPEN
        assert snapshot.opened_at == 4.0
        assert snapshot.last_error == "boom"

    def test_failures_outside_window_do_not_count(self):
        snapshot = CircuitSnapshot()
        for second in (0.0, 10.0, 20.0, 30.0):
            snapshot = record_failure(snapshot, POLICY, now=second)
        snapshot = record_failure(snapshot, POLICY, now=100.0)
        assert snapshot.state == CircuitState.CLOSED
        assert len(snapshot.failures) == 1

    def test_open_rejects_until_cooldown_then_admits_one_probe(self):
        opened = CircuitSnapshot(state=CircuitState.OPEN, failures=(0.0,), opened_at=0.0)

        _, allowed = admit(opened, POLICY, now=29.9)
        assert not allowed

        probing, allowed = admit(opened, POLICY, now=30.0)
        assert allowed
        assert probing.state == CircuitState.HALF_OPEN
        assert probing.probe_in_flight

        _, second_allowed = admit(probing, POLICY, now=30.1)
        assert not second_allowed

    def test_open_without_timestamp_starts_cooldown_on_first_check(self):
        opened = CircuitSnapshot(state=CircuitState.OPEN)

        stamped, allowed = admit(opened, POLICY, now=100.0)
        assert not allowed
        assert stamped.opened_at == 100.0

        _, allowed = admit(stamped, POLICY, now=129.9)
        assert not allowed
        probing, allowed = admit(stamped, POLICY, now=130.0)
        assert allowed
        assert probing.state == CircuitState.HALF_OPEN

    def test_probe_failure_reopens(self):
        probing = CircuitSnapshot(state=CircuitState.HALF_OPEN, probe_in_flight=True)
        snapshot = record_failure(probing, POLICY, now=50.0)
        assert snapshot.state == CircuitState.OPEN
        assert snapshot.opened_at == 50.0

    def test_success_resets(self):
        probing = CircuitSnapshot(state=CircuitState.HALF_OPEN, failures=(1.0,), probe_in_flight=True)
        assert record_success(probing) == CircuitSnapshot()


class TestCircuitBreaker:
    async def test_sixth_call_fails_without_io_and_probe_recovers(self, clock, events):
        breaker = CircuitBreaker("embeddings", policy=POLICY, clock=clock, events=events)
        service = FlakyService(failures=5)

        for _ in range(5):
            with pytest.raises(ServiceUnreachableError):
                await breaker.call_async(service)
            clock.advance(1.0)
        assert breaker.state == CircuitState.OPEN
        assert service.calls == 5

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call_async(service)
        assert service.calls == 5
        assert exc_info.value.details.retry_after_seconds == pytest.approx(29.0)

        clock.advance(30.0)
        assert await breaker.call_async(service) == "ok"
        assert service.calls == 6
        assert breaker.state == CircuitState.CLOSED

        kinds = [event.kind for event in events.events]
        assert kinds == [EventKind.CIRCUIT_OPENED, EventKind.CIRCUIT_HALF_OPEN, EventKind.CIRCUIT_CLOSED]

    async def test_non_transient_error_counts_as_success(self, clock):
        breaker = CircuitBreaker("embeddings", policy=POLICY, clock=clock)
        service = FlakyService(failures=10, error=ModelNotFoundError("no such model"))

        for _ in range(10):
            with pytest.raises(ModelNotFoundError):
                await breaker.call_async(service)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_state()["failure_count"] == 0


class TestRetry:
    async def test_retries_transient_with_backoff(self, clock, sleep):
        breaker = CircuitBreaker("embeddings", policy=POLICY, clock=clock)
        retry = RetryWithCircuitBreaker(breaker, RetryPolicy(max_attempts=3, initial_delay=0.5), sleep=sleep)
        service = FlakyService(failures=2)

        assert await retry.call_async(service) == "ok"
        assert service.calls == 3
        assert sleep.delays == [0.5, 1.0]

    async def test_gives_up_with_service_unavailable(self, clock, sleep):
        breaker = CircuitBreaker("embeddings", policy=POLICY, clock=clock)
        retry = RetryWithCircuitBreaker(breaker, RetryPolicy(max_attempts=3), sleep=sleep)
        service = FlakyService(failures=10)

        with pytest.raises(ServiceUnavailableError) as exc_info:
            await retry.call_async(service)
        assert "retry later" in exc_info.value.message
        assert service.calls == 3
        assert len(sleep.delays) == 2

    async def test_non_transient_is_not_retried(self, clock, sleep):
        breaker = CircuitBreaker("embeddings", policy=POLICY, clock=clock)
        retry = RetryWithCircuitBreaker(breaker, RetryPolicy(max_attempts=3), sleep=sleep)
        service = FlakyService(failures=1, error=ModelNotFoundError("no such model"))

        with pytest.raises(ModelNotFoundError):
            await retry.call_async(service)
        assert service.calls == 1
        assert sleep.delays == []

    async def test_open_circuit_is_not_retried(self, clock, sleep):
        breaker = CircuitBreaker("embeddings", policy=CircuitPolicy(failure_threshold=1), clock=clock)
        retry = RetryWithCircuitBreaker(breaker, RetryPolicy(max_attempts=5), sleep=sleep)
        service = FlakyService(failures=10)

        with pytest.raises(CircuitOpenError):
            await retry.call_async(service)
        # First attempt opened the circuit, the second was rejected without a call
        assert service.calls == 1
        assert len(sleep.delays) == 1

    def test_delay_is_capped(self):
        policy = RetryPolicy(initial_delay=1.0, backoff_factor=10.0, max_delay=8.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 8.0, 8.0]
