"""CircuitBreaker state machine tests."""

from __future__ import annotations

import threading

import pytest

from switchboard.providers.circuit_breaker import CircuitBreaker, CircuitState


def _trip(cb: CircuitBreaker, n: int) -> None:
    for _ in range(n):
        permit = cb.try_acquire()
        assert permit is not None
        cb.record_failure(permit)


class TestCircuitBreaker:
    def test_starts_closed(self, clock) -> None:
        cb = CircuitBreaker("test", clock=clock)
        assert cb.state == CircuitState.CLOSED
        assert cb.try_acquire() is not None

    def test_opens_after_consecutive_failures(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=3, clock=clock)
        _trip(cb, 3)
        assert cb.state == CircuitState.OPEN
        assert cb.try_acquire() is None

    def test_does_not_open_before_threshold(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=5, clock=clock)
        _trip(cb, 4)
        assert cb.state == CircuitState.CLOSED

    def test_success_resets_consecutive_count(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=3, window_size=100, clock=clock)
        cb.record_failure()
        cb.record_failure()
        cb.record_success()
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 2

    def test_failure_ratio_trips_once_window_full(self, clock) -> None:
        cb = CircuitBreaker(
            "test", window_size=4, failure_ratio=0.5, consecutive_failures=10, clock=clock
        )
        # F S F S → 50%, not strictly above the threshold
        for ok in (False, True, False, True):
            cb.record_success() if ok else cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        # Window slides to S F S F → still 50%; then F S F F → 75%
        cb.record_failure()
        assert cb.state == CircuitState.CLOSED
        cb.record_failure()
        assert cb.state == CircuitState.OPEN

    def test_ratio_ignored_until_window_full(self, clock) -> None:
        cb = CircuitBreaker(
            "test", window_size=20, failure_ratio=0.5, consecutive_failures=5, clock=clock
        )
        cb.record_failure()
        assert cb.failure_ratio == 1.0
        assert cb.state == CircuitState.CLOSED

    def test_half_open_after_cooldown(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=2, cooldown_seconds=30.0, clock=clock)
        _trip(cb, 2)
        clock.advance(29.9)
        assert cb.state == CircuitState.OPEN
        assert cb.cooldown_remaining == pytest.approx(0.1)
        clock.advance(0.2)
        assert cb.state == CircuitState.HALF_OPEN

    def test_half_open_allows_exactly_one_trial(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=1.0, clock=clock)
        _trip(cb, 1)
        clock.advance(1.0)
        assert cb.try_acquire() is not None
        assert cb.try_acquire() is None
        assert cb.try_acquire() is None

    def test_half_open_single_trial_under_threads(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=1.0, clock=clock)
        _trip(cb, 1)
        clock.advance(1.0)

        granted: list[bool] = []
        barrier = threading.Barrier(16)

        def _worker() -> None:
            barrier.wait()
            granted.append(cb.try_acquire() is not None)

        threads = [threading.Thread(target=_worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert granted.count(True) == 1

    def test_half_open_to_closed_on_success(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=2, cooldown_seconds=1.0, clock=clock)
        _trip(cb, 2)
        clock.advance(1.0)
        trial = cb.try_acquire()
        assert trial is not None and trial.trial
        cb.record_success(trial)
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0
        assert cb.try_acquire() is not None

    def test_half_open_failure_reopens_with_doubled_cooldown(self, clock) -> None:
        cb = CircuitBreaker(
            "test",
            consecutive_failures=1,
            cooldown_seconds=10.0,
            max_cooldown_seconds=25.0,
            clock=clock,
        )
        _trip(cb, 1)
        clock.advance(10.0)
        cb.record_failure(cb.try_acquire())
        assert cb.state == CircuitState.OPEN
        assert cb.cooldown_seconds == 20.0

        clock.advance(20.0)
        cb.record_failure(cb.try_acquire())
        # Bounded by the cap
        assert cb.cooldown_seconds == 25.0
        clock.advance(24.0)
        assert cb.state == CircuitState.OPEN
        clock.advance(1.0)
        assert cb.state == CircuitState.HALF_OPEN

    def test_close_resets_cooldown(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=5.0, clock=clock)
        _trip(cb, 1)
        clock.advance(5.0)
        cb.record_failure(cb.try_acquire())
        assert cb.cooldown_seconds == 10.0
        clock.advance(10.0)
        cb.record_success(cb.try_acquire())
        assert cb.cooldown_seconds == 5.0

    def test_release_frees_trial_without_transition(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=1.0, clock=clock)
        _trip(cb, 1)
        clock.advance(1.0)
        trial = cb.try_acquire()
        assert trial is not None
        cb.release(trial)
        assert cb.state == CircuitState.HALF_OPEN
        assert cb.try_acquire() is not None

    def test_late_success_does_not_close_open_circuit(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=30.0, clock=clock)
        _trip(cb, 1)
        cb.record_success()
        assert cb.state == CircuitState.OPEN

    def test_stale_release_keeps_trial_held(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=30.0, clock=clock)
        admitted_while_closed = cb.try_acquire()
        _trip(cb, 1)
        clock.advance(30.0)
        trial = cb.try_acquire()
        assert trial is not None and trial.trial

        cb.release(admitted_while_closed)

        assert cb.try_acquire() is None
        cb.release(trial)
        assert cb.try_acquire() is not None

    def test_stale_success_does_not_settle_trial(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=30.0, clock=clock)
        admitted_while_closed = cb.try_acquire()
        _trip(cb, 1)
        clock.advance(30.0)
        trial = cb.try_acquire()

        cb.record_success(admitted_while_closed)
        cb.record_failure(admitted_while_closed)

        assert cb.state == CircuitState.HALF_OPEN
        assert cb.try_acquire() is None
        cb.record_success(trial)
        assert cb.state == CircuitState.CLOSED

    def test_permit_from_previous_closed_period_is_stale(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=1, cooldown_seconds=1.0, clock=clock)
        old = cb.try_acquire()
        _trip(cb, 1)
        clock.advance(1.0)
        cb.record_success(cb.try_acquire())
        assert cb.state == CircuitState.CLOSED

        # Admitted two periods ago: must not trip the freshly closed circuit
        cb.record_failure(old)
        assert cb.state == CircuitState.CLOSED
        assert cb.consecutive_failures == 0

    def test_force_reset(self, clock) -> None:
        cb = CircuitBreaker("test", consecutive_failures=2, clock=clock)
        _trip(cb, 2)
        assert cb.state == CircuitState.OPEN
        cb.reset()
        assert cb.state == CircuitState.CLOSED
        assert cb.try_acquire() is not None

    def test_rejects_invalid_configuration(self) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker("test", window_size=0)
        with pytest.raises(ValueError):
            CircuitBreaker("test", failure_ratio=1.5)
        with pytest.raises(ValueError):
            CircuitBreaker("test", consecutive_failures=0)
