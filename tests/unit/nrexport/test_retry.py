# tests/unit/nrexport/test_retry.py
"""Tests for RetryManager."""

import threading
import warnings

import pytest

from nrexport.errors import PermanentDeliveryError, RetryableDeliveryError
from nrexport.retry import MaxRetriesExceeded, RetryConfig, RetryManager, wait_backoff_or_retry_after
from tests.fixtures.ingest import SleepRecorder


class TestRetryConfig:
    def test_defaults(self) -> None:
        config = RetryConfig()
        assert config.max_attempts == 5
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.jitter == 0.5

    @pytest.mark.parametrize(
        ("kwargs", "message"),
        [
            ({"max_attempts": 0}, "max_attempts"),
            ({"base_delay": 0}, "base_delay"),
            ({"base_delay": 5.0, "max_delay": 1.0}, "max_delay"),
        ],
    )
    def test_invalid_values_rejected(self, kwargs: dict[str, float], message: str) -> None:
        with pytest.raises(ValueError, match=message):
            RetryConfig(**kwargs)

    def test_backoff_wait_uses_current_tenacity_api(self) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            wait = wait_backoff_or_retry_after(RetryConfig(base_delay=0.5, max_delay=8.0))
        assert wait._cap == 8.0


class _Flaky:
    """Fails with the given errors in order, then returns 'ok'."""

    def __init__(self, *errors: BaseException) -> None:
        self._errors = list(errors)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return "ok"


class TestRetryManager:
    def test_success_first_try(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=sleeps)

        assert manager.execute_with_retry(_Flaky()) == ("ok", 1)
        assert sleeps.delays == []

    def test_retries_retryable_errors(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=sleeps)
        operation = _Flaky(RetryableDeliveryError("HTTP 503"), RetryableDeliveryError("HTTP 503"))

        assert manager.execute_with_retry(operation) == ("ok", 3)
        assert len(sleeps.delays) == 2

    def test_exhaustion_raises_max_retries_exceeded(self) -> None:
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=SleepRecorder())
        error = RetryableDeliveryError("HTTP 503", status_code=503)
        operation = _Flaky(*(error for _ in range(5)))

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            manager.execute_with_retry(operation)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is error
        assert operation.calls == 3

    def test_non_retryable_error_propagates_immediately(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=5), sleep=sleeps)
        operation = _Flaky(PermanentDeliveryError("HTTP 400", status_code=400))

        with pytest.raises(PermanentDeliveryError):
            manager.execute_with_retry(operation)
        assert operation.calls == 1
        assert sleeps.delays == []

    def test_delays_strictly_increase_until_cap(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=6, base_delay=1.0, max_delay=100.0), sleep=sleeps)

        with pytest.raises(MaxRetriesExceeded):
            manager.execute_with_retry(_Flaky(*(RetryableDeliveryError("HTTP 500") for _ in range(6))))

        assert len(sleeps.delays) == 5
        assert all(later > earlier for earlier, later in zip(sleeps.delays, sleeps.delays[1:], strict=False))
        assert sleeps.delays[0] >= 1.0

    def test_delays_never_exceed_cap(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=8, base_delay=1.0, max_delay=4.0), sleep=sleeps)

        with pytest.raises(MaxRetriesExceeded):
            manager.execute_with_retry(_Flaky(*(RetryableDeliveryError("HTTP 500") for _ in range(8))))

        assert max(sleeps.delays) <= 4.0

    def test_retry_after_raises_delay(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=2, base_delay=0.5, max_delay=60.0), sleep=sleeps)

        manager.execute_with_retry(_Flaky(RetryableDeliveryError("HTTP 429", retry_after=7.0)))

        assert sleeps.delays == [7.0]

    def test_retry_after_capped(self) -> None:
        sleeps = SleepRecorder()
        manager = RetryManager(RetryConfig(max_attempts=2, base_delay=0.5, max_delay=10.0), sleep=sleeps)

        manager.execute_with_retry(_Flaky(RetryableDeliveryError("HTTP 429", retry_after=3600.0)))

        assert sleeps.delays == [10.0]

    def test_on_retry_callback(self) -> None:
        calls: list[tuple[int, str, float]] = []
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=SleepRecorder())

        manager.execute_with_retry(
            _Flaky(RetryableDeliveryError("HTTP 502")),
            on_retry=lambda attempt, error, delay: calls.append((attempt, str(error), delay)),
        )

        assert len(calls) == 1
        assert calls[0][:2] == (1, "HTTP 502")
        assert calls[0][2] > 0

    def test_stop_event_set_before_run_stops_after_first_failure(self) -> None:
        stop = threading.Event()
        stop.set()
        manager = RetryManager(RetryConfig(max_attempts=5), stop_event=stop, sleep=SleepRecorder())
        operation = _Flaky(*(RetryableDeliveryError("HTTP 503") for _ in range(5)))

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            manager.execute_with_retry(operation)

        assert operation.calls == 1
        assert exc_info.value.attempts == 1

    def test_stop_event_set_during_backoff_prevents_next_attempt(self) -> None:
        stop = threading.Event()
        manager = RetryManager(RetryConfig(max_attempts=5), stop_event=stop, sleep=lambda _: stop.set())
        operation = _Flaky(*(RetryableDeliveryError("HTTP 503") for _ in range(5)))

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            manager.execute_with_retry(operation)

        assert operation.calls == 1
        assert exc_info.value.attempts == 1

    def test_default_sleep_wakes_on_stop_event(self) -> None:
        stop = threading.Event()
        manager = RetryManager(RetryConfig(max_attempts=3, base_delay=30.0, max_delay=60.0), stop_event=stop)
        calls = 0

        def operation() -> None:
            nonlocal calls
            calls += 1
            raise RetryableDeliveryError("HTTP 503")

        timer = threading.Timer(0.05, stop.set)
        timer.start()
        try:
            with pytest.raises(MaxRetriesExceeded):
                manager.execute_with_retry(operation)
        finally:
            timer.cancel()

        assert calls == 1
