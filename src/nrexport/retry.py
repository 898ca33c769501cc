# src/nrexport/retry.py
"""Retry policy for batch delivery, built on tenacity.

Backoff doubles from base_delay per attempt, with up to base_delay / 2 of
random jitter, capped at max_delay. Because the jitter never exceeds half the
base, consecutive delays strictly increase until the cap is reached. A
Retry-After hint from the server raises the delay (never above the cap).

The retry loop stops early when the shutdown event is set, and the default
sleep waits on that same event so shutdown interrupts a pending backoff.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from nrexport.errors import RetryableDeliveryError

if TYPE_CHECKING:
    from nrexport.config import ExporterSettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when retry attempts are exhausted (or cut short by shutdown)."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 5
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay <= 0:
            raise ValueError("base_delay must be > 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    @property
    def jitter(self) -> float:
        return self.base_delay / 2

    @classmethod
    def from_settings(cls, settings: "ExporterSettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_retries,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_cap_seconds,
        )


class wait_backoff_or_retry_after(wait_base):
    """Exponential jittered backoff that honours a server Retry-After hint."""

    def __init__(self, config: RetryConfig) -> None:
        self._backoff = wait_exponential_jitter(
            multiplier=config.base_delay,
            max=config.max_delay,
            exp_base=2.0,
            jitter=config.jitter,
        )
        self._cap = config.max_delay

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state)
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            error = outcome.exception()
            if isinstance(error, RetryableDeliveryError) and error.retry_after is not None:
                delay = max(delay, min(error.retry_after, self._cap))
        return delay


class RetryManager:
    """Runs an operation with backoff on RetryableDeliveryError.

    Any other exception propagates immediately on the attempt that raised it.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3), stop_event=event)
        response = manager.execute_with_retry(lambda: send(request))
    """

    def __init__(
        self,
        config: RetryConfig,
        *,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self._config = config
        self._stop_event = stop_event or threading.Event()
        self._sleep = sleep or self._interruptible_sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _interruptible_sleep(self, seconds: float) -> None:
        self._stop_event.wait(seconds)

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        on_retry: Callable[[int, BaseException, float], None] | None = None,
    ) -> tuple[T, int]:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            on_retry: Optional callback (attempt, error, next_delay) before each backoff

        Returns:
            Tuple of (result, attempts used)

        Raises:
            MaxRetriesExceeded: If attempts are exhausted or shutdown stopped the loop
            Exception: Any non-retryable error raised by the operation
        """
        attempt = 0
        last_error: BaseException | None = None

        def _before_sleep(retry_state: RetryCallState) -> None:
            if on_retry is None or retry_state.outcome is None:
                return
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            error = retry_state.outcome.exception()
            if error is not None:
                on_retry(retry_state.attempt_number, error, delay)

        try:
            for attempt_state in Retrying(
                stop=stop_after_attempt(self._config.max_attempts) | stop_when_event_set(self._stop_event),
                wait=wait_backoff_or_retry_after(self._config),
                retry=retry_if_exception_type(RetryableDeliveryError),
                sleep=self._sleep,
                before_sleep=_before_sleep,
                reraise=False,  # RetryError is converted to MaxRetriesExceeded below
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    # Shutdown while backing off: give up without another request
                    if attempt > 1 and last_error is not None and self._stop_event.is_set():
                        raise MaxRetriesExceeded(attempt - 1, last_error)
                    try:
                        return operation(), attempt
                    except RetryableDeliveryError as e:
                        last_error = e
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
