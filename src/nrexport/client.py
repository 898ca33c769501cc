# src/nrexport/client.py
"""Delivery client: serialize, send, classify, retry and split.

One DeliveryClient targets one ingestion endpoint and owns one httpx.Client.
deliver() never raises; every failure is folded into the returned
DeliveryReport.

Response classification:
- 2xx               -> delivered
- 408, 429, 5xx     -> retried with backoff, PermanentFailure when exhausted
- 413               -> batch halved, both halves delivered independently
- other 4xx         -> PermanentFailure, not retried
- transport errors  -> retried like 5xx

Splitting stops at a single entry: a lone entry that was itself produced by
a split and still gets 413 is dropped as a PermanentFailure for that entry
only. The rest of the original batch is unaffected, so a report may be a
partial success.

Thread Safety:
    deliver() may be called from several threads. Split halves run on a
    bounded worker pool when a slot is free, otherwise inline on the calling
    thread, so nested splits can never deadlock on pool exhaustion.
    Counters and the in-flight count are guarded by _state_lock.
"""

import threading
import time
from collections.abc import Callable
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog

from nrexport._version import __version__
from nrexport.batch import encode_body, serialize_batch
from nrexport.config import ExporterSettings
from nrexport.errors import (
    ConfigurationError,
    PayloadTooLargeError,
    PermanentDeliveryError,
    RetryableDeliveryError,
    ShutdownInProgressError,
)
from nrexport.model import (
    Batch,
    DeliveryOutcome,
    DeliveryReport,
    PermanentFailure,
    RetryableFailure,
    Success,
)
from nrexport.retry import MaxRetriesExceeded, RetryConfig, RetryManager

logger = structlog.get_logger(__name__)
audit_logger = structlog.get_logger("nrexport.audit")

USER_AGENT = f"nrexport/{__version__}"

_RETRYABLE_CLIENT_ERRORS = frozenset({408, 429})


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - datetime.now(UTC)).total_seconds())


def classify_response(status_code: int, *, entry_count: int, retry_after: float | None = None) -> DeliveryOutcome:
    """Classify an HTTP status for a batch of ``entry_count`` entries.

    413 is returned as a PermanentFailure with status_code=413; the client
    recognises it and splits instead of giving up.
    """
    if 200 <= status_code < 300:
        return Success(entry_count)
    if status_code in _RETRYABLE_CLIENT_ERRORS or 500 <= status_code < 600:
        return RetryableFailure(f"HTTP {status_code}", entry_count, retry_after=retry_after, status_code=status_code)
    if status_code == 413:
        return PermanentFailure("HTTP 413 payload too large", entry_count, status_code=413)
    return PermanentFailure(f"HTTP {status_code}", entry_count, status_code=status_code)


@dataclass(frozen=True, slots=True)
class ShutdownReport:
    """Result of draining a client.

    Attributes:
        timed_out: Grace period elapsed with deliveries still running
        in_flight: Deliveries still running when the client closed
        elapsed_seconds: Time spent waiting for in-flight work
    """

    timed_out: bool = False
    in_flight: int = 0
    elapsed_seconds: float = 0.0


class DeliveryClient:
    """Sends batches to one ingestion endpoint.

    Example:
        client = DeliveryClient(settings.resolved_span_endpoint, settings, name="spans")
        report = client.deliver(batch)
        if not report.succeeded:
            ...
        client.shutdown()
    """

    def __init__(
        self,
        endpoint: str,
        settings: ExporterSettings,
        *,
        name: str = "delivery",
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            endpoint: Ingestion URL batches are POSTed to
            settings: Validated exporter settings
            name: Label used in logs and worker thread names
            transport: httpx transport; tests pass httpx.MockTransport
            sleep: Backoff sleep; defaults to a wait on the shutdown event

        Raises:
            ConfigurationError: If endpoint is empty
        """
        if not endpoint:
            raise ConfigurationError(name, "endpoint must not be empty")
        self._endpoint = endpoint
        self._settings = settings
        self._name = name

        self._state_lock = threading.Lock()
        self._idle = threading.Condition(self._state_lock)
        self._shutdown_event = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shutdown_report: ShutdownReport | None = None
        self._in_flight = 0

        # Health metrics
        self._batches_sent = 0
        self._entries_delivered = 0
        self._entries_failed = 0
        self._retries = 0
        self._splits = 0

        self._retry = RetryManager(
            RetryConfig.from_settings(settings),
            stop_event=self._shutdown_event,
            sleep=sleep,
        )

        headers = {
            "Api-Key": settings.api_key,
            "Content-Type": "application/json",
            "Data-Format": "newrelic",
            "Data-Format-Version": "1",
            "User-Agent": USER_AGENT,
        }
        if settings.compress:
            headers["Content-Encoding"] = "gzip"
        self._client = httpx.Client(
            timeout=settings.timeout_seconds,
            headers=headers,
            transport=transport,
            follow_redirects=False,
        )

        workers = settings.max_split_concurrency
        self._split_slots = threading.BoundedSemaphore(workers) if workers > 0 else None
        self._executor = (
            ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"nrexport-{name}-split") if workers > 0 else None
        )

        logger.debug(
            "Delivery client created",
            client=self._name,
            endpoint=self._endpoint,
            api_key=settings.redacted_api_key,
            max_attempts=settings.max_retries,
            compress=settings.compress,
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def deliver(self, batch: Batch) -> DeliveryReport:
        """Deliver a batch, retrying and splitting as needed.

        Never raises. An empty batch returns an empty (successful) report
        without touching the network. Batches handed over after shutdown
        began are rejected as a PermanentFailure.
        """
        if batch.is_empty:
            return DeliveryReport.empty()

        try:
            self._enter(len(batch))
        except ShutdownInProgressError as e:
            logger.warning("Delivery rejected, client is shut down", client=self._name, entries=len(batch))
            return DeliveryReport.from_outcome(PermanentFailure(e.reason, len(batch)), attempts=0)

        try:
            report = self._deliver(batch, depth=0)
        except Exception as e:
            logger.error(
                "Unexpected delivery failure",
                client=self._name,
                entries=len(batch),
                error=str(e),
                exc_info=True,
            )
            report = DeliveryReport.from_outcome(
                PermanentFailure(f"unexpected error: {type(e).__name__}: {e}", len(batch)),
                attempts=0,
            )
        finally:
            self._exit()

        with self._state_lock:
            self._batches_sent += 1
            self._entries_delivered += report.delivered
            self._entries_failed += report.failed
        return report

    def _enter(self, entry_count: int) -> None:
        with self._state_lock:
            if self._shutdown_event.is_set():
                raise ShutdownInProgressError("client is shut down", entry_count=entry_count)
            self._in_flight += 1

    def _exit(self) -> None:
        with self._idle:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.notify_all()

    def _deliver(self, batch: Batch, depth: int) -> DeliveryReport:
        if batch.is_empty:
            return DeliveryReport.empty()

        entry_count = len(batch)
        payload = serialize_batch(batch)
        if self._settings.audit_logging:
            audit_logger.info(
                "Outgoing payload",
                client=self._name,
                endpoint=self._endpoint,
                entries=entry_count,
                payload=payload.decode("utf-8"),
            )
        body = encode_body(payload, compress=self._settings.compress)

        attempts = 0

        def attempt() -> None:
            nonlocal attempts
            attempts += 1
            self._post(body, entry_count, attempts)

        try:
            self._retry.execute_with_retry(attempt, on_retry=self._log_retry)
        except PayloadTooLargeError:
            return self._split(batch, depth, attempts)
        except MaxRetriesExceeded as e:
            status_code = e.last_error.status_code if isinstance(e.last_error, RetryableDeliveryError) else None
            failure = PermanentFailure(
                f"retries exhausted after {e.attempts} attempts: {e.last_error}",
                entry_count,
                status_code=status_code,
            )
            logger.error(
                "Delivery failed after retries",
                client=self._name,
                entries=entry_count,
                attempts=e.attempts,
                status=status_code,
                reason=str(e.last_error),
                shutdown=self._shutdown_event.is_set(),
            )
            return DeliveryReport.from_outcome(failure, attempts=attempts)
        except PermanentDeliveryError as e:
            logger.error(
                "Delivery rejected",
                client=self._name,
                entries=entry_count,
                status=e.status_code,
                reason=e.reason,
            )
            return DeliveryReport.from_outcome(
                PermanentFailure(e.reason, entry_count, status_code=e.status_code),
                attempts=attempts,
            )

        return DeliveryReport.from_outcome(Success(entry_count), attempts=attempts)

    def _post(self, body: bytes, entry_count: int, attempt: int) -> None:
        """One HTTP exchange. Raises a DeliveryError subclass on anything but 2xx."""
        try:
            response = self._client.post(self._endpoint, content=body)
        except httpx.TransportError as e:
            logger.debug(
                "Delivery attempt failed",
                client=self._name,
                endpoint=self._endpoint,
                entries=entry_count,
                attempt=attempt,
                error=type(e).__name__,
            )
            raise RetryableDeliveryError(
                f"transport error: {type(e).__name__}: {e}",
                entry_count=entry_count,
            ) from e

        outcome = classify_response(
            response.status_code,
            entry_count=entry_count,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
        logger.debug(
            "Delivery attempt completed",
            client=self._name,
            endpoint=self._endpoint,
            entries=entry_count,
            attempt=attempt,
            status=response.status_code,
        )

        match outcome:
            case Success():
                return
            case RetryableFailure(reason=reason, retry_after=retry_after, status_code=status_code):
                raise RetryableDeliveryError(
                    reason,
                    status_code=status_code,
                    entry_count=entry_count,
                    retry_after=retry_after,
                )
            case PermanentFailure(status_code=413):
                raise PayloadTooLargeError(outcome.reason, status_code=413, entry_count=entry_count)
            case PermanentFailure(reason=reason, status_code=status_code):
                raise PermanentDeliveryError(reason, status_code=status_code, entry_count=entry_count)

    def _log_retry(self, attempt: int, error: BaseException, delay: float) -> None:
        with self._state_lock:
            self._retries += 1
        logger.warning(
            "Delivery attempt failed, retrying",
            client=self._name,
            endpoint=self._endpoint,
            attempt=attempt,
            delay_seconds=round(delay, 3),
            status=getattr(error, "status_code", None),
            reason=str(error),
        )

    # ------------------------------------------------------------------
    # Splitting
    # ------------------------------------------------------------------

    def _split(self, batch: Batch, depth: int, attempts: int) -> DeliveryReport:
        if len(batch) == 1 and depth > 0:
            failure = PermanentFailure("entry exceeds maximum payload size", 1, status_code=413)
            logger.error("Dropping oversized entry", client=self._name, depth=depth)
            return DeliveryReport.from_outcome(failure, attempts=attempts)

        first, second = batch.split()
        with self._state_lock:
            self._splits += 1
        logger.info(
            "Splitting oversized batch",
            client=self._name,
            entries=len(batch),
            first_half=len(first),
            second_half=len(second),
            depth=depth,
        )

        future = self._submit_half(first, depth + 1)
        if future is None:
            first_report = self._deliver_isolated(first, depth + 1)
            second_report = self._deliver_isolated(second, depth + 1)
        else:
            try:
                second_report = self._deliver_isolated(second, depth + 1)
            finally:
                first_report = self._await_half(future, first)

        parent = DeliveryReport(total=0, attempts=attempts, splits=1)
        return parent.combine(first_report).combine(second_report)

    def _deliver_isolated(self, half: Batch, depth: int) -> DeliveryReport:
        """Deliver one half, turning unexpected errors into a failure of that half only."""
        try:
            return self._deliver(half, depth)
        except Exception as e:
            logger.error(
                "Unexpected failure delivering split half",
                client=self._name,
                entries=len(half),
                depth=depth,
                error=str(e),
                exc_info=True,
            )
            return DeliveryReport.from_outcome(
                PermanentFailure(f"unexpected error: {type(e).__name__}: {e}", len(half)),
                attempts=0,
            )

    def _await_half(self, future: "Future[DeliveryReport]", half: Batch) -> DeliveryReport:
        try:
            return future.result()
        except CancelledError:
            # Queued half dropped by a timed-out shutdown
            return DeliveryReport.from_outcome(
                PermanentFailure("split half cancelled by shutdown", len(half)),
                attempts=0,
            )

    def _submit_half(self, half: Batch, depth: int) -> "Future[DeliveryReport] | None":
        """Run a half on the worker pool if a slot is free, else return None."""
        if half.is_empty or self._executor is None or self._split_slots is None:
            return None
        if not self._split_slots.acquire(blocking=False):
            return None
        try:
            return self._executor.submit(self._deliver_half, half, depth)
        except RuntimeError:
            # Executor already shut down
            self._split_slots.release()
            return None

    def _deliver_half(self, half: Batch, depth: int) -> DeliveryReport:
        assert self._split_slots is not None
        try:
            return self._deliver_isolated(half, depth)
        finally:
            self._split_slots.release()

    # ------------------------------------------------------------------
    # Health and lifecycle
    # ------------------------------------------------------------------

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of delivery counters for monitoring."""
        with self._state_lock:
            return {
                "client": self._name,
                "batches_sent": self._batches_sent,
                "entries_delivered": self._entries_delivered,
                "entries_failed": self._entries_failed,
                "retries": self._retries,
                "splits": self._splits,
                "in_flight": self._in_flight,
            }

    def shutdown(self, timeout: float | None = None) -> ShutdownReport:
        """Stop accepting deliveries, drain in-flight work, release the transport.

        Shutdown sequence:
        1. Set the shutdown event: new deliver() calls are rejected, retry
           loops stop after their current attempt, backoff sleeps wake up
        2. Wait for in-flight deliveries (including split halves) until the
           grace period elapses
        3. Close the split worker pool and the httpx client

        A timeout is reported in the returned ShutdownReport, never raised.
        Idempotent: later calls return the first report.

        Args:
            timeout: Grace period in seconds; defaults to shutdown_grace_seconds
        """
        with self._shutdown_lock:
            if self._shutdown_report is not None:
                return self._shutdown_report

            grace = self._settings.shutdown_grace_seconds if timeout is None else timeout
            started = time.monotonic()
            deadline = started + grace

            with self._idle:
                self._shutdown_event.set()
                while self._in_flight > 0:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._idle.wait(remaining)
                pending = self._in_flight

            timed_out = pending > 0
            if timed_out:
                logger.warning(
                    "Shutdown grace period elapsed with deliveries in flight",
                    client=self._name,
                    in_flight=pending,
                    grace_seconds=grace,
                )

            try:
                if self._executor is not None:
                    self._executor.shutdown(wait=not timed_out, cancel_futures=True)
            finally:
                self._client.close()

            self._shutdown_report = ShutdownReport(
                timed_out=timed_out,
                in_flight=pending,
                elapsed_seconds=time.monotonic() - started,
            )
            logger.info("Delivery client shut down", **self.health_metrics)
            return self._shutdown_report

    def __enter__(self) -> "DeliveryClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
