"""
Request Queue - Throttled, prioritized dispatch of Strava API calls

Callers submit requests from any thread and get a Future back. A single worker
thread drains the queue in buckets: each tick checks the usage budget, pops up
to ``bucket_size`` items (never more than the budget has left), dispatches them
one by one with a short spacing, then cools down before the next bucket.

Priority requests live in their own tier, drained before normal requests; each
tier is FIFO. A rate-limited request goes back to the end of the normal tier.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Any, Callable, List, Optional

from src.config import (
    BUCKET_SIZE,
    COOLING_PERIOD,
    INTER_REQUEST_DELAY,
    TICK_INTERVAL,
    DEFAULT_MAX_RETRIES
)
from src.models.models import DispatchOutcome, QueueItem, RequestSpec
from src.services import retry_classifier

logger = logging.getLogger(__name__)


class RequestQueue:
    """Single-worker queue in front of the Strava transport"""

    def __init__(self, transport, tracker, call_log=None,
                 bucket_size: int = BUCKET_SIZE,
                 cooling_period: float = COOLING_PERIOD,
                 inter_request_delay: float = INTER_REQUEST_DELAY,
                 tick_interval: float = TICK_INTERVAL,
                 default_max_retries: int = DEFAULT_MAX_RETRIES,
                 sleep: Optional[Callable[[float], Any]] = None,
                 api_name: str = "Strava"):
        """
        Initialize the queue

        Args:
            transport: Object with send(RequestSpec) -> DispatchOutcome
            tracker: UsageTracker gating dispatch
            call_log: Sink with emit(dict), or None
            bucket_size: Max items per drain
            cooling_period: Seconds to wait after each drain
            inter_request_delay: Seconds to wait before each dispatch
            tick_interval: Seconds between scheduler ticks when idle or limited
            default_max_retries: Retry budget for items that do not set one
            sleep: Pause function (defaults to an interruptible wait on stop())
            api_name: Label used in call-log records
        """
        self.transport = transport
        self.tracker = tracker
        self.call_log = call_log
        self.bucket_size = bucket_size
        self.cooling_period = cooling_period
        self.inter_request_delay = inter_request_delay
        self.tick_interval = tick_interval
        self.default_max_retries = default_max_retries
        self.api_name = api_name

        self._priority = deque()
        self._normal = deque()
        self._lock = threading.Lock()
        self._draining = False
        self._limited_logged = False

        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._sleep = sleep or self._stop_event.wait

    # -------------------------------------------------------------------------
    # Producers
    # -------------------------------------------------------------------------

    def submit(self, request_spec: RequestSpec, owner_id: str, priority: bool = False,
               max_retries: Optional[int] = None, background: bool = False,
               on_complete: Optional[Callable[[Any], None]] = None,
               on_error: Optional[Callable[[Exception], None]] = None) -> Future:
        """
        Queue a request without waiting for it

        Args:
            request_spec: The call to make (carries the bearer token)
            owner_id: User on whose behalf the call is made
            priority: Jump ahead of normal requests
            max_retries: Re-queues allowed after a 429
            background: Part of a tracked sync job
            on_complete: Called with the payload on success
            on_error: Called with the exception on failure

        Returns:
            Future resolved with the response payload or failed with a GovernorError

        Raises:
            ValueError: If the request has no URL
        """
        if request_spec is None or not request_spec.url:
            raise ValueError("Incomplete request: a URL is required")

        item = QueueItem(
            request_spec=request_spec,
            owner_id=owner_id,
            priority=priority,
            max_retries=self.default_max_retries if max_retries is None else max_retries,
            background=background,
            on_complete=on_complete,
            on_error=on_error
        )
        with self._lock:
            if priority:
                self._priority.append(item)
            else:
                self._normal.append(item)
            depth = len(self._priority) + len(self._normal)

        logger.debug("Queued %s %s for %s (priority=%s), queue size %d",
                     request_spec.method, request_spec.endpoint, owner_id, priority, depth)
        self._wake.set()
        return item.completion

    def enqueue(self, request_spec: RequestSpec, owner_id: str, priority: bool = False,
                max_retries: Optional[int] = None) -> Any:
        """
        Queue a request and block until it is resolved

        Returns:
            Response payload

        Raises:
            AuthExpired, ProviderError, RetryBudgetExhausted
        """
        future = self.submit(request_spec, owner_id, priority=priority, max_retries=max_retries)
        return future.result()

    def depth(self) -> int:
        """Number of requests waiting (not counting a batch being dispatched)"""
        with self._lock:
            return len(self._priority) + len(self._normal)

    # -------------------------------------------------------------------------
    # Scheduler
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """
        Run one scheduler pass

        Returns:
            Number of requests dispatched (0 when skipped)
        """
        with self._lock:
            if self._draining or not (self._priority or self._normal):
                return 0
            self._draining = True

        try:
            if self.tracker.is_limited():
                if not self._limited_logged:
                    logger.warning("Strava API limits reached, pausing queue (%d waiting)", self.depth())
                    self._limited_logged = True
                return 0
            if self._limited_logged:
                logger.info("Strava API budget available again, resuming queue")
                self._limited_logged = False

            batch = self._pop_batch(min(self.bucket_size, self.tracker.remaining()))
            dispatched = 0
            for item in batch:
                if item.retry_count == 0 and not item.completion.set_running_or_notify_cancel():
                    logger.debug("Dropping cancelled request %s", item.request_spec.endpoint)
                    continue
                self._sleep(self.inter_request_delay)
                self._dispatch(item)
                dispatched += 1

            self._sleep(self.cooling_period)
            return dispatched
        finally:
            with self._lock:
                self._draining = False

    def _pop_batch(self, size: int) -> List[QueueItem]:
        batch = []
        with self._lock:
            while len(batch) < size and self._priority:
                batch.append(self._priority.popleft())
            while len(batch) < size and self._normal:
                batch.append(self._normal.popleft())
        return batch

    def _dispatch(self, item: QueueItem) -> None:
        """Send one item and route its outcome"""
        spec = item.request_spec
        try:
            outcome = self.transport.send(spec)
        except Exception as e:
            logger.error("Transport raised for %s %s", spec.method, spec.endpoint, exc_info=True)
            outcome = DispatchOutcome(status_code=None, error=str(e))

        kind = retry_classifier.classify(outcome)
        decision = retry_classifier.decide(kind, item)
        self._log_call(item, outcome)

        if decision == retry_classifier.RESOLVE:
            self.tracker.record_call()
            self._resolve(item, outcome.payload)
        elif decision == retry_classifier.REQUEUE:
            item.retry_count += 1
            logger.warning("Strava rate limit hit for %s, re-queued (retry %d/%d)",
                           spec.endpoint, item.retry_count, item.max_retries)
            with self._lock:
                self._normal.append(item)
        else:
            error = retry_classifier.error_for(kind, outcome, item)
            if kind == retry_classifier.AUTH:
                logger.warning("Strava authentication failed for user %s on %s",
                               item.owner_id, spec.endpoint)
            else:
                logger.error("Strava request %s %s failed: %s", spec.method, spec.endpoint, error)
            self._reject(item, error)

    def _resolve(self, item: QueueItem, payload: Any) -> None:
        item.completion.set_result(payload)
        if item.on_complete is not None:
            try:
                item.on_complete(payload)
            except Exception:
                logger.exception("on_complete callback failed for %s", item.request_spec.endpoint)

    def _reject(self, item: QueueItem, error: Exception) -> None:
        item.completion.set_exception(error)
        if item.on_error is not None:
            try:
                item.on_error(error)
            except Exception:
                logger.exception("on_error callback failed for %s", item.request_spec.endpoint)

    def _log_call(self, item: QueueItem, outcome: DispatchOutcome) -> None:
        if self.call_log is None:
            return
        record = {
            "api": self.api_name,
            "endpoint": item.request_spec.endpoint,
            "method": item.request_spec.method,
            "status_code": outcome.status_code,
            "response_time_ms": round(outcome.elapsed_ms, 1),
            "queue_time_ms": round((time.time() - item.enqueued_at) * 1000, 1),
            "owner_id": item.owner_id,
            "attempt": item.attempts,
            "background": item.background,
        }
        if not outcome.ok:
            record["error"] = outcome.error or f"HTTP {outcome.status_code}"
        try:
            self.call_log.emit(record)
        except Exception:
            logger.exception("Call log sink failed")

    # -------------------------------------------------------------------------
    # Worker lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background worker thread"""
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._run, name="strava-queue", daemon=True)
        self._worker.start()
        logger.info("Strava request queue started (bucket=%d, cooling=%.1fs)",
                    self.bucket_size, self.cooling_period)

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the worker thread

        A batch already popped is finished without pauses; requests still queued
        stay queued and are dispatched if the queue is started again.
        """
        self._stop_event.set()
        self._wake.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None
        logger.info("Strava request queue stopped (%d waiting)", self.depth())

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self._wake.clear()
            try:
                dispatched = self.tick()
            except Exception:
                logger.exception("Unexpected error while draining the Strava queue")
                dispatched = 0
            if dispatched and self.depth():
                continue
            self._wake.wait(self.tick_interval)
