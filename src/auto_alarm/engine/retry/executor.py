from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from auto_alarm.util.errors import AlarmBackendError, RetryExhaustedError, ThrottlingError
from auto_alarm.util.logging import get_logger, log_event
from auto_alarm.util.metrics import CloudWatchMetrics

T = TypeVar("T")
ItemT = TypeVar("ItemT")

THROTTLING_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "RequestThrottled",
    "RequestThrottledException",
    "TooManyRequestsException",
    "RateExceeded",
    "SlowDown",
}


def classify_error(operation: str, exc: Exception) -> Exception:
    """Map a boto3 failure onto ThrottlingError or AlarmBackendError."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message", str(exc))
        if code in THROTTLING_CODES:
            return ThrottlingError(operation, code, message)
        return AlarmBackendError(operation, code, message)
    return AlarmBackendError(operation, exc.__class__.__name__, str(exc))


@dataclass
class AdaptiveDelay:
    """Inter-batch delay that tracks the provider's rate limit.

    The delay grows after a batch that saw throttling and shrinks after a batch
    that finished well inside the current delay budget.
    """

    current: float = 0.5
    minimum: float = 0.1
    maximum: float = 30.0
    grow_factor: float = 2.0
    shrink_factor: float = 0.75

    def after_batch(self, *, throttled: bool, elapsed: float) -> float:
        if throttled:
            self.current = min(self.maximum, self.current * self.grow_factor)
        elif elapsed < self.current / 2:
            self.current = max(self.minimum, self.current * self.shrink_factor)
        return self.current


@dataclass
class BatchOutcome:
    succeeded: List[Any] = field(default_factory=list)
    failed: List[tuple] = field(default_factory=list)
    delays: List[float] = field(default_factory=list)


class RetryExecutor:
    def __init__(
        self,
        *,
        max_attempts: int = 8,
        base_delay: float = 0.25,
        max_delay: float = 20.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger(self.__class__.__name__)
        self.throttle_count = 0

    def backoff(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def call(self, operation: str, fn: Callable[..., T], **kwargs: Any) -> T:
        last_error: Optional[ThrottlingError] = None
        for attempt in range(self.max_attempts):
            try:
                return fn(**kwargs)
            except (BotoCoreError, ClientError) as exc:
                error = classify_error(operation, exc)
                if not isinstance(error, ThrottlingError):
                    log_event(
                        self.logger,
                        "backend_call_failed",
                        operation=operation,
                        error=str(error),
                        request=kwargs,
                    )
                    raise error from exc
                last_error = error
            self.throttle_count += 1
            if self.metrics:
                self.metrics.record_throttle(operation=operation)
            if attempt + 1 >= self.max_attempts:
                break
            delay = self.backoff(attempt)
            log_event(
                self.logger,
                "backend_call_throttled",
                operation=operation,
                attempt=attempt + 1,
                delay_seconds=delay,
            )
            self.sleep(delay)
        raise RetryExhaustedError(operation, self.max_attempts, last_error)

    def run_batches(
        self,
        operation: str,
        items: Iterable[ItemT],
        fn: Callable[[ItemT], Any],
        *,
        batch_size: int,
        delay: Optional[AdaptiveDelay] = None,
    ) -> BatchOutcome:
        """Apply ``fn`` to every item, pacing batches with an adaptive delay.

        ``fn`` is expected to issue its backend calls through :meth:`call`. A
        failure of one item is recorded and does not stop the remaining items.
        """
        delay = delay or AdaptiveDelay()
        outcome = BatchOutcome()
        batches = chunked(list(items), batch_size)
        for index, batch in enumerate(batches):
            throttles_before = self.throttle_count
            started = self.clock()
            for item in batch:
                try:
                    fn(item)
                    outcome.succeeded.append(item)
                except (RetryExhaustedError, AlarmBackendError) as exc:
                    outcome.failed.append((item, exc))
            elapsed = self.clock() - started
            pause = delay.after_batch(throttled=self.throttle_count > throttles_before, elapsed=elapsed)
            outcome.delays.append(pause)
            if index + 1 < len(batches):
                self.sleep(pause)
        log_event(
            self.logger,
            "batches_complete",
            operation=operation,
            succeeded=len(outcome.succeeded),
            failed=len(outcome.failed),
            final_delay_seconds=delay.current,
        )
        return outcome


def chunked(items: Sequence[ItemT], size: int) -> List[List[ItemT]]:
    if size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]
