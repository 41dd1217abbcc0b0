from __future__ import annotations


class RetryableError(Exception):
    """Indicates a failure that may succeed on retry."""


class NonRetryableError(Exception):
    """Indicates a failure that should not be retried."""


class ThrottlingError(RetryableError):
    """The alerting backend rejected a call because of rate limiting."""

    def __init__(self, operation: str, code: str, message: str) -> None:
        super().__init__(f"{operation} throttled ({code}): {message}")
        self.operation = operation
        self.code = code


class RetryExhaustedError(NonRetryableError):
    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        super().__init__(f"{operation} still throttled after {attempts} attempts: {last_error}")
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class AlarmBackendError(NonRetryableError):
    def __init__(self, operation: str, code: str, message: str) -> None:
        super().__init__(f"{operation} failed ({code}): {message}")
        self.operation = operation
        self.code = code


class PruneError(NonRetryableError):
    """Raised when stale alarms for a resource could not be discovered or deleted."""
