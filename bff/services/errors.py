"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class UnsupportedOperationError(CacheError):
    """The backing store cannot perform the requested operation."""

    pass


class CallTimeoutError(ServiceError):
    """A single attempt did not settle before its deadline."""

    def __init__(self, label: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Call '{label}' timed out after {timeout_ms}ms",
            service_id=label,
        )


class RetryExhaustedError(ServiceError):
    """Every attempt of a retryable call failed."""

    def __init__(self, label: str, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Call '{label}' failed after {attempts} attempts: "
            f"{type(last_error).__name__}: {last_error}",
            service_id=label,
        )
