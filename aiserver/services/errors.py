"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
        code: str | None = None,
    ):
        self.service_id = service_id
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker is OPEN for {service_id}, "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
            status_code=408,
        )


class RateLimitError(ServiceError):
    """Rate limit exceeded."""

    def __init__(self, service_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id, status_code=429)


class ServiceUnavailableError(ServiceError):
    """Service is temporarily unavailable (5xx)."""

    pass


class RetryError(ServiceError):
    """Retry run finished without a usable error from the operation."""

    pass


class OperationFailedError(ServiceError):
    """A named operation failed after exhausting its retry policy."""

    def __init__(self, operation_name: str, error: BaseException, attempts: int):
        self.operation_name = operation_name
        self.attempts = attempts
        self.original = error
        super().__init__(
            f"{operation_name}: {error}",
            service_id=getattr(error, "service_id", None),
            status_code=getattr(error, "status_code", None),
            code=getattr(error, "code", None),
        )
