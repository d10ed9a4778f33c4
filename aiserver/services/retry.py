"""
Retry executor - exponential backoff with jitter for transient failures.

The executor never raises for a failed operation: it returns a RetryResult
describing the outcome. The named wrappers (retry_external_api,
retry_database, retry_file_system) turn a failed result back into an
exception for callers that prefer try/except.
"""

import asyncio
import errno
import random
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx
from loguru import logger

from aiserver.services.errors import OperationFailedError, RequestTimeoutError, RetryError

T = TypeVar("T")

RetryCondition = Callable[[BaseException], bool]
Sleep = Callable[[float], Awaitable[Any]]

RETRYABLE_STATUS_CODES = frozenset({408, 429})
RETRYABLE_NETWORK_CODES = frozenset({"ECONNRESET", "ENOTFOUND", "ETIMEDOUT"})
RETRYABLE_DATABASE_CODES = frozenset({"PGRST301", "PGRST302"})
RETRYABLE_FILE_SYSTEM_ERRNOS = frozenset({errno.EBUSY, errno.EMFILE, errno.ENFILE})


def get_status_code(error: BaseException) -> int | None:
    """
    Extract an HTTP status code from an HTTP-client-shaped error.

    Looks at ``error.status_code`` first, then ``error.response.status_code``
    and ``error.response.status`` (the response may be an object or a dict).
    """
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status

    response = getattr(error, "response", None)
    if response is None:
        return None

    if isinstance(response, dict):
        status = response.get("status_code", response.get("status"))
    else:
        status = getattr(response, "status_code", None)
        if status is None:
            status = getattr(response, "status", None)

    return status if isinstance(status, int) else None


def is_retryable_http_error(error: BaseException) -> bool:
    """Network resets, DNS failures, timeouts, 5xx, 429 and 408 are retryable."""
    if isinstance(
        error,
        (
            httpx.TimeoutException,
            httpx.ConnectError,
            httpx.ReadError,
            httpx.WriteError,
            httpx.RemoteProtocolError,
            TimeoutError,
            ConnectionResetError,
            socket.gaierror,
        ),
    ):
        return True

    if getattr(error, "code", None) in RETRYABLE_NETWORK_CODES:
        return True

    status = get_status_code(error)
    if status is None:
        return False
    return status >= 500 or status in RETRYABLE_STATUS_CODES


def is_retryable_database_error(error: BaseException) -> bool:
    """Only transient connection problems are worth retrying against the database."""
    if isinstance(
        error,
        (
            RequestTimeoutError,
            httpx.TimeoutException,
            httpx.ConnectError,
            TimeoutError,
            ConnectionResetError,
        ),
    ):
        return True

    if getattr(error, "code", None) in RETRYABLE_DATABASE_CODES:
        return True

    message = str(error).lower()
    return "timeout" in message or "connection" in message


def is_retryable_file_system_error(error: BaseException) -> bool:
    return isinstance(error, OSError) and error.errno in RETRYABLE_FILE_SYSTEM_ERRNOS


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy. Delays are in seconds."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retry_condition: RetryCondition | None = field(
        default=is_retryable_http_error, compare=False
    )


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retry run. Exactly one of result/error is meaningful."""

    success: bool
    attempts: int
    total_time: float
    last_attempt_time: float
    result: T | None = None
    error: BaseException | None = None


DEFAULT_RETRY = RetryConfig()

# External APIs: aggressive retries on network and server errors
EXTERNAL_API_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=10.0,
    exponential_base=2.0,
    jitter=True,
    retry_condition=is_retryable_http_error,
)

# Database: more, faster attempts with a gentler backoff
DATABASE_RETRY = RetryConfig(
    max_attempts=5,
    base_delay=0.5,
    max_delay=5.0,
    exponential_base=1.5,
    jitter=True,
    retry_condition=is_retryable_database_error,
)

FILE_SYSTEM_RETRY = RetryConfig(
    max_attempts=3,
    base_delay=0.2,
    max_delay=2.0,
    exponential_base=2.0,
    jitter=False,
    retry_condition=is_retryable_file_system_error,
)


def compute_delay(
    attempt: int,
    config: RetryConfig,
    rng: Callable[[], float] = random.random,
) -> float:
    """
    Backoff before the attempt following ``attempt`` (1-based).

    The exponential delay is capped at max_delay before jitter scales it
    into [0.5, 1.0] of its value.
    """
    exponent = max(attempt - 1, 0)
    if config.base_delay <= 0:
        delay = 0.0
    else:
        try:
            delay = config.base_delay * config.exponential_base**exponent
        except OverflowError:
            delay = config.max_delay
    delay = max(min(delay, config.max_delay), 0.0)

    if config.jitter:
        delay *= 0.5 + rng() * 0.5

    return delay


def _operation_label(operation: Callable[..., Any]) -> str:
    return getattr(operation, "__name__", None) or "anonymous"


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    sleep: Sleep = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> RetryResult[T]:
    """
    Run an operation until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable returning an awaitable
        config: Retry policy (DEFAULT_RETRY if omitted)
        sleep: Awaitable sleep used for backoff
        rng: Source of uniform [0, 1) numbers for jitter

    Returns:
        RetryResult with the number of invocations actually made
    """
    config = config or DEFAULT_RETRY
    label = _operation_label(operation)
    log = logger.bind(operation=label)
    start = time.monotonic()
    last_error: BaseException | None = None
    attempts = 0

    for attempt in range(1, config.max_attempts + 1):
        attempts = attempt
        log.debug(f"Retry attempt {attempt}/{config.max_attempts} for {label}")

        try:
            result = await operation()
        except Exception as e:
            last_error = e
            log.warning(
                f"Attempt {attempt}/{config.max_attempts} for {label} failed: {e}"
            )

            retryable = config.retry_condition is not None and config.retry_condition(e)
            if attempt >= config.max_attempts or not retryable:
                break

            delay = compute_delay(attempt, config, rng)
            log.debug(f"Waiting {delay:.3f}s before retrying {label}")
            await sleep(delay)
            continue

        total_time = time.monotonic() - start
        log.debug(f"{label} succeeded on attempt {attempt} ({total_time:.3f}s)")
        return RetryResult(
            success=True,
            result=result,
            attempts=attempt,
            total_time=total_time,
            last_attempt_time=time.time(),
        )

    if last_error is None:
        last_error = RetryError(
            f"{label} was not attempted (max_attempts={config.max_attempts})"
        )

    total_time = time.monotonic() - start
    log.error(
        f"{label} failed after {attempts} attempt(s) in {total_time:.3f}s: {last_error}"
    )
    return RetryResult(
        success=False,
        error=last_error,
        attempts=attempts,
        total_time=total_time,
        last_attempt_time=time.time(),
    )


async def _retry_or_raise(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    operation_name: str | None,
) -> T:
    outcome = await execute_with_retry(operation, config)
    if outcome.success:
        return outcome.result  # type: ignore[return-value]

    error = outcome.error or RetryError(
        f"Operation failed after {outcome.attempts} attempts"
    )
    if operation_name:
        raise OperationFailedError(operation_name, error, outcome.attempts) from error
    raise error


async def retry_external_api(
    operation: Callable[[], Awaitable[T]],
    operation_name: str | None = None,
) -> T:
    """Run an external API call under EXTERNAL_API_RETRY."""
    return await _retry_or_raise(operation, EXTERNAL_API_RETRY, operation_name)


async def retry_database(
    operation: Callable[[], Awaitable[T]],
    operation_name: str | None = None,
) -> T:
    """Run a database call under DATABASE_RETRY."""
    return await _retry_or_raise(operation, DATABASE_RETRY, operation_name)


async def retry_file_system(
    operation: Callable[[], Awaitable[T]],
    operation_name: str | None = None,
) -> T:
    """Run a file-system operation under FILE_SYSTEM_RETRY."""
    return await _retry_or_raise(operation, FILE_SYSTEM_RETRY, operation_name)


def make_retry_runner(
    config: RetryConfig,
) -> Callable[[Callable[[], Awaitable[T]], str | None], Awaitable[T]]:
    """Build a runner with the same contract as retry_external_api for a custom policy."""

    async def runner(
        operation: Callable[[], Awaitable[T]],
        operation_name: str | None = None,
    ) -> T:
        return await _retry_or_raise(operation, config, operation_name)

    return runner
