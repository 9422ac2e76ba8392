"""Retry controller for the external text-generation call.

Only transient failures (HTTP 500/503, the INTERNAL status, overload or capacity
messages, timeouts) are retried, with exponential backoff. Anything else, such as
authorization or malformed-request errors, propagates on the first failure. The
last error is always re-raised unchanged so callers can inspect it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from map_sieve.errors import (
    NonRetryableUpstreamFailure,
    TransientUpstreamFailure,
    UpstreamFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUSES = frozenset({500, 503, "500", "503", "INTERNAL"})
TRANSIENT_MESSAGE_MARKERS = ("internal error", "500", "503", "overloaded", "capacity")
UNKNOWN_ERROR_MESSAGE = "Unknown error"


def _field(source: Any, name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def failure_statuses(error: BaseException | None) -> list[Any]:
    """Collect every status code or status name an error reports.

    Looks at the error itself, at a nested ``error`` payload such as
    ``{"error": {"code": 500}}``, and at an attached HTTP response.
    """
    if error is None:
        return []
    statuses = [_field(error, name) for name in ("status", "code", "status_code")]
    nested = _field(error, "error")
    if nested is not None:
        statuses.extend(_field(nested, name) for name in ("code", "status"))
    response = _field(error, "response")
    if response is not None:
        statuses.append(_field(response, "status_code"))
    return [status for status in statuses if status is not None and not callable(status)]


def failure_status(error: BaseException | None) -> Any:
    """Return the first status an error reports, or None."""
    statuses = failure_statuses(error)
    return statuses[0] if statuses else None


def failure_message(error: BaseException | None) -> str:
    """Return an error's message, falling back to a generic one for missing errors."""
    if error is None:
        return UNKNOWN_ERROR_MESSAGE
    message = _field(error, "message")
    nested = _field(error, "error")
    if (not isinstance(message, str) or not message) and nested is not None:
        message = _field(nested, "message")
    if not isinstance(message, str) or not message:
        message = str(error)
    return message or type(error).__name__


def is_transient(error: BaseException | None) -> bool:
    """Classify a failure as worth retrying.

    Args:
        error: The failure raised by the operation. None is never transient.

    Returns:
        True for server-side, overload and timeout failures.
    """
    if error is None or isinstance(error, asyncio.CancelledError):
        return False
    if isinstance(error, UpstreamFailure):
        return isinstance(error, TransientUpstreamFailure)
    if isinstance(error, TimeoutError) or "timeout" in type(error).__name__.lower():
        return True
    if any(status in TRANSIENT_STATUSES for status in failure_statuses(error)):
        return True
    message = failure_message(error).lower()
    if "timed out" in message:
        return True
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


def classify_failure(error: BaseException | None) -> UpstreamFailure:
    """Wrap a failed upstream call in the matching pipeline error.

    The caller raises the result ``from`` the original error. A missing error
    becomes a generic non-retryable "unknown error" failure.

    Args:
        error: The error the call raised, if any.

    Returns:
        A TransientUpstreamFailure or NonRetryableUpstreamFailure.
    """
    if isinstance(error, UpstreamFailure):
        return error
    if is_transient(error):
        return TransientUpstreamFailure(failure_message(error), status=failure_status(error))
    return NonRetryableUpstreamFailure(failure_message(error), status=failure_status(error))


def _log_retry(max_attempts: int) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        left = max_attempts - retry_state.attempt_number
        logger.warning(
            f"Upstream call failed ({failure_status(error) or failure_message(error)}). "
            f"Retrying in {delay:.1f}s, {left} attempt(s) left."
        )

    return log


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 4,
    initial_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures with exponential backoff.

    The delay starts at `initial_delay` and doubles after every failed attempt.
    Cancelling the awaiting task abandons a pending backoff delay.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt.
        max_attempts: Total number of calls, including the first. Values below 1
            count as 1.
        initial_delay: Seconds to wait before the first retry.
        sleep: Awaitable sleep used between attempts; tests inject a fake.

    Returns:
        The operation's result.

    Raises:
        Exception: The last error raised by the operation, unchanged.
    """
    attempts = max(1, int(max_attempts))
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=initial_delay, min=0, exp_base=2),
        retry=retry_if_exception(is_transient),
        sleep=sleep,
        before_sleep=_log_retry(attempts),
        reraise=True,
    )
    return await retrying(operation)
