"""Tests for the retry controller and failure classification."""

import asyncio

import pytest

from map_sieve.backend.retry import (
    UNKNOWN_ERROR_MESSAGE,
    classify_failure,
    failure_status,
    is_transient,
    with_retry,
)
from map_sieve.errors import (
    NonRetryableUpstreamFailure,
    TransientUpstreamFailure,
)


class ApiError(Exception):
    """Stand-in for an SDK error carrying a status code."""

    def __init__(self, message: str, code: object = None) -> None:
        super().__init__(message)
        self.code = code


class RecordingSleep:
    """Awaitable sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyOperation:
    """Operation that raises the queued errors, then returns a value."""

    def __init__(self, *errors: BaseException, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class AlwaysFailing:
    """Operation that raises the same error on every call."""

    def __init__(self, error: BaseException) -> None:
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        raise self.error


@pytest.fixture
def sleep() -> RecordingSleep:
    """Fixture for a sleep that never waits."""
    return RecordingSleep()


class TestClassification:
    """Tests for transient failure detection."""

    @pytest.mark.parametrize(
        "error",
        [
            ApiError("Server error", code=500),
            ApiError("Service unavailable", code=503),
            ApiError("Server error", code="INTERNAL"),
            ApiError("The model is overloaded. Please try again later."),
            ApiError("An internal error has occurred"),
            ApiError("Not enough capacity"),
            ApiError("Request timed out"),
            TimeoutError(),
            TransientUpstreamFailure("still overloaded"),
        ],
    )
    def test_transient(self, error: BaseException) -> None:
        """Test errors that are worth retrying."""
        assert is_transient(error)

    @pytest.mark.parametrize(
        "error",
        [
            None,
            ApiError("Permission denied", code=403),
            ApiError("API key not valid", code=400),
            ApiError("Resource exhausted", code=429),
            ValueError("bad request"),
            NonRetryableUpstreamFailure("blocked", status="SAFETY"),
        ],
    )
    def test_not_transient(self, error: BaseException | None) -> None:
        """Test errors that must propagate immediately."""
        assert not is_transient(error)

    def test_nested_error_payload(self) -> None:
        """Test that a status inside an error payload is recognized."""
        error = ApiError("failed")
        error.error = {"code": 503, "message": "unavailable"}
        assert is_transient(error)
        assert failure_status(error) == 503

    def test_classify_transient(self) -> None:
        """Test wrapping a transient error."""
        failure = classify_failure(ApiError("Service unavailable", code=503))
        assert isinstance(failure, TransientUpstreamFailure)
        assert failure.status == 503
        assert failure.message == "Service unavailable"

    def test_classify_non_retryable(self) -> None:
        """Test wrapping a permanent error."""
        failure = classify_failure(ApiError("Permission denied", code=403))
        assert isinstance(failure, NonRetryableUpstreamFailure)
        assert failure.status == 403

    def test_classify_missing_error(self) -> None:
        """Test that an absent error becomes a generic failure instead of crashing."""
        failure = classify_failure(None)
        assert isinstance(failure, NonRetryableUpstreamFailure)
        assert failure.message == UNKNOWN_ERROR_MESSAGE
        assert failure.status is None

    def test_classify_passes_pipeline_errors_through(self) -> None:
        """Test that an already classified failure is returned as is."""
        failure = NonRetryableUpstreamFailure("blocked", status="SAFETY")
        assert classify_failure(failure) is failure


class TestWithRetry:
    """Tests for retry bounds and backoff."""

    def test_success_without_retry(self, sleep: RecordingSleep) -> None:
        """Test that a succeeding operation is called once."""
        operation = FlakyOperation()
        assert asyncio.run(with_retry(operation, sleep=sleep)) == "ok"
        assert operation.calls == 1
        assert sleep.delays == []

    def test_retry_bound(self, sleep: RecordingSleep) -> None:
        """Test that a transient failure is attempted exactly max_attempts times."""
        error = ApiError("Service unavailable", code=503)
        operation = AlwaysFailing(error)

        with pytest.raises(ApiError) as exc_info:
            asyncio.run(with_retry(operation, max_attempts=4, initial_delay=1.0, sleep=sleep))

        assert exc_info.value is error
        assert operation.calls == 4

    def test_backoff_doubles(self, sleep: RecordingSleep) -> None:
        """Test that the delay starts at initial_delay and doubles."""
        operation = AlwaysFailing(ApiError("overloaded", code=503))
        with pytest.raises(ApiError):
            asyncio.run(with_retry(operation, max_attempts=4, initial_delay=0.5, sleep=sleep))
        assert sleep.delays == [0.5, 1.0, 2.0]

    def test_short_circuit(self, sleep: RecordingSleep) -> None:
        """Test that a non-transient failure is not retried."""
        error = ApiError("Permission denied", code=403)
        operation = AlwaysFailing(error)

        with pytest.raises(ApiError) as exc_info:
            asyncio.run(with_retry(operation, max_attempts=4, sleep=sleep))

        assert exc_info.value is error
        assert operation.calls == 1
        assert sleep.delays == []

    def test_recovers_after_transient_failures(self, sleep: RecordingSleep) -> None:
        """Test that a later success is returned."""
        operation = FlakyOperation(
            ApiError("overloaded", code=503), ApiError("Server error", code=500), result="done"
        )
        assert asyncio.run(with_retry(operation, sleep=sleep)) == "done"
        assert operation.calls == 3
        assert sleep.delays == [1.0, 2.0]

    def test_non_transient_after_transient(self, sleep: RecordingSleep) -> None:
        """Test that a permanent error stops retries even after transient ones."""
        permanent = ApiError("Permission denied", code=403)
        operation = FlakyOperation(ApiError("overloaded", code=503), permanent)
        with pytest.raises(ApiError) as exc_info:
            asyncio.run(with_retry(operation, max_attempts=5, sleep=sleep))
        assert exc_info.value is permanent
        assert operation.calls == 2

    @pytest.mark.parametrize("max_attempts", [1, 0, -3])
    def test_single_attempt(self, sleep: RecordingSleep, max_attempts: int) -> None:
        """Test that attempt counts below 2 mean exactly one call."""
        operation = AlwaysFailing(ApiError("overloaded", code=503))
        with pytest.raises(ApiError):
            asyncio.run(with_retry(operation, max_attempts=max_attempts, sleep=sleep))
        assert operation.calls == 1

    def test_cancellation_abandons_backoff(self) -> None:
        """Test that cancelling the caller during a backoff delay stops retrying."""
        operation = AlwaysFailing(ApiError("overloaded", code=503))

        async def scenario() -> None:
            blocked = asyncio.Event()
            never = asyncio.Event()

            async def blocking_sleep(delay: float) -> None:
                blocked.set()
                await never.wait()

            task = asyncio.create_task(with_retry(operation, sleep=blocking_sleep))
            await blocked.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert operation.calls == 1
