"""Exception types raised by the extraction pipeline.

`MalformedResponse` means the model answered but its text could not be recovered
into structured data; the user should rephrase. `TransientUpstreamFailure` means
the model could not be reached or was overloaded; the user should retry.
"""

from typing import Any


class MalformedResponse(ValueError):
    """The response text could not be recovered into an analysis result.

    Attributes:
        text: The original response text, kept for diagnostics.
        reason: Why the last recovery attempt failed.
    """

    def __init__(self, text: str, reason: str = "Response is not valid structured data.") -> None:
        super().__init__(reason)
        self.text = text
        self.reason = reason


class UpstreamFailure(RuntimeError):
    """The external text-generation call failed.

    The original exception is chained as ``__cause__``.

    Attributes:
        status: Status code or status name reported by the upstream, if any.
        message: Human-readable failure message.
    """

    def __init__(self, message: str, status: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class TransientUpstreamFailure(UpstreamFailure):
    """A retryable failure (overload, internal error, timeout) that outlived its retries."""


class NonRetryableUpstreamFailure(UpstreamFailure):
    """A permanent failure (authorization, quota, malformed request, safety block)."""
