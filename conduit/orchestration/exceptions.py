"""Exceptions for the orchestration module."""

from typing import Optional


class ConduitError(Exception):
    """Base class for run-level errors.

    Attributes:
        category: Machine-readable category surfaced on the error event.
    """

    category = "internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ContextError(ConduitError):
    """Raised when the working context is empty or unusable."""

    category = "context"


class ProviderError(ConduitError):
    """Raised when the model provider call fails."""

    category = "provider"


class RateLimitedError(ProviderError):
    """Raised when the model provider rate-limits the run.

    Attributes:
        retry_after_seconds: How long the caller should wait before retrying.
    """

    category = "rate_limited"

    def __init__(self, message: str, retry_after_seconds: int) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ToolCallError(Exception):
    """Raised by the tool service when a single call fails.

    Never fatal to a run; the dispatcher converts it into a failed outcome.
    """

    def __init__(self, tool_name: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name
        self.message = message
        self.status_code = status_code


class ToolServiceUnavailableError(Exception):
    """Raised when the tool service cannot be reached after all retries."""

    pass


class RunCancelledError(Exception):
    """Raised when the client has gone away.

    This is a control flow exception, not an error. The run stops at the
    next suspension point without emitting further events.
    """

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run '{run_id}' cancelled by client disconnect")
