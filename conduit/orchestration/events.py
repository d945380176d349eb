"""Stream events for real-time run updates.

This module defines the events emitted during an orchestration run.
Events are consumed by stream handlers (SSE, logging, tests) and are
strictly ordered by emission time.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class StreamEvent(BaseModel):
    """Base class for all stream events.

    All events have a type discriminator, timestamp, and run_id for routing.
    """

    model_config = ConfigDict(frozen=True)

    event_type: str = Field(..., description="Event type discriminator")
    timestamp: datetime = Field(default_factory=utc_now, description="Event timestamp")
    run_id: str = Field(..., description="Run ID this event belongs to")


# =============================================================================
# Content
# =============================================================================


class ContentEvent(StreamEvent):
    """Incremental model text, in the order the model produced it."""

    event_type: Literal["content"] = "content"
    text: str = Field(..., description="Text delta")


# =============================================================================
# Tool Events
# =============================================================================


class ToolStartedEvent(StreamEvent):
    """Emitted right before a tool call is issued."""

    event_type: Literal["tool_started"] = "tool_started"
    call_id: str = Field(..., description="Unique ID for this tool call")
    tool_name: str = Field(..., description="Name of the tool")
    tool_input: Dict[str, Any] = Field(
        default_factory=dict, description="Tool input parameters"
    )
    iteration: int = Field(..., description="Iteration that issued the call (1-based)")
    duplicate: bool = Field(
        False, description="Same name and parameters already called in this run"
    )


class ToolFinishedEvent(StreamEvent):
    """Emitted when a tool call resolves, in completion order."""

    event_type: Literal["tool_finished"] = "tool_finished"
    call_id: str = Field(..., description="Matching call_id from ToolStartedEvent")
    tool_name: str = Field(..., description="Name of the tool")
    success: bool = Field(..., description="Whether the tool call succeeded")
    record_count: int = Field(0, description="Best-effort record count")
    duration_ms: int = Field(..., description="Tool execution time in milliseconds")
    cache_hit: bool = Field(False, description="Served from the tool result cache")
    quality: Optional[str] = Field(
        None, description="good | limited | empty | failed"
    )
    result_preview: Optional[str] = Field(None, description="Truncated result preview")
    error: Optional[str] = Field(None, description="Error message if failed")


# =============================================================================
# Terminal Events
# =============================================================================


class ErrorEvent(StreamEvent):
    """Terminal event for a run that failed."""

    event_type: Literal["error"] = "error"
    category: str = Field(..., description="context | provider | rate_limited | internal")
    message: str = Field(..., description="Human-readable error message")
    retry_after_seconds: Optional[int] = Field(
        None, description="Suggested wait before retrying (rate limits only)"
    )


class DoneEvent(StreamEvent):
    """Terminal event for a run that completed normally."""

    event_type: Literal["done"] = "done"
    message: str = Field("", description="Full text streamed during the run")
    iterations: int = Field(..., description="Model invocations performed")
    total_records: int = Field(0, description="Records gathered across all tool calls")
    max_iterations_reached: bool = Field(
        False, description="Run stopped on the iteration budget"
    )


AnyStreamEvent = Union[
    ContentEvent,
    ToolStartedEvent,
    ToolFinishedEvent,
    ErrorEvent,
    DoneEvent,
]

TERMINAL_EVENT_TYPES = frozenset({"error", "done"})


def truncate_output(text: Optional[str], max_length: int = 200) -> Optional[str]:
    """Truncate text for preview fields."""
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
