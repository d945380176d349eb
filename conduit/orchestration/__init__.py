"""Orchestration core - the iteration loop between model and tools.

This package provides:
- Working-context compaction
- Concurrent tool dispatch
- Result classification and enrichment
- The iteration controller
- Stream events and stream handlers
- Provider failure translation

It depends on conduit.config only. Model and tool-service clients are
injected by the caller.
"""

# Components
from conduit.orchestration.classifier import ResultEnricher, classify_outcome
from conduit.orchestration.compactor import ContextCompactor
from conduit.orchestration.controller import IterationController, generate_run_id
from conduit.orchestration.dispatcher import ToolDispatcher

# Events
from conduit.orchestration.events import (
    AnyStreamEvent,
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StreamEvent,
    ToolFinishedEvent,
    ToolStartedEvent,
)

# Exceptions
from conduit.orchestration.exceptions import (
    ConduitError,
    ContextError,
    ProviderError,
    RateLimitedError,
    RunCancelledError,
    ToolCallError,
    ToolServiceUnavailableError,
)
from conduit.orchestration.guard import translate_provider_error

# Models
from conduit.orchestration.models import (
    OutcomeKind,
    QualityAnnotatedResult,
    QualityClass,
    QueryMode,
    RunState,
    TextPart,
    ToolInvocationRequest,
    ToolOutcome,
    ToolRequestPart,
    Turn,
    WorkingContext,
)

# Streams
from conduit.orchestration.stream import (
    AsyncQueueStream,
    ExecutionStream,
    NoOpStream,
    serialize_event_for_sse,
)

__all__ = [
    # Components
    "ContextCompactor",
    "IterationController",
    "ResultEnricher",
    "ToolDispatcher",
    "classify_outcome",
    "generate_run_id",
    "translate_provider_error",
    # Models
    "OutcomeKind",
    "QualityAnnotatedResult",
    "QualityClass",
    "QueryMode",
    "RunState",
    "TextPart",
    "ToolInvocationRequest",
    "ToolOutcome",
    "ToolRequestPart",
    "Turn",
    "WorkingContext",
    # Events
    "AnyStreamEvent",
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "StreamEvent",
    "ToolFinishedEvent",
    "ToolStartedEvent",
    # Streams
    "AsyncQueueStream",
    "ExecutionStream",
    "NoOpStream",
    "serialize_event_for_sse",
    # Exceptions
    "ConduitError",
    "ContextError",
    "ProviderError",
    "RateLimitedError",
    "RunCancelledError",
    "ToolCallError",
    "ToolServiceUnavailableError",
]
