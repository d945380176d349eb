"""Run-scoped data models: working context, tool requests/outcomes, run state."""

import json
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class QueryMode(str, Enum):
    """How much effort a user message asks for."""

    SIMPLE = "simple"
    ANALYSIS = "analysis"


class OutcomeKind(str, Enum):
    """Shape of a tool outcome, decided once by the dispatcher."""

    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"


class QualityClass(str, Enum):
    """Four-way classification driving how a result is shown to the model."""

    GOOD = "good"
    LIMITED = "limited"
    EMPTY = "empty"
    FAILED = "failed"


def canonical_parameters(parameters: Dict[str, Any]) -> str:
    """Stable string form of a parameter map, used for duplicate and cache keys."""
    return json.dumps(parameters or {}, sort_keys=True, default=str, separators=(",", ":"))


# =============================================================================
# Working Context
# =============================================================================


class Turn(BaseModel):
    """One conversation turn.

    ``content`` is plain text or a list of structured parts
    (``text``, ``tool_use``, ``tool_result``). ``tool_uses`` carries the
    client's record of tools used in a historical assistant turn.
    """

    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: Union[str, List[Dict[str, Any]]] = ""
    tool_uses: List[Dict[str, Any]] = Field(default_factory=list)

    def text(self) -> str:
        """Concatenated text of the turn."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            part.get("text", "") for part in self.content if part.get("type") == "text"
        )

    def has_content(self) -> bool:
        """Whether the turn carries anything a model could read."""
        if isinstance(self.content, str):
            return bool(self.content.strip())
        return any(
            part.get("type") != "text" or str(part.get("text", "")).strip()
            for part in self.content
        )

    def serialized_size(self) -> int:
        """Length of the turn's JSON form."""
        return len(self.model_dump_json())


class WorkingContext:
    """Ordered turns owned by exactly one run."""

    def __init__(self, turns: Optional[List[Turn]] = None) -> None:
        self.turns: List[Turn] = list(turns or [])

    def append(self, turn: Turn) -> None:
        self.turns.append(turn)

    def serialized_size(self) -> int:
        return sum(turn.serialized_size() for turn in self.turns)

    def is_empty(self) -> bool:
        return not any(turn.has_content() for turn in self.turns)

    def __len__(self) -> int:
        return len(self.turns)

    def __iter__(self):
        return iter(self.turns)


# =============================================================================
# Tools
# =============================================================================


class ToolInvocationRequest(BaseModel):
    """A tool call requested by the model. Immutable once issued."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Opaque ID, unique within the round")
    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)

    def signature(self) -> str:
        """Name plus canonical parameters, for duplicate detection."""
        return f"{self.name}:{canonical_parameters(self.parameters)}"


class ToolOutcome(BaseModel):
    """Exactly one outcome per request. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    kind: OutcomeKind
    payload: Any = None
    error: Optional[str] = None
    wall_time_ms: int = 0
    record_count: int = 0
    cache_hit: bool = False

    @property
    def succeeded(self) -> bool:
        return self.kind != OutcomeKind.ERROR


class QualityAnnotatedResult(BaseModel):
    """What the model sees in place of a raw tool result."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    tool_name: str
    quality: QualityClass
    summary: str
    validation_status: bool
    guidance_text: str
    record_count: int = 0
    data: Any = None

    def to_model_payload(self) -> Dict[str, Any]:
        """Dict placed in the tool-result turn."""
        payload: Dict[str, Any] = {
            "quality": self.quality.value,
            "summary": self.summary,
            "validated": self.validation_status,
            "guidance": self.guidance_text,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


# =============================================================================
# Run State
# =============================================================================


class ToolCallRecord(BaseModel):
    """History entry for one executed tool call."""

    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    record_count: int = 0
    iteration: int = 0


class RunState(BaseModel):
    """Mutable state of one run, owned by the iteration controller."""

    run_id: str
    mode: QueryMode = QueryMode.SIMPLE
    iteration_count: int = 0
    max_iterations: int
    tool_call_history: List[ToolCallRecord] = Field(default_factory=list)
    total_records_gathered: int = 0
    completed: bool = False
    max_iterations_reached: bool = False
    cancelled: bool = False
    error_category: Optional[str] = None
    final_text: str = ""

    def is_duplicate(self, request: ToolInvocationRequest) -> bool:
        """Whether the same name and parameters were already called this run."""
        signature = request.signature()
        return any(
            f"{record.name}:{canonical_parameters(record.parameters)}" == signature
            for record in self.tool_call_history
        )

    def record_outcome(self, outcome: ToolOutcome) -> None:
        self.tool_call_history.append(
            ToolCallRecord(
                name=outcome.tool_name,
                parameters=dict(outcome.parameters),
                record_count=outcome.record_count,
                iteration=self.iteration_count,
            )
        )
        self.total_records_gathered += outcome.record_count

    @property
    def is_final_iteration(self) -> bool:
        return self.iteration_count >= self.max_iterations

    @property
    def is_penultimate_iteration(self) -> bool:
        return self.iteration_count == self.max_iterations - 1


# =============================================================================
# Model Response Parts
# =============================================================================


class TextPart(BaseModel):
    """A text delta, streamed to the caller as soon as it arrives."""

    text: str


class ToolRequestPart(BaseModel):
    """A complete tool request from the model."""

    request: ToolInvocationRequest


ModelPart = Union[TextPart, ToolRequestPart]
