"""Request and response schemas for API endpoints."""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

# =============================================================================
# Request Schemas
# =============================================================================


class ChatRequest(BaseModel):
    """Request schema for the chat endpoint.

    ``messages`` is the prior conversation, newest last, in the shape the
    client stored it: ``{"role", "content", "tool_uses"?}``.
    """

    message: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)


# =============================================================================
# Response Schemas
# =============================================================================


class ToolSummary(BaseModel):
    """A tool advertised by the tool service."""

    name: str
    description: str
    input_schema: Dict[str, Any] = Field(default_factory=dict)


class ToolsResponse(BaseModel):
    """Response schema for the tools endpoint."""

    tools: List[ToolSummary]
    ready: bool
    server_url: str


class HealthResponse(BaseModel):
    """Response schema for the health endpoint."""

    status: str
    version: str
    tool_service_ready: bool
