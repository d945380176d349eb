"""External collaborators: the model provider and the tool service."""

from conduit.clients.llm import (
    LangChainModelClient,
    ModelClient,
    ModelPart,
    TextPart,
    ToolRequestPart,
    clear_llm_cache,
    get_llm,
)
from conduit.clients.tool_service import ToolDefinition, ToolServiceClient

__all__ = [
    "LangChainModelClient",
    "ModelClient",
    "ModelPart",
    "TextPart",
    "ToolDefinition",
    "ToolRequestPart",
    "ToolServiceClient",
    "clear_llm_cache",
    "get_llm",
]
