"""Model provider boundary.

The orchestration core only sees ``ModelClient.stream``: an async
iterator of text deltas and tool requests. ``LangChainModelClient`` is
the production implementation on top of a LangChain chat model.
"""

import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from dotenv import find_dotenv, load_dotenv
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from conduit.config import ConduitSettings
from conduit.orchestration.models import (
    ModelPart,
    TextPart,
    ToolInvocationRequest,
    ToolRequestPart,
    Turn,
    WorkingContext,
)

load_dotenv(find_dotenv())

logger = logging.getLogger(__name__)

# Cache for chat model instances, keyed on (model, temperature, max_tokens)
_llm_cache: Dict[tuple, BaseChatModel] = {}


class ModelClient(Protocol):
    """What the iteration controller needs from a model provider."""

    def stream(
        self,
        context: WorkingContext,
        system: str,
        tools: List[Dict[str, Any]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[ModelPart]: ...


def _text_of(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
            if not isinstance(block, dict) or block.get("type") in (None, "text")
        )
    return ""


def to_langchain_messages(context: WorkingContext, system: str) -> List[BaseMessage]:
    """Convert working-context turns into LangChain messages.

    Assistant turns with ``tool_use`` parts become an AIMessage carrying
    ``tool_calls``; ``tool_result`` parts become one ToolMessage each.
    """
    messages: List[BaseMessage] = [SystemMessage(content=system)]
    for turn in context:
        messages.extend(_convert_turn(turn))
    return messages


def _convert_turn(turn: Turn) -> List[BaseMessage]:
    if isinstance(turn.content, str):
        if turn.role == "assistant":
            return [AIMessage(content=turn.content)]
        return [HumanMessage(content=turn.content)]

    text = turn.text()
    if turn.role == "assistant":
        tool_calls = [
            {"name": part["name"], "args": part.get("input") or {}, "id": part["id"]}
            for part in turn.content
            if part.get("type") == "tool_use"
        ]
        return [AIMessage(content=text, tool_calls=tool_calls)]

    converted: List[BaseMessage] = []
    for part in turn.content:
        if part.get("type") == "tool_result":
            body = part.get("content")
            converted.append(
                ToolMessage(
                    content=body if isinstance(body, str) else json.dumps(body, default=str),
                    tool_call_id=part["tool_use_id"],
                )
            )
    if text.strip():
        converted.append(HumanMessage(content=text))
    return converted


class LangChainModelClient:
    """ModelClient backed by a LangChain chat model."""

    def __init__(self, llm: BaseChatModel) -> None:
        self.llm = llm

    async def stream(
        self,
        context: WorkingContext,
        system: str,
        tools: List[Dict[str, Any]],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[ModelPart]:
        """Stream one model response.

        Text deltas are yielded immediately; tool requests only once the
        response is complete, since their arguments arrive in fragments.
        """
        runnable: Any = self.llm.bind_tools(tools) if tools else self.llm
        runnable = runnable.bind(temperature=temperature, max_tokens=max_tokens)

        messages = to_langchain_messages(context, system)
        gathered = None
        async for chunk in runnable.astream(messages):
            text = _text_of(chunk.content)
            if text:
                yield TextPart(text=text)
            gathered = chunk if gathered is None else gathered + chunk

        if gathered is None:
            return

        if getattr(gathered, "invalid_tool_calls", None):
            logger.warning(
                f"Model produced {len(gathered.invalid_tool_calls)} unparseable tool call(s)"
            )

        finish_reason = (getattr(gathered, "response_metadata", None) or {}).get(
            "finish_reason"
        )
        if finish_reason == "length":
            logger.warning("Model hit max_tokens limit, output truncated")

        for index, tool_call in enumerate(getattr(gathered, "tool_calls", None) or []):
            yield ToolRequestPart(
                request=ToolInvocationRequest(
                    id=tool_call.get("id") or f"call_{index}",
                    name=tool_call["name"],
                    parameters=tool_call.get("args") or {},
                )
            )


def get_llm(settings: Optional[ConduitSettings] = None) -> BaseChatModel:
    """Return a cached ChatOpenAI instance for the configured model.

    Raises:
        ValueError: If OPENAI_API_KEY is not set.
    """
    from langchain_openai import ChatOpenAI

    from conduit.config import get_settings

    settings = settings or get_settings()
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("Required environment variable 'OPENAI_API_KEY' is not set")

    cache_key = (settings.model_name, settings.temperature, settings.max_output_tokens)
    if cache_key in _llm_cache:
        logger.debug(f"Reusing cached LLM: model={settings.model_name}")
        return _llm_cache[cache_key]

    llm = ChatOpenAI(
        model=settings.model_name,
        temperature=settings.temperature,
        max_tokens=settings.max_output_tokens,
        api_key=api_key,
        max_retries=0,
    )
    _llm_cache[cache_key] = llm
    logger.info(f"LLM initialized and cached: model={settings.model_name}")
    return llm


def clear_llm_cache() -> None:
    """Clear the LLM client cache. Useful for testing."""
    _llm_cache.clear()
