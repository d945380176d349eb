"""FastAPI dependencies for dependency injection."""

import logging
from typing import Optional

from conduit.cache import ToolResultCache
from conduit.clients.llm import LangChainModelClient, get_llm
from conduit.clients.tool_service import ToolServiceClient
from conduit.config import ConduitSettings, get_settings
from conduit.orchestration import IterationController

logger = logging.getLogger(__name__)

# Global singletons
_tool_service: Optional[ToolServiceClient] = None
_tool_cache: Optional[ToolResultCache] = None
_controller: Optional[IterationController] = None


def get_app_settings() -> ConduitSettings:
    """Get the process-wide settings."""
    return get_settings()


async def get_tool_service() -> ToolServiceClient:
    """Get the ToolServiceClient singleton (not yet connected)."""
    global _tool_service
    if _tool_service is None:
        settings = get_settings()
        _tool_service = ToolServiceClient(settings)
        logger.debug(f"ToolServiceClient created for {settings.tool_service_url}")
    return _tool_service


def get_tool_cache() -> ToolResultCache:
    """Get the tool result cache singleton (disabled when the TTL is 0)."""
    global _tool_cache
    if _tool_cache is None:
        settings = get_settings()
        _tool_cache = ToolResultCache(
            ttl_seconds=settings.tool_cache_ttl_seconds,
            maxsize=settings.tool_cache_maxsize,
        )
        logger.debug(f"Tool cache enabled={_tool_cache.enabled}")
    return _tool_cache


async def get_controller() -> IterationController:
    """Get the IterationController singleton.

    Raises:
        ValueError: If OPENAI_API_KEY environment variable is not set.
    """
    global _controller
    if _controller is None:
        settings = get_settings()
        tool_service = await get_tool_service()
        model_client = LangChainModelClient(get_llm(settings))
        _controller = IterationController(
            model_client,
            tool_service,
            settings=settings,
            cache=get_tool_cache(),
        )
        logger.info("IterationController initialized")
    return _controller


async def cleanup() -> None:
    """Cleanup resources on shutdown."""
    global _tool_service, _tool_cache, _controller
    logger.debug("Starting cleanup of global resources...")
    if _tool_service is not None:
        await _tool_service.close()
        _tool_service = None
        logger.debug("Tool service client closed")
    if _tool_cache is not None:
        _tool_cache.clear()
        _tool_cache = None
    _controller = None
    logger.info("Cleanup complete")
