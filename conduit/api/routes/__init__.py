"""API route modules."""

from conduit.api.routes.chat import router as chat_router
from conduit.api.routes.tools import router as tools_router

__all__ = [
    "chat_router",
    "tools_router",
]
