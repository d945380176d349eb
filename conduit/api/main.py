"""FastAPI application entry point."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from conduit import __version__
from conduit.api.dependencies import cleanup, get_tool_service
from conduit.api.routes import chat_router, tools_router
from conduit.api.schemas import HealthResponse
from conduit.orchestration.exceptions import ToolServiceUnavailableError


def configure_logging() -> None:
    """Configure logging based on environment variables.

    Environment variables:
        LOG_LEVEL: Set the logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO
        LOG_FORMAT: Set the log format (simple, detailed). Default: detailed
    """
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_format = os.getenv("LOG_FORMAT", "detailed")
    level = getattr(logging, log_level, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO

    if log_format == "simple":
        format_str = "%(levelname)s: %(message)s"
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(level=level, format=format_str, stream=sys.stdout)
    logging.getLogger("conduit").setLevel(level)

    # Reduce noise from third-party libraries unless DEBUG
    if level > logging.DEBUG:
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("openai").setLevel(logging.WARNING)
        logging.getLogger("langchain").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Connect the tool service on startup, release clients on shutdown."""
    logger.info("Starting Conduit API application...")
    tool_service = await get_tool_service()
    try:
        await tool_service.connect()
    except ToolServiceUnavailableError as e:
        # Runs proceed without tools until a later health check succeeds.
        logger.error(f"Tool service unavailable at startup: {e}")
    yield
    logger.info("Shutting down Conduit API application...")
    await cleanup()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    configure_logging()
    application = FastAPI(
        title="Conduit API",
        description="Streaming orchestration between a language model and remote tools",
        version=__version__,
        lifespan=lifespan,
    )

    allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    logger.debug(f"Configuring CORS with allowed origins: {allowed_origins}")
    application.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Authorization",
            "X-Access-Token",
            "X-Business-Id",
            "X-Refresh-Token",
        ],
    )

    application.include_router(chat_router, prefix="/chat", tags=["Chat"])
    application.include_router(tools_router, prefix="/tools", tags=["Tools"])

    @application.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning(f"Value error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "error_code": "VALUE_ERROR"},
        )

    @application.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        tool_service = await get_tool_service()
        return HealthResponse(
            status="healthy",
            version=__version__,
            tool_service_ready=tool_service.is_ready,
        )

    return application


app = create_app()
