"""Chat router - streams one orchestration run as server-sent events."""

import asyncio
import logging
from typing import AsyncGenerator, Dict, Optional, Set

from fastapi import APIRouter, Depends, Header, Request
from sse_starlette.sse import EventSourceResponse

from conduit.api.dependencies import get_app_settings, get_controller
from conduit.api.schemas import ChatRequest
from conduit.config import ConduitSettings
from conduit.orchestration import (
    AsyncQueueStream,
    IterationController,
    generate_run_id,
    serialize_event_for_sse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_SECONDS = 0.5

# Runs still draining after their client went away
_background_runs: Set[asyncio.Task] = set()


def caller_credentials(
    access_token: Optional[str],
    business_id: Optional[str],
    refresh_token: Optional[str],
) -> Dict[str, str]:
    """Opaque credentials forwarded to the tool service as headers."""
    credentials = {
        "X-Access-Token": access_token,
        "X-Business-Id": business_id,
        "X-Refresh-Token": refresh_token,
    }
    return {key: value for key, value in credentials.items() if value}


async def watch_disconnect(request: Request, stream: AsyncQueueStream) -> None:
    """Cancel the stream once the client has gone away."""
    while not stream.is_closed and not stream.is_cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected, cancelling run")
            stream.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


async def stream_run(
    request: Request,
    stream: AsyncQueueStream,
    run_task: asyncio.Task,
) -> AsyncGenerator[Dict[str, str], None]:
    """Yield serialized events until the run closes its stream."""
    watcher = asyncio.create_task(watch_disconnect(request, stream))
    try:
        async for event in stream:
            yield serialize_event_for_sse(event)
    finally:
        watcher.cancel()
        if not run_task.done():
            # Stop at the next suspension point; in-flight tools drain.
            stream.cancel()


@router.post("")
async def chat(
    request: Request,
    body: ChatRequest,
    controller: IterationController = Depends(get_controller),
    settings: ConduitSettings = Depends(get_app_settings),
    x_access_token: Optional[str] = Header(None),
    x_business_id: Optional[str] = Header(None),
    x_refresh_token: Optional[str] = Header(None),
) -> EventSourceResponse:
    """Run the orchestration loop for one message, streaming its events."""
    stream = AsyncQueueStream(maxsize=settings.stream_buffer_size)
    run_id = generate_run_id()
    credentials = caller_credentials(x_access_token, x_business_id, x_refresh_token)

    logger.info(
        f"Chat request: run_id={run_id}, history={len(body.messages)} turns"
    )
    run_task = asyncio.create_task(
        controller.run(
            body.message,
            history=body.messages,
            stream=stream,
            credentials=credentials,
            run_id=run_id,
        )
    )
    _background_runs.add(run_task)
    run_task.add_done_callback(_background_runs.discard)

    return EventSourceResponse(
        stream_run(request, stream, run_task),
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
