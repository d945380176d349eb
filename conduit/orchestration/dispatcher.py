"""Tool Dispatcher - concurrent fan-out/fan-in of one round of tool calls."""

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol, Set

from conduit.orchestration.events import (
    ToolFinishedEvent,
    ToolStartedEvent,
    truncate_output,
)
from conduit.orchestration.exceptions import ToolCallError
from conduit.orchestration.models import (
    OutcomeKind,
    QualityClass,
    RunState,
    ToolInvocationRequest,
    ToolOutcome,
)
from conduit.orchestration.payloads import (
    extract_record_count,
    is_empty_payload,
    unwrap_tool_result,
)
from conduit.orchestration.stream import ExecutionStream

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from conduit.cache import ToolResultCache


class ToolExecutor(Protocol):
    """The tool-service boundary as seen by the dispatcher."""

    async def call_tool(
        self,
        name: str,
        arguments: Dict[str, Any],
        credentials: Optional[Dict[str, str]] = None,
    ) -> Any: ...


class ToolDispatcher:
    """Runs every request of a round concurrently and joins them.

    Each call is isolated: a failure or timeout becomes an ERROR outcome
    for that request only. ``tool_started`` events go out in request
    order, ``tool_finished`` events in completion order.
    """

    def __init__(
        self,
        tool_service: ToolExecutor,
        cache: Optional["ToolResultCache"] = None,
        quality_of: Optional[Callable[[ToolOutcome], QualityClass]] = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            tool_service: Client that executes tools remotely.
            cache: Optional result cache; consulted only when enabled.
            quality_of: Optional classifier used to label finished events.
        """
        self.tool_service = tool_service
        self.cache = cache
        self.quality_of = quality_of

    async def dispatch(
        self,
        requests: List[ToolInvocationRequest],
        state: RunState,
        stream: ExecutionStream,
        credentials: Optional[Dict[str, str]] = None,
    ) -> List[ToolOutcome]:
        """Execute one round.

        Args:
            requests: Tool requests from the latest model response.
            state: Run state, used for duplicate flagging only.
            stream: Stream receiving tool_started / tool_finished events.
            credentials: Opaque caller credentials passed to the tool service.

        Returns:
            One outcome per request, in request order.
        """
        tasks = []
        seen: Set[str] = set()
        for request in requests:
            signature = request.signature()
            duplicate = state.is_duplicate(request) or signature in seen
            seen.add(signature)
            if duplicate:
                logger.info(
                    f"[{state.run_id}] Duplicate tool call: {request.name} "
                    f"(executing anyway)"
                )
            if not stream.is_cancelled:
                await stream.emit(
                    ToolStartedEvent(
                        run_id=state.run_id,
                        call_id=request.id,
                        tool_name=request.name,
                        tool_input=dict(request.parameters),
                        iteration=state.iteration_count,
                        duplicate=duplicate,
                    )
                )
            tasks.append(
                asyncio.create_task(
                    self._run_one(
                        request, state.run_id, stream, credentials, use_cache=not duplicate
                    )
                )
            )

        outcomes = await asyncio.gather(*tasks)
        logger.debug(
            f"[{state.run_id}] Round finished: {len(outcomes)} outcome(s), "
            f"{sum(1 for o in outcomes if o.kind == OutcomeKind.ERROR)} failed"
        )
        return list(outcomes)

    async def _run_one(
        self,
        request: ToolInvocationRequest,
        run_id: str,
        stream: ExecutionStream,
        credentials: Optional[Dict[str, str]],
        use_cache: bool = True,
    ) -> ToolOutcome:
        outcome = await self._execute(request, credentials, use_cache)

        if not stream.is_cancelled:
            quality = self.quality_of(outcome).value if self.quality_of else None
            await stream.emit(
                ToolFinishedEvent(
                    run_id=run_id,
                    call_id=request.id,
                    tool_name=request.name,
                    success=outcome.succeeded,
                    record_count=outcome.record_count,
                    duration_ms=outcome.wall_time_ms,
                    cache_hit=outcome.cache_hit,
                    quality=quality,
                    result_preview=_preview(outcome.payload),
                    error=outcome.error,
                )
            )
        return outcome

    async def _execute(
        self,
        request: ToolInvocationRequest,
        credentials: Optional[Dict[str, str]],
        use_cache: bool = True,
    ) -> ToolOutcome:
        start = time.perf_counter()
        cache_hit = False
        try:
            raw = None
            # A repeated request is always executed again.
            if use_cache and self.cache is not None and self.cache.enabled:
                raw = self.cache.get(request.name, request.parameters, credentials)
                cache_hit = raw is not None
            if raw is None:
                raw = await self.tool_service.call_tool(
                    request.name, dict(request.parameters), credentials
                )
                if self.cache is not None:
                    self.cache.put(request.name, request.parameters, raw, credentials)
            payload = unwrap_tool_result(raw)
        except ToolCallError as e:
            logger.warning(f"Tool {request.name} failed: {e.message}")
            return self._error(request, e.message, start)
        except asyncio.TimeoutError:
            logger.warning(f"Tool {request.name} timed out")
            return self._error(request, f"Tool '{request.name}' timed out", start)
        except Exception as e:
            logger.error(f"Tool {request.name} raised: {e}", exc_info=True)
            return self._error(request, str(e) or type(e).__name__, start)

        elapsed = _elapsed_ms(start)
        if is_empty_payload(payload):
            kind = OutcomeKind.EMPTY
            record_count = 0
        else:
            kind = OutcomeKind.SUCCESS
            record_count = extract_record_count(payload)

        logger.debug(
            f"Tool {request.name} -> {kind.value}, records={record_count}, "
            f"{elapsed}ms{' (cached)' if cache_hit else ''}"
        )
        return ToolOutcome(
            request_id=request.id,
            tool_name=request.name,
            parameters=dict(request.parameters),
            kind=kind,
            payload=payload,
            wall_time_ms=elapsed,
            record_count=record_count,
            cache_hit=cache_hit,
        )

    def _error(
        self, request: ToolInvocationRequest, message: str, start: float
    ) -> ToolOutcome:
        return ToolOutcome(
            request_id=request.id,
            tool_name=request.name,
            parameters=dict(request.parameters),
            kind=OutcomeKind.ERROR,
            error=message,
            wall_time_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _preview(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, str):
        return truncate_output(payload)
    return truncate_output(json.dumps(payload, default=str))
