"""IterationController - drives one run from user message to terminal event."""

import logging
import uuid
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Protocol, Tuple

from conduit.config import ConduitSettings, get_settings
from conduit.orchestration.classifier import ResultEnricher, classify_outcome
from conduit.orchestration.compactor import ContextCompactor, HistoryItem
from conduit.orchestration.dispatcher import ToolDispatcher, ToolExecutor
from conduit.orchestration.events import ContentEvent, DoneEvent, ErrorEvent
from conduit.orchestration.exceptions import (
    ConduitError,
    ContextError,
    RunCancelledError,
)
from conduit.orchestration.guard import translate_provider_error
from conduit.orchestration.models import (
    QualityAnnotatedResult,
    QualityClass,
    RunState,
    TextPart,
    ToolInvocationRequest,
    Turn,
    WorkingContext,
)
from conduit.orchestration.prompts import (
    build_continuation_instruction,
    build_system_directive,
)
from conduit.orchestration.query_mode import classify_query_mode, should_offer_tools
from conduit.orchestration.stream import ExecutionStream, NoOpStream

if TYPE_CHECKING:
    from conduit.cache import ToolResultCache
    from conduit.clients.llm import ModelClient

logger = logging.getLogger(__name__)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"run_{uuid.uuid4().hex[:12]}"


class ToolService(ToolExecutor, Protocol):
    """Tool service as seen by the controller: executes and advertises tools."""

    def tool_schemas(self) -> List[Dict[str, Any]]: ...


def schema_name(schema: Dict[str, Any]) -> str:
    """Tool name from either a function-calling or a plain tool schema."""
    if isinstance(schema.get("function"), dict):
        return schema["function"].get("name", "")
    return schema.get("name", "")


class IterationController:
    """Alternates model invocations and tool rounds until the run ends.

    Handles:
    - Query-mode classification and the per-mode iteration cap
    - Parallel tool rounds with quality-annotated results fed back
    - Record budget and final-iteration tool withholding
    - Provider errors, rate limits and client disconnects

    Example:
        controller = IterationController(model_client, tool_service)
        stream = AsyncQueueStream()
        state = await controller.run("How many customers?", stream=stream)
    """

    def __init__(
        self,
        model_client: "ModelClient",
        tool_service: ToolService,
        settings: Optional[ConduitSettings] = None,
        cache: Optional["ToolResultCache"] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.model_client = model_client
        self.tool_service = tool_service
        self.compactor = ContextCompactor(self.settings)
        self.enricher = ResultEnricher(self.settings)
        threshold = self.settings.min_data_threshold
        self.dispatcher = ToolDispatcher(
            tool_service,
            cache=cache,
            quality_of=lambda outcome: classify_outcome(outcome, threshold),
        )

    async def run(
        self,
        message: str,
        history: Optional[Iterable[HistoryItem]] = None,
        stream: Optional[ExecutionStream] = None,
        credentials: Optional[Dict[str, str]] = None,
        run_id: Optional[str] = None,
    ) -> RunState:
        """Execute one run.

        Never raises for run-level failures: they end the run with a single
        ErrorEvent. The stream is always closed on return.

        Args:
            message: The new user message.
            history: Prior conversation turns, newest last.
            stream: Stream receiving events (NoOpStream if omitted).
            credentials: Opaque caller credentials for the tool service.
            run_id: Optional pre-generated run ID.

        Returns:
            The final RunState.
        """
        effective_stream = stream or NoOpStream()
        mode = classify_query_mode(message or "")
        state = RunState(
            run_id=run_id or generate_run_id(),
            mode=mode,
            max_iterations=self.settings.max_iterations_for(mode.value),
        )
        logger.info(
            f"Starting run: id={state.run_id}, mode={mode.value}, "
            f"max_iterations={state.max_iterations}"
        )

        try:
            await self._run_loop(message, history, state, effective_stream, credentials)
            state.completed = True
            if state.max_iterations_reached:
                logger.info(f"Run {state.run_id} stopped on its iteration budget")
            await effective_stream.emit(
                DoneEvent(
                    run_id=state.run_id,
                    message=state.final_text,
                    iterations=state.iteration_count,
                    total_records=state.total_records_gathered,
                    max_iterations_reached=state.max_iterations_reached,
                )
            )
            logger.info(
                f"Run completed: id={state.run_id}, iterations={state.iteration_count}, "
                f"records={state.total_records_gathered}"
            )

        except RunCancelledError:
            state.cancelled = True
            logger.info(f"Run cancelled by client: id={state.run_id}")

        except ConduitError as e:
            state.error_category = e.category
            logger.warning(f"Run failed: id={state.run_id}, category={e.category}, error={e.message}")
            await effective_stream.emit(
                ErrorEvent(
                    run_id=state.run_id,
                    category=e.category,
                    message=e.message,
                    retry_after_seconds=getattr(e, "retry_after_seconds", None),
                )
            )

        except Exception as e:
            state.error_category = "internal"
            logger.error(f"Run failed: id={state.run_id}, error={e}", exc_info=True)
            await effective_stream.emit(
                ErrorEvent(
                    run_id=state.run_id,
                    category="internal",
                    message="An internal error occurred while processing the request.",
                )
            )

        finally:
            await effective_stream.close()

        return state

    async def _run_loop(
        self,
        message: str,
        history: Optional[Iterable[HistoryItem]],
        state: RunState,
        stream: ExecutionStream,
        credentials: Optional[Dict[str, str]],
    ) -> None:
        context = self.compactor.compact(history, message)
        if len(context) == 0 or context.is_empty():
            raise ContextError("No message content to process.")
        # The run's own message; history before it may be dropped under pressure.
        anchor = context.turns[-1]

        schemas: List[Dict[str, Any]] = []
        if should_offer_tools(message):
            schemas = list(self.tool_service.tool_schemas())
        tool_names = [schema_name(schema) for schema in schemas]
        texts: List[str] = []

        while True:
            self._check_cancelled(stream, state)
            state.iteration_count += 1

            budget_exhausted = (
                state.total_records_gathered >= self.settings.max_total_records
            )
            offered = schemas if not (state.is_final_iteration or budget_exhausted) else []
            system = build_system_directive(
                state.mode,
                state.iteration_count,
                state.max_iterations,
                tool_names,
                self.settings,
                tools_offered=bool(offered),
            )

            text, requests = await self._invoke(context, system, offered, stream, state)
            if text:
                texts.append(text)
            state.final_text = "".join(texts)
            self._check_cancelled(stream, state)

            if not requests:
                state.max_iterations_reached = state.is_final_iteration
                return
            if not offered:
                logger.warning(
                    f"[{state.run_id}] Ignoring {len(requests)} tool request(s) "
                    f"made while tools were withheld"
                )
                state.max_iterations_reached = state.is_final_iteration
                return

            await self._tool_round(
                context, anchor, text, requests, message, state, stream, credentials
            )

    async def _invoke(
        self,
        context: WorkingContext,
        system: str,
        tools: List[Dict[str, Any]],
        stream: ExecutionStream,
        state: RunState,
    ) -> Tuple[str, List[ToolInvocationRequest]]:
        """One model call: stream text out, collect tool requests."""
        text_parts: List[str] = []
        requests: List[ToolInvocationRequest] = []
        logger.debug(
            f"[{state.run_id}] Invoking model: iteration={state.iteration_count}, "
            f"turns={len(context)}, tools={len(tools)}"
        )
        parts = self.model_client.stream(
            context,
            system,
            tools,
            self.settings.temperature,
            self.settings.max_output_tokens,
        )
        try:
            while True:
                # Only failures raised by the provider are translated.
                try:
                    part = await parts.__anext__()
                except StopAsyncIteration:
                    break
                except Exception as e:
                    raise translate_provider_error(
                        e, self.settings.default_retry_after_seconds
                    ) from e

                self._check_cancelled(stream, state)
                if isinstance(part, TextPart):
                    if part.text:
                        text_parts.append(part.text)
                        await stream.emit(ContentEvent(run_id=state.run_id, text=part.text))
                else:
                    requests.append(part.request)
        finally:
            aclose = getattr(parts, "aclose", None)
            if aclose is not None:
                await aclose()
        return "".join(text_parts), requests

    async def _tool_round(
        self,
        context: WorkingContext,
        anchor: Turn,
        text: str,
        requests: List[ToolInvocationRequest],
        message: str,
        state: RunState,
        stream: ExecutionStream,
        credentials: Optional[Dict[str, str]],
    ) -> None:
        """Dispatch, enrich and append one round's results to the context."""
        parts: List[Dict[str, Any]] = []
        if text:
            parts.append({"type": "text", "text": text})
        parts.extend(
            {"type": "tool_use", "id": r.id, "name": r.name, "input": dict(r.parameters)}
            for r in requests
        )
        context.append(Turn(role="assistant", content=parts))

        outcomes = await self.dispatcher.dispatch(requests, state, stream, credentials)
        # In-flight calls were allowed to drain; their outcomes are discarded.
        self._check_cancelled(stream, state)

        results = self.enricher.enrich_all(outcomes, message, state.mode)
        for outcome in outcomes:
            state.record_outcome(outcome)

        context.append(Turn(role="user", content=[_result_part(r) for r in results]))

        any_failed = any(r.quality == QualityClass.FAILED for r in results)
        any_empty = any(r.quality == QualityClass.EMPTY for r in results)
        budget_exhausted = state.total_records_gathered >= self.settings.max_total_records
        if budget_exhausted:
            logger.info(
                f"[{state.run_id}] Record budget reached: {state.total_records_gathered} records"
            )
        context.append(
            Turn(
                role="user",
                content=build_continuation_instruction(
                    state.mode,
                    any_failed=any_failed,
                    any_empty=any_empty,
                    is_penultimate=state.is_penultimate_iteration,
                    budget_exhausted=budget_exhausted,
                ),
            )
        )
        self.compactor.shrink_tool_results(context, anchor)

    def _check_cancelled(self, stream: ExecutionStream, state: RunState) -> None:
        if stream.is_cancelled:
            raise RunCancelledError(state.run_id)


def _result_part(result: QualityAnnotatedResult) -> Dict[str, Any]:
    return {
        "type": "tool_result",
        "tool_use_id": result.request_id,
        "name": result.tool_name,
        "content": result.to_model_payload(),
    }
