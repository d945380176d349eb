"""Tests for IterationController."""

import asyncio
import re

import httpx
import openai
import pytest

from conduit.cache import ToolResultCache
from conduit.config import ConduitSettings
from conduit.orchestration.controller import IterationController, generate_run_id
from conduit.orchestration.events import TERMINAL_EVENT_TYPES
from conduit.orchestration.exceptions import ToolCallError
from conduit.orchestration.models import (
    TextPart,
    ToolInvocationRequest,
    ToolRequestPart,
)
from conduit.orchestration.stream import AsyncQueueStream, ExecutionStream


def tool_call(call_id: str, name: str, **parameters) -> ToolRequestPart:
    return ToolRequestPart(
        request=ToolInvocationRequest(id=call_id, name=name, parameters=parameters)
    )


def rate_limit_error(retry_after: str = "12") -> openai.RateLimitError:
    response = httpx.Response(
        429,
        headers={"retry-after": retry_after},
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"),
    )
    return openai.RateLimitError("Rate limit reached", response=response, body=None)


def tool_results(turns) -> list:
    return [
        part
        for turn in turns
        if isinstance(turn.content, list)
        for part in turn.content
        if part.get("type") == "tool_result"
    ]


def assert_single_terminal_last(stream) -> None:
    terminal = [t for t in stream.types if t in TERMINAL_EVENT_TYPES]
    assert len(terminal) == 1
    assert stream.types[-1] == terminal[0]
    assert stream.closed


class ContentRejectingStream(ExecutionStream):
    """Stream whose transport fails on the first content event."""

    def __init__(self) -> None:
        self.events = []

    async def emit(self, event) -> None:
        if event.event_type == "content":
            raise RuntimeError("transport closed")
        self.events.append(event)

    async def close(self) -> None:
        pass


class CancelAfterContentStream(ExecutionStream):
    """Stream whose consumer leaves after the first content event."""

    def __init__(self) -> None:
        self.events = []

    async def emit(self, event) -> None:
        self.events.append(event)

    async def close(self) -> None:
        pass

    @property
    def is_cancelled(self) -> bool:
        return any(event.event_type == "content" for event in self.events)


class TwoPartModel:
    """Model client that notes when its response stream is closed."""

    def __init__(self) -> None:
        self.closed = False

    async def stream(self, context, system, tools, temperature, max_tokens):
        try:
            yield TextPart(text="first")
            yield TextPart(text="second")
        finally:
            self.closed = True


class TestGenerateRunId:
    def test_format(self) -> None:
        run_id = generate_run_id()

        assert run_id.startswith("run_")
        assert len(run_id) == 16
        assert run_id != generate_run_id()


class TestIterationController:
    """End-to-end runs against a scripted model and canned tools."""

    @pytest.mark.asyncio
    async def test_empty_result_is_reported_not_fabricated(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        """Test an empty tool result reaches the model as 'no data' guidance."""
        model = scripted_model(
            [
                [tool_call("c1", "get_revenue", year=2024)],
                [TextPart(text="There is no revenue data available for 2024.")],
            ]
        )
        tools = canned_tools({"get_revenue": {"data": []}})
        controller = IterationController(model, tools, settings)

        state = await controller.run("show me revenue for 2024", stream=recording_stream)

        assert recording_stream.types == ["tool_started", "tool_finished", "content", "done"]
        assert recording_stream.of_type("tool_finished")[0].quality == "empty"

        second_call = model.calls[1]
        results = tool_results(second_call["turns"])
        assert results[0]["content"]["quality"] == "empty"
        assert "no data is available" in results[0]["content"]["guidance"]
        continuation = second_call["turns"][-1]
        assert continuation.role == "user"
        assert "no data is available" in continuation.content
        assert "Do not fabricate" in continuation.content

        done = recording_stream.of_type("done")[0]
        assert not re.search(r"\d[\d,]*\.\d{2}", done.message)
        assert state.completed is True
        assert state.total_records_gathered == 0
        assert_single_terminal_last(recording_stream)

    @pytest.mark.asyncio
    async def test_partial_failure_still_completes(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        """Test one failed tool call does not end the run."""
        model = scripted_model(
            [
                [tool_call("a", "get_sales"), tool_call("b", "get_refunds")],
                [TextPart(text="Sales retrieved; refunds are unavailable.")],
            ]
        )
        tools = canned_tools(
            {
                "get_sales": [{"id": i} for i in range(50)],
                "get_refunds": ToolCallError("get_refunds", "network error"),
            }
        )

        state = await IterationController(model, tools, settings).run(
            "analyze sales and refunds", stream=recording_stream
        )

        finished = {e.call_id: e for e in recording_stream.of_type("tool_finished")}
        assert finished["a"].success is True
        assert finished["a"].record_count == 50
        assert finished["b"].success is False
        assert finished["b"].error == "network error"

        results = {r["tool_use_id"]: r["content"] for r in tool_results(model.calls[1]["turns"])}
        assert results["a"]["quality"] == "good"
        assert results["b"]["quality"] == "failed"
        assert "Do not retry a failed tool" in model.calls[1]["turns"][-1].content

        assert state.total_records_gathered == 50
        assert recording_stream.types[-1] == "done"
        assert_single_terminal_last(recording_stream)

    @pytest.mark.asyncio
    async def test_text_only_answer(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        """Test a direct answer takes one model call and no tools."""
        model = scripted_model([[TextPart(text="Hello"), TextPart(text=" there")]])
        tools = canned_tools({"get_customers": [1, 2, 3]})

        state = await IterationController(model, tools, settings).run(
            "how many customers do I have", stream=recording_stream
        )

        assert recording_stream.types == ["content", "content", "done"]
        assert len(model.calls) == 1
        assert tools.calls == []
        done = recording_stream.of_type("done")[0]
        assert done.message == "Hello there"
        assert done.iterations == 1
        assert done.max_iterations_reached is False
        assert state.final_text == "Hello there"

    @pytest.mark.asyncio
    async def test_rate_limit_ends_run_with_retry_hint(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        """Test a 429 on the second invocation yields exactly one error event."""
        model = scripted_model(
            [[tool_call("c1", "get_customers")], rate_limit_error("12")]
        )
        tools = canned_tools({"get_customers": [1, 2, 3]})

        state = await IterationController(model, tools, settings).run(
            "list customers", stream=recording_stream
        )

        errors = recording_stream.of_type("error")
        assert len(errors) == 1
        assert errors[0].category == "rate_limited"
        assert errors[0].retry_after_seconds == 12
        assert "done" not in recording_stream.types
        assert state.error_category == "rate_limited"
        assert_single_terminal_last(recording_stream)

    @pytest.mark.asyncio
    async def test_rate_limit_without_header_uses_default(
        self, scripted_model, canned_tools, recording_stream
    ) -> None:
        settings = ConduitSettings(_env_file=None, default_retry_after_seconds=45)
        model = scripted_model([rate_limit_error("")])

        await IterationController(model, canned_tools(), settings).run(
            "list customers", stream=recording_stream
        )

        assert recording_stream.of_type("error")[0].retry_after_seconds == 45

    @pytest.mark.asyncio
    async def test_provider_error(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        model = scripted_model([RuntimeError("upstream exploded")])

        await IterationController(model, canned_tools(), settings).run(
            "list customers", stream=recording_stream
        )

        errors = recording_stream.of_type("error")
        assert [e.category for e in errors] == ["provider"]
        assert "upstream exploded" in errors[0].message
        assert_single_terminal_last(recording_stream)

    @pytest.mark.asyncio
    async def test_empty_message_is_context_error(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        """Test an empty context fails before any model call."""
        model = scripted_model([])

        state = await IterationController(model, canned_tools(), settings).run(
            "   ", history=[{"role": "assistant", "content": ""}], stream=recording_stream
        )

        assert recording_stream.types == ["error"]
        assert recording_stream.events[0].category == "context"
        assert model.calls == []
        assert state.error_category == "context"

    @pytest.mark.asyncio
    async def test_max_iterations_withholds_tools(
        self, scripted_model, canned_tools, recording_stream
    ) -> None:
        """Test the final iteration gets no tools and the run still finishes."""
        settings = ConduitSettings(_env_file=None, simple_max_iterations=3)
        model = scripted_model(
            [
                [tool_call("c1", "get_customers", limit=10)],
                [tool_call("c2", "get_customers", limit=20)],
                [TextPart(text="You have 3 customers.")],
            ]
        )
        tools = canned_tools({"get_customers": [1, 2, 3]})

        state = await IterationController(model, tools, settings).run(
            "list customers", stream=recording_stream
        )

        assert len(model.calls) == 3
        assert model.calls[0]["tools"] and model.calls[1]["tools"]
        assert model.calls[2]["tools"] == []
        assert "FINAL ITERATION" in model.calls[2]["system"]
        assert "one response left" not in model.calls[1]["turns"][-1].content
        assert "one response left" in model.calls[2]["turns"][-1].content
        assert state.max_iterations_reached is True
        done = recording_stream.of_type("done")[0]
        assert done.max_iterations_reached is True
        assert done.iterations == 3

    @pytest.mark.asyncio
    async def test_requests_on_final_iteration_are_ignored(
        self, scripted_model, canned_tools, recording_stream
    ) -> None:
        settings = ConduitSettings(_env_file=None, simple_max_iterations=1)
        model = scripted_model(
            [[TextPart(text="Let me check."), tool_call("c1", "get_customers")]]
        )
        tools = canned_tools({"get_customers": [1]})

        state = await IterationController(model, tools, settings).run(
            "list customers", stream=recording_stream
        )

        assert tools.calls == []
        assert recording_stream.types == ["content", "done"]
        assert state.max_iterations_reached is True

    @pytest.mark.asyncio
    async def test_duplicates_flagged_across_iterations(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        model = scripted_model(
            [
                [tool_call("c1", "get_customers", limit=10)],
                [tool_call("c2", "get_customers", limit=10)],
                [TextPart(text="Done.")],
            ]
        )
        tools = canned_tools({"get_customers": [1, 2, 3]})

        await IterationController(model, tools, settings).run(
            "list customers", stream=recording_stream
        )

        started = recording_stream.of_type("tool_started")
        assert [(e.call_id, e.duplicate) for e in started] == [("c1", False), ("c2", True)]
        assert [e.iteration for e in started] == [1, 2]
        assert len(tools.calls) == 2

    @pytest.mark.asyncio
    async def test_small_talk_gets_no_tools(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        model = scripted_model([[TextPart(text="Hi! How can I help?")]])

        await IterationController(
            model, canned_tools({"get_customers": [1]}), settings
        ).run("hello", stream=recording_stream)

        assert model.calls[0]["tools"] == []
        assert "Available tools: none" in model.calls[0]["system"]

    @pytest.mark.asyncio
    async def test_record_budget_withholds_tools(
        self, scripted_model, canned_tools, recording_stream
    ) -> None:
        """Test tools stop being offered once the record budget is spent."""
        settings = ConduitSettings(_env_file=None, max_total_records=10)
        model = scripted_model(
            [[tool_call("c1", "get_orders")], [TextPart(text="Summary.")]]
        )
        tools = canned_tools({"get_orders": {"count": 25, "data": [1, 2, 3]}})

        state = await IterationController(model, tools, settings).run(
            "list my orders", stream=recording_stream
        )

        assert state.total_records_gathered == 25
        assert model.calls[1]["tools"] == []
        assert "data budget" in model.calls[1]["turns"][-1].content
        assert state.max_iterations_reached is False

    @pytest.mark.asyncio
    async def test_history_and_credentials(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        model = scripted_model(
            [[tool_call("c1", "get_customers")], [TextPart(text="Done.")]]
        )
        tools = canned_tools({"get_customers": [1, 2, 3]})
        history = [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "Hello!"},
        ]
        credentials = {"X-Access-Token": "token"}

        await IterationController(model, tools, settings).run(
            "how many customers do I have",
            history=history,
            stream=recording_stream,
            credentials=credentials,
        )

        first_turns = model.calls[0]["turns"]
        assert [t.role for t in first_turns] == ["user", "assistant", "user"]
        assert tools.calls[0][2] == credentials
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_cancellation_during_tool_round(
        self, scripted_model, canned_tools, settings
    ) -> None:
        """Test a disconnect mid-round drains the tool and ends silently."""
        model = scripted_model([[tool_call("c1", "get_customers")]])
        tools = canned_tools({"get_customers": [1, 2, 3]}, delays={"get_customers": 0.05})
        stream = AsyncQueueStream()
        controller = IterationController(model, tools, settings)

        task = asyncio.create_task(controller.run("list customers", stream=stream))
        first = await stream.get(timeout=1)
        assert first.event_type == "tool_started"
        stream.cancel()
        state = await asyncio.wait_for(task, timeout=1)

        assert state.cancelled is True
        assert state.completed is False
        assert tools.completed == ["get_customers"]
        assert len(model.calls) == 1
        assert stream.queue.empty()

    @pytest.mark.asyncio
    async def test_run_id_is_used(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        model = scripted_model([[TextPart(text="ok")]])

        state = await IterationController(model, canned_tools(), settings).run(
            "count orders", stream=recording_stream, run_id="run_fixed"
        )

        assert state.run_id == "run_fixed"
        assert {e.run_id for e in recording_stream.events} == {"run_fixed"}

    @pytest.mark.asyncio
    async def test_cached_results_stay_with_their_caller(
        self, scripted_model, canned_tools, settings
    ) -> None:
        """Test a second caller with the same request reaches the tool service."""
        tools = canned_tools({"get_revenue": {"data": [{"amount": 10}]}})
        script = [
            [tool_call("c1", "get_revenue", year=2024)],
            [TextPart(text="Done.")],
        ]
        cache = ToolResultCache(ttl_seconds=60)

        for business in ("A", "B", "A"):
            controller = IterationController(
                scripted_model(list(script)), tools, settings, cache=cache
            )
            await controller.run(
                "show me revenue for 2024", credentials={"X-Business-Id": business}
            )

        callers = [call[2]["X-Business-Id"] for call in tools.calls]
        assert callers == ["A", "B"]
        assert cache.hits == 1

    @pytest.mark.asyncio
    async def test_wide_round_stays_under_context_ceiling(
        self, scripted_model, canned_tools, recording_stream, settings
    ) -> None:
        """Test many parallel results still leave the context within bounds."""
        records = [{"id": i, "note": "n" * 180} for i in range(50)]
        names = [f"get_report_{i}" for i in range(60)]
        model = scripted_model(
            [[tool_call(f"c{i}", name) for i, name in enumerate(names)], [TextPart(text="Done.")]]
        )
        tools = canned_tools({name: records for name in names})

        await IterationController(model, tools, settings).run(
            "analyze all reports", stream=recording_stream
        )

        turns = model.calls[1]["turns"]
        assert sum(turn.serialized_size() for turn in turns) <= settings.max_context_chars
        assert len(tool_results(turns)) == 60
        assert recording_stream.types[-1] == "done"

    @pytest.mark.asyncio
    async def test_stream_failure_is_not_a_provider_error(
        self, scripted_model, canned_tools, settings
    ) -> None:
        """Test a failing consumer ends the run as an internal error."""
        model = scripted_model([[TextPart(text="Hello")]])
        stream = ContentRejectingStream()

        state = await IterationController(model, canned_tools({}), settings).run(
            "hello there", stream=stream
        )

        assert state.error_category == "internal"
        assert [event.event_type for event in stream.events] == ["error"]
        assert stream.events[0].category == "internal"

    @pytest.mark.asyncio
    async def test_cancellation_closes_model_stream(self, canned_tools, settings) -> None:
        model = TwoPartModel()
        stream = CancelAfterContentStream()

        state = await IterationController(model, canned_tools({}), settings).run(
            "how many customers", stream=stream
        )

        assert state.cancelled is True
        assert model.closed is True
        assert [event.text for event in stream.events] == ["first"]
