"""Shared fixtures: a scripted model, a canned tool service, a recording stream."""

import asyncio
from typing import Any

import pytest

from conduit.config import ConduitSettings
from conduit.orchestration.events import StreamEvent
from conduit.orchestration.exceptions import ToolCallError
from conduit.orchestration.models import TextPart, WorkingContext
from conduit.orchestration.stream import ExecutionStream


class FakeModelClient:
    """Model client that replays one scripted step per invocation.

    A step is a list of parts to yield, or an exception to raise. Once the
    script runs out every further invocation answers with ``default``.
    """

    def __init__(self, script: list[Any], default: list[Any] | None = None) -> None:
        self.script = list(script)
        self.default = default if default is not None else [TextPart(text="Done.")]
        self.calls: list[dict[str, Any]] = []

    async def stream(
        self,
        context: WorkingContext,
        system: str,
        tools: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
    ):
        index = len(self.calls)
        self.calls.append(
            {
                "system": system,
                "tools": list(tools),
                "turns": list(context.turns),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        step = self.script[index] if index < len(self.script) else self.default
        if isinstance(step, BaseException):
            raise step
        for part in step:
            yield part


class FakeToolService:
    """Tool service returning canned payloads, optionally after a delay.

    A canned value that is an exception is raised instead of returned.
    """

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls: list[tuple[str, dict[str, Any], dict[str, str] | None]] = []
        self.completed: list[str] = []
        self.server_url = "http://tools.test"
        self.connected = False

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any],
        credentials: dict[str, str] | None = None,
    ) -> Any:
        self.calls.append((name, arguments, credentials))
        delay = self.delays.get(name, 0)
        if delay:
            await asyncio.sleep(delay)
        self.completed.append(name)
        if name not in self.responses:
            raise ToolCallError(name, f"Tool '{name}' not found")
        response = self.responses[name]
        if isinstance(response, BaseException):
            raise response
        return response

    def tool_schemas(self) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": f"Execute {name} operation",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
            for name in self.responses
        ]

    # Surface used by the API layer
    @property
    def tools(self) -> list[Any]:
        return []

    @property
    def is_ready(self) -> bool:
        return self.connected and bool(self.responses)

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False


class RecordingStream(ExecutionStream):
    """Stream that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []
        self.closed = False

    async def emit(self, event: StreamEvent) -> None:
        self.events.append(event)

    async def close(self) -> None:
        self.closed = True

    @property
    def types(self) -> list[str]:
        return [event.event_type for event in self.events]

    def of_type(self, event_type: str) -> list[Any]:
        return [event for event in self.events if event.event_type == event_type]


@pytest.fixture
def settings() -> ConduitSettings:
    """Settings isolated from any local .env file."""
    return ConduitSettings(_env_file=None)


@pytest.fixture
def recording_stream() -> RecordingStream:
    return RecordingStream()


@pytest.fixture
def scripted_model():
    """Factory for FakeModelClient instances."""

    def factory(script: list[Any], default: list[Any] | None = None) -> FakeModelClient:
        return FakeModelClient(script, default)

    return factory


@pytest.fixture
def canned_tools():
    """Factory for FakeToolService instances."""

    def factory(
        responses: dict[str, Any] | None = None,
        delays: dict[str, float] | None = None,
    ) -> FakeToolService:
        return FakeToolService(responses, delays)

    return factory
