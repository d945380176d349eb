"""Pytest fixtures for API tests."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conduit.api import dependencies
from conduit.api.main import create_app
from conduit.config import ConduitSettings
from conduit.orchestration import IterationController
from conduit.orchestration.models import TextPart, ToolInvocationRequest, ToolRequestPart


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a process-wide exit event bound to the first loop."""
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


@pytest.fixture
def api_settings() -> ConduitSettings:
    return ConduitSettings(_env_file=None, stream_buffer_size=8)


@pytest.fixture
def fake_tools(canned_tools):
    return canned_tools({"get_customers": [{"id": 1}, {"id": 2}, {"id": 3}, {"id": 4}]})


@pytest.fixture
def fake_model(scripted_model):
    return scripted_model(
        [
            [
                ToolRequestPart(
                    request=ToolInvocationRequest(
                        id="call_1", name="get_customers", parameters={"limit": 10}
                    )
                )
            ],
            [TextPart(text="You have "), TextPart(text="4 customers.")],
        ]
    )


@pytest.fixture
def client(fake_model, fake_tools, api_settings):
    """Create a test client with mocked dependencies."""
    app = create_app()
    controller = IterationController(fake_model, fake_tools, settings=api_settings)

    async def override_get_controller():
        return controller

    async def override_get_tool_service():
        return fake_tools

    def override_get_app_settings():
        return api_settings

    with patch.object(dependencies, "_tool_service", fake_tools), patch.object(
        dependencies, "_controller", controller
    ):
        app.dependency_overrides[dependencies.get_controller] = override_get_controller
        app.dependency_overrides[dependencies.get_tool_service] = override_get_tool_service
        app.dependency_overrides[dependencies.get_app_settings] = override_get_app_settings

        with TestClient(app) as test_client:
            yield test_client
