"""Tools router - what the tool service currently advertises."""

from fastapi import APIRouter, Depends

from conduit.api.dependencies import get_tool_service
from conduit.api.schemas import ToolsResponse, ToolSummary
from conduit.clients.tool_service import ToolServiceClient

router = APIRouter()


@router.get("", response_model=ToolsResponse)
async def list_tools(
    tool_service: ToolServiceClient = Depends(get_tool_service),
) -> ToolsResponse:
    """List discovered tools and whether the service is ready."""
    return ToolsResponse(
        tools=[ToolSummary(**tool.to_dict()) for tool in tool_service.tools],
        ready=tool_service.is_ready,
        server_url=tool_service.server_url,
    )
