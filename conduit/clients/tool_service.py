"""HTTP client for the external tool-execution service.

The service speaks JSON-RPC 2.0 over plain HTTP: ``tools/list`` and
``tools/call`` are POSTed to ``{url}/tools/list`` and ``{url}/tools/call``,
and ``GET {url}/health`` reports liveness.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

import httpx

from conduit.config import ConduitSettings
from conduit.orchestration.exceptions import (
    ToolCallError,
    ToolServiceUnavailableError,
)

logger = logging.getLogger(__name__)

EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

# (keywords in tool name, hint appended to its description)
USAGE_HINTS = (
    (
        ("customer",),
        "Use when users ask about customers, customer counts, or customer-related data.",
    ),
    (
        ("revenue", "sales"),
        "Use when users ask about revenue, sales, earnings, income, or financial data.",
    ),
    (
        ("metric", "report"),
        "Use when users ask for reports, metrics, analytics, or business performance.",
    ),
    (
        ("transaction",),
        "Use when users ask about transactions, transaction history, or transaction details.",
    ),
    (
        ("inventory",),
        "Use when users ask about inventory, stock levels, or product availability.",
    ),
)


class ToolDefinition:
    """A tool advertised by the service."""

    def __init__(
        self, name: str, description: str, input_schema: Dict[str, Any]
    ) -> None:
        self.name = name
        self.description = description
        self.input_schema = input_schema

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def enhance_description(tool: ToolDefinition) -> str:
    """Append a usage hint chosen from keywords in the tool name."""
    name = tool.name.lower()
    description = tool.description or f"Execute {tool.name} operation"
    for keywords, hint in USAGE_HINTS:
        if any(keyword in name for keyword in keywords):
            return f"{description} {hint}"
    return description


class ToolServiceClient:
    """Async client for the tool service.

    Example:
        client = ToolServiceClient(settings)
        await client.connect()
        result = await client.call_tool("get_customers", {"limit": 10})
    """

    def __init__(
        self,
        settings: ConduitSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Supplies the service URL, timeouts and retry policy.
            http_client: Optional pre-built client (tests pass one with a
                MockTransport). Created lazily otherwise.
        """
        self.settings = settings
        self.server_url = settings.tool_service_url.rstrip("/")
        self._http = http_client
        self._owns_http = http_client is None
        self.tools: List[ToolDefinition] = []
        self.is_connected = False
        self._last_health_check = 0.0

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.settings.tool_call_timeout_seconds,
                    connect=self.settings.tool_connect_timeout_seconds,
                )
            )
        return self._http

    @property
    def is_ready(self) -> bool:
        """Connected and at least one tool discovered."""
        return self.is_connected and len(self.tools) > 0

    async def connect(self) -> None:
        """Check health (with retries) and discover tools.

        Raises:
            ToolServiceUnavailableError: If every health check attempt fails.
        """
        attempts = self.settings.tool_connect_retries
        logger.info(f"Connecting to tool service at {self.server_url}")
        for attempt in range(1, attempts + 1):
            if await self._health_ok():
                self.is_connected = True
                self._last_health_check = time.monotonic()
                await self.discover_tools()
                logger.info(
                    f"Connected to tool service: {len(self.tools)} tools available"
                )
                return
            if attempt < attempts:
                logger.info(
                    f"Connection attempt failed, {attempts - attempt} retries remaining..."
                )
                await asyncio.sleep(self.settings.tool_retry_delay_seconds)

        self.is_connected = False
        raise ToolServiceUnavailableError(
            f"Tool service at {self.server_url} unavailable after {attempts} attempts"
        )

    async def discover_tools(self) -> List[ToolDefinition]:
        """Fetch the tool list. Failures leave an empty list."""
        try:
            response = await self.http.post(
                f"{self.server_url}/tools/list",
                json={"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Tool discovery failed: {e}")
            self.tools = []
            return self.tools

        raw_tools = (data.get("result") or {}).get("tools") if isinstance(data, dict) else None
        if not raw_tools:
            logger.warning("No tools found in tool service response")
            self.tools = []
            return self.tools

        self.tools = [
            ToolDefinition(
                name=tool["name"],
                description=tool.get("description") or f"Execute {tool['name']} operation",
                input_schema=tool.get("input_schema")
                or tool.get("inputSchema")
                or dict(EMPTY_SCHEMA),
            )
            for tool in raw_tools
            if isinstance(tool, dict) and tool.get("name")
        ]
        logger.info(f"Discovered {len(self.tools)} tools: {[t.name for t in self.tools]}")
        return self.tools

    def tool_names(self) -> List[str]:
        return [tool.name for tool in self.tools]

    def tool_schemas(self) -> List[Dict[str, Any]]:
        """Tool definitions in the function-calling format the model binds."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": enhance_description(tool),
                    "parameters": tool.input_schema or dict(EMPTY_SCHEMA),
                },
            }
            for tool in self.tools
        ]

    async def call_tool(
        self,
        name: str,
        arguments: Dict[str, Any],
        credentials: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Execute one tool.

        Args:
            name: Tool name.
            arguments: Tool parameters.
            credentials: Opaque caller credentials, forwarded as headers.

        Returns:
            The JSON-RPC ``result`` member.

        Raises:
            ToolCallError: On transport errors, timeouts, non-2xx statuses,
                JSON-RPC errors or results flagged ``isError``.
        """
        await self._maybe_check_health()
        if not self.is_connected:
            raise ToolCallError(name, "Tool service not connected")

        headers = {key: value for key, value in (credentials or {}).items() if value}
        body = {
            "jsonrpc": "2.0",
            "id": uuid.uuid4().hex,
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments or {}},
        }
        logger.debug(f"Calling tool {name} with args: {arguments}")

        try:
            response = await self.http.post(
                f"{self.server_url}/tools/call",
                json=body,
                headers=headers,
                timeout=self.settings.tool_call_timeout_seconds,
            )
        except httpx.TimeoutException:
            raise ToolCallError(name, f"Tool execution timed out for {name}")
        except httpx.HTTPError as e:
            raise ToolCallError(name, f"Tool service request failed: {e}")

        if response.status_code >= 400:
            raise ToolCallError(
                name,
                f"Tool execution failed ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise ToolCallError(name, "Tool service returned invalid JSON")

        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ToolCallError(name, f"Tool error: {message or 'Unknown error'}")

        result = data.get("result") if isinstance(data, dict) else data
        if isinstance(result, dict) and result.get("isError"):
            raise ToolCallError(name, f"Tool error: {_content_text(result) or 'Unknown error'}")
        return result

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        self.is_connected = False

    async def _maybe_check_health(self) -> None:
        interval = self.settings.health_check_interval_seconds
        if time.monotonic() - self._last_health_check <= interval:
            return
        self.is_connected = await self._health_ok()
        if self.is_connected:
            self._last_health_check = time.monotonic()
        else:
            logger.warning("Tool service health check failed")

    async def _health_ok(self) -> bool:
        try:
            response = await self.http.get(
                f"{self.server_url}/health",
                timeout=self.settings.tool_connect_timeout_seconds,
            )
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Health check error: {e}")
            return False


def _content_text(result: Dict[str, Any]) -> str:
    content = result.get("content")
    if not isinstance(content, list):
        return ""
    return " ".join(
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ).strip()
