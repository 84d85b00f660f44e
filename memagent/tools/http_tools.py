"""
HTTP Tools
==========

The `api_call` tool: HTTP requests to external services.

Notes:
- Uses httpx for async HTTP requests
- A JSON response body is decoded; anything else is returned as text
- HTTP error statuses (>= 400) are tool failures carrying the status
  and body, so the agent can still explain what went wrong
- Transport errors (DNS, connection refused, timeouts) are raised and
  left to the executor's retry policy
"""

import httpx

from memagent.tools import MCPTool, ToolRegistry, ToolResult
from memagent.utils.logger import Logger

logger = Logger("HttpTools")

DEFAULT_TIMEOUT_MS = 10000


def _decode_body(response: httpx.Response):
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


def make_api_call_tool(transport: httpx.AsyncBaseTransport | None = None) -> MCPTool:
    """
    Build the api_call tool.

    Args:
        transport: Optional httpx transport (e.g. httpx.MockTransport in tests)
    """

    async def _api_call(params: dict) -> ToolResult:
        url = params["url"]
        method = params.get("method", "GET").upper()
        headers = {"Content-Type": "application/json", **params.get("headers", {})}
        body = params.get("body")
        timeout = params.get("timeout", DEFAULT_TIMEOUT_MS) / 1000

        async with httpx.AsyncClient(transport=transport, timeout=timeout) as client:
            response = await client.request(
                method,
                url,
                headers=headers,
                json=body if body is not None and method != "GET" else None,
            )

        data = {
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "data": _decode_body(response),
        }

        if response.status_code >= 400:
            logger.warning(f"API call returned {response.status_code}", {"url": url, "method": method})
            return ToolResult(
                success=False,
                data=data,
                error=f"HTTP {response.status_code} {response.reason_phrase}"
            )

        logger.debug(f"API call succeeded: {method} {url} -> {response.status_code}")
        return ToolResult(success=True, data=data)

    return MCPTool(
        name="api_call",
        description="Make HTTP API calls to external services",
        parameters={
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "pattern": "^https?://",
                    "description": "Absolute http(s) URL"
                },
                "method": {
                    "type": "string",
                    "enum": ["GET", "POST", "PUT", "DELETE", "PATCH"],
                    "description": "HTTP method (default GET)"
                },
                "headers": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                    "description": "Extra request headers"
                },
                "body": {
                    "description": "JSON request body (ignored for GET)"
                },
                "timeout": {
                    "type": "number",
                    "minimum": 1000,
                    "maximum": 30000,
                    "description": "Timeout in milliseconds (default 10000)"
                }
            },
            "required": ["url"]
        },
        execute=_api_call
    )


def register_http_tools(registry: ToolRegistry, transport: httpx.AsyncBaseTransport | None = None) -> None:
    registry.register(make_api_call_tool(transport))
