"""Tool invoker that talks to an MCP server over SSE."""

import logging
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession
from mcp.client.sse import sse_client

from task_orchestrator.interfaces.protocols import ToolCallResult, ToolDescription


class McpToolInvoker:
    """Calls tools and reads resources on an SSE-based MCP server.

    Usage:
        async with McpToolInvoker("http://localhost:8080/sse") as invoker:
            result = await invoker.call_tool("search", {"query": "..."})
    """

    def __init__(self, server_url: str):
        self.server_url = server_url
        self.session: ClientSession | None = None
        self.exit_stack = AsyncExitStack()
        self.logger = logging.getLogger(__name__)

    async def connect(self) -> None:
        """Open the SSE streams and initialize the client session."""
        if self.session is not None:
            return
        self.logger.info(f"Connecting to MCP SSE server at {self.server_url}")
        streams = await self.exit_stack.enter_async_context(sse_client(url=self.server_url))
        self.session = await self.exit_stack.enter_async_context(ClientSession(*streams))
        await self.session.initialize()
        self.logger.info("MCP client session initialized")

    async def cleanup(self) -> None:
        """Close the session and streams."""
        await self.exit_stack.aclose()
        self.exit_stack = AsyncExitStack()
        self.session = None

    async def __aenter__(self) -> "McpToolInvoker":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    def _require_session(self) -> ClientSession:
        if self.session is None:
            raise RuntimeError("Session not initialized.")
        return self.session

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult:
        session = self._require_session()
        self.logger.info(f"Calling tool '{name}' with args: {arguments}")
        result = await session.call_tool(name, arguments)
        text = _join_text(result.content)
        if result.isError:
            return ToolCallResult(error=text or f"Tool {name} reported an error")
        if result.structuredContent is not None:
            return ToolCallResult(result=result.structuredContent)
        return ToolCallResult(result=text)

    async def list_tools(self) -> list[ToolDescription]:
        session = self._require_session()
        response = await session.list_tools()
        return [
            ToolDescription(name=tool.name, description=tool.description or "")
            for tool in response.tools
        ]

    async def read_resource(self, uri: str) -> str:
        session = self._require_session()
        response = await session.read_resource(uri)
        return "\n".join(
            getattr(content, "text", None) or getattr(content, "blob", "")
            for content in response.contents
        )


def _join_text(content: list[Any]) -> str:
    return "\n".join(block.text for block in content if getattr(block, "type", None) == "text")
