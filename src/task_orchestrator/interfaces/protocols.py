"""Capability interfaces the orchestrator calls into."""

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel


class ToolCallResult(BaseModel):
    """Outcome of an external tool invocation."""

    result: Any = None
    error: str | None = None


class ToolDescription(BaseModel):
    """Name and description of an external tool."""

    name: str
    description: str = ""


class ContextProvider(Protocol):
    """Supplies a serializable snapshot of the editor/workspace context."""

    async def get_current_context(self) -> dict[str, Any]: ...


class AIGateway(Protocol):
    """Sends a prompt plus context to an AI model and returns its text reply."""

    async def send_message(self, prompt: str, context: dict[str, Any]) -> str: ...


class FileMutator(Protocol):
    async def create_file(self, path: str, content: str) -> Any: ...

    async def modify_file(self, path: str, content: str) -> Any: ...

    async def delete_file(self, path: str) -> Any: ...


@runtime_checkable
class FileReader(Protocol):
    """Optional capability used to capture rollback data before mutations."""

    async def read_file(self, path: str) -> str: ...


class CommandValidator(Protocol):
    """Returns False or raises when a command violates policy."""

    async def validate_command(self, command: str) -> bool: ...


class ToolInvoker(Protocol):
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolCallResult: ...

    async def list_tools(self) -> list[ToolDescription]: ...

    async def read_resource(self, uri: str) -> str: ...
