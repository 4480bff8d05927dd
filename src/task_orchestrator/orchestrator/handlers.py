"""Step action handlers and the registry that dispatches to them."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from task_orchestrator.interfaces.protocols import (
    AIGateway,
    CommandValidator,
    ContextProvider,
    FileMutator,
    FileReader,
    ToolInvoker,
)
from task_orchestrator.orchestrator.errors import (
    CommandRejected,
    StepExecutionError,
    UnsupportedAction,
)
from task_orchestrator.orchestrator.models import WorkflowStep

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """External capabilities handed to step handlers."""

    context_provider: ContextProvider
    ai_gateway: AIGateway
    file_mutator: FileMutator
    command_validator: CommandValidator
    tool_invoker: ToolInvoker | None = None
    command_timeout: float = 120.0


class StepHandler(ABC):
    """Executes one step action and knows how to undo it."""

    action: str = ""
    mutating: bool = False  # Whether the action changes the workspace

    @abstractmethod
    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        """Run the step and return its result; raise on failure."""

    async def prepare_rollback(
        self, step: WorkflowStep, collaborators: Collaborators
    ) -> dict[str, Any] | None:
        """Capture whatever is needed to undo the step before it runs."""
        return None

    async def rollback(self, step: WorkflowStep, collaborators: Collaborators) -> None:
        """Undo a completed step using ``step.rollback_data``."""
        return None


def _require(step: WorkflowStep, key: str) -> Any:
    value = step.parameters.get(key)
    if value is None or value == "":
        raise StepExecutionError(
            f"Parameter '{key}' is required for {step.action}",
            step_id=step.id,
            action=step.action,
        )
    return value


async def _snapshot_file(path: str, collaborators: Collaborators) -> dict[str, Any]:
    """Record whether ``path`` exists and its content, if the mutator can read."""
    mutator = collaborators.file_mutator
    if not isinstance(mutator, FileReader):
        return {"path": path, "existed": None, "previous_content": None}
    try:
        content = await mutator.read_file(path)
    except (FileNotFoundError, OSError):
        return {"path": path, "existed": False, "previous_content": None}
    return {"path": path, "existed": True, "previous_content": content}


class _FileHandler(StepHandler):
    mutating = True

    async def prepare_rollback(
        self, step: WorkflowStep, collaborators: Collaborators
    ) -> dict[str, Any] | None:
        return await _snapshot_file(_require(step, "path"), collaborators)


class CreateFileHandler(_FileHandler):
    action = "create_file"

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        path = _require(step, "path")
        content = step.parameters.get("content", "")
        return await collaborators.file_mutator.create_file(path, content)

    async def rollback(self, step: WorkflowStep, collaborators: Collaborators) -> None:
        data = step.rollback_data or {}
        if data.get("existed") and data.get("previous_content") is not None:
            await collaborators.file_mutator.modify_file(
                data["path"], data["previous_content"]
            )
        elif data.get("existed") is False:
            await collaborators.file_mutator.delete_file(data["path"])
        else:
            logger.warning(f"Prior state unknown for step {step.id}, skipping")


class ModifyFileHandler(_FileHandler):
    action = "modify_file"

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        path = _require(step, "path")
        content = _require(step, "content")
        return await collaborators.file_mutator.modify_file(path, content)

    async def rollback(self, step: WorkflowStep, collaborators: Collaborators) -> None:
        data = step.rollback_data or {}
        if data.get("previous_content") is None:
            logger.warning(f"No previous content recorded for step {step.id}, skipping")
            return
        await collaborators.file_mutator.modify_file(data["path"], data["previous_content"])


class DeleteFileHandler(_FileHandler):
    action = "delete_file"

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        return await collaborators.file_mutator.delete_file(_require(step, "path"))

    async def rollback(self, step: WorkflowStep, collaborators: Collaborators) -> None:
        data = step.rollback_data or {}
        if data.get("previous_content") is None:
            logger.warning(f"No previous content recorded for step {step.id}, skipping")
            return
        await collaborators.file_mutator.create_file(data["path"], data["previous_content"])


class ExecuteCommandHandler(StepHandler):
    """Validates a shell command and runs it with a timeout."""

    action = "execute_command"
    mutating = True

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        command = _require(step, "command")
        try:
            allowed = await collaborators.command_validator.validate_command(command)
        except Exception as e:
            raise CommandRejected(
                f"Command validation failed: {e}", step_id=step.id, action=self.action
            ) from e
        if not allowed:
            raise CommandRejected(
                f"Command validation failed: {command}",
                step_id=step.id,
                action=self.action,
            )

        cwd = step.parameters.get("working_directory") or step.parameters.get(
            "workingDirectory"
        )
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=collaborators.command_timeout
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            raise StepExecutionError(
                f"Command timed out after {collaborators.command_timeout}s: {command}",
                step_id=step.id,
                action=self.action,
            ) from None

        result = {
            "command": command,
            "exit_code": process.returncode,
            "stdout": stdout.decode("utf-8", errors="replace"),
            "stderr": stderr.decode("utf-8", errors="replace"),
        }
        if process.returncode != 0:
            raise StepExecutionError(
                f"Command exited with code {process.returncode}: "
                f"{result['stderr'].strip()[:500]}",
                step_id=step.id,
                action=self.action,
            )
        return result


class AIGenerateHandler(StepHandler):
    action = "ai_generate"

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        prompt = _require(step, "prompt")
        context = await collaborators.context_provider.get_current_context()
        return await collaborators.ai_gateway.send_message(prompt, context)


class _ToolHandler(StepHandler):
    def invoker(self, step: WorkflowStep, collaborators: Collaborators) -> ToolInvoker:
        if collaborators.tool_invoker is None:
            raise StepExecutionError(
                "No tool invoker configured", step_id=step.id, action=step.action
            )
        return collaborators.tool_invoker


class CallToolHandler(_ToolHandler):
    """Invokes an external tool; ``arguments_key`` names the argument map."""

    def __init__(self, action: str, arguments_key: str):
        self.action = action
        self.arguments_key = arguments_key

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        tool_name = _require(step, "tool_name")
        arguments = step.parameters.get(self.arguments_key) or {}
        result = await self.invoker(step, collaborators).call_tool(tool_name, arguments)
        if result.error:
            raise StepExecutionError(
                f"Tool {tool_name} failed: {result.error}",
                step_id=step.id,
                action=self.action,
            )
        return result.result


class AccessResourceHandler(_ToolHandler):
    action = "access_mcp_resource"

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        uri = _require(step, "uri")
        return await self.invoker(step, collaborators).read_resource(uri)


class LoadDocumentationHandler(_ToolHandler):
    action = "load_mcp_documentation"

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        tools = await self.invoker(step, collaborators).list_tools()
        return "\n".join(f"{tool.name}: {tool.description}" for tool in tools)


class HandlerRegistry:
    """Maps action names to handlers."""

    def __init__(self, handlers: Iterable[StepHandler] = ()):
        self._handlers: dict[str, StepHandler] = {}
        for handler in handlers:
            self.register(handler)

    def register(self, handler: StepHandler, replace: bool = False) -> None:
        if not handler.action:
            raise ValueError(f"{type(handler).__name__} has no action name")
        if handler.action in self._handlers and not replace:
            raise ValueError(f"Handler already registered for {handler.action}")
        self._handlers[handler.action] = handler

    def get(self, action: str) -> StepHandler:
        try:
            return self._handlers[action]
        except KeyError:
            raise UnsupportedAction(action) from None

    def supports(self, action: str) -> bool:
        return action in self._handlers

    def is_mutating(self, action: str) -> bool:
        """Whether ``action`` changes the workspace; unknown names are judged by name."""
        handler = self._handlers.get(action)
        if handler is not None:
            return handler.mutating
        return any(verb in action for verb in ("create", "delete", "modify", "execute"))

    @property
    def actions(self) -> list[str]:
        return sorted(self._handlers)


def default_registry() -> HandlerRegistry:
    """Registry with every built-in action."""
    return HandlerRegistry(
        [
            CreateFileHandler(),
            ModifyFileHandler(),
            DeleteFileHandler(),
            ExecuteCommandHandler(),
            AIGenerateHandler(),
            CallToolHandler("mcp_tool", arguments_key="parameters"),
            CallToolHandler("use_mcp_tool", arguments_key="arguments"),
            AccessResourceHandler(),
            LoadDocumentationHandler(),
        ]
    )
