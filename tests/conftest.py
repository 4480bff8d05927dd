"""Global pytest configuration and fixtures."""

import pytest

from task_orchestrator.config import OrchestratorSettings
from task_orchestrator.orchestrator.engine import WorkflowOrchestrator
from tests.fixtures.fakes import (
    FakeAIGateway,
    FakeCommandValidator,
    FakeContextProvider,
    FakeToolInvoker,
    InMemoryFileMutator,
)


@pytest.fixture
def context_provider() -> FakeContextProvider:
    return FakeContextProvider()


@pytest.fixture
def ai_gateway() -> FakeAIGateway:
    return FakeAIGateway()


@pytest.fixture
def file_mutator() -> InMemoryFileMutator:
    return InMemoryFileMutator()


@pytest.fixture
def command_validator() -> FakeCommandValidator:
    return FakeCommandValidator()


@pytest.fixture
def tool_invoker() -> FakeToolInvoker:
    return FakeToolInvoker()


@pytest.fixture
def settings() -> OrchestratorSettings:
    """In-memory settings without the autosave timer."""
    return OrchestratorSettings(auto_checkpoint=False, data_dir=None)


@pytest.fixture
def orchestrator(
    context_provider: FakeContextProvider,
    ai_gateway: FakeAIGateway,
    file_mutator: InMemoryFileMutator,
    command_validator: FakeCommandValidator,
    tool_invoker: FakeToolInvoker,
    settings: OrchestratorSettings,
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        context_provider,
        ai_gateway,
        file_mutator,
        command_validator,
        tool_invoker=tool_invoker,
        settings=settings,
    )
