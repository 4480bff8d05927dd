"""Tests for dependency-ordered step execution."""

import asyncio
from typing import Any

import pytest

from task_orchestrator.orchestrator.errors import (
    CyclicDependency,
    DuplicateStepId,
    RollbackFailed,
    UnknownDependency,
    UnsupportedAction,
)
from task_orchestrator.orchestrator.executor import (
    StepExecutor,
    should_rollback,
    sort_steps_by_dependencies,
)
from task_orchestrator.orchestrator.handlers import (
    Collaborators,
    StepHandler,
    default_registry,
)
from task_orchestrator.orchestrator.metrics import ToolMetricsStore
from task_orchestrator.orchestrator.models import (
    StepStatus,
    ToolExecutionState,
    WorkflowStep,
)
from tests.fixtures.fakes import (
    FakeAIGateway,
    FakeCommandValidator,
    FakeContextProvider,
    InMemoryFileMutator,
)


class FlakyHandler(StepHandler):
    """Fails a fixed number of times, then succeeds."""

    action = "flaky"

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def execute(self, step: WorkflowStep, collaborators: Collaborators) -> Any:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("transient failure")
        return "ok"


def create_step(step_id: str, *dependencies: str, max_retries: int = 0) -> WorkflowStep:
    return WorkflowStep(
        id=step_id,
        action="create_file",
        parameters={"path": f"{step_id}.txt", "content": step_id},
        dependencies=list(dependencies),
        max_retries=max_retries,
    )


class TestSortSteps:
    """Test suite for topological ordering."""

    def test_dependencies_first_regardless_of_submission(self) -> None:
        steps = [create_step("c", "b"), create_step("b", "a"), create_step("a")]

        ordered = sort_steps_by_dependencies(steps)

        assert [s.id for s in ordered] == ["a", "b", "c"]

    def test_independent_steps_keep_submission_order(self) -> None:
        steps = [create_step("z"), create_step("y"), create_step("x")]
        assert [s.id for s in sort_steps_by_dependencies(steps)] == ["z", "y", "x"]

    def test_diamond(self) -> None:
        steps = [
            create_step("d", "b", "c"),
            create_step("b", "a"),
            create_step("c", "a"),
            create_step("a"),
        ]

        order = [s.id for s in sort_steps_by_dependencies(steps)]

        assert order.index("a") < order.index("b") < order.index("d")
        assert order.index("c") < order.index("d")

    def test_cycle(self) -> None:
        steps = [create_step("a", "c"), create_step("b", "a"), create_step("c", "b")]

        with pytest.raises(CyclicDependency) as exc_info:
            sort_steps_by_dependencies(steps)

        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]

    def test_self_dependency_is_a_cycle(self) -> None:
        with pytest.raises(CyclicDependency):
            sort_steps_by_dependencies([create_step("a", "a")])

    def test_unknown_dependency(self) -> None:
        with pytest.raises(UnknownDependency, match="ghost"):
            sort_steps_by_dependencies([create_step("a", "ghost")])

    def test_duplicate_ids(self) -> None:
        steps = [create_step("a"), create_step("b", "a"), create_step("a")]
        with pytest.raises(DuplicateStepId, match="Duplicate step id: a"):
            sort_steps_by_dependencies(steps)


class TestShouldRollback:
    def test_exhausted_failure(self) -> None:
        step = WorkflowStep(id="s", action="x", status=StepStatus.FAILED, max_retries=0)
        assert should_rollback(step)

    def test_retries_left(self) -> None:
        step = WorkflowStep(
            id="s", action="x", status=StepStatus.FAILED, retry_count=1, max_retries=2
        )
        assert not should_rollback(step)

    def test_completed_step(self) -> None:
        step = WorkflowStep(id="s", action="x", status=StepStatus.COMPLETED)
        assert not should_rollback(step)


class TestStepExecutor:
    """Test suite for StepExecutor."""

    def setup_method(self) -> None:
        self.files = InMemoryFileMutator()
        self.context = FakeContextProvider({"workspace_root": "/ws"})
        self.registry = default_registry()
        self.metrics = ToolMetricsStore()
        self.collaborators = Collaborators(
            context_provider=self.context,
            ai_gateway=FakeAIGateway(),
            file_mutator=self.files,
            command_validator=FakeCommandValidator(),
        )
        self.tool_states: dict[str, ToolExecutionState] = {}
        self.lock = asyncio.Lock()

    def make_executor(self, auto_retry: bool = True) -> StepExecutor:
        return StepExecutor(
            self.registry, self.collaborators, self.metrics, auto_retry=auto_retry
        )

    async def execute(self, executor: StepExecutor, steps: list[WorkflowStep], **kwargs):
        return await executor.execute_steps(
            steps, tool_states=self.tool_states, lock=self.lock, **kwargs
        )

    @pytest.mark.asyncio
    async def test_executes_in_dependency_order(self) -> None:
        steps = [create_step("c", "b"), create_step("b", "a"), create_step("a")]

        outcome = await self.execute(self.make_executor(), steps)

        assert [path for _, path in self.files.operations] == ["a.txt", "b.txt", "c.txt"]
        assert set(outcome.results) == {"a", "b", "c"}
        assert not outcome.rollback_required
        assert all(step.status == StepStatus.COMPLETED for step in steps)

    @pytest.mark.asyncio
    async def test_records_tool_states(self) -> None:
        steps = [create_step("a")]

        await self.execute(self.make_executor(), steps)

        state = self.tool_states["a"]
        assert state.tool_name == "create_file"
        assert state.status == StepStatus.COMPLETED
        assert state.context_snapshot == {"workspace_root": "/ws"}
        assert state.parameters == {"path": "a.txt", "content": "a"}
        assert state.duration_ms is not None
        assert state.end_time is not None
        assert state.rollback_data == steps[0].rollback_data

    @pytest.mark.asyncio
    async def test_metrics_recorded(self) -> None:
        self.files.failing_paths.add("b.txt")
        steps = [create_step("a"), create_step("b")]

        await self.execute(self.make_executor(), steps)

        metrics = self.metrics.get("create_file")
        assert metrics.total_executions == 2
        assert metrics.success_rate == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_failure_without_retries_signals_rollback(self) -> None:
        self.files.failing_paths.add("a.txt")
        steps = [create_step("a"), create_step("b")]

        outcome = await self.execute(self.make_executor(), steps)

        assert outcome.rollback_required
        assert outcome.failed_step == "a"
        assert steps[0].status == StepStatus.FAILED
        assert "Simulated failure" in steps[0].error
        assert steps[1].status == StepStatus.PENDING
        assert self.tool_states["a"].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_retries_until_success(self) -> None:
        handler = FlakyHandler(failures=2)
        self.registry.register(handler)
        step = WorkflowStep(id="f", action="flaky", max_retries=2)

        outcome = await self.execute(self.make_executor(), [step])

        assert handler.calls == 3
        assert step.status == StepStatus.COMPLETED
        assert step.retry_count == 2
        assert outcome.results == {"f": "ok"}
        assert self.metrics.get("flaky").success_rate == 1.0

    @pytest.mark.asyncio
    async def test_retries_exhausted(self) -> None:
        handler = FlakyHandler(failures=10)
        self.registry.register(handler)
        step = WorkflowStep(id="f", action="flaky", max_retries=2)

        outcome = await self.execute(self.make_executor(), [step])

        assert handler.calls == 3
        assert step.retry_count == 2
        assert outcome.rollback_required

    @pytest.mark.asyncio
    async def test_without_auto_retry_failure_continues(self) -> None:
        """Retries left but not attempted: later steps still run, dependents are skipped."""
        self.files.failing_paths.add("a.txt")
        steps = [
            create_step("a", max_retries=1),
            create_step("b", "a"),
            create_step("c"),
        ]

        outcome = await self.execute(self.make_executor(auto_retry=False), steps)

        assert not outcome.rollback_required
        assert steps[0].status == StepStatus.FAILED
        assert steps[0].retry_count == 0
        assert steps[1].status == StepStatus.CANCELLED
        assert steps[2].status == StepStatus.COMPLETED
        assert set(outcome.results) == {"c"}

    @pytest.mark.asyncio
    async def test_validation_happens_before_execution(self) -> None:
        steps = [create_step("a"), WorkflowStep(id="b", action="teleport")]

        with pytest.raises(UnsupportedAction):
            await self.execute(self.make_executor(), steps)

        assert self.files.operations == []

    @pytest.mark.asyncio
    async def test_cancellation_skips_remaining_steps(self) -> None:
        steps = [create_step("a"), create_step("b"), create_step("c")]
        completed: list[str] = []
        executor = self.make_executor()
        executor.on_step_success = lambda step: completed.append(step.id)

        outcome = await self.execute(
            executor, steps, is_cancelled=lambda: len(completed) >= 1
        )

        assert outcome.cancelled
        assert steps[0].status == StepStatus.COMPLETED
        assert [s.status for s in steps[1:]] == [StepStatus.CANCELLED] * 2
        assert self.files.operations == [("create", "a.txt")]

    @pytest.mark.asyncio
    async def test_context_failure_does_not_fail_step(self) -> None:
        self.context.error = RuntimeError("editor closed")

        outcome = await self.execute(self.make_executor(), [create_step("a")])

        assert outcome.results
        assert self.tool_states["a"].context_snapshot == {}

    @pytest.mark.asyncio
    async def test_rollback_in_reverse_order(self) -> None:
        self.files.files["b.txt"] = "original"
        steps = [create_step("a"), create_step("b", "a")]
        executor = self.make_executor()
        outcome = await self.execute(executor, steps)

        rolled_back = await executor.rollback(outcome.executed_steps)

        assert rolled_back == ["b", "a"]
        assert self.files.files == {"b.txt": "original"}
        assert self.files.operations[-2:] == [("modify", "b.txt"), ("delete", "a.txt")]

    @pytest.mark.asyncio
    async def test_rollback_continues_past_failed_undo(self) -> None:
        self.files.files["b.txt"] = "original"
        self.files.failing_paths.add("d.txt")
        steps = [
            create_step("a"),
            create_step("b", "a"),
            create_step("c", "b"),
            create_step("d", "c"),
        ]
        executor = self.make_executor()
        outcome = await self.execute(executor, steps)
        assert outcome.rollback_required
        self.files.failing_paths = {"b.txt"}

        with pytest.raises(RollbackFailed) as exc_info:
            await executor.rollback(outcome.executed_steps)

        assert exc_info.value.failed_steps == ["b"]
        assert exc_info.value.rolled_back == ["c", "a"]
        assert "a.txt" not in self.files.files
        assert "c.txt" not in self.files.files
        assert self.files.files["b.txt"] == "b"
