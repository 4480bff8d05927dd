"""Dependency-ordered execution of workflow steps."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from task_orchestrator.orchestrator.errors import (
    CyclicDependency,
    DuplicateStepId,
    RollbackFailed,
    UnknownDependency,
    UnsupportedAction,
)
from task_orchestrator.orchestrator.handlers import Collaborators, HandlerRegistry
from task_orchestrator.orchestrator.metrics import ToolMetricsStore
from task_orchestrator.orchestrator.models import (
    StepStatus,
    ToolExecutionState,
    WorkflowStep,
    utcnow,
)


def sort_steps_by_dependencies(steps: list[WorkflowStep]) -> list[WorkflowStep]:
    """Order steps so every step follows its dependencies.

    Depth-first topological sort; steps without ordering constraints keep their
    submission order.

    Raises:
        DuplicateStepId: Two steps share an id
        UnknownDependency: A dependency id is not part of ``steps``
        CyclicDependency: The dependency graph has a cycle
    """
    by_id: dict[str, WorkflowStep] = {}
    for step in steps:
        if step.id in by_id:
            raise DuplicateStepId(step.id)
        by_id[step.id] = step
    for step in steps:
        for dep in step.dependencies:
            if dep not in by_id:
                raise UnknownDependency(step.id, dep)

    ordered: list[WorkflowStep] = []
    visited: set[str] = set()
    visiting: list[str] = []

    def visit(step: WorkflowStep) -> None:
        if step.id in visited:
            return
        if step.id in visiting:
            cycle = visiting[visiting.index(step.id) :] + [step.id]
            raise CyclicDependency(cycle)
        visiting.append(step.id)
        for dep in step.dependencies:
            visit(by_id[dep])
        visiting.pop()
        visited.add(step.id)
        ordered.append(step)

    for step in steps:
        visit(step)
    return ordered


def should_rollback(step: WorkflowStep) -> bool:
    """A failed step whose retries are exhausted requires rollback."""
    return step.status == StepStatus.FAILED and step.retry_count >= step.max_retries


@dataclass
class ExecutionOutcome:
    """Result of running a plan's steps."""

    results: dict[str, Any] = field(default_factory=dict)
    rollback_required: bool = False
    executed_steps: list[WorkflowStep] = field(default_factory=list)
    failed_step: str | None = None
    cancelled: bool = False


class StepExecutor:
    """Runs steps one at a time in dependency order.

    Collaborator failures become step failures; only plan-authoring defects
    (unsupported actions, unknown or cyclic dependencies) raise.
    """

    def __init__(
        self,
        registry: HandlerRegistry,
        collaborators: Collaborators,
        metrics: ToolMetricsStore,
        auto_retry: bool = True,
        on_step_success: Callable[[WorkflowStep], None] | None = None,
    ):
        self.registry = registry
        self.collaborators = collaborators
        self.metrics = metrics
        self.auto_retry = auto_retry
        self.on_step_success = on_step_success
        self.logger = logging.getLogger(__name__)

    def validate(self, steps: list[WorkflowStep]) -> list[WorkflowStep]:
        """Check actions and dependencies; return the execution order."""
        for step in steps:
            if not self.registry.supports(step.action):
                raise UnsupportedAction(step.action, step.id)
        return sort_steps_by_dependencies(steps)

    async def execute_steps(
        self,
        steps: list[WorkflowStep],
        *,
        tool_states: dict[str, ToolExecutionState],
        lock: asyncio.Lock,
        is_cancelled: Callable[[], bool] = lambda: False,
        approval: dict[str, Any] | None = None,
    ) -> ExecutionOutcome:
        """Execute ``steps``, recording progress in ``tool_states`` under ``lock``.

        ``approval`` holds the plan's approval fields copied into every
        ToolExecutionState.
        """
        ordered = self.validate(steps)
        outcome = ExecutionOutcome()

        for index, step in enumerate(ordered):
            if is_cancelled():
                self.logger.info("Workflow cancelled, skipping remaining steps")
                async with lock:
                    for remaining in ordered[index:]:
                        remaining.status = StepStatus.CANCELLED
                outcome.cancelled = True
                break

            unmet = [
                dep
                for dep in step.dependencies
                if _status_of(ordered, dep) != StepStatus.COMPLETED
            ]
            if unmet:
                self.logger.warning(
                    f"Skipping step {step.id}: dependencies not completed {unmet}"
                )
                async with lock:
                    step.status = StepStatus.CANCELLED
                    step.error = f"Dependencies not completed: {', '.join(unmet)}"
                continue

            await self._execute_step(step, tool_states, lock, approval or {})
            outcome.executed_steps.append(step)

            if step.status == StepStatus.COMPLETED:
                outcome.results[step.id] = step.result
                continue

            if should_rollback(step):
                self.logger.warning(
                    f"Step {step.id} failed after {step.retry_count} retries, "
                    "rollback required"
                )
                outcome.rollback_required = True
                outcome.failed_step = step.id
                break

        return outcome

    async def _execute_step(
        self,
        step: WorkflowStep,
        tool_states: dict[str, ToolExecutionState],
        lock: asyncio.Lock,
        approval: dict[str, Any],
    ) -> None:
        handler = self.registry.get(step.action)
        try:
            context = await self.collaborators.context_provider.get_current_context()
        except Exception as e:
            self.logger.warning(f"Context unavailable for step {step.id}: {e}")
            context = {}

        async with lock:
            step.status = StepStatus.EXECUTING
            step.start_time = utcnow()
            step.error = None
            tool_state = ToolExecutionState(
                tool_id=step.id,
                tool_name=step.action,
                start_time=step.start_time,
                parameters=dict(step.parameters),
                context_snapshot=context,
                retry_count=step.retry_count,
                max_retries=step.max_retries,
                **approval,
            )
            tool_states[step.id] = tool_state

        self.logger.info(f"Executing step {step.id}: {step.action}")
        started = time.monotonic()
        while True:
            try:
                rollback_data = await handler.prepare_rollback(step, self.collaborators)
                result = await handler.execute(step, self.collaborators)
            except Exception as e:
                error = str(e) or type(e).__name__
                if self.auto_retry and step.retry_count < step.max_retries:
                    step.retry_count += 1
                    self.logger.warning(
                        f"Step {step.id} failed ({error}), retry "
                        f"{step.retry_count}/{step.max_retries}"
                    )
                    continue
                duration_ms = (time.monotonic() - started) * 1000
                async with lock:
                    step.status = StepStatus.FAILED
                    step.error = error
                    step.end_time = utcnow()
                    tool_states[step.id] = tool_state.model_copy(
                        update={
                            "status": StepStatus.FAILED,
                            "error": error,
                            "end_time": step.end_time,
                            "duration_ms": duration_ms,
                            "retry_count": step.retry_count,
                        }
                    )
                self.metrics.record(step.action, False, duration_ms)
                self.logger.warning(f"Step {step.id} failed: {error}")
                return

            duration_ms = (time.monotonic() - started) * 1000
            async with lock:
                step.status = StepStatus.COMPLETED
                step.result = result
                step.rollback_data = rollback_data
                step.end_time = utcnow()
                tool_states[step.id] = tool_state.model_copy(
                    update={
                        "status": StepStatus.COMPLETED,
                        "result": result,
                        "rollback_data": rollback_data,
                        "end_time": step.end_time,
                        "duration_ms": duration_ms,
                        "retry_count": step.retry_count,
                    }
                )
            self.metrics.record(step.action, True, duration_ms)
            self.logger.info(f"Step {step.id} completed in {duration_ms:.0f}ms")
            if self.on_step_success:
                self.on_step_success(step)
            return

    async def rollback(self, executed_steps: list[WorkflowStep]) -> list[str]:
        """Undo completed steps in reverse order; return the rolled-back ids.

        A step whose undo fails does not stop the others.

        Raises:
            RollbackFailed: At least one step could not be undone
        """
        rolled_back: list[str] = []
        failed: list[str] = []
        for step in reversed(executed_steps):
            if step.status != StepStatus.COMPLETED or step.rollback_data is None:
                continue
            self.logger.info(f"Rolling back step {step.id}")
            try:
                await self.registry.get(step.action).rollback(step, self.collaborators)
            except Exception as e:
                self.logger.error(f"Rollback of step {step.id} failed: {e}")
                failed.append(step.id)
                continue
            rolled_back.append(step.id)
        if failed:
            raise RollbackFailed(failed, rolled_back)
        return rolled_back


def _status_of(steps: list[WorkflowStep], step_id: str) -> StepStatus | None:
    for step in steps:
        if step.id == step_id:
            return step.status
    return None
