"""State machine engine coordinating planning, execution and checkpoints."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

from task_orchestrator.config import OrchestratorSettings
from task_orchestrator.interfaces.protocols import (
    AIGateway,
    CommandValidator,
    ContextProvider,
    FileMutator,
    ToolInvoker,
)
from task_orchestrator.orchestrator.checkpoints import CheckpointManager, CheckpointStore
from task_orchestrator.orchestrator.errors import (
    CheckpointStorageError,
    InvalidTransition,
    NoActivePlan,
    PlanningFailed,
    PlanNotApproved,
    PlanValidationError,
    RollbackFailed,
)
from task_orchestrator.orchestrator.executor import ExecutionOutcome, StepExecutor
from task_orchestrator.orchestrator.handlers import (
    Collaborators,
    HandlerRegistry,
    default_registry,
)
from task_orchestrator.orchestrator.metrics import ToolMetricsStore
from task_orchestrator.orchestrator.models import (
    Checkpoint,
    ContextUpdate,
    ErrorRecord,
    OrchestratorState,
    PlanStatus,
    StateTransitionRecord,
    StepStatus,
    ToolExecutionState,
    ToolMetrics,
    WorkflowPlan,
    WorkflowStep,
    utcnow,
)
from task_orchestrator.orchestrator.planner import WorkflowPlanner
from task_orchestrator.orchestrator.recovery import ErrorRecoveryHandler
from task_orchestrator.orchestrator.transitions import RESTING_STATES, is_valid_transition
from task_orchestrator.utils.constants import (
    AUTOSAVE_CHECKPOINT_NAME,
    DEFAULT_CHECKPOINT_NAME,
    FILE_ACTIONS,
)

S = OrchestratorState

EntryAction = Callable[[dict[str, Any]], Awaitable[None]]


class WorkflowOrchestrator:
    """Finite-state workflow engine for one session.

    Every state change goes through :meth:`transition`, which validates it
    against the transition table, records it under the session lock and then
    runs the entry action of the new state. Entry actions run outside the lock
    and may chain further transitions.

    Usage:
        async with WorkflowOrchestrator(context, gateway, files, validator) as o:
            plan = await o.start_workflow("Add a README")
            await o.approve_plan("alice")
            results = await o.execute_plan()
    """

    def __init__(
        self,
        context_provider: ContextProvider,
        ai_gateway: AIGateway,
        file_mutator: FileMutator,
        command_validator: CommandValidator,
        tool_invoker: ToolInvoker | None = None,
        settings: OrchestratorSettings | None = None,
        registry: HandlerRegistry | None = None,
        session_id: str | None = None,
    ):
        self.settings = settings or OrchestratorSettings()
        self.session_id = session_id or str(uuid4())
        self.logger = logging.getLogger(__name__)

        self.registry = registry or default_registry()
        self.collaborators = Collaborators(
            context_provider=context_provider,
            ai_gateway=ai_gateway,
            file_mutator=file_mutator,
            command_validator=command_validator,
            tool_invoker=tool_invoker,
            command_timeout=self.settings.command_timeout,
        )
        self.metrics = ToolMetricsStore()
        self.recovery = ErrorRecoveryHandler(self.settings.max_consecutive_errors)
        self.planner = WorkflowPlanner(
            ai_gateway, self.registry, self.settings.default_max_retries
        )
        self.executor = StepExecutor(
            self.registry,
            self.collaborators,
            self.metrics,
            auto_retry=self.settings.auto_retry,
            on_step_success=self._on_step_success,
        )
        store = (
            CheckpointStore(self.settings.data_dir, self.session_id)
            if self.settings.data_dir is not None
            else None
        )
        self.checkpoints = CheckpointManager(
            context_provider, store, self.settings.checkpoint_interval
        )

        self._lock = asyncio.Lock()
        self._state = S.IDLE
        self._history: list[StateTransitionRecord] = []
        self._plan: WorkflowPlan | None = None
        self._plan_history: list[WorkflowPlan] = []
        self._tool_states: dict[str, ToolExecutionState] = {}
        self._context_updates: list[ContextUpdate] = []
        self._file_changes: list[str] = []
        self._last_outcome: ExecutionOutcome | None = None
        self._cancelled = False
        self._initialized = False

        self._entry_actions: dict[OrchestratorState, EntryAction] = {
            S.IDLE: self._on_idle,
            S.INITIALIZING: self._on_initializing,
            S.PLANNING: self._on_planning,
            S.EXECUTING: self._on_executing,
            S.EVALUATING: self._on_evaluating,
            S.CONTEXT_UPDATING: self._on_context_updating,
            S.COMPLETED: self._on_completed,
            S.CANCELLED: self._on_cancelled,
            S.ROLLING_BACK: self._on_rolling_back,
            S.ERROR_RECOVERY: self._on_error_recovery,
            S.CHECKPOINT_CREATING: self._on_checkpoint_creating,
            S.CHECKPOINT_RESTORING: self._on_checkpoint_restoring,
        }

    # Lifecycle

    async def start(self) -> None:
        """Start the autosave timer when auto checkpointing is enabled."""
        if self.settings.auto_checkpoint:
            self.checkpoints.start_autosave(self._autosave_tick)

    async def shutdown(self) -> None:
        await self.checkpoints.stop_autosave()

    async def __aenter__(self) -> "WorkflowOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # Transitions

    async def transition(
        self,
        new_state: OrchestratorState,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Move to ``new_state`` and run its entry action.

        Raises:
            InvalidTransition: ``new_state`` is not reachable from the current
                state; history is left untouched
        """
        async with self._lock:
            if not is_valid_transition(self._state, new_state):
                raise InvalidTransition(self._state, new_state)
            self._record_transition(new_state, reason, metadata)

        action = self._entry_actions.get(new_state)
        if action is not None:
            await action(metadata or {})

    def _record_transition(
        self,
        new_state: OrchestratorState,
        reason: str | None,
        metadata: dict[str, Any] | None,
    ) -> None:
        # Caller holds self._lock
        old_state = self._state
        self._history.append(
            StateTransitionRecord(
                target_state=new_state,
                reason=reason,
                metadata=dict(metadata) if metadata else None,
            )
        )
        self._state = new_state
        self.logger.info(
            f"Orchestrator state transition: {old_state.value} → {new_state.value}"
            + (f" ({reason})" if reason else "")
        )

    async def handle_error(self, error: BaseException) -> None:
        """Record ``error`` and enter ERROR_RECOVERY when the current state allows it."""
        self.recovery.record_error(error, self._state)
        if is_valid_transition(self._state, S.ERROR_RECOVERY):
            await self.transition(
                S.ERROR_RECOVERY,
                str(error) or type(error).__name__,
                {"error_type": type(error).__name__},
            )
        else:
            self.logger.error(
                f"Cannot enter error recovery from {self._state.value}: {error}"
            )

    # Public workflow API

    async def start_workflow(self, task: str) -> WorkflowPlan:
        """Plan ``task`` and stop at PENDING_APPROVAL.

        A finished session (COMPLETED, FAILED or CANCELLED) is reset to IDLE
        first; leaving a FAILED state forced by the error limit also clears
        the consecutive-error counter. The first workflow of a session also
        loads persisted checkpoints.

        Raises:
            PlanningFailed: The plan could not be generated
            InvalidTransition: A workflow is already in progress
        """
        if self._state == S.FAILED and self.recovery.limit_reached:
            self.recovery.reset()
        if self._state in RESTING_STATES:
            await self.reset_workflow()

        metadata = {"task": task}
        if not self._initialized and is_valid_transition(self._state, S.INITIALIZING):
            await self.transition(S.INITIALIZING, "Initializing session", metadata)
        else:
            await self.transition(S.PLANNING, "Starting workflow planning", metadata)

        if self._plan is None:
            raise NoActivePlan("Planning finished without a plan")

        if (
            self.settings.auto_approve
            and not self._plan.approval_required
            and self._state == S.PENDING_APPROVAL
        ):
            await self.approve_plan("auto")

        return self._plan.model_copy(deep=True)

    async def approve_plan(self, approver_id: str) -> None:
        """Approve the current plan.

        Raises:
            NoActivePlan: No plan has been generated
            InvalidTransition: The session is not awaiting approval
        """
        if self._plan is None:
            raise NoActivePlan("No plan to approve")
        if not is_valid_transition(self._state, S.APPROVED):
            raise InvalidTransition(self._state, S.APPROVED)

        self._plan.approved_by = approver_id
        self._plan.approved_at = utcnow()
        self._plan.status = PlanStatus.APPROVED
        self._plan.touch()
        self.recovery.reset()
        await self.transition(
            S.APPROVED, f"Plan approved by {approver_id}", {"approved_by": approver_id}
        )

    async def execute_plan(self) -> dict[str, Any]:
        """Execute the approved plan and return results keyed by step id.

        Raises:
            NoActivePlan: No plan has been generated
            PlanNotApproved: The current plan is not approved
            PlanValidationError: The plan's steps cannot be executed
        """
        if self._plan is None:
            raise NoActivePlan("No plan to execute")
        if self._plan.status != PlanStatus.APPROVED:
            raise PlanNotApproved("Plan must be approved before execution")

        self._last_outcome = None
        await self.transition(
            S.EXECUTING, "Starting plan execution", {"plan_id": self._plan.id}
        )
        if self._last_outcome is None:
            return {}
        return dict(self._last_outcome.results)

    async def cancel_workflow(self) -> None:
        """Cancel planning, approval or execution.

        A running step finishes; the remaining steps are skipped.
        """
        await self.transition(S.CANCELLED, "Workflow cancelled by user")

    async def reset_workflow(self, checkpoint_name: str | None = None) -> None:
        """Return a finished session to IDLE.

        From COMPLETED with ``checkpoint_name`` a checkpoint is created on the
        way. CANCELLED has no outgoing transitions, so leaving it is recorded
        as a session restart.
        """
        if self._state == S.IDLE:
            return
        if self._state == S.CANCELLED:
            async with self._lock:
                self._record_transition(
                    S.IDLE, "Session restarted", {"previous_state": S.CANCELLED.value}
                )
            await self._on_idle({})
        elif self._state == S.COMPLETED and checkpoint_name:
            await self.transition(
                S.CHECKPOINT_CREATING,
                "Creating checkpoint",
                {"name": checkpoint_name},
            )
        else:
            await self.transition(S.IDLE, "Workflow reset")

    async def create_checkpoint(self, name: str = DEFAULT_CHECKPOINT_NAME) -> Checkpoint:
        """Snapshot the session without changing state."""
        async with self._lock:
            checkpoint = await self._snapshot(name)
        return checkpoint.model_copy(deep=True)

    async def restore_checkpoint(self, checkpoint_id: str) -> None:
        """Restore plan and tool states from a checkpoint and resume its state.

        Raises:
            CheckpointNotFound: No checkpoint has ``checkpoint_id``; nothing
                is changed
            InvalidTransition: The session cannot return to IDLE from its
                current state
        """
        checkpoint = self.checkpoints.find(checkpoint_id)

        if self._state in RESTING_STATES:
            await self.reset_workflow()
        elif self._state != S.IDLE:
            await self.transition(S.IDLE, "Preparing checkpoint restore")

        await self.transition(
            S.CHECKPOINT_RESTORING,
            f"Restoring checkpoint {checkpoint.name}",
            {"checkpoint_id": checkpoint.id},
        )

    # Getters

    def get_current_state(self) -> OrchestratorState:
        return self._state

    def get_current_plan(self) -> WorkflowPlan | None:
        return self._plan.model_copy(deep=True) if self._plan else None

    def get_plan_history(self) -> list[WorkflowPlan]:
        return [plan.model_copy(deep=True) for plan in self._plan_history]

    def get_state_history(self) -> list[StateTransitionRecord]:
        return [record.model_copy(deep=True) for record in self._history]

    def get_tool_execution_states(self) -> dict[str, ToolExecutionState]:
        return {key: state.model_copy(deep=True) for key, state in self._tool_states.items()}

    def get_tool_metrics(self) -> dict[str, ToolMetrics]:
        return self.metrics.snapshot()

    def get_checkpoints(self) -> list[Checkpoint]:
        return [checkpoint.model_copy(deep=True) for checkpoint in self.checkpoints.checkpoints]

    def get_error_history(self) -> list[ErrorRecord]:
        return self.recovery.history

    def get_context_updates(self) -> list[ContextUpdate]:
        return [update.model_copy(deep=True) for update in self._context_updates]

    # Entry actions

    async def _on_idle(self, metadata: dict[str, Any]) -> None:
        self._cancelled = False

    async def _on_initializing(self, metadata: dict[str, Any]) -> None:
        # Loading is attempted once per session even when it fails
        self._initialized = True
        try:
            self.checkpoints.load()
        except CheckpointStorageError as e:
            await self.handle_error(e)
            raise
        await self.transition(S.PLANNING, "Session initialized", metadata)

    async def _on_planning(self, metadata: dict[str, Any]) -> None:
        task = metadata.get("task", "")
        try:
            context = await self._planning_context()
            plan = await self.planner.generate_plan(task, context)
        except PlanningFailed as e:
            await self.handle_error(e)
            raise

        if self._plan is not None:
            self._plan_history.append(self._plan)
        self._plan = plan

        if self._state != S.PLANNING:
            self.logger.info(f"Plan {plan.id} generated after planning was cancelled")
            return

        plan.status = PlanStatus.PENDING
        plan.touch()
        await self.transition(
            S.PENDING_APPROVAL,
            "Plan generated, awaiting approval",
            {"plan_id": plan.id},
        )

    async def _planning_context(self) -> dict[str, Any]:
        try:
            return await self.collaborators.context_provider.get_current_context()
        except Exception as e:
            raise PlanningFailed(f"Could not gather context: {e}") from e

    async def _on_executing(self, metadata: dict[str, Any]) -> None:
        plan = self._plan
        if plan is None:
            return
        plan.status = PlanStatus.EXECUTING
        plan.touch()

        try:
            outcome = await self.executor.execute_steps(
                plan.steps,
                tool_states=self._tool_states,
                lock=self._lock,
                is_cancelled=lambda: self._cancelled,
                approval={
                    "approval_required": plan.approval_required,
                    "approved_by": plan.approved_by,
                    "approved_at": plan.approved_at,
                },
            )
        except PlanValidationError as e:
            plan.status = PlanStatus.FAILED
            await self.handle_error(e)
            raise
        self._last_outcome = outcome

        if outcome.cancelled or self._state == S.CANCELLED:
            return
        if outcome.rollback_required:
            await self.transition(
                S.ROLLING_BACK,
                f"Step {outcome.failed_step} failed, rolling back",
                {"failed_step": outcome.failed_step},
            )
        else:
            await self.transition(S.EVALUATING, "Execution finished")

    async def _on_evaluating(self, metadata: dict[str, Any]) -> None:
        plan = self._plan
        unfinished = [
            step.id for step in (plan.steps if plan else []) if step.status != StepStatus.COMPLETED
        ]
        if unfinished:
            if plan:
                plan.status = PlanStatus.FAILED
                plan.touch()
            await self.transition(
                S.FAILED,
                f"Steps did not complete: {', '.join(unfinished)}",
                {"steps": unfinished},
            )
        else:
            await self.transition(S.CONTEXT_UPDATING, "All steps completed")

    async def _on_context_updating(self, metadata: dict[str, Any]) -> None:
        try:
            context = await self.collaborators.context_provider.get_current_context()
        except Exception as e:
            self.logger.warning(f"Context refresh failed after execution: {e}")
        else:
            async with self._lock:
                self._context_updates.append(
                    ContextUpdate(context_snapshot=context, source="system")
                )
        if self._plan:
            self._plan.status = PlanStatus.COMPLETED
            self._plan.touch()
        await self.transition(S.COMPLETED, "Workflow completed")

    async def _on_completed(self, metadata: dict[str, Any]) -> None:
        self.recovery.reset()

    async def _on_cancelled(self, metadata: dict[str, Any]) -> None:
        self._cancelled = True

    async def _on_rolling_back(self, metadata: dict[str, Any]) -> None:
        if self._last_outcome is not None:
            executed = self._last_outcome.executed_steps
        else:
            executed = [
                step
                for step in (self._plan.steps if self._plan else [])
                if step.status == StepStatus.COMPLETED
            ]
        try:
            rolled_back = await self.executor.rollback(executed)
        except RollbackFailed as e:
            if self._plan:
                self._plan.status = PlanStatus.FAILED
                self._plan.touch()
            await self.handle_error(e)
            return

        if self._plan:
            self._plan.status = PlanStatus.FAILED
            self._plan.touch()
        await self.transition(
            S.FAILED, "Rollback completed", {"rolled_back": rolled_back}
        )

    async def _on_error_recovery(self, metadata: dict[str, Any]) -> None:
        target, reason = self.recovery.on_enter_recovery()
        if target == S.FAILED and self._plan and self._plan.status == PlanStatus.EXECUTING:
            self._plan.status = PlanStatus.FAILED
            self._plan.touch()
        await self.transition(target, reason)

    async def _on_checkpoint_creating(self, metadata: dict[str, Any]) -> None:
        name = metadata.get("name") or DEFAULT_CHECKPOINT_NAME
        # The checkpoint records the state the session was in before this one
        state = self._history[-2].target_state if len(self._history) > 1 else S.IDLE
        async with self._lock:
            await self._snapshot(name, state=state)
        await self.transition(S.IDLE, "Checkpoint created")

    async def _on_checkpoint_restoring(self, metadata: dict[str, Any]) -> None:
        checkpoint_id = metadata["checkpoint_id"]
        try:
            checkpoint = self.checkpoints.find(checkpoint_id)
            async with self._lock:
                if self._plan is not None:
                    self._plan_history.append(self._plan)
                self._plan = checkpoint.plan.model_copy(deep=True) if checkpoint.plan else None
                self._tool_states = {
                    key: state.model_copy(deep=True)
                    for key, state in checkpoint.tool_states.items()
                }
                self._file_changes = list(checkpoint.file_changes)
                self._last_outcome = None
        except Exception as e:
            await self.handle_error(e)
            raise

        await self.transition(S.IDLE, "Checkpoint restored", {"checkpoint_id": checkpoint_id})
        # Resuming bypasses the transition table; the checkpoint state was legal when captured
        async with self._lock:
            self._record_transition(
                checkpoint.state, "Resumed from checkpoint", {"checkpoint_id": checkpoint_id}
            )
        self._cancelled = checkpoint.state == S.CANCELLED

    # Internals

    async def _snapshot(
        self, name: str, state: OrchestratorState | None = None
    ) -> Checkpoint:
        # Caller holds self._lock
        return await self.checkpoints.create_checkpoint(
            name,
            state=state or self._state,
            plan=self._plan,
            tool_states=self._tool_states,
            file_changes=self._file_changes,
            metadata={"session_id": self.session_id},
        )

    async def _autosave_tick(self) -> None:
        """Autosave unless the session is idle or busy."""
        if self._state == S.IDLE:
            self.logger.debug("Autosave skipped: session idle")
            return
        if self._lock.locked():
            self.logger.debug("Autosave skipped: session busy")
            return
        async with self._lock:
            await self._snapshot(AUTOSAVE_CHECKPOINT_NAME)

    def _on_step_success(self, step: WorkflowStep) -> None:
        self.recovery.reset()
        if step.action in FILE_ACTIONS and step.parameters.get("path"):
            self._file_changes.append(step.parameters["path"])
