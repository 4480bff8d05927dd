"""Workflow orchestrator: state machine, planner, executor and checkpoints."""

from task_orchestrator.orchestrator.checkpoints import CheckpointManager, CheckpointStore
from task_orchestrator.orchestrator.engine import WorkflowOrchestrator
from task_orchestrator.orchestrator.errors import (
    CheckpointNotFound,
    CheckpointStorageError,
    CommandRejected,
    CyclicDependency,
    DuplicateStepId,
    InvalidTransition,
    NoActivePlan,
    OrchestratorError,
    PlanningFailed,
    PlanNotApproved,
    PlanValidationError,
    RollbackFailed,
    StepExecutionError,
    UnknownDependency,
    UnsupportedAction,
)
from task_orchestrator.orchestrator.executor import ExecutionOutcome, StepExecutor
from task_orchestrator.orchestrator.handlers import (
    Collaborators,
    HandlerRegistry,
    StepHandler,
    default_registry,
)
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
)
from task_orchestrator.orchestrator.planner import WorkflowPlanner

__all__ = [
    # Engine
    "WorkflowOrchestrator",
    # Components
    "WorkflowPlanner",
    "StepExecutor",
    "ExecutionOutcome",
    "CheckpointManager",
    "CheckpointStore",
    "HandlerRegistry",
    "StepHandler",
    "Collaborators",
    "default_registry",
    # Models
    "OrchestratorState",
    "StepStatus",
    "PlanStatus",
    "StateTransitionRecord",
    "WorkflowPlan",
    "WorkflowStep",
    "ToolExecutionState",
    "Checkpoint",
    "ErrorRecord",
    "ToolMetrics",
    "ContextUpdate",
    # Errors
    "OrchestratorError",
    "InvalidTransition",
    "PlanningFailed",
    "PlanValidationError",
    "RollbackFailed",
    "CyclicDependency",
    "DuplicateStepId",
    "UnknownDependency",
    "UnsupportedAction",
    "StepExecutionError",
    "CommandRejected",
    "CheckpointNotFound",
    "CheckpointStorageError",
    "NoActivePlan",
    "PlanNotApproved",
]
