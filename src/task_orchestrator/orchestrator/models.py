"""Data models for orchestrator session state."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time used for every orchestrator timestamp."""
    return datetime.now(UTC)


class OrchestratorState(str, Enum):
    """Lifecycle states of the workflow orchestrator."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    PLANNING = "planning"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLING_BACK = "rolling_back"
    ERROR_RECOVERY = "error_recovery"
    CONTEXT_UPDATING = "context_updating"
    CHECKPOINT_CREATING = "checkpoint_creating"
    CHECKPOINT_RESTORING = "checkpoint_restoring"


class StepStatus(str, Enum):
    """Execution status of a single workflow step."""

    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PlanStatus(str, Enum):
    """Lifecycle status of a workflow plan."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


Level = Literal["low", "medium", "high", "critical"]


class StateTransitionRecord(BaseModel):
    """One entry of the append-only state history."""

    model_config = ConfigDict(frozen=True)

    target_state: OrchestratorState
    timestamp: datetime = Field(default_factory=utcnow)
    reason: str | None = None
    metadata: dict[str, Any] | None = None


class WorkflowStep(BaseModel):
    """A single unit of work within a plan."""

    id: str
    description: str = ""
    action: str
    parameters: dict[str, Any] = {}
    dependencies: list[str] = []  # Ids of steps in the same plan
    estimated_duration: float = 0.0
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    retry_count: int = 0
    max_retries: int = 0
    rollback_data: dict[str, Any] | None = None


class WorkflowPlan(BaseModel):
    """Structured, approvable translation of a natural-language task."""

    id: str
    task: str
    description: str = ""
    steps: list[WorkflowStep] = []
    estimated_duration: float = 0.0
    complexity: Level = "medium"
    risk_level: Level = "medium"
    dependencies: list[str] = []
    prerequisites: list[str] = []
    success_criteria: list[str] = []
    rollback_plan: list[str] = []
    approval_required: bool = True
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    status: PlanStatus = PlanStatus.DRAFT

    def touch(self) -> None:
        self.updated_at = utcnow()


class ToolExecutionState(BaseModel):
    """Audit record of one step execution, keyed by step id."""

    tool_id: str
    tool_name: str
    status: StepStatus = StepStatus.EXECUTING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    duration_ms: float | None = None
    result: Any = None
    error: str | None = None
    context_snapshot: dict[str, Any] = {}
    parameters: dict[str, Any] = {}
    approval_required: bool = False
    approved_by: str | None = None
    approved_at: datetime | None = None
    retry_count: int = 0
    max_retries: int = 0
    rollback_data: dict[str, Any] | None = None
    metadata: dict[str, Any] = {}


class Checkpoint(BaseModel):
    """Immutable snapshot of orchestrator session state."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    state: OrchestratorState
    context_snapshot: dict[str, Any] = {}
    tool_states: dict[str, ToolExecutionState] = {}
    plan: WorkflowPlan | None = None
    file_changes: list[str] = []
    metadata: dict[str, Any] = {}


class CheckpointDocument(BaseModel):
    """Persisted layout of a session's checkpoint list."""

    model_config = ConfigDict(populate_by_name=True)

    checkpoints: list[Checkpoint] = []
    session_id: str = Field(alias="sessionId")
    timestamp: datetime = Field(default_factory=utcnow)


class ErrorRecord(BaseModel):
    """An error observed by the orchestrator."""

    model_config = ConfigDict(frozen=True)

    error: str
    error_type: str
    timestamp: datetime = Field(default_factory=utcnow)
    state: OrchestratorState


class ToolMetrics(BaseModel):
    """Running aggregates for one action name."""

    total_executions: int = 0
    success_rate: float = 0.0
    avg_duration: float = 0.0  # Milliseconds


class ContextUpdate(BaseModel):
    """Context refresh captured after a successful execution."""

    timestamp: datetime = Field(default_factory=utcnow)
    context_snapshot: dict[str, Any] = {}
    source: Literal["user", "ai", "tool", "system"] = "system"

