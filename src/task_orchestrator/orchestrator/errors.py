"""Exception taxonomy for the workflow orchestrator."""

from task_orchestrator.orchestrator.models import OrchestratorState


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class InvalidTransition(OrchestratorError):
    """Requested state change is not in the transition table."""

    def __init__(self, current: OrchestratorState, target: OrchestratorState):
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid state transition from {current.value} to {target.value}"
        )


class PlanningFailed(OrchestratorError):
    """The AI gateway failed or returned content that is not a plan."""


class PlanValidationError(OrchestratorError):
    """The plan cannot be executed as authored."""


class CyclicDependency(PlanValidationError):
    """Step dependencies form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic step dependency: {' -> '.join(cycle)}")


class UnknownDependency(PlanValidationError):
    """A step depends on an id that is not part of the plan."""

    def __init__(self, step_id: str, dependency: str):
        self.step_id = step_id
        self.dependency = dependency
        super().__init__(f"Step {step_id} depends on unknown step {dependency}")


class DuplicateStepId(PlanValidationError):
    """Two steps in a plan share an id."""

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__(f"Duplicate step id: {step_id}")


class UnsupportedAction(PlanValidationError):
    """No handler is registered for a step's action."""

    def __init__(self, action: str, step_id: str | None = None):
        self.action = action
        self.step_id = step_id
        where = f" (step {step_id})" if step_id else ""
        super().__init__(f"Unsupported action: {action}{where}")


class StepExecutionError(OrchestratorError):
    """A collaborator failed while executing a step."""

    def __init__(self, message: str, step_id: str | None = None, action: str | None = None):
        self.step_id = step_id
        self.action = action
        super().__init__(message)


class CommandRejected(StepExecutionError):
    """The command validator refused a command."""


class RollbackFailed(OrchestratorError):
    """One or more completed steps could not be undone."""

    def __init__(self, failed_steps: list[str], rolled_back: list[str]):
        self.failed_steps = failed_steps
        self.rolled_back = rolled_back
        super().__init__(f"Rollback failed for steps: {', '.join(failed_steps)}")


class CheckpointNotFound(OrchestratorError):
    """No checkpoint exists with the requested id."""

    def __init__(self, checkpoint_id: str):
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class CheckpointStorageError(OrchestratorError):
    """Persisted checkpoints could not be read."""


class NoActivePlan(OrchestratorError):
    """An operation needs a plan but none has been generated."""


class PlanNotApproved(OrchestratorError):
    """Execution was requested for a plan that is not approved."""
