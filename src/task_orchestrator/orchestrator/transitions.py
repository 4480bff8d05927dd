"""Legal state transitions of the workflow orchestrator."""

from types import MappingProxyType

from task_orchestrator.orchestrator.models import OrchestratorState

S = OrchestratorState

TRANSITIONS: MappingProxyType[OrchestratorState, frozenset[OrchestratorState]] = (
    MappingProxyType(
        {
            S.IDLE: frozenset({S.INITIALIZING, S.PLANNING, S.CHECKPOINT_RESTORING}),
            S.INITIALIZING: frozenset({S.PLANNING, S.ERROR_RECOVERY}),
            S.PLANNING: frozenset({S.PENDING_APPROVAL, S.ERROR_RECOVERY, S.CANCELLED}),
            S.PENDING_APPROVAL: frozenset({S.APPROVED, S.CANCELLED, S.ERROR_RECOVERY}),
            S.APPROVED: frozenset({S.EXECUTING, S.ERROR_RECOVERY}),
            S.EXECUTING: frozenset(
                {S.EVALUATING, S.ROLLING_BACK, S.ERROR_RECOVERY, S.CANCELLED}
            ),
            S.EVALUATING: frozenset(
                {S.COMPLETED, S.FAILED, S.ROLLING_BACK, S.CONTEXT_UPDATING}
            ),
            S.COMPLETED: frozenset({S.IDLE, S.CHECKPOINT_CREATING}),
            S.FAILED: frozenset({S.ROLLING_BACK, S.ERROR_RECOVERY, S.IDLE}),
            S.ROLLING_BACK: frozenset({S.FAILED, S.ERROR_RECOVERY, S.IDLE}),
            S.ERROR_RECOVERY: frozenset({S.IDLE, S.FAILED}),
            S.CONTEXT_UPDATING: frozenset({S.COMPLETED, S.EXECUTING}),
            S.CHECKPOINT_CREATING: frozenset({S.IDLE}),
            S.CHECKPOINT_RESTORING: frozenset({S.IDLE, S.ERROR_RECOVERY}),
            S.CANCELLED: frozenset(),
        }
    )
)

# States with no outgoing edges; a new workflow restarts the session from IDLE.
TERMINAL_STATES = frozenset(state for state, targets in TRANSITIONS.items() if not targets)

# States a finished workflow rests in until the next one starts.
RESTING_STATES = frozenset({S.COMPLETED, S.FAILED, S.CANCELLED})


def allowed_transitions(state: OrchestratorState) -> frozenset[OrchestratorState]:
    """Return the states reachable from ``state`` in one transition."""
    return TRANSITIONS[state]


def is_valid_transition(current: OrchestratorState, target: OrchestratorState) -> bool:
    """Check whether ``current`` may move to ``target``."""
    return target in TRANSITIONS[current]
