"""Consecutive-error tracking and recovery decisions."""

import logging

from task_orchestrator.orchestrator.models import ErrorRecord, OrchestratorState

MAX_ERRORS_REASON = "Max consecutive errors reached"
RECOVERED_REASON = "Error recovery completed"


class ErrorRecoveryHandler:
    """Decides whether an ERROR_RECOVERY entry is recoverable or terminal.

    The counter is session scoped: it survives across workflows and is only
    cleared by :meth:`reset`, which the engine calls after a successful step,
    a plan approval, on entering COMPLETED and when a new workflow starts after
    the limit forced FAILED.
    """

    def __init__(self, max_consecutive_errors: int = 3):
        if max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be at least 1")
        self.max_consecutive_errors = max_consecutive_errors
        self.consecutive_errors = 0
        self._history: list[ErrorRecord] = []
        self.logger = logging.getLogger(__name__)

    def record_error(self, error: BaseException, state: OrchestratorState) -> ErrorRecord:
        """Append an error to the session error history."""
        record = ErrorRecord(
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            state=state,
        )
        self._history.append(record)
        self.logger.error(f"Orchestrator error in state {state.value}: {record.error}")
        return record

    def on_enter_recovery(self) -> tuple[OrchestratorState, str]:
        """Count one recovery entry and return the state to move to with a reason."""
        self.consecutive_errors += 1
        if self.consecutive_errors >= self.max_consecutive_errors:
            self.logger.error(
                f"{self.consecutive_errors} consecutive errors "
                f"(limit {self.max_consecutive_errors}), failing workflow"
            )
            target, reason = OrchestratorState.FAILED, MAX_ERRORS_REASON
        else:
            self.logger.warning(
                f"Recovering from error {self.consecutive_errors}"
                f"/{self.max_consecutive_errors}"
            )
            target, reason = OrchestratorState.IDLE, RECOVERED_REASON
        return target, reason

    @property
    def limit_reached(self) -> bool:
        return self.consecutive_errors >= self.max_consecutive_errors

    def reset(self) -> None:
        if self.consecutive_errors:
            self.logger.debug("Consecutive error counter reset")
        self.consecutive_errors = 0

    @property
    def history(self) -> list[ErrorRecord]:
        return list(self._history)
