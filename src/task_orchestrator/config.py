"""
Configuration for the task orchestrator.

Defaults live here as module constants; ``OrchestratorSettings.from_env``
overlays ``ORCHESTRATOR_*`` environment variables (load ``.env`` first with
``task_orchestrator.utils.env.load_env``).
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field

from task_orchestrator.utils.constants import APP_NAME
from task_orchestrator.utils.env import user_data_dir

DEFAULT_CHECKPOINT_INTERVAL = 300.0  # seconds
DEFAULT_MAX_CONSECUTIVE_ERRORS = 3
DEFAULT_MAX_RETRIES = 2
DEFAULT_COMMAND_TIMEOUT = 120.0  # seconds
DEFAULT_PLANNER_MODEL = os.getenv("ORCHESTRATOR_PLANNER_MODEL", "gpt-4o")

ENV_VARS = {
    "checkpoint_interval": "ORCHESTRATOR_CHECKPOINT_INTERVAL",
    "auto_checkpoint": "ORCHESTRATOR_AUTO_CHECKPOINT",
    "max_consecutive_errors": "ORCHESTRATOR_MAX_CONSECUTIVE_ERRORS",
    "auto_retry": "ORCHESTRATOR_AUTO_RETRY",
    "default_max_retries": "ORCHESTRATOR_DEFAULT_MAX_RETRIES",
    "command_timeout": "ORCHESTRATOR_COMMAND_TIMEOUT",
    "auto_approve": "ORCHESTRATOR_AUTO_APPROVE",
    "data_dir": "ORCHESTRATOR_DATA_DIR",
    "planner_model": "ORCHESTRATOR_PLANNER_MODEL",
}


class OrchestratorSettings(BaseModel):
    """Tunable behaviour of a ``WorkflowOrchestrator`` session.

    ``data_dir`` of None keeps checkpoints in memory only.
    """

    checkpoint_interval: float = Field(DEFAULT_CHECKPOINT_INTERVAL, gt=0)
    auto_checkpoint: bool = True
    max_consecutive_errors: int = Field(DEFAULT_MAX_CONSECUTIVE_ERRORS, ge=1)
    auto_retry: bool = True
    default_max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=0)
    command_timeout: float = Field(DEFAULT_COMMAND_TIMEOUT, gt=0)
    auto_approve: bool = False
    data_dir: Path | None = None
    planner_model: str = DEFAULT_PLANNER_MODEL

    @classmethod
    def from_env(cls) -> "OrchestratorSettings":
        """Build settings from ``ORCHESTRATOR_*`` variables.

        Unset variables keep their defaults; the data directory falls back to
        the platform user-data directory. Invalid values raise
        ``pydantic.ValidationError``.
        """
        values: dict[str, str | Path] = {
            field: os.environ[var] for field, var in ENV_VARS.items() if os.environ.get(var)
        }
        values.setdefault("data_dir", user_data_dir(APP_NAME))
        return cls(**values)
