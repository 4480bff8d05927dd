"""Checkpoint snapshots, JSON persistence and the autosave timer."""

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from task_orchestrator.config import DEFAULT_CHECKPOINT_INTERVAL
from task_orchestrator.interfaces.protocols import ContextProvider
from task_orchestrator.orchestrator.errors import (
    CheckpointNotFound,
    CheckpointStorageError,
)
from task_orchestrator.orchestrator.models import (
    Checkpoint,
    CheckpointDocument,
    OrchestratorState,
    ToolExecutionState,
    WorkflowPlan,
)


class CheckpointStore:
    """Stores a session's checkpoints as a single JSON document."""

    def __init__(self, data_dir: Path | str, session_id: str):
        self.directory = Path(data_dir) / "checkpoints"
        self.session_id = session_id
        self.logger = logging.getLogger(__name__)

    @property
    def path(self) -> Path:
        return self.directory / f"{self.session_id}.json"

    def _ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.directory, 0o700)
        except OSError as e:
            self.logger.debug(f"Could not restrict checkpoint directory permissions: {e}")

    def save(self, checkpoints: list[Checkpoint]) -> None:
        """Write all checkpoints, replacing the previous document."""
        document = CheckpointDocument(session_id=self.session_id, checkpoints=checkpoints)
        try:
            self._ensure_directory()
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(document.model_dump(mode="json", by_alias=True), f, indent=2)
        except OSError as e:
            raise CheckpointStorageError(f"Failed to write {self.path}: {e}") from e
        self.logger.debug(f"Saved {len(checkpoints)} checkpoints to {self.path}")

    def load(self) -> list[Checkpoint]:
        """Read the persisted checkpoints; an absent file means none."""
        if not self.path.exists():
            return []
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            document = CheckpointDocument.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise CheckpointStorageError(f"Failed to read {self.path}: {e}") from e
        return list(document.checkpoints)


class CheckpointManager:
    """Creates, finds and persists checkpoints; optionally autosaves.

    Snapshots are deep copies so later mutation of the live plan or tool
    states never leaks into a stored checkpoint.
    """

    def __init__(
        self,
        context_provider: ContextProvider,
        store: CheckpointStore | None = None,
        checkpoint_interval: float = DEFAULT_CHECKPOINT_INTERVAL,
    ):
        self.context_provider = context_provider
        self.store = store
        self.checkpoint_interval = checkpoint_interval
        self._checkpoints: list[Checkpoint] = []
        self._autosave_task: asyncio.Task | None = None
        self.logger = logging.getLogger(__name__)

    @property
    def checkpoints(self) -> list[Checkpoint]:
        return list(self._checkpoints)

    async def create_checkpoint(
        self,
        name: str,
        *,
        state: OrchestratorState,
        plan: WorkflowPlan | None,
        tool_states: dict[str, ToolExecutionState],
        file_changes: list[str] | None = None,
        description: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> Checkpoint:
        """Snapshot the given session state and persist the checkpoint list."""
        try:
            context = await self.context_provider.get_current_context()
        except Exception as e:
            self.logger.warning(f"Context unavailable for checkpoint '{name}': {e}")
            context = {}

        checkpoint = Checkpoint(
            id=str(uuid4()),
            name=name,
            description=description,
            state=state,
            context_snapshot=context,
            tool_states={
                key: value.model_copy(deep=True) for key, value in tool_states.items()
            },
            plan=plan.model_copy(deep=True) if plan else None,
            file_changes=list(file_changes or []),
            metadata=dict(metadata or {}),
        )
        self._checkpoints.append(checkpoint)
        self.logger.info(f"Checkpoint created: {name} ({checkpoint.id})")
        self.persist()
        return checkpoint

    def persist(self) -> None:
        """Best-effort save; failures are logged, never raised."""
        if self.store is None:
            return
        try:
            self.store.save(self._checkpoints)
        except CheckpointStorageError as e:
            self.logger.error(f"Failed to persist checkpoints: {e}")

    def load(self) -> list[Checkpoint]:
        """Replace the in-memory list with the persisted one."""
        if self.store is None:
            return self.checkpoints
        loaded = self.store.load()
        known = {checkpoint.id for checkpoint in loaded}
        # Checkpoints created before loading stay after the persisted ones
        self._checkpoints = loaded + [c for c in self._checkpoints if c.id not in known]
        self.logger.info(f"Loaded {len(loaded)} persisted checkpoints")
        return self.checkpoints

    def find(self, checkpoint_id: str) -> Checkpoint:
        for checkpoint in self._checkpoints:
            if checkpoint.id == checkpoint_id:
                return checkpoint
        raise CheckpointNotFound(checkpoint_id)

    def start_autosave(self, tick: Callable[[], Awaitable[Any]]) -> None:
        """Run ``tick`` every ``checkpoint_interval`` seconds in the background.

        Requires a running event loop; a second call while the task is alive
        does nothing.
        """
        if self._autosave_task is not None and not self._autosave_task.done():
            return
        self._autosave_task = asyncio.create_task(self._autosave_loop(tick))

    async def _autosave_loop(self, tick: Callable[[], Awaitable[Any]]) -> None:
        while True:
            try:
                await asyncio.sleep(self.checkpoint_interval)
                await tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error(f"Error in checkpoint autosave: {e}")

    @property
    def autosave_running(self) -> bool:
        return self._autosave_task is not None and not self._autosave_task.done()

    async def stop_autosave(self) -> None:
        if self._autosave_task and not self._autosave_task.done():
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
        self._autosave_task = None
