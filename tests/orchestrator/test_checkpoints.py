"""Tests for checkpoint creation, persistence and autosave."""

import asyncio
import json
from pathlib import Path

import pytest

from task_orchestrator.orchestrator.checkpoints import CheckpointManager, CheckpointStore
from task_orchestrator.orchestrator.errors import CheckpointNotFound, CheckpointStorageError
from task_orchestrator.orchestrator.models import (
    Checkpoint,
    OrchestratorState,
    StepStatus,
    ToolExecutionState,
    WorkflowPlan,
    WorkflowStep,
)
from tests.fixtures.fakes import FakeContextProvider


@pytest.fixture
def plan() -> WorkflowPlan:
    return WorkflowPlan(
        id="plan-1",
        task="Add a README",
        steps=[WorkflowStep(id="step_1", action="create_file", parameters={"path": "README.md"})],
        risk_level="low",
    )


@pytest.fixture
def tool_states() -> dict[str, ToolExecutionState]:
    return {
        "step_1": ToolExecutionState(
            tool_id="step_1",
            tool_name="create_file",
            status=StepStatus.COMPLETED,
            result={"path": "README.md"},
            context_snapshot={"files": []},
            duration_ms=12.5,
        )
    }


class TestCheckpointStore:
    """Test suite for JSON persistence."""

    def test_missing_file_loads_empty(self, tmp_path: Path) -> None:
        assert CheckpointStore(tmp_path, "session").load() == []

    def test_document_layout(self, tmp_path: Path, plan: WorkflowPlan) -> None:
        store = CheckpointStore(tmp_path, "session-1")
        checkpoint = Checkpoint(id="c1", name="first", state=OrchestratorState.COMPLETED, plan=plan)

        store.save([checkpoint])

        assert store.path == tmp_path / "checkpoints" / "session-1.json"
        data = json.loads(store.path.read_text())
        assert set(data) == {"checkpoints", "sessionId", "timestamp"}
        assert data["sessionId"] == "session-1"
        assert data["checkpoints"][0]["state"] == "completed"

    def test_round_trip(
        self,
        tmp_path: Path,
        plan: WorkflowPlan,
        tool_states: dict[str, ToolExecutionState],
    ) -> None:
        """A checkpoint read back from disk equals the one written."""
        store = CheckpointStore(tmp_path, "session")
        checkpoint = Checkpoint(
            id="c1",
            name="round trip",
            state=OrchestratorState.EXECUTING,
            context_snapshot={"workspace_root": "/ws", "files": ["a.py"]},
            tool_states=tool_states,
            plan=plan,
            file_changes=["README.md"],
            metadata={"session_id": "session"},
        )

        store.save([checkpoint])

        assert store.load() == [checkpoint]

    def test_model_json_round_trip(self, plan: WorkflowPlan, tool_states) -> None:
        checkpoint = Checkpoint(
            id="c1", name="n", state=OrchestratorState.FAILED, plan=plan, tool_states=tool_states
        )
        dumped = json.dumps(checkpoint.model_dump(mode="json"))
        assert Checkpoint.model_validate(json.loads(dumped)) == checkpoint

    def test_invalid_json(self, tmp_path: Path) -> None:
        store = CheckpointStore(tmp_path, "session")
        store.directory.mkdir(parents=True)
        store.path.write_text("{not json")

        with pytest.raises(CheckpointStorageError):
            store.load()

    def test_invalid_document(self, tmp_path: Path) -> None:
        store = CheckpointStore(tmp_path, "session")
        store.directory.mkdir(parents=True)
        store.path.write_text(json.dumps({"checkpoints": [{"id": "x"}]}))

        with pytest.raises(CheckpointStorageError):
            store.load()


class TestCheckpointManager:
    """Test suite for CheckpointManager."""

    def setup_method(self) -> None:
        self.context = FakeContextProvider({"workspace_root": "/ws"})

    @pytest.mark.asyncio
    async def test_create_checkpoint_snapshots_state(self, plan, tool_states) -> None:
        manager = CheckpointManager(self.context)

        checkpoint = await manager.create_checkpoint(
            "manual",
            state=OrchestratorState.PENDING_APPROVAL,
            plan=plan,
            tool_states=tool_states,
            file_changes=["README.md"],
        )

        assert checkpoint.name == "manual"
        assert checkpoint.state == OrchestratorState.PENDING_APPROVAL
        assert checkpoint.context_snapshot == {"workspace_root": "/ws"}
        assert checkpoint.plan == plan
        assert checkpoint.tool_states == tool_states
        assert manager.checkpoints == [checkpoint]

    @pytest.mark.asyncio
    async def test_snapshot_is_isolated_from_live_state(self, plan, tool_states) -> None:
        manager = CheckpointManager(self.context)
        checkpoint = await manager.create_checkpoint(
            "c", state=OrchestratorState.EXECUTING, plan=plan, tool_states=tool_states
        )

        plan.steps[0].status = StepStatus.FAILED
        tool_states["step_1"].status = StepStatus.FAILED
        tool_states["step_2"] = tool_states["step_1"]

        assert checkpoint.plan.steps[0].status == StepStatus.PENDING
        assert checkpoint.tool_states["step_1"].status == StepStatus.COMPLETED
        assert set(checkpoint.tool_states) == {"step_1"}

    @pytest.mark.asyncio
    async def test_immediate_checkpoints_differ_only_in_identity(self, plan, tool_states) -> None:
        manager = CheckpointManager(self.context)
        kwargs = dict(state=OrchestratorState.EXECUTING, plan=plan, tool_states=tool_states)

        first = await manager.create_checkpoint("a", **kwargs)
        second = await manager.create_checkpoint("b", **kwargs)

        assert first.id != second.id
        assert first.tool_states == second.tool_states
        assert first.plan == second.plan

    @pytest.mark.asyncio
    async def test_context_failure_still_creates_checkpoint(self, plan) -> None:
        self.context.error = RuntimeError("no editor")
        manager = CheckpointManager(self.context)

        checkpoint = await manager.create_checkpoint(
            "c", state=OrchestratorState.IDLE, plan=plan, tool_states={}
        )

        assert checkpoint.context_snapshot == {}

    @pytest.mark.asyncio
    async def test_persists_and_loads(self, tmp_path: Path, plan) -> None:
        manager = CheckpointManager(self.context, CheckpointStore(tmp_path, "s"))
        checkpoint = await manager.create_checkpoint(
            "c", state=OrchestratorState.COMPLETED, plan=plan, tool_states={}
        )

        reloaded = CheckpointManager(self.context, CheckpointStore(tmp_path, "s"))
        assert reloaded.load() == [checkpoint]
        assert reloaded.find(checkpoint.id) == checkpoint

    @pytest.mark.asyncio
    async def test_persistence_failure_is_logged(self, tmp_path: Path, plan) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        manager = CheckpointManager(self.context, CheckpointStore(blocker, "s"))

        checkpoint = await manager.create_checkpoint(
            "c", state=OrchestratorState.COMPLETED, plan=plan, tool_states={}
        )

        assert manager.checkpoints == [checkpoint]

    def test_find_unknown(self) -> None:
        with pytest.raises(CheckpointNotFound):
            CheckpointManager(self.context).find("missing")

    @pytest.mark.asyncio
    async def test_autosave_runs_tick_until_stopped(self) -> None:
        manager = CheckpointManager(self.context, checkpoint_interval=0.01)
        ticks = 0
        ticked = asyncio.Event()

        async def tick() -> None:
            nonlocal ticks
            ticks += 1
            if ticks >= 2:
                ticked.set()

        manager.start_autosave(tick)
        assert manager.autosave_running
        await asyncio.wait_for(ticked.wait(), timeout=2)
        await manager.stop_autosave()

        assert not manager.autosave_running
        count = ticks
        await asyncio.sleep(0.05)
        assert ticks == count

    @pytest.mark.asyncio
    async def test_autosave_survives_tick_errors(self) -> None:
        manager = CheckpointManager(self.context, checkpoint_interval=0.01)
        calls = 0
        recovered = asyncio.Event()

        async def tick() -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("disk full")
            recovered.set()

        manager.start_autosave(tick)
        await asyncio.wait_for(recovered.wait(), timeout=2)
        await manager.stop_autosave()

        assert calls >= 2
