"""Tests for running tool metrics."""

import pytest

from task_orchestrator.orchestrator.metrics import ToolMetricsStore


class TestToolMetricsStore:
    """Test suite for per-action aggregates."""

    def setup_method(self) -> None:
        self.store = ToolMetricsStore()

    def test_first_record_initializes_entry(self) -> None:
        self.store.record("create_file", True, 100.0)

        metrics = self.store.get("create_file")
        assert metrics is not None
        assert metrics.total_executions == 1
        assert metrics.success_rate == 1.0
        assert metrics.avg_duration == 100.0

    def test_running_means(self) -> None:
        """Success rate and duration are means over all executions."""
        self.store.record("execute_command", True, 100.0)
        self.store.record("execute_command", False, 200.0)
        self.store.record("execute_command", True, 300.0)
        self.store.record("execute_command", False, 400.0)

        metrics = self.store.get("execute_command")
        assert metrics is not None
        assert metrics.total_executions == 4
        assert metrics.success_rate == pytest.approx(0.5)
        assert metrics.avg_duration == pytest.approx(250.0)

    def test_actions_are_independent(self) -> None:
        self.store.record("create_file", True, 10.0)
        self.store.record("ai_generate", False, 20.0)

        snapshot = self.store.snapshot()
        assert set(snapshot) == {"create_file", "ai_generate"}
        assert snapshot["create_file"].success_rate == 1.0
        assert snapshot["ai_generate"].success_rate == 0.0

    def test_snapshot_returns_copies(self) -> None:
        self.store.record("create_file", True, 10.0)

        snapshot = self.store.snapshot()
        snapshot["create_file"].total_executions = 99

        assert self.store.get("create_file").total_executions == 1

    def test_unknown_action(self) -> None:
        assert self.store.get("missing") is None

    def test_record_never_raises(self) -> None:
        """A bad duration is logged, not raised."""
        self.store.record("create_file", True, None)  # type: ignore[arg-type]

    def test_clear(self) -> None:
        self.store.record("create_file", True, 10.0)
        self.store.clear()
        assert self.store.snapshot() == {}
