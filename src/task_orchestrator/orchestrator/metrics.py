"""Running per-action execution metrics."""

import logging

from task_orchestrator.orchestrator.models import ToolMetrics


class ToolMetricsStore:
    """Aggregates success rate and duration per step action.

    Both aggregates are running weighted means over ``total_executions`` so no
    per-execution samples are kept.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, ToolMetrics] = {}
        self.logger = logging.getLogger(__name__)

    def record(self, action: str, success: bool, duration_ms: float) -> None:
        """Fold one execution outcome into the aggregates for ``action``."""
        try:
            metrics = self._metrics.setdefault(action, ToolMetrics())
            metrics.total_executions += 1
            n = metrics.total_executions
            metrics.success_rate = (
                metrics.success_rate * (n - 1) + (1.0 if success else 0.0)
            ) / n
            metrics.avg_duration = (metrics.avg_duration * (n - 1) + duration_ms) / n
        except Exception as e:
            # Metrics must never break step execution
            self.logger.error(f"Could not record metrics for {action}: {e}")

    def get(self, action: str) -> ToolMetrics | None:
        metrics = self._metrics.get(action)
        return metrics.model_copy() if metrics else None

    def snapshot(self) -> dict[str, ToolMetrics]:
        """Return copies of all aggregates keyed by action name."""
        return {action: m.model_copy() for action, m in self._metrics.items()}

    def clear(self) -> None:
        self._metrics.clear()
