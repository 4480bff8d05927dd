"""Planner module for turning a task into a structured workflow plan."""

import json
import logging
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from task_orchestrator.interfaces.protocols import AIGateway
from task_orchestrator.orchestrator.errors import PlanningFailed
from task_orchestrator.orchestrator.handlers import HandlerRegistry
from task_orchestrator.orchestrator.models import (
    Level,
    PlanStatus,
    WorkflowPlan,
    WorkflowStep,
)

PLANNER_PROMPT = """You are a software engineering workflow planner.
Break the task below into clear, executable steps.

Task: {task}

Context:
{context}

Available actions:
{actions}

Guidelines:
- Each step uses exactly one of the available actions
- Give every step an "id" and list the ids it depends on in "dependencies"
- Put the inputs an action needs in "parameters" (for example "path" and
  "content" for file actions, "command" for execute_command, "prompt" for
  ai_generate, "tool_name" and "arguments" for use_mcp_tool)
- Assess complexity and riskLevel as one of: low, medium, high, critical

Respond with a single JSON object of this shape:
{{
  "description": "...",
  "steps": [
    {{"id": "step_1", "description": "...", "action": "...",
      "parameters": {{}}, "dependencies": [], "estimatedDuration": 0}}
  ],
  "estimatedDuration": 0,
  "complexity": "medium",
  "riskLevel": "medium",
  "prerequisites": [],
  "successCriteria": [],
  "rollbackPlan": [],
  "approvalRequired": true
}}"""

_DECODER = json.JSONDecoder()


class StepOutput(BaseModel):
    """Schema for one step in the model's plan response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str | None = None
    description: str = ""
    action: str
    parameters: dict[str, Any] = {}
    dependencies: list[str] = []
    estimated_duration: float = 0.0
    max_retries: int | None = None


class PlanOutput(BaseModel):
    """Schema for the model's plan response; camelCase or snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str | None = None
    steps: list[StepOutput] = []
    estimated_duration: float = 0.0
    complexity: Level = "medium"
    risk_level: Level = "medium"
    dependencies: list[str] = []
    prerequisites: list[str] = []
    success_criteria: list[str] = []
    rollback_plan: list[str] = []
    approval_required: bool | None = None


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the JSON object starting at the first ``{`` in ``text``.

    Text after the object is ignored, braces included.
    """
    start = text.find("{")
    if start == -1:
        raise ValueError("No JSON object found in response")
    data, _ = _DECODER.raw_decode(text, start)
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


class WorkflowPlanner:
    """Builds draft plans through the AI gateway."""

    def __init__(
        self,
        ai_gateway: AIGateway,
        registry: HandlerRegistry,
        default_max_retries: int = 2,
    ):
        self.ai_gateway = ai_gateway
        self.registry = registry
        self.default_max_retries = default_max_retries
        self.logger = logging.getLogger(__name__)

    def build_prompt(self, task: str, context_snapshot: dict[str, Any]) -> str:
        return PLANNER_PROMPT.format(
            task=task,
            context=json.dumps(context_snapshot, indent=2, default=str),
            actions="\n".join(f"- {action}" for action in self.registry.actions),
        )

    async def generate_plan(
        self, task: str, context_snapshot: dict[str, Any]
    ) -> WorkflowPlan:
        """Generate a draft plan for ``task``.

        Args:
            task: Natural-language description of the work
            context_snapshot: Serializable editor/workspace context

        Returns:
            WorkflowPlan with status ``draft``

        Raises:
            PlanningFailed: The gateway failed or its reply is not a valid plan
        """
        prompt = self.build_prompt(task, context_snapshot)
        try:
            response = await self.ai_gateway.send_message(prompt, context_snapshot)
        except Exception as e:
            raise PlanningFailed(f"AI gateway request failed: {e}") from e

        try:
            output = PlanOutput.model_validate(extract_json_object(str(response)))
        except (ValueError, ValidationError) as e:
            # json.JSONDecodeError is a ValueError
            raise PlanningFailed(f"Could not parse plan response: {e}") from e

        plan = self._to_plan(task, output)
        self.logger.info(
            f"Generated plan {plan.id} with {len(plan.steps)} steps "
            f"(risk {plan.risk_level}, approval required: {plan.approval_required})"
        )
        return plan

    def _to_plan(self, task: str, output: PlanOutput) -> WorkflowPlan:
        step_ids = _assign_step_ids(output.steps)
        steps = [
            WorkflowStep(
                id=step_id,
                description=step.description,
                action=step.action,
                parameters=step.parameters,
                dependencies=step.dependencies,
                estimated_duration=step.estimated_duration,
                max_retries=(
                    step.max_retries
                    if step.max_retries is not None
                    else self.default_max_retries
                ),
            )
            for step_id, step in zip(step_ids, output.steps)
        ]

        approval_required = output.approval_required is not False
        if output.risk_level in ("high", "critical") or any(
            self.registry.is_mutating(step.action) for step in steps
        ):
            approval_required = True

        return WorkflowPlan(
            id=str(uuid4()),
            task=task,
            description=output.description or task,
            steps=steps,
            estimated_duration=output.estimated_duration,
            complexity=output.complexity,
            risk_level=output.risk_level,
            dependencies=output.dependencies,
            prerequisites=output.prerequisites,
            success_criteria=output.success_criteria,
            rollback_plan=output.rollback_plan,
            approval_required=approval_required,
            status=PlanStatus.DRAFT,
        )


def _assign_step_ids(steps: list[StepOutput]) -> list[str]:
    """Keep explicit ids and number the rest ``step_<n>`` without collisions.

    Raises:
        PlanningFailed: Two steps were given the same id
    """
    explicit = [step.id for step in steps if step.id]
    duplicates = sorted({step_id for step_id in explicit if explicit.count(step_id) > 1})
    if duplicates:
        raise PlanningFailed(f"Duplicate step ids in plan: {', '.join(duplicates)}")

    taken = set(explicit)
    ids = []
    for index, step in enumerate(steps, start=1):
        if step.id:
            ids.append(step.id)
            continue
        number = index
        while f"step_{number}" in taken:
            number += 1
        step_id = f"step_{number}"
        taken.add(step_id)
        ids.append(step_id)
    return ids
