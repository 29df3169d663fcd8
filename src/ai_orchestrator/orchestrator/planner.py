"""Request decomposition into dependency-ordered task plans."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterable
from typing import Any

from ai_orchestrator.orchestrator.backend.base import ChatRequest
from ai_orchestrator.orchestrator.backend.vendors import (
    AGENT_CAPABILITIES,
    DEFAULT_AGENT,
    SUPPORTED_AGENTS,
    provider_for_agent,
)
from ai_orchestrator.orchestrator.errors import (
    NoProviderAvailable,
    PlanParseError,
    ValidationError,
)
from ai_orchestrator.orchestrator.models import (
    AgentType,
    ChatMessage,
    ProjectContext,
    Task,
    TaskPlan,
    TextPart,
)
from ai_orchestrator.orchestrator.registry import ProviderRegistry
from ai_orchestrator.orchestrator.store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_DURATION = 10
FALLBACK_ESTIMATED_DURATION = 5
FALLBACK_ANALYSIS = "Failed to parse plan, creating single task"
FALLBACK_DESCRIPTION = "Execute user request"
SELECTION_PREVIEW_CHARS = 100

_OUTPUT_SCHEMA_EXAMPLE = """\
{
  "analysis": "Brief analysis of what needs to be done",
  "tasks": [
    {
      "agent": "v0" | "claude" | "gemini" | "gpt",
      "description": "What this task does",
      "instructions": "Detailed instructions for the agent",
      "priority": 1,
      "dependencies": [],
      "targetFiles": [],
      "complexity": 5
    }
  ],
  "estimatedDuration": 15
}"""


class RequestPlanner:
    """Ask the planning role for a JSON plan and turn it into stored tasks."""

    def __init__(
        self,
        registry: ProviderRegistry,
        store: TaskStore,
        *,
        planning_agent: AgentType = DEFAULT_AGENT,
    ) -> None:
        if planning_agent not in SUPPORTED_AGENTS:
            raise ValidationError(
                f"Planning agent must be one of {', '.join(SUPPORTED_AGENTS)}; "
                f"got {planning_agent!r}",
            )
        self.registry = registry
        self.store = store
        self.planning_agent = planning_agent

    def plan(self, request_text: str, context: ProjectContext) -> TaskPlan:
        """Plan a request, store the resulting tasks, and return the plan."""

        provider_id = provider_for_agent(self.planning_agent)
        provider = self.registry.get(provider_id)
        if provider is None or not provider.available or provider.adapter is None:
            raise NoProviderAvailable(
                f"Planning backend {provider_id!r} is not available",
                provider_id=provider_id,
            )

        system_prompt, user_prompt = build_planning_prompt(request_text, context)
        request = ChatRequest(
            messages=(ChatMessage(role="user", content=user_prompt),),
            system_prompt=system_prompt,
        )
        logger.info("Planning request with %s", provider.display_name)
        plan_text = "".join(
            chunk.part.value
            for chunk in provider.adapter.stream_message(request)
            if isinstance(chunk.part, TextPart)
        )

        existing_ids = {task.id for task in self.store.list()}
        try:
            plan = parse_plan(plan_text, context, existing_ids=existing_ids)
        except PlanParseError as error:
            logger.warning("Error parsing plan: %s", error)
            plan = fallback_plan(plan_text, context)
        self.store.add_plan(plan)
        logger.info("Created plan with %s task(s)", len(plan.tasks))
        return plan


def build_planning_prompt(request_text: str, context: ProjectContext) -> tuple[str, str]:
    """Return the (system, user) prompt pair for one planning call."""

    agent_lines = "\n".join(
        f"- {info.id}: {info.description} ({', '.join(info.capabilities)})"
        for info in AGENT_CAPABILITIES.values()
    )
    system_prompt = (
        "You are an AI Orchestrator that plans and delegates tasks to specialist AI agents.\n"
        "\n"
        f"Available agents:\n{agent_lines}\n"
        "\n"
        "Analyze the user's request and create a structured task plan.\n"
        "Dependencies are 1-based positions of earlier tasks in the list.\n"
        f"Output JSON format:\n{_OUTPUT_SCHEMA_EXAMPLE}"
    )
    lines = [f"Current workspace: {context.workspace}"]
    if context.open_files:
        lines.append(f"Open files: {', '.join(str(path) for path in context.open_files)}")
    if context.recent_files:
        lines.append(f"Recent files: {', '.join(str(path) for path in context.recent_files)}")
    if context.active_file is not None:
        lines.append(f"Active file: {context.active_file}")
    if context.selection:
        lines.append(f"Selection: {context.selection[:SELECTION_PREVIEW_CHARS]}...")
    if context.enrichment:
        lines.append(context.enrichment)
    user_prompt = "\n".join(lines) + f"\n\nUser request: {request_text}\n\nCreate a task plan:"
    return system_prompt, user_prompt


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced `{...}` substring, honouring JSON strings."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def parse_plan(
    text: str,
    context: ProjectContext,
    *,
    existing_ids: Iterable[str] = (),
) -> TaskPlan:
    """Parse planner output into a plan with fresh task ids.

    Raises `PlanParseError` on anything that does not match the schema.
    """

    raw_json = extract_first_json_object(text)
    if raw_json is None:
        raise PlanParseError("No JSON found in plan")
    try:
        payload = json.loads(raw_json)
    except json.JSONDecodeError as error:
        raise PlanParseError(f"Invalid plan JSON: {error}") from error
    if not isinstance(payload, dict):
        raise PlanParseError("Plan must be a JSON object")

    analysis = payload.get("analysis", "")
    if not isinstance(analysis, str):
        raise PlanParseError("Plan field 'analysis' must be a string")
    raw_tasks = payload.get("tasks")
    if not isinstance(raw_tasks, list) or not raw_tasks:
        raise PlanParseError("Plan field 'tasks' must be a non-empty list")
    estimated_duration = payload.get("estimatedDuration") or DEFAULT_ESTIMATED_DURATION
    if not _is_int(estimated_duration):
        raise PlanParseError("Plan field 'estimatedDuration' must be an integer")

    new_ids = [str(uuid.uuid4()) for _ in raw_tasks]
    local_ids: dict[str, str] = {}
    for position, raw_task in enumerate(raw_tasks):
        if isinstance(raw_task, dict) and isinstance(raw_task.get("id"), str):
            local_ids[raw_task["id"]] = new_ids[position]
    known_ids = set(existing_ids)

    tasks: list[Task] = []
    for position, raw_task in enumerate(raw_tasks):
        if not isinstance(raw_task, dict):
            raise PlanParseError(f"Task #{position + 1} must be an object")
        dependencies = _resolve_dependencies(
            raw_task.get("dependencies") or [],
            position=position,
            new_ids=new_ids,
            local_ids=local_ids,
            known_ids=known_ids,
        )
        tasks.append(
            _build_task(
                raw_task,
                position=position,
                task_id=new_ids[position],
                dependencies=dependencies,
                context=context,
            ),
        )

    _check_acyclic(tasks)
    return TaskPlan(analysis=analysis, tasks=tuple(tasks), estimated_duration=estimated_duration)


def fallback_plan(text: str, context: ProjectContext) -> TaskPlan:
    """Single general-purpose task carrying the raw planner output."""

    task = Task(
        id=str(uuid.uuid4()),
        agent=DEFAULT_AGENT,
        description=FALLBACK_DESCRIPTION,
        instructions=text,
        priority=1,
        context=context,
    )
    return TaskPlan(
        analysis=FALLBACK_ANALYSIS,
        tasks=(task,),
        estimated_duration=FALLBACK_ESTIMATED_DURATION,
    )


def _build_task(
    raw_task: dict[str, Any],
    *,
    position: int,
    task_id: str,
    dependencies: tuple[str, ...],
    context: ProjectContext,
) -> Task:
    label = f"Task #{position + 1}"
    agent = raw_task.get("agent")
    if agent not in SUPPORTED_AGENTS:
        raise PlanParseError(f"{label} has unknown agent {agent!r}")
    description = raw_task.get("description")
    instructions = raw_task.get("instructions")
    if not isinstance(description, str) or not isinstance(instructions, str):
        raise PlanParseError(f"{label} needs string 'description' and 'instructions'")
    priority = raw_task.get("priority") or position + 1
    if not _is_int(priority):
        raise PlanParseError(f"{label} field 'priority' must be an integer")
    target_files = raw_task.get("targetFiles") or []
    if not isinstance(target_files, list) or not all(isinstance(p, str) for p in target_files):
        raise PlanParseError(f"{label} field 'targetFiles' must be a list of paths")
    complexity = raw_task.get("complexity")
    if complexity is not None:
        if not _is_int(complexity):
            raise PlanParseError(f"{label} field 'complexity' must be an integer")
        complexity = max(1, min(10, complexity))

    return Task(
        id=task_id,
        agent=agent,
        description=description,
        instructions=instructions,
        priority=priority,
        dependencies=dependencies,
        target_files=tuple(context.resolve(path) for path in target_files),
        context=context,
        complexity=complexity,
    )


def _resolve_dependencies(
    raw: object,
    *,
    position: int,
    new_ids: list[str],
    local_ids: dict[str, str],
    known_ids: set[str],
) -> tuple[str, ...]:
    if not isinstance(raw, list):
        raise PlanParseError(f"Task #{position + 1} field 'dependencies' must be a list")
    resolved: list[str] = []
    for reference in raw:
        target: str | None = None
        if isinstance(reference, str) and reference in local_ids:
            target = local_ids[reference]
        elif isinstance(reference, str) and reference in known_ids:
            target = reference
        elif _is_int(reference) or (isinstance(reference, str) and reference.isdigit()):
            index = int(reference) - 1
            if 0 <= index < len(new_ids):
                target = new_ids[index]
        if target is None or target == new_ids[position]:
            logger.warning(
                "Dropping unresolvable dependency %r of task #%s",
                reference,
                position + 1,
            )
            continue
        if target not in resolved:
            resolved.append(target)
    return tuple(resolved)


def _check_acyclic(tasks: list[Task]) -> None:
    graph = {task.id: list(task.dependencies) for task in tasks}
    visiting: set[str] = set()
    done: set[str] = set()

    def _visit(task_id: str) -> None:
        if task_id in done or task_id not in graph:
            return
        if task_id in visiting:
            raise PlanParseError("Plan dependencies contain a cycle")
        visiting.add(task_id)
        for dep in graph[task_id]:
            _visit(dep)
        visiting.discard(task_id)
        done.add(task_id)

    for task_id in graph:
        _visit(task_id)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
