"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ai_orchestrator.config import Settings
from ai_orchestrator.orchestrator.errors import OrchestratorError
from ai_orchestrator.orchestrator.models import (
    ProjectContext,
    Task,
    TaskPlan,
    TaskStatus,
    TextPart,
)
from ai_orchestrator.orchestrator.selector import TaskCharacteristics
from ai_orchestrator.orchestrator.services import OrchestratorService


@dataclass(slots=True)
class SelectCommand:
    """CLI input for a one-off routing decision."""

    prompt: str
    context: tuple[str, ...]
    complexity: int
    requires_reasoning: bool
    requires_tool_calling: bool
    critical: bool
    security_related: bool


@dataclass(slots=True)
class PlanCommand:
    """CLI input for request planning (and optional execution)."""

    request: str
    workspace: Path
    open_files: tuple[Path, ...] = ()
    active_file: Path | None = None
    max_tasks: int | None = None


class OrchestratorCliController:
    """Coordinates planning, routing, and execution CLI operations."""

    def agents(self) -> list[str]:
        service = _service()
        return [
            f"{agent.id}: {agent.name} - {agent.description} "
            f"[{', '.join(agent.capabilities)}]"
            for agent in service.get_available_agents()
        ]

    def providers(self) -> list[str]:
        service = _service()
        lines: list[str] = []
        for provider in service.registry.list():
            flags = [
                "local" if provider.is_local else "remote",
                "tools" if provider.supports_tool_calling else "no-tools",
            ]
            lines.append(
                f"{provider.id}: {provider.display_name} "
                f"available={'yes' if provider.available else 'no'} "
                f"context={provider.max_context_tokens} "
                f"price_in={provider.input_per_1m:.2f} price_out={provider.output_per_1m:.2f} "
                f"({', '.join(flags)})",
            )
        return lines

    def select(self, command: SelectCommand) -> list[str]:
        service = _service()
        selection = service.select_provider(
            TaskCharacteristics(
                prompt=command.prompt,
                context=command.context,
                complexity=command.complexity,
                requires_reasoning=command.requires_reasoning,
                requires_tool_calling=command.requires_tool_calling,
                critical=command.critical,
                security_related=command.security_related,
            ),
        )
        return [
            f"Route: {selection.route}",
            f"Provider: {selection.provider.id} model={selection.model}",
            f"Estimated cost: ${selection.estimated_cost_usd:.4f} "
            f"latency={selection.estimated_latency_ms}ms",
            f"Rationale: {selection.rationale}",
        ]

    def plan(self, command: PlanCommand) -> list[str]:
        service = _service()
        plan = service.plan_tasks(command.request, _context(command))
        return _plan_lines(plan)

    def run(self, command: PlanCommand) -> list[str]:
        """Plan a request, then execute ready tasks in priority order."""

        service = _service()
        plan = service.plan_tasks(command.request, _context(command))
        lines = _plan_lines(plan)
        plan_ids = {task.id for task in plan.tasks}
        executed = 0
        while command.max_tasks is None or executed < command.max_tasks:
            ready = [task for task in service.ready_tasks() if task.id in plan_ids]
            if not ready:
                break
            task = ready[0]
            executed += 1
            lines.extend(_execute_lines(service, task))
        blocked = [task for task in plan.tasks if task.status == TaskStatus.PENDING]
        if blocked:
            lines.append(f"Blocked tasks: {len(blocked)}")
        return lines


def _service() -> OrchestratorService:
    return OrchestratorService.from_settings(Settings.from_env())


def _context(command: PlanCommand) -> ProjectContext:
    workspace = command.workspace.resolve()
    return ProjectContext(
        workspace=workspace,
        open_files=tuple(command.open_files),
        active_file=command.active_file,
    )


def _plan_lines(plan: TaskPlan) -> list[str]:
    lines = [
        f"Analysis: {plan.analysis}",
        f"Estimated duration: {plan.estimated_duration} min",
        f"Tasks: {len(plan.tasks)}",
    ]
    position = {task.id: index for index, task in enumerate(plan.tasks, start=1)}
    for index, task in enumerate(plan.tasks, start=1):
        deps = ", ".join(f"#{position.get(dep, dep)}" for dep in task.dependencies) or "-"
        lines.append(
            f"#{index} [{task.agent}] priority={task.priority} deps={deps} "
            f"id={task.id}: {task.description}",
        )
    return lines


def _execute_lines(service: OrchestratorService, task: Task) -> list[str]:
    lines = [f"--- Executing [{task.agent}] {task.description}"]
    try:
        for part in service.execute_task(task.id):
            if not isinstance(part, TextPart):
                lines.append(f"(tool call: {part.tool} {part.arguments})")
    except OrchestratorError as error:
        lines.append(f"Task failed: {error}")
        return lines
    lines.append(task.output_text().rstrip("\n"))
    if task.selection is not None:
        lines.append(
            f"Task {task.status.value} via {task.selection.provider.id}/{task.selection.model}",
        )
    else:
        lines.append(f"Task {task.status.value}")
    return lines
