from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from ai_orchestrator.orchestrator.errors import (
    NoProviderAvailable,
    PlanParseError,
    ValidationError,
)
from ai_orchestrator.orchestrator.models import ProjectContext, TaskStatus, TextPart
from ai_orchestrator.orchestrator.planner import (
    FALLBACK_ANALYSIS,
    FALLBACK_DESCRIPTION,
    RequestPlanner,
    build_planning_prompt,
    extract_first_json_object,
    parse_plan,
)
from ai_orchestrator.orchestrator.registry import ProviderRegistry
from ai_orchestrator.orchestrator.services import OrchestratorService
from ai_orchestrator.orchestrator.store import TaskStore

pytestmark = [
    allure.epic("Planning"),
    allure.feature("Request Planner"),
]

SCENARIO_A_PLAN = (
    '{"analysis":"x","tasks":[{"agent":"gpt","description":"d","instructions":"i",'
    '"priority":1,"dependencies":[],"targetFiles":[]}],"estimatedDuration":5}'
)


def _plan_text(tasks: list[dict[str, object]], analysis: str = "plan") -> str:
    return json.dumps({"analysis": analysis, "tasks": tasks, "estimatedDuration": 12})


def _raw_task(agent: str = "claude", **extra: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "agent": agent,
        "description": f"{agent} work",
        "instructions": "Do the work",
    }
    payload.update(extra)
    return payload


def test_parse_single_task_plan(project_context: ProjectContext) -> None:
    plan = parse_plan(SCENARIO_A_PLAN, project_context)

    assert plan.analysis == "x"
    assert plan.estimated_duration == 5
    assert len(plan.tasks) == 1
    task = plan.tasks[0]
    assert task.status == TaskStatus.PENDING
    assert task.priority == 1
    assert task.dependencies == ()
    assert task.agent == "gpt"
    assert task.context is project_context


def test_parse_plan_ignores_prose_around_json(project_context: ProjectContext) -> None:
    text = f"Sure! Here is the plan:\n```json\n{SCENARIO_A_PLAN}\n```\nGood luck."

    plan = parse_plan(text, project_context)

    assert plan.tasks[0].description == "d"


def test_parse_plan_resolves_positional_dependencies(project_context: ProjectContext) -> None:
    text = _plan_text(
        [
            _raw_task("v0", priority=1),
            _raw_task("claude", priority=2, dependencies=[1]),
            _raw_task("gpt", priority=3, dependencies=["1", 2, 2]),
        ],
    )

    plan = parse_plan(text, project_context)

    first, second, third = plan.tasks
    assert second.dependencies == (first.id,)
    assert third.dependencies == (first.id, second.id)
    assert len({task.id for task in plan.tasks}) == 3


def test_parse_plan_resolves_local_ids_and_known_ids(project_context: ProjectContext) -> None:
    text = _plan_text(
        [
            _raw_task("claude", id="build", dependencies=["existing-task"]),
            _raw_task("gpt", id="review", dependencies=["build"]),
        ],
    )

    plan = parse_plan(text, project_context, existing_ids={"existing-task"})

    build, review = plan.tasks
    assert build.id != "build"
    assert build.dependencies == ("existing-task",)
    assert review.dependencies == (build.id,)


def test_parse_plan_drops_self_and_unknown_dependencies(project_context: ProjectContext) -> None:
    text = _plan_text([_raw_task("gpt", dependencies=[1, 7, "ghost"])])

    plan = parse_plan(text, project_context)

    assert plan.tasks[0].dependencies == ()


def test_parse_plan_rejects_cycles(project_context: ProjectContext) -> None:
    text = _plan_text(
        [
            _raw_task("claude", dependencies=[2]),
            _raw_task("gpt", dependencies=[1]),
        ],
    )

    with pytest.raises(PlanParseError, match="cycle"):
        parse_plan(text, project_context)


def test_parse_plan_rejects_unknown_agent(project_context: ProjectContext) -> None:
    with pytest.raises(PlanParseError, match="unknown agent"):
        parse_plan(_plan_text([_raw_task("codex")]), project_context)


def test_parse_plan_rejects_empty_task_list(project_context: ProjectContext) -> None:
    with pytest.raises(PlanParseError, match="non-empty"):
        parse_plan(_plan_text([]), project_context)


def test_parse_plan_defaults_and_clamps(project_context: ProjectContext) -> None:
    text = json.dumps(
        {
            "tasks": [
                _raw_task("claude", complexity=42, targetFiles=["src/app.py", "/abs/file.py"]),
                _raw_task("gpt"),
            ],
        },
    )

    plan = parse_plan(text, project_context)

    first, second = plan.tasks
    assert plan.analysis == ""
    assert plan.estimated_duration == 10
    assert first.complexity == 10
    assert first.target_files == (project_context.workspace / "src/app.py", Path("/abs/file.py"))
    assert second.priority == 2
    assert second.complexity is None


def test_extract_first_json_object_honours_strings() -> None:
    text = 'noise {"a": "brace } inside", "b": {"c": "\\"}"}} trailing {"d": 1}'

    assert extract_first_json_object(text) == '{"a": "brace } inside", "b": {"c": "\\"}"}}'


def test_extract_first_json_object_skips_unbalanced_prefix() -> None:
    assert extract_first_json_object('{ unclosed but {"ok": true}') == '{"ok": true}'
    assert extract_first_json_object("no json here") is None


def test_planning_prompt_lists_agents_and_context(tmp_path: Path) -> None:
    context = ProjectContext(
        workspace=tmp_path,
        open_files=(tmp_path / "a.py",),
        active_file=tmp_path / "a.py",
        selection="s" * 150,
    )

    system_prompt, user_prompt = build_planning_prompt("Add login", context)

    for agent in ("v0", "claude", "gemini", "gpt"):
        assert f"- {agent}:" in system_prompt
    assert f"Current workspace: {tmp_path}" in user_prompt
    assert "Active file:" in user_prompt
    assert f"Selection: {'s' * 100}..." in user_prompt
    assert user_prompt.endswith("User request: Add login\n\nCreate a task plan:")


def test_planner_stores_parsed_plan(
    build_service,
    scripted_transport,
    project_context: ProjectContext,
) -> None:
    transport = scripted_transport(
        ["gpt-4o"],
        [TextPart(SCENARIO_A_PLAN[:20]), TextPart(SCENARIO_A_PLAN[20:])],
    )
    service = build_service({"openai": transport})

    plan = service.plan_tasks("Do x", project_context)

    assert [task.id for task in service.get_all_tasks()] == [plan.tasks[0].id]
    call = transport.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["messages"][0].role == "system"
    assert "User request: Do x" in call["messages"][1].content


def test_planner_falls_back_to_single_task(
    build_service,
    scripted_transport,
    project_context: ProjectContext,
) -> None:
    raw = "I could not produce a structured plan, sorry."
    service = build_service({"openai": scripted_transport(["gpt-4o"], [TextPart(raw)])})

    plan = service.plan_tasks("Do x", project_context)

    assert plan.analysis == FALLBACK_ANALYSIS
    assert plan.estimated_duration == 5
    (task,) = plan.tasks
    assert task.agent == "gpt"
    assert task.description == FALLBACK_DESCRIPTION
    assert task.instructions == raw
    assert service.get_task(task.id) is task


def test_planner_falls_back_on_cyclic_plan(
    build_service,
    scripted_transport,
    project_context: ProjectContext,
) -> None:
    raw = _plan_text([_raw_task("claude", dependencies=[2]), _raw_task("gpt", dependencies=[1])])
    service = build_service({"openai": scripted_transport(["gpt-4o"], [TextPart(raw)])})

    plan = service.plan_tasks("Do x", project_context)

    assert len(plan.tasks) == 1
    assert plan.tasks[0].instructions == raw


def test_planner_requires_available_planning_backend(
    build_service,
    scripted_transport,
    project_context: ProjectContext,
) -> None:
    service = build_service({"openai": scripted_transport([])})

    with pytest.raises(NoProviderAvailable) as error:
        service.plan_tasks("Do x", project_context)

    assert error.value.provider_id == "openai"
    assert service.get_all_tasks() == []


def test_unknown_planning_agent_is_rejected_at_construction() -> None:
    with pytest.raises(ValidationError, match="Planning agent must be one of"):
        RequestPlanner(ProviderRegistry(), TaskStore(), planning_agent="llama")
    with pytest.raises(ValidationError):
        OrchestratorService(registry=ProviderRegistry(), planning_agent="llama")
