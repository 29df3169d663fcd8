"""CLI entrypoint for ai-orchestrator."""

import logging
from pathlib import Path

import rich_click as click

from ai_orchestrator import __version__
from ai_orchestrator.orchestrator.controllers import (
    OrchestratorCliController,
    PlanCommand,
    SelectCommand,
)
from ai_orchestrator.orchestrator.errors import OrchestratorError

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()
LOG_LEVELS = ("debug", "info", "warning", "error")


@click.group()
@click.version_option(version=__version__, prog_name="ai-orchestrator")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="warning",
    show_default=True,
    help="Logging verbosity.",
)
def ai_orchestrator(log_level: str) -> None:
    """Plan requests into tasks and route them to the best **LLM backend**.

    Backends are configured through `AI_ORCHESTRATOR_*` variables and the
    usual vendor API keys (`OPENAI_API_KEY`, `ANTHROPIC_API_KEY`, ...).
    """

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


@ai_orchestrator.command("agents")
def agents() -> None:
    """List the specialist roles the planner can delegate to."""

    _emit_lines(ORCHESTRATOR_CONTROLLER.agents())


@ai_orchestrator.command("providers")
def providers() -> None:
    """Show registered providers and their live availability."""

    _emit_lines(ORCHESTRATOR_CONTROLLER.providers())


@ai_orchestrator.command("select")
@click.option("--prompt", default="", help="Task prompt text used for context size.")
@click.option(
    "--context",
    "context",
    multiple=True,
    help="Extra context fragment. Can be repeated.",
)
@click.option(
    "--complexity",
    type=click.IntRange(min=1, max=10),
    default=5,
    show_default=True,
    help="Task complexity on a 1-10 scale.",
)
@click.option("--reasoning/--no-reasoning", default=False, help="Task needs deep reasoning.")
@click.option("--tools/--no-tools", default=False, help="Task needs tool calling.")
@click.option("--critical/--no-critical", default=False, help="Task is critical.")
@click.option("--security/--no-security", default=False, help="Task is security-related.")
def select(  # noqa: PLR0913
    prompt: str,
    context: tuple[str, ...],
    complexity: int,
    reasoning: bool,
    tools: bool,
    critical: bool,
    security: bool,
) -> None:
    """Show which provider and model a task with these traits is routed to."""

    _emit_lines(
        _guard(
            lambda: ORCHESTRATOR_CONTROLLER.select(
                SelectCommand(
                    prompt=prompt,
                    context=context,
                    complexity=complexity,
                    requires_reasoning=reasoning,
                    requires_tool_calling=tools,
                    critical=critical,
                    security_related=security,
                ),
            ),
        ),
    )


@ai_orchestrator.command("plan")
@click.argument("request")
@click.option(
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path(),
    show_default=True,
    help="Workspace root used to resolve target files.",
)
@click.option(
    "--open-file",
    "open_files",
    type=click.Path(path_type=Path),
    multiple=True,
    help="Open file to mention in the planning context. Can be repeated.",
)
@click.option(
    "--active-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Currently active file.",
)
def plan(
    request: str,
    workspace: Path,
    open_files: tuple[Path, ...],
    active_file: Path | None,
) -> None:
    """Decompose a request into a dependency-ordered task plan."""

    _emit_lines(
        _guard(
            lambda: ORCHESTRATOR_CONTROLLER.plan(
                PlanCommand(
                    request=request,
                    workspace=workspace,
                    open_files=open_files,
                    active_file=active_file,
                ),
            ),
        ),
    )


@ai_orchestrator.command("run")
@click.argument("request")
@click.option(
    "--workspace",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path(),
    show_default=True,
    help="Workspace root used to resolve target files.",
)
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after executing this many tasks.",
)
def run(request: str, workspace: Path, max_tasks: int | None) -> None:
    """Plan a request, then execute ready tasks one by one."""

    _emit_lines(
        _guard(
            lambda: ORCHESTRATOR_CONTROLLER.run(
                PlanCommand(request=request, workspace=workspace, max_tasks=max_tasks),
            ),
        ),
    )


def _guard(action):
    try:
        return action()
    except (OrchestratorError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ai_orchestrator()
