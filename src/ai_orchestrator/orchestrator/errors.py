"""Error taxonomy for planning, routing, and task execution."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.models import FailureClass, TaskStatus


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ValidationError(OrchestratorError, ValueError):
    """Malformed adapter request, rejected before any backend call."""


class NoProviderAvailable(OrchestratorError):
    """Selected route points to a backend that is missing or unavailable."""

    def __init__(self, message: str, *, provider_id: str, route: str | None = None) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.route = route


class PlanParseError(OrchestratorError):
    """Planner output could not be parsed into a task plan.

    Recovered inside the planner; never surfaced to callers.
    """


class AdapterTransportError(OrchestratorError):
    """Network or process failure while talking to a backend."""

    def __init__(
        self,
        message: str,
        *,
        transient: bool,
        failure_class: FailureClass | None = None,
        status_code: int | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.transient = transient
        self.failure_class = failure_class
        self.status_code = status_code
        self.details = details or {}


class TaskNotFound(OrchestratorError, KeyError):
    """Unknown task id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(task_id)
        self.task_id = task_id

    def __str__(self) -> str:
        return f"Task not found: {self.task_id}"


class InvalidTaskTransition(OrchestratorError):
    """Requested status change is not allowed by the task state machine."""

    def __init__(self, *, task_id: str, status_from: TaskStatus, status_to: TaskStatus) -> None:
        super().__init__(
            f"Task {task_id} cannot move from {status_from.value} to {status_to.value}",
        )
        self.task_id = task_id
        self.status_from = status_from
        self.status_to = status_to


class DependencyNotSatisfied(OrchestratorError):
    """Task still has dependencies that are not completed."""

    def __init__(self, *, task_id: str, pending: list[str]) -> None:
        super().__init__(
            f"Task {task_id} is blocked by unfinished dependencies: {', '.join(pending)}",
        )
        self.task_id = task_id
        self.pending = pending
