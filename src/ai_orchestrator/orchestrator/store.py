"""In-memory task registry; the only writer of task status."""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ai_orchestrator.orchestrator.errors import (
    InvalidTaskTransition,
    TaskNotFound,
    ValidationError,
)
from ai_orchestrator.orchestrator.events import CancellationToken, Observers
from ai_orchestrator.orchestrator.models import (
    ALLOWED_TRANSITIONS,
    LogLevel,
    StreamPart,
    Task,
    TaskChangeEvent,
    TaskLogEntry,
    TaskPlan,
    TaskStatus,
    utc_now,
)

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.selector import ProviderSelection

logger = logging.getLogger(__name__)


class TaskStore:
    """Task map keyed by id, in insertion order.

    Change events are queued under the store lock and delivered outside it,
    in mutation order.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.RLock()
        self._delivery_lock = threading.RLock()
        self._outbox: deque[TaskChangeEvent] = deque()
        self.on_did_change: Observers[TaskChangeEvent] = Observers("store.tasks")

    def subscribe(self, listener: Callable[[TaskChangeEvent], None]) -> Callable[[], None]:
        return self.on_did_change.subscribe(listener)

    def add_plan(self, plan: TaskPlan) -> list[Task]:
        """Insert every task of a plan as one unit."""

        with self._lock:
            plan_ids = {task.id for task in plan.tasks}
            if len(plan_ids) != len(plan.tasks):
                raise ValidationError("Task plan contains duplicate task ids")
            clashes = sorted(plan_ids & self._tasks.keys())
            if clashes:
                raise ValidationError(f"Task ids already stored: {', '.join(clashes)}")
            for task in plan.tasks:
                unknown = [
                    dep
                    for dep in task.dependencies
                    if dep not in plan_ids and dep not in self._tasks
                ]
                if unknown:
                    raise ValidationError(
                        f"Task {task.id} depends on unknown tasks: {', '.join(unknown)}",
                    )
            for task in plan.tasks:
                self._tasks[task.id] = task
                self._outbox.append(TaskChangeEvent(task=task, kind="created"))
        logger.info("Stored plan with %s task(s)", len(plan.tasks))
        self._deliver()
        return list(plan.tasks)

    def get(self, task_id: str) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def find(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def list(self, *, status: TaskStatus | None = None) -> list[Task]:
        with self._lock:
            return [
                task for task in self._tasks.values() if status is None or task.status == status
            ]

    def delete(self, task_id: str) -> Task:
        """Remove a task, cancelling its execution first when it is running."""

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            token = self._tokens.pop(task_id, None)
            del self._tasks[task_id]
            self._outbox.append(TaskChangeEvent(task=task, kind="deleted"))
        if token is not None:
            token.cancel()
        self._deliver()
        return task

    def start(self, task_id: str) -> Task:
        with self._lock:
            task = self._transition(task_id, TaskStatus.IN_PROGRESS)
            self._mark_started(task)
        self._deliver()
        return task

    def start_execution(self, task_id: str, token: CancellationToken) -> bool:
        """Bind `token` and start the task.

        Returns False when the task was cancelled or deleted before it could
        start; any other non-pending status is an invalid transition.
        """

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status == TaskStatus.CANCELLED:
                return False
            task = self._transition(task_id, TaskStatus.IN_PROGRESS)
            self._tokens[task_id] = token
            self._mark_started(task)
        self._deliver()
        return True

    def complete(
        self,
        task_id: str,
        *,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> Task:
        with self._lock:
            task = self._transition(task_id, TaskStatus.COMPLETED)
            self._mark_completed(task, message, details)
        self._deliver()
        return task

    def complete_if_running(
        self,
        task_id: str,
        *,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Complete a running task; False when it was cancelled or deleted meanwhile."""

        with self._lock:
            task = self._running(task_id)
            if task is not None:
                self._transition(task_id, TaskStatus.COMPLETED)
                self._mark_completed(task, message, details)
        self._deliver()
        return task is not None

    def fail(self, task_id: str, *, error: str, details: dict[str, Any] | None = None) -> Task:
        with self._lock:
            task = self._transition(task_id, TaskStatus.FAILED)
            self._mark_failed(task, error, details)
        self._deliver()
        return task

    def fail_if_running(
        self,
        task_id: str,
        *,
        error: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Fail a running task; False when it was cancelled or deleted meanwhile."""

        with self._lock:
            task = self._running(task_id)
            if task is not None:
                self._transition(task_id, TaskStatus.FAILED)
                self._mark_failed(task, error, details)
        self._deliver()
        return task is not None

    def cancel(self, task_id: str, *, reason: str = "Cancelled by user") -> bool:
        """Cancel a pending or running task.

        Returns False (and changes nothing) when the task is already terminal,
        so repeated calls are harmless.
        """

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFound(task_id)
            if task.status.is_terminal:
                return False
            token = self._mark_cancelled(task, reason)
        if token is not None:
            token.cancel()
        logger.info("Cancelled task %s", task_id)
        self._deliver()
        return True

    def stop_if_running(
        self,
        task_id: str,
        *,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Cancel a running task from its own execution.

        Returns False when the task already left `in_progress` or was deleted.
        """

        with self._lock:
            task = self._running(task_id)
            if task is None:
                return False
            token = self._mark_cancelled(task, reason)
            self._log(task, "info", "Execution stopped", details)
        if token is not None:
            token.cancel()
        self._deliver()
        return True

    def append_log(
        self,
        task_id: str,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry; allowed on terminal tasks too."""

        with self._lock:
            task = self.get(task_id)
            self._log(task, level, message, details)
        self._deliver()

    def log_if_present(
        self,
        task_id: str,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Append a log entry unless the task was deleted."""

        with self._lock:
            task = self._tasks.get(task_id)
            if task is not None:
                self._log(task, level, message, details)
        self._deliver()
        return task is not None

    def append_part(self, task_id: str, part: StreamPart) -> bool:
        """Record one streamed part; refused once the task has left `in_progress`."""

        with self._lock:
            task = self._running(task_id)
            if task is None:
                return False
            task.parts.append(part)
            return True

    def record_selection(self, task_id: str, selection: ProviderSelection) -> None:
        with self._lock:
            task = self.get(task_id)
            task.selection = selection
            task.updated_at = utc_now()
            self._outbox.append(TaskChangeEvent(task=task, kind="updated"))
        self._deliver()

    def update_progress(self, task_id: str, progress: int) -> None:
        with self._lock:
            task = self._running(task_id)
            if task is None:
                return
            clamped = max(0, min(100, progress))
            if clamped == task.progress:
                return
            task.progress = clamped
            task.updated_at = utc_now()
            self._outbox.append(TaskChangeEvent(task=task, kind="updated"))
        self._deliver()

    def pending_dependencies(self, task: Task) -> list[str]:
        """Dependencies of `task` that are not completed yet."""

        with self._lock:
            return [
                dep
                for dep in task.dependencies
                if (found := self._tasks.get(dep)) is None or found.status != TaskStatus.COMPLETED
            ]

    def ready_tasks(self) -> list[Task]:
        """Pending tasks whose dependencies are all completed, by priority."""

        with self._lock:
            ready = [
                task
                for task in self._tasks.values()
                if task.status == TaskStatus.PENDING and not self.pending_dependencies(task)
            ]
        return sorted(ready, key=lambda task: task.priority)

    def dependents_of(self, task_id: str) -> list[Task]:
        with self._lock:
            return [task for task in self._tasks.values() if task_id in task.dependencies]

    def cancel_dependents(self, task_id: str) -> list[str]:
        """Cancel every pending task that transitively depends on `task_id`."""

        cancelled: list[str] = []
        queue = deque([task_id])
        while queue:
            current = queue.popleft()
            for dependent in self.dependents_of(current):
                if dependent.status == TaskStatus.PENDING and self.cancel(
                    dependent.id,
                    reason=f"Dependency {current} did not complete",
                ):
                    cancelled.append(dependent.id)
                    queue.append(dependent.id)
        return cancelled

    def _transition(self, task_id: str, status_to: TaskStatus) -> Task:
        task = self.get(task_id)
        status_from = task.status
        if status_to not in ALLOWED_TRANSITIONS[status_from]:
            raise InvalidTaskTransition(
                task_id=task_id,
                status_from=status_from,
                status_to=status_to,
            )
        task.status = status_to
        task.updated_at = utc_now()
        self._outbox.append(
            TaskChangeEvent(
                task=task,
                kind="updated",
                status_from=status_from,
                status_to=status_to,
            ),
        )
        return task

    def _running(self, task_id: str) -> Task | None:
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.IN_PROGRESS:
            return None
        return task

    def _mark_started(self, task: Task) -> None:
        task.progress = 0
        self._log(task, "info", f"Task started: {task.description}")

    def _mark_completed(self, task: Task, message: str, details: dict[str, Any] | None) -> None:
        task.progress = 100
        task.completed_at = task.updated_at
        self._tokens.pop(task.id, None)
        self._log(task, "success", message, details)

    def _mark_failed(self, task: Task, error: str, details: dict[str, Any] | None) -> None:
        task.error = error
        task.completed_at = task.updated_at
        self._tokens.pop(task.id, None)
        self._log(task, "error", f"Task failed: {error}", details)

    def _mark_cancelled(self, task: Task, reason: str) -> CancellationToken | None:
        self._transition(task.id, TaskStatus.CANCELLED)
        task.completed_at = task.updated_at
        self._log(task, "warning", reason)
        return self._tokens.pop(task.id, None)

    def _log(
        self,
        task: Task,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        task.logs.append(
            TaskLogEntry(timestamp=utc_now(), level=level, message=message, details=details or {}),
        )

    def _deliver(self) -> None:
        with self._delivery_lock:
            while True:
                with self._lock:
                    if not self._outbox:
                        return
                    event = self._outbox.popleft()
                self.on_did_change.emit(event)
