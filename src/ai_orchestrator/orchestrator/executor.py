"""Task execution: routing, streaming relay, and status transitions."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from ai_orchestrator.orchestrator.backend.base import ChatRequest
from ai_orchestrator.orchestrator.backend.vendors import AGENT_CAPABILITIES
from ai_orchestrator.orchestrator.errors import (
    AdapterTransportError,
    DependencyNotSatisfied,
    InvalidTaskTransition,
    NoProviderAvailable,
)
from ai_orchestrator.orchestrator.events import CancellationToken
from ai_orchestrator.orchestrator.models import ChatMessage, StreamPart, Task, TaskStatus
from ai_orchestrator.orchestrator.pricing import estimate_cost_usd, estimate_tokens
from ai_orchestrator.orchestrator.selector import (
    DEFAULT_COMPLEXITY,
    ProviderSelection,
    ProviderSelector,
    TaskCharacteristics,
)
from ai_orchestrator.orchestrator.store import TaskStore

logger = logging.getLogger(__name__)

PROGRESS_PER_PART = 2
PROGRESS_CEILING = 95

_FILE_CHANGE_PATTERNS: tuple[str, ...] = (
    "modify",
    "edit the file",
    "edit file",
    "update the file",
    "write to",
    "create a file",
    "create file",
    "delete file",
    "rename",
    "refactor",
    "apply the change",
)
_REASONING_PATTERNS: tuple[str, ...] = (
    "analyze",
    "analyse",
    "reason",
    "architecture",
    "design",
    "algorithm",
    "optimize",
    "prove",
    "root cause",
    "trade-off",
)
_CRITICAL_PATTERNS: tuple[str, ...] = (
    "critical",
    "urgent",
    "hotfix",
    "data loss",
    "production outage",
    "production incident",
    "production database",
    "payment",
)
_SECURITY_PATTERNS: tuple[str, ...] = (
    "security",
    "vulnerab",
    "authenticat",
    "authoriz",
    "password",
    "credential",
    "secret",
    "encrypt",
    "injection",
    "xss",
    "csrf",
)


def derive_characteristics(task: Task) -> TaskCharacteristics:
    """Derive routing inputs from a task's text, files, and complexity hint."""

    haystack = f"{task.description}\n{task.instructions}".lower()
    context: list[str] = [task.description]
    if task.context is not None:
        if task.context.selection:
            context.append(task.context.selection)
        if task.context.enrichment:
            context.append(task.context.enrichment)
    return TaskCharacteristics(
        prompt=task.instructions,
        context=tuple(context),
        complexity=task.complexity or DEFAULT_COMPLEXITY,
        requires_reasoning=_mentions(haystack, _REASONING_PATTERNS),
        requires_tool_calling=bool(task.target_files) or _mentions(haystack, _FILE_CHANGE_PATTERNS),
        critical=_mentions(haystack, _CRITICAL_PATTERNS),
        security_related=_mentions(haystack, _SECURITY_PATTERNS),
    )


def build_agent_messages(task: Task) -> tuple[str, tuple[ChatMessage, ...]]:
    """System prompt (role capabilities) and user message (instructions)."""

    info = AGENT_CAPABILITIES[task.agent]
    capabilities = "\n".join(f"- {capability}" for capability in info.capabilities)
    system_prompt = (
        f"You are {info.name}, a specialist AI agent.\n"
        "\n"
        f"Your capabilities:\n{capabilities}\n"
        "\n"
        "Execute the following task:"
    )
    instructions = task.instructions
    if task.target_files:
        files = "\n".join(f"- {path}" for path in task.target_files)
        instructions = f"{instructions}\n\nTarget files:\n{files}"
    return system_prompt, (ChatMessage(role="user", content=instructions),)


class TaskExecutor:
    """Drive one task from `pending` to a terminal status.

    No retries happen here; a failed task keeps its log and the error is
    re-raised to the caller.
    """

    def __init__(self, selector: ProviderSelector, store: TaskStore) -> None:
        self.selector = selector
        self.store = store

    def execute(
        self,
        task: Task,
        cancellation: CancellationToken | None = None,
    ) -> Iterator[StreamPart]:
        """Check preconditions, then return an iterator relaying streamed parts.

        Status and dependency checks happen eagerly; the task only moves to
        `in_progress` once the iterator is consumed.
        """

        if task.status != TaskStatus.PENDING:
            raise InvalidTaskTransition(
                task_id=task.id,
                status_from=task.status,
                status_to=TaskStatus.IN_PROGRESS,
            )
        pending = self.store.pending_dependencies(task)
        if pending:
            raise DependencyNotSatisfied(task_id=task.id, pending=pending)
        return self._run(task, cancellation or CancellationToken())

    def _run(self, task: Task, token: CancellationToken) -> Iterator[StreamPart]:
        if not self.store.start_execution(task.id, token):
            logger.info("Task %s was stopped before it started", task.id)
            return
        logger.info("Executing task %s with agent %s", task.id, task.agent)
        relayed = 0
        selection: ProviderSelection | None = None
        request: ChatRequest | None = None
        finish_reason: str | None = None
        try:
            selection = self.selector.select(derive_characteristics(task))
            self.store.record_selection(task.id, selection)
            adapter = selection.provider.adapter
            if adapter is None:
                raise NoProviderAvailable(
                    f"Provider {selection.provider.id!r} has no adapter",
                    provider_id=selection.provider.id,
                    route=selection.route,
                )
            system_prompt, messages = build_agent_messages(task)
            request = ChatRequest(
                messages=messages,
                system_prompt=system_prompt,
                model=selection.model,
            )
            for chunk in adapter.stream_message(request, token):
                if token.is_cancellation_requested:
                    break
                if chunk.done:
                    finish_reason = chunk.finish_reason
                    continue
                if chunk.part is None or not self.store.append_part(task.id, chunk.part):
                    continue
                relayed += 1
                self.store.update_progress(
                    task.id,
                    min(PROGRESS_CEILING, relayed * PROGRESS_PER_PART),
                )
                yield chunk.part
                if token.is_cancellation_requested:
                    break
        except GeneratorExit:
            self._finish_cancelled(task, relayed, reason="Output consumer stopped")
            raise
        except Exception as error:
            if token.is_cancellation_requested or not self._finish_failed(
                task,
                error,
                relayed,
                selection,
            ):
                self._finish_cancelled(task, relayed, reason="Cancelled during execution")
                return
            raise

        if token.is_cancellation_requested or finish_reason == "cancelled":
            self._finish_cancelled(task, relayed, reason="Cancelled during execution")
            return
        self._finish_completed(task, relayed, selection, request, finish_reason)

    def _finish_completed(
        self,
        task: Task,
        relayed: int,
        selection: ProviderSelection,
        request: ChatRequest,
        finish_reason: str | None,
    ) -> None:
        prompt = "\n".join([request.system_prompt or "", *(m.content for m in request.messages)])
        completed = self.store.complete_if_running(
            task.id,
            message=f"Task completed with {selection.provider.display_name}",
            details={
                "provider": selection.provider.id,
                "model": selection.model,
                "route": selection.route,
                "rationale": selection.rationale,
                "estimated_cost_usd": selection.estimated_cost_usd,
                "estimated_latency_ms": selection.estimated_latency_ms,
                "usage_cost_usd": estimate_cost_usd(
                    provider_id=selection.provider.id,
                    prompt_tokens=estimate_tokens(prompt),
                    completion_tokens=estimate_tokens(task.output_text()),
                ),
                "finish_reason": finish_reason,
                "parts": relayed,
            },
        )
        if not completed:
            self._finish_cancelled(task, relayed, reason="Cancelled during execution")
            return
        logger.info("Task %s completed (%s parts)", task.id, relayed)

    def _finish_failed(
        self,
        task: Task,
        error: Exception,
        relayed: int,
        selection: ProviderSelection | None,
    ) -> bool:
        """Record the failure; False when the task was stopped meanwhile."""

        details: dict[str, Any] = {
            "error_type": type(error).__name__,
            "parts": relayed,
            "partial_output": task.output_text(),
        }
        if selection is not None:
            details["provider"] = selection.provider.id
            details["model"] = selection.model
        if isinstance(error, AdapterTransportError):
            details.update(error.details)
            details["transient"] = error.transient
            if error.failure_class is not None:
                details["failure_class"] = error.failure_class.value
        if not self.store.fail_if_running(task.id, error=str(error), details=details):
            return False
        logger.error("Task %s failed: %s", task.id, error)
        return True

    def _finish_cancelled(self, task: Task, relayed: int, *, reason: str) -> None:
        details = {"parts": relayed}
        if not self.store.stop_if_running(task.id, reason=reason, details=details):
            self.store.log_if_present(
                task.id,
                "info",
                "Execution stopped after cancellation",
                details,
            )
        logger.info("Task %s cancelled after %s parts", task.id, relayed)


def _mentions(haystack: str, patterns: tuple[str, ...]) -> bool:
    return any(pattern in haystack for pattern in patterns)
