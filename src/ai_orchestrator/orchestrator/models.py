"""Domain models for task planning, routing, and streamed execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.selector import ProviderSelection


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
)

ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED}),
    TaskStatus.IN_PROGRESS: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
    ),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


class FailureClass(str, Enum):
    """Normalized transport failure classes, exposed to the caller's retry policy."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"


AgentType = Literal["v0", "claude", "gemini", "gpt"]
ChatRole = Literal["system", "user", "assistant"]
LogLevel = Literal["info", "success", "warning", "error"]


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One message of a canonical conversation."""

    role: ChatRole
    content: str


@dataclass(frozen=True, slots=True)
class TextPart:
    """Incremental text output."""

    value: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True, slots=True)
class ToolCallPart:
    """Tool invocation requested by the backend."""

    tool: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None
    kind: Literal["tool_call"] = "tool_call"


StreamPart = TextPart | ToolCallPart


@dataclass(frozen=True, slots=True)
class AgentInfo:
    """Specialist role advertised to the planner and to callers."""

    id: AgentType
    name: str
    description: str
    capabilities: tuple[str, ...]
    model_family: str
    vendor: str


@dataclass(frozen=True, slots=True)
class ProjectContext:
    """Workspace snapshot supplied by the project-context collaborator."""

    workspace: Path
    open_files: tuple[Path, ...] = ()
    recent_files: tuple[Path, ...] = ()
    active_file: Path | None = None
    selection: str | None = None
    enrichment: str | None = None

    def resolve(self, path: str | Path) -> Path:
        """Resolve a file reference relative to the workspace root."""

        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.workspace / candidate


@dataclass(frozen=True, slots=True)
class TaskLogEntry:
    """Coarse milestone recorded on a task."""

    timestamp: datetime
    level: LogLevel
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Task:
    """One unit of delegated work.

    Status, log, progress and timestamps are written only through `TaskStore`.
    """

    id: str
    agent: AgentType
    description: str
    instructions: str
    priority: int
    dependencies: tuple[str, ...] = ()
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    target_files: tuple[Path, ...] = ()
    context: ProjectContext | None = None
    complexity: int | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None
    error: str | None = None
    checkpoint_id: str | None = None
    logs: list[TaskLogEntry] = field(default_factory=list)
    parts: list[StreamPart] = field(default_factory=list)
    selection: ProviderSelection | None = None

    def output_text(self) -> str:
        """Concatenate streamed text parts."""

        return "".join(part.value for part in self.parts if isinstance(part, TextPart))


@dataclass(frozen=True, slots=True)
class TaskPlan:
    """Result of one planning call."""

    analysis: str
    tasks: tuple[Task, ...]
    estimated_duration: int


@dataclass(frozen=True, slots=True)
class TaskChangeEvent:
    """Notification emitted after every task mutation."""

    task: Task
    kind: Literal["created", "updated", "deleted"]
    status_from: TaskStatus | None = None
    status_to: TaskStatus | None = None
