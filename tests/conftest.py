"""Shared test fixtures."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

from ai_orchestrator.config import Settings
from ai_orchestrator.orchestrator.backend.base import RawChunk
from ai_orchestrator.orchestrator.models import ChatMessage, ProjectContext
from ai_orchestrator.orchestrator.services import OrchestratorService, build_default_registry

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m ai_orchestrator.orchestrator.backend.echo_agent "
    "--prompt-file {prompt_file}"
)

_BACKEND_ENV_VARS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "FIREWORKS_API_KEY",
    "V0_API_KEY",
    "AI_ORCHESTRATOR_LOCAL_ENABLED",
    "AI_ORCHESTRATOR_CLI_PROVIDERS",
    "AI_ORCHESTRATOR_CLI_COMMAND",
    "AI_ORCHESTRATOR_PLANNER_AGENT",
)


class ScriptedTransport:
    """In-memory transport replaying a fixed list of raw chunks.

    An exception instance in the script is raised at that point of the stream.
    """

    def __init__(
        self,
        model_ids: list[str],
        script: list[RawChunk | Exception] | None = None,
    ) -> None:
        self.model_ids = model_ids
        self.script = script or []
        self.calls: list[dict[str, object]] = []
        self.closed = False

    def list_model_ids(self) -> list[str]:
        return list(self.model_ids)

    def open_stream(
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,
        max_tokens: int | None,
        cancellation,
    ) -> Iterator[RawChunk]:
        self.calls.append(
            {
                "model": model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "cancellation": cancellation,
            },
        )
        return self._replay()

    def _replay(self) -> Iterator[RawChunk]:
        try:
            for item in self.script:
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed = True


@pytest.fixture()
def scripted_transport() -> type[ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture()
def clean_backend_env(monkeypatch):
    """Drop API keys and orchestrator overrides inherited from the shell."""
    for name in _BACKEND_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_agent(monkeypatch, clean_backend_env):
    """Serve the planning and heavy-task providers through the echo agent CLI."""
    monkeypatch.setenv("AI_ORCHESTRATOR_CLI_PROVIDERS", "openai,fireworks")
    monkeypatch.setenv("AI_ORCHESTRATOR_CLI_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)


@pytest.fixture()
def project_context(tmp_path: Path) -> ProjectContext:
    return ProjectContext(workspace=tmp_path, open_files=(tmp_path / "app.py",))


@pytest.fixture()
def build_service():
    """Build an orchestrator service over scripted transports keyed by provider id."""

    def _build(transports: dict[str, ScriptedTransport]) -> OrchestratorService:
        registry = build_default_registry(Settings(), transports=dict(transports))
        return OrchestratorService(registry=registry)

    return _build
