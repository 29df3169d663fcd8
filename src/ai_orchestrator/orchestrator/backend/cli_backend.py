"""Subprocess-based chat transport for CLI agents."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING

from ai_orchestrator.orchestrator.backend.base import RawChunk
from ai_orchestrator.orchestrator.errors import AdapterTransportError
from ai_orchestrator.orchestrator.failure_classifier import transport_error
from ai_orchestrator.orchestrator.models import ChatMessage, TextPart

if TYPE_CHECKING:
    from ai_orchestrator.orchestrator.events import CancellationToken

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 500


class CliChatTransport:
    """Run a command template per request and stream its stdout lines.

    The template may reference `{model}`, `{prompt}` and `{prompt_file}`; at
    least one of the prompt placeholders is required. Cancellation terminates
    the process.
    """

    def __init__(
        self,
        *,
        provider_id: str,
        command_template: str,
        models: tuple[str, ...],
        env: dict[str, str] | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.command_template = command_template
        self.models = models
        self.env = env or {}

    def list_model_ids(self) -> list[str]:
        """Models are servable only when the command resolves on PATH."""

        try:
            head = shlex.split(self.command_template)[0]
        except (ValueError, IndexError):
            return []
        if shutil.which(head) is None:
            return []
        return list(self.models)

    def open_stream(  # noqa: PLR0913
        self,
        *,
        model: str,
        messages: list[ChatMessage],
        temperature: float | None,  # noqa: ARG002
        max_tokens: int | None,  # noqa: ARG002
        cancellation: CancellationToken | None,
    ) -> Iterator[RawChunk]:
        return self._stream(model=model, prompt=render_prompt(messages), cancellation=cancellation)

    def _stream(
        self,
        *,
        model: str,
        prompt: str,
        cancellation: CancellationToken | None,
    ) -> Iterator[RawChunk]:
        with tempfile.TemporaryDirectory(prefix="ai-orchestrator-") as workdir:
            prompt_file = Path(workdir) / "prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            stderr_path = Path(workdir) / "stderr.txt"
            run_args = build_run_args(
                command_template=self.command_template,
                model=model,
                prompt=prompt,
                prompt_file=prompt_file,
            )
            env = os.environ.copy()
            env.update(self.env)
            env["AI_ORCHESTRATOR_PROVIDER"] = self.provider_id
            env["AI_ORCHESTRATOR_MODEL"] = model

            with stderr_path.open("w", encoding="utf-8") as stderr_handle:
                try:
                    process = subprocess.Popen(  # noqa: S603
                        run_args,
                        env=env,
                        stdout=subprocess.PIPE,
                        stderr=stderr_handle,
                        text=True,
                    )
                except FileNotFoundError as error:
                    raise AdapterTransportError(
                        f"CLI backend command not found: {run_args[0]}",
                        transient=False,
                    ) from error
                except OSError as error:
                    raise AdapterTransportError(
                        f"CLI backend failed to start: {error}",
                        transient=True,
                    ) from error

                remove_callback = (
                    cancellation.on_cancelled(lambda _token: terminate_process(process))
                    if cancellation is not None
                    else None
                )
                stdout = process.stdout
                assert stdout is not None  # noqa: S101
                try:
                    for line in stdout:
                        if cancellation is not None and cancellation.is_cancellation_requested:
                            break
                        yield TextPart(line)
                    else:
                        process.wait()
                finally:
                    if remove_callback is not None:
                        remove_callback()
                    if process.poll() is None:
                        terminate_process(process)
                    stdout.close()

            if cancellation is not None and cancellation.is_cancellation_requested:
                logger.info("[%s] CLI process cancelled", self.provider_id)
                return
            if process.returncode != 0:
                stderr_tail = stderr_path.read_text("utf-8", errors="replace")[-_STDERR_TAIL_CHARS:]
                raise transport_error(
                    provider_id=self.provider_id,
                    message=(
                        f"CLI backend exited with {process.returncode}: {stderr_tail.strip()}"
                    ),
                    exit_code=process.returncode,
                )


def render_prompt(messages: list[ChatMessage]) -> str:
    """Flatten a conversation into one prompt text for a CLI agent."""

    if len(messages) == 1 and messages[0].role == "user":
        return messages[0].content
    sections = [f"{msg.role.upper()}:\n{msg.content}" for msg in messages]
    return "\n\n".join(sections)


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise AdapterTransportError("CLI backend command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise AdapterTransportError(
            "CLI backend command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except KeyError as error:
        raise AdapterTransportError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise AdapterTransportError(
            "CLI backend command template rendered empty command.",
            transient=False,
        )
    return argv


def terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
