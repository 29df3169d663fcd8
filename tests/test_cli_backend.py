from __future__ import annotations

import shlex
import sys
from pathlib import Path

import allure
import pytest

from ai_orchestrator.orchestrator.backend.cli_backend import (
    CliChatTransport,
    build_run_args,
    render_prompt,
)
from ai_orchestrator.orchestrator.errors import AdapterTransportError
from ai_orchestrator.orchestrator.events import CancellationToken
from ai_orchestrator.orchestrator.models import ChatMessage, FailureClass, TextPart

pytestmark = [
    allure.epic("Backends"),
    allure.feature("CLI Agent Transport"),
]

_ECHO = f"{shlex.quote(sys.executable)} -m ai_orchestrator.orchestrator.backend.echo_agent"


def _transport(extra_args: str = "", *, models: tuple[str, ...] = ("gpt-4o",)) -> CliChatTransport:
    return CliChatTransport(
        provider_id="openai",
        command_template=f"{_ECHO} --prompt-file {{prompt_file}} {extra_args}".strip(),
        models=models,
    )


def _open(transport: CliChatTransport, text: str, cancellation=None):
    return transport.open_stream(
        model="gpt-4o",
        messages=[ChatMessage(role="user", content=text)],
        temperature=0.5,
        max_tokens=10,
        cancellation=cancellation,
    )


def test_build_run_args_quotes_placeholder_values() -> None:
    run_args = build_run_args(
        command_template="agent --model {model} --prompt {prompt}",
        model="gpt-4o",
        prompt='hello "world"; rm -rf /',
        prompt_file=Path("input/prompt.txt"),
    )

    assert run_args == ["agent", "--model", "gpt-4o", "--prompt", 'hello "world"; rm -rf /']


def test_build_run_args_quotes_prompt_file_with_spaces() -> None:
    run_args = build_run_args(
        command_template="agent --input {prompt_file}",
        model="m",
        prompt="ignored",
        prompt_file=Path("/tmp/my dir/prompt.txt"),
    )

    assert run_args == ["agent", "--input", "/tmp/my dir/prompt.txt"]


def test_build_run_args_requires_prompt_placeholder() -> None:
    with pytest.raises(AdapterTransportError, match="must include"):
        build_run_args(
            command_template="agent --model {model}",
            model="m",
            prompt="p",
            prompt_file=Path("p.txt"),
        )


def test_build_run_args_rejects_unknown_placeholders() -> None:
    with pytest.raises(AdapterTransportError, match="Unsupported command template placeholder"):
        build_run_args(
            command_template="agent {prompt} {task_manifest}",
            model="m",
            prompt="p",
            prompt_file=Path("p.txt"),
        )


def test_render_prompt_passes_single_user_message_through() -> None:
    assert render_prompt([ChatMessage(role="user", content="just this")]) == "just this"


def test_render_prompt_labels_roles() -> None:
    prompt = render_prompt(
        [
            ChatMessage(role="system", content="Be brief"),
            ChatMessage(role="user", content="hello"),
        ],
    )

    assert prompt == "SYSTEM:\nBe brief\n\nUSER:\nhello"


def test_models_are_listed_only_when_command_resolves() -> None:
    assert _transport().list_model_ids() == ["gpt-4o"]
    missing = CliChatTransport(
        provider_id="openai",
        command_template="definitely-missing-agent-binary {prompt}",
        models=("gpt-4o",),
    )
    assert missing.list_model_ids() == []


def test_echo_agent_streams_stdout_lines() -> None:
    parts = list(_open(_transport(), "first line\nsecond line"))

    assert parts == [TextPart("[gpt-4o]\n"), TextPart("first line\n"), TextPart("second line\n")]


def test_non_zero_exit_is_classified_from_stderr() -> None:
    transport = _transport("--exit-code 3 --stderr 'Quota exceeded for this project'")

    with pytest.raises(AdapterTransportError) as error:
        list(_open(transport, "hello"))

    assert error.value.failure_class == FailureClass.BILLING_OR_QUOTA
    assert not error.value.transient
    assert "exited with 3" in str(error.value)
    assert "Quota exceeded" in str(error.value)


def test_killed_process_exit_code_is_transient() -> None:
    with pytest.raises(AdapterTransportError) as error:
        list(_open(_transport("--exit-code 143"), "hello"))

    assert error.value.transient
    assert error.value.failure_class == FailureClass.BACKEND_TRANSIENT


def test_missing_command_is_not_transient() -> None:
    transport = CliChatTransport(
        provider_id="openai",
        command_template="definitely-missing-agent-binary {prompt}",
        models=("gpt-4o",),
    )

    with pytest.raises(AdapterTransportError, match="command not found") as error:
        list(_open(transport, "hello"))

    assert not error.value.transient


def test_cancellation_terminates_process() -> None:
    token = CancellationToken()
    prompt = "\n".join(f"line {index}" for index in range(20))
    stream = _open(_transport("--delay 0.5"), prompt, token)
    received = [next(stream)]

    token.cancel()
    received.extend(stream)

    assert received[0] == TextPart("[gpt-4o]\n")
    assert len(received) < 20
