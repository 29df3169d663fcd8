"""Task orchestrator for delegating work to specialist LLM backends.

A request is planned into dependency-ordered tasks by one planning role; each
task is then routed to a backend by a deterministic cost/quality/latency
decision and streamed through a single adapter surface, whatever wire
protocol the backend speaks (OpenAI-compatible, Anthropic, Gemini, or a CLI
agent reading a prompt file).

The task store is the only writer of task status. Execution never retries;
transport failures carry a classified, transient-or-not hint so the caller's
own retry policy can decide.
"""
