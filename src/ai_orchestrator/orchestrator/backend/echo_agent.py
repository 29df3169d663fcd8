"""Local demo agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import os
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Print the prompt back line by line."""

    parser = argparse.ArgumentParser()
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--prompt")
    source.add_argument("--prompt-file")
    parser.add_argument("--delay", type=float, default=0.0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stderr", default="")
    args = parser.parse_args(argv)

    prompt = args.prompt if args.prompt is not None else Path(args.prompt_file).read_text("utf-8")
    model = os.getenv("AI_ORCHESTRATOR_MODEL", "")
    if model:
        print(f"[{model}]", flush=True)
    for line in prompt.splitlines():
        print(line, flush=True)
        if args.delay:
            time.sleep(args.delay)
    if args.stderr:
        print(args.stderr, file=sys.stderr, flush=True)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
