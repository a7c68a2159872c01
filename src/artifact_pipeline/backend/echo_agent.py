"""Local deterministic agent for detached-backend integration tests."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Copy the prompt from stdin into ``--output`` and exit with ``--exit-code``."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--output", required=True)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--model", default=None)
    args = parser.parse_args(argv)

    prompt = sys.stdin.read()
    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    header = f"model={args.model}\n" if args.model else ""
    output.write_text(header + prompt, "utf-8")
    print(f"echo_agent wrote {len(prompt)} chars to {output}")
    if args.sleep > 0:
        time.sleep(args.sleep)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
