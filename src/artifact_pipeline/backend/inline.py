"""Inline-command backend for best-effort convenience steps."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from artifact_pipeline.backend.base import DispatchOutcome, DispatchRequest
from artifact_pipeline.errors import run_best_effort

logger = logging.getLogger(__name__)

INLINE_FAILED_EXIT_CODE = -1


class InlineCommandBackend:
    """Run the step's shell template with ``{phase}`` filled in; never raises."""

    mode = "inline"

    def __init__(self, *, project_dir: Path, timeout_seconds: float | None = 600.0) -> None:
        self.project_dir = project_dir
        self.timeout_seconds = timeout_seconds

    def execute(self, request: DispatchRequest) -> DispatchOutcome:
        template = request.step.command or ""
        command = render_inline_command(template, phase=request.phase)
        request.log_path.parent.mkdir(parents=True, exist_ok=True)

        def _run() -> int:
            with request.log_path.open("w", encoding="utf-8") as log_handle:
                completed = subprocess.run(  # noqa: S602
                    command,
                    shell=True,
                    cwd=self.project_dir,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    check=False,
                    timeout=self.timeout_seconds,
                )
            return completed.returncode

        exit_code = run_best_effort(
            f"inline step {request.step.name}",
            _run,
            default=INLINE_FAILED_EXIT_CODE,
        )
        if exit_code != 0:
            logger.warning(
                "Inline step %s exited with %d (ignored): %s",
                request.step.name,
                exit_code,
                command,
            )
        return DispatchOutcome(exit_code=exit_code, mode=self.mode, log_path=request.log_path)

    def cancel(self) -> None:
        return


def render_inline_command(template: str, *, phase: int) -> str:
    return template.replace("{phase}", str(phase))
