"""Backend interface for step execution."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from artifact_pipeline.workflow import StepDefinition


@dataclass(slots=True)
class DispatchRequest:
    """Inputs required to execute one step."""

    phase: int
    step: StepDefinition
    prompt: str | None
    log_path: Path
    stop_requested: Callable[[], bool] | None = None


@dataclass(slots=True)
class DispatchOutcome:
    """Execution outcome reported back to the dispatcher."""

    exit_code: int
    mode: str
    skipped: bool = False
    log_path: Path | None = None


class AgentBackend(Protocol):
    """Protocol implemented by every execution strategy."""

    def execute(self, request: DispatchRequest) -> DispatchOutcome:
        """Run the step and block until the backend reports completion."""

    def cancel(self) -> None:
        """Stop any work owned by the backend; safe to call from a signal handler."""
