"""Error taxonomy for the pipeline engine and the best-effort wrapper."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class PipelineError(RuntimeError):
    """Fatal pipeline error; the run stops with a non-zero exit code."""


class PipelineConfigError(PipelineError):
    """Workflow or settings are invalid."""


class PromptTemplateError(PipelineConfigError):
    """Prompt template file is missing or unreadable."""


class DispatchError(PipelineError):
    """Backend could not execute a step."""


class SessionNotReadyError(DispatchError):
    """Interactive agent did not show a ready marker in time."""


class TestGateFailedError(PipelineError):
    """Test command exited non-zero after a gated step."""

    __test__ = False

    def __init__(self, *, step: str, command: str, exit_code: int) -> None:
        super().__init__(f"Tests failing after {step} step (exit {exit_code}): {command}")
        self.step = step
        self.command = command
        self.exit_code = exit_code


class PipelineInterrupted(Exception):  # noqa: N818
    """Run was cancelled by a signal; not a failure."""

    def __init__(self, signal_name: str = "SIGINT") -> None:
        super().__init__(f"Interrupted by {signal_name}")
        self.signal_name = signal_name


_BEST_EFFORT_ERRORS = (
    OSError,
    RuntimeError,
    ValueError,
    subprocess.SubprocessError,
)


def run_best_effort(label: str, func: Callable[[], T], *, default: T) -> T:
    """Run ``func`` and return ``default`` instead of raising.

    Cancellation is never swallowed.
    """

    try:
        return func()
    except PipelineInterrupted:
        raise
    except _BEST_EFFORT_ERRORS as error:
        logger.warning("%s failed (ignored): %s", label, error)
        return default
