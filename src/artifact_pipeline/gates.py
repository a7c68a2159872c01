"""Post-step checks: advisory output verification and the fatal test gate."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import IO

from artifact_pipeline.backend.process import wait_for_exit
from artifact_pipeline.errors import TestGateFailedError
from artifact_pipeline.events import EventKind, EventStore, new_event
from artifact_pipeline.workflow import StepDefinition

logger = logging.getLogger(__name__)

_TESTING_HEADING = re.compile(r"^\s*#{1,6}\s*test", re.IGNORECASE)
_ANY_HEADING = re.compile(r"^\s*#{1,6}\s")
_FENCE = re.compile(r"^\s*(```|~~~)")


def discover_test_command(conventions_path: Path, runners: tuple[str, ...]) -> str | None:
    """First runner command inside the conventions document's testing section."""

    if not conventions_path.is_file():
        return None
    runner_line = re.compile(
        r"^\s*(" + "|".join(re.escape(runner) for runner in runners) + r") ",
    )
    in_testing = False
    in_fence = False
    for line in conventions_path.read_text("utf-8", errors="replace").splitlines():
        if not in_testing:
            in_testing = _TESTING_HEADING.match(line) is not None
            continue
        if _FENCE.match(line):
            in_fence = not in_fence
            continue
        if runners and runner_line.match(line):
            return line.strip()
        if not in_fence and _ANY_HEADING.match(line):
            break
    return None


class OutputVerifier:
    """Records whether a step produced its declared artifact. Never fatal."""

    def __init__(self, *, events: EventStore, phases_dir: Path) -> None:
        self.events = events
        self.phases_dir = phases_dir

    def verify(self, phase: int, step: StepDefinition) -> bool | None:
        if not step.expected_output:
            return None
        path = self.phases_dir / f"phase-{phase}" / step.expected_output
        exists = path.exists()
        kind = EventKind.OUTPUT_VERIFIED if exists else EventKind.OUTPUT_MISSING
        self.events.append(new_event(kind, phase=phase, step=step.name, path=str(path)))
        if not exists:
            logger.warning("Step %s did not produce %s", step.name, path)
        return exists


class TestGate:
    """Runs the discovered test command after gated steps."""

    __test__ = False

    def __init__(  # noqa: PLR0913
        self,
        *,
        events: EventStore,
        project_dir: Path,
        conventions_path: Path,
        runners: tuple[str, ...],
        output_path: Path,
        stop_requested: Callable[[], bool] | None = None,
        echo: IO[str] | None = None,
        graceful_kill_seconds: float = 5.0,
    ) -> None:
        self.events = events
        self.project_dir = project_dir
        self.conventions_path = conventions_path
        self.runners = runners
        self.output_path = output_path
        self.stop_requested = stop_requested
        self.echo = echo
        self.graceful_kill_seconds = graceful_kill_seconds

    def discover(self) -> str | None:
        return discover_test_command(self.conventions_path, self.runners)

    def run(self, phase: int, step: StepDefinition) -> bool | None:
        """Return True on pass, None when skipped; raise on failure."""

        if not step.test_gate:
            return None
        command = self.discover()
        if command is None:
            self.events.append(
                new_event(
                    EventKind.TEST_GATE_SKIP,
                    phase=phase,
                    step=step.name,
                    reason="no test command",
                ),
            )
            logger.warning(
                "No test command found in %s; skipping test gate",
                self.conventions_path.name,
            )
            return None

        self.events.append(
            new_event(EventKind.TEST_GATE_START, phase=phase, step=step.name, cmd=command),
        )
        logger.info("Running test gate: %s", command)
        exit_code = self._run_command(command)
        if exit_code != 0:
            self.events.append(
                new_event(
                    EventKind.TEST_GATE_FAIL,
                    phase=phase,
                    step=step.name,
                    exit_code=exit_code,
                ),
            )
            raise TestGateFailedError(step=step.name, command=command, exit_code=exit_code)
        self.events.append(new_event(EventKind.TEST_GATE_PASS, phase=phase, step=step.name))
        logger.info("Tests passed after %s", step.name)
        return True

    def _run_command(self, command: str) -> int:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        echo = self.echo if self.echo is not None else sys.stdout
        with self.output_path.open("w", encoding="utf-8") as log_handle:
            process = subprocess.Popen(  # noqa: S602
                command,
                shell=True,
                cwd=self.project_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
            pump = threading.Thread(
                target=_tee_lines,
                args=(process.stdout, log_handle, echo),
                name="test-gate-tee",
                daemon=True,
            )
            pump.start()
            try:
                exit_code = wait_for_exit(
                    process,
                    stop_requested=self.stop_requested,
                    graceful_kill_seconds=self.graceful_kill_seconds,
                )
            finally:
                pump.join(timeout=5)
        return exit_code


def _tee_lines(source: IO[str] | None, log_handle: IO[str], echo: IO[str]) -> None:
    if source is None:
        return
    for line in source:
        log_handle.write(line)
        try:
            echo.write(line)
            echo.flush()
        except (OSError, ValueError):
            continue
    log_handle.flush()
