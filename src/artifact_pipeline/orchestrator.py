"""Main loop over (phase, step) driven entirely by the event log."""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from artifact_pipeline.config import Settings
from artifact_pipeline.dispatcher import AgentDispatcher
from artifact_pipeline.errors import (
    EXIT_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_OK,
    PipelineError,
    PipelineInterrupted,
    run_best_effort,
)
from artifact_pipeline.events import EventKind, EventStore, new_event
from artifact_pipeline.gates import OutputVerifier, TestGate
from artifact_pipeline.polling import StopFlag
from artifact_pipeline.publish import RepositoryPublisher
from artifact_pipeline.state import next_position, project_completed, resolve_position
from artifact_pipeline.status import StatusReporter, first_line
from artifact_pipeline.usage import UsageProbe
from artifact_pipeline.workflow import StepDefinition, WorkflowSpec

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunResult:
    """Outcome of one orchestrator invocation."""

    exit_code: int
    reason: str
    phases_run: int = 0


class Orchestrator:
    """Resolves the position from history, then runs phases until a stop condition.

    Stop conditions: terminal marker in the previous phase's retrospective,
    the caller's phase budget, the ``max_phases`` ceiling, a fatal error, or
    an interrupt signal.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        events: EventStore,
        workflow: WorkflowSpec,
        dispatcher: AgentDispatcher,
        verifier: OutputVerifier,
        gate: TestGate,
        status: StatusReporter,
        usage: UsageProbe,
        publisher: RepositoryPublisher,
        stop_flag: StopFlag,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self.settings = settings
        self.events = events
        self.workflow = workflow
        self.dispatcher = dispatcher
        self.verifier = verifier
        self.gate = gate
        self.status = status
        self.usage = usage
        self.publisher = publisher
        self.stop_flag = stop_flag
        self._on_progress = on_progress or (lambda _msg: None)
        self._phase = 1
        self._step = "pending"

    def run(self, phase_budget: int = 0) -> RunResult:
        """Run until a stop condition; ``phase_budget`` 0 means no budget."""

        with self._signal_handlers():
            try:
                return self._run(phase_budget)
            except PipelineInterrupted as interrupt:
                signal_name = self.stop_flag.signal_name or interrupt.signal_name
                self._emit(
                    f"Interrupted ({signal_name}) during phase {self._phase} / "
                    f"{self._step}; it will be re-attempted on the next run.",
                )
                return RunResult(exit_code=EXIT_INTERRUPTED, reason="interrupted")
            except PipelineError as error:
                logger.error("Pipeline stopped: %s", error)
                self._emit(f"Pipeline stopped: {error}")
                run_best_effort(
                    "status update",
                    lambda: self.status.write(self._phase, f"{self._step}-FAILED"),
                    default=None,
                )
                return RunResult(exit_code=EXIT_FAILURE, reason=str(error))

    def _run(self, phase_budget: int) -> RunResult:
        history = self.events.scan_all()
        if project_completed(history):
            self._emit("Project already marked complete. Exiting.")
            return RunResult(exit_code=EXIT_OK, reason="already complete")

        position = resolve_position(history)
        resume = next_position(position, self.workflow)
        if resume.resuming:
            self._emit(f"Resuming interrupted step: phase {resume.phase} / {resume.step}")
        phase, step_name = resume.phase, resume.step
        self._phase, self._step = phase, step_name

        self.usage.check(0, "pipeline_start")

        phases_run = 0
        while phase <= self.settings.max_phases:
            self._phase, self._step = phase, step_name
            if self._terminal_marker_found(phase - 1):
                return self._finish_project(phase, phases_run)

            for step in self.workflow.remaining_from(step_name):
                self._run_step(phase, step)

            self.events.append(new_event(EventKind.PHASE_COMPLETE, phase=phase))
            self._emit(f"Phase {phase} complete")
            self.usage.check(phase, "phase_end")
            phases_run += 1

            if phase_budget > 0 and phases_run >= phase_budget:
                self._emit(f"Completed {phases_run} phase(s) as requested. Stopping.")
                return RunResult(exit_code=EXIT_OK, reason="phase budget", phases_run=phases_run)

            self._check_stop()
            phase += 1
            step_name = self.workflow.first.name

        self._emit(f"Hit max phases ({self.settings.max_phases}). Stopping.")
        return RunResult(exit_code=EXIT_OK, reason="max phases", phases_run=phases_run)

    def _run_step(self, phase: int, step: StepDefinition) -> None:
        self._check_stop()
        self._phase, self._step = phase, step.name
        self._emit(f"=== Phase {phase} | Step: {step.name} ===")

        outcome = self.dispatcher.dispatch(phase, step)
        if outcome.skipped:
            self.status.write(phase, step.name)
            return

        self.verifier.verify(phase, step)
        self.gate.run(phase, step)
        self.events.append(new_event(EventKind.STEP_COMPLETE, phase=phase, step=step.name))
        self.status.write(phase, step.name)
        self._emit(f"Step complete: phase {phase} / {step.name}")

    def _terminal_marker_found(self, phase: int) -> bool:
        if phase < 1:
            return False
        line = first_line(self.settings.retrospective_path(phase))
        if line is None:
            return False
        return self.settings.terminal_marker.lower() in line.lower()

    def _finish_project(self, phase: int, phases_run: int) -> RunResult:
        self.events.append(new_event(EventKind.PROJECT_COMPLETE, phase=phase - 1))
        self._emit(f"{self.settings.terminal_marker} detected in phase {phase - 1} reflections!")
        self.status.write(phase, self.settings.terminal_marker)
        self.publisher.publish(self.settings.terminal_marker, phase=phase - 1)
        return RunResult(exit_code=EXIT_OK, reason="project complete", phases_run=phases_run)

    def _check_stop(self) -> None:
        if self.stop_flag():
            raise PipelineInterrupted(self.stop_flag.signal_name or "SIGINT")

    def _emit(self, msg: str) -> None:
        """Log and notify progress callback."""
        logger.info(msg)
        self._on_progress(msg)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        """Route SIGINT and SIGTERM to the stop flag for the length of one run.

        The active backend is cancelled from the handler; the loop itself only
        notices the flag at its next poll. Previous handlers are restored on exit.
        """

        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._request_stop(signal_name=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def _request_stop(self, *, signal_name: str) -> None:
        self.stop_flag.request(signal_name)
        self.dispatcher.cancel_active()
