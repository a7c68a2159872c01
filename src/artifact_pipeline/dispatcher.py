"""Step dispatch: skip check, bookkeeping events, and backend selection."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path

from artifact_pipeline.backend.base import AgentBackend, DispatchOutcome, DispatchRequest
from artifact_pipeline.errors import PipelineConfigError
from artifact_pipeline.events import EventKind, EventStore, new_event
from artifact_pipeline.polling import interruption
from artifact_pipeline.prompts import PromptBuilder, prior_artifact_pointer
from artifact_pipeline.workflow import BackendKind, StepDefinition

logger = logging.getLogger(__name__)


class AgentDispatcher:
    """Runs one step through the backend its definition names."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        events: EventStore,
        prompt_builder: PromptBuilder,
        backends: Mapping[BackendKind, AgentBackend],
        phases_dir: Path,
        logs_dir: Path,
        retrospective_name: str,
        stop_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.events = events
        self.prompt_builder = prompt_builder
        self.backends = dict(backends)
        self.phases_dir = phases_dir
        self.logs_dir = logs_dir
        self.retrospective_name = retrospective_name
        self.stop_requested = stop_requested
        self._active: AgentBackend | None = None

    def phase_dir(self, phase: int) -> Path:
        return self.phases_dir / f"phase-{phase}"

    def dispatch(self, phase: int, step: StepDefinition) -> DispatchOutcome:
        backend = self._backend_for(step)

        if step.skip_unless:
            condition = self.phase_dir(phase) / step.skip_unless
            if not condition.exists():
                self.events.append(
                    new_event(
                        EventKind.STEP_SKIP,
                        phase=phase,
                        step=step.name,
                        reason=f"no {step.skip_unless}",
                    ),
                )
                logger.info("Skipping step %s: %s not found", step.name, condition)
                return DispatchOutcome(exit_code=0, mode=step.backend.value, skipped=True)

        self.phase_dir(phase).mkdir(parents=True, exist_ok=True)
        prompt: str | None = None
        if step.backend is not BackendKind.INLINE:
            prompt = self.prompt_builder.render(
                phase,
                step.prompt or step.name,
                prior_artifact_pointer(self.phases_dir, phase, self.retrospective_name),
            )

        self.events.append(
            new_event(EventKind.STEP_START, phase=phase, step=step.name, mode=step.backend.value),
        )
        request = DispatchRequest(
            phase=phase,
            step=step,
            prompt=prompt,
            log_path=self.logs_dir / f"phase-{phase}-{step.name}.log",
            stop_requested=self.stop_requested,
        )
        self._active = backend
        try:
            outcome = backend.execute(request)
        finally:
            self._active = None

        # A step cut short by a stop request stays open in the log.
        if self.stop_requested is not None and self.stop_requested():
            raise interruption(self.stop_requested)

        self.events.append(
            new_event(
                EventKind.STEP_DONE,
                phase=phase,
                step=step.name,
                mode=outcome.mode,
                exit_code=outcome.exit_code,
            ),
        )
        if outcome.exit_code != 0:
            logger.warning("Step %s finished with exit code %d", step.name, outcome.exit_code)
        return outcome

    def cancel_active(self) -> None:
        backend = self._active
        if backend is not None:
            backend.cancel()

    def _backend_for(self, step: StepDefinition) -> AgentBackend:
        try:
            return self.backends[step.backend]
        except KeyError as error:
            raise PipelineConfigError(
                f"No backend configured for kind {step.backend.value!r} (step {step.name!r})",
            ) from error
