"""Execution position derived by folding over the event log.

Nothing here touches the filesystem: the fold receives the ordered events and
returns a value, so resolving the same prefix twice always gives the same
answer and a crashed run can be resumed from history alone.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from functools import reduce

from artifact_pipeline.events import Event, EventKind
from artifact_pipeline.workflow import WorkflowSpec

PENDING_STEP = "pending"
DONE_STEP = "done"


class StepStatus(str, Enum):
    """Status component of an execution position."""

    READY = "ready"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class ExecutionPosition:
    """Where the pipeline is: never stored, always resolved."""

    phase: int
    step: str
    status: StepStatus

    def describe(self) -> str:
        return f"phase={self.phase} step={self.step} status={self.status.value}"


INITIAL_POSITION = ExecutionPosition(phase=1, step=PENDING_STEP, status=StepStatus.READY)

_OPENING_KINDS = frozenset({EventKind.STEP_START.value, EventKind.TEST_GATE_START.value})
_COMPLETING_KINDS = frozenset(
    {
        EventKind.STEP_DONE.value,
        EventKind.STEP_COMPLETE.value,
        EventKind.STEP_SKIP.value,
        EventKind.TEST_GATE_PASS.value,
        EventKind.TEST_GATE_SKIP.value,
    },
)


def apply_event(position: ExecutionPosition, event: Event) -> ExecutionPosition:
    """One fold step; events that do not move the position are ignored."""

    if event.kind == EventKind.PHASE_COMPLETE.value and event.phase is not None:
        return ExecutionPosition(phase=event.phase, step=DONE_STEP, status=StepStatus.COMPLETE)
    if event.phase is None or not event.step:
        return position
    if event.kind in _OPENING_KINDS:
        return ExecutionPosition(phase=event.phase, step=event.step, status=StepStatus.RUNNING)
    if event.kind in _COMPLETING_KINDS:
        return ExecutionPosition(phase=event.phase, step=event.step, status=StepStatus.COMPLETE)
    if event.kind == EventKind.TEST_GATE_FAIL.value:
        return ExecutionPosition(phase=event.phase, step=event.step, status=StepStatus.FAILED)
    return position


def resolve_position(events: Iterable[Event]) -> ExecutionPosition:
    """Left fold over the ordered events starting from the initial position."""

    return reduce(apply_event, events, INITIAL_POSITION)


def project_completed(events: Iterable[Event]) -> bool:
    return any(event.kind == EventKind.PROJECT_COMPLETE.value for event in events)


@dataclass(slots=True, frozen=True)
class ResumePoint:
    """Normalised place to continue from."""

    phase: int
    step: str
    resuming: bool


def next_position(position: ExecutionPosition, workflow: WorkflowSpec) -> ResumePoint:
    """Apply the resume policy to a resolved position.

    Complete (or pending/done) positions advance to the next step; running and
    failed positions re-dispatch the same step. ``done`` rolls the phase over.
    """

    phase = position.phase
    step = position.step
    resuming = False
    if step == PENDING_STEP or position.status in {StepStatus.COMPLETE, StepStatus.READY}:
        step = DONE_STEP if step == DONE_STEP else workflow.next_name(step)
    else:
        workflow.get(step)
        resuming = True

    if step == DONE_STEP:
        return ResumePoint(phase=phase + 1, step=workflow.first.name, resuming=False)
    return ResumePoint(phase=phase, step=step, resuming=resuming)
