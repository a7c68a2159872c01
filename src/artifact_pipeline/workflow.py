"""Static, ordered step definitions loaded once per run."""

from __future__ import annotations

import json
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from artifact_pipeline.errors import PipelineConfigError


class BackendKind(str, Enum):
    """Execution strategy used to dispatch a step."""

    DETACHED = "detached"
    INTERACTIVE = "interactive"
    INLINE = "inline"


@dataclass(slots=True, frozen=True)
class StepDefinition:
    """One named unit of work within a phase."""

    name: str
    backend: BackendKind
    prompt: str | None = None
    model: str | None = None
    skip_unless: str | None = None
    expected_output: str | None = None
    test_gate: bool = False
    command: str | None = None


_STEP_KEYS = frozenset(
    {
        "name",
        "backend",
        "prompt",
        "model",
        "skip_unless",
        "expected_output",
        "test_gate",
        "command",
    },
)


class WorkflowSpec:
    """Immutable ordered sequence of steps with name lookup."""

    def __init__(self, steps: list[StepDefinition] | tuple[StepDefinition, ...]) -> None:
        self._steps = tuple(steps)
        _validate_steps(self._steps)
        self._by_name = {step.name: step for step in self._steps}

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(step.name for step in self._steps)

    @property
    def first(self) -> StepDefinition:
        return self._steps[0]

    def get(self, name: str) -> StepDefinition:
        try:
            return self._by_name[name]
        except KeyError as error:
            raise PipelineConfigError(f"Unknown step name: {name!r}") from error

    def next_name(self, current: str) -> str:
        """Name after ``current`` in static order, ``done`` after the last step.

        ``pending`` maps to the first step.
        """

        if current == "pending":
            return self._steps[0].name
        names = self.names
        if current not in names:
            raise PipelineConfigError(f"Unknown step name: {current!r}")
        index = names.index(current)
        if index + 1 >= len(names):
            return "done"
        return names[index + 1]

    def remaining_from(self, name: str) -> list[StepDefinition]:
        """Steps from ``name`` (inclusive) to the end of the phase."""

        step = self.get(name)
        return list(self._steps[self._steps.index(step) :])


DEFAULT_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(
        name="spec",
        backend=BackendKind.INTERACTIVE,
        prompt="spec",
        expected_output="SPEC.md",
    ),
    StepDefinition(
        name="research",
        backend=BackendKind.INTERACTIVE,
        prompt="research",
        expected_output="RESEARCH.md",
    ),
    StepDefinition(
        name="plan",
        backend=BackendKind.INTERACTIVE,
        prompt="plan",
        expected_output="PLAN.md",
    ),
    StepDefinition(
        name="build",
        backend=BackendKind.INTERACTIVE,
        prompt="build",
        test_gate=True,
    ),
    StepDefinition(
        name="review",
        backend=BackendKind.INTERACTIVE,
        prompt="review",
        expected_output="REVIEW.md",
    ),
    StepDefinition(
        name="fix",
        backend=BackendKind.INTERACTIVE,
        prompt="fix",
        skip_unless="MUST-FIX.md",
        test_gate=True,
    ),
    StepDefinition(
        name="reflect",
        backend=BackendKind.INTERACTIVE,
        prompt="reflect",
        expected_output="REFLECTIONS.md",
    ),
    StepDefinition(
        name="commit",
        backend=BackendKind.INLINE,
        command='git add -A && git commit -m "Phase {phase} complete" && git push origin HEAD',
    ),
)


def default_workflow() -> WorkflowSpec:
    return WorkflowSpec(DEFAULT_STEPS)


def load_workflow(path: Path | None) -> WorkflowSpec:
    """Load ``{"steps": [...]}`` from JSON, or the built-in workflow if absent."""

    if path is None or not path.exists():
        return default_workflow()
    try:
        payload = json.loads(path.read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise PipelineConfigError(f"Cannot read workflow file {path}: {error}") from error
    if not isinstance(payload, dict) or not isinstance(payload.get("steps"), list):
        raise PipelineConfigError(f"Workflow file {path} must contain a 'steps' array")
    return WorkflowSpec([parse_step(raw) for raw in payload["steps"]])


def parse_step(raw: Any) -> StepDefinition:
    if not isinstance(raw, dict):
        raise PipelineConfigError(f"Workflow step must be an object, got {type(raw).__name__}")
    unknown = set(raw) - _STEP_KEYS
    if unknown:
        raise PipelineConfigError(f"Unknown workflow step keys: {', '.join(sorted(unknown))}")
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise PipelineConfigError("Workflow step name must be a non-empty string")
    backend_raw = raw.get("backend", BackendKind.INTERACTIVE.value)
    try:
        backend = BackendKind(str(backend_raw).strip().lower())
    except ValueError as error:
        raise PipelineConfigError(
            f"Unknown backend kind {backend_raw!r} for step {name!r}",
        ) from error
    test_gate = raw.get("test_gate", False)
    if not isinstance(test_gate, bool):
        raise PipelineConfigError(f"test_gate must be a boolean for step {name!r}")
    return StepDefinition(
        name=name.strip(),
        backend=backend,
        prompt=_optional_str(raw, "prompt", name),
        model=_optional_str(raw, "model", name),
        skip_unless=_optional_str(raw, "skip_unless", name),
        expected_output=_optional_str(raw, "expected_output", name),
        test_gate=test_gate,
        command=_optional_str(raw, "command", name),
    )


def _optional_str(raw: dict[str, Any], key: str, step_name: str) -> str | None:
    value = raw.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise PipelineConfigError(f"{key} must be a string for step {step_name!r}")
    return value.strip() or None


def _validate_steps(steps: tuple[StepDefinition, ...]) -> None:
    if not steps:
        raise PipelineConfigError("Workflow must define at least one step")
    seen: set[str] = set()
    for step in steps:
        if step.name in seen:
            raise PipelineConfigError(f"Duplicate step name: {step.name!r}")
        if step.name in {"pending", "done"}:
            raise PipelineConfigError(f"Reserved step name: {step.name!r}")
        seen.add(step.name)
        if not isinstance(step.backend, BackendKind):
            raise PipelineConfigError(f"Unknown backend kind for step {step.name!r}")
        if step.backend is BackendKind.INLINE:
            if not step.command:
                raise PipelineConfigError(f"Inline step {step.name!r} needs a command")
        elif not step.prompt:
            raise PipelineConfigError(f"Step {step.name!r} needs a prompt reference")
