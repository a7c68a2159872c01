"""Append-only event log: the single source of truth for pipeline progress."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Known event kinds written by the engine."""

    STEP_START = "step_start"
    STEP_DONE = "step_done"
    STEP_COMPLETE = "step_complete"
    STEP_SKIP = "step_skip"
    TEST_GATE_START = "test_gate_start"
    TEST_GATE_PASS = "test_gate_pass"
    TEST_GATE_FAIL = "test_gate_fail"
    TEST_GATE_SKIP = "test_gate_skip"
    OUTPUT_VERIFIED = "output_verified"
    OUTPUT_MISSING = "output_missing"
    PHASE_COMPLETE = "phase_complete"
    PROJECT_COMPLETE = "project_complete"
    USAGE_CHECK = "usage_check"
    GIT_PUSH = "git_push"


def utc_timestamp() -> str:
    """Current UTC time in the log's timestamp format."""

    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(slots=True, frozen=True)
class Event:
    """One immutable log record."""

    kind: str
    phase: int | None = None
    step: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    ts: str = field(default_factory=utc_timestamp)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {"ts": self.ts, "event": self.kind}
        if self.phase is not None:
            record["phase"] = self.phase
        if self.step is not None:
            record["step"] = self.step
        for key, value in self.fields.items():
            if key in record:
                raise ValueError(f"Event field {key!r} collides with a reserved key")
            record[key] = str(value)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Event:
        kind = record.get("event")
        if not isinstance(kind, str) or not kind:
            raise ValueError("event record has no 'event' kind")
        phase = _parse_phase(record.get("phase"))
        step = record.get("step")
        extra = {
            key: str(value)
            for key, value in record.items()
            if key not in {"ts", "event", "phase", "step"}
        }
        return cls(
            kind=kind,
            phase=phase,
            step=str(step) if step is not None else None,
            fields=extra,
            ts=str(record.get("ts", "")),
        )


def new_event(
    kind: EventKind | str,
    *,
    phase: int | None = None,
    step: str | None = None,
    **fields: object,
) -> Event:
    """Build an event, stringifying extra fields."""

    kind_value = kind.value if isinstance(kind, EventKind) else kind
    return Event(
        kind=kind_value,
        phase=phase,
        step=step,
        fields={key: str(value) for key, value in fields.items()},
    )


class EventStore(Protocol):
    """Append-only store injected into every component that records progress."""

    def append(self, event: Event) -> None:
        """Persist one record after all previously appended ones."""

    def scan_all(self) -> list[Event]:
        """Return every record in append order."""


class InMemoryEventStore:
    """List-backed store for tests and dry runs."""

    def __init__(self, events: list[Event] | None = None) -> None:
        self._events: list[Event] = list(events or [])

    def append(self, event: Event) -> None:
        self._events.append(event)

    def scan_all(self) -> list[Event]:
        return list(self._events)


class JsonlEventStore:
    """One JSON object per line, opened in append mode for every write."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, event: Event) -> None:
        line = json.dumps(event.to_record(), ensure_ascii=False, sort_keys=False)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
            handle.flush()
            os.fsync(handle.fileno())

    def scan_all(self) -> list[Event]:
        if not self.path.exists():
            return []
        events: list[Event] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    payload = json.loads(stripped)
                except json.JSONDecodeError:
                    logger.warning("Skipping unreadable line %d in %s", line_no, self.path)
                    continue
                if not isinstance(payload, dict) or "event" not in payload:
                    continue
                try:
                    events.append(Event.from_record(payload))
                except ValueError as error:
                    logger.warning("Skipping line %d in %s: %s", line_no, self.path, error)
        return events


def _parse_phase(value: object) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid phase value: {value!r}")
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError as error:
        raise ValueError(f"Invalid phase value: {value!r}") from error
