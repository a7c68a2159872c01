from __future__ import annotations

from pathlib import Path

import allure
from conftest import FakeTmux, no_sleep

from artifact_pipeline.backend.session import AgentSession
from artifact_pipeline.events import InMemoryEventStore
from artifact_pipeline.polling import PollPolicy
from artifact_pipeline.usage import UsageProbe, parse_usage

pytestmark = [
    allure.epic("Reporting"),
    allure.feature("Usage Probe"),
]

SESSION = "demo-usage"


def _probe(tmux: FakeTmux, tmp_path: Path, events: InMemoryEventStore, **kwargs) -> UsageProbe:
    session = AgentSession(
        tmux=tmux,
        name=SESSION,
        project_dir=tmp_path,
        launch_command="claude {model_flag}",
        ready_markers=("Claude Code v",),
        ready_policy=PollPolicy(interval_seconds=2.0, max_attempts=3),
        keystroke_delay_seconds=1.0,
        sleep=no_sleep,
    )
    return UsageProbe(events=events, session=session, sleep=no_sleep, **kwargs)


def test_parse_usage_extracts_percentages() -> None:
    snapshot = parse_usage("Session  42% used\nWeek 7 % Used\nbogus 400% used\n")

    assert snapshot.percent_used == [42, 7]


def test_usage_check_records_screen_and_tears_down(tmp_path: Path) -> None:
    tmux = FakeTmux()
    events = InMemoryEventStore()

    snapshot = _probe(tmux, tmp_path, events).check(0, "pipeline_start")

    assert snapshot is not None
    [event] = events.scan_all()
    assert (event.kind, event.phase, event.step) == ("usage_check", 0, "pipeline_start")
    assert event.fields["percent_used"] == "42,7"
    assert "42% used" in event.fields["usage"]
    assert SESSION not in tmux.sessions
    assert ("/usage",) in tmux.sent_keys(SESSION)


def test_usage_failure_never_raises(tmp_path: Path) -> None:
    tmux = FakeTmux(agent_starts=False)
    events = InMemoryEventStore()

    assert _probe(tmux, tmp_path, events).check(3, "phase_end") is None

    assert events.scan_all() == []
    assert ("kill-session", SESSION) in tmux.calls


def test_disabled_probe_does_nothing(tmp_path: Path) -> None:
    tmux = FakeTmux()
    events = InMemoryEventStore()

    assert _probe(tmux, tmp_path, events, enabled=False).check(1, "phase_end") is None

    assert tmux.calls == []
