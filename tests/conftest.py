"""Shared test fixtures."""

from __future__ import annotations

import re
import shlex
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from artifact_pipeline.backend import echo_agent
from artifact_pipeline.config import AgentSettings, Settings

_SENTINEL_LINE = re.compile(r"`touch (?P<path>[^`]+)`")

ECHO_AGENT = f"{shlex.quote(sys.executable)} {shlex.quote(echo_agent.__file__)}"


@dataclass
class FakeTmux:
    """In-memory stand-in for TmuxClient that plays a cooperative agent."""

    ready_marker: str = "Claude Code v2"
    agent_finishes: bool = True
    agent_starts: bool = True
    sessions: set[str] = field(default_factory=set)
    panes: dict[str, str] = field(default_factory=dict)
    calls: list[tuple[str, ...]] = field(default_factory=list)
    buffer: str = ""
    pasted: list[str] = field(default_factory=list)
    on_paste: Callable[[], None] | None = None

    def has_session(self, name: str) -> bool:
        self.calls.append(("has-session", name))
        return name in self.sessions

    def new_session(self, name: str, cwd: Path) -> None:
        self.calls.append(("new-session", name, str(cwd)))
        self.sessions.add(name)
        self.panes[name] = "$ "

    def kill_session(self, name: str) -> None:
        self.calls.append(("kill-session", name))
        self.sessions.discard(name)
        self.panes.pop(name, None)

    def send_keys(self, target: str, *keys: str) -> None:
        self.calls.append(("send-keys", target, *keys))
        first = keys[0] if keys else ""
        if self.agent_starts and " && " in first:
            self.panes[target] = f"{self.ready_marker}\n> "
        elif first == "/exit":
            self.panes[target] = "$ "
        elif first == "/usage":
            self.panes[target] = "Current session\n  42% used\nCurrent week\n  7% used\n"

    def capture_pane(self, target: str, start_line: int = -5) -> str:
        self.calls.append(("capture-pane", target, str(start_line)))
        return self.panes.get(target, "")

    def load_buffer(self, path: Path) -> None:
        self.calls.append(("load-buffer", str(path)))
        self.buffer = Path(path).read_text("utf-8")

    def paste_buffer(self, target: str) -> None:
        self.calls.append(("paste-buffer", target))
        self.pasted.append(self.buffer)
        if self.on_paste is not None:
            self.on_paste()
        match = _SENTINEL_LINE.search(self.buffer)
        if self.agent_finishes and match is not None:
            Path(match.group("path")).touch()

    def sent_keys(self, target: str | None = None) -> list[tuple[str, ...]]:
        return [
            call[2:]
            for call in self.calls
            if call[0] == "send-keys" and (target is None or call[1] == target)
        ]


def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture()
def fake_tmux() -> FakeTmux:
    return FakeTmux()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Settings rooted at a temp project with instant delays and no usage probe."""

    return Settings(
        project_dir=tmp_path,
        session_name="test-session",
        project_title="Demo",
        agent=AgentSettings(
            ready_interval_seconds=0.0,
            ready_settle_seconds=0.0,
            sentinel_interval_seconds=0.01,
            keystroke_delay_seconds=0.0,
            usage_check=False,
            graceful_kill_seconds=1.0,
        ),
    )


def write_prompts(
    settings: Settings,
    *names: str,
    body: str = "Phase {{PHASE}} {{PREV_REFLECTIONS}}",
) -> None:
    settings.prompts_dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        (settings.prompts_dir / f"{name}.md").write_text(f"# {name}\n{body}\n", "utf-8")
