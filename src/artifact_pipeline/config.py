"""Runtime configuration for the pipeline engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_READY_MARKERS = ("bypass permissions", "Welcome back", "Claude Code v", "Crunched")
DEFAULT_TEST_RUNNERS = ("npm", "npx", "yarn", "pnpm", "mix", "pytest", "cargo", "go", "uv", "tox")
DEFAULT_SOURCE_SUFFIXES = (".ts", ".tsx", ".astro", ".ex", ".py")


@dataclass(slots=True)
class AgentSettings:
    """How agent programs are launched and observed."""

    interactive_command: str = "claude --dangerously-skip-permissions {model_flag}"
    detached_command: str = "claude -p --dangerously-skip-permissions {model_flag}"
    exit_command: str = "/exit"
    usage_command: str = "/usage"
    ready_markers: tuple[str, ...] = DEFAULT_READY_MARKERS
    ready_attempts: int = 30
    ready_interval_seconds: float = 2.0
    ready_settle_seconds: float = 3.0
    sentinel_interval_seconds: float = 5.0
    keystroke_delay_seconds: float = 1.0
    usage_check: bool = True
    graceful_kill_seconds: float = 5.0


@dataclass(slots=True)
class GateSettings:
    """Test gate discovery settings."""

    conventions_file: str = "CLAUDE.md"
    test_runners: tuple[str, ...] = DEFAULT_TEST_RUNNERS


@dataclass(slots=True)
class Settings:
    """Pipeline settings grouped by concern; paths resolve under ``project_dir``."""

    project_dir: Path = field(default_factory=Path.cwd)
    pipeline_dirname: str = ".pipeline"
    phases_dirname: str = "docs/phases"
    max_phases: int = 20
    session_name: str = ""
    terminal_marker: str = "PROJECT COMPLETE"
    retrospective_name: str = "REFLECTIONS.md"
    status_filename: str = "STATUS.md"
    project_title: str = ""
    git_remote: str = "origin"
    git_branch: str = "HEAD"
    source_suffixes: tuple[str, ...] = DEFAULT_SOURCE_SUFFIXES
    agent: AgentSettings = field(default_factory=AgentSettings)
    gate: GateSettings = field(default_factory=GateSettings)

    @property
    def pipeline_dir(self) -> Path:
        return self.project_dir / self.pipeline_dirname

    @property
    def phases_dir(self) -> Path:
        return self.project_dir / self.phases_dirname

    @property
    def prompts_dir(self) -> Path:
        return self.pipeline_dir / "prompts"

    @property
    def event_log_path(self) -> Path:
        return self.pipeline_dir / "pipeline.jsonl"

    @property
    def workflow_path(self) -> Path:
        return self.pipeline_dir / "workflow.json"

    @property
    def sentinel_path(self) -> Path:
        return self.pipeline_dir / ".step-done"

    @property
    def prompt_scratch_path(self) -> Path:
        return self.pipeline_dir / "current-prompt.md"

    @property
    def logs_dir(self) -> Path:
        return self.pipeline_dir / "logs"

    @property
    def test_output_path(self) -> Path:
        return self.pipeline_dir / "test-output.log"

    @property
    def status_path(self) -> Path:
        return self.project_dir / self.status_filename

    @property
    def conventions_path(self) -> Path:
        return self.project_dir / self.gate.conventions_file

    @property
    def effective_session_name(self) -> str:
        return self.session_name or self.project_dir.resolve().name

    @property
    def effective_title(self) -> str:
        return self.project_title or self.project_dir.resolve().name

    def phase_dir(self, phase: int) -> Path:
        return self.phases_dir / f"phase-{phase}"

    def retrospective_path(self, phase: int) -> Path:
        return self.phase_dir(phase) / self.retrospective_name

    @classmethod
    def from_env(cls, project_dir: Path | None = None) -> Settings:
        """Load settings from ``ARTIFACT_PIPELINE_*`` variables with local defaults."""

        resolved_dir = project_dir or Path(os.getenv("ARTIFACT_PIPELINE_PROJECT_DIR", "."))
        return cls(
            project_dir=resolved_dir.resolve(),
            pipeline_dirname=os.getenv("ARTIFACT_PIPELINE_PIPELINE_DIR", ".pipeline"),
            phases_dirname=os.getenv("ARTIFACT_PIPELINE_PHASES_DIR", "docs/phases"),
            max_phases=int(os.getenv("ARTIFACT_PIPELINE_MAX_PHASES", "20")),
            session_name=os.getenv("ARTIFACT_PIPELINE_SESSION", ""),
            terminal_marker=os.getenv("ARTIFACT_PIPELINE_TERMINAL_MARKER", "PROJECT COMPLETE"),
            project_title=os.getenv("ARTIFACT_PIPELINE_PROJECT_TITLE", ""),
            git_remote=os.getenv("ARTIFACT_PIPELINE_GIT_REMOTE", "origin"),
            git_branch=os.getenv("ARTIFACT_PIPELINE_GIT_BRANCH", "HEAD"),
            agent=AgentSettings(
                interactive_command=os.getenv(
                    "ARTIFACT_PIPELINE_INTERACTIVE_COMMAND",
                    "claude --dangerously-skip-permissions {model_flag}",
                ),
                detached_command=os.getenv(
                    "ARTIFACT_PIPELINE_DETACHED_COMMAND",
                    "claude -p --dangerously-skip-permissions {model_flag}",
                ),
                ready_markers=_env_csv("ARTIFACT_PIPELINE_READY_MARKERS", DEFAULT_READY_MARKERS),
                ready_attempts=int(os.getenv("ARTIFACT_PIPELINE_READY_ATTEMPTS", "30")),
                ready_interval_seconds=float(
                    os.getenv("ARTIFACT_PIPELINE_READY_INTERVAL_SECONDS", "2.0"),
                ),
                ready_settle_seconds=float(
                    os.getenv("ARTIFACT_PIPELINE_READY_SETTLE_SECONDS", "3.0"),
                ),
                sentinel_interval_seconds=float(
                    os.getenv("ARTIFACT_PIPELINE_SENTINEL_INTERVAL_SECONDS", "5.0"),
                ),
                usage_check=_env_bool("ARTIFACT_PIPELINE_USAGE_CHECK", default=True),
            ),
            gate=GateSettings(
                conventions_file=os.getenv("ARTIFACT_PIPELINE_CONVENTIONS_FILE", "CLAUDE.md"),
                test_runners=_env_csv("ARTIFACT_PIPELINE_TEST_RUNNERS", DEFAULT_TEST_RUNNERS),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot work with."""

        if self.max_phases <= 0:
            raise ValueError("ARTIFACT_PIPELINE_MAX_PHASES must be > 0.")
        if self.agent.ready_attempts <= 0:
            raise ValueError("ARTIFACT_PIPELINE_READY_ATTEMPTS must be > 0.")
        if self.agent.ready_interval_seconds < 0 or self.agent.ready_settle_seconds < 0:
            raise ValueError("ARTIFACT_PIPELINE_READY_* delays must be >= 0.")
        if self.agent.sentinel_interval_seconds <= 0:
            raise ValueError("ARTIFACT_PIPELINE_SENTINEL_INTERVAL_SECONDS must be > 0.")
        if not self.agent.ready_markers:
            raise ValueError("ARTIFACT_PIPELINE_READY_MARKERS must list at least one marker.")
        if not self.terminal_marker.strip():
            raise ValueError("ARTIFACT_PIPELINE_TERMINAL_MARKER must not be empty.")
        for name, template in (
            ("ARTIFACT_PIPELINE_INTERACTIVE_COMMAND", self.agent.interactive_command),
            ("ARTIFACT_PIPELINE_DETACHED_COMMAND", self.agent.detached_command),
        ):
            if not template.strip():
                raise ValueError(f"{name} must not be empty.")


def _env_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
