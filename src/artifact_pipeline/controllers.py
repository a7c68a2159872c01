"""Controllers and wiring for pipeline CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path

from artifact_pipeline.backend import (
    DetachedProcessBackend,
    InlineCommandBackend,
    InteractiveSessionBackend,
    TmuxClient,
)
from artifact_pipeline.backend.session import AgentSession
from artifact_pipeline.config import Settings
from artifact_pipeline.dispatcher import AgentDispatcher
from artifact_pipeline.errors import EXIT_FAILURE, PipelineConfigError, run_best_effort
from artifact_pipeline.events import JsonlEventStore
from artifact_pipeline.gates import OutputVerifier, TestGate, discover_test_command
from artifact_pipeline.orchestrator import Orchestrator, RunResult
from artifact_pipeline.polling import PollPolicy, StopFlag
from artifact_pipeline.prompts import PromptBuilder
from artifact_pipeline.publish import RepositoryPublisher
from artifact_pipeline.state import next_position, project_completed, resolve_position
from artifact_pipeline.status import StatusReporter
from artifact_pipeline.usage import UsageProbe
from artifact_pipeline.workflow import BackendKind, load_workflow

CONFIG_FAILED_STEP = "CONFIG-FAILED"


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI input for a pipeline run."""

    project_dir: Path | None
    phases: int = 0
    usage_check: bool | None = None


@dataclass(slots=True)
class PipelineInspectCommand:
    """CLI input for read-only commands."""

    project_dir: Path | None


class PipelineCliController:
    """Resolves settings, wires components, and renders CLI output lines."""

    def __init__(self, tmux_factory: Callable[[], TmuxClient] = TmuxClient) -> None:
        self.tmux_factory = tmux_factory

    def run(
        self,
        command: PipelineRunCommand,
        *,
        on_progress: Callable[[str], None] | None = None,
    ) -> RunResult:
        settings: Settings | None = None
        try:
            settings = _settings(command.project_dir)
            if command.usage_check is not None:
                settings = replace(
                    settings,
                    agent=replace(settings.agent, usage_check=command.usage_check),
                )
            orchestrator = build_orchestrator(
                settings,
                tmux=self.tmux_factory(),
                on_progress=on_progress,
            )
        except PipelineConfigError as error:
            if settings is not None:
                _write_config_failure(settings)
            return RunResult(exit_code=EXIT_FAILURE, reason=str(error))
        if on_progress is not None:
            on_progress(
                f"Attach to tmux session with: tmux attach -t {settings.effective_session_name}",
            )
        return orchestrator.run(phase_budget=command.phases)

    def position(self, command: PipelineInspectCommand) -> list[str]:
        settings = _settings(command.project_dir)
        workflow = load_workflow(settings.workflow_path)
        history = JsonlEventStore(settings.event_log_path).scan_all()
        position = resolve_position(history)
        resume = next_position(position, workflow)
        lines = [
            f"Resolved: {position.describe()}",
            f"Next: phase={resume.phase} step={resume.step}"
            + (" (resuming)" if resume.resuming else ""),
            f"Events: {len(history)}",
        ]
        if project_completed(history):
            lines.append("Project complete.")
        return lines

    def status(self, command: PipelineInspectCommand) -> list[str]:
        settings = _settings(command.project_dir)
        workflow = load_workflow(settings.workflow_path)
        history = JsonlEventStore(settings.event_log_path).scan_all()
        resume = next_position(resolve_position(history), workflow)
        reporter = _status_reporter(settings)
        step = settings.terminal_marker if project_completed(history) else resume.step
        reporter.write(resume.phase, step)
        return [f"Status written to {settings.status_path}"]


def build_orchestrator(
    settings: Settings,
    *,
    tmux: TmuxClient,
    on_progress: Callable[[str], None] | None = None,
) -> Orchestrator:
    """Assemble the orchestrator and its collaborators from settings."""

    workflow = load_workflow(settings.workflow_path)
    events = JsonlEventStore(settings.event_log_path)
    stop_flag = StopFlag()
    agent = settings.agent

    step_session = AgentSession(
        tmux=tmux,
        name=settings.effective_session_name,
        project_dir=settings.project_dir,
        launch_command=agent.interactive_command,
        ready_markers=agent.ready_markers,
        ready_policy=_ready_policy(settings),
        keystroke_delay_seconds=agent.keystroke_delay_seconds,
    )
    usage_session = AgentSession(
        tmux=tmux,
        name=f"{settings.effective_session_name}-usage",
        project_dir=settings.project_dir,
        launch_command=agent.interactive_command,
        ready_markers=agent.ready_markers,
        ready_policy=_ready_policy(settings),
        keystroke_delay_seconds=agent.keystroke_delay_seconds,
    )
    backends = {
        BackendKind.DETACHED: DetachedProcessBackend(
            command_template=agent.detached_command,
            project_dir=settings.project_dir,
            prompt_path=settings.prompt_scratch_path,
            graceful_kill_seconds=agent.graceful_kill_seconds,
        ),
        BackendKind.INTERACTIVE: InteractiveSessionBackend(
            session=step_session,
            sentinel_path=settings.sentinel_path,
            prompt_path=settings.prompt_scratch_path,
            sentinel_policy=PollPolicy(
                interval_seconds=agent.sentinel_interval_seconds,
                max_attempts=None,
                settle_seconds=1.0,
                label="sentinel wait",
            ),
            exit_command=agent.exit_command,
        ),
        BackendKind.INLINE: InlineCommandBackend(project_dir=settings.project_dir),
    }
    dispatcher = AgentDispatcher(
        events=events,
        prompt_builder=PromptBuilder(settings.prompts_dir),
        backends=backends,
        phases_dir=settings.phases_dir,
        logs_dir=settings.logs_dir,
        retrospective_name=settings.retrospective_name,
        stop_requested=stop_flag,
    )
    return Orchestrator(
        settings=settings,
        events=events,
        workflow=workflow,
        dispatcher=dispatcher,
        verifier=OutputVerifier(events=events, phases_dir=settings.phases_dir),
        gate=TestGate(
            events=events,
            project_dir=settings.project_dir,
            conventions_path=settings.conventions_path,
            runners=settings.gate.test_runners,
            output_path=settings.test_output_path,
            stop_requested=stop_flag,
            graceful_kill_seconds=agent.graceful_kill_seconds,
        ),
        status=_status_reporter(settings),
        usage=UsageProbe(
            events=events,
            session=usage_session,
            usage_command=agent.usage_command,
            enabled=agent.usage_check,
            stop_requested=stop_flag,
        ),
        publisher=RepositoryPublisher(
            events=events,
            project_dir=settings.project_dir,
            remote=settings.git_remote,
            branch=settings.git_branch,
        ),
        stop_flag=stop_flag,
        on_progress=on_progress,
    )


def _settings(project_dir: Path | None) -> Settings:
    try:
        settings = Settings.from_env(project_dir=project_dir)
        settings.validate()
    except ValueError as error:
        raise PipelineConfigError(str(error)) from error
    return settings


def _write_config_failure(settings: Settings) -> None:
    """Mark the status summary failed when the run could not even be wired."""

    def _write() -> None:
        history = JsonlEventStore(settings.event_log_path).scan_all()
        _status_reporter(settings).write(resolve_position(history).phase, CONFIG_FAILED_STEP)

    run_best_effort("status update", _write, default=None)


def _ready_policy(settings: Settings) -> PollPolicy:
    return PollPolicy(
        interval_seconds=settings.agent.ready_interval_seconds,
        max_attempts=settings.agent.ready_attempts,
        settle_seconds=settings.agent.ready_settle_seconds,
        label="agent readiness",
    )


def _status_reporter(settings: Settings) -> StatusReporter:
    return StatusReporter(
        status_path=settings.status_path,
        project_dir=settings.project_dir,
        phases_dir=settings.phases_dir,
        title=settings.effective_title,
        retrospective_name=settings.retrospective_name,
        source_suffixes=settings.source_suffixes,
        test_command=lambda: discover_test_command(
            settings.conventions_path,
            settings.gate.test_runners,
        ),
    )
