"""Interactive-session backend.

The interactive agent has no completion notification of its own. The prompt
asks it to create an empty sentinel file as its final action; the backend
waits for that file, consumes it, and exits the agent so the next step starts
from a fresh context.
"""

from __future__ import annotations

import logging
import shlex
import time
from collections.abc import Callable
from pathlib import Path

from artifact_pipeline.backend.base import DispatchOutcome, DispatchRequest
from artifact_pipeline.backend.tmux import TmuxClient
from artifact_pipeline.errors import PipelineConfigError, SessionNotReadyError, run_best_effort
from artifact_pipeline.polling import PollPolicy, PollTimeoutError, poll_until, sleep_with_stop
from artifact_pipeline.prompts import with_sentinel_instruction

logger = logging.getLogger(__name__)

_READY_SCAN_LINES = -5
_LOG_CAPTURE_LINES = -200


class AgentSession:
    """One named tmux session hosting an interactive agent."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        tmux: TmuxClient,
        name: str,
        project_dir: Path,
        launch_command: str,
        ready_markers: tuple[str, ...],
        ready_policy: PollPolicy,
        keystroke_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.tmux = tmux
        self.name = name
        self.project_dir = project_dir
        self.launch_command = launch_command
        self.ready_markers = ready_markers
        self.ready_policy = ready_policy
        self.keystroke_delay_seconds = keystroke_delay_seconds
        self._sleep = sleep

    def is_ready(self) -> bool:
        pane = self.tmux.capture_pane(self.name, _READY_SCAN_LINES)
        return any(marker in pane for marker in self.ready_markers)

    def ensure_ready(
        self,
        *,
        model: str | None = None,
        stop_requested: Callable[[], bool] | None = None,
    ) -> bool:
        """Create the session and launch the agent unless it is already up.

        Returns True when the agent had to be launched.
        """

        if not self.tmux.has_session(self.name):
            self.tmux.new_session(self.name, self.project_dir)
        elif self.is_ready():
            logger.info("Agent already running in session %s", self.name)
            return False

        command = render_launch_command(self.launch_command, model=model)
        logger.info("Starting agent in session %s", self.name)
        self.tmux.send_keys(
            self.name,
            f"cd {shlex.quote(str(self.project_dir))} && {command}",
            "Enter",
        )
        try:
            poll_until(
                self.is_ready,
                self.ready_policy,
                stop_requested=stop_requested,
                sleep=self._sleep,
            )
        except PollTimeoutError as error:
            raise SessionNotReadyError(
                f"Agent failed to start in session {self.name}: {error}",
            ) from error
        logger.info("Agent is ready in session %s", self.name)
        return True

    def paste_file(self, path: Path, stop_requested: Callable[[], bool] | None = None) -> None:
        """Deliver the whole file as one paste, then submit it."""

        self.tmux.load_buffer(path)
        self.tmux.paste_buffer(self.name)
        self.pause(stop_requested)
        self.tmux.send_keys(self.name, "Enter")

    def send_command(self, text: str, stop_requested: Callable[[], bool] | None = None) -> None:
        """Type a slash command, dismiss autocomplete, and submit it."""

        self.tmux.send_keys(self.name, text)
        self.pause(stop_requested)
        self.tmux.send_keys(self.name, "Escape")
        self.pause(stop_requested, factor=0.5)
        self.tmux.send_keys(self.name, "Enter")

    def exit_agent(self, exit_command: str) -> None:
        self.tmux.send_keys(self.name, exit_command, "Enter")
        self.pause(None)
        run_best_effort(
            f"confirm exit in session {self.name}",
            lambda: self.tmux.send_keys(self.name, "Escape", "Enter"),
            default=None,
        )

    def capture(self, start_line: int) -> str:
        return self.tmux.capture_pane(self.name, start_line)

    def pause(self, stop_requested: Callable[[], bool] | None, *, factor: float = 1.0) -> None:
        sleep_with_stop(self.keystroke_delay_seconds * factor, stop_requested, sleep=self._sleep)


class InteractiveSessionBackend:
    """Paste the prompt into a live agent session and wait for the sentinel file."""

    mode = "interactive"

    def __init__(  # noqa: PLR0913
        self,
        *,
        session: AgentSession,
        sentinel_path: Path,
        prompt_path: Path,
        sentinel_policy: PollPolicy,
        exit_command: str = "/exit",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.session = session
        self.sentinel_path = sentinel_path
        self.prompt_path = prompt_path
        self.sentinel_policy = sentinel_policy
        self.exit_command = exit_command
        self._sleep = sleep

    def execute(self, request: DispatchRequest) -> DispatchOutcome:
        prompt = with_sentinel_instruction(request.prompt or "", self.sentinel_path)
        self.sentinel_path.parent.mkdir(parents=True, exist_ok=True)
        self.sentinel_path.unlink(missing_ok=True)
        self.prompt_path.write_text(prompt, "utf-8")

        self.session.ensure_ready(model=request.step.model, stop_requested=request.stop_requested)
        self.session.paste_file(self.prompt_path, request.stop_requested)
        logger.info("Waiting for agent to finish step %s...", request.step.name)

        poll_until(
            self.sentinel_path.exists,
            self.sentinel_policy,
            stop_requested=request.stop_requested,
            sleep=self._sleep,
        )
        self.sentinel_path.unlink(missing_ok=True)
        logger.info("Agent finished step %s", request.step.name)

        request.log_path.parent.mkdir(parents=True, exist_ok=True)
        run_best_effort(
            "capture session output",
            lambda: request.log_path.write_text(
                self.session.capture(_LOG_CAPTURE_LINES),
                "utf-8",
            ),
            default=None,
        )
        self.session.exit_agent(self.exit_command)
        return DispatchOutcome(exit_code=0, mode=self.mode, log_path=request.log_path)

    def cancel(self) -> None:
        # Nothing to kill: the session is left for the operator to inspect.
        return


def render_launch_command(template: str, *, model: str | None) -> str:
    model_flag = f"--model {shlex.quote(model)}" if model else ""
    try:
        rendered = template.format(model_flag=model_flag).strip()
    except (KeyError, IndexError) as error:
        raise PipelineConfigError(
            f"Unsupported command template placeholder: {error}",
        ) from error
    if not rendered:
        raise PipelineConfigError("Interactive agent command rendered empty command.")
    return " ".join(rendered.split())
