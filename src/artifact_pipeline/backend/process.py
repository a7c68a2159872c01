"""Detached-process backend: one child per step, completion is process exit."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
from collections.abc import Callable
from pathlib import Path

from artifact_pipeline.backend.base import DispatchOutcome, DispatchRequest
from artifact_pipeline.errors import DispatchError, PipelineConfigError
from artifact_pipeline.polling import interruption

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1


class DetachedProcessBackend:
    """Spawn the agent with the prompt on stdin and wait for it to exit."""

    mode = "detached"

    def __init__(
        self,
        *,
        command_template: str,
        project_dir: Path,
        prompt_path: Path,
        graceful_kill_seconds: float = 5.0,
    ) -> None:
        self.command_template = command_template
        self.project_dir = project_dir
        self.prompt_path = prompt_path
        self.graceful_kill_seconds = graceful_kill_seconds
        self._process: subprocess.Popen[bytes] | None = None

    def execute(self, request: DispatchRequest) -> DispatchOutcome:
        argv = build_run_args(command_template=self.command_template, model=request.step.model)
        self.prompt_path.parent.mkdir(parents=True, exist_ok=True)
        self.prompt_path.write_text(request.prompt or "", "utf-8")
        request.log_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with (
                self.prompt_path.open("rb") as stdin_handle,
                request.log_path.open("wb") as log_handle,
            ):
                self._process = subprocess.Popen(  # noqa: S603
                    argv,
                    cwd=self.project_dir,
                    stdin=stdin_handle,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
                exit_code = wait_for_exit(
                    self._process,
                    stop_requested=request.stop_requested,
                    graceful_kill_seconds=self.graceful_kill_seconds,
                )
        except FileNotFoundError as error:
            raise DispatchError(f"Agent command not found: {argv[0]}") from error
        except PermissionError as error:
            raise DispatchError(f"Agent command not executable: {argv[0]}") from error
        finally:
            self._process = None

        logger.info("Detached agent for step %s exited with %d", request.step.name, exit_code)
        return DispatchOutcome(exit_code=exit_code, mode=self.mode, log_path=request.log_path)

    def cancel(self) -> None:
        process = self._process
        if process is not None:
            terminate_process_group(process, graceful_seconds=self.graceful_kill_seconds)


def build_run_args(*, command_template: str, model: str | None) -> list[str]:
    """Render ``{model_flag}`` and split the template into argv."""

    stripped = command_template.strip()
    if not stripped:
        raise PipelineConfigError("Agent command template is empty.")
    model_flag = f"--model {shlex.quote(model)}" if model else ""
    try:
        rendered = stripped.format(model_flag=model_flag)
    except (KeyError, IndexError) as error:
        raise PipelineConfigError(
            f"Unsupported command template placeholder: {error}",
        ) from error
    argv = shlex.split(rendered)
    if not argv:
        raise PipelineConfigError("Agent command template rendered empty command.")
    return argv


def wait_for_exit(
    process: subprocess.Popen,
    *,
    stop_requested: Callable[[], bool] | None,
    graceful_kill_seconds: float,
) -> int:
    """Block until ``process`` exits; kill its group and raise on a stop request.

    A child that exits because the stop handler killed its group is reported
    as an interrupt, not as an exit status.
    """

    while True:
        returncode = process.poll()
        if stop_requested is not None and stop_requested():
            terminate_process_group(process, graceful_seconds=graceful_kill_seconds)
            raise interruption(stop_requested)
        if returncode is not None:
            return returncode
        time.sleep(_POLL_SECONDS)


def terminate_process_group(process: subprocess.Popen, *, graceful_seconds: float) -> None:
    """SIGTERM the child's process group, then SIGKILL if it lingers."""

    if process.poll() is not None:
        return
    _signal_group(process, signal.SIGTERM)
    try:
        process.wait(timeout=graceful_seconds)
    except subprocess.TimeoutExpired:
        _signal_group(process, signal.SIGKILL)
        try:
            process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning("Process %d did not exit after SIGKILL", process.pid)


def _signal_group(process: subprocess.Popen, signum: int) -> None:
    try:
        os.killpg(os.getpgid(process.pid), signum)
    except ProcessLookupError:
        return
    except OSError:
        try:
            process.send_signal(signum)
        except OSError:
            return
