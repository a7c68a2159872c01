"""Thin wrapper over the tmux command line."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from artifact_pipeline.errors import DispatchError

logger = logging.getLogger(__name__)


class TmuxError(DispatchError):
    """A tmux command failed."""


class TmuxClient:
    """Runs ``tmux`` subcommands synchronously."""

    def __init__(self, executable: str = "tmux", timeout_seconds: float = 15.0) -> None:
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    def has_session(self, name: str) -> bool:
        return self._run("has-session", "-t", name, check=False).returncode == 0

    def new_session(self, name: str, cwd: Path) -> None:
        self._run("new-session", "-d", "-s", name, "-c", str(cwd))
        logger.info("Created tmux session: %s", name)

    def kill_session(self, name: str) -> None:
        self._run("kill-session", "-t", name, check=False)

    def send_keys(self, target: str, *keys: str) -> None:
        self._run("send-keys", "-t", target, *keys)

    def capture_pane(self, target: str, start_line: int = -5) -> str:
        completed = self._run("capture-pane", "-t", target, "-p", "-S", str(start_line))
        return completed.stdout

    def load_buffer(self, path: Path) -> None:
        self._run("load-buffer", str(path))

    def paste_buffer(self, target: str) -> None:
        self._run("paste-buffer", "-t", target)

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = [self.executable, *args]
        try:
            completed = subprocess.run(  # noqa: S603
                command,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as error:
            raise TmuxError(f"tmux executable not found: {self.executable}") from error
        except subprocess.TimeoutExpired as error:
            raise TmuxError(f"tmux {args[0]} timed out") from error
        if check and completed.returncode != 0:
            raise TmuxError(
                f"tmux {args[0]} failed (exit {completed.returncode}): {completed.stderr.strip()}",
            )
        return completed
