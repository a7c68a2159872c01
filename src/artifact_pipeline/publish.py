"""Best-effort persistence of the product repository through git."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from artifact_pipeline.errors import run_best_effort
from artifact_pipeline.events import EventKind, EventStore, new_event

logger = logging.getLogger(__name__)


class RepositoryPublisher:
    """Stage, commit and push everything in the project directory."""

    def __init__(
        self,
        *,
        events: EventStore,
        project_dir: Path,
        remote: str = "origin",
        branch: str = "HEAD",
        timeout_seconds: float = 120.0,
    ) -> None:
        self.events = events
        self.project_dir = project_dir
        self.remote = remote
        self.branch = branch
        self.timeout_seconds = timeout_seconds

    def publish(self, message: str, *, phase: int | None = None) -> bool:
        self._git("add", "-A")
        self._git("commit", "-m", message)
        pushed = self._git("push", self.remote, self.branch)
        self.events.append(new_event(EventKind.GIT_PUSH, phase=phase, ok=str(pushed).lower()))
        if pushed:
            logger.info("Pushed to %s %s", self.remote, self.branch)
        return pushed

    def _git(self, *args: str) -> bool:
        def _run() -> bool:
            completed = subprocess.run(  # noqa: S603
                ["git", *args],  # noqa: S607
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
            )
            if completed.returncode != 0:
                logger.warning(
                    "git %s exited with %d: %s",
                    args[0],
                    completed.returncode,
                    completed.stderr.strip(),
                )
            return completed.returncode == 0

        return run_best_effort(f"git {args[0]}", _run, default=False)
