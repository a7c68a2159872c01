"""Usage introspection in an auxiliary agent session.

Runs beside the pipeline, never inside a step's session, and can never abort
the run: every failure is logged and dropped.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from artifact_pipeline.backend.session import AgentSession
from artifact_pipeline.errors import run_best_effort
from artifact_pipeline.events import EventKind, EventStore, new_event
from artifact_pipeline.polling import sleep_with_stop

logger = logging.getLogger(__name__)

_PERCENT_USED = re.compile(r"(\d{1,3})\s*%\s*used", re.IGNORECASE)
_CAPTURE_LINES = -30


@dataclass(slots=True)
class UsageSnapshot:
    """Captured introspection output."""

    raw: str
    percent_used: list[int]


def parse_usage(raw: str) -> UsageSnapshot:
    percents: list[int] = []
    for match in _PERCENT_USED.finditer(raw):
        value = int(match.group(1))
        if 0 <= value <= 100:  # noqa: PLR2004
            percents.append(value)
    return UsageSnapshot(raw=raw.rstrip("\n"), percent_used=percents)


class UsageProbe:
    """Launches a short-lived agent, issues the usage command, records the screen."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        events: EventStore,
        session: AgentSession,
        usage_command: str = "/usage",
        render_wait_seconds: float = 3.0,
        enabled: bool = True,
        stop_requested: Callable[[], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.events = events
        self.session = session
        self.usage_command = usage_command
        self.render_wait_seconds = render_wait_seconds
        self.enabled = enabled
        self.stop_requested = stop_requested
        self._sleep = sleep

    def check(self, phase: int, step: str) -> UsageSnapshot | None:
        if not self.enabled:
            return None
        return run_best_effort(
            f"usage check ({step})",
            lambda: self._check(phase, step),
            default=None,
        )

    def _check(self, phase: int, step: str) -> UsageSnapshot:
        try:
            self.session.ensure_ready(stop_requested=self.stop_requested)
            self.session.send_command(self.usage_command, self.stop_requested)
            sleep_with_stop(self.render_wait_seconds, self.stop_requested, sleep=self._sleep)
            snapshot = parse_usage(self.session.capture(_CAPTURE_LINES))
        finally:
            run_best_effort(
                f"tear down session {self.session.name}",
                lambda: self.session.tmux.kill_session(self.session.name),
                default=None,
            )

        fields: dict[str, object] = {"usage": snapshot.raw}
        if snapshot.percent_used:
            fields["percent_used"] = ",".join(str(value) for value in snapshot.percent_used)
        self.events.append(new_event(EventKind.USAGE_CHECK, phase=phase, step=step, **fields))
        logger.info("Usage check recorded (%s)", step)
        return snapshot
