"""Human-readable status summary, regenerated from scratch on every update."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

_PHASE_DIR = re.compile(r"^phase-(\d+)$")


class StatusReporter:
    def __init__(  # noqa: PLR0913
        self,
        *,
        status_path: Path,
        project_dir: Path,
        phases_dir: Path,
        title: str,
        retrospective_name: str,
        source_suffixes: tuple[str, ...],
        test_command: Callable[[], str | None],
    ) -> None:
        self.status_path = status_path
        self.project_dir = project_dir
        self.phases_dir = phases_dir
        self.title = title
        self.retrospective_name = retrospective_name
        self.source_suffixes = source_suffixes
        self.test_command = test_command

    def write(self, phase: int, step: str, *, now: datetime | None = None) -> str:
        timestamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M")  # noqa: DTZ005
        test_command = self.test_command() or "not yet configured"
        lines = [
            f"# {self.title} - Build Status",
            "",
            "## Current",
            f"**Phase:** {phase} | **Step:** {step} | **Updated:** {timestamp}",
            "",
            "## Progress",
            f"- **Source files:** {self.count_source_files()}",
            f"- **Test command:** {test_command}",
            "",
            "## Phase History",
        ]
        lines.extend(
            f"- **{name}:** {title}" for name, title in self.phase_history()
        )
        lines.extend(["", "---", "*Auto-updated by pipeline*", ""])
        content = "\n".join(lines)
        self.status_path.write_text(content, "utf-8")
        return content

    def count_source_files(self) -> int:
        source_dir = self.project_dir / "src"
        if not source_dir.is_dir():
            return 0
        return sum(
            1
            for path in source_dir.rglob("*")
            if path.is_file() and path.suffix in self.source_suffixes
        )

    def phase_history(self) -> list[tuple[str, str]]:
        if not self.phases_dir.is_dir():
            return []
        numbered: list[tuple[int, Path]] = []
        for child in self.phases_dir.iterdir():
            match = _PHASE_DIR.match(child.name)
            if match and child.is_dir():
                numbered.append((int(match.group(1)), child))
        history: list[tuple[str, str]] = []
        for _, directory in sorted(numbered):
            title = first_line(directory / self.retrospective_name)
            if title is not None:
                history.append((directory.name, title.lstrip("#").strip()))
        return history


def first_line(path: Path) -> str | None:
    """First line of a text file, or None if the file does not exist."""

    if not path.is_file():
        return None
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        return handle.readline().rstrip("\r\n")
