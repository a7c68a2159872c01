from __future__ import annotations

from datetime import datetime
from pathlib import Path

import allure

from artifact_pipeline.status import StatusReporter, first_line

pytestmark = [
    allure.epic("Reporting"),
    allure.feature("Status Summary"),
]


def _reporter(tmp_path: Path, test_command: str | None = None) -> StatusReporter:
    return StatusReporter(
        status_path=tmp_path / "STATUS.md",
        project_dir=tmp_path,
        phases_dir=tmp_path / "docs" / "phases",
        title="Demo",
        retrospective_name="REFLECTIONS.md",
        source_suffixes=(".py", ".ts"),
        test_command=lambda: test_command,
    )


def test_status_summary_layout(tmp_path: Path) -> None:
    source = tmp_path / "src" / "pkg"
    source.mkdir(parents=True)
    (source / "a.py").write_text("", "utf-8")
    (source / "b.ts").write_text("", "utf-8")
    (source / "notes.txt").write_text("", "utf-8")
    for number, title in [(10, "# Phase ten wrap-up"), (2, "Second"), (1, "First")]:
        phase_dir = tmp_path / "docs" / "phases" / f"phase-{number}"
        phase_dir.mkdir(parents=True)
        (phase_dir / "REFLECTIONS.md").write_text(f"{title}\nmore", "utf-8")
    (tmp_path / "docs" / "phases" / "phase-3").mkdir()

    content = _reporter(tmp_path, "uv run pytest").write(
        3,
        "build",
        now=datetime(2026, 5, 1, 9, 30),  # noqa: DTZ001
    )

    assert content == (tmp_path / "STATUS.md").read_text("utf-8")
    assert content.splitlines() == [
        "# Demo - Build Status",
        "",
        "## Current",
        "**Phase:** 3 | **Step:** build | **Updated:** 2026-05-01 09:30",
        "",
        "## Progress",
        "- **Source files:** 2",
        "- **Test command:** uv run pytest",
        "",
        "## Phase History",
        "- **phase-1:** First",
        "- **phase-2:** Second",
        "- **phase-10:** Phase ten wrap-up",
        "",
        "---",
        "*Auto-updated by pipeline*",
    ]


def test_status_on_empty_project(tmp_path: Path) -> None:
    content = _reporter(tmp_path).write(1, "spec")

    assert "- **Source files:** 0" in content
    assert "- **Test command:** not yet configured" in content


def test_first_line(tmp_path: Path) -> None:
    path = tmp_path / "REFLECTIONS.md"
    assert first_line(path) is None

    path.write_text("PROJECT COMPLETE\r\nrest", "utf-8")

    assert first_line(path) == "PROJECT COMPLETE"
