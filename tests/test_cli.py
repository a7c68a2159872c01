from __future__ import annotations

import json
import warnings
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from artifact_pipeline import __version__
from artifact_pipeline.events import EventKind, JsonlEventStore, new_event
from artifact_pipeline.main import artifact_pipeline

pytestmark = [
    allure.epic("CLI"),
    allure.feature("Commands"),
]


@pytest.fixture()
def project(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("ARTIFACT_PIPELINE_SESSION", "cli-test")
    monkeypatch.delenv("ARTIFACT_PIPELINE_MAX_PHASES", raising=False)
    pipeline_dir = tmp_path / ".pipeline"
    pipeline_dir.mkdir()
    (pipeline_dir / "workflow.json").write_text(
        json.dumps(
            {
                "steps": [
                    {"name": "note", "backend": "inline", "command": "echo {phase} >> notes.txt"},
                ],
            },
        ),
        "utf-8",
    )
    return tmp_path


def test_version() -> None:
    result = CliRunner().invoke(artifact_pipeline, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_with_phase_budget(project: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        artifact_pipeline,
        ["run", "2", "--project-dir", str(project), "--no-usage-check"],
    )

    assert result.exit_code == 0, result.output
    assert "Attach to tmux session with: tmux attach -t cli-test" in result.output
    assert "=== Phase 2 | Step: note ===" in result.output
    assert (project / "notes.txt").read_text("utf-8").split() == ["1", "2"]
    assert (project / ".pipeline" / "pipeline.log").exists()
    assert (project / "STATUS.md").exists()


def test_position_reports_resume_point(project: Path) -> None:
    store = JsonlEventStore(project / ".pipeline" / "pipeline.jsonl")
    store.append(new_event(EventKind.STEP_START, phase=3, step="note", mode="inline"))

    result = CliRunner().invoke(artifact_pipeline, ["position", "--project-dir", str(project)])

    assert result.exit_code == 0, result.output
    assert result.output.splitlines() == [
        "Resolved: phase=3 step=note status=running",
        "Next: phase=3 step=note (resuming)",
        "Events: 1",
    ]


def test_status_command_writes_summary(project: Path) -> None:
    result = CliRunner().invoke(artifact_pipeline, ["status", "--project-dir", str(project)])

    assert result.exit_code == 0, result.output
    assert f"Status written to {project / 'STATUS.md'}" in result.output
    assert "**Phase:** 1 | **Step:** note" in (project / "STATUS.md").read_text("utf-8")


def test_invalid_workflow_exits_with_failure(project: Path) -> None:
    (project / ".pipeline" / "workflow.json").write_text('{"steps": []}', "utf-8")

    result = CliRunner().invoke(
        artifact_pipeline,
        ["run", "--project-dir", str(project), "--no-usage-check"],
    )

    assert result.exit_code == 1
    assert "Stopped: Workflow must define at least one step" in result.output
    assert "**Step:** CONFIG-FAILED" in (project / "STATUS.md").read_text("utf-8")


def test_position_with_invalid_workflow_is_a_click_error(project: Path) -> None:
    (project / ".pipeline" / "workflow.json").write_text("[]", "utf-8")

    result = CliRunner().invoke(artifact_pipeline, ["position", "--project-dir", str(project)])

    assert result.exit_code == 1
    assert "'steps'" in result.output


def test_help_renders_without_deprecated_settings() -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error", PendingDeprecationWarning)
        result = CliRunner().invoke(artifact_pipeline, ["run", "--help"])

    assert result.exit_code == 0, result.output
    assert "PHASES" in result.output
