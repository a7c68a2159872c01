from __future__ import annotations

import io
from pathlib import Path

import allure
import pytest

from artifact_pipeline.errors import TestGateFailedError
from artifact_pipeline.events import InMemoryEventStore
from artifact_pipeline.gates import OutputVerifier, TestGate, discover_test_command
from artifact_pipeline.workflow import BackendKind, StepDefinition

pytestmark = [
    allure.epic("Pipeline Engine"),
    allure.feature("Gates"),
]

RUNNERS = ("npm", "npx", "yarn", "pnpm", "mix", "pytest", "cargo", "go", "uv", "tox")

BUILD = StepDefinition(
    name="build",
    backend=BackendKind.INTERACTIVE,
    prompt="build",
    test_gate=True,
)


def _conventions(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "CLAUDE.md"
    path.write_text(body, "utf-8")
    return path


def test_discovers_first_runner_line_in_testing_section(tmp_path: Path) -> None:
    path = _conventions(
        tmp_path,
        "# Project\n\nuv run app\n\n## Testing\n\n```bash\n# unit tests\n"
        "uv run pytest -q\npytest tests/\n```\n\n## Deploy\nnpm run deploy\n",
    )

    assert discover_test_command(path, RUNNERS) == "uv run pytest -q"


def test_runner_outside_testing_section_is_ignored(tmp_path: Path) -> None:
    path = _conventions(tmp_path, "## Build\nnpm run build\n## Testing\nRun it by hand.\n")

    assert discover_test_command(path, RUNNERS) is None


def test_heading_match_is_case_insensitive(tmp_path: Path) -> None:
    path = _conventions(tmp_path, "### TESTS\n  cargo test --all\n")

    assert discover_test_command(path, RUNNERS) == "cargo test --all"


def test_missing_conventions_file_means_no_command(tmp_path: Path) -> None:
    assert discover_test_command(tmp_path / "CLAUDE.md", RUNNERS) is None


def _gate(tmp_path: Path, events: InMemoryEventStore, conventions: str | None) -> TestGate:
    path = tmp_path / "CLAUDE.md"
    if conventions is not None:
        path.write_text(conventions, "utf-8")
    return TestGate(
        events=events,
        project_dir=tmp_path,
        conventions_path=path,
        runners=("sh",),
        output_path=tmp_path / ".pipeline" / "test-output.log",
        echo=io.StringIO(),
        graceful_kill_seconds=1.0,
    )


def test_gate_passes_and_tees_output(tmp_path: Path) -> None:
    events = InMemoryEventStore()
    gate = _gate(tmp_path, events, "## Testing\nsh -c 'echo all green'\n")

    assert gate.run(1, BUILD) is True

    assert [event.kind for event in events.scan_all()] == ["test_gate_start", "test_gate_pass"]
    assert events.scan_all()[0].fields["cmd"] == "sh -c 'echo all green'"
    assert "all green" in gate.output_path.read_text("utf-8")
    assert "all green" in gate.echo.getvalue()


def test_gate_failure_is_fatal(tmp_path: Path) -> None:
    events = InMemoryEventStore()
    gate = _gate(tmp_path, events, "## Testing\nsh -c 'exit 3'\n")

    with pytest.raises(TestGateFailedError, match="Tests failing after build step") as info:
        gate.run(4, BUILD)

    assert info.value.exit_code == 3
    failure = events.scan_all()[-1]
    assert failure.kind == "test_gate_fail"
    assert failure.fields["exit_code"] == "3"


def test_gate_without_command_is_skipped(tmp_path: Path) -> None:
    events = InMemoryEventStore()

    assert _gate(tmp_path, events, None).run(1, BUILD) is None

    [skip] = events.scan_all()
    assert skip.kind == "test_gate_skip"
    assert skip.fields["reason"] == "no test command"


def test_ungated_step_records_nothing(tmp_path: Path) -> None:
    events = InMemoryEventStore()
    step = StepDefinition(name="plan", backend=BackendKind.INTERACTIVE, prompt="plan")

    assert _gate(tmp_path, events, "## Testing\nsh -c 'exit 1'\n").run(1, step) is None
    assert events.scan_all() == []


def test_output_verifier_is_advisory(tmp_path: Path) -> None:
    events = InMemoryEventStore()
    verifier = OutputVerifier(events=events, phases_dir=tmp_path)
    step = StepDefinition(
        name="spec",
        backend=BackendKind.INTERACTIVE,
        prompt="spec",
        expected_output="SPEC.md",
    )

    assert verifier.verify(1, step) is False
    (tmp_path / "phase-1").mkdir()
    (tmp_path / "phase-1" / "SPEC.md").write_text("spec", "utf-8")
    assert verifier.verify(1, step) is True

    assert [event.kind for event in events.scan_all()] == ["output_missing", "output_verified"]
    assert events.scan_all()[0].fields["path"] == str(tmp_path / "phase-1" / "SPEC.md")
