"""Prompt rendering from static templates."""

from __future__ import annotations

from pathlib import Path

from artifact_pipeline.errors import PromptTemplateError

PHASE_PLACEHOLDER = "{{PHASE}}"
PREV_REFLECTIONS_PLACEHOLDER = "{{PREV_REFLECTIONS}}"

SENTINEL_INSTRUCTION = (
    "\n\n---\n"
    "When you have completed ALL tasks above, run this command as your FINAL action:\n"
    "`touch {sentinel}`\n"
)


class PromptBuilder:
    """Loads ``<prompts_dir>/<ref>.md`` and fills the fixed placeholder set."""

    def __init__(self, prompts_dir: Path) -> None:
        self.prompts_dir = prompts_dir

    def template_path(self, template_ref: str) -> Path:
        return self.prompts_dir / f"{template_ref}.md"

    def render(self, phase: int, template_ref: str, prior_artifact: str) -> str:
        path = self.template_path(template_ref)
        if not path.is_file():
            raise PromptTemplateError(f"Prompt file not found: {path}")
        try:
            template = path.read_text("utf-8")
        except OSError as error:
            raise PromptTemplateError(f"Cannot read prompt file {path}: {error}") from error
        return render_template(template, phase=phase, prior_artifact=prior_artifact)


def render_template(template: str, *, phase: int, prior_artifact: str) -> str:
    return template.replace(PHASE_PLACEHOLDER, str(phase)).replace(
        PREV_REFLECTIONS_PLACEHOLDER,
        prior_artifact,
    )


def prior_artifact_pointer(phases_dir: Path, phase: int, retrospective_name: str) -> str:
    """Pointer to the previous phase's retrospective, or ``""`` if there is none."""

    if phase <= 1:
        return ""
    previous = phases_dir / f"phase-{phase - 1}" / retrospective_name
    if not previous.is_file():
        return ""
    return f"Previous phase reflections (read this file): {previous}"


def with_sentinel_instruction(prompt: str, sentinel: Path) -> str:
    return prompt.rstrip("\n") + SENTINEL_INSTRUCTION.format(sentinel=sentinel)
