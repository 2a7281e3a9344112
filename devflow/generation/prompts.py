"""Prompt rendering for generator backends.

Prompts are Jinja2 templates shipped inside the package, one per artifact
kind plus one for code generation. Rendering uses a sandboxed environment
with ``StrictUndefined`` so a template that references missing context
fails loudly instead of sending a half-empty prompt to every backend.

Example:
    >>> renderer = PromptRenderer()
    >>> prompt = renderer.render_artifact(ArtifactKind.USER_STORY, task=task, context={})
"""

from pathlib import Path
from typing import Any

from jinja2 import FileSystemLoader, StrictUndefined, TemplateNotFound, UndefinedError
from jinja2.sandbox import SandboxedEnvironment

from devflow.enums import ArtifactKind
from devflow.exceptions import ValidationError

CODE_TEMPLATE = "code.md.j2"


class PromptRenderer:
    """Render generation prompts from packaged templates."""

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "templates"

        self.template_dir = template_dir.resolve()
        if not self.template_dir.is_dir():
            raise ValueError(f"Template directory does not exist: {self.template_dir}")

        self.env = SandboxedEnvironment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, **variables: Any) -> str:
        """Render a template by name.

        Raises:
            ValidationError: If the template is missing or references an
                undefined variable
        """
        try:
            template = self.env.get_template(template_name)
            return template.render(**variables)
        except TemplateNotFound as e:
            raise ValidationError(f"Prompt template not found: {template_name}") from e
        except UndefinedError as e:
            raise ValidationError(f"Prompt template {template_name} is missing a variable: {e}") from e

    def render_artifact(self, kind: ArtifactKind, **variables: Any) -> str:
        return self.render(f"{kind.value}.md.j2", **variables)

    def render_code(self, **variables: Any) -> str:
        return self.render(CODE_TEMPLATE, **variables)
