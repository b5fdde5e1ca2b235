"""Processor handlers: turn a context payload into a prompt and validate output.

Handlers are registered by name through pluggy and resolved once, when the
engine is built. A processor's `handler` field names its handler; the
registry rejects names that are not registered.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from docforge.contracts.errors import PermanentError
from docforge.contracts.models import ProcessorDescriptor
from docforge.plugins.templates import PromptTemplate, TemplateError

# Names a processor template may reference
TEMPLATE_VARIABLES = ("processor", "context")

DEFAULT_TEMPLATE = """\
You are producing the "{{ processor.title }}" document ({{ processor.category }}).
{% if processor.dependencies %}It builds on: {{ processor.dependencies | join(", ") }}.
{% endif %}
Use only the project context below. Write well-structured Markdown.

{{ context }}
"""


class BaseProcessor(ABC):
    """Base class for processor handlers.

    Subclasses set `name` and implement build_prompt(). One instance is
    created per processor per run.
    """

    name: ClassVar[str]

    def __init__(self, descriptor: ProcessorDescriptor) -> None:
        self.descriptor = descriptor

    @property
    @abstractmethod
    def template_version(self) -> str:
        """Identifies the prompt shape; part of every cache key."""

    @abstractmethod
    def build_prompt(self, payload: str) -> str:
        """Render the prompt for a context payload.

        Raises:
            PermanentError: If the prompt cannot be built
        """

    def validate_output(self, text: str) -> str:
        """Check a backend response and return the artifact.

        Raises:
            PermanentError: If the response is unusable
        """
        if not text or not text.strip():
            raise PermanentError(f"Backend returned an empty artifact for '{self.descriptor.key}'")
        return text.strip() + "\n"


class TemplateProcessor(BaseProcessor):
    """Renders a sandboxed Jinja2 template.

    Uses the descriptor's `template` when set, DEFAULT_TEMPLATE otherwise.
    """

    name = "template"

    def __init__(self, descriptor: ProcessorDescriptor) -> None:
        super().__init__(descriptor)
        # TemplateError from a bad template surfaces at engine build time
        self._template = PromptTemplate(descriptor.template or DEFAULT_TEMPLATE, allowed=TEMPLATE_VARIABLES)

    @property
    def template_version(self) -> str:
        return self._template.template_hash

    def build_prompt(self, payload: str) -> str:
        descriptor = self.descriptor
        try:
            return self._template.render(
                processor={
                    "key": descriptor.key,
                    "title": descriptor.display_name,
                    "category": descriptor.category,
                    "complexity": descriptor.complexity.value,
                    "dependencies": sorted(descriptor.dependencies),
                },
                context=payload,
            )
        except TemplateError as e:
            raise PermanentError(f"Prompt for '{descriptor.key}' could not be rendered: {e}") from e
