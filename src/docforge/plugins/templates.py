"""Sandboxed Jinja2 prompt templates."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from jinja2 import StrictUndefined, TemplateSyntaxError, UndefinedError, meta
from jinja2.exceptions import SecurityError
from jinja2.sandbox import SandboxedEnvironment

from docforge.core.canonical import text_hash


class TemplateError(Exception):
    """Template could not be compiled or rendered (sandbox violations included)."""


class PromptTemplate:
    """Jinja2 template rendered in a sandbox with StrictUndefined.

    A misspelt attribute fails the render instead of producing an empty
    string, and top-level names can be checked against an allow-list when
    the template is built, long before any task runs.

    Example:
        template = PromptTemplate("Write the {{ processor.title }}.\\n\\n{{ context }}", allowed=("processor", "context"))
        prompt = template.render(processor={"title": "Risk Register"}, context="## Scope\\nPilot only")
    """

    def __init__(self, source: str, *, allowed: Iterable[str] | None = None) -> None:
        """Compile a template.

        Args:
            source: Template text
            allowed: Top-level variable names the template may reference;
                None skips the check

        Raises:
            TemplateError: Invalid syntax, or a variable outside `allowed`
        """
        self._source = source
        self._hash = text_hash(source)
        self._env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,  # prompts, not HTML
            keep_trailing_newline=True,
        )
        try:
            ast = self._env.parse(source)
        except TemplateSyntaxError as e:
            raise TemplateError(f"Invalid template syntax: {e}") from e
        self._variables = frozenset(meta.find_undeclared_variables(ast))
        if allowed is not None:
            unknown = sorted(self._variables - set(allowed))
            if unknown:
                raise TemplateError(
                    f"Template references unknown variable(s) {', '.join(unknown)}; available: {', '.join(sorted(allowed))}"
                )
        self._template = self._env.from_string(ast)

    @property
    def template_hash(self) -> str:
        """SHA-256 of the template source."""
        return self._hash

    @property
    def variables(self) -> frozenset[str]:
        """Top-level names the template reads."""
        return self._variables

    def render(self, **variables: Any) -> str:
        """Render with the given variables.

        Raises:
            TemplateError: Undefined variable, sandbox violation or any other render failure
        """
        try:
            return self._template.render(**variables)
        except UndefinedError as e:
            raise TemplateError(f"Undefined variable: {e}") from e
        except SecurityError as e:
            raise TemplateError(f"Sandbox violation: {e}") from e
        except Exception as e:
            raise TemplateError(f"Template rendering failed: {e}") from e
