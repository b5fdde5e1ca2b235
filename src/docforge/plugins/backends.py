"""Built-in generation backends.

Real text-generation services live outside docforge and plug in through the
docforge_get_backends hook. The echo backend ships so that runs, plans and
tests work offline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from docforge.contracts.errors import PermanentError


class BaseBackend(ABC):
    """Base class for backend plugins.

    Instances satisfy the GenerationBackend protocol.
    """

    name: ClassVar[str]

    def __init__(self, options: dict[str, Any] | None = None) -> None:
        self.options = dict(options or {})

    @abstractmethod
    def generate(self, prompt: str, max_tokens: int, deadline: float) -> str:
        """Generate text for prompt within max_tokens before deadline."""


class EchoBackend(BaseBackend):
    """Deterministic offline backend.

    Returns a Markdown artifact titled from the prompt's first line, followed
    by the prompt body truncated to roughly max_tokens.

    Options:
        heading: Heading prefix for the artifact (default "#")
        chars_per_token: Used to size the truncation (default 4)
    """

    name = "echo"

    def generate(self, prompt: str, max_tokens: int, deadline: float) -> str:
        if max_tokens <= 0:
            raise PermanentError("echo backend received no response budget")
        heading = str(self.options.get("heading", "#"))
        chars_per_token = float(self.options.get("chars_per_token", 4))
        first, _, rest = prompt.strip().partition("\n")
        body = rest.strip()[: int(max_tokens * chars_per_token)]
        return f"{heading} {first.strip()}\n\n{body}\n"
