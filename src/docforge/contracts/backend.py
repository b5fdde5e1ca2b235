"""Generation backend capability consumed by the execution engine.

The engine does not know or care how text is produced. Anything with a
matching generate() satisfies the contract.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class GenerationBackend(Protocol):
    """Text-generation capability.

    Implementations raise TransientError for failures worth retrying and
    PermanentError for everything else. Both live in docforge.contracts.errors.
    """

    def generate(self, prompt: str, max_tokens: int, deadline: float) -> str:
        """Generate an artifact for prompt.

        Args:
            prompt: Fully rendered prompt
            max_tokens: Response budget
            deadline: Absolute time.monotonic() value the call must finish by

        Returns:
            Generated text
        """
        ...
