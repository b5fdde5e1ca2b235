"""Error taxonomy for docforge runs.

Configuration-time errors (ConfigError, CycleError) abort a run before any
task executes. Task-level errors are captured per task in the RunReport and
never abort independent tasks.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ConfigIssue:
    """One problem found while loading a processor registry.

    Attributes:
        location: Entry key, or "entry[<index>]" when the key itself is unusable
        message: Human-readable description of the problem
    """

    location: str
    message: str

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class ConfigError(Exception):
    """Raised when a registry document is invalid.

    Carries every issue found in the batch, not just the first, so that a
    maintainer can fix all declarations in one pass.
    """

    def __init__(self, issues: list[ConfigIssue]) -> None:
        self.issues = tuple(issues)
        lines = "\n".join(f"  - {issue}" for issue in self.issues)
        super().__init__(f"Invalid processor registry ({len(self.issues)} issue(s)):\n{lines}")


class CycleError(Exception):
    """Raised when processor dependencies form a cycle.

    Attributes:
        cycle: Keys forming the minimal cycle, starting at the smallest key.
            Each key depends on the next; the last depends on the first.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = tuple(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join([*self.cycle, self.cycle[0]])}")


class OrchestrationInvariantError(Exception):
    """Raised when the engine detects an impossible state transition.

    This is a bug in docforge, never a user error.
    """


class GenerationError(Exception):
    """Base class for errors raised by a generation backend."""

    retryable: bool = False


class TransientError(GenerationError):
    """Backend failure that may succeed on retry (rate limit, network blip)."""

    retryable = True


class PermanentError(GenerationError):
    """Backend failure that will not succeed on retry (bad request, empty output)."""

    retryable = False


class BackendTimeoutError(TransientError):
    """Backend call exceeded its per-call deadline."""

    def __init__(self, backend_id: str, timeout_seconds: float) -> None:
        self.backend_id = backend_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Backend '{backend_id}' did not respond within {timeout_seconds:.2f}s")


class ContextBudgetExceeded(Exception):
    """Raised when every fallback strategy failed to fit a task's context."""

    def __init__(self, processor_key: str, estimated_tokens: int, available_tokens: int) -> None:
        self.processor_key = processor_key
        self.estimated_tokens = estimated_tokens
        self.available_tokens = available_tokens
        super().__init__(
            f"Context for '{processor_key}' needs {estimated_tokens} tokens "
            f"but only {available_tokens} are available after all fallback strategies"
        )


class DependencySkipped(Exception):
    """Derived status for tasks whose upstream failed.

    Not a true error: it is the expected consequence of an upstream failure.
    """

    def __init__(self, processor_key: str, failed_dependency: str) -> None:
        self.processor_key = processor_key
        self.failed_dependency = failed_dependency
        super().__init__(f"Skipped '{processor_key}': dependency '{failed_dependency}' did not succeed")


class RunCancelled(Exception):
    """Raised inside a task when the run is cancelled during retry backoff."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Run cancelled: {reason}")
