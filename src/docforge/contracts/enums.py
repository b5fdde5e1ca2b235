"""Status codes, strategies, and kinds used across subsystem boundaries."""

from enum import StrEnum


class Complexity(StrEnum):
    """Declared complexity of a processor.

    Drives the response budget and the preferred context window.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class TaskStatus(StrEnum):
    """Lifecycle status of a GenerationTask.

    Terminal states are SUCCEEDED, FAILED and SKIPPED. CACHED is transient:
    a cache hit moves straight on to SUCCEEDED.
    """

    PENDING = "pending"
    VALIDATING = "validating"
    DEGRADING = "degrading"
    CACHED = "cached"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.SKIPPED})


class FallbackStrategy(StrEnum):
    """Fallback strategies, declared in the order they are attempted."""

    NONE = "none"
    BACKEND_SWITCH = "backend_switch"
    PRIORITIZATION = "prioritization"
    SUMMARIZATION = "summarization"
    CHUNKING = "chunking"


class SectionPriority(StrEnum):
    """Priority tag of a context section.

    REQUIRED sections are never dropped by prioritization.
    """

    REQUIRED = "required"
    NORMAL = "normal"
    LOW = "low"


class ErrorKind(StrEnum):
    """Classification of a task's terminal error for the run report."""

    CONTEXT_BUDGET_EXCEEDED = "context_budget_exceeded"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RETRIES_EXHAUSTED = "retries_exhausted"
    DEPENDENCY_SKIPPED = "dependency_skipped"
    CANCELLED = "cancelled"


class RunCompletionStatus(StrEnum):
    """Final status for RunSummary events."""

    COMPLETED = "completed"
    FAILED = "failed"
    PARTIAL = "partial"
    INTERRUPTED = "interrupted"
