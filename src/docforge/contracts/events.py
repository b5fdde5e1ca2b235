"""Observability events for a docforge run.

Emitted by the execution engine onto an EventBus and consumed by CLI
formatters. The engine performs no formatting of its own.
"""

from dataclasses import dataclass

from docforge.contracts.enums import ErrorKind, FallbackStrategy, RunCompletionStatus


@dataclass(frozen=True, slots=True)
class RunStarted:
    """Emitted once the execution order is resolved, before any dispatch.

    Attributes:
        run_id: Unique identifier for this run
        order: Resolved topological order
        max_concurrency: Worker pool size
    """

    run_id: str
    order: tuple[str, ...]
    max_concurrency: int


@dataclass(frozen=True, slots=True)
class TaskStarted:
    """Emitted when a task leaves PENDING and begins validation."""

    run_id: str
    processor_key: str
    backend_id: str


@dataclass(frozen=True, slots=True)
class TaskDegraded:
    """Emitted when a fallback strategy made a task fit."""

    run_id: str
    processor_key: str
    strategy: FallbackStrategy
    reduction_pct: float
    backend_id: str


@dataclass(frozen=True, slots=True)
class TaskCached:
    """Emitted when a cache hit short-circuits the backend call."""

    run_id: str
    processor_key: str
    cache_key: str


@dataclass(frozen=True, slots=True)
class TaskRetrying:
    """Emitted before a transient backend failure is retried."""

    run_id: str
    processor_key: str
    attempt: int
    reason: str


@dataclass(frozen=True, slots=True)
class TaskCompleted:
    """Emitted when a task reaches SUCCEEDED."""

    run_id: str
    processor_key: str
    duration_ms: float
    cache_hit: bool
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TaskFailed:
    """Emitted when a task reaches FAILED."""

    run_id: str
    processor_key: str
    duration_ms: float
    error_kind: ErrorKind
    reason: str


@dataclass(frozen=True, slots=True)
class TaskSkipped:
    """Emitted when a task is skipped because of an upstream failure or cancellation."""

    run_id: str
    processor_key: str
    reason: str


@dataclass(frozen=True, slots=True)
class RunSummary:
    """Emitted once at the end of a run.

    Attributes:
        run_id: Unique identifier for this run
        status: Final run status
        total_tasks: Number of processors in the run
        succeeded: Tasks that reached SUCCEEDED
        failed: Tasks that reached FAILED
        skipped: Tasks that reached SKIPPED
        warned: Succeeded tasks carrying at least one warning
        cached: Succeeded tasks served from cache
        degraded: Succeeded tasks whose content was reduced by fallback
        duration_seconds: Total wall-clock duration
        slow_tasks: Keys of tasks slower than the slow threshold
    """

    run_id: str
    status: RunCompletionStatus
    total_tasks: int
    succeeded: int
    failed: int
    skipped: int
    warned: int
    cached: int
    degraded: int
    duration_seconds: float
    slow_tasks: tuple[str, ...] = ()
