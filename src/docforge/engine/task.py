# src/docforge/engine/task.py
"""GenerationTask: one processor bound to a context slice and a backend.

Tasks carry the only mutable per-processor state of a run. Status changes
go through transition(), which rejects any move the state machine does not
allow and never leaves a terminal state:

    pending -> validating -> (degrading)? -> (cached | running) -> (succeeded | failed)
    pending -> skipped
"""

from __future__ import annotations

from dataclasses import dataclass, field

from docforge.contracts.enums import ErrorKind, TaskStatus
from docforge.contracts.errors import OrchestrationInvariantError
from docforge.contracts.models import (
    BackendProfile,
    ContextSection,
    FallbackOutcome,
    ProcessorDescriptor,
    ValidationVerdict,
)
from docforge.core.context import ContextSlice

_ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.VALIDATING, TaskStatus.SKIPPED}),
    TaskStatus.VALIDATING: frozenset({TaskStatus.DEGRADING, TaskStatus.CACHED, TaskStatus.RUNNING, TaskStatus.FAILED}),
    TaskStatus.DEGRADING: frozenset({TaskStatus.CACHED, TaskStatus.RUNNING, TaskStatus.FAILED}),
    TaskStatus.CACHED: frozenset({TaskStatus.SUCCEEDED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED}),
    TaskStatus.SUCCEEDED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}


@dataclass
class GenerationTask:
    """Mutable execution state for one processor within a run."""

    descriptor: ProcessorDescriptor
    context: ContextSlice
    backend: BackendProfile
    status: TaskStatus = TaskStatus.PENDING
    history: list[TaskStatus] = field(default_factory=lambda: [TaskStatus.PENDING])
    verdict: ValidationVerdict | None = None
    fallback: FallbackOutcome | None = None
    artifact: str | None = None
    cache_key: str | None = None
    cache_hit: bool = False
    attempts: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    warnings: list[str] = field(default_factory=list)
    started_at: float | None = None
    finished_at: float | None = None

    @property
    def key(self) -> str:
        return self.descriptor.key

    @property
    def duration_ms(self) -> float:
        if self.started_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at) * 1000

    def transition(self, target: TaskStatus) -> None:
        """Move to target status.

        Raises:
            OrchestrationInvariantError: If the move is not allowed
        """
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise OrchestrationInvariantError(
                f"Illegal transition for task '{self.key}': {self.status.value} -> {target.value}"
            )
        self.status = target
        self.history.append(target)

    def rebind(self, backend: BackendProfile, payload: str | None = None) -> None:
        """Bind to another backend and, optionally, a reduced payload."""
        self.backend = backend
        if payload is not None and payload != self.context.text:
            self.context = ContextSlice((ContextSection(heading="", body=payload),))

    def fail(self, kind: ErrorKind, message: str) -> None:
        self.transition(TaskStatus.FAILED)
        self.error_kind = kind
        self.error_message = message

    def skip(self, kind: ErrorKind, message: str) -> None:
        self.transition(TaskStatus.SKIPPED)
        self.error_kind = kind
        self.error_message = message
