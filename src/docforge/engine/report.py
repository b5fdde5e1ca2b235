# src/docforge/engine/report.py
"""RunReport: per-task outcomes plus aggregates.

The report is the single source of truth handed to callers at the end of a
run. Outcomes are ordered by the resolved topological order, never by
wall-clock completion, so reports are identical across worker-pool sizes.

It separates hard failures (budget exceeded, permanent backend errors,
exhausted retries) from soft degradations (a fallback strategy altered the
content but the task succeeded).
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from docforge.contracts.enums import ErrorKind, FallbackStrategy, RunCompletionStatus, TaskStatus
from docforge.contracts.models import FallbackOutcome, ValidationVerdict


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Terminal record of one task."""

    key: str
    status: TaskStatus
    order_index: int
    duration_ms: float = 0.0
    attempts: int = 0
    backend_id: str = ""
    cache_hit: bool = False
    verdict: ValidationVerdict | None = None
    fallback: FallbackOutcome | None = None
    warnings: tuple[str, ...] = ()
    error_kind: ErrorKind | None = None
    error_message: str | None = None

    @property
    def hard_failure(self) -> bool:
        return self.status == TaskStatus.FAILED

    @property
    def degraded(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED and self.fallback is not None and self.fallback.degraded_content

    @property
    def warned(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED and bool(self.warnings)

    @property
    def strategy_used(self) -> FallbackStrategy:
        return self.fallback.strategy_used if self.fallback is not None else FallbackStrategy.NONE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 3),
            "attempts": self.attempts,
            "backend_id": self.backend_id,
            "cache_hit": self.cache_hit,
            "warnings": list(self.warnings),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
        }
        if self.verdict is not None:
            data["verdict"] = {
                "fits": self.verdict.fits,
                "estimated_tokens": self.verdict.estimated_tokens,
                "available_tokens": self.verdict.available_tokens,
                "utilization_pct": self.verdict.utilization_pct,
            }
        if self.fallback is not None:
            data["fallback"] = {
                "strategy_used": self.fallback.strategy_used.value,
                "strategies_attempted": [s.value for s in self.fallback.strategies_attempted],
                "original_tokens": self.fallback.original_tokens,
                "final_tokens": self.fallback.final_tokens,
                "reduction_pct": self.fallback.reduction_pct,
                "success": self.fallback.success,
            }
        return data


@dataclass(frozen=True, slots=True)
class RunReport:
    """Finalized report of a run."""

    run_id: str
    outcomes: tuple[TaskOutcome, ...]
    total_duration_ms: float
    slow_threshold_ms: float
    slowest_n: int = 5
    cancelled: bool = False
    artifacts: dict[str, str] = field(default_factory=dict, repr=False, compare=False)

    def _count(self, status: TaskStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(TaskStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return self._count(TaskStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(TaskStatus.SKIPPED)

    @property
    def warned(self) -> int:
        return sum(1 for o in self.outcomes if o.warned)

    @property
    def cached(self) -> int:
        return sum(1 for o in self.outcomes if o.cache_hit and o.status == TaskStatus.SUCCEEDED)

    @property
    def hard_failures(self) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.hard_failure]

    @property
    def soft_degradations(self) -> list[TaskOutcome]:
        return [o for o in self.outcomes if o.degraded]

    @property
    def slowest(self) -> list[TaskOutcome]:
        """Slowest executed tasks, longest first; ties in report order."""
        executed = [o for o in self.outcomes if o.status != TaskStatus.SKIPPED]
        return sorted(executed, key=lambda o: (-o.duration_ms, o.order_index))[: self.slowest_n]

    @property
    def slow_tasks(self) -> list[TaskOutcome]:
        """Tasks slower than the slow threshold, in report order."""
        return [o for o in self.outcomes if o.duration_ms > self.slow_threshold_ms]

    @property
    def status(self) -> RunCompletionStatus:
        if self.cancelled:
            return RunCompletionStatus.INTERRUPTED
        if self.failed == 0 and self.skipped == 0:
            return RunCompletionStatus.COMPLETED
        if self.succeeded == 0:
            return RunCompletionStatus.FAILED
        return RunCompletionStatus.PARTIAL

    @property
    def exit_code(self) -> int:
        """0 when no task failed, 1 otherwise."""
        return 0 if self.failed == 0 else 1

    def outcome(self, key: str) -> TaskOutcome:
        for o in self.outcomes:
            if o.key == key:
                return o
        raise KeyError(key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "total_duration_ms": round(self.total_duration_ms, 3),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "warned": self.warned,
            "cached": self.cached,
            "degraded": len(self.soft_degradations),
            "slowest": [o.key for o in self.slowest],
            "slow_tasks": [o.key for o in self.slow_tasks],
            "tasks": [o.to_dict() for o in self.outcomes],
        }


class RunReportBuilder:
    """Collects outcomes from worker threads and finalizes the report."""

    def __init__(self, run_id: str, *, slow_threshold_ms: float, slowest_n: int) -> None:
        self._run_id = run_id
        self._slow_threshold_ms = slow_threshold_ms
        self._slowest_n = slowest_n
        self._outcomes: dict[str, TaskOutcome] = {}
        self._artifacts: dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, outcome: TaskOutcome, artifact: str | None = None) -> None:
        with self._lock:
            if outcome.key in self._outcomes:
                raise ValueError(f"Outcome for '{outcome.key}' already recorded")
            self._outcomes[outcome.key] = outcome
            if artifact is not None:
                self._artifacts[outcome.key] = artifact

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._outcomes

    def build(self, *, total_duration_ms: float, cancelled: bool = False) -> RunReport:
        with self._lock:
            outcomes = tuple(sorted(self._outcomes.values(), key=lambda o: o.order_index))
            artifacts = dict(self._artifacts)
        return RunReport(
            run_id=self._run_id,
            outcomes=outcomes,
            total_duration_ms=total_duration_ms,
            slow_threshold_ms=self._slow_threshold_ms,
            slowest_n=self._slowest_n,
            cancelled=cancelled,
            artifacts=artifacts,
        )
