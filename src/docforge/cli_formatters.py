# src/docforge/cli_formatters.py
"""CLI event formatter factories for run output.

Each factory returns a dict mapping event types to handler callables,
suitable for subscribing to an EventBus. Console output is human-readable;
JSON output is one object per line.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import typer

from docforge.contracts.events import (
    RunStarted,
    RunSummary,
    TaskCached,
    TaskCompleted,
    TaskDegraded,
    TaskFailed,
    TaskRetrying,
    TaskSkipped,
    TaskStarted,
)
from docforge.core.events import EventBusProtocol


def _format_duration(seconds: float) -> str:
    return f"{seconds:.2f}s" if seconds < 60 else f"{seconds / 60:.1f}m"


def create_console_formatters(verbose: bool = False) -> dict[type, Callable[..., None]]:
    """Create console formatters for human-readable CLI output.

    Args:
        verbose: Also print task starts and retries
    """

    def _format_run_started(event: RunStarted) -> None:
        typer.echo(f"[RUN] {len(event.order)} processor(s), up to {event.max_concurrency} at a time")

    def _format_task_started(event: TaskStarted) -> None:
        typer.echo(f"  → {event.processor_key} on {event.backend_id}")

    def _format_task_degraded(event: TaskDegraded) -> None:
        typer.echo(
            f"  ⚠ {event.processor_key}: {event.strategy.value} "
            f"(-{event.reduction_pct:.1f}% tokens, backend {event.backend_id})"
        )

    def _format_task_cached(event: TaskCached) -> None:
        typer.echo(f"  ↺ {event.processor_key}: cache hit")

    def _format_task_retrying(event: TaskRetrying) -> None:
        typer.echo(f"  ↻ {event.processor_key}: attempt {event.attempt} failed, retrying ({event.reason})")

    def _format_task_completed(event: TaskCompleted) -> None:
        suffix = f" ({len(event.warnings)} warning(s))" if event.warnings else ""
        typer.echo(f"  ✓ {event.processor_key} in {_format_duration(event.duration_ms / 1000)}{suffix}")

    def _format_task_failed(event: TaskFailed) -> None:
        typer.echo(f"  ✗ {event.processor_key} [{event.error_kind.value}]: {event.reason}", err=True)

    def _format_task_skipped(event: TaskSkipped) -> None:
        typer.echo(f"  - {event.processor_key} skipped: {event.reason}")

    def _format_run_summary(event: RunSummary) -> None:
        status_symbols = {
            "completed": "✓",
            "partial": "⚠",
            "failed": "✗",
            "interrupted": "⏸",
        }
        symbol = status_symbols[event.status.value]
        typer.echo(
            f"\n{symbol} Run {event.status.value.upper()}: "
            f"{event.total_tasks} task(s) | "
            f"✓{event.succeeded} succeeded | "
            f"✗{event.failed} failed | "
            f"-{event.skipped} skipped | "
            f"↺{event.cached} cached | "
            f"⚠{event.degraded} degraded | "
            f"{_format_duration(event.duration_seconds)} total"
        )
        if event.slow_tasks:
            typer.echo(f"  Slow tasks: {', '.join(event.slow_tasks)}")

    formatters: dict[type, Callable[..., None]] = {
        RunStarted: _format_run_started,
        TaskDegraded: _format_task_degraded,
        TaskCached: _format_task_cached,
        TaskCompleted: _format_task_completed,
        TaskFailed: _format_task_failed,
        TaskSkipped: _format_task_skipped,
        RunSummary: _format_run_summary,
    }
    if verbose:
        formatters[TaskStarted] = _format_task_started
        formatters[TaskRetrying] = _format_task_retrying
    return formatters


def create_json_formatters() -> dict[type, Callable[..., None]]:
    """Create JSON formatters for structured CLI output."""

    def _emit(payload: dict[str, object], err: bool = False) -> None:
        typer.echo(json.dumps(payload), err=err)

    def _format_run_started_json(event: RunStarted) -> None:
        _emit(
            {
                "event": "run_started",
                "run_id": event.run_id,
                "order": list(event.order),
                "max_concurrency": event.max_concurrency,
            }
        )

    def _format_task_started_json(event: TaskStarted) -> None:
        _emit({"event": "task_started", "processor_key": event.processor_key, "backend_id": event.backend_id})

    def _format_task_degraded_json(event: TaskDegraded) -> None:
        _emit(
            {
                "event": "task_degraded",
                "processor_key": event.processor_key,
                "strategy": event.strategy.value,
                "reduction_pct": event.reduction_pct,
                "backend_id": event.backend_id,
            }
        )

    def _format_task_cached_json(event: TaskCached) -> None:
        _emit({"event": "task_cached", "processor_key": event.processor_key, "cache_key": event.cache_key})

    def _format_task_retrying_json(event: TaskRetrying) -> None:
        _emit(
            {
                "event": "task_retrying",
                "processor_key": event.processor_key,
                "attempt": event.attempt,
                "reason": event.reason,
            }
        )

    def _format_task_completed_json(event: TaskCompleted) -> None:
        _emit(
            {
                "event": "task_completed",
                "processor_key": event.processor_key,
                "duration_ms": event.duration_ms,
                "cache_hit": event.cache_hit,
                "warnings": list(event.warnings),
            }
        )

    def _format_task_failed_json(event: TaskFailed) -> None:
        _emit(
            {
                "event": "task_failed",
                "processor_key": event.processor_key,
                "duration_ms": event.duration_ms,
                "error_kind": event.error_kind.value,
                "reason": event.reason,
            },
            err=True,
        )

    def _format_task_skipped_json(event: TaskSkipped) -> None:
        _emit({"event": "task_skipped", "processor_key": event.processor_key, "reason": event.reason})

    def _format_run_summary_json(event: RunSummary) -> None:
        _emit(
            {
                "event": "run_completed",
                "run_id": event.run_id,
                "status": event.status.value,
                "total_tasks": event.total_tasks,
                "succeeded": event.succeeded,
                "failed": event.failed,
                "skipped": event.skipped,
                "warned": event.warned,
                "cached": event.cached,
                "degraded": event.degraded,
                "duration_seconds": event.duration_seconds,
                "slow_tasks": list(event.slow_tasks),
            }
        )

    return {
        RunStarted: _format_run_started_json,
        TaskStarted: _format_task_started_json,
        TaskDegraded: _format_task_degraded_json,
        TaskCached: _format_task_cached_json,
        TaskRetrying: _format_task_retrying_json,
        TaskCompleted: _format_task_completed_json,
        TaskFailed: _format_task_failed_json,
        TaskSkipped: _format_task_skipped_json,
        RunSummary: _format_run_summary_json,
    }


def subscribe_formatters(
    event_bus: EventBusProtocol,
    formatters: dict[type, Callable[..., None]],
) -> None:
    """Subscribe all formatters to the event bus."""
    for event_type, handler in formatters.items():
        event_bus.subscribe(event_type, handler)
