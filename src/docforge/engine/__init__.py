# src/docforge/engine/__init__.py
"""Execution engine: task state machine, retry, cancellation and the run report."""

from docforge.engine.cancellation import CancellationToken, cancel_on_signals
from docforge.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from docforge.engine.orchestrator import (
    ExecutionEngine,
    TaskPreview,
    build_backend_pool,
    build_result_cache,
    default_plugin_manager,
)
from docforge.engine.report import RunReport, RunReportBuilder, TaskOutcome
from docforge.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager, is_transient
from docforge.engine.task import GenerationTask

__all__ = [
    "DEFAULT_CLOCK",
    "CancellationToken",
    "Clock",
    "ExecutionEngine",
    "GenerationTask",
    "MaxRetriesExceeded",
    "MockClock",
    "RetryConfig",
    "RetryManager",
    "RunReport",
    "RunReportBuilder",
    "SystemClock",
    "TaskOutcome",
    "TaskPreview",
    "build_backend_pool",
    "build_result_cache",
    "cancel_on_signals",
    "default_plugin_manager",
    "is_transient",
]
