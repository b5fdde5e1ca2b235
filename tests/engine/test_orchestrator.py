# tests/engine/test_orchestrator.py
"""Tests for ExecutionEngine: ordering, failure isolation, retries, cache and fallback."""

import threading
import time
from pathlib import Path

import pytest

from docforge.contracts.enums import ErrorKind, FallbackStrategy, RunCompletionStatus, TaskStatus
from docforge.contracts.errors import ConfigError, CycleError, PermanentError, TransientError
from docforge.contracts.events import (
    RunStarted,
    RunSummary,
    TaskCached,
    TaskCompleted,
    TaskDegraded,
    TaskFailed,
    TaskRetrying,
    TaskSkipped,
)
from docforge.core.backends import BackendPool
from docforge.core.cache import CacheEntry, InMemoryCacheStore, ResultCache
from docforge.core.config import BackendSettings, BudgetSettings, CacheSettings, DocforgeSettings
from docforge.core.context import ProjectContext
from docforge.core.events import RecordingEventBus
from docforge.engine.cancellation import CancellationToken
from docforge.engine.clock import MockClock
from docforge.engine.orchestrator import ExecutionEngine, build_backend_pool, build_result_cache
from docforge.engine.retry import RetryConfig
from docforge.plugins.manager import PluginManager
from docforge.plugins.processors import TemplateProcessor
from tests.conftest import NO_DELAY_RETRY, ScriptedBackend, make_engine, make_pool, make_registry

CHAIN = [
    {"key": "charter", "category": "project-charter"},
    {"key": "risk", "dependencies": ["charter"]},
    {"key": "plan", "dependencies": ["charter", "risk"]},
]

PROJECT = """\
## Overview
Replace the legacy customer portal.

## Requirements
Users can reset passwords.
"""


class _PromptCrashProcessor(TemplateProcessor):
    def build_prompt(self, payload: str) -> str:
        raise ValueError("handler bug")


class _OutputCrashProcessor(TemplateProcessor):
    def validate_output(self, text: str) -> str:
        return {"title": text}["summary"]


class _FailingStore(InMemoryCacheStore):
    """Store whose disk is full for one processor, or unreadable altogether."""

    def __init__(self, *, fail_put_for: str | None = None, fail_get: bool = False) -> None:
        super().__init__()
        self._fail_put_for = fail_put_for
        self._fail_get = fail_get

    def get(self, key: str) -> CacheEntry | None:
        if self._fail_get:
            raise PermissionError("permission denied")
        return super().get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        if entry.processor_key == self._fail_put_for:
            raise OSError("disk full")
        super().put(key, entry)


class TestOrdering:
    """Execution order and artifact hand-off."""

    def test_runs_in_dependency_order(self, scripted_backend: ScriptedBackend) -> None:
        engine = make_engine(CHAIN, backend=scripted_backend, max_concurrency=1)

        report = engine.run(ProjectContext.from_markdown(PROJECT))

        assert engine.order == ("charter", "risk", "plan")
        assert [o.key for o in report.outcomes] == ["charter", "risk", "plan"]
        assert [title for title, _ in scripted_backend.calls] == ["charter", "risk", "plan"]
        assert report.status == RunCompletionStatus.COMPLETED
        assert report.exit_code == 0

    def test_dependency_artifacts_reach_dependents(self) -> None:
        prompts: dict[str, str] = {}
        backend = ScriptedBackend(
            responses={"charter": "# Charter\n\nCHARTER-MARKER\n"},
            on_call=lambda title, prompt: prompts.__setitem__(title, prompt),
        )
        engine = make_engine(CHAIN, backend=backend)

        report = engine.run(ProjectContext.from_markdown(PROJECT))

        assert "CHARTER-MARKER" in prompts["risk"]
        assert "CHARTER-MARKER" in prompts["plan"]
        assert "## Requirements" in prompts["charter"]
        assert report.artifacts["charter"] == "# Charter\n\nCHARTER-MARKER\n"

    def test_outcomes_identical_across_pool_sizes(self) -> None:
        entries = [
            {"key": "root"},
            {"key": "left", "dependencies": ["root"]},
            {"key": "right", "dependencies": ["root"]},
            {"key": "sink", "dependencies": ["left", "right"]},
            {"key": "solo"},
            {"key": "broken"},
            {"key": "after-broken", "dependencies": ["broken"]},
        ]
        failures = {"broken": [PermanentError("bad request")]}
        context = ProjectContext.from_markdown(PROJECT)

        serial = make_engine(entries, backend=ScriptedBackend(failures=failures), max_concurrency=1).run(context)
        parallel = make_engine(entries, backend=ScriptedBackend(failures=failures), max_concurrency=4).run(context)

        def summary(report: object) -> list[tuple[str, TaskStatus, ErrorKind | None]]:
            return [(o.key, o.status, o.error_kind) for o in report.outcomes]  # type: ignore[attr-defined]

        assert summary(serial) == summary(parallel)
        assert serial.artifacts == parallel.artifacts


class TestConcurrency:
    """Independent tasks overlap, up to max_concurrency at a time."""

    def test_independent_tasks_run_in_parallel(self) -> None:
        # Each call waits for the other; run one at a time and the barrier breaks
        barrier = threading.Barrier(2, timeout=5.0)
        backend = ScriptedBackend(on_call=lambda title, prompt: barrier.wait())
        engine = make_engine([{"key": "a"}, {"key": "b"}], backend=backend, max_concurrency=2)

        report = engine.run()

        assert report.outcome("a").status == TaskStatus.SUCCEEDED
        assert report.outcome("b").status == TaskStatus.SUCCEEDED

    def test_in_flight_calls_never_exceed_max_concurrency(self) -> None:
        lock = threading.Lock()
        in_flight = 0
        peak = 0
        barrier = threading.Barrier(2, timeout=5.0)

        def track(title: str, prompt: str) -> None:
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            barrier.wait()
            time.sleep(0.02)
            with lock:
                in_flight -= 1

        backend = ScriptedBackend(on_call=track)
        entries = [{"key": f"doc-{i}"} for i in range(6)]
        engine = make_engine(entries, backend=backend, max_concurrency=2)

        report = engine.run()

        assert report.succeeded == 6
        assert peak == 2
        assert in_flight == 0

    def test_dependents_wait_for_parallel_dependencies(self) -> None:
        barrier = threading.Barrier(2, timeout=5.0)
        backend = ScriptedBackend(on_call=lambda title, prompt: barrier.wait() if title in ("a", "b") else None)
        entries = [{"key": "a"}, {"key": "b"}, {"key": "c", "dependencies": ["a", "b"]}]
        engine = make_engine(entries, backend=backend, max_concurrency=3)

        report = engine.run()

        assert report.status == RunCompletionStatus.COMPLETED
        assert [title for title, _ in backend.calls][-1] == "c"


class TestFailureIsolation:
    """A failure skips descendants and nothing else."""

    def test_permanent_failure_skips_transitive_dependents(self) -> None:
        backend = ScriptedBackend(failures={"a": [PermanentError("bad request")]})
        entries = [
            {"key": "a"},
            {"key": "b", "dependencies": ["a"]},
            {"key": "c", "dependencies": ["b"]},
            {"key": "d"},
        ]
        engine = make_engine(entries, backend=backend)

        report = engine.run()

        assert report.outcome("a").status == TaskStatus.FAILED
        assert report.outcome("a").error_kind == ErrorKind.PERMANENT
        assert report.outcome("b").status == TaskStatus.SKIPPED
        assert report.outcome("b").error_kind == ErrorKind.DEPENDENCY_SKIPPED
        assert report.outcome("c").error_message == "Skipped 'c': dependency 'a' did not succeed"
        assert report.outcome("d").status == TaskStatus.SUCCEEDED
        assert backend.calls_for("b") == 0
        assert backend.calls_for("c") == 0
        assert report.status == RunCompletionStatus.PARTIAL
        assert report.exit_code == 1

    def test_unexpected_backend_exception_is_permanent(self) -> None:
        backend = ScriptedBackend(failures={"a": [RuntimeError("socket closed")]})
        engine = make_engine([{"key": "a"}], backend=backend)

        outcome = engine.run().outcome("a")

        assert outcome.error_kind == ErrorKind.PERMANENT
        assert "raised RuntimeError: socket closed" in (outcome.error_message or "")
        assert outcome.attempts == 1

    def test_empty_response_is_permanent(self) -> None:
        backend = ScriptedBackend(responses={"a": "   "})
        engine = make_engine([{"key": "a"}], backend=backend)

        outcome = engine.run().outcome("a")

        assert outcome.error_kind == ErrorKind.PERMANENT
        assert "empty artifact" in (outcome.error_message or "")

    def test_no_available_backend(self) -> None:
        pool = make_pool()
        pool.mark_unavailable("main")
        engine = make_engine([{"key": "a"}], pool=pool)

        outcome = engine.run().outcome("a")

        assert outcome.status == TaskStatus.FAILED
        assert outcome.error_message == "No generation backend is available"

    def test_tripped_backend_unavailable_to_later_tasks(self) -> None:
        backend = ScriptedBackend(failures={"a": [PermanentError("bad request")]})
        pool = make_pool(default=backend, max_consecutive_failures=1)
        engine = make_engine([{"key": "a"}, {"key": "b"}], pool=pool, max_concurrency=1)

        report = engine.run()

        assert pool.is_available("main") is False
        assert report.outcome("b").error_message == "No generation backend is available"
        assert backend.calls_for("b") == 0

    def test_backend_tripped_in_one_run_is_retried_in_the_next(self) -> None:
        backend = ScriptedBackend(failures={"a": [PermanentError("bad request")]})
        pool = make_pool(default=backend, max_consecutive_failures=1)
        engine = make_engine([{"key": "a"}], pool=pool)

        first = engine.run()
        tripped_between_runs = pool.is_available("main")
        second = engine.run()

        assert first.outcome("a").status == TaskStatus.FAILED
        assert tripped_between_runs is False
        assert second.outcome("a").status == TaskStatus.SUCCEEDED
        assert backend.calls_for("a") == 2

    def test_crashing_handler_fails_only_its_own_task(self, plugin_manager: PluginManager) -> None:
        registry = make_registry(
            [
                {"key": "alpha"},
                {"key": "beta"},
                {"key": "gamma", "dependencies": ["alpha"]},
            ]
        )
        handlers = plugin_manager.create_handlers(registry)
        handlers["alpha"] = _PromptCrashProcessor(registry["alpha"])
        backend = ScriptedBackend()
        engine = ExecutionEngine(registry, make_pool(default=backend), handlers, retry_config=NO_DELAY_RETRY)

        report = engine.run()

        assert report.outcome("alpha").status == TaskStatus.FAILED
        assert report.outcome("alpha").error_kind == ErrorKind.PERMANENT
        assert report.outcome("alpha").error_message == "ValueError: handler bug"
        assert report.outcome("gamma").status == TaskStatus.SKIPPED
        assert report.outcome("beta").status == TaskStatus.SUCCEEDED
        assert backend.calls_for("alpha") == 0

    def test_crashing_output_validation_fails_the_task(self, plugin_manager: PluginManager) -> None:
        registry = make_registry([{"key": "alpha"}, {"key": "beta"}])
        handlers = plugin_manager.create_handlers(registry)
        handlers["alpha"] = _OutputCrashProcessor(registry["alpha"])
        engine = ExecutionEngine(registry, make_pool(), handlers, retry_config=NO_DELAY_RETRY)

        report = engine.run()

        assert report.outcome("alpha").error_message == "KeyError: 'summary'"
        assert report.outcome("beta").status == TaskStatus.SUCCEEDED
        assert report.status == RunCompletionStatus.PARTIAL


class TestRetries:
    """Transient errors, exhaustion and timeouts."""

    def test_transient_errors_retried_then_succeed(self, event_bus: RecordingEventBus) -> None:
        backend = ScriptedBackend(failures={"a": [TransientError("rate limited"), TransientError("rate limited")]})
        engine = make_engine([{"key": "a"}], backend=backend, event_bus=event_bus)

        outcome = engine.run().outcome("a")

        assert outcome.status == TaskStatus.SUCCEEDED
        assert outcome.attempts == 3
        assert [e.attempt for e in event_bus.of_type(TaskRetrying)] == [1, 2]

    def test_retries_exhausted(self) -> None:
        backend = ScriptedBackend(failures={"a": [TransientError("rate limited")] * 3})
        engine = make_engine([{"key": "a"}, {"key": "b", "dependencies": ["a"]}], backend=backend)

        report = engine.run()

        assert report.outcome("a").error_kind == ErrorKind.RETRIES_EXHAUSTED
        assert report.outcome("a").error_message == "3 attempt(s) failed; last error: rate limited"
        assert report.outcome("b").status == TaskStatus.SKIPPED

    def test_backend_timeout_is_transient(self) -> None:
        release = threading.Event()
        backend = ScriptedBackend(on_call=lambda title, prompt: release.wait(5.0))
        engine = make_engine(
            [{"key": "a"}],
            backend=backend,
            retry_config=RetryConfig.no_retry(),
            backend_timeout_seconds=0.05,
        )

        try:
            outcome = engine.run().outcome("a")
        finally:
            release.set()

        assert outcome.error_kind == ErrorKind.RETRIES_EXHAUSTED
        assert "did not respond within 0.05s" in (outcome.error_message or "")
        assert engine.pool.health()[0].total_failures == 1


class TestCancellation:
    """Cooperative cancellation."""

    def test_cancel_stops_dispatch(self) -> None:
        token = CancellationToken()
        backend = ScriptedBackend(on_call=lambda title, prompt: token.cancel("user requested") if title == "a" else None)
        engine = make_engine([{"key": "a"}, {"key": "b"}, {"key": "c"}], backend=backend, max_concurrency=1)

        report = engine.run(cancellation=token)

        assert report.outcome("a").status == TaskStatus.SUCCEEDED
        assert report.outcome("b").status == TaskStatus.SKIPPED
        assert report.outcome("b").error_kind == ErrorKind.CANCELLED
        assert report.outcome("c").error_message == "Run cancelled before dispatch: user requested"
        assert report.status == RunCompletionStatus.INTERRUPTED
        assert backend.call_count == 1

    def test_cancel_during_backoff_fails_task(self) -> None:
        token = CancellationToken()

        def cancel_then_fail(title: str, prompt: str) -> None:
            token.cancel("user requested")

        backend = ScriptedBackend(failures={"a": [TransientError("rate limited")]}, on_call=cancel_then_fail)
        engine = make_engine([{"key": "a"}], backend=backend)

        outcome = engine.run(cancellation=token).outcome("a")

        assert outcome.status == TaskStatus.FAILED
        assert outcome.error_kind == ErrorKind.CANCELLED
        assert backend.call_count == 1


class TestCache:
    """Memoized artifacts across runs."""

    def test_second_run_served_from_cache(self, event_bus: RecordingEventBus) -> None:
        backend = ScriptedBackend()
        cache = ResultCache(InMemoryCacheStore())
        engine = make_engine(CHAIN, backend=backend, cache=cache, event_bus=event_bus)
        context = ProjectContext.from_markdown(PROJECT)

        first = engine.run(context)
        calls_after_first = backend.call_count
        second = engine.run(context)

        assert calls_after_first == 3
        assert backend.call_count == 3
        assert all(o.cache_hit for o in second.outcomes)
        assert second.cached == 3
        assert second.artifacts == first.artifacts
        assert len(event_bus.of_type(TaskCached)) == 3

    def test_entries_stamped_with_engine_clock(self) -> None:
        clock = MockClock()
        backend = ScriptedBackend(on_call=lambda title, prompt: clock.advance(2.5))
        cache = ResultCache(InMemoryCacheStore())
        engine = make_engine([{"key": "a"}], backend=backend, cache=cache, clock=clock)

        report = engine.run(ProjectContext.from_markdown(PROJECT))

        assert report.outcomes[0].duration_ms == 2500.0
        [(_, entry)] = list(cache.store.entries())
        assert entry.created_at == "2026-01-01T00:00:02.500000+00:00"

    def test_changed_context_misses(self) -> None:
        backend = ScriptedBackend()
        engine = make_engine([{"key": "a"}], backend=backend, cache=ResultCache(InMemoryCacheStore()))

        engine.run(ProjectContext.from_markdown(PROJECT))
        engine.run(ProjectContext.from_markdown(PROJECT + "\n## Budget\nOne million\n"))

        assert backend.call_count == 2

    def test_changed_template_evicts_stale_entry(self) -> None:
        cache = ResultCache(InMemoryCacheStore())
        backend = ScriptedBackend()

        make_engine([{"key": "a"}], backend=backend, cache=cache).run()
        make_engine([{"key": "a", "template": "Write it.\n{{ context }}"}], backend=backend, cache=cache).run()

        assert backend.call_count == 2
        assert len(list(cache.store.entries())) == 1

    def test_cache_version_bump_misses(self) -> None:
        cache = ResultCache(InMemoryCacheStore())
        backend = ScriptedBackend()

        make_engine([{"key": "a"}], backend=backend, cache=cache, cache_version="1").run()
        make_engine([{"key": "a"}], backend=backend, cache=cache, cache_version="2").run()

        assert backend.call_count == 2

    def test_failed_cache_write_still_produces_artifact(self) -> None:
        cache = ResultCache(_FailingStore(fail_put_for="alpha"))
        engine = make_engine([{"key": "alpha"}, {"key": "beta"}], cache=cache)

        report = engine.run(ProjectContext.from_markdown(PROJECT))

        assert report.outcome("alpha").status == TaskStatus.SUCCEEDED
        assert report.outcome("beta").status == TaskStatus.SUCCEEDED
        assert "Cache write failed: disk full" in report.outcome("alpha").warnings
        assert report.artifacts["alpha"]
        assert {entry.processor_key for _, entry in cache.store.entries()} == {"beta"}

    def test_failed_cache_read_treated_as_miss(self) -> None:
        backend = ScriptedBackend()
        cache = ResultCache(_FailingStore(fail_get=True))
        engine = make_engine([{"key": "alpha"}, {"key": "beta"}], backend=backend, cache=cache)

        report = engine.run(ProjectContext.from_markdown(PROJECT))

        assert report.status == RunCompletionStatus.COMPLETED
        assert backend.call_count == 2
        assert "Cache read failed: permission denied" in report.outcome("alpha").warnings


class TestBudgetAndFallback:
    """Validation, degradation and budget failures inside a run."""

    def test_backend_switch_recorded(self, event_bus: RecordingEventBus) -> None:
        backend = ScriptedBackend()
        pool = make_pool({"small": (8_000, 1.0), "large": (32_000, 3.0)}, default=backend, default_backend="small")
        engine = make_engine([{"key": "srs", "estimatedTokens": 9_000}], pool=pool, event_bus=event_bus)

        outcome = engine.run().outcome("srs")

        assert outcome.status == TaskStatus.SUCCEEDED
        assert outcome.backend_id == "large"
        assert outcome.strategy_used == FallbackStrategy.BACKEND_SWITCH
        assert outcome.degraded is False
        degraded = event_bus.of_type(TaskDegraded)
        assert [(e.strategy, e.backend_id) for e in degraded] == [(FallbackStrategy.BACKEND_SWITCH, "large")]

    def test_budget_exceeded_fails_and_skips_dependents(self) -> None:
        backend = ScriptedBackend()
        pool = make_pool({"small": 8_000}, default=backend)
        entries = [{"key": "srs", "estimatedTokens": 20_000}, {"key": "design", "dependencies": ["srs"]}]
        engine = make_engine(entries, pool=pool)

        report = engine.run()

        srs = report.outcome("srs")
        assert srs.error_kind == ErrorKind.CONTEXT_BUDGET_EXCEEDED
        assert srs.error_message == (
            "Context for 'srs' needs 20000 tokens but only 7200 are available after all fallback strategies"
        )
        assert srs.fallback is not None and srs.fallback.success is False
        assert report.outcome("design").status == TaskStatus.SKIPPED
        assert backend.call_count == 0

    def test_fitting_task_above_escalation_proceeds_with_warning(self) -> None:
        backend = ScriptedBackend()
        pool = make_pool({"small": 8_000}, default=backend)
        engine = make_engine(
            [{"key": "srs", "estimatedTokens": 7_600}],
            pool=pool,
            budget=BudgetSettings(safety_margin=1.0),
        )

        outcome = engine.run().outcome("srs")

        assert outcome.status == TaskStatus.SUCCEEDED
        assert "No fallback strategy reduced utilization below the escalation threshold" in outcome.warnings
        assert backend.calls == [("srs", 400)]

    def test_response_budget_passed_to_backend(self) -> None:
        backend = ScriptedBackend()
        engine = make_engine([{"key": "a", "complexity": "high"}], backend=backend)

        engine.run()

        assert backend.calls == [("a", 4_096)]

    def test_preview_reports_verdicts_without_calls(self) -> None:
        backend = ScriptedBackend()
        pool = make_pool({"small": 8_000}, default=backend)
        engine = make_engine(CHAIN + [{"key": "big", "estimatedTokens": 9_000}], pool=pool)

        previews = {p.key: p for p in engine.preview(ProjectContext.from_markdown(PROJECT))}

        assert previews["plan"].level == 2
        assert previews["charter"].backend_id == "small"
        assert previews["big"].verdict is not None and previews["big"].verdict.fits is False
        assert backend.call_count == 0


class TestEvents:
    """Telemetry emitted during a run."""

    def test_run_events_bracket_task_events(self, event_bus: RecordingEventBus) -> None:
        backend = ScriptedBackend(failures={"charter": [PermanentError("bad request")]})
        engine = make_engine(CHAIN, backend=backend, event_bus=event_bus)

        engine.run(run_id="run-42")

        assert isinstance(event_bus.events[0], RunStarted)
        assert event_bus.events[0].order == ("charter", "risk", "plan")
        summary = event_bus.events[-1]
        assert isinstance(summary, RunSummary)
        assert summary.run_id == "run-42"
        assert summary.status == RunCompletionStatus.FAILED
        assert (summary.failed, summary.skipped) == (1, 2)
        assert [e.processor_key for e in event_bus.of_type(TaskFailed)] == ["charter"]
        assert [e.processor_key for e in event_bus.of_type(TaskSkipped)] == ["risk", "plan"]
        assert event_bus.of_type(TaskCompleted) == []


class TestConstruction:
    """Configuration problems surface before any task runs."""

    def test_cycle_raises_at_construction(self) -> None:
        with pytest.raises(CycleError) as exc_info:
            make_engine([{"key": "a", "dependencies": ["b"]}, {"key": "b", "dependencies": ["a"]}])

        assert exc_info.value.cycle == ("a", "b")

    def test_missing_handler_instance(self) -> None:
        registry = make_registry([{"key": "a"}])

        with pytest.raises(ConfigError, match="no handler instance"):
            ExecutionEngine(registry, make_pool(), {})

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError, match="max_concurrency"):
            make_engine([{"key": "a"}], max_concurrency=0)

    def test_broken_template_rejected(self, plugin_manager: PluginManager) -> None:
        registry = make_registry([{"key": "a", "template": "{% if %}"}])

        with pytest.raises(ConfigError, match="Invalid template syntax"):
            plugin_manager.create_handlers(registry)


class TestFromSettings:
    """Assembly from DocforgeSettings."""

    def _settings(self, tmp_path: Path, **overrides: object) -> DocforgeSettings:
        registry = tmp_path / "registry.yaml"
        registry.write_text("charter:\n  category: project-charter\nrisk:\n  dependencies: [charter]\nlastSetup: '2024-05-01'\n")
        values: dict[str, object] = {
            "registry": registry,
            "backends": {"main": BackendSettings(plugin="echo", context_window_tokens=32_000)},
            "cache": CacheSettings(backend="memory"),
        }
        values.update(overrides)
        return DocforgeSettings(**values)  # type: ignore[arg-type]

    def test_runs_with_echo_backend(self, tmp_path: Path, plugin_manager: PluginManager) -> None:
        engine = ExecutionEngine.from_settings(self._settings(tmp_path), plugin_manager=plugin_manager)

        report = engine.run(ProjectContext.from_markdown(PROJECT))

        assert report.status == RunCompletionStatus.COMPLETED
        assert report.artifacts["charter"].startswith('# You are producing the "charter" document')

    def test_unknown_backend_plugin(self, tmp_path: Path, plugin_manager: PluginManager) -> None:
        settings = self._settings(tmp_path, backends={"main": BackendSettings(plugin="nope", context_window_tokens=8_000)})

        with pytest.raises(ConfigError) as exc_info:
            build_backend_pool(settings, plugin_manager)

        assert exc_info.value.issues[0].location == "backends.main"
        assert "Available: echo" in exc_info.value.issues[0].message

    def test_pool_uses_health_settings(self, tmp_path: Path, plugin_manager: PluginManager) -> None:
        pool = build_backend_pool(self._settings(tmp_path), plugin_manager)

        assert isinstance(pool, BackendPool)
        assert [p.backend_id for p in pool.profiles] == ["main"]

    def test_cache_factory(self, tmp_path: Path) -> None:
        assert build_result_cache(self._settings(tmp_path, cache=CacheSettings(enabled=False))) is None
        filesystem = build_result_cache(self._settings(tmp_path, cache=CacheSettings(base_path=tmp_path / "cache")))
        assert filesystem is not None
        assert (tmp_path / "cache").is_dir()
