# src/docforge/engine/orchestrator.py
"""ExecutionEngine: runs every processor of a registry in dependency order.

Lifecycle of a run:
1. Resolve the topological order (CycleError aborts before any task) and
   refresh backend health
2. Dispatch ready tasks (all dependencies succeeded) onto a worker pool
3. Per task: validate budget, degrade if needed, consult the cache, call
   the backend with retry and a per-call deadline, validate the output
4. Skip every transitive dependent of a task that did not succeed
5. Build the RunReport and emit RunSummary

Task failures, including exceptions from handler plugins, are recorded in
the report and never abort independent tasks. Cache I/O errors degrade to a
miss or a skipped write. Configuration problems (bad registry, unknown
handler or backend plugin, broken template) raise before any task runs.
"""

from __future__ import annotations

import heapq
import queue
import threading
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from docforge.contracts.enums import ErrorKind, TaskStatus
from docforge.contracts.errors import (
    BackendTimeoutError,
    ConfigError,
    ConfigIssue,
    ContextBudgetExceeded,
    DependencySkipped,
    GenerationError,
    OrchestrationInvariantError,
    PermanentError,
    RunCancelled,
)
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
from docforge.contracts.models import BackendProfile, CacheEntry, ValidationVerdict
from docforge.core.backends import BackendPool
from docforge.core.budget import ContextBudgetValidator
from docforge.core.cache import FilesystemCacheStore, InMemoryCacheStore, ResultCache, derive_cache_key
from docforge.core.canonical import stable_hash
from docforge.core.config import BudgetSettings, DocforgeSettings, FallbackSettings
from docforge.core.context import ProjectContext
from docforge.core.dag import DependencyGraph
from docforge.core.events import EventBusProtocol, NullEventBus
from docforge.core.fallback import FallbackStrategyChain
from docforge.core.logging import get_logger, task_log_context
from docforge.core.registry import ProcessorRegistry
from docforge.engine.cancellation import CancellationToken
from docforge.engine.clock import DEFAULT_CLOCK, Clock
from docforge.engine.report import RunReport, RunReportBuilder, TaskOutcome
from docforge.engine.retry import MaxRetriesExceeded, RetryConfig, RetryManager
from docforge.engine.task import GenerationTask

if TYPE_CHECKING:
    from docforge.plugins.manager import PluginManager
    from docforge.plugins.processors import BaseProcessor

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TaskPreview:
    """Dry-run view of one task: where it would run and whether it fits.

    Computed from the project context alone; dependency artifacts do not
    exist before a run, so the verdict can only grow at execution time.
    """

    key: str
    order_index: int
    level: int
    backend_id: str | None
    verdict: ValidationVerdict | None


class ExecutionEngine:
    """Executes a processor registry against one project context.

    The engine is reusable across runs; per-run state lives in run().

    Example:
        engine = ExecutionEngine(registry, pool, handlers, max_concurrency=4)
        report = engine.run(ProjectContext.from_markdown(text))
        sys.exit(report.exit_code)
    """

    def __init__(
        self,
        registry: ProcessorRegistry,
        pool: BackendPool,
        handlers: Mapping[str, BaseProcessor],
        *,
        budget: BudgetSettings | None = None,
        fallback: FallbackSettings | None = None,
        retry_config: RetryConfig | None = None,
        cache: ResultCache | None = None,
        cache_version: str = "1",
        event_bus: EventBusProtocol | None = None,
        clock: Clock | None = None,
        max_concurrency: int = 4,
        backend_timeout_seconds: float = 120.0,
        slow_threshold_ms: float = 30_000.0,
        slowest_n: int = 5,
    ) -> None:
        """Build an engine.

        Raises:
            ConfigError: If a processor has no handler
            CycleError: If the registry's dependencies are cyclic
            ValueError: If max_concurrency or the timeout is not positive
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if backend_timeout_seconds <= 0:
            raise ValueError(f"backend_timeout_seconds must be > 0, got {backend_timeout_seconds}")
        missing = [key for key in registry.keys if key not in handlers]
        if missing:
            raise ConfigError([ConfigIssue(key, "no handler instance provided") for key in missing])

        self._registry = registry
        self._pool = pool
        self._handlers = dict(handlers)
        self._budget = budget or BudgetSettings()
        self._fallback_settings = fallback or FallbackSettings()
        self._validator = ContextBudgetValidator(self._budget)
        self._chain = FallbackStrategyChain(self._validator, pool, self._fallback_settings)
        self._retry_config = retry_config or RetryConfig()
        self._cache = cache
        self._cache_version = cache_version
        self._events = event_bus if event_bus is not None else NullEventBus()
        self._clock = clock if clock is not None else DEFAULT_CLOCK
        self._max_concurrency = max_concurrency
        self._backend_timeout = backend_timeout_seconds
        self._slow_threshold_ms = slow_threshold_ms
        self._slowest_n = slowest_n

        self._graph = DependencyGraph.from_registry(registry)
        self._plan = self._graph.plan()
        self._titles = {d.key: d.display_name for d in registry}

    @classmethod
    def from_settings(
        cls,
        settings: DocforgeSettings,
        *,
        plugin_manager: PluginManager | None = None,
        registry: ProcessorRegistry | None = None,
        event_bus: EventBusProtocol | None = None,
        clock: Clock | None = None,
        max_concurrency: int | None = None,
        slow_threshold_ms: float | None = None,
    ) -> ExecutionEngine:
        """Assemble an engine from validated settings.

        Args:
            settings: Validated settings
            plugin_manager: Plugin manager; built-in plugins are used if omitted
            registry: Pre-loaded registry; loaded from settings.registry if omitted
            event_bus: Telemetry sink
            clock: Time source (tests inject MockClock)
            max_concurrency: Overrides settings.concurrency.max_workers
            slow_threshold_ms: Overrides settings.report.slow_threshold_ms

        Raises:
            ConfigError: Invalid registry, unknown handler or backend plugin, broken template
            CycleError: Cyclic dependencies
        """
        manager = plugin_manager or default_plugin_manager()
        if registry is None:
            registry = ProcessorRegistry.from_file(settings.registry, handler_exists=manager.has_processor)
        pool = build_backend_pool(settings, manager)
        handlers = manager.create_handlers(registry)
        return cls(
            registry,
            pool,
            handlers,
            budget=settings.budget,
            fallback=settings.fallback,
            retry_config=RetryConfig.from_settings(settings.retry),
            cache=build_result_cache(settings),
            cache_version=settings.cache.version,
            event_bus=event_bus,
            clock=clock,
            max_concurrency=max_concurrency or settings.concurrency.max_workers,
            backend_timeout_seconds=settings.concurrency.backend_timeout_seconds,
            slow_threshold_ms=(
                slow_threshold_ms if slow_threshold_ms is not None else settings.report.slow_threshold_ms
            ),
            slowest_n=settings.report.slowest_n,
        )

    @property
    def registry(self) -> ProcessorRegistry:
        return self._registry

    @property
    def pool(self) -> BackendPool:
        return self._pool

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    @property
    def order(self) -> tuple[str, ...]:
        return self._plan.order

    # === Preview ===

    def preview(self, context: ProjectContext | None = None) -> list[TaskPreview]:
        """Budget verdict per task without calling any backend."""
        context = context or ProjectContext.empty()
        previews: list[TaskPreview] = []
        for key in self._plan.order:
            descriptor = self._registry[key]
            backend = self._pool.select_initial(descriptor, self._budget.preferred_window)
            verdict = None
            if backend is not None:
                patterns = self._fallback_settings.patterns_for(descriptor.category)
                task = GenerationTask(descriptor, context.slice_for(descriptor, {}, patterns, self._titles), backend)
                verdict = self._validator.validate(task)
            previews.append(
                TaskPreview(
                    key=key,
                    order_index=self._plan.index[key],
                    level=self._plan.levels[key],
                    backend_id=backend.backend_id if backend else None,
                    verdict=verdict,
                )
            )
        return previews

    # === Run ===

    def run(
        self,
        context: ProjectContext | None = None,
        *,
        cancellation: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> RunReport:
        """Execute every processor and return the report.

        Args:
            context: Project context shared by all processors
            cancellation: Stops dispatch of new tasks when cancelled
            run_id: Identifier for events and the report (random if omitted)

        Returns:
            RunReport with one outcome per processor, in topological order
        """
        context = context or ProjectContext.empty()
        cancellation = cancellation or CancellationToken()
        run_id = run_id or uuid.uuid4().hex
        order = self._plan.order
        index = self._plan.index

        builder = RunReportBuilder(run_id, slow_threshold_ms=self._slow_threshold_ms, slowest_n=self._slowest_n)
        artifacts: dict[str, str] = {}
        waiting_on = {key: set(self._graph.dependencies_of(key)) for key in order}
        ready = [(index[key], key) for key in order if not waiting_on[key]]
        heapq.heapify(ready)
        skipped: set[str] = set()
        # Backends tripped by an earlier run get another chance
        self._pool.refresh()

        logger.info(
            "run_started",
            run_id=run_id,
            processors=len(order),
            max_concurrency=self._max_concurrency,
            context_fingerprint=context.fingerprint,
        )
        self._events.emit(RunStarted(run_id=run_id, order=order, max_concurrency=self._max_concurrency))
        started = self._clock.monotonic()

        with ThreadPoolExecutor(max_workers=self._max_concurrency, thread_name_prefix="docforge-task") as executor:
            in_flight: dict[Future[tuple[TaskOutcome, str | None]], str] = {}
            while True:
                while ready and len(in_flight) < self._max_concurrency and not cancellation.cancelled:
                    _, key = heapq.heappop(ready)
                    dependency_artifacts = {d: artifacts[d] for d in self._registry[key].dependencies}
                    future = executor.submit(self._execute, run_id, key, context, dependency_artifacts, cancellation)
                    in_flight[future] = key
                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: index[in_flight[f]]):
                    key = in_flight.pop(future)
                    outcome, artifact = future.result()
                    builder.add(outcome, artifact)
                    if outcome.status == TaskStatus.SUCCEEDED and artifact is not None:
                        artifacts[key] = artifact
                        for dependent in self._graph.dependents_of(key):
                            waiting_on[dependent].discard(key)
                            if not waiting_on[dependent] and dependent not in skipped:
                                heapq.heappush(ready, (index[dependent], dependent))
                    else:
                        self._skip_descendants(run_id, key, builder, skipped)

        cancelled = cancellation.cancelled
        for key in order:
            if key not in builder:
                reason = f"Run cancelled before dispatch: {cancellation.reason}"
                builder.add(
                    TaskOutcome(
                        key=key,
                        status=TaskStatus.SKIPPED,
                        order_index=index[key],
                        error_kind=ErrorKind.CANCELLED,
                        error_message=reason,
                    )
                )
                self._events.emit(TaskSkipped(run_id=run_id, processor_key=key, reason=reason))

        report = builder.build(total_duration_ms=(self._clock.monotonic() - started) * 1000, cancelled=cancelled)
        logger.info(
            "run_finished",
            run_id=run_id,
            status=report.status.value,
            succeeded=report.succeeded,
            failed=report.failed,
            skipped=report.skipped,
        )
        self._events.emit(
            RunSummary(
                run_id=run_id,
                status=report.status,
                total_tasks=len(report.outcomes),
                succeeded=report.succeeded,
                failed=report.failed,
                skipped=report.skipped,
                warned=report.warned,
                cached=report.cached,
                degraded=len(report.soft_degradations),
                duration_seconds=report.total_duration_ms / 1000,
                slow_tasks=tuple(o.key for o in report.slow_tasks),
            )
        )
        return report

    def _skip_descendants(self, run_id: str, failed_key: str, builder: RunReportBuilder, skipped: set[str]) -> None:
        """Record SKIPPED for every transitive dependent of a failed task."""
        for key in sorted(self._graph.descendants(failed_key), key=self._plan.index.__getitem__):
            if key in skipped or key in builder:
                continue
            skipped.add(key)
            reason = str(DependencySkipped(key, failed_key))
            builder.add(
                TaskOutcome(
                    key=key,
                    status=TaskStatus.SKIPPED,
                    order_index=self._plan.index[key],
                    error_kind=ErrorKind.DEPENDENCY_SKIPPED,
                    error_message=reason,
                )
            )
            logger.debug("task_skipped", run_id=run_id, processor_key=key, failed_dependency=failed_key)
            self._events.emit(TaskSkipped(run_id=run_id, processor_key=key, reason=reason))

    # === Task execution (worker threads) ===

    def _execute(
        self,
        run_id: str,
        key: str,
        context: ProjectContext,
        dependency_artifacts: dict[str, str],
        cancellation: CancellationToken,
    ) -> tuple[TaskOutcome, str | None]:
        with task_log_context(run_id, key):
            return self._execute_task(run_id, key, context, dependency_artifacts, cancellation)

    def _execute_task(
        self,
        run_id: str,
        key: str,
        context: ProjectContext,
        dependency_artifacts: dict[str, str],
        cancellation: CancellationToken,
    ) -> tuple[TaskOutcome, str | None]:
        descriptor = self._registry[key]
        started = self._clock.monotonic()
        backend = self._pool.select_initial(descriptor, self._budget.preferred_window)
        if backend is None:
            reason = "No generation backend is available"
            self._events.emit(
                TaskFailed(run_id=run_id, processor_key=key, duration_ms=0.0, error_kind=ErrorKind.PERMANENT, reason=reason)
            )
            outcome = TaskOutcome(
                key=key,
                status=TaskStatus.FAILED,
                order_index=self._plan.index[key],
                error_kind=ErrorKind.PERMANENT,
                error_message=reason,
            )
            return outcome, None

        patterns = self._fallback_settings.patterns_for(descriptor.category)
        task = GenerationTask(
            descriptor=descriptor,
            context=context.slice_for(descriptor, dependency_artifacts, patterns, self._titles),
            backend=backend,
            started_at=started,
        )
        self._events.emit(TaskStarted(run_id=run_id, processor_key=key, backend_id=backend.backend_id))

        try:
            self._process(run_id, task, self._handlers[key], cancellation)
        except ContextBudgetExceeded as e:
            task.fail(ErrorKind.CONTEXT_BUDGET_EXCEEDED, str(e))
        except MaxRetriesExceeded as e:
            task.fail(ErrorKind.RETRIES_EXHAUSTED, f"{e.attempts} attempt(s) failed; last error: {e.last_error}")
        except RunCancelled as e:
            task.fail(ErrorKind.CANCELLED, str(e))
        except GenerationError as e:
            task.fail(ErrorKind.TRANSIENT if e.retryable else ErrorKind.PERMANENT, str(e))
        except OrchestrationInvariantError:
            raise
        except Exception as e:
            # Handler plugins are third-party code; their bugs fail only their own task
            logger.warning("task_crashed", error_type=type(e).__name__, error=str(e))
            task.fail(ErrorKind.PERMANENT, f"{type(e).__name__}: {e}")
        task.finished_at = self._clock.monotonic()

        if task.status == TaskStatus.SUCCEEDED:
            logger.debug("task_succeeded", cache_hit=task.cache_hit)
            self._events.emit(
                TaskCompleted(
                    run_id=run_id,
                    processor_key=key,
                    duration_ms=task.duration_ms,
                    cache_hit=task.cache_hit,
                    warnings=tuple(task.warnings),
                )
            )
        else:
            assert task.error_kind is not None and task.error_message is not None
            logger.debug("task_failed", error_kind=task.error_kind.value)
            self._events.emit(
                TaskFailed(
                    run_id=run_id,
                    processor_key=key,
                    duration_ms=task.duration_ms,
                    error_kind=task.error_kind,
                    reason=task.error_message,
                )
            )
        return self._outcome(task), task.artifact

    def _process(self, run_id: str, task: GenerationTask, handler: BaseProcessor, cancellation: CancellationToken) -> None:
        """Drive one task to SUCCEEDED, or raise the error that fails it."""
        task.transition(TaskStatus.VALIDATING)
        verdict = self._validator.validate(task)
        task.verdict = verdict
        task.warnings.extend(verdict.warnings)

        if verdict.needs_fallback:
            task.transition(TaskStatus.DEGRADING)
            self._degrade(run_id, task, verdict)

        assert task.verdict is not None
        payload = task.context.text
        config_version = stable_hash([self._cache_version, self._registry.version_hash(task.key)])
        template_version = handler.template_version

        if self._cache is not None:
            task.cache_key = derive_cache_key(
                processor_key=task.key,
                payload=payload,
                backend_id=task.backend.backend_id,
                template_version=template_version,
                config_version=config_version,
            )
            entry: CacheEntry | None = None
            with _cache_failures_tolerated(task, "read"):
                entry = self._cache.get(task.cache_key, template_version=template_version, config_version=config_version)
            if entry is not None:
                task.transition(TaskStatus.CACHED)
                task.cache_hit = True
                task.artifact = entry.artifact
                self._events.emit(TaskCached(run_id=run_id, processor_key=task.key, cache_key=task.cache_key))
                task.transition(TaskStatus.SUCCEEDED)
                return
            with _cache_failures_tolerated(task, "eviction"):
                self._cache.invalidate_stale(task.key, template_version=template_version, config_version=config_version)

        task.transition(TaskStatus.RUNNING)
        prompt = handler.build_prompt(payload)
        max_tokens = task.verdict.max_response_tokens

        def attempt() -> str:
            task.attempts += 1
            return self._call_backend(task.backend, prompt, max_tokens)

        def on_retry(attempt_number: int, error: BaseException) -> None:
            logger.debug("task_retrying", attempt=attempt_number, error=str(error))
            self._events.emit(
                TaskRetrying(run_id=run_id, processor_key=task.key, attempt=attempt_number, reason=str(error))
            )

        retry = RetryManager(self._retry_config, sleep=_cancellable_sleep(cancellation))
        text = retry.execute_with_retry(attempt, on_retry=on_retry)
        task.artifact = handler.validate_output(text)

        if self._cache is not None and task.cache_key is not None:
            entry = CacheEntry(
                artifact=task.artifact,
                processor_key=task.key,
                template_version=template_version,
                config_version=config_version,
                tokens_used=task.verdict.estimated_tokens,
                created_at=self._clock.utc_now().isoformat(),
            )
            with _cache_failures_tolerated(task, "write"):
                self._cache.put(task.cache_key, entry)
        task.transition(TaskStatus.SUCCEEDED)

    def _degrade(self, run_id: str, task: GenerationTask, verdict: ValidationVerdict) -> None:
        """Run the fallback chain and rebind the task to its result.

        A task that already fits but sits above the escalation threshold
        keeps its original content and backend when no strategy brings it
        under the threshold.

        Raises:
            ContextBudgetExceeded: If the task does not fit after every strategy
        """
        outcome = self._chain.apply_until_fits(task, verdict)
        task.fallback = outcome
        task.warnings.extend(outcome.warnings)

        if not outcome.success:
            if verdict.fits:
                task.warnings.append("No fallback strategy reduced utilization below the escalation threshold")
                return
            final_backend = self._pool.profile(outcome.backend_id)
            raise ContextBudgetExceeded(task.key, outcome.final_tokens, self._validator.available_tokens(final_backend))

        task.rebind(self._pool.profile(outcome.backend_id), outcome.payload)
        task.verdict = self._validator.evaluate(task.descriptor, task.backend, outcome.final_tokens)
        logger.debug(
            "task_degraded",
            strategy=outcome.strategy_used.value,
            reduction_pct=outcome.reduction_pct,
        )
        self._events.emit(
            TaskDegraded(
                run_id=run_id,
                processor_key=task.key,
                strategy=outcome.strategy_used,
                reduction_pct=outcome.reduction_pct,
                backend_id=outcome.backend_id,
            )
        )

    def _call_backend(self, profile: BackendProfile, prompt: str, max_tokens: int) -> str:
        """One backend call bounded by the per-call deadline.

        The call runs on a daemon thread so that a hung backend never blocks
        process exit. Backend health is updated from the result.

        Raises:
            BackendTimeoutError: If the deadline passes first
            GenerationError: As raised by the backend; other exceptions are
                wrapped as PermanentError
        """
        backend_id = profile.backend_id
        backend = self._pool.backend(backend_id)
        timeout = self._backend_timeout
        deadline = self._clock.monotonic() + timeout
        results: queue.Queue[tuple[bool, str | BaseException]] = queue.Queue()

        def _worker() -> None:
            try:
                results.put((True, backend.generate(prompt, max_tokens, deadline)))
            except BaseException as exc:
                results.put((False, exc))

        threading.Thread(target=_worker, daemon=True, name=f"docforge-call-{backend_id}").start()

        try:
            ok, value = results.get(timeout=timeout)
        except queue.Empty:
            self._pool.record_failure(backend_id)
            raise BackendTimeoutError(backend_id, timeout) from None

        if ok:
            assert isinstance(value, str)
            self._pool.record_success(backend_id)
            return value

        assert isinstance(value, BaseException)
        self._pool.record_failure(backend_id)
        if isinstance(value, GenerationError):
            raise value
        if not isinstance(value, Exception):
            raise value
        raise PermanentError(f"Backend '{backend_id}' raised {type(value).__name__}: {value}") from value

    def _outcome(self, task: GenerationTask) -> TaskOutcome:
        return TaskOutcome(
            key=task.key,
            status=task.status,
            order_index=self._plan.index[task.key],
            duration_ms=task.duration_ms,
            attempts=task.attempts,
            backend_id=task.backend.backend_id,
            cache_hit=task.cache_hit,
            verdict=task.verdict,
            fallback=task.fallback,
            warnings=tuple(task.warnings),
            error_kind=task.error_kind,
            error_message=task.error_message,
        )


@contextmanager
def _cache_failures_tolerated(task: GenerationTask, operation: str) -> Iterator[None]:
    """Degrade a cache I/O failure to a miss or a skipped write.

    The artifact is still produced; the failure is logged and recorded as a
    task warning.
    """
    try:
        yield
    except OSError as e:
        logger.warning("cache_io_failed", operation=operation, error=str(e))
        task.warnings.append(f"Cache {operation} failed: {e}")


def _cancellable_sleep(cancellation: CancellationToken) -> Callable[[float], None]:
    """Backoff sleep that aborts the retry loop when the run is cancelled."""

    def sleep(seconds: float) -> None:
        if cancellation.wait(seconds):
            raise RunCancelled(cancellation.reason)

    return sleep


# === Assembly from settings ===


def default_plugin_manager() -> PluginManager:
    """Plugin manager with built-in and entry-point plugins registered."""
    from docforge.plugins.manager import PluginManager

    manager = PluginManager()
    manager.register_builtin_plugins()
    manager.load_entrypoints()
    return manager


def build_backend_pool(settings: DocforgeSettings, manager: PluginManager) -> BackendPool:
    """Instantiate every configured backend.

    Raises:
        ConfigError: Listing every backend whose plugin is unknown
    """
    pool = BackendPool(
        max_consecutive_failures=settings.health.max_consecutive_failures,
        default_backend=settings.default_backend,
    )
    issues: list[ConfigIssue] = []
    for backend_id, backend_settings in sorted(settings.backends.items()):
        try:
            backend = manager.create_backend(backend_settings.plugin, backend_settings.options)
        except ValueError as e:
            issues.append(ConfigIssue(f"backends.{backend_id}", str(e)))
            continue
        profile = BackendProfile(
            backend_id=backend_id,
            context_window_tokens=backend_settings.context_window_tokens,
            cost_weight=backend_settings.cost_weight,
            available=backend_settings.available,
        )
        pool.add(profile, backend)
    if issues:
        raise ConfigError(issues)
    return pool


def build_result_cache(settings: DocforgeSettings) -> ResultCache | None:
    """The configured cache, or None when caching is disabled."""
    if not settings.cache.enabled:
        return None
    if settings.cache.backend == "memory":
        return ResultCache(InMemoryCacheStore())
    return ResultCache(FilesystemCacheStore(Path(settings.cache.base_path)))
