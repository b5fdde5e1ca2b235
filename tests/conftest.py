# tests/conftest.py
"""Shared test fixtures and helpers.

Test doubles:
- ScriptedBackend: GenerationBackend that replays per-processor failures,
  then returns a deterministic artifact derived from the prompt
- make_engine(): ExecutionEngine over an in-memory registry and backend pool,
  with zero-delay retries

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Callable, Mapping
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from docforge.contracts.models import BackendProfile
from docforge.core.backends import BackendPool
from docforge.core.events import RecordingEventBus
from docforge.core.registry import ProcessorRegistry
from docforge.engine.orchestrator import ExecutionEngine
from docforge.engine.retry import RetryConfig
from docforge.plugins.manager import PluginManager

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Test doubles
# =============================================================================

# DEFAULT_TEMPLATE opens with: You are producing the "<title>" document (<category>).
_TITLE_PATTERN = re.compile(r'producing the "(?P<title>[^"]+)" document')

NO_DELAY_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


def prompt_title(prompt: str) -> str:
    match = _TITLE_PATTERN.search(prompt)
    return match.group("title") if match else ""


class ScriptedBackend:
    """GenerationBackend double.

    Args:
        failures: Processor title -> exceptions raised by its first calls, in order
        responses: Processor title -> fixed response text
        on_call: Called with (title, prompt) before anything else, e.g. to
            advance a MockClock or block on an event
    """

    def __init__(
        self,
        failures: Mapping[str, list[BaseException]] | None = None,
        responses: Mapping[str, str] | None = None,
        on_call: Callable[[str, str], None] | None = None,
    ) -> None:
        self._failures = {k: list(v) for k, v in (failures or {}).items()}
        self._responses = dict(responses or {})
        self._on_call = on_call
        self._lock = threading.Lock()
        self.calls: list[tuple[str, int]] = []

    def calls_for(self, title: str) -> int:
        with self._lock:
            return sum(1 for t, _ in self.calls if t == title)

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def generate(self, prompt: str, max_tokens: int, deadline: float) -> str:
        title = prompt_title(prompt)
        if self._on_call is not None:
            self._on_call(title, prompt)
        with self._lock:
            self.calls.append((title, max_tokens))
            pending = self._failures.get(title)
            error = pending.pop(0) if pending else None
        if error is not None:
            raise error
        if title in self._responses:
            return self._responses[title]
        # Artifact depends only on the prompt, so identical inputs give identical outputs
        return f"# {title}\n\nDerived from {len(prompt)} prompt characters.\n"


def make_registry(entries: Any) -> ProcessorRegistry:
    manager = PluginManager()
    manager.register_builtin_plugins()
    return ProcessorRegistry.load(entries, handler_exists=manager.has_processor)


def make_pool(
    backends: Mapping[str, int | tuple[int, float]] | None = None,
    implementations: Mapping[str, Any] | None = None,
    *,
    default: Any | None = None,
    max_consecutive_failures: int = 5,
    default_backend: str | None = None,
) -> BackendPool:
    """Pool of backend_id -> window (or (window, cost_weight))."""
    pool = BackendPool(max_consecutive_failures=max_consecutive_failures, default_backend=default_backend)
    shared = default if default is not None else ScriptedBackend()
    for backend_id, spec in (backends or {"main": 100_000}).items():
        window, cost = spec if isinstance(spec, tuple) else (spec, 1.0)
        impl = (implementations or {}).get(backend_id, shared)
        pool.add(BackendProfile(backend_id, window, cost_weight=cost), impl)
    return pool


def make_engine(
    entries: Any,
    *,
    backend: Any | None = None,
    pool: BackendPool | None = None,
    **kwargs: Any,
) -> ExecutionEngine:
    """ExecutionEngine with built-in handlers and zero-delay retries."""
    manager = PluginManager()
    manager.register_builtin_plugins()
    registry = ProcessorRegistry.load(entries, handler_exists=manager.has_processor)
    if pool is None:
        pool = make_pool(default=backend)
    kwargs.setdefault("retry_config", NO_DELAY_RETRY)
    return ExecutionEngine(registry, pool, manager.create_handlers(registry), **kwargs)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def plugin_manager() -> PluginManager:
    manager = PluginManager()
    manager.register_builtin_plugins()
    return manager


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def scripted_backend() -> ScriptedBackend:
    return ScriptedBackend()
