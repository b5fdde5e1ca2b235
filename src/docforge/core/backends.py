# src/docforge/core/backends.py
"""BackendPool: generation backends plus their live health state.

Profiles are static; availability is live. A backend that fails
max_consecutive_failures calls in a row is marked unavailable and is no
longer chosen for new tasks or backend switches. Any success resets its
failure count. refresh(), called by the engine at the start of every run,
re-enables backends tripped by failures; backends switched off with
mark_unavailable() stay off.

Health state is mutated from worker threads, so every read and write goes
through a single lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from docforge.contracts.backend import GenerationBackend
from docforge.contracts.models import BackendProfile, ProcessorDescriptor
from docforge.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BackendHealth:
    """Point-in-time health snapshot of one backend."""

    backend_id: str
    available: bool
    consecutive_failures: int
    total_calls: int
    total_failures: int


@dataclass(slots=True)
class _HealthState:
    available: bool
    disabled: bool = False
    consecutive_failures: int = 0
    total_calls: int = 0
    total_failures: int = 0


def _cheapest_first(profile: BackendProfile) -> tuple[float, int, str]:
    # Lowest cost, then larger window, then id
    return (profile.cost_weight, -profile.context_window_tokens, profile.backend_id)


class BackendPool:
    """Registered backends and their thread-safe availability.

    Example:
        pool = BackendPool(max_consecutive_failures=3)
        pool.add(BackendProfile("small", 8_000, cost_weight=1.0), small_backend)
        pool.add(BackendProfile("large", 32_000, cost_weight=3.0), large_backend)
        pool.select_initial(descriptor).backend_id  # "small"
    """

    def __init__(self, *, max_consecutive_failures: int = 5, default_backend: str | None = None) -> None:
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        self._max_failures = max_consecutive_failures
        self._default_backend = default_backend
        self._profiles: dict[str, BackendProfile] = {}
        self._backends: dict[str, GenerationBackend] = {}
        self._health: dict[str, _HealthState] = {}
        self._lock = threading.Lock()

    def add(self, profile: BackendProfile, backend: GenerationBackend) -> None:
        """Register a backend.

        Raises:
            ValueError: If a backend with the same id is already registered
        """
        with self._lock:
            if profile.backend_id in self._profiles:
                raise ValueError(f"Duplicate backend id: '{profile.backend_id}'")
            self._profiles[profile.backend_id] = profile
            self._backends[profile.backend_id] = backend
            self._health[profile.backend_id] = _HealthState(available=profile.available)

    def __contains__(self, backend_id: object) -> bool:
        return backend_id in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def profile(self, backend_id: str) -> BackendProfile:
        return self._profiles[backend_id]

    def backend(self, backend_id: str) -> GenerationBackend:
        return self._backends[backend_id]

    @property
    def profiles(self) -> list[BackendProfile]:
        return [self._profiles[k] for k in sorted(self._profiles)]

    # === Health ===

    def is_available(self, backend_id: str) -> bool:
        with self._lock:
            return self._health[backend_id].available

    def available_profiles(self, *, exclude: Iterable[str] = ()) -> list[BackendProfile]:
        """Currently available profiles, in id order."""
        excluded = set(exclude)
        with self._lock:
            return [
                self._profiles[k]
                for k in sorted(self._profiles)
                if self._health[k].available and k not in excluded
            ]

    def record_success(self, backend_id: str) -> None:
        with self._lock:
            state = self._health[backend_id]
            state.total_calls += 1
            state.consecutive_failures = 0

    def record_failure(self, backend_id: str) -> bool:
        """Count a failed call.

        Returns:
            True if this failure made the backend unavailable
        """
        with self._lock:
            state = self._health[backend_id]
            state.total_calls += 1
            state.total_failures += 1
            state.consecutive_failures += 1
            tripped = state.available and state.consecutive_failures >= self._max_failures
            if tripped:
                state.available = False
        if tripped:
            logger.warning("backend_marked_unavailable", backend_id=backend_id, consecutive_failures=self._max_failures)
        return tripped

    def mark_unavailable(self, backend_id: str) -> None:
        """Take a backend out of service for the life of the pool; refresh() keeps it off."""
        with self._lock:
            state = self._health[backend_id]
            state.available = False
            state.disabled = True

    def refresh(self) -> None:
        """Re-enable backends tripped by consecutive failures.

        Restores each backend to its configured availability and clears its
        failure streak, except backends switched off with mark_unavailable().
        """
        with self._lock:
            for backend_id, state in self._health.items():
                state.available = self._profiles[backend_id].available and not state.disabled
                state.consecutive_failures = 0

    def health(self) -> list[BackendHealth]:
        with self._lock:
            return [
                BackendHealth(
                    backend_id=k,
                    available=s.available,
                    consecutive_failures=s.consecutive_failures,
                    total_calls=s.total_calls,
                    total_failures=s.total_failures,
                )
                for k, s in sorted(self._health.items())
            ]

    # === Selection ===

    def select_initial(
        self,
        descriptor: ProcessorDescriptor,
        preferred_window: Mapping[object, int] | None = None,
    ) -> BackendProfile | None:
        """Choose the backend a task is first bound to.

        The configured default wins when available. Otherwise the cheapest
        available backend meeting the processor's preferred window, else the
        available backend with the largest window.

        Returns:
            The chosen profile, or None if no backend is available
        """
        available = self.available_profiles()
        if not available:
            return None
        if self._default_backend is not None and any(p.backend_id == self._default_backend for p in available):
            return self._profiles[self._default_backend]

        minimum = (preferred_window or {}).get(descriptor.complexity, 0)
        adequate = [p for p in available if p.context_window_tokens >= minimum]
        if adequate:
            return min(adequate, key=_cheapest_first)
        return max(available, key=lambda p: (p.context_window_tokens, -p.cost_weight, p.backend_id))

    def larger_than(self, current: BackendProfile) -> list[BackendProfile]:
        """Available backends with a strictly larger window, cheapest first."""
        candidates = [
            p
            for p in self.available_profiles(exclude=[current.backend_id])
            if p.context_window_tokens > current.context_window_tokens
        ]
        return sorted(candidates, key=_cheapest_first)
