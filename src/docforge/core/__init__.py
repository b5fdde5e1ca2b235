# src/docforge/core/__init__.py
"""Core infrastructure: Registry, DAG, Budget, Fallback, Cache, Configuration, Logging."""

from docforge.core.backends import BackendHealth, BackendPool
from docforge.core.budget import ContextBudgetValidator
from docforge.core.cache import (
    FilesystemCacheStore,
    InMemoryCacheStore,
    ResultCache,
    derive_cache_key,
)
from docforge.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    stable_hash,
)
from docforge.core.config import (
    BackendSettings,
    BudgetSettings,
    CacheSettings,
    ConcurrencySettings,
    DocforgeSettings,
    FallbackSettings,
    HealthSettings,
    ReportSettings,
    RetrySettings,
    load_settings,
)
from docforge.core.context import ContextSlice, ProjectContext
from docforge.core.dag import DependencyGraph, ExecutionPlan
from docforge.core.events import EventBus, EventBusProtocol, NullEventBus
from docforge.core.fallback import FallbackStrategyChain
from docforge.core.registry import ProcessorRegistry

__all__ = [
    "CANONICAL_VERSION",
    "BackendHealth",
    "BackendPool",
    "BackendSettings",
    "BudgetSettings",
    "CacheSettings",
    "ConcurrencySettings",
    "ContextBudgetValidator",
    "ContextSlice",
    "DependencyGraph",
    "DocforgeSettings",
    "EventBus",
    "EventBusProtocol",
    "ExecutionPlan",
    "FallbackSettings",
    "FallbackStrategyChain",
    "FilesystemCacheStore",
    "HealthSettings",
    "InMemoryCacheStore",
    "NullEventBus",
    "ProcessorRegistry",
    "ProjectContext",
    "ReportSettings",
    "ResultCache",
    "RetrySettings",
    "canonical_json",
    "derive_cache_key",
    "load_settings",
    "stable_hash",
]
