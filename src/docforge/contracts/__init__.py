"""Shared contracts for cross-boundary data types.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes are NOT re-exported here - import them from
docforge.core.config.
"""

from docforge.contracts.backend import GenerationBackend
from docforge.contracts.cache import CacheStore
from docforge.contracts.enums import (
    Complexity,
    ErrorKind,
    FallbackStrategy,
    RunCompletionStatus,
    SectionPriority,
    TaskStatus,
)
from docforge.contracts.errors import (
    BackendTimeoutError,
    ConfigError,
    ConfigIssue,
    ContextBudgetExceeded,
    CycleError,
    DependencySkipped,
    GenerationError,
    OrchestrationInvariantError,
    PermanentError,
    RunCancelled,
    TransientError,
)
from docforge.contracts.models import (
    BackendProfile,
    CacheEntry,
    ContextSection,
    FallbackOutcome,
    ProcessorDescriptor,
    ValidationVerdict,
)

__all__ = [
    "BackendProfile",
    "BackendTimeoutError",
    "CacheEntry",
    "CacheStore",
    "Complexity",
    "ConfigError",
    "ConfigIssue",
    "ContextBudgetExceeded",
    "ContextSection",
    "CycleError",
    "DependencySkipped",
    "ErrorKind",
    "FallbackOutcome",
    "FallbackStrategy",
    "GenerationBackend",
    "GenerationError",
    "OrchestrationInvariantError",
    "PermanentError",
    "ProcessorDescriptor",
    "RunCancelled",
    "RunCompletionStatus",
    "SectionPriority",
    "TaskStatus",
    "TransientError",
    "ValidationVerdict",
]
