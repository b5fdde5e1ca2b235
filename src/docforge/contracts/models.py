"""Immutable value types shared by the registry, validator, fallback chain and cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from docforge.contracts.enums import Complexity, FallbackStrategy, SectionPriority


@dataclass(frozen=True, slots=True)
class ProcessorDescriptor:
    """Static description of one processor.

    Immutable once loaded. Dependencies are guaranteed by the registry to
    reference other processors of the same load batch.
    """

    key: str
    category: str
    dependencies: frozenset[str] = frozenset()
    estimated_tokens: int = 0
    complexity: Complexity = Complexity.MEDIUM
    handler: str = "template"
    template: str | None = None
    title: str = ""

    @property
    def display_name(self) -> str:
        return self.title or self.key

    def to_dict(self) -> dict[str, Any]:
        """Canonical-JSON-safe representation used for version hashing."""
        return {
            "key": self.key,
            "category": self.category,
            "dependencies": sorted(self.dependencies),
            "estimated_tokens": self.estimated_tokens,
            "complexity": self.complexity.value,
            "handler": self.handler,
            "template": self.template,
            "title": self.title,
        }


@dataclass(frozen=True, slots=True)
class BackendProfile:
    """Static capabilities of a generation backend.

    Live availability is tracked by BackendPool; `available` is the
    configured starting state.
    """

    backend_id: str
    context_window_tokens: int
    cost_weight: float = 1.0
    available: bool = True

    def __post_init__(self) -> None:
        if self.context_window_tokens <= 0:
            raise ValueError(f"context_window_tokens must be > 0, got {self.context_window_tokens}")
        if self.cost_weight < 0:
            raise ValueError(f"cost_weight must be >= 0, got {self.cost_weight}")


@dataclass(frozen=True, slots=True)
class ContextSection:
    """One heading-delimited section of a processor's context slice."""

    heading: str
    body: str
    priority: SectionPriority = SectionPriority.NORMAL

    @property
    def text(self) -> str:
        if not self.heading:
            return self.body
        if not self.body:
            return self.heading
        return f"{self.heading}\n{self.body}"


@dataclass(frozen=True, slots=True)
class ValidationVerdict:
    """Result of checking a task's token demand against its backend window.

    Attributes:
        fits: estimated_tokens <= available_tokens
        estimated_tokens: max(declared, measured) token demand
        available_tokens: floor(context window * safety margin)
        utilization_pct: estimated_tokens / context window * 100
        warnings: Soft warnings (never block execution on their own)
        needs_fallback: fits is false, or utilization is above the escalation threshold
        max_response_tokens: Response budget handed to the backend
    """

    fits: bool
    estimated_tokens: int
    available_tokens: int
    utilization_pct: float
    warnings: tuple[str, ...] = ()
    needs_fallback: bool = False
    max_response_tokens: int = 0


@dataclass(frozen=True, slots=True)
class FallbackOutcome:
    """Record of what the fallback chain did to a task.

    Always populated, even when every strategy failed, so that any
    degradation is auditable from the run report.
    """

    strategy_used: FallbackStrategy
    final_tokens: int
    reduction_pct: float
    success: bool
    original_tokens: int = 0
    strategies_attempted: tuple[FallbackStrategy, ...] = ()
    backend_id: str = ""
    payload: str = field(default="", repr=False)
    warnings: tuple[str, ...] = ()

    @property
    def degraded_content(self) -> bool:
        """True when content was altered, not merely rebound to another backend."""
        return self.success and self.strategy_used not in (FallbackStrategy.NONE, FallbackStrategy.BACKEND_SWITCH)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A memoized artifact plus the metadata needed to validate reuse."""

    artifact: str
    processor_key: str
    template_version: str
    config_version: str
    tokens_used: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact": self.artifact,
            "processor_key": self.processor_key,
            "template_version": self.template_version,
            "config_version": self.config_version,
            "tokens_used": self.tokens_used,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            artifact=data["artifact"],
            processor_key=data["processor_key"],
            template_version=data["template_version"],
            config_version=data["config_version"],
            tokens_used=int(data["tokens_used"]),
            created_at=data["created_at"],
        )
