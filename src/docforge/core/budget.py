# src/docforge/core/budget.py
"""ContextBudgetValidator: token demand versus a backend's context window.

Pure and stateless: the same inputs always produce the same verdict.

    available       = floor(window * safety_margin)
    fits            = estimated <= available
    utilization_pct = estimated / window * 100

Below warn_threshold_pct no warning is raised; between the warn and
escalation thresholds a soft warning suggests a larger-window backend;
above the escalation threshold, or when the estimate does not fit, the
verdict asks for the fallback chain.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from docforge.contracts.models import BackendProfile, ProcessorDescriptor, ValidationVerdict
from docforge.core.config import BudgetSettings
from docforge.core.tokens import estimate_tokens

if TYPE_CHECKING:
    from docforge.engine.task import GenerationTask


class ContextBudgetValidator:
    """Checks estimated token demand against a backend's context window."""

    def __init__(self, settings: BudgetSettings | None = None) -> None:
        self._settings = settings or BudgetSettings()

    @property
    def settings(self) -> BudgetSettings:
        return self._settings

    def measure(self, text: str) -> int:
        """Heuristic token count of text."""
        return estimate_tokens(text, self._settings.chars_per_token)

    def available_tokens(self, backend: BackendProfile) -> int:
        return math.floor(backend.context_window_tokens * self._settings.safety_margin)

    def target_tokens(self, backend: BackendProfile) -> int:
        """Largest estimate that fits without needing fallback."""
        escalate = math.floor(backend.context_window_tokens * self._settings.escalate_threshold_pct / 100)
        return min(self.available_tokens(backend), escalate)

    def validate(self, task: GenerationTask) -> ValidationVerdict:
        """Verdict for a task's current context slice and bound backend.

        Estimated tokens are max(declared, measured slice).
        """
        measured = self.measure(task.context.text)
        estimated = max(task.descriptor.estimated_tokens, measured)
        return self.evaluate(task.descriptor, task.backend, estimated)

    def evaluate(self, descriptor: ProcessorDescriptor, backend: BackendProfile, estimated_tokens: int) -> ValidationVerdict:
        """Verdict for an already-computed estimate."""
        window = backend.context_window_tokens
        available = self.available_tokens(backend)
        fits = estimated_tokens <= available
        utilization = round(estimated_tokens / window * 100, 2)

        warnings: list[str] = []
        if not fits:
            warnings.append(
                f"Estimated {estimated_tokens} tokens exceed the {available} available on backend '{backend.backend_id}'"
            )
        elif utilization > self._settings.escalate_threshold_pct:
            warnings.append(
                f"Utilization {utilization:.1f}% of backend '{backend.backend_id}' is above "
                f"{self._settings.escalate_threshold_pct:.0f}%"
            )
        elif utilization >= self._settings.warn_threshold_pct:
            warnings.append(
                f"Utilization {utilization:.1f}% of backend '{backend.backend_id}'; consider a larger-window backend"
            )

        needs_fallback = not fits or utilization > self._settings.escalate_threshold_pct
        response_budget = self._settings.response_tokens[descriptor.complexity]
        max_response = max(0, min(response_budget, window - estimated_tokens))

        return ValidationVerdict(
            fits=fits,
            estimated_tokens=estimated_tokens,
            available_tokens=available,
            utilization_pct=utilization,
            warnings=tuple(warnings),
            needs_fallback=needs_fallback,
            max_response_tokens=max_response,
        )
