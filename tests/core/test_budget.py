# tests/core/test_budget.py
"""Tests for ContextBudgetValidator."""

import pytest

from docforge.contracts.enums import Complexity
from docforge.contracts.models import BackendProfile, ContextSection, ProcessorDescriptor
from docforge.core.budget import ContextBudgetValidator
from docforge.core.config import BudgetSettings
from docforge.core.context import ContextSlice
from docforge.engine.task import GenerationTask

SMALL = BackendProfile("small", 8_000)


def _task(declared: int, text: str = "", backend: BackendProfile = SMALL, complexity: Complexity = Complexity.MEDIUM) -> GenerationTask:
    descriptor = ProcessorDescriptor(key="doc", category="default", estimated_tokens=declared, complexity=complexity)
    context = ContextSlice((ContextSection(heading="", body=text),)) if text else ContextSlice()
    return GenerationTask(descriptor=descriptor, context=context, backend=backend)


class TestVerdict:
    """fits, utilization and thresholds."""

    def test_over_budget_does_not_fit(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(9_000))

        assert verdict.fits is False
        assert verdict.available_tokens == 7_200
        assert verdict.estimated_tokens == 9_000
        assert verdict.needs_fallback is True
        assert verdict.utilization_pct == 112.5

    def test_below_warn_threshold_has_no_warning(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(5_000))

        assert verdict.fits is True
        assert verdict.warnings == ()
        assert verdict.needs_fallback is False

    def test_between_thresholds_warns_softly(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(6_000))

        assert verdict.fits is True
        assert verdict.needs_fallback is False
        assert len(verdict.warnings) == 1
        assert "consider a larger-window backend" in verdict.warnings[0]

    def test_warn_threshold_is_inclusive(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(5_600))

        assert verdict.utilization_pct == 70.0
        assert len(verdict.warnings) == 1

    def test_escalation_threshold_is_exclusive(self) -> None:
        # 90% utilization is exactly 7200 tokens: fits, warns, no fallback
        verdict = ContextBudgetValidator().validate(_task(7_200))

        assert verdict.fits is True
        assert verdict.needs_fallback is False

    def test_above_escalation_with_generous_margin_needs_fallback(self) -> None:
        validator = ContextBudgetValidator(BudgetSettings(safety_margin=1.0))

        verdict = validator.validate(_task(7_600))

        assert verdict.fits is True
        assert verdict.needs_fallback is True
        assert "above 90%" in verdict.warnings[0]

    def test_measured_context_beats_lower_declaration(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(10, text="x" * 4_001))

        assert verdict.estimated_tokens == 1_001

    def test_declaration_beats_smaller_context(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(3_000, text="short"))

        assert verdict.estimated_tokens == 3_000


class TestResponseBudget:
    """max_response_tokens by complexity, capped by remaining window."""

    def test_response_budget_by_complexity(self) -> None:
        validator = ContextBudgetValidator()

        low = validator.validate(_task(100, complexity=Complexity.LOW))
        high = validator.validate(_task(100, complexity=Complexity.HIGH))

        assert low.max_response_tokens == 1_024
        assert high.max_response_tokens == 4_096

    def test_response_budget_capped_by_window(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(7_000, complexity=Complexity.VERY_HIGH))

        assert verdict.max_response_tokens == 1_000

    def test_response_budget_never_negative(self) -> None:
        verdict = ContextBudgetValidator().validate(_task(9_000))

        assert verdict.max_response_tokens == 0


class TestPurity:
    """Same inputs, same verdict."""

    def test_repeated_validation_is_identical(self) -> None:
        validator = ContextBudgetValidator()
        task = _task(6_500, text="## Scope\nPilot")

        assert validator.validate(task) == validator.validate(task)

    @pytest.mark.parametrize("window", [4_000, 8_000, 32_000, 128_000])
    def test_target_tokens_never_exceed_available(self, window: int) -> None:
        validator = ContextBudgetValidator()
        backend = BackendProfile("b", window)

        assert validator.target_tokens(backend) <= validator.available_tokens(backend)
