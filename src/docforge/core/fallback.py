# src/docforge/core/fallback.py
"""FallbackStrategyChain: degrade a task until its context fits.

Strategies run in a fixed order, each only if the previous one left the
estimate over budget:

1. backend_switch   Rebind to a larger-window backend. No content change.
2. prioritization   Drop LOW sections, then NORMAL sections from the end.
                    REQUIRED sections are never dropped.
3. summarization    Condense sections (largest first) to their headings and
                    key-term lines.
4. chunking         Split into chunks, keep the most relevant ones that fit,
                    in their original order.

Content strategies are cumulative: each works on what the previous one
produced. Prioritization only carries its LOW drops forward when it fails,
so later strategies condense NORMAL sections instead of losing them.

Once content changes, the estimate becomes
max(measured, ceil(declared * measured / measured_before)).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from docforge.contracts.enums import FallbackStrategy, SectionPriority
from docforge.contracts.models import BackendProfile, ContextSection, FallbackOutcome, ProcessorDescriptor, ValidationVerdict
from docforge.core.budget import ContextBudgetValidator
from docforge.core.config import FallbackSettings
from docforge.core.context import ContextSlice
from docforge.core.logging import get_logger
from docforge.core.tokens import scale_declared

if TYPE_CHECKING:
    from docforge.core.backends import BackendPool
    from docforge.engine.task import GenerationTask

logger = get_logger(__name__)

_MAJOR_SECTION_SPLIT = re.compile(r"\n(?=##)")
_HEADER_LINE = re.compile(r"^#+\s+", re.MULTILINE)

_CHUNK_KEYWORD_SCORE = 10
_CHUNK_HEADER_SCORE = 5


@dataclass(slots=True)
class _WorkingState:
    """Mutable scratch state threaded through the strategies."""

    descriptor: ProcessorDescriptor
    backend: BackendProfile
    context: ContextSlice
    measured_before: int
    estimate: int
    attempted: list[FallbackStrategy] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class FallbackStrategyChain:
    """Applies fallback strategies in order until a task fits.

    Example:
        chain = FallbackStrategyChain(validator, pool, FallbackSettings())
        outcome = chain.apply_until_fits(task, verdict)
        if outcome.success:
            task.rebind(pool.profile(outcome.backend_id), outcome.payload)
    """

    def __init__(
        self,
        validator: ContextBudgetValidator,
        pool: BackendPool,
        settings: FallbackSettings | None = None,
    ) -> None:
        self._validator = validator
        self._pool = pool
        self._settings = settings or FallbackSettings()

    def apply_until_fits(self, task: GenerationTask, verdict: ValidationVerdict) -> FallbackOutcome:
        """Degrade the task until it fits or every strategy is exhausted.

        Args:
            task: Task whose context or backend did not fit
            verdict: The verdict that triggered fallback

        Returns:
            FallbackOutcome; success=False means the task must fail with
            ContextBudgetExceeded
        """
        state = _WorkingState(
            descriptor=task.descriptor,
            backend=task.backend,
            context=task.context,
            measured_before=self._validator.measure(task.context.text),
            estimate=verdict.estimated_tokens,
        )
        original = verdict.estimated_tokens

        steps = (
            (FallbackStrategy.BACKEND_SWITCH, self._settings.backend_switch, self._switch_backend),
            (FallbackStrategy.PRIORITIZATION, self._settings.prioritization, self._prioritize),
            (FallbackStrategy.SUMMARIZATION, self._settings.summarization, self._summarize),
            (FallbackStrategy.CHUNKING, self._settings.chunking, self._chunk),
        )
        for strategy, enabled, apply in steps:
            if not enabled:
                continue
            state.attempted.append(strategy)
            if apply(state):
                logger.debug(
                    "fallback_succeeded",
                    processor_key=state.descriptor.key,
                    strategy=strategy.value,
                    final_tokens=state.estimate,
                )
                return self._outcome(state, strategy, original, success=True)

        logger.debug("fallback_exhausted", processor_key=state.descriptor.key, final_tokens=state.estimate)
        return self._outcome(state, FallbackStrategy.NONE, original, success=False)

    # === Strategies ===

    def _switch_backend(self, state: _WorkingState) -> bool:
        candidates = self._pool.larger_than(state.backend)
        if not candidates:
            return False
        for candidate in candidates:
            if not self._validator.evaluate(state.descriptor, candidate, state.estimate).needs_fallback:
                self._rebind(state, candidate)
                return True
        # Nothing fits as-is; continue with the roomiest window
        roomiest = max(candidates, key=lambda p: (p.context_window_tokens, -p.cost_weight, p.backend_id))
        self._rebind(state, roomiest)
        return False

    def _rebind(self, state: _WorkingState, backend: BackendProfile) -> None:
        state.warnings.append(f"Rebound from backend '{state.backend.backend_id}' to '{backend.backend_id}'")
        state.backend = backend

    def _prioritize(self, state: _WorkingState) -> bool:
        sections = state.context.sections
        low = [i for i, s in enumerate(sections) if s.priority == SectionPriority.LOW]
        after_low = state.context.without(low)
        if self._apply_content(state, after_low):
            state.warnings.append(f"Dropped {len(low)} low-priority section(s)")
            return True

        normal = [i for i, s in enumerate(after_low.sections) if s.priority == SectionPriority.NORMAL]
        for dropped in range(1, len(normal) + 1):
            candidate = after_low.without(normal[-dropped:])
            if self._apply_content(state, candidate):
                state.warnings.append(
                    f"Dropped {len(low)} low-priority and {dropped} normal-priority section(s)"
                )
                return True

        # Keep only the LOW drops for the strategies that follow
        self._apply_content(state, after_low)
        if low:
            state.warnings.append(f"Dropped {len(low)} low-priority section(s)")
        return False

    def _summarize(self, state: _WorkingState) -> bool:
        terms = [t.lower() for t in (*self._settings.key_terms, *self._settings.keywords_for(state.descriptor.category))]
        context = state.context
        # Non-required sections first, each group largest first
        order = sorted(
            range(len(context.sections)),
            key=lambda i: (
                context.sections[i].priority == SectionPriority.REQUIRED,
                -len(context.sections[i].text),
                i,
            ),
        )
        condensed_count = 0
        for index in order:
            section = context.sections[index]
            body = _condense(section.body, terms)
            if body == section.body:
                continue
            context = context.replace(index, ContextSection(section.heading, body, section.priority))
            condensed_count += 1
            if self._apply_content(state, context):
                state.warnings.append(f"Summarized {condensed_count} section(s)")
                return True
        self._apply_content(state, context)
        if condensed_count:
            state.warnings.append(f"Summarized {condensed_count} section(s)")
        return False

    def _chunk(self, state: _WorkingState) -> bool:
        text = state.context.text
        if not text:
            return False
        chunks = self._split_into_chunks(text)
        keywords = [k.lower() for k in self._settings.keywords_for(state.descriptor.category)]
        limit = self._measured_limit(state)

        ranked = sorted(
            range(len(chunks)),
            key=lambda i: (-_score_chunk(chunks[i], keywords), i),
        )
        selected: list[int] = []
        total = 0
        for index in ranked:
            tokens = self._validator.measure(chunks[index])
            if total + tokens <= limit:
                selected.append(index)
                total += tokens

        kept = "\n".join(chunks[i] for i in sorted(selected))
        fits = self._apply_content(state, ContextSlice((ContextSection(heading="", body=kept),)))
        state.warnings.append(f"Kept {len(selected)} of {len(chunks)} chunk(s)")
        return fits

    # === Helpers ===

    def _apply_content(self, state: _WorkingState, context: ContextSlice) -> bool:
        """Adopt new content and report whether it now fits."""
        measured = self._validator.measure(context.text)
        declared = scale_declared(state.descriptor.estimated_tokens, state.measured_before, measured)
        state.context = context
        state.estimate = max(measured, declared)
        return not self._validator.evaluate(state.descriptor, state.backend, state.estimate).needs_fallback

    def _measured_limit(self, state: _WorkingState) -> int:
        """Largest measured size whose scaled estimate stays within target."""
        target = self._validator.target_tokens(state.backend)
        declared = state.descriptor.estimated_tokens
        if declared <= state.measured_before or state.measured_before == 0:
            return target
        # ceil(declared * m / before) <= target  <=>  m <= target * before / declared
        return min(target, target * state.measured_before // declared)

    def _split_into_chunks(self, text: str) -> list[str]:
        max_tokens = self._settings.max_chunk_tokens
        chunks: list[str] = []
        for section in _MAJOR_SECTION_SPLIT.split(text):
            if self._validator.measure(section) <= max_tokens:
                chunks.append(section)
                continue
            current: list[str] = []
            current_tokens = 0
            for line in section.split("\n"):
                line_tokens = self._validator.measure(line)
                if current and current_tokens + line_tokens > max_tokens:
                    chunks.append("\n".join(current))
                    current, current_tokens = [line], line_tokens
                else:
                    current.append(line)
                    current_tokens += line_tokens
            if current:
                chunks.append("\n".join(current))
        return chunks

    def _outcome(
        self,
        state: _WorkingState,
        strategy: FallbackStrategy,
        original: int,
        *,
        success: bool,
    ) -> FallbackOutcome:
        reduction = round((original - state.estimate) / original * 100, 2) if original > 0 else 0.0
        return FallbackOutcome(
            strategy_used=strategy,
            final_tokens=state.estimate,
            reduction_pct=reduction,
            success=success,
            original_tokens=original,
            strategies_attempted=tuple(state.attempted),
            backend_id=state.backend.backend_id,
            payload=state.context.text,
            warnings=tuple(state.warnings),
        )


def _condense(body: str, terms: list[str]) -> str:
    """Keep heading lines and lines mentioning a key term."""
    kept = [
        line
        for line in body.split("\n")
        if line.lstrip().startswith("#") or any(term in line.lower() for term in terms)
    ]
    return "\n".join(kept)


def _score_chunk(chunk: str, keywords: list[str]) -> int:
    content = chunk.lower()
    score = sum(_CHUNK_KEYWORD_SCORE for keyword in keywords if keyword in content)
    return score + _CHUNK_HEADER_SCORE * len(_HEADER_LINE.findall(chunk))
