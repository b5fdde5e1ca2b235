# src/docforge/engine/retry.py
"""Retry policy for backend calls.

One RetryManager per task attempt loop, built from the run's RetryConfig.
Only transient generation errors (rate limits, backend timeouts) are retried
by default; permanent errors and docforge's own control-flow exceptions
propagate on the first failure.

Backoff sleeps go through an injectable `sleep` so the engine can make them
cancellable and tests can make them instant.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docforge.contracts.errors import GenerationError

if TYPE_CHECKING:
    from docforge.core.config import RetrySettings

T = TypeVar("T")

RetryCallback = Callable[[int, BaseException], None]


class MaxRetriesExceeded(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


def is_transient(error: BaseException) -> bool:
    """Default retry predicate: generation errors flagged retryable."""
    return isinstance(error, GenerationError) and error.retryable


@dataclass(frozen=True)
class RetryConfig:
    """Backoff parameters.

    max_attempts counts every call, the first included: 3 means one call
    and up to two retries. The delay before retry n (1-based) is
    base_delay * exponential_base ** (n - 1), capped at max_delay, plus up
    to `jitter` seconds of random jitter.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 1.0
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if min(self.base_delay, self.max_delay, self.jitter) < 0:
            raise ValueError("delays must be >= 0")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs an operation under a RetryConfig using tenacity.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3), sleep=cancellable_sleep)
        text = manager.execute_with_retry(
            lambda: backend.generate(prompt, max_tokens, deadline),
            on_retry=lambda attempt, error: bus.emit(TaskRetrying(...)),
        )
    """

    def __init__(self, config: RetryConfig, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._config = config
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool] = is_transient,
        on_retry: RetryCallback | None = None,
    ) -> T:
        """Call `operation` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument callable to attempt
            is_retryable: Decides whether a raised error earns another attempt
            on_retry: Called with (failed attempt number, error) just before
                each backoff sleep, so only for retries that will happen

        Raises:
            MaxRetriesExceeded: All attempts failed with retryable errors
            Exception: The first non-retryable error, unchanged, or any
                exception raised by the sleep function
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential_jitter(
                initial=self._config.base_delay,
                max=self._config.max_delay,
                exp_base=self._config.exponential_base,
                jitter=self._config.jitter,
            ),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            before_sleep=_notify(on_retry) if on_retry is not None else None,
        )
        try:
            return retrying(operation)
        except RetryError as e:
            last = e.last_attempt
            error = last.exception()
            assert error is not None, "tenacity gave up on an attempt that did not raise"
            raise MaxRetriesExceeded(last.attempt_number, error) from error


def _notify(on_retry: RetryCallback) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        assert state.outcome is not None
        error = state.outcome.exception()
        assert error is not None
        on_retry(state.attempt_number, error)

    return before_sleep
