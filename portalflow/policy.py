"""Retry policy evaluation for failed step attempts."""

from __future__ import annotations

from typing import Optional, Union

from .config import RetryConfig
from .contracts import BackoffPolicy, OutcomeKind, StepDefinition


def should_retry(
    attempt_number: int, max_retries: int, outcome_kind: Union[OutcomeKind, str]
) -> bool:
    """Return ``True`` when a failed attempt may be followed by another one.

    Only retryable failures qualify, and only while ``attempt_number`` (1-based)
    does not exceed ``max_retries``. A step with ``max_retries=N`` therefore
    runs at most ``N + 1`` times.
    """
    return (
        OutcomeKind(outcome_kind) is OutcomeKind.RETRYABLE_FAILURE
        and attempt_number <= max_retries
    )


class RetryPolicy:
    """Decides on retries and the wait before each one."""

    def __init__(self, default_backoff: Optional[BackoffPolicy] = None) -> None:
        self.default_backoff = default_backoff or BackoffPolicy()

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            BackoffPolicy(
                initial_delay=config.initial_delay,
                multiplier=config.multiplier,
                max_delay=config.max_delay,
                jitter=config.jitter,
            )
        )

    def should_retry(
        self, attempt_number: int, max_retries: int, outcome_kind: Union[OutcomeKind, str]
    ) -> bool:
        return should_retry(attempt_number, max_retries, outcome_kind)

    def backoff_for(self, step: StepDefinition) -> BackoffPolicy:
        return step.backoff or self.default_backoff

    def delay(self, step: StepDefinition, attempt_number: int) -> float:
        """Seconds to wait after ``attempt_number`` of ``step`` failed."""
        return self.backoff_for(step).delay(attempt_number)
