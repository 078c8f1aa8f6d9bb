"""Retry policy for failed jobs."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RetryDecision:
    """What to do with a job whose work function just failed."""

    retry: bool
    delay_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Requeue a failed job until ``max_retries`` is spent, then fail it for good.

    ``backoff_base_seconds == 0`` requeues immediately. A positive base delays the
    n-th retry by ``base * 2 ** (n - 1)`` seconds, capped at ``backoff_max_seconds``.
    """

    max_retries: int = 2
    backoff_base_seconds: float = 0.0
    backoff_max_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.backoff_base_seconds < 0:
            raise ValueError("backoff_base_seconds must be >= 0")

    def decide(self, retry_count: int) -> RetryDecision:
        """Decide for a job that has already been retried ``retry_count`` times."""

        if retry_count >= self.max_retries:
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay_seconds=self.backoff_seconds(retry_count + 1))

    def backoff_seconds(self, retry_no: int) -> float:
        if self.backoff_base_seconds <= 0 or retry_no <= 0:
            return 0.0
        delay = self.backoff_base_seconds * (2 ** (retry_no - 1))
        return min(delay, self.backoff_max_seconds)
