"""
Retry policy shared by both queue backends.

Delay before the retry following attempt n is base * 2**(n - 1):
2s, 4s, 8s, 16s with the default base.
"""
from dataclasses import dataclass

from leadflow.config import settings


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff."""
    max_attempts: int = 5
    base_delay_seconds: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds <= 0:
            raise ValueError("base_delay_seconds must be positive")

    def should_retry(self, attempt: int) -> bool:
        """True if a job that just failed its `attempt`-th try gets another one."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt `attempt` (1-based)."""
        return self.base_delay_seconds * (2 ** (max(attempt, 1) - 1))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.WEBHOOK_MAX_ATTEMPTS,
            base_delay_seconds=settings.WEBHOOK_BACKOFF_BASE_SECONDS,
        )
