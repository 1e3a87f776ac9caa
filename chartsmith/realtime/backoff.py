"""Reconnect backoff policy for the push channel."""
from __future__ import annotations

from dataclasses import dataclass

from chartsmith.engine.config import (
    RECONNECT_BASE_DELAY_MS,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY_MS,
    SyncConfig,
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a ceiling and a bounded attempt budget."""
    base_delay_ms: int = RECONNECT_BASE_DELAY_MS
    max_delay_ms: int = RECONNECT_MAX_DELAY_MS
    max_attempts: int = RECONNECT_MAX_ATTEMPTS

    @classmethod
    def from_config(cls, config: SyncConfig) -> BackoffPolicy:
        return cls(
            base_delay_ms=config.reconnect_base_delay_ms,
            max_delay_ms=config.reconnect_max_delay_ms,
            max_attempts=config.reconnect_max_attempts,
        )

    def delay_ms(self, attempt: int) -> int:
        """Delay before reconnect attempt *attempt* (1-based)."""
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        # Cap the exponent so huge attempt numbers don't build huge ints.
        exponent = min(attempt, 32)
        return min(self.base_delay_ms * (2 ** exponent), self.max_delay_ms)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0

    def exhausted(self, attempts_made: int) -> bool:
        return attempts_made >= self.max_attempts

    def schedule(self, attempts: int) -> list[int]:
        """Delays (ms) for attempts 1..*attempts*."""
        return [self.delay_ms(n) for n in range(1, attempts + 1)]
