"""
Retry backoff: exponential growth with bounded jitter, capped at a ceiling.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

# 2**63 seconds is far past any sane ceiling; larger exponents only risk float overflow.
_MAX_EXPONENT = 63


@dataclass(frozen=True)
class BackoffPolicy:
    """
    delay(i) = min(max_seconds, base_seconds * 2**i + uniform(0, jitter_seconds))

    Stateless beyond the attempt index the caller passes in.
    """

    base_seconds: float = 5.0
    jitter_seconds: float = 3.0
    max_seconds: float = 120.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    @classmethod
    def from_settings(cls, settings) -> "BackoffPolicy":
        return cls(
            base_seconds=settings.backoff_base_seconds,
            jitter_seconds=settings.backoff_jitter_seconds,
            max_seconds=settings.backoff_max_seconds,
        )

    def expected_delay(self, attempt_index: int) -> float:
        """Delay without jitter, clamped to the ceiling."""
        if attempt_index < 0:
            raise ValueError(f"attempt_index must be non-negative, got {attempt_index}")
        if attempt_index > _MAX_EXPONENT:
            return self.max_seconds
        return min(self.max_seconds, self.base_seconds * (2 ** attempt_index))

    def delay(self, attempt_index: int) -> float:
        if attempt_index < 0:
            raise ValueError(f"attempt_index must be non-negative, got {attempt_index}")
        if attempt_index > _MAX_EXPONENT:
            return self.max_seconds
        jitter = self.rng.uniform(0, self.jitter_seconds) if self.jitter_seconds > 0 else 0.0
        return min(self.max_seconds, self.base_seconds * (2 ** attempt_index) + jitter)

    async def wait(
        self,
        attempt_index: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> float:
        """Suspend the calling task for delay(attempt_index); returns the seconds slept."""
        seconds = self.delay(attempt_index)
        logger.info("Backing off for %.1fs before next attempt", seconds)
        await sleep(seconds)
        return seconds
