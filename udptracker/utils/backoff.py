"""Backoff policy for UDP tracker retransmissions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ExponentialBackoff:
    """BEP 15 exponential backoff: ``base_delay * multiplier ** n`` with n capped."""

    base_delay: float = 15.0
    multiplier: float = 2.0
    max_retries: int = 8

    def next_delay(self, retries: int) -> float:
        """Calculate the timeout for given retry count (0-based)."""
        exponent = min(max(0, retries), self.max_retries)
        return self.base_delay * (self.multiplier**exponent)

    def exhausted(self, retries: int) -> bool:
        """Return True once the timeout for ``retries`` is the last one allowed."""
        return retries >= self.max_retries

    def cumulative_offsets(self) -> list[float]:
        """Return the elapsed time at which each timeout fires."""
        offsets = []
        elapsed = 0.0
        for retries in range(self.max_retries + 1):
            elapsed += self.next_delay(retries)
            offsets.append(elapsed)
        return offsets
