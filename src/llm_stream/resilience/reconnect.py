from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    How a streaming connection is re-established.
    Only the transport consults it; higher layers never see a reconnect.
    max_attempts=None retries indefinitely (the delay is still capped).
    """
    retry_on_disconnect: bool = True
    retry_initial_connection: bool = False
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 60.0
    max_attempts: Optional[int] = None

    def compute_backoff(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (1-based): min(initial * mult^(n-1), max)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        try:
            delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        except OverflowError:
            return self.max_delay
        return min(delay, self.max_delay)

    def allows(self, attempt: int) -> bool:
        return self.max_attempts is None or attempt <= self.max_attempts

    def with_max_attempts(self, max_attempts: Optional[int]) -> "ReconnectPolicy":
        return replace(self, max_attempts=max_attempts)

    def with_initial_delay(self, initial_delay: float) -> "ReconnectPolicy":
        return replace(self, initial_delay=min(initial_delay, self.max_delay))


# Shared by every backend: 1s, x2, capped at 60s, no retry of the first handshake.
DEFAULT_RECONNECT_POLICY = ReconnectPolicy()
