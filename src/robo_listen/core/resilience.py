"""Reconnection policy for listening sessions.

The default policy keeps an always-on robot listening forever: every
transport failure is retried immediately with no cap. Deployments that
talk to an endpoint which may stay down for a long time can cap the
attempts or add exponential backoff instead.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ReconnectPolicy:
    """Configuration for automatic reconnection.

    Attributes:
        max_attempts: Consecutive attempts before giving up; None = unbounded.
        delay_s: Wait before the first attempt; 0 reconnects immediately.
        max_delay_s: Upper bound for the wait between attempts.
        exponential_base: Growth factor of the wait per consecutive attempt.
    """

    max_attempts: int | None = None
    delay_s: float = 0.0
    max_delay_s: float = 30.0
    exponential_base: float = 1.0

    def should_retry(self, attempt: int) -> bool:
        """Return True if reconnect attempt number ``attempt`` (1-based) is allowed."""
        if self.max_attempts is None:
            return True
        return attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before reconnect attempt number ``attempt`` (1-based)."""
        if self.delay_s <= 0:
            return 0.0
        delay = self.delay_s * (self.exponential_base ** max(attempt - 1, 0))
        return min(delay, self.max_delay_s)

    def describe(self, attempt: int) -> str:
        """Human-readable attempt counter for log lines."""
        if self.max_attempts is None:
            return f"{attempt}"
        return f"{attempt}/{self.max_attempts}"
